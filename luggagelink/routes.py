"""
HTTP routes for trips, packages, deliveries, messages, reviews and
verification.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from starlette.concurrency import run_in_threadpool

from luggagelink import matching
from luggagelink.auth import get_current_user
from luggagelink.config import Settings
from luggagelink.db import DbClient
from luggagelink.dependencies import get_app_settings, get_db_client, get_hub
from luggagelink.records import (
    VERIFICATION_FLAGS,
    Delivery,
    NewMessage,
    NewReview,
    PackageFilters,
    TripFilters,
    User,
    as_utc,
)
from luggagelink.relay import ConnectionHub
from luggagelink.schemas import (
    DeliveryCreate,
    DeliveryStatusUpdate,
    MessageCreate,
    PackageCreate,
    PackageUpdate,
    PaymentStatusUpdate,
    ReviewCreate,
    TripCreate,
    TripUpdate,
    VerificationRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _with_owner(db: DbClient, record, *, include_email: bool = False) -> dict:
    body = record.as_dict()
    owner = db.get_user(record.user_id)
    body["user"] = owner.public_view(include_email=include_email) if owner else None
    return body


def _user_view(user: Optional[User]) -> Optional[dict]:
    return user.public_view() if user else None


def _delivery_view(db: DbClient, delivery: Delivery) -> dict:
    body = delivery.as_dict()
    trip = db.get_trip(delivery.trip_id)
    pkg = db.get_package(delivery.package_id)
    body["trip"] = trip.as_dict() if trip else None
    body["package"] = pkg.as_dict() if pkg else None
    body["sender"] = _user_view(db.get_user(delivery.sender_id))
    body["traveler"] = _user_view(db.get_user(delivery.traveler_id))
    return body


def _resolve_owner_id(db: DbClient, current: User, user_id: Optional[int]) -> int:
    if user_id is None:
        return current.id
    if not db.get_user(user_id):
        raise HTTPException(status_code=404, detail="User not found")
    return user_id


# Trips


@router.get("/trips")
def list_trips(
    departure_airport: Optional[str] = Query(None, alias="departureAirport"),
    departure_city: Optional[str] = Query(None, alias="departureCity"),
    destination_city: Optional[str] = Query(None, alias="destinationCity"),
    departure_date: Optional[datetime] = Query(None, alias="departureDate"),
    available_weight: Optional[float] = Query(None, alias="availableWeight"),
    db: DbClient = Depends(get_db_client),
):
    filters = TripFilters(
        departure_airport=departure_airport or departure_city,
        destination_city=destination_city,
        departure_date=as_utc(departure_date),
        min_available_weight=available_weight,
    )
    return [_with_owner(db, trip) for trip in db.get_trips(filters)]


@router.get("/trips/user")
@router.get("/trips/user/{user_id}")
def list_user_trips(
    user_id: Optional[int] = None,
    user: User = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    owner_id = _resolve_owner_id(db, user, user_id)
    return [trip.as_dict() for trip in db.get_trips_by_user_id(owner_id)]


@router.get("/trips/{trip_id}")
def get_trip(trip_id: int, db: DbClient = Depends(get_db_client)):
    trip = db.get_trip(trip_id)
    if not trip:
        raise HTTPException(status_code=404, detail="Trip not found")
    return _with_owner(db, trip, include_email=True)


@router.post("/trips", status_code=201)
def create_trip(
    payload: TripCreate,
    user: User = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    trip = db.create_trip(payload.to_record(), user.id)
    logger.info("User %s posted trip %s", user.id, trip.id)
    return trip.as_dict()


@router.put("/trips/{trip_id}")
def update_trip(
    trip_id: int,
    payload: TripUpdate,
    user: User = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    trip = db.get_trip(trip_id)
    if not trip:
        raise HTTPException(status_code=404, detail="Trip not found")
    if trip.user_id != user.id:
        raise HTTPException(
            status_code=403, detail="Not authorized to update this trip"
        )
    changes = payload.changes()
    departure = changes.get("departure_date", trip.departure_date)
    arrival = changes.get("arrival_date", trip.arrival_date)
    if as_utc(arrival) < as_utc(departure):
        raise HTTPException(
            status_code=400,
            detail="Arrival date must be on or after the departure date",
        )
    return db.update_trip(trip_id, changes).as_dict()


# Packages


@router.get("/packages")
def list_packages(
    sender_city: Optional[str] = Query(None, alias="senderCity"),
    receiver_city: Optional[str] = Query(None, alias="receiverCity"),
    package_type: Optional[str] = Query(None, alias="packageType"),
    weight: Optional[float] = Query(None),
    delivery_deadline: Optional[datetime] = Query(None, alias="deliveryDeadline"),
    db: DbClient = Depends(get_db_client),
):
    filters = PackageFilters(
        sender_city=sender_city,
        receiver_city=receiver_city,
        package_type=package_type,
        max_weight=weight,
        delivery_deadline=as_utc(delivery_deadline),
    )
    return [_with_owner(db, pkg) for pkg in db.get_packages(filters)]


@router.get("/packages/user")
@router.get("/packages/user/{user_id}")
def list_user_packages(
    user_id: Optional[int] = None,
    user: User = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    owner_id = _resolve_owner_id(db, user, user_id)
    return [pkg.as_dict() for pkg in db.get_packages_by_user_id(owner_id)]


@router.get("/packages/{package_id}")
def get_package(package_id: int, db: DbClient = Depends(get_db_client)):
    pkg = db.get_package(package_id)
    if not pkg:
        raise HTTPException(status_code=404, detail="Package not found")
    return _with_owner(db, pkg)


@router.post("/packages", status_code=201)
def create_package(
    payload: PackageCreate,
    user: User = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    pkg = db.create_package(payload.to_record(), user.id)
    logger.info("User %s posted package %s", user.id, pkg.id)
    return pkg.as_dict()


@router.put("/packages/{package_id}")
def update_package(
    package_id: int,
    payload: PackageUpdate,
    user: User = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    pkg = db.get_package(package_id)
    if not pkg:
        raise HTTPException(status_code=404, detail="Package not found")
    if pkg.user_id != user.id:
        raise HTTPException(
            status_code=403, detail="Not authorized to update this package"
        )
    return db.update_package(package_id, payload.changes()).as_dict()


# Deliveries


@router.get("/deliveries/user")
def list_user_deliveries(
    user: User = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    deliveries = db.get_deliveries_by_user_id(
        user.id, "traveler"
    ) + db.get_deliveries_by_user_id(user.id, "sender")
    return [_delivery_view(db, delivery) for delivery in deliveries]


@router.get("/deliveries/trip/{trip_id}")
def list_trip_deliveries(
    trip_id: int,
    user: User = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    trip = db.get_trip(trip_id)
    if not trip:
        raise HTTPException(status_code=404, detail="Trip not found")
    if trip.user_id != user.id:
        raise HTTPException(
            status_code=403, detail="Not authorized to view these deliveries"
        )
    return [_delivery_view(db, d) for d in db.get_deliveries_by_trip_id(trip_id)]


@router.get("/deliveries/package/{package_id}")
def list_package_deliveries(
    package_id: int,
    user: User = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    pkg = db.get_package(package_id)
    if not pkg:
        raise HTTPException(status_code=404, detail="Package not found")
    if pkg.user_id != user.id:
        raise HTTPException(
            status_code=403, detail="Not authorized to view these deliveries"
        )
    return [
        _delivery_view(db, d) for d in db.get_deliveries_by_package_id(package_id)
    ]


@router.get("/deliveries/{delivery_id}")
def get_delivery(
    delivery_id: int,
    user: User = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    delivery = db.get_delivery(delivery_id)
    if not delivery:
        raise HTTPException(status_code=404, detail="Delivery not found")
    if not delivery.involves(user.id):
        raise HTTPException(
            status_code=403, detail="Not authorized to view this delivery"
        )
    return _delivery_view(db, delivery)


@router.post("/deliveries", status_code=201)
def create_delivery(
    payload: DeliveryCreate,
    user: User = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    pkg = db.get_package(payload.package_id)
    trip = db.get_trip(payload.trip_id)
    if not pkg or not trip:
        raise HTTPException(status_code=404, detail="Package or trip not found")
    if payload.traveler_id == payload.sender_id:
        raise HTTPException(
            status_code=400,
            detail="Traveler and sender must be different users",
        )
    if payload.traveler_id != trip.user_id or payload.sender_id != pkg.user_id:
        raise HTTPException(
            status_code=400,
            detail="Traveler must own the trip and sender must own the package",
        )
    if user.id not in (payload.traveler_id, payload.sender_id):
        raise HTTPException(
            status_code=403, detail="Not authorized to create this delivery"
        )
    delivery = matching.create_delivery(db, payload.to_record())
    return delivery.as_dict()


@router.put("/deliveries/{delivery_id}/status")
def update_delivery_status(
    delivery_id: int,
    payload: DeliveryStatusUpdate,
    user: User = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_app_settings),
):
    delivery = db.get_delivery(delivery_id)
    if not delivery:
        raise HTTPException(status_code=404, detail="Delivery not found")
    if not delivery.involves(user.id):
        raise HTTPException(
            status_code=403, detail="Not authorized to update this delivery"
        )
    updated = matching.update_delivery_status(
        db,
        delivery_id,
        payload.status,
        enforce_transitions=settings.enforce_status_transitions,
    )
    return updated.as_dict()


@router.put("/deliveries/{delivery_id}/payment")
def update_payment_status(
    delivery_id: int,
    payload: PaymentStatusUpdate,
    user: User = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_app_settings),
):
    delivery = db.get_delivery(delivery_id)
    if not delivery:
        raise HTTPException(status_code=404, detail="Delivery not found")
    if delivery.sender_id != user.id:
        raise HTTPException(
            status_code=403, detail="Not authorized to update payment status"
        )
    updated = matching.update_payment_status(
        db,
        delivery_id,
        payload.payment_status,
        enforce_transitions=settings.enforce_status_transitions,
    )
    return updated.as_dict()


# Messages


@router.get("/messages")
def list_conversations(
    user: User = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    conversations: dict[int, dict] = {}
    # Newest first, so the first message seen per counterpart is the latest.
    for message in db.get_messages_by_user_id(user.id):
        other_id = message.counterpart_of(user.id)
        conversation = conversations.get(other_id)
        if conversation is None:
            other = db.get_user(other_id)
            if not other:
                continue
            conversation = conversations[other_id] = {
                "user": other.contact_view(),
                "lastMessage": message.as_dict(),
                "unreadCount": 0,
            }
        if message.receiver_id == user.id and not message.is_read:
            conversation["unreadCount"] += 1
    return list(conversations.values())


@router.get("/messages/{user_id}")
def get_conversation(
    user_id: int,
    user: User = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    other = db.get_user(user_id)
    if not other:
        raise HTTPException(status_code=404, detail="User not found")
    thread = []
    for message in db.get_messages_between_users(user.id, user_id):
        if message.receiver_id == user.id and not message.is_read:
            message = db.mark_message_as_read(message.id)
        thread.append(message.as_dict())
    return {"messages": thread, "user": other.contact_view()}


@router.post("/messages", status_code=201)
async def send_message(
    payload: MessageCreate,
    user: User = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    hub: ConnectionHub = Depends(get_hub),
):
    receiver = await run_in_threadpool(db.get_user, payload.receiver_id)
    if not receiver:
        raise HTTPException(status_code=404, detail="Receiver not found")
    message = await run_in_threadpool(
        db.create_message,
        NewMessage(
            sender_id=user.id,
            receiver_id=receiver.id,
            content=payload.content,
        ),
    )
    body = message.as_dict()
    await hub.send_to_user(receiver.id, {"type": "message", "payload": body})
    return body


# Reviews


def _with_reviewer(db: DbClient, reviews) -> list[dict]:
    enriched = []
    for review in reviews:
        body = review.as_dict()
        reviewer = db.get_user(review.reviewer_id)
        body["reviewer"] = reviewer.contact_view() if reviewer else None
        enriched.append(body)
    return enriched


@router.get("/reviews/user/{user_id}")
def list_user_reviews(user_id: int, db: DbClient = Depends(get_db_client)):
    return _with_reviewer(db, db.get_reviews_by_user_id(user_id, "reviewee"))


@router.get("/reviews/delivery/{delivery_id}")
def list_delivery_reviews(delivery_id: int, db: DbClient = Depends(get_db_client)):
    if not db.get_delivery(delivery_id):
        raise HTTPException(status_code=404, detail="Delivery not found")
    return _with_reviewer(db, db.get_reviews_by_delivery_id(delivery_id))


@router.post("/reviews", status_code=201)
def create_review(
    payload: ReviewCreate,
    user: User = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    if payload.reviewee_id == user.id:
        raise HTTPException(status_code=400, detail="You cannot review yourself")
    if payload.delivery_id is not None:
        delivery = db.get_delivery(payload.delivery_id)
        if not delivery:
            raise HTTPException(status_code=404, detail="Delivery not found")
        if not delivery.involves(user.id):
            raise HTTPException(
                status_code=403, detail="Not authorized to review this delivery"
            )
        if not delivery.involves(payload.reviewee_id):
            raise HTTPException(
                status_code=400, detail="Reviewee must be part of the delivery"
            )
    if not db.get_user(payload.reviewee_id):
        raise HTTPException(status_code=404, detail="User not found")
    review = matching.create_review(
        db,
        NewReview(
            reviewer_id=user.id,
            reviewee_id=payload.reviewee_id,
            rating=payload.rating,
            delivery_id=payload.delivery_id,
            comment=payload.comment,
        ),
    )
    return review.as_dict()


# Verification


@router.post("/verification")
def submit_verification(
    payload: VerificationRequest,
    user: User = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    if payload.verification_type not in VERIFICATION_FLAGS:
        raise HTTPException(status_code=400, detail="Invalid verification type")
    # No external provider; every submitted check is accepted.
    updated = db.update_user_verification(
        user.id, {payload.verification_type: True}
    )
    logger.info(
        "User %s passed %s (inquiry=%s)",
        user.id,
        payload.verification_type,
        payload.inquiry_id,
    )
    return {
        "verificationStatus": updated.verification_status.as_dict(),
        "isVerified": updated.is_verified,
    }
