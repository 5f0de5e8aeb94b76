"""
Delivery matching, status transitions and rating aggregation.

Each operation here touches more than one entity, so it runs inside a single
``db.atomic()`` block.
"""

from __future__ import annotations

import logging
from typing import Optional

from luggagelink.db import DbClient
from luggagelink.errors import InvalidTransitionError
from luggagelink.records import (
    DELIVERY_TRANSITIONS,
    PAYMENT_TRANSITIONS,
    Delivery,
    DeliveryStatus,
    NewDelivery,
    NewReview,
    PackageStatus,
    PaymentStatus,
    Review,
)

logger = logging.getLogger(__name__)


def can_transition(table: dict, current, requested) -> bool:
    return requested == current or requested in table.get(current, frozenset())


def create_delivery(db: DbClient, payload: NewDelivery) -> Delivery:
    """Link a trip and a package; the package becomes matched unconditionally."""
    with db.atomic():
        delivery = db.create_delivery(payload)
        db.set_package_status(payload.package_id, PackageStatus.MATCHED)
    logger.info(
        "Delivery %s matched package %s to trip %s",
        delivery.id,
        delivery.package_id,
        delivery.trip_id,
    )
    return delivery


def update_delivery_status(
    db: DbClient,
    delivery_id: int,
    status: DeliveryStatus,
    *,
    enforce_transitions: bool = True,
) -> Optional[Delivery]:
    status = DeliveryStatus(status)
    with db.atomic():
        delivery = db.get_delivery(delivery_id)
        if not delivery:
            return None
        if enforce_transitions and not can_transition(
            DELIVERY_TRANSITIONS, delivery.status, status
        ):
            raise InvalidTransitionError(
                "delivery status", delivery.status.value, status.value
            )
        updated = db.update_delivery_status(delivery_id, status)
        if status == DeliveryStatus.DELIVERED:
            db.set_package_status(delivery.package_id, PackageStatus.DELIVERED)
    logger.info(
        "Delivery %s status %s -> %s",
        delivery_id,
        delivery.status.value,
        status.value,
    )
    return updated


def update_payment_status(
    db: DbClient,
    delivery_id: int,
    status: PaymentStatus,
    *,
    enforce_transitions: bool = True,
) -> Optional[Delivery]:
    status = PaymentStatus(status)
    with db.atomic():
        delivery = db.get_delivery(delivery_id)
        if not delivery:
            return None
        if enforce_transitions and not can_transition(
            PAYMENT_TRANSITIONS, delivery.payment_status, status
        ):
            raise InvalidTransitionError(
                "payment status", delivery.payment_status.value, status.value
            )
        updated = db.update_payment_status(delivery_id, status)
    logger.info(
        "Delivery %s payment %s -> %s",
        delivery_id,
        delivery.payment_status.value,
        status.value,
    )
    return updated


def create_review(db: DbClient, payload: NewReview) -> Review:
    """Store a review and recompute the reviewee's mean rating from scratch."""
    with db.atomic():
        review = db.create_review(payload)
        received = db.get_reviews_by_user_id(payload.reviewee_id, "reviewee")
        rating = sum(r.rating for r in received) / len(received)
        db.update_user_rating(payload.reviewee_id, rating, len(received))
    logger.info(
        "User %s rating now %.2f over %d reviews",
        payload.reviewee_id,
        rating,
        len(received),
    )
    return review
