"""
Entity records shared by the storage backends and the HTTP layer.

Records are plain dataclasses with snake_case attributes; ``as_dict`` renders
the camelCase JSON shape the web client expects.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize to an aware UTC datetime; naive values are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class PackageStatus(str, Enum):
    PENDING = "pending"
    MATCHED = "matched"
    DELIVERED = "delivered"


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    IN_ESCROW = "in_escrow"
    RELEASED = "released"
    REFUNDED = "refunded"


DELIVERY_TRANSITIONS: dict[DeliveryStatus, frozenset[DeliveryStatus]] = {
    DeliveryStatus.PENDING: frozenset(
        {
            DeliveryStatus.ACCEPTED,
            DeliveryStatus.IN_TRANSIT,
            DeliveryStatus.DELIVERED,
            DeliveryStatus.CANCELLED,
        }
    ),
    DeliveryStatus.ACCEPTED: frozenset(
        {
            DeliveryStatus.IN_TRANSIT,
            DeliveryStatus.DELIVERED,
            DeliveryStatus.CANCELLED,
        }
    ),
    DeliveryStatus.IN_TRANSIT: frozenset(
        {DeliveryStatus.DELIVERED, DeliveryStatus.CANCELLED}
    ),
    DeliveryStatus.DELIVERED: frozenset(),
    DeliveryStatus.CANCELLED: frozenset(),
}

PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset(
        {PaymentStatus.IN_ESCROW, PaymentStatus.REFUNDED}
    ),
    PaymentStatus.IN_ESCROW: frozenset(
        {PaymentStatus.RELEASED, PaymentStatus.REFUNDED}
    ),
    PaymentStatus.RELEASED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}

DeliveryRole = Literal["traveler", "sender"]
ReviewRole = Literal["reviewer", "reviewee"]

VERIFICATION_FLAGS = ("idVerified", "phoneVerified", "addressVerified")


def _iso(value: Optional[datetime]) -> Optional[str]:
    return as_utc(value).isoformat() if value else None


@dataclass
class VerificationStatus:
    id_verified: bool = False
    phone_verified: bool = False
    address_verified: bool = False

    @property
    def is_complete(self) -> bool:
        return self.id_verified and self.phone_verified and self.address_verified

    def merged(self, flags: dict[str, bool]) -> "VerificationStatus":
        """Return a copy with camelCase ``flags`` applied on top."""
        current = self.as_dict()
        current.update({k: bool(v) for k, v in flags.items() if k in current})
        return VerificationStatus.from_dict(current)

    def as_dict(self) -> dict:
        return {
            "idVerified": self.id_verified,
            "phoneVerified": self.phone_verified,
            "addressVerified": self.address_verified,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "VerificationStatus":
        data = data or {}
        return cls(
            id_verified=bool(data.get("idVerified", False)),
            phone_verified=bool(data.get("phoneVerified", False)),
            address_verified=bool(data.get("addressVerified", False)),
        )


@dataclass
class Dimensions:
    length: float
    width: float
    height: float

    def as_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["Dimensions"]:
        if not data:
            return None
        return cls(
            length=data["length"], width=data["width"], height=data["height"]
        )


@dataclass
class User:
    id: int
    email: str
    password: str
    first_name: str
    last_name: str
    profile_image: Optional[str] = None
    is_verified: bool = False
    verification_status: VerificationStatus = field(
        default_factory=VerificationStatus
    )
    created_at: datetime = field(default_factory=utcnow)
    rating: float = 0.0
    review_count: int = 0

    def as_dict(self) -> dict:
        """Full account view for the owner; never includes the password hash."""
        return {
            "id": self.id,
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "profileImage": self.profile_image,
            "isVerified": self.is_verified,
            "verificationStatus": self.verification_status.as_dict(),
            "createdAt": _iso(self.created_at),
            "rating": self.rating,
            "reviewCount": self.review_count,
        }

    def public_view(self, *, include_email: bool = False) -> dict:
        """Redacted view attached to listings, deliveries and detail pages."""
        view = {
            "id": self.id,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "profileImage": self.profile_image,
            "verificationStatus": self.verification_status.as_dict(),
            "rating": self.rating,
            "reviewCount": self.review_count,
            "createdAt": _iso(self.created_at),
        }
        if include_email:
            view["email"] = self.email
        return view

    def contact_view(self) -> dict:
        return {
            "id": self.id,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "profileImage": self.profile_image,
        }


@dataclass
class Trip:
    id: int
    user_id: int
    departure_airport: str
    destination_city: str
    departure_date: datetime
    arrival_date: datetime
    available_weight: float
    price_per_kg: float
    airline: Optional[str] = None
    flight_number: Optional[str] = None
    notes: Optional[str] = None
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "departureAirport": self.departure_airport,
            "destinationCity": self.destination_city,
            "departureDate": _iso(self.departure_date),
            "arrivalDate": _iso(self.arrival_date),
            "airline": self.airline,
            "flightNumber": self.flight_number,
            "availableWeight": self.available_weight,
            "pricePerKg": self.price_per_kg,
            "notes": self.notes,
            "isActive": self.is_active,
            "createdAt": _iso(self.created_at),
        }


@dataclass
class Package:
    id: int
    user_id: int
    sender_city: str
    receiver_city: str
    package_type: str
    weight: float
    offered_payment: float
    dimensions: Optional[Dimensions] = None
    delivery_deadline: Optional[datetime] = None
    description: Optional[str] = None
    status: PackageStatus = PackageStatus.PENDING
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "senderCity": self.sender_city,
            "receiverCity": self.receiver_city,
            "packageType": self.package_type,
            "weight": self.weight,
            "dimensions": self.dimensions.as_dict() if self.dimensions else None,
            "deliveryDeadline": _iso(self.delivery_deadline),
            "offeredPayment": self.offered_payment,
            "description": self.description,
            "status": self.status.value,
            "isActive": self.is_active,
            "createdAt": _iso(self.created_at),
        }


@dataclass
class Delivery:
    id: int
    trip_id: int
    package_id: int
    traveler_id: int
    sender_id: int
    status: DeliveryStatus = DeliveryStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.PENDING
    created_at: datetime = field(default_factory=utcnow)
    updated_at: Optional[datetime] = None

    def involves(self, user_id: int) -> bool:
        return user_id in (self.sender_id, self.traveler_id)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "tripId": self.trip_id,
            "packageId": self.package_id,
            "travelerId": self.traveler_id,
            "senderId": self.sender_id,
            "status": self.status.value,
            "paymentStatus": self.payment_status.value,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


@dataclass
class Message:
    id: int
    sender_id: int
    receiver_id: int
    content: str
    is_read: bool = False
    created_at: datetime = field(default_factory=utcnow)

    def counterpart_of(self, user_id: int) -> int:
        return self.receiver_id if self.sender_id == user_id else self.sender_id

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "senderId": self.sender_id,
            "receiverId": self.receiver_id,
            "content": self.content,
            "isRead": self.is_read,
            "createdAt": _iso(self.created_at),
        }


@dataclass
class Review:
    id: int
    reviewer_id: int
    reviewee_id: int
    rating: int
    delivery_id: Optional[int] = None
    comment: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "reviewerId": self.reviewer_id,
            "revieweeId": self.reviewee_id,
            "deliveryId": self.delivery_id,
            "rating": self.rating,
            "comment": self.comment,
            "createdAt": _iso(self.created_at),
        }


# Insert payloads: validated input without storage-assigned fields.


@dataclass
class NewUser:
    email: str
    password: str
    first_name: str
    last_name: str
    profile_image: Optional[str] = None


@dataclass
class NewTrip:
    departure_airport: str
    destination_city: str
    departure_date: datetime
    arrival_date: datetime
    available_weight: float
    price_per_kg: float
    airline: Optional[str] = None
    flight_number: Optional[str] = None
    notes: Optional[str] = None


@dataclass
class NewPackage:
    sender_city: str
    receiver_city: str
    package_type: str
    weight: float
    offered_payment: float
    dimensions: Optional[Dimensions] = None
    delivery_deadline: Optional[datetime] = None
    description: Optional[str] = None


@dataclass
class NewDelivery:
    trip_id: int
    package_id: int
    traveler_id: int
    sender_id: int


@dataclass
class NewMessage:
    sender_id: int
    receiver_id: int
    content: str


@dataclass
class NewReview:
    reviewer_id: int
    reviewee_id: int
    rating: int
    delivery_id: Optional[int] = None
    comment: Optional[str] = None


# Listing filters: a None field leaves that attribute unconstrained.


@dataclass
class TripFilters:
    departure_airport: Optional[str] = None
    destination_city: Optional[str] = None
    departure_date: Optional[datetime] = None
    min_available_weight: Optional[float] = None

    def matches(self, trip: Trip) -> bool:
        if not trip.is_active:
            return False
        if self.departure_airport and not _contains(
            trip.departure_airport, self.departure_airport
        ):
            return False
        if self.destination_city and not _contains(
            trip.destination_city, self.destination_city
        ):
            return False
        if self.departure_date and as_utc(trip.departure_date) < as_utc(
            self.departure_date
        ):
            return False
        if (
            self.min_available_weight is not None
            and trip.available_weight < self.min_available_weight
        ):
            return False
        return True


@dataclass
class PackageFilters:
    sender_city: Optional[str] = None
    receiver_city: Optional[str] = None
    package_type: Optional[str] = None
    max_weight: Optional[float] = None
    delivery_deadline: Optional[datetime] = None

    def matches(self, pkg: Package) -> bool:
        if not pkg.is_active:
            return False
        if self.sender_city and not _contains(pkg.sender_city, self.sender_city):
            return False
        if self.receiver_city and not _contains(
            pkg.receiver_city, self.receiver_city
        ):
            return False
        if self.package_type and pkg.package_type != self.package_type:
            return False
        if self.max_weight is not None and pkg.weight > self.max_weight:
            return False
        if (
            self.delivery_deadline
            and pkg.delivery_deadline
            and as_utc(pkg.delivery_deadline) < as_utc(self.delivery_deadline)
        ):
            return False
        return True


def _contains(value: str, needle: str) -> bool:
    return needle.lower() in (value or "").lower()
