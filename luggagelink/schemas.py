"""
Pydantic schemas for request bodies. Field names are snake_case in Python and
camelCase on the wire.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import ClassVar, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from luggagelink.records import (
    DeliveryStatus,
    Dimensions,
    NewDelivery,
    NewPackage,
    NewTrip,
    NewUser,
    PaymentStatus,
    as_utc,
    utcnow,
)

AIRPORT_PATTERN = re.compile(
    r"^([A-Z]{3}|\w+[\w\s-]*\s*(international|airport|intl).*)$", re.IGNORECASE
)


def _not_in_past(value: Optional[datetime], label: str) -> Optional[datetime]:
    if value is None:
        return value
    today = utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
    if as_utc(value) < today:
        raise ValueError(f"{label} must be today or in the future")
    return as_utc(value)


def _valid_airport(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    value = value.strip()
    if len(value) < 3:
        raise ValueError("Airport code must be at least 3 characters")
    if not AIRPORT_PATTERN.match(value):
        raise ValueError(
            "Please enter a valid airport code (e.g., JFK, LAX) or full airport name"
        )
    return value


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PartialUpdate(ApiModel):
    """Partial update; fields listed in ``non_nullable`` may be omitted but not nulled."""

    non_nullable: ClassVar[tuple[str, ...]] = ()

    @model_validator(mode="after")
    def _reject_nulls(self):
        for name in self.non_nullable:
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{to_camel(name)} cannot be null")
        return self

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True)


class RegisterRequest(ApiModel):
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    profile_image: Optional[str] = None

    def to_record(self) -> NewUser:
        return NewUser(
            email=str(self.email),
            password=self.password,
            first_name=self.first_name,
            last_name=self.last_name,
            profile_image=self.profile_image,
        )


class LoginRequest(ApiModel):
    email: str
    password: str


class TripCreate(ApiModel):
    departure_airport: str
    destination_city: str = Field(..., min_length=1)
    departure_date: datetime
    arrival_date: datetime
    airline: Optional[str] = None
    flight_number: Optional[str] = None
    available_weight: float = Field(..., gt=0)
    price_per_kg: float = Field(..., ge=0)
    notes: Optional[str] = None

    @field_validator("departure_airport")
    @classmethod
    def _check_airport(cls, value: str) -> str:
        return _valid_airport(value)

    @field_validator("departure_date")
    @classmethod
    def _check_departure(cls, value: datetime) -> datetime:
        return _not_in_past(value, "Departure date")

    @field_validator("arrival_date")
    @classmethod
    def _check_arrival(cls, value: datetime) -> datetime:
        return _not_in_past(value, "Arrival date")

    @model_validator(mode="after")
    def _check_order(self):
        if self.arrival_date < self.departure_date:
            raise ValueError("Arrival date must be on or after the departure date")
        return self

    def to_record(self) -> NewTrip:
        return NewTrip(**self.model_dump())


class TripUpdate(PartialUpdate):
    non_nullable: ClassVar[tuple[str, ...]] = (
        "departure_airport",
        "destination_city",
        "departure_date",
        "arrival_date",
        "available_weight",
        "price_per_kg",
        "is_active",
    )

    departure_airport: Optional[str] = None
    destination_city: Optional[str] = Field(default=None, min_length=1)
    departure_date: Optional[datetime] = None
    arrival_date: Optional[datetime] = None
    airline: Optional[str] = None
    flight_number: Optional[str] = None
    available_weight: Optional[float] = Field(default=None, gt=0)
    price_per_kg: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = None
    is_active: Optional[bool] = None

    @field_validator("departure_airport")
    @classmethod
    def _check_airport(cls, value: Optional[str]) -> Optional[str]:
        return _valid_airport(value)

    @field_validator("departure_date")
    @classmethod
    def _check_departure(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _not_in_past(value, "Departure date")

    @field_validator("arrival_date")
    @classmethod
    def _check_arrival(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _not_in_past(value, "Arrival date")


class DimensionsModel(ApiModel):
    length: float = Field(..., gt=0)
    width: float = Field(..., gt=0)
    height: float = Field(..., gt=0)

    def to_record(self) -> Dimensions:
        return Dimensions(length=self.length, width=self.width, height=self.height)


class PackageCreate(ApiModel):
    sender_city: str = Field(..., min_length=1)
    receiver_city: str = Field(..., min_length=1)
    package_type: str = Field(..., min_length=1)
    weight: float = Field(..., gt=0)
    dimensions: Optional[DimensionsModel] = None
    delivery_deadline: Optional[datetime] = None
    offered_payment: float = Field(..., ge=0)
    description: Optional[str] = None

    def to_record(self) -> NewPackage:
        return NewPackage(
            sender_city=self.sender_city,
            receiver_city=self.receiver_city,
            package_type=self.package_type,
            weight=self.weight,
            offered_payment=self.offered_payment,
            dimensions=self.dimensions.to_record() if self.dimensions else None,
            delivery_deadline=as_utc(self.delivery_deadline),
            description=self.description,
        )


class PackageUpdate(PartialUpdate):
    non_nullable: ClassVar[tuple[str, ...]] = (
        "sender_city",
        "receiver_city",
        "package_type",
        "weight",
        "offered_payment",
        "is_active",
    )

    sender_city: Optional[str] = Field(default=None, min_length=1)
    receiver_city: Optional[str] = Field(default=None, min_length=1)
    package_type: Optional[str] = Field(default=None, min_length=1)
    weight: Optional[float] = Field(default=None, gt=0)
    dimensions: Optional[DimensionsModel] = None
    delivery_deadline: Optional[datetime] = None
    offered_payment: Optional[float] = Field(default=None, ge=0)
    description: Optional[str] = None
    is_active: Optional[bool] = None

    def changes(self) -> dict:
        changes = super().changes()
        if "dimensions" in changes:
            changes["dimensions"] = (
                self.dimensions.to_record() if self.dimensions else None
            )
        return changes


class DeliveryCreate(ApiModel):
    trip_id: int
    package_id: int
    traveler_id: int
    sender_id: int

    def to_record(self) -> NewDelivery:
        return NewDelivery(**self.model_dump())


class DeliveryStatusUpdate(ApiModel):
    status: DeliveryStatus


class PaymentStatusUpdate(ApiModel):
    payment_status: PaymentStatus


class MessageCreate(ApiModel):
    receiver_id: int
    content: str = Field(..., min_length=1, max_length=5000)


class ReviewCreate(ApiModel):
    reviewee_id: int
    delivery_id: Optional[int] = None
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(default=None, max_length=2000)


class VerificationRequest(ApiModel):
    verification_type: Optional[str] = None
    inquiry_id: Optional[str] = None
