"""
Storage abstraction for Postgres and an in-memory implementation.

Both clients expose the same operations. Cross-entity effects (package status
following its delivery, rating aggregation) are not performed here; see
``luggagelink.matching`` which sequences them inside ``atomic()``.
"""

from __future__ import annotations

import functools
import logging
import threading
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import replace
from typing import Any, Dict, Iterator, Optional, Protocol

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    and_,
    create_engine,
    func,
    or_,
    select,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from luggagelink.errors import DuplicateEmailError, NotFoundError
from luggagelink.records import (
    Delivery,
    DeliveryRole,
    DeliveryStatus,
    Dimensions,
    Message,
    NewDelivery,
    NewMessage,
    NewPackage,
    NewReview,
    NewTrip,
    NewUser,
    Package,
    PackageFilters,
    PackageStatus,
    PaymentStatus,
    Review,
    ReviewRole,
    Trip,
    TripFilters,
    User,
    VerificationStatus,
    as_utc,
    utcnow,
)
from luggagelink.security import hash_password

logger = logging.getLogger(__name__)


class DbClient(Protocol):
    """Interface for marketplace storage."""

    @contextmanager
    def atomic(self) -> Iterator[None]:
        ...

    # Users
    def get_user(self, user_id: int) -> Optional[User]:
        ...

    def get_user_by_email(self, email: str) -> Optional[User]:
        ...

    def create_user(self, payload: NewUser) -> User:
        ...

    def update_user_verification(
        self, user_id: int, flags: dict[str, bool]
    ) -> User:
        ...

    def update_user_rating(
        self, user_id: int, rating: float, review_count: int
    ) -> Optional[User]:
        ...

    # Trips
    def get_trip(self, trip_id: int) -> Optional[Trip]:
        ...

    def get_trips(self, filters: Optional[TripFilters] = None) -> list[Trip]:
        ...

    def get_trips_by_user_id(self, user_id: int) -> list[Trip]:
        ...

    def create_trip(self, payload: NewTrip, user_id: int) -> Trip:
        ...

    def update_trip(self, trip_id: int, changes: dict[str, Any]) -> Optional[Trip]:
        ...

    # Packages
    def get_package(self, package_id: int) -> Optional[Package]:
        ...

    def get_packages(
        self, filters: Optional[PackageFilters] = None
    ) -> list[Package]:
        ...

    def get_packages_by_user_id(self, user_id: int) -> list[Package]:
        ...

    def create_package(self, payload: NewPackage, user_id: int) -> Package:
        ...

    def update_package(
        self, package_id: int, changes: dict[str, Any]
    ) -> Optional[Package]:
        ...

    def set_package_status(
        self, package_id: int, status: PackageStatus
    ) -> Optional[Package]:
        ...

    # Deliveries
    def get_delivery(self, delivery_id: int) -> Optional[Delivery]:
        ...

    def get_deliveries_by_trip_id(self, trip_id: int) -> list[Delivery]:
        ...

    def get_deliveries_by_package_id(self, package_id: int) -> list[Delivery]:
        ...

    def get_deliveries_by_user_id(
        self, user_id: int, role: DeliveryRole
    ) -> list[Delivery]:
        ...

    def create_delivery(self, payload: NewDelivery) -> Delivery:
        ...

    def update_delivery_status(
        self, delivery_id: int, status: DeliveryStatus
    ) -> Optional[Delivery]:
        ...

    def update_payment_status(
        self, delivery_id: int, status: PaymentStatus
    ) -> Optional[Delivery]:
        ...

    # Messages
    def get_message(self, message_id: int) -> Optional[Message]:
        ...

    def get_messages_between_users(self, user_a: int, user_b: int) -> list[Message]:
        ...

    def get_messages_by_user_id(self, user_id: int) -> list[Message]:
        ...

    def create_message(self, payload: NewMessage) -> Message:
        ...

    def mark_message_as_read(self, message_id: int) -> Optional[Message]:
        ...

    # Reviews
    def get_review(self, review_id: int) -> Optional[Review]:
        ...

    def get_reviews_by_user_id(self, user_id: int, role: ReviewRole) -> list[Review]:
        ...

    def get_reviews_by_delivery_id(self, delivery_id: int) -> list[Review]:
        ...

    def create_review(self, payload: NewReview) -> Review:
        ...


def _normalize_changes(changes: dict[str, Any]) -> dict[str, Any]:
    normalized = {}
    for key, value in changes.items():
        if hasattr(value, "tzinfo"):
            value = as_utc(value)
        normalized[key] = value
    return normalized


def _synchronized(method):
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            return method(self, *args, **kwargs)

    return wrapper


class InMemoryDbClient:
    """Dict-backed store for development and tests."""

    def __init__(self):
        self._lock = threading.RLock()
        self.users: Dict[int, User] = {}
        self.trips: Dict[int, Trip] = {}
        self.packages: Dict[int, Package] = {}
        self.deliveries: Dict[int, Delivery] = {}
        self.messages: Dict[int, Message] = {}
        self.reviews: Dict[int, Review] = {}
        self._next_ids: Dict[str, int] = {}
        self.reset()

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._lock:
            for table in self._tables().values():
                table.clear()
            self._next_ids = {name: 1 for name in self._tables()}

    def _tables(self) -> dict[str, dict]:
        return {
            "users": self.users,
            "trips": self.trips,
            "packages": self.packages,
            "deliveries": self.deliveries,
            "messages": self.messages,
            "reviews": self.reviews,
        }

    def _allocate_id(self, table: str) -> int:
        next_id = self._next_ids[table]
        self._next_ids[table] = next_id + 1
        return next_id

    @contextmanager
    def atomic(self) -> Iterator[None]:
        with self._lock:
            # Records are replaced, never mutated, so copying the dicts suffices.
            tables = {name: dict(table) for name, table in self._tables().items()}
            next_ids = dict(self._next_ids)
            try:
                yield
            except Exception:
                for name, table in self._tables().items():
                    table.clear()
                    table.update(tables[name])
                self._next_ids = next_ids
                raise

    # Users

    @_synchronized
    def get_user(self, user_id: int) -> Optional[User]:
        return self.users.get(user_id)

    @_synchronized
    def get_user_by_email(self, email: str) -> Optional[User]:
        for user in self.users.values():
            if user.email.lower() == email.lower():
                return user
        return None

    @_synchronized
    def create_user(self, payload: NewUser) -> User:
        email = payload.email.lower()
        if any(user.email.lower() == email for user in self.users.values()):
            raise DuplicateEmailError(email)
        user = User(
            id=self._allocate_id("users"),
            email=email,
            password=hash_password(payload.password),
            first_name=payload.first_name,
            last_name=payload.last_name,
            profile_image=payload.profile_image,
        )
        self.users[user.id] = user
        return user

    @_synchronized
    def update_user_verification(
        self, user_id: int, flags: dict[str, bool]
    ) -> User:
        user = self.users.get(user_id)
        if not user:
            raise NotFoundError("User not found")
        status = user.verification_status.merged(flags)
        updated = replace(
            user, verification_status=status, is_verified=status.is_complete
        )
        self.users[user_id] = updated
        return updated

    @_synchronized
    def update_user_rating(
        self, user_id: int, rating: float, review_count: int
    ) -> Optional[User]:
        user = self.users.get(user_id)
        if not user:
            return None
        updated = replace(user, rating=rating, review_count=review_count)
        self.users[user_id] = updated
        return updated

    # Trips

    @_synchronized
    def get_trip(self, trip_id: int) -> Optional[Trip]:
        return self.trips.get(trip_id)

    @_synchronized
    def get_trips(self, filters: Optional[TripFilters] = None) -> list[Trip]:
        filters = filters or TripFilters()
        return [trip for trip in self.trips.values() if filters.matches(trip)]

    @_synchronized
    def get_trips_by_user_id(self, user_id: int) -> list[Trip]:
        return [trip for trip in self.trips.values() if trip.user_id == user_id]

    @_synchronized
    def create_trip(self, payload: NewTrip, user_id: int) -> Trip:
        trip = Trip(
            id=self._allocate_id("trips"),
            user_id=user_id,
            departure_airport=payload.departure_airport,
            destination_city=payload.destination_city,
            departure_date=as_utc(payload.departure_date),
            arrival_date=as_utc(payload.arrival_date),
            available_weight=payload.available_weight,
            price_per_kg=payload.price_per_kg,
            airline=payload.airline,
            flight_number=payload.flight_number,
            notes=payload.notes,
        )
        self.trips[trip.id] = trip
        return trip

    @_synchronized
    def update_trip(self, trip_id: int, changes: dict[str, Any]) -> Optional[Trip]:
        trip = self.trips.get(trip_id)
        if not trip:
            return None
        updated = replace(trip, **_normalize_changes(changes))
        self.trips[trip_id] = updated
        return updated

    # Packages

    @_synchronized
    def get_package(self, package_id: int) -> Optional[Package]:
        return self.packages.get(package_id)

    @_synchronized
    def get_packages(
        self, filters: Optional[PackageFilters] = None
    ) -> list[Package]:
        filters = filters or PackageFilters()
        return [pkg for pkg in self.packages.values() if filters.matches(pkg)]

    @_synchronized
    def get_packages_by_user_id(self, user_id: int) -> list[Package]:
        return [pkg for pkg in self.packages.values() if pkg.user_id == user_id]

    @_synchronized
    def create_package(self, payload: NewPackage, user_id: int) -> Package:
        pkg = Package(
            id=self._allocate_id("packages"),
            user_id=user_id,
            sender_city=payload.sender_city,
            receiver_city=payload.receiver_city,
            package_type=payload.package_type,
            weight=payload.weight,
            offered_payment=payload.offered_payment,
            dimensions=payload.dimensions,
            delivery_deadline=as_utc(payload.delivery_deadline),
            description=payload.description,
        )
        self.packages[pkg.id] = pkg
        return pkg

    @_synchronized
    def update_package(
        self, package_id: int, changes: dict[str, Any]
    ) -> Optional[Package]:
        pkg = self.packages.get(package_id)
        if not pkg:
            return None
        updated = replace(pkg, **_normalize_changes(changes))
        self.packages[package_id] = updated
        return updated

    def set_package_status(
        self, package_id: int, status: PackageStatus
    ) -> Optional[Package]:
        return self.update_package(package_id, {"status": PackageStatus(status)})

    # Deliveries

    @_synchronized
    def get_delivery(self, delivery_id: int) -> Optional[Delivery]:
        return self.deliveries.get(delivery_id)

    @_synchronized
    def get_deliveries_by_trip_id(self, trip_id: int) -> list[Delivery]:
        return [d for d in self.deliveries.values() if d.trip_id == trip_id]

    @_synchronized
    def get_deliveries_by_package_id(self, package_id: int) -> list[Delivery]:
        return [d for d in self.deliveries.values() if d.package_id == package_id]

    @_synchronized
    def get_deliveries_by_user_id(
        self, user_id: int, role: DeliveryRole
    ) -> list[Delivery]:
        if role == "traveler":
            return [d for d in self.deliveries.values() if d.traveler_id == user_id]
        return [d for d in self.deliveries.values() if d.sender_id == user_id]

    @_synchronized
    def create_delivery(self, payload: NewDelivery) -> Delivery:
        now = utcnow()
        delivery = Delivery(
            id=self._allocate_id("deliveries"),
            trip_id=payload.trip_id,
            package_id=payload.package_id,
            traveler_id=payload.traveler_id,
            sender_id=payload.sender_id,
            created_at=now,
            updated_at=now,
        )
        self.deliveries[delivery.id] = delivery
        return delivery

    @_synchronized
    def update_delivery_status(
        self, delivery_id: int, status: DeliveryStatus
    ) -> Optional[Delivery]:
        delivery = self.deliveries.get(delivery_id)
        if not delivery:
            return None
        updated = replace(
            delivery, status=DeliveryStatus(status), updated_at=utcnow()
        )
        self.deliveries[delivery_id] = updated
        return updated

    @_synchronized
    def update_payment_status(
        self, delivery_id: int, status: PaymentStatus
    ) -> Optional[Delivery]:
        delivery = self.deliveries.get(delivery_id)
        if not delivery:
            return None
        updated = replace(
            delivery, payment_status=PaymentStatus(status), updated_at=utcnow()
        )
        self.deliveries[delivery_id] = updated
        return updated

    # Messages

    @_synchronized
    def get_message(self, message_id: int) -> Optional[Message]:
        return self.messages.get(message_id)

    @_synchronized
    def get_messages_between_users(self, user_a: int, user_b: int) -> list[Message]:
        pair = {user_a, user_b}
        thread = [
            m
            for m in self.messages.values()
            if {m.sender_id, m.receiver_id} == pair
        ]
        return sorted(thread, key=lambda m: (m.created_at, m.id))

    @_synchronized
    def get_messages_by_user_id(self, user_id: int) -> list[Message]:
        mine = [
            m
            for m in self.messages.values()
            if user_id in (m.sender_id, m.receiver_id)
        ]
        return sorted(mine, key=lambda m: (m.created_at, m.id), reverse=True)

    @_synchronized
    def create_message(self, payload: NewMessage) -> Message:
        message = Message(
            id=self._allocate_id("messages"),
            sender_id=payload.sender_id,
            receiver_id=payload.receiver_id,
            content=payload.content,
        )
        self.messages[message.id] = message
        return message

    @_synchronized
    def mark_message_as_read(self, message_id: int) -> Optional[Message]:
        message = self.messages.get(message_id)
        if not message:
            return None
        updated = replace(message, is_read=True)
        self.messages[message_id] = updated
        return updated

    # Reviews

    @_synchronized
    def get_review(self, review_id: int) -> Optional[Review]:
        return self.reviews.get(review_id)

    @_synchronized
    def get_reviews_by_user_id(self, user_id: int, role: ReviewRole) -> list[Review]:
        if role == "reviewer":
            return [r for r in self.reviews.values() if r.reviewer_id == user_id]
        return [r for r in self.reviews.values() if r.reviewee_id == user_id]

    @_synchronized
    def get_reviews_by_delivery_id(self, delivery_id: int) -> list[Review]:
        return [r for r in self.reviews.values() if r.delivery_id == delivery_id]

    @_synchronized
    def create_review(self, payload: NewReview) -> Review:
        review = Review(
            id=self._allocate_id("reviews"),
            reviewer_id=payload.reviewer_id,
            reviewee_id=payload.reviewee_id,
            rating=payload.rating,
            delivery_id=payload.delivery_id,
            comment=payload.comment,
        )
        self.reviews[review.id] = review
        return review


class PostgresDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresDbClient")
        engine_kwargs: dict[str, Any] = {
            "future": True,
            "pool_pre_ping": True,
            "pool_recycle": 1800,
        }
        if database_url.startswith("sqlite") and ":memory:" in database_url:
            # One shared connection so every thread sees the same database.
            engine_kwargs["poolclass"] = StaticPool
            engine_kwargs["connect_args"] = {"check_same_thread": False}
        self.engine = create_engine(database_url, **engine_kwargs)
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        self._current: ContextVar[Optional[Session]] = ContextVar(
            f"luggagelink_session_{id(self)}", default=None
        )
        Base.metadata.create_all(self.engine)

    @contextmanager
    def _session_scope(self) -> Iterator[Session]:
        session = self._current.get()
        if session is not None:
            yield session
            session.flush()
            return
        with self.Session() as session:
            yield session
            session.commit()

    @contextmanager
    def atomic(self) -> Iterator[None]:
        if self._current.get() is not None:
            yield
            return
        with self.Session() as session:
            token = self._current.set(session)
            try:
                yield
                session.commit()
            except Exception:
                session.rollback()
                raise
            finally:
                self._current.reset(token)

    # Users

    def get_user(self, user_id: int) -> Optional[User]:
        with self._session_scope() as session:
            row = session.get(UserRow, user_id)
            return _user_record(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._session_scope() as session:
            stmt = select(UserRow).where(func.lower(UserRow.email) == email.lower())
            row = session.execute(stmt).scalars().first()
            return _user_record(row) if row else None

    def create_user(self, payload: NewUser) -> User:
        email = payload.email.lower()
        with self._session_scope() as session:
            row = UserRow(
                email=email,
                password=hash_password(payload.password),
                first_name=payload.first_name,
                last_name=payload.last_name,
                profile_image=payload.profile_image,
                is_verified=False,
                verification_status=VerificationStatus().as_dict(),
                created_at=utcnow(),
                rating=0.0,
                review_count=0,
            )
            session.add(row)
            try:
                session.flush()
            except IntegrityError as exc:
                raise DuplicateEmailError(email) from exc
            return _user_record(row)

    def update_user_verification(
        self, user_id: int, flags: dict[str, bool]
    ) -> User:
        with self._session_scope() as session:
            row = session.get(UserRow, user_id)
            if not row:
                raise NotFoundError("User not found")
            status = VerificationStatus.from_dict(row.verification_status).merged(
                flags
            )
            # Reassign so the JSON column is marked dirty.
            row.verification_status = status.as_dict()
            row.is_verified = status.is_complete
            session.flush()
            return _user_record(row)

    def update_user_rating(
        self, user_id: int, rating: float, review_count: int
    ) -> Optional[User]:
        with self._session_scope() as session:
            row = session.get(UserRow, user_id)
            if not row:
                return None
            row.rating = rating
            row.review_count = review_count
            session.flush()
            return _user_record(row)

    # Trips

    def get_trip(self, trip_id: int) -> Optional[Trip]:
        with self._session_scope() as session:
            row = session.get(TripRow, trip_id)
            return _trip_record(row) if row else None

    def get_trips(self, filters: Optional[TripFilters] = None) -> list[Trip]:
        filters = filters or TripFilters()
        stmt = select(TripRow).where(TripRow.is_active.is_(True))
        if filters.departure_airport:
            stmt = stmt.where(
                TripRow.departure_airport.icontains(
                    filters.departure_airport, autoescape=True
                )
            )
        if filters.destination_city:
            stmt = stmt.where(
                TripRow.destination_city.icontains(
                    filters.destination_city, autoescape=True
                )
            )
        if filters.departure_date:
            stmt = stmt.where(
                TripRow.departure_date >= as_utc(filters.departure_date)
            )
        if filters.min_available_weight is not None:
            stmt = stmt.where(
                TripRow.available_weight >= filters.min_available_weight
            )
        with self._session_scope() as session:
            rows = session.execute(stmt.order_by(TripRow.id)).scalars().all()
            return [_trip_record(row) for row in rows]

    def get_trips_by_user_id(self, user_id: int) -> list[Trip]:
        stmt = select(TripRow).where(TripRow.user_id == user_id).order_by(TripRow.id)
        with self._session_scope() as session:
            return [_trip_record(row) for row in session.execute(stmt).scalars()]

    def create_trip(self, payload: NewTrip, user_id: int) -> Trip:
        with self._session_scope() as session:
            row = TripRow(
                user_id=user_id,
                departure_airport=payload.departure_airport,
                destination_city=payload.destination_city,
                departure_date=as_utc(payload.departure_date),
                arrival_date=as_utc(payload.arrival_date),
                airline=payload.airline,
                flight_number=payload.flight_number,
                available_weight=payload.available_weight,
                price_per_kg=payload.price_per_kg,
                notes=payload.notes,
                is_active=True,
                created_at=utcnow(),
            )
            session.add(row)
            session.flush()
            return _trip_record(row)

    def update_trip(self, trip_id: int, changes: dict[str, Any]) -> Optional[Trip]:
        with self._session_scope() as session:
            row = session.get(TripRow, trip_id)
            if not row:
                return None
            for key, value in _normalize_changes(changes).items():
                setattr(row, key, value)
            session.flush()
            return _trip_record(row)

    # Packages

    def get_package(self, package_id: int) -> Optional[Package]:
        with self._session_scope() as session:
            row = session.get(PackageRow, package_id)
            return _package_record(row) if row else None

    def get_packages(
        self, filters: Optional[PackageFilters] = None
    ) -> list[Package]:
        filters = filters or PackageFilters()
        stmt = select(PackageRow).where(PackageRow.is_active.is_(True))
        if filters.sender_city:
            stmt = stmt.where(
                PackageRow.sender_city.icontains(filters.sender_city, autoescape=True)
            )
        if filters.receiver_city:
            stmt = stmt.where(
                PackageRow.receiver_city.icontains(
                    filters.receiver_city, autoescape=True
                )
            )
        if filters.package_type:
            stmt = stmt.where(PackageRow.package_type == filters.package_type)
        if filters.max_weight is not None:
            stmt = stmt.where(PackageRow.weight <= filters.max_weight)
        if filters.delivery_deadline:
            stmt = stmt.where(
                or_(
                    PackageRow.delivery_deadline.is_(None),
                    PackageRow.delivery_deadline
                    >= as_utc(filters.delivery_deadline),
                )
            )
        with self._session_scope() as session:
            rows = session.execute(stmt.order_by(PackageRow.id)).scalars().all()
            return [_package_record(row) for row in rows]

    def get_packages_by_user_id(self, user_id: int) -> list[Package]:
        stmt = (
            select(PackageRow)
            .where(PackageRow.user_id == user_id)
            .order_by(PackageRow.id)
        )
        with self._session_scope() as session:
            return [_package_record(row) for row in session.execute(stmt).scalars()]

    def create_package(self, payload: NewPackage, user_id: int) -> Package:
        with self._session_scope() as session:
            row = PackageRow(
                user_id=user_id,
                sender_city=payload.sender_city,
                receiver_city=payload.receiver_city,
                package_type=payload.package_type,
                weight=payload.weight,
                dimensions=payload.dimensions.as_dict() if payload.dimensions else None,
                delivery_deadline=as_utc(payload.delivery_deadline),
                offered_payment=payload.offered_payment,
                description=payload.description,
                status=PackageStatus.PENDING.value,
                is_active=True,
                created_at=utcnow(),
            )
            session.add(row)
            session.flush()
            return _package_record(row)

    def update_package(
        self, package_id: int, changes: dict[str, Any]
    ) -> Optional[Package]:
        with self._session_scope() as session:
            row = session.get(PackageRow, package_id)
            if not row:
                return None
            for key, value in _normalize_changes(changes).items():
                if isinstance(value, Dimensions):
                    value = value.as_dict()
                elif isinstance(value, PackageStatus):
                    value = value.value
                setattr(row, key, value)
            session.flush()
            return _package_record(row)

    def set_package_status(
        self, package_id: int, status: PackageStatus
    ) -> Optional[Package]:
        return self.update_package(package_id, {"status": PackageStatus(status)})

    # Deliveries

    def get_delivery(self, delivery_id: int) -> Optional[Delivery]:
        with self._session_scope() as session:
            row = session.get(DeliveryRow, delivery_id)
            return _delivery_record(row) if row else None

    def _deliveries_where(self, *criteria) -> list[Delivery]:
        stmt = select(DeliveryRow).where(*criteria).order_by(DeliveryRow.id)
        with self._session_scope() as session:
            return [_delivery_record(row) for row in session.execute(stmt).scalars()]

    def get_deliveries_by_trip_id(self, trip_id: int) -> list[Delivery]:
        return self._deliveries_where(DeliveryRow.trip_id == trip_id)

    def get_deliveries_by_package_id(self, package_id: int) -> list[Delivery]:
        return self._deliveries_where(DeliveryRow.package_id == package_id)

    def get_deliveries_by_user_id(
        self, user_id: int, role: DeliveryRole
    ) -> list[Delivery]:
        column = DeliveryRow.traveler_id if role == "traveler" else DeliveryRow.sender_id
        return self._deliveries_where(column == user_id)

    def create_delivery(self, payload: NewDelivery) -> Delivery:
        now = utcnow()
        with self._session_scope() as session:
            row = DeliveryRow(
                trip_id=payload.trip_id,
                package_id=payload.package_id,
                traveler_id=payload.traveler_id,
                sender_id=payload.sender_id,
                status=DeliveryStatus.PENDING.value,
                payment_status=PaymentStatus.PENDING.value,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.flush()
            return _delivery_record(row)

    def update_delivery_status(
        self, delivery_id: int, status: DeliveryStatus
    ) -> Optional[Delivery]:
        with self._session_scope() as session:
            row = session.get(DeliveryRow, delivery_id)
            if not row:
                return None
            row.status = DeliveryStatus(status).value
            row.updated_at = utcnow()
            session.flush()
            return _delivery_record(row)

    def update_payment_status(
        self, delivery_id: int, status: PaymentStatus
    ) -> Optional[Delivery]:
        with self._session_scope() as session:
            row = session.get(DeliveryRow, delivery_id)
            if not row:
                return None
            row.payment_status = PaymentStatus(status).value
            row.updated_at = utcnow()
            session.flush()
            return _delivery_record(row)

    # Messages

    def get_message(self, message_id: int) -> Optional[Message]:
        with self._session_scope() as session:
            row = session.get(MessageRow, message_id)
            return _message_record(row) if row else None

    def get_messages_between_users(self, user_a: int, user_b: int) -> list[Message]:
        stmt = (
            select(MessageRow)
            .where(
                or_(
                    and_(
                        MessageRow.sender_id == user_a,
                        MessageRow.receiver_id == user_b,
                    ),
                    and_(
                        MessageRow.sender_id == user_b,
                        MessageRow.receiver_id == user_a,
                    ),
                )
            )
            .order_by(MessageRow.created_at.asc(), MessageRow.id.asc())
        )
        with self._session_scope() as session:
            return [_message_record(row) for row in session.execute(stmt).scalars()]

    def get_messages_by_user_id(self, user_id: int) -> list[Message]:
        stmt = (
            select(MessageRow)
            .where(
                or_(MessageRow.sender_id == user_id, MessageRow.receiver_id == user_id)
            )
            .order_by(MessageRow.created_at.desc(), MessageRow.id.desc())
        )
        with self._session_scope() as session:
            return [_message_record(row) for row in session.execute(stmt).scalars()]

    def create_message(self, payload: NewMessage) -> Message:
        with self._session_scope() as session:
            row = MessageRow(
                sender_id=payload.sender_id,
                receiver_id=payload.receiver_id,
                content=payload.content,
                is_read=False,
                created_at=utcnow(),
            )
            session.add(row)
            session.flush()
            return _message_record(row)

    def mark_message_as_read(self, message_id: int) -> Optional[Message]:
        with self._session_scope() as session:
            row = session.get(MessageRow, message_id)
            if not row:
                return None
            row.is_read = True
            session.flush()
            return _message_record(row)

    # Reviews

    def get_review(self, review_id: int) -> Optional[Review]:
        with self._session_scope() as session:
            row = session.get(ReviewRow, review_id)
            return _review_record(row) if row else None

    def _reviews_where(self, *criteria) -> list[Review]:
        stmt = select(ReviewRow).where(*criteria).order_by(ReviewRow.id)
        with self._session_scope() as session:
            return [_review_record(row) for row in session.execute(stmt).scalars()]

    def get_reviews_by_user_id(self, user_id: int, role: ReviewRole) -> list[Review]:
        column = ReviewRow.reviewer_id if role == "reviewer" else ReviewRow.reviewee_id
        return self._reviews_where(column == user_id)

    def get_reviews_by_delivery_id(self, delivery_id: int) -> list[Review]:
        return self._reviews_where(ReviewRow.delivery_id == delivery_id)

    def create_review(self, payload: NewReview) -> Review:
        with self._session_scope() as session:
            row = ReviewRow(
                reviewer_id=payload.reviewer_id,
                reviewee_id=payload.reviewee_id,
                delivery_id=payload.delivery_id,
                rating=payload.rating,
                comment=payload.comment,
                created_at=utcnow(),
            )
            session.add(row)
            session.flush()
            return _review_record(row)


Base = declarative_base()


class UserRow(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    password = Column(Text, nullable=False)
    email = Column(Text, nullable=False, unique=True)
    first_name = Column(Text, nullable=False)
    last_name = Column(Text, nullable=False)
    profile_image = Column(Text, nullable=True)
    is_verified = Column(Boolean, nullable=False, default=False)
    verification_status = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    rating = Column(Float, nullable=False, default=0.0)
    review_count = Column(Integer, nullable=False, default=0)


class TripRow(Base):
    __tablename__ = "trips"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    departure_airport = Column(Text, nullable=False)
    destination_city = Column(Text, nullable=False)
    departure_date = Column(DateTime(timezone=True), nullable=False)
    arrival_date = Column(DateTime(timezone=True), nullable=False)
    airline = Column(Text, nullable=True)
    flight_number = Column(Text, nullable=True)
    available_weight = Column(Float, nullable=False)
    price_per_kg = Column(Float, nullable=False)
    notes = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False)


class PackageRow(Base):
    __tablename__ = "packages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    sender_city = Column(Text, nullable=False)
    receiver_city = Column(Text, nullable=False)
    package_type = Column(Text, nullable=False)
    weight = Column(Float, nullable=False)
    dimensions = Column(JSON, nullable=True)
    delivery_deadline = Column(DateTime(timezone=True), nullable=True)
    offered_payment = Column(Float, nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String, nullable=False, default=PackageStatus.PENDING.value)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False)


class DeliveryRow(Base):
    __tablename__ = "deliveries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    trip_id = Column(Integer, ForeignKey("trips.id"), nullable=False, index=True)
    package_id = Column(
        Integer, ForeignKey("packages.id"), nullable=False, index=True
    )
    traveler_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(String, nullable=False, default=DeliveryStatus.PENDING.value)
    payment_status = Column(
        String, nullable=False, default=PaymentStatus.PENDING.value
    )
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True)


class MessageRow(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    receiver_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False)


class ReviewRow(Base):
    __tablename__ = "reviews"

    id = Column(Integer, primary_key=True, autoincrement=True)
    reviewer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    reviewee_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    delivery_id = Column(Integer, ForeignKey("deliveries.id"), nullable=True)
    rating = Column(Integer, nullable=False)
    comment = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)


def _user_record(row: UserRow) -> User:
    return User(
        id=row.id,
        email=row.email,
        password=row.password,
        first_name=row.first_name,
        last_name=row.last_name,
        profile_image=row.profile_image,
        is_verified=bool(row.is_verified),
        verification_status=VerificationStatus.from_dict(row.verification_status),
        created_at=as_utc(row.created_at),
        rating=row.rating or 0.0,
        review_count=row.review_count or 0,
    )


def _trip_record(row: TripRow) -> Trip:
    return Trip(
        id=row.id,
        user_id=row.user_id,
        departure_airport=row.departure_airport,
        destination_city=row.destination_city,
        departure_date=as_utc(row.departure_date),
        arrival_date=as_utc(row.arrival_date),
        available_weight=row.available_weight,
        price_per_kg=row.price_per_kg,
        airline=row.airline,
        flight_number=row.flight_number,
        notes=row.notes,
        is_active=bool(row.is_active),
        created_at=as_utc(row.created_at),
    )


def _package_record(row: PackageRow) -> Package:
    return Package(
        id=row.id,
        user_id=row.user_id,
        sender_city=row.sender_city,
        receiver_city=row.receiver_city,
        package_type=row.package_type,
        weight=row.weight,
        offered_payment=row.offered_payment,
        dimensions=Dimensions.from_dict(row.dimensions),
        delivery_deadline=as_utc(row.delivery_deadline),
        description=row.description,
        status=PackageStatus(row.status),
        is_active=bool(row.is_active),
        created_at=as_utc(row.created_at),
    )


def _delivery_record(row: DeliveryRow) -> Delivery:
    return Delivery(
        id=row.id,
        trip_id=row.trip_id,
        package_id=row.package_id,
        traveler_id=row.traveler_id,
        sender_id=row.sender_id,
        status=DeliveryStatus(row.status),
        payment_status=PaymentStatus(row.payment_status),
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def _message_record(row: MessageRow) -> Message:
    return Message(
        id=row.id,
        sender_id=row.sender_id,
        receiver_id=row.receiver_id,
        content=row.content,
        is_read=bool(row.is_read),
        created_at=as_utc(row.created_at),
    )


def _review_record(row: ReviewRow) -> Review:
    return Review(
        id=row.id,
        reviewer_id=row.reviewer_id,
        reviewee_id=row.reviewee_id,
        rating=row.rating,
        delivery_id=row.delivery_id,
        comment=row.comment,
        created_at=as_utc(row.created_at),
    )
