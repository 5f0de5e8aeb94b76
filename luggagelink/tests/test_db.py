import unittest
from datetime import datetime, timedelta, timezone

from luggagelink.db import InMemoryDbClient, PostgresDbClient
from luggagelink.errors import DuplicateEmailError, NotFoundError
from luggagelink.records import (
    DeliveryStatus,
    Dimensions,
    NewDelivery,
    NewMessage,
    NewPackage,
    NewReview,
    NewTrip,
    NewUser,
    PackageFilters,
    PackageStatus,
    PaymentStatus,
    TripFilters,
)

NOW = datetime.now(timezone.utc)


def new_user(email: str) -> NewUser:
    return NewUser(
        email=email, password="secret-pass", first_name="Abebe", last_name="Kebede"
    )


def new_trip(**overrides) -> NewTrip:
    fields = dict(
        departure_airport="JFK",
        destination_city="Addis Ababa",
        departure_date=NOW + timedelta(days=10),
        arrival_date=NOW + timedelta(days=11),
        available_weight=10.0,
        price_per_kg=15.0,
    )
    fields.update(overrides)
    return NewTrip(**fields)


def new_package(**overrides) -> NewPackage:
    fields = dict(
        sender_city="New York",
        receiver_city="Addis Ababa",
        package_type="documents",
        weight=5.0,
        offered_payment=100.0,
    )
    fields.update(overrides)
    return NewPackage(**fields)


def ids(items) -> list[int]:
    return [item.id for item in items]


class StoreContract:
    """Behaviour every DbClient must share; mixed into a TestCase per backend."""

    def make_db(self):
        raise NotImplementedError

    def setUp(self):
        self.db = self.make_db()
        self.alice = self.db.create_user(new_user("alice@luggagelink.io"))
        self.bob = self.db.create_user(new_user("bob@luggagelink.io"))

    def test_create_user_hashes_password_and_sets_defaults(self):
        self.assertNotEqual(self.alice.password, "secret-pass")
        self.assertIn(".", self.alice.password)
        self.assertEqual(self.alice.rating, 0.0)
        self.assertEqual(self.alice.review_count, 0)
        self.assertFalse(self.alice.is_verified)
        self.assertLess(self.alice.id, self.bob.id)

    def test_get_unknown_ids_return_none(self):
        self.assertIsNone(self.db.get_user(999))
        self.assertIsNone(self.db.get_trip(999))
        self.assertIsNone(self.db.get_package(999))
        self.assertIsNone(self.db.get_delivery(999))
        self.assertIsNone(self.db.get_message(999))
        self.assertIsNone(self.db.get_review(999))
        self.assertIsNone(self.db.update_trip(999, {"notes": "x"}))
        self.assertIsNone(self.db.update_delivery_status(999, DeliveryStatus.ACCEPTED))

    def test_get_user_by_email_is_case_insensitive(self):
        found = self.db.get_user_by_email("ALICE@LuggageLink.io")
        self.assertIsNotNone(found)
        self.assertEqual(found.id, self.alice.id)
        self.assertIsNone(self.db.get_user_by_email("nobody@luggagelink.io"))

    def test_verification_requires_all_three_flags(self):
        user = self.db.update_user_verification(self.alice.id, {"idVerified": True})
        self.assertTrue(user.verification_status.id_verified)
        self.assertFalse(user.is_verified)
        self.db.update_user_verification(self.alice.id, {"phoneVerified": True})
        user = self.db.update_user_verification(
            self.alice.id, {"addressVerified": True}
        )
        self.assertTrue(user.is_verified)
        self.assertTrue(self.db.get_user(self.alice.id).is_verified)

    def test_verification_unknown_user_raises(self):
        with self.assertRaises(NotFoundError):
            self.db.update_user_verification(999, {"idVerified": True})

    def test_trip_filters(self):
        jfk = self.db.create_trip(new_trip(), self.alice.id)
        lax = self.db.create_trip(
            new_trip(
                departure_airport="LAX",
                destination_city="Gondar",
                departure_date=NOW + timedelta(days=40),
                arrival_date=NOW + timedelta(days=41),
                available_weight=3.0,
            ),
            self.bob.id,
        )

        self.assertEqual(ids(self.db.get_trips()), [jfk.id, lax.id])
        self.assertEqual(ids(self.db.get_trips(TripFilters())), [jfk.id, lax.id])
        self.assertEqual(
            ids(self.db.get_trips(TripFilters(departure_airport="jf"))), [jfk.id]
        )
        self.assertEqual(
            ids(self.db.get_trips(TripFilters(destination_city="ADDIS"))), [jfk.id]
        )
        self.assertEqual(
            ids(self.db.get_trips(TripFilters(min_available_weight=10.0))), [jfk.id]
        )
        self.assertEqual(
            ids(
                self.db.get_trips(
                    TripFilters(departure_date=NOW + timedelta(days=40))
                )
            ),
            [lax.id],
        )
        self.assertEqual(
            ids(
                self.db.get_trips(
                    TripFilters(departure_airport="lax", min_available_weight=5)
                )
            ),
            [],
        )

    def test_inactive_trips_hidden_from_listing_but_not_owner_view(self):
        trip = self.db.create_trip(new_trip(), self.alice.id)
        self.db.update_trip(trip.id, {"is_active": False})
        self.assertEqual(self.db.get_trips(), [])
        self.assertEqual(
            [t.id for t in self.db.get_trips_by_user_id(self.alice.id)], [trip.id]
        )

    def test_update_trip_merges_fields(self):
        trip = self.db.create_trip(new_trip(), self.alice.id)
        updated = self.db.update_trip(trip.id, {"notes": "Two suitcases", "price_per_kg": 12.5})
        self.assertEqual(updated.notes, "Two suitcases")
        self.assertEqual(updated.price_per_kg, 12.5)
        self.assertEqual(updated.departure_airport, "JFK")

    def test_package_filters(self):
        docs = self.db.create_package(new_package(), self.bob.id)
        heavy = self.db.create_package(
            new_package(
                sender_city="Washington",
                receiver_city="Bahir Dar",
                package_type="electronics",
                weight=8.0,
                delivery_deadline=NOW + timedelta(days=5),
            ),
            self.bob.id,
        )
        later = self.db.create_package(
            new_package(weight=2.0, delivery_deadline=NOW + timedelta(days=60)),
            self.alice.id,
        )

        self.assertEqual(ids(self.db.get_packages()), [docs.id, heavy.id, later.id])
        self.assertEqual(
            ids(self.db.get_packages(PackageFilters(sender_city="york"))),
            [docs.id, later.id],
        )
        self.assertEqual(
            ids(self.db.get_packages(PackageFilters(package_type="electronics"))),
            [heavy.id],
        )
        self.assertEqual(
            ids(self.db.get_packages(PackageFilters(package_type="Electronics"))), []
        )
        self.assertEqual(
            ids(self.db.get_packages(PackageFilters(max_weight=5.0))),
            [docs.id, later.id],
        )
        # Packages without a deadline are never excluded by the deadline filter.
        self.assertEqual(
            ids(
                self.db.get_packages(
                    PackageFilters(delivery_deadline=NOW + timedelta(days=30))
                )
            ),
            [docs.id, later.id],
        )

    def test_package_dimensions_roundtrip(self):
        pkg = self.db.create_package(
            new_package(dimensions=Dimensions(length=30, width=20, height=10)),
            self.bob.id,
        )
        fetched = self.db.get_package(pkg.id)
        self.assertEqual(fetched.dimensions, Dimensions(length=30, width=20, height=10))
        self.assertEqual(fetched.status, PackageStatus.PENDING)

    def test_create_delivery_does_not_touch_package(self):
        trip = self.db.create_trip(new_trip(), self.alice.id)
        pkg = self.db.create_package(new_package(), self.bob.id)
        delivery = self.db.create_delivery(
            NewDelivery(
                trip_id=trip.id,
                package_id=pkg.id,
                traveler_id=self.alice.id,
                sender_id=self.bob.id,
            )
        )
        self.assertEqual(delivery.status, DeliveryStatus.PENDING)
        self.assertEqual(delivery.payment_status, PaymentStatus.PENDING)
        self.assertIsNotNone(delivery.updated_at)
        self.assertEqual(self.db.get_package(pkg.id).status, PackageStatus.PENDING)
        self.assertEqual(
            [d.id for d in self.db.get_deliveries_by_trip_id(trip.id)], [delivery.id]
        )
        self.assertEqual(
            [d.id for d in self.db.get_deliveries_by_package_id(pkg.id)],
            [delivery.id],
        )
        self.assertEqual(
            [d.id for d in self.db.get_deliveries_by_user_id(self.alice.id, "traveler")],
            [delivery.id],
        )
        self.assertEqual(
            self.db.get_deliveries_by_user_id(self.alice.id, "sender"), []
        )

    def test_messages_ordering(self):
        first = self.db.create_message(
            NewMessage(sender_id=self.alice.id, receiver_id=self.bob.id, content="hi")
        )
        second = self.db.create_message(
            NewMessage(sender_id=self.bob.id, receiver_id=self.alice.id, content="hey")
        )
        carol = self.db.create_user(new_user("carol@luggagelink.io"))
        third = self.db.create_message(
            NewMessage(sender_id=carol.id, receiver_id=self.alice.id, content="yo")
        )

        forward = [m.id for m in self.db.get_messages_between_users(self.alice.id, self.bob.id)]
        backward = [m.id for m in self.db.get_messages_between_users(self.bob.id, self.alice.id)]
        self.assertEqual(forward, [first.id, second.id])
        self.assertEqual(forward, backward)
        self.assertEqual(
            [m.id for m in self.db.get_messages_by_user_id(self.alice.id)],
            [third.id, second.id, first.id],
        )

    def test_mark_message_as_read(self):
        message = self.db.create_message(
            NewMessage(sender_id=self.alice.id, receiver_id=self.bob.id, content="hi")
        )
        self.assertFalse(message.is_read)
        self.assertTrue(self.db.mark_message_as_read(message.id).is_read)
        self.assertTrue(self.db.get_message(message.id).is_read)
        self.assertIsNone(self.db.mark_message_as_read(999))

    def test_reviews_by_role(self):
        review = self.db.create_review(
            NewReview(reviewer_id=self.alice.id, reviewee_id=self.bob.id, rating=4)
        )
        self.assertEqual(
            [r.id for r in self.db.get_reviews_by_user_id(self.alice.id, "reviewer")],
            [review.id],
        )
        self.assertEqual(
            [r.id for r in self.db.get_reviews_by_user_id(self.bob.id, "reviewee")],
            [review.id],
        )
        self.assertEqual(self.db.get_reviews_by_user_id(self.alice.id, "reviewee"), [])
        # Storage alone does not aggregate ratings.
        self.assertEqual(self.db.get_user(self.bob.id).review_count, 0)

    def test_duplicate_email_rejected_regardless_of_case(self):
        self.assertEqual(self.alice.email, "alice@luggagelink.io")
        with self.assertRaises(DuplicateEmailError):
            self.db.create_user(new_user("ALICE@LuggageLink.io"))
        carol = self.db.create_user(new_user("Carol@LuggageLink.io"))
        self.assertEqual(carol.email, "carol@luggagelink.io")
        self.assertEqual(self.db.get_user_by_email("carol@luggagelink.io").id, carol.id)

    def test_atomic_rolls_back_on_error(self):
        trip = self.db.create_trip(new_trip(), self.alice.id)
        with self.assertRaises(RuntimeError):
            with self.db.atomic():
                self.db.update_trip(trip.id, {"notes": "changed"})
                self.db.create_package(new_package(), self.bob.id)
                raise RuntimeError("boom")
        self.assertIsNone(self.db.get_trip(trip.id).notes)
        self.assertEqual(self.db.get_packages_by_user_id(self.bob.id), [])

    def test_atomic_commits_together(self):
        trip = self.db.create_trip(new_trip(), self.alice.id)
        with self.db.atomic():
            self.db.update_trip(trip.id, {"notes": "changed"})
            pkg = self.db.create_package(new_package(), self.bob.id)
        self.assertEqual(self.db.get_trip(trip.id).notes, "changed")
        self.assertIsNotNone(self.db.get_package(pkg.id))


class InMemoryDbClientTests(StoreContract, unittest.TestCase):
    def make_db(self):
        return InMemoryDbClient()

    def test_reset_clears_tables_and_counters(self):
        self.db.create_trip(new_trip(), self.alice.id)
        self.db.reset()
        self.assertEqual(self.db.get_trips(), [])
        user = self.db.create_user(new_user("again@luggagelink.io"))
        self.assertEqual(user.id, 1)

    def test_rollback_restores_the_original_records(self):
        trip = self.db.create_trip(new_trip(), self.alice.id)
        before = self.db.get_trip(trip.id)
        with self.assertRaises(RuntimeError):
            with self.db.atomic():
                self.db.update_trip(trip.id, {"notes": "changed"})
                raise RuntimeError("boom")
        self.assertIs(self.db.get_trip(trip.id), before)
        self.assertEqual(self.db.create_trip(new_trip(), self.bob.id).id, trip.id + 1)


class PostgresDbClientTests(StoreContract, unittest.TestCase):
    """
    Uses SQLite via SQLAlchemy URL for fast/local testing of the Postgres client logic.
    """

    def make_db(self):
        return PostgresDbClient("sqlite+pysqlite:///:memory:")

    def tearDown(self):
        self.db.engine.dispose()

    def test_requires_url(self):
        with self.assertRaises(ValueError):
            PostgresDbClient("")


if __name__ == "__main__":
    unittest.main()
