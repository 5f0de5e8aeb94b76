import unittest
from unittest import mock

from luggagelink import matching
from luggagelink.db import InMemoryDbClient, PostgresDbClient
from luggagelink.errors import InvalidTransitionError
from luggagelink.records import (
    DELIVERY_TRANSITIONS,
    PAYMENT_TRANSITIONS,
    DeliveryStatus,
    NewDelivery,
    NewReview,
    PackageStatus,
    PaymentStatus,
)
from luggagelink.tests.test_db import new_package, new_trip, new_user


class MatchingContract:
    def make_db(self):
        raise NotImplementedError

    def setUp(self):
        self.db = self.make_db()
        self.traveler = self.db.create_user(new_user("traveler@luggagelink.io"))
        self.sender = self.db.create_user(new_user("sender@luggagelink.io"))
        self.trip = self.db.create_trip(new_trip(), self.traveler.id)
        self.package = self.db.create_package(new_package(), self.sender.id)

    def _match(self):
        return matching.create_delivery(
            self.db,
            NewDelivery(
                trip_id=self.trip.id,
                package_id=self.package.id,
                traveler_id=self.traveler.id,
                sender_id=self.sender.id,
            ),
        )

    def test_create_delivery_marks_package_matched(self):
        delivery = self._match()
        self.assertEqual(delivery.status, DeliveryStatus.PENDING)
        self.assertEqual(
            self.db.get_package(self.package.id).status, PackageStatus.MATCHED
        )

    def test_create_delivery_overrides_prior_package_status(self):
        self.db.set_package_status(self.package.id, PackageStatus.DELIVERED)
        self._match()
        self.assertEqual(
            self.db.get_package(self.package.id).status, PackageStatus.MATCHED
        )

    def test_delivered_status_propagates_to_package(self):
        delivery = self._match()
        updated = matching.update_delivery_status(
            self.db, delivery.id, DeliveryStatus.DELIVERED
        )
        self.assertEqual(updated.status, DeliveryStatus.DELIVERED)
        self.assertEqual(
            self.db.get_package(self.package.id).status, PackageStatus.DELIVERED
        )

    def test_other_statuses_leave_package_alone(self):
        delivery = self._match()
        for status in (DeliveryStatus.ACCEPTED, DeliveryStatus.IN_TRANSIT):
            matching.update_delivery_status(self.db, delivery.id, status)
            self.assertEqual(
                self.db.get_package(self.package.id).status, PackageStatus.MATCHED
            )
        matching.update_delivery_status(self.db, delivery.id, DeliveryStatus.CANCELLED)
        self.assertEqual(
            self.db.get_package(self.package.id).status, PackageStatus.MATCHED
        )

    def test_backward_transition_rejected(self):
        delivery = self._match()
        matching.update_delivery_status(self.db, delivery.id, DeliveryStatus.IN_TRANSIT)
        with self.assertRaises(InvalidTransitionError) as ctx:
            matching.update_delivery_status(
                self.db, delivery.id, DeliveryStatus.ACCEPTED
            )
        self.assertIn("in_transit", str(ctx.exception))
        self.assertEqual(
            self.db.get_delivery(delivery.id).status, DeliveryStatus.IN_TRANSIT
        )

    def test_transitions_unenforced_when_disabled(self):
        delivery = self._match()
        matching.update_delivery_status(self.db, delivery.id, DeliveryStatus.DELIVERED)
        updated = matching.update_delivery_status(
            self.db,
            delivery.id,
            DeliveryStatus.PENDING,
            enforce_transitions=False,
        )
        self.assertEqual(updated.status, DeliveryStatus.PENDING)

    def test_same_status_is_allowed(self):
        delivery = self._match()
        updated = matching.update_delivery_status(
            self.db, delivery.id, DeliveryStatus.PENDING
        )
        self.assertEqual(updated.status, DeliveryStatus.PENDING)

    def test_payment_transitions(self):
        delivery = self._match()
        updated = matching.update_payment_status(
            self.db, delivery.id, PaymentStatus.IN_ESCROW
        )
        self.assertEqual(updated.payment_status, PaymentStatus.IN_ESCROW)
        matching.update_payment_status(self.db, delivery.id, PaymentStatus.RELEASED)
        with self.assertRaises(InvalidTransitionError):
            matching.update_payment_status(
                self.db, delivery.id, PaymentStatus.REFUNDED
            )
        # Payment never touches the delivery lifecycle.
        self.assertEqual(
            self.db.get_delivery(delivery.id).status, DeliveryStatus.PENDING
        )

    def test_missing_delivery_returns_none(self):
        self.assertIsNone(
            matching.update_delivery_status(self.db, 999, DeliveryStatus.ACCEPTED)
        )
        self.assertIsNone(
            matching.update_payment_status(self.db, 999, PaymentStatus.IN_ESCROW)
        )

    def test_rating_is_mean_of_all_reviews(self):
        others = [
            self.db.create_user(new_user(f"reviewer{i}@luggagelink.io"))
            for i in range(3)
        ]
        for reviewer, rating in zip(others, (5, 4, 2)):
            matching.create_review(
                self.db,
                NewReview(
                    reviewer_id=reviewer.id,
                    reviewee_id=self.traveler.id,
                    rating=rating,
                ),
            )
        user = self.db.get_user(self.traveler.id)
        self.assertEqual(user.review_count, 3)
        self.assertAlmostEqual(user.rating, 11 / 3)
        # Reviewers are unaffected.
        self.assertEqual(self.db.get_user(others[0].id).review_count, 0)

    def test_failed_package_update_rolls_back_delivery(self):
        with mock.patch.object(
            self.db, "set_package_status", side_effect=RuntimeError("boom")
        ):
            with self.assertRaises(RuntimeError):
                self._match()
        self.assertEqual(self.db.get_deliveries_by_package_id(self.package.id), [])
        self.assertEqual(
            self.db.get_package(self.package.id).status, PackageStatus.PENDING
        )


class InMemoryMatchingTests(MatchingContract, unittest.TestCase):
    def make_db(self):
        return InMemoryDbClient()


class SqlMatchingTests(MatchingContract, unittest.TestCase):
    def make_db(self):
        return PostgresDbClient("sqlite+pysqlite:///:memory:")

    def tearDown(self):
        self.db.engine.dispose()


class TransitionTableTests(unittest.TestCase):
    def test_terminal_states_have_no_exits(self):
        for status in (DeliveryStatus.DELIVERED, DeliveryStatus.CANCELLED):
            self.assertEqual(DELIVERY_TRANSITIONS[status], frozenset())
        for status in (PaymentStatus.RELEASED, PaymentStatus.REFUNDED):
            self.assertEqual(PAYMENT_TRANSITIONS[status], frozenset())

    def test_pending_may_jump_to_delivered(self):
        self.assertTrue(
            matching.can_transition(
                DELIVERY_TRANSITIONS, DeliveryStatus.PENDING, DeliveryStatus.DELIVERED
            )
        )
        self.assertFalse(
            matching.can_transition(
                DELIVERY_TRANSITIONS, DeliveryStatus.CANCELLED, DeliveryStatus.PENDING
            )
        )


if __name__ == "__main__":
    unittest.main()
