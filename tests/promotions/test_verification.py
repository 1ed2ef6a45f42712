"""
Tests for crowd verification.
"""

import uuid

from django.test import SimpleTestCase, TestCase

from apps.promotions.models import ModificationHistory, Promotion
from apps.promotions.verification import VerificationService, derive_verification_status
from tests.factories import create_promotion


class DeriveVerificationStatusTests(SimpleTestCase):
    """Vote counts map to a status in priority order"""

    def test_thresholds(self):
        cases = {
            (0, 0): "unverified",
            (1, 0): "unverified",
            (2, 0): "pending",
            (4, 0): "pending",
            (5, 0): "verified",
            (4, 2): "pending",
            (6, 2): "verified",
            (5, 2): "pending",
            (1, 2): "disputed",
            (10, 3): "disputed",
            (1, 1): "unverified",
        }
        for (verifications, disputes), expected in cases.items():
            with self.subTest(v=verifications, d=disputes):
                self.assertEqual(derive_verification_status(verifications, disputes), expected)


class VerificationServiceTests(TestCase):
    """Vote casting"""

    def setUp(self):
        self.promotion = create_promotion()

    def _verify(self, *identities):
        for identity in identities:
            result = VerificationService.cast_verify(str(self.promotion.id), identity)
            self.assertTrue(result.is_ok())
        return result.unwrap()

    def test_status_follows_votes(self):
        """Two votes make a promotion pending, five make it verified"""
        self.assertEqual(self._verify("u1").verification_status, "unverified")
        self.assertEqual(self._verify("u2").verification_status, "pending")
        vote = self._verify("u3", "u4", "u5")
        self.assertEqual(vote.verification_status, "verified")
        self.assertEqual(vote.verification_count, 5)

        self.promotion.refresh_from_db()
        self.assertEqual(self.promotion.verification_status, "verified")
        self.assertEqual(self.promotion.verified_by, ["u1", "u2", "u3", "u4", "u5"])

    def test_repeated_vote_is_a_no_op(self):
        """Replaying a vote changes nothing and logs nothing"""
        self._verify("u1")
        vote = self._verify("u1")

        self.assertFalse(vote.changed)
        self.assertEqual(vote.verification_count, 1)
        self.assertEqual(ModificationHistory.objects.filter(entity_id=self.promotion.id, action="verify").count(), 1)

    def test_dispute_replaces_verify(self):
        """A dispute moves the identity from the verify side"""
        self._verify("u1", "u2")
        vote = VerificationService.cast_dispute(str(self.promotion.id), "u1", reason="Offer ended").unwrap()

        self.assertEqual((vote.verification_count, vote.dispute_count), (1, 1))
        self.promotion.refresh_from_db()
        self.assertEqual(self.promotion.verified_by, ["u2"])
        self.assertEqual(self.promotion.disputed_by, ["u1"])
        entry = ModificationHistory.objects.get(entity_id=self.promotion.id, action="dispute")
        self.assertEqual(entry.comment, "Offer ended")

    def test_three_disputes_mark_disputed(self):
        self._verify("u1", "u2", "u3", "u4", "u5", "u6")
        for identity in ("d1", "d2", "d3"):
            vote = VerificationService.cast_dispute(str(self.promotion.id), identity).unwrap()
        self.assertEqual(vote.verification_status, "disputed")

    def test_admin_verify_requires_administrator(self):
        result = VerificationService.cast_admin_verify(str(self.promotion.id), "u1")
        self.assertTrue(result.is_err())

    def test_admin_verify_sets_verified_immediately(self):
        vote = VerificationService.cast_admin_verify(str(self.promotion.id), "admin").unwrap()
        self.assertEqual((vote.verification_status, vote.verification_count), ("verified", 1))

        self.promotion.refresh_from_db()
        self.assertEqual(self.promotion.verification_status, "verified")
        self.assertEqual(self.promotion.admin_verified_by, "admin")

    def test_later_votes_rederive_status(self):
        """Any vote after an admin verification goes back through the thresholds"""
        VerificationService.cast_admin_verify(str(self.promotion.id), "admin")

        vote = self._verify("u1")
        self.assertEqual((vote.verification_status, vote.verification_count), ("pending", 2))

        vote = VerificationService.cast_dispute(str(self.promotion.id), "admin").unwrap()
        self.assertEqual((vote.verification_count, vote.dispute_count), (1, 1))
        self.assertEqual(vote.verification_status, "unverified")

        self.promotion.refresh_from_db()
        self.assertEqual(self.promotion.admin_verified_by, "")

    def test_dispute_after_admin_verify(self):
        VerificationService.cast_admin_verify(str(self.promotion.id), "admin")
        vote = VerificationService.cast_dispute(str(self.promotion.id), "d1").unwrap()
        self.assertEqual(vote.verification_status, "unverified")

        VerificationService.cast_dispute(str(self.promotion.id), "d2")
        vote = VerificationService.cast_dispute(str(self.promotion.id), "d3").unwrap()
        self.assertEqual(vote.verification_status, "disputed")

        self.promotion.refresh_from_db()
        self.assertEqual(self.promotion.admin_verified_by, "admin")

    def test_admin_verify_does_not_double_count(self):
        self._verify("admin")
        vote = VerificationService.cast_admin_verify(str(self.promotion.id), "admin").unwrap()
        self.assertEqual(vote.verification_count, 1)
        self.assertTrue(vote.changed)

    def test_unknown_and_malformed_ids(self):
        self.assertTrue(VerificationService.cast_verify(str(uuid.uuid4()), "u1").is_err())
        self.assertTrue(VerificationService.cast_verify("not-a-uuid", "u1").is_err())

    def test_identity_is_required(self):
        self.assertTrue(VerificationService.cast_verify(str(self.promotion.id), "").is_err())

    def test_merged_promotions_reject_votes(self):
        """Votes on a merged promotion are rejected"""
        Promotion.objects.filter(id=self.promotion.id).update(status="merged", is_active=False)
        result = VerificationService.cast_verify(str(self.promotion.id), "u1")
        self.assertEqual(result.unwrap_err(), "Merged promotions cannot be voted on")
