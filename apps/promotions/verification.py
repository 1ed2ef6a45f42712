"""
Crowd verification for promotions.

Each identity holds at most one vote per promotion. Votes are stored as
identity sets on the promotion row; counts are always the set sizes, so a
replayed vote changes nothing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction

from apps.common.types import Err, Ok, Result

from .conf import get_engine_setting
from .constants import (
    ENTITY_PROMOTION,
    STATUS_MERGED,
    VERIFICATION_DISPUTED,
    VERIFICATION_PENDING,
    VERIFICATION_UNVERIFIED,
    VERIFICATION_VERIFIED,
)
from .models import ModificationHistory, Promotion

logger = logging.getLogger(__name__)

DISPUTE_HARD_LIMIT = 3
DISPUTE_MAJORITY_MINIMUM = 2
VERIFIED_MINIMUM = 5
VERIFIED_RATIO = 3
PENDING_MINIMUM = 2


def derive_verification_status(verifications: int, disputes: int) -> str:
    """Map vote counts to a verification status. Checks run in priority order."""
    if disputes >= DISPUTE_HARD_LIMIT or (disputes > verifications and disputes >= DISPUTE_MAJORITY_MINIMUM):
        return VERIFICATION_DISPUTED
    # ratio v/d >= 3, kept in integers
    ratio_met = verifications >= VERIFIED_RATIO * disputes if disputes else verifications >= VERIFIED_RATIO
    if verifications >= VERIFIED_MINIMUM and ratio_met:
        return VERIFICATION_VERIFIED
    if verifications >= PENDING_MINIMUM:
        return VERIFICATION_PENDING
    return VERIFICATION_UNVERIFIED


@dataclass(frozen=True)
class VoteResult:
    promotion_id: str
    verification_status: str
    verification_count: int
    dispute_count: int
    changed: bool

    def to_dict(self) -> dict[str, object]:
        return {
            "promotion_id": self.promotion_id,
            "verification_status": self.verification_status,
            "verification_count": self.verification_count,
            "dispute_count": self.dispute_count,
            "changed": self.changed,
        }


class VerificationService:
    """Casts verify / dispute / admin-verify votes"""

    @classmethod
    def cast_verify(cls, promotion_id: str, identity: str) -> Result[VoteResult, str]:
        return cls._cast(promotion_id, identity, "verify")

    @classmethod
    def cast_dispute(cls, promotion_id: str, identity: str, reason: str | None = None) -> Result[VoteResult, str]:
        return cls._cast(promotion_id, identity, "dispute", comment=reason or "")

    @classmethod
    def cast_admin_verify(cls, promotion_id: str, identity: str) -> Result[VoteResult, str]:
        admins = get_engine_setting("ADMIN_IDENTITIES")
        if identity not in admins:
            logger.warning(f"🔒 [Verification] {identity} is not an administrator")
            return Err("Only administrators can verify promotions directly")
        return cls._cast(promotion_id, identity, "admin_verify")

    @classmethod
    def _cast(cls, promotion_id: str, identity: str, action: str, comment: str = "") -> Result[VoteResult, str]:
        if not identity:
            return Err("An identity is required to vote")

        with transaction.atomic():
            try:
                promotion = Promotion.objects.select_for_update().get(id=promotion_id)
            except (Promotion.DoesNotExist, DjangoValidationError):
                return Err(f"Promotion {promotion_id} not found")
            if promotion.status == STATUS_MERGED:
                return Err("Merged promotions cannot be voted on")

            verified_by = list(promotion.verified_by or [])
            disputed_by = list(promotion.disputed_by or [])
            before = (verified_by[:], disputed_by[:], promotion.admin_verified_by, promotion.verification_status)

            if action == "dispute":
                if identity in verified_by:
                    verified_by.remove(identity)
                if identity not in disputed_by:
                    disputed_by.append(identity)
                if promotion.admin_verified_by == identity:
                    promotion.admin_verified_by = ""
            else:
                if identity in disputed_by:
                    disputed_by.remove(identity)
                if identity not in verified_by:
                    verified_by.append(identity)
                if action == "admin_verify":
                    promotion.admin_verified_by = identity

            promotion.verified_by = verified_by
            promotion.disputed_by = disputed_by
            promotion.verification_count = len(verified_by)
            promotion.dispute_count = len(disputed_by)
            # Only the admin event itself bypasses the thresholds
            if action == "admin_verify":
                promotion.verification_status = VERIFICATION_VERIFIED
            else:
                promotion.verification_status = derive_verification_status(
                    promotion.verification_count, promotion.dispute_count
                )

            changed = before != (verified_by, disputed_by, promotion.admin_verified_by, promotion.verification_status)
            if changed:
                promotion.save(
                    update_fields=[
                        "verified_by",
                        "disputed_by",
                        "verification_count",
                        "dispute_count",
                        "verification_status",
                        "admin_verified_by",
                        "updated_at",
                    ]
                )
                ModificationHistory.record(
                    ENTITY_PROMOTION,
                    promotion.id,
                    action,
                    identity,
                    changes={
                        "verification_status": {"old": before[3], "new": promotion.verification_status},
                        "verification_count": promotion.verification_count,
                        "dispute_count": promotion.dispute_count,
                    },
                    comment=comment,
                )
                logger.info(
                    f"🗳️ [Verification] {action} on {promotion.id} by {identity}: "
                    f"{promotion.verification_status} ({promotion.verification_count}/{promotion.dispute_count})"
                )

        return Ok(
            VoteResult(
                promotion_id=str(promotion.id),
                verification_status=promotion.verification_status,
                verification_count=promotion.verification_count,
                dispute_count=promotion.dispute_count,
                changed=changed,
            )
        )
