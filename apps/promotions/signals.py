"""
Promotion signals
Log promotion creation, trust transitions and status changes.
"""

import logging
from typing import Any

from django.db.models.signals import post_delete, post_save, pre_save
from django.dispatch import receiver

from .constants import VERIFICATION_DISPUTED
from .models import DiscountRule, Promotion

logger = logging.getLogger(__name__)


@receiver(pre_save, sender=Promotion)
def capture_promotion_changes(sender: type[Promotion], instance: Promotion, **kwargs: Any) -> None:
    """
    Capture the previous status and verification status.

    Compared in post_save to log transitions.
    """
    instance._old_status = None
    instance._old_verification_status = None
    if instance._state.adding:
        return
    previous = Promotion.objects.filter(pk=instance.pk).values("status", "verification_status").first()
    if previous is None:
        logger.warning(f"🚨 [Promotions] Promotion {instance.pk} not found in pre_save")
        return
    instance._old_status = previous["status"]
    instance._old_verification_status = previous["verification_status"]


@receiver(post_save, sender=Promotion)
def log_promotion_lifecycle_events(
    sender: type[Promotion], instance: Promotion, created: bool, **kwargs: Any
) -> None:
    """Log creation, status changes and verification transitions"""
    if created:
        logger.info(
            f"🎁 [Promotions] New promotion {instance.id} '{instance.name}' "
            f"({instance.promotion_type}, {instance.gift_selection_type}) by {instance.created_by or 'unknown'}"
        )
        return

    if instance._old_status and instance._old_status != instance.status:
        logger.info(f"🔄 [Promotions] {instance.id} status {instance._old_status} -> {instance.status}")

    old_trust = instance._old_verification_status
    if old_trust and old_trust != instance.verification_status:
        if instance.verification_status == VERIFICATION_DISPUTED:
            logger.warning(
                f"⚠️ [Promotions] {instance.id} disputed "
                f"({instance.dispute_count} dispute(s) vs {instance.verification_count} verification(s))"
            )
        else:
            logger.info(f"🗳️ [Promotions] {instance.id} trust {old_trust} -> {instance.verification_status}")


@receiver(post_delete, sender=Promotion)
def log_promotion_deleted(sender: type[Promotion], instance: Promotion, **kwargs: Any) -> None:
    logger.info(f"🗑️ [Promotions] Promotion {instance.id} '{instance.name}' removed")


@receiver(post_delete, sender=DiscountRule)
def log_discount_rule_deleted(sender: type[DiscountRule], instance: DiscountRule, **kwargs: Any) -> None:
    logger.info(f"🗑️ [DiscountRules] Rule {instance.id} '{instance.name}' ({instance.category}) removed")
