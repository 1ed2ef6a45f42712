"""
Promotions background tasks.

Django-Q2 tasks for reverse index maintenance and promotion expiry.
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Any

from django.core.cache import cache
from django.utils import timezone
from django_q.models import Schedule
from django_q.tasks import schedule

from apps.common.logging import request_context
from apps.common.queue import queue_once, release_queue_lock

from .conf import get_engine_setting
from .constants import ENTITY_PROMOTION, STATUS_ACTIVE, STATUS_EXPIRED, SYSTEM_IDENTITY
from .index import REBUILD_LOCK_KEY, REBUILD_TASK, PromotionIndexService
from .models import ModificationHistory, Promotion

logger = logging.getLogger(__name__)

# Task configuration
TASK_TIME_LIMIT = 600  # 10 minutes
EXPIRE_LOCK_KEY = "promotions:expire"
EXPIRE_LOCK_TIMEOUT = 900
SCHEDULE_CLUSTER = "promotions-cluster"


def rebuild_promotion_index(reason: str = "scheduled") -> dict[str, Any]:
    """
    Rebuild the barcode reverse index from the promotions table.

    Releases the queue lock on exit so the next inconsistency can queue
    another rebuild.
    """
    with request_context():
        logger.info(f"🔨 [PromotionTasks] Rebuilding promotion index ({reason})")
        try:
            result = PromotionIndexService.rebuild(reason=reason)
            return {"success": True, "reason": reason, "result": asdict(result)}
        except Exception as e:
            logger.exception(f"💥 [PromotionTasks] Index rebuild failed: {e}")
            return {"success": False, "reason": reason, "error": str(e)}
        finally:
            release_queue_lock(REBUILD_LOCK_KEY)


def audit_promotion_index() -> dict[str, Any]:
    """Compare the index with the promotions table and queue a rebuild on drift."""
    with request_context():
        report = PromotionIndexService.check_consistency()
        task_id = None
        if not report.is_consistent:
            task_id = rebuild_promotion_index_async(
                f"audit: {len(report.stale)} stale, {len(report.missing)} missing barcode(s)"
            )
        logger.info(f"🔎 [PromotionTasks] Index audit: consistent={report.is_consistent}")
        return {"success": True, **report.to_dict(), "rebuild_task_id": task_id}


def expire_promotions() -> dict[str, Any]:
    """Mark active promotions whose validity window has closed as expired."""
    if not cache.add(EXPIRE_LOCK_KEY, True, EXPIRE_LOCK_TIMEOUT):
        logger.info("⏭️ [PromotionTasks] Expiry already running, skipping")
        return {"success": True, "skipped": True, "expired": 0}

    try:
        now = timezone.now()
        expired_ids: list[str] = []
        for promotion in Promotion.objects.filter(status=STATUS_ACTIVE, valid_to__lt=now).order_by("valid_to"):
            promotion.status = STATUS_EXPIRED
            promotion.save(update_fields=["status", "updated_at"])
            ModificationHistory.record(
                ENTITY_PROMOTION,
                promotion.id,
                "expire",
                SYSTEM_IDENTITY,
                changes={"status": {"old": STATUS_ACTIVE, "new": STATUS_EXPIRED}},
            )
            expired_ids.append(str(promotion.id))

        logger.info(f"⌛ [PromotionTasks] Expired {len(expired_ids)} promotion(s)")
        return {"success": True, "skipped": False, "expired": len(expired_ids), "promotion_ids": expired_ids}
    finally:
        cache.delete(EXPIRE_LOCK_KEY)


# ===============================================================================
# TASK QUEUE WRAPPER FUNCTIONS
# ===============================================================================


def rebuild_promotion_index_async(reason: str = "manual") -> str | None:
    """Queue an index rebuild unless one is already queued."""
    return queue_once(
        REBUILD_LOCK_KEY,
        get_engine_setting("INDEX_REBUILD_LOCK_TIMEOUT"),
        REBUILD_TASK,
        reason,
        timeout=TASK_TIME_LIMIT,
    )


# ===============================================================================
# SCHEDULED TASKS SETUP
# ===============================================================================


def setup_promotion_scheduled_tasks() -> dict[str, str]:
    """Set up the promotions scheduled tasks."""
    tasks_created = {}

    existing_tasks = set(
        Schedule.objects.filter(name__in=["promotions-index-audit", "promotions-expire"]).values_list(
            "name", flat=True
        )
    )

    # Audit the reverse index every hour
    if "promotions-index-audit" not in existing_tasks:
        schedule(
            "apps.promotions.tasks.audit_promotion_index",
            schedule_type=Schedule.HOURLY,
            name="promotions-index-audit",
            cluster=SCHEDULE_CLUSTER,
        )
        tasks_created["index_audit"] = "created"
    else:
        tasks_created["index_audit"] = "already_exists"

    # Expire promotions shortly after midnight
    if "promotions-expire" not in existing_tasks:
        schedule(
            "apps.promotions.tasks.expire_promotions",
            schedule_type=Schedule.CRON,
            cron="5 0 * * *",
            name="promotions-expire",
            cluster=SCHEDULE_CLUSTER,
        )
        tasks_created["expire"] = "created"
    else:
        tasks_created["expire"] = "already_exists"

    logger.info(f"✅ [PromotionTasks] Scheduled tasks setup: {tasks_created}")
    return tasks_created
