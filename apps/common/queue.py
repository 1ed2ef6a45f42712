"""
Django-Q2 queue utilities for the promotions platform
Task enqueueing by dotted path, with optional cache-lock de-duplication.
"""

from __future__ import annotations

import logging
from typing import Any

from django.core.cache import cache
from django_q.tasks import async_task

logger = logging.getLogger(__name__)


def queue_by_name(func_path: str, *args: Any, **kwargs: Any) -> str:
    """Enqueue a task by dotted path (prevents import cycles in services)."""
    return async_task(func_path, *args, **kwargs)


def queue_once(lock_key: str, lock_timeout: int, func_path: str, *args: Any, **kwargs: Any) -> str | None:
    """
    Enqueue a task unless an identical one was enqueued within ``lock_timeout`` seconds.

    The lock is taken with ``cache.add`` so concurrent callers cannot both win.
    The task itself is expected to release the lock when it finishes.

    Returns:
        The django-q2 task id, or None when the lock was already held.
    """
    if not cache.add(lock_key, True, lock_timeout):
        logger.info(f"⏭️ [Queue] {func_path} already queued under {lock_key}, skipping")
        return None
    return queue_by_name(func_path, *args, **kwargs)


def release_queue_lock(lock_key: str) -> None:
    """Release a lock taken by :func:`queue_once`."""
    cache.delete(lock_key)
