"""
Barcode reverse index for crowd promotions.

Every write is a single-row, idempotent add/remove under a row lock. The
index is a cache of the ``promotions`` table: when a lookup finds an id that
no longer resolves, a full rebuild is queued rather than patched in place.
"""

from __future__ import annotations

import time
import uuid
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field

from django.db import IntegrityError, transaction

from apps.common.logging import get_logger
from apps.common.queue import queue_once

from .conf import get_engine_setting
from .constants import STATUS_MERGED
from .models import Promotion, PromotionIndex

logger = get_logger(__name__, component="promotion_index")

REBUILD_LOCK_KEY = "promotions:index_rebuild"
REBUILD_TASK = "apps.promotions.tasks.rebuild_promotion_index"


def parse_uuids(ids: Iterable[str]) -> list[uuid.UUID]:
    """Ids that parse as UUIDs; anything else can never match a row"""
    parsed: list[uuid.UUID] = []
    for raw in ids:
        try:
            parsed.append(uuid.UUID(str(raw)))
        except ValueError:
            continue
    return parsed


def normalize_id(raw: str) -> str:
    """Canonical lowercase form of a UUID id; other ids come back unchanged"""
    try:
        return str(uuid.UUID(str(raw)))
    except ValueError:
        return str(raw)


@dataclass
class IndexRebuildResult:
    barcodes: int
    promotions: int
    removed_rows: int
    duration_ms: int


@dataclass
class IndexConsistencyReport:
    """Differences between the stored index and the one implied by ``promotions``."""

    stale: dict[str, list[str]] = field(default_factory=dict)  # indexed but should not be
    missing: dict[str, list[str]] = field(default_factory=dict)  # should be indexed but is not

    @property
    def is_consistent(self) -> bool:
        return not self.stale and not self.missing

    def to_dict(self) -> dict[str, object]:
        return {"is_consistent": self.is_consistent, "stale": self.stale, "missing": self.missing}


class PromotionIndexService:
    """Maintains and queries the barcode -> promotion ids index"""

    # ===============================================================================
    # Single-row writes
    # ===============================================================================

    @staticmethod
    @transaction.atomic
    def upsert_index_entry(
        barcode: str, add_ids: Iterable[str] = (), remove_ids: Iterable[str] = ()
    ) -> list[str]:
        """
        Add and remove promotion ids on one barcode row.

        Safe to repeat: the row holds a set, so replaying the same call leaves
        it unchanged. The row is deleted once it holds no ids.

        Returns:
            The ids stored for the barcode after the write.
        """
        to_add = {str(promotion_id) for promotion_id in add_ids}
        to_remove = {str(promotion_id) for promotion_id in remove_ids}

        row = PromotionIndex.objects.select_for_update().filter(barcode=barcode).first()
        if row is None:
            if not to_add - to_remove:
                return []
            try:
                with transaction.atomic():
                    row = PromotionIndex.objects.create(barcode=barcode, promotion_ids=[])
            except IntegrityError:
                # Another writer created the row first
                row = PromotionIndex.objects.select_for_update().get(barcode=barcode)

        ids = sorted((set(row.promotion_ids) | to_add) - to_remove)
        if not ids:
            row.delete()
            logger.debug(f"🗑️ [PromotionIndex] Dropped empty row for {barcode}")
            return []
        if ids != row.promotion_ids:
            row.promotion_ids = ids
            row.save(update_fields=["promotion_ids", "last_updated"])
        return ids

    @classmethod
    def add_promotion(cls, promotion: Promotion, barcodes: Iterable[str] | None = None) -> None:
        for barcode in sorted(promotion.indexed_barcodes() if barcodes is None else barcodes):
            cls.upsert_index_entry(barcode, add_ids=[str(promotion.id)])

    @classmethod
    def remove_promotion(cls, promotion_id: str, barcodes: Iterable[str]) -> None:
        for barcode in sorted(barcodes):
            cls.upsert_index_entry(barcode, remove_ids=[str(promotion_id)])

    @classmethod
    def sync_promotion(cls, promotion: Promotion, previous_barcodes: set[str]) -> tuple[set[str], set[str]]:
        """Apply the barcode diff after an edit. Returns (added, removed)."""
        current = promotion.indexed_barcodes()
        added = current - previous_barcodes
        removed = previous_barcodes - current
        cls.add_promotion(promotion, added)
        cls.remove_promotion(str(promotion.id), removed)
        if added or removed:
            logger.info(
                f"🔁 [PromotionIndex] {promotion.id}: +{len(added)} / -{len(removed)} barcode(s)",
                promotion_id=str(promotion.id),
            )
        return added, removed

    @staticmethod
    @transaction.atomic
    def delete_index_entries_referencing(promotion_id: str) -> int:
        """
        Remove a promotion id from every row that lists it.

        JSON containment lookups are not portable across backends, so rows are
        scanned in Python. Returns the number of rows touched.
        """
        promotion_id = str(promotion_id)
        touched = 0
        for row in PromotionIndex.objects.select_for_update().order_by("barcode"):
            if promotion_id not in row.promotion_ids:
                continue
            touched += 1
            remaining = [pid for pid in row.promotion_ids if pid != promotion_id]
            if remaining:
                row.promotion_ids = remaining
                row.save(update_fields=["promotion_ids", "last_updated"])
            else:
                row.delete()
        logger.info(f"🧹 [PromotionIndex] Removed {promotion_id} from {touched} row(s)", promotion_id=promotion_id)
        return touched

    # ===============================================================================
    # Reads
    # ===============================================================================

    @staticmethod
    def find_promotion_ids(barcode: str) -> list[str]:
        row = PromotionIndex.objects.filter(barcode=barcode).first()
        return list(row.promotion_ids) if row else []

    @classmethod
    def find_promotions_by_barcode(cls, barcode: str) -> list[Promotion]:
        """
        Promotions listed for a barcode, in default promotion order.

        Ids that no longer resolve to a live, non-merged promotion are skipped
        and reported so the index gets rebuilt.
        """
        ids = cls.find_promotion_ids(barcode)
        if not ids:
            return []
        promotions = list(
            Promotion.objects.filter(id__in=parse_uuids(ids)).exclude(status=STATUS_MERGED)
        )
        stale = sorted(set(ids) - {str(promotion.id) for promotion in promotions})
        if stale:
            cls.report_inconsistency(barcode, stale)
        return promotions

    @staticmethod
    def report_inconsistency(barcode: str, stale_ids: list[str]) -> str | None:
        """Log stale ids and queue one full rebuild. Returns the task id if queued."""
        logger.warning(
            f"⚠️ [PromotionIndex] {len(stale_ids)} stale id(s) on {barcode}: {', '.join(stale_ids)}",
            barcode=barcode,
        )
        if not get_engine_setting("REBUILD_ON_INCONSISTENCY"):
            return None
        return queue_once(
            REBUILD_LOCK_KEY,
            get_engine_setting("INDEX_REBUILD_LOCK_TIMEOUT"),
            REBUILD_TASK,
            f"stale ids on {barcode}",
        )

    # ===============================================================================
    # Rebuild and audit
    # ===============================================================================

    @staticmethod
    def expected_index() -> dict[str, set[str]]:
        expected: dict[str, set[str]] = defaultdict(set)
        for promotion in Promotion.objects.exclude(status=STATUS_MERGED).only(
            "id", "applicable_type", "applicable_products", "gift_products", "constraints"
        ):
            for barcode in promotion.indexed_barcodes():
                expected[barcode].add(str(promotion.id))
        return dict(expected)

    @classmethod
    @transaction.atomic
    def rebuild(cls, reason: str = "manual") -> IndexRebuildResult:
        """Replace the whole index with the one derived from ``promotions``."""
        started = time.monotonic()
        expected = cls.expected_index()
        removed_rows, _details = PromotionIndex.objects.all().delete()
        PromotionIndex.objects.bulk_create(
            [PromotionIndex(barcode=barcode, promotion_ids=sorted(ids)) for barcode, ids in sorted(expected.items())]
        )
        result = IndexRebuildResult(
            barcodes=len(expected),
            promotions=len({pid for ids in expected.values() for pid in ids}),
            removed_rows=removed_rows,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        logger.info(
            f"🔨 [PromotionIndex] Rebuilt ({reason}): {result.barcodes} barcode(s), "
            f"{result.promotions} promotion(s) in {result.duration_ms}ms",
            reason=reason,
        )
        return result

    @classmethod
    def check_consistency(cls) -> IndexConsistencyReport:
        expected = cls.expected_index()
        actual = {row.barcode: set(row.promotion_ids) for row in PromotionIndex.objects.all()}
        report = IndexConsistencyReport()
        for barcode in sorted(set(expected) | set(actual)):
            want = expected.get(barcode, set())
            have = actual.get(barcode, set())
            if have - want:
                report.stale[barcode] = sorted(have - want)
            if want - have:
                report.missing[barcode] = sorted(want - have)
        if not report.is_consistent:
            logger.warning(
                f"⚠️ [PromotionIndex] Audit found {len(report.stale)} stale and {len(report.missing)} missing row(s)"
            )
        return report
