"""Per-day sequential identifiers such as ``JC-2024-0115-0001``.

``allocate`` is the pure formatter. ``SequenceNumberAllocator`` serializes
allocation through a locked ``SequenceCounter`` row per (prefix, day), so two
concurrent creations on the same day can never read the same count. The
counter write belongs to the caller's unit of work: a rolled back creation
hands its number back.
"""
from __future__ import annotations

import logging
from datetime import date, datetime

from django.utils import timezone

from common.utils import local_day_bounds
from core.models import SequenceCounter

logger = logging.getLogger(__name__)

JOB_CARD_PREFIX = "JC"
INVOICE_PREFIX = "INV"


def allocate(prefix: str, window_start: datetime, window_end: datetime, count_in_window: int) -> str:
    if count_in_window < 0:
        raise ValueError("count_in_window must not be negative.")
    if window_end < window_start:
        raise ValueError("window_end must not precede window_start.")
    serial = count_in_window + 1
    return f"{prefix}-{window_start:%Y}-{window_start:%m%d}-{serial:04d}"


def day_window(day: date | None = None) -> tuple[datetime, datetime]:
    return local_day_bounds(day or timezone.localdate())


class SequenceNumberAllocator:
    def __init__(self, prefix: str, model, timestamp_field: str = "created_at"):
        self.prefix = prefix
        self.model = model
        self.timestamp_field = timestamp_field

    def count_in_window(self, window_start: datetime, window_end: datetime) -> int:
        return self.model.objects.filter(
            **{
                f"{self.timestamp_field}__gte": window_start,
                f"{self.timestamp_field}__lte": window_end,
            }
        ).count()

    def next_number(self, uow, day: date | None = None) -> str:
        uow.ensure_active()
        day = day or timezone.localdate()
        window_start, window_end = day_window(day)

        SequenceCounter.objects.get_or_create(prefix=self.prefix, day=day)
        counter = SequenceCounter.objects.select_for_update().get(prefix=self.prefix, day=day)

        # Rows created before the counter existed still count towards the serial.
        count = max(counter.last_value, self.count_in_window(window_start, window_end))
        number = allocate(self.prefix, window_start, window_end, count)

        counter.last_value = count + 1
        counter.save(update_fields=["last_value"])
        logger.debug("sequence_allocated prefix=%s number=%s", self.prefix, number)
        return number
