"""Coalesced reads of job cards.

Every observer of the same job card shares one ``LiveAggregate``; writes
publish after commit so observers only ever see committed state.
"""
import logging
import threading

from django.conf import settings

from common.coalescer import AggregateReadCoalescer
from common.errors import NotFoundError
from garage.models import JobCard
from garage.serializers import JobCardDetailSerializer

logger = logging.getLogger(__name__)

JOB_CARD = "job_card"

_coalescer = None
_coalescer_lock = threading.Lock()


def get_coalescer() -> AggregateReadCoalescer:
    global _coalescer
    with _coalescer_lock:
        if _coalescer is None:
            _coalescer = AggregateReadCoalescer(grace_period=getattr(settings, "READ_COALESCER_GRACE_SECONDS", 5.0))
        return _coalescer


def reset_coalescer(grace_period=None) -> AggregateReadCoalescer:
    """Swap in a fresh coalescer; existing subscriptions keep their old handles."""
    global _coalescer
    with _coalescer_lock:
        if grace_period is None:
            grace_period = getattr(settings, "READ_COALESCER_GRACE_SECONDS", 5.0)
        _coalescer = AggregateReadCoalescer(grace_period=grace_period)
        return _coalescer


def load_job_card(job_card_id) -> dict:
    job_card = (
        JobCard.objects.select_related("vehicle__customer", "assigned_technician")
        .prefetch_related("services", "parts")
        .filter(pk=job_card_id)
        .first()
    )
    if job_card is None:
        raise NotFoundError("job card", "Job card not found")
    return JobCardDetailSerializer(job_card).data


def observe_job_card(job_card_id, callback):
    return get_coalescer().subscribe(JOB_CARD, job_card_id, lambda: load_job_card(job_card_id), callback)


def read_job_card(job_card_id) -> dict:
    with observe_job_card(job_card_id, None) as subscription:
        return subscription.value


def publish_job_card(job_card_id) -> bool:
    refreshed = get_coalescer().publish(JOB_CARD, job_card_id)
    if refreshed:
        logger.debug("job_card_published", extra={"job_card_id": str(job_card_id)})
    return refreshed
