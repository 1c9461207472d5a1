"""Derived cost columns of a job card.

The labor, parts, total and final amounts are never edited directly: every
line-item change calls ``recompute_costs`` in the same unit of work, which
re-aggregates the children from scratch.
"""
import logging

from django.db.models import Sum

from common.errors import NotFoundError
from common.utils import ZERO, to_money
from garage.models import JobCard

logger = logging.getLogger("garage.engine")


def recompute_costs(uow, job_card_id) -> JobCard:
    uow.ensure_active()
    try:
        job_card = JobCard.objects.select_for_update().get(pk=job_card_id)
    except JobCard.DoesNotExist as exc:
        raise NotFoundError("job card", "Job card not found") from exc

    labor_cost = job_card.services.aggregate(total=Sum("total_cost"))["total"] or ZERO
    parts_cost = job_card.parts.aggregate(total=Sum("total_price"))["total"] or ZERO

    job_card.labor_cost = to_money(labor_cost)
    job_card.parts_cost = to_money(parts_cost)
    job_card.total_cost = to_money(labor_cost + parts_cost)
    job_card.final_amount = to_money(job_card.total_cost - job_card.discount)
    job_card.save(update_fields=["labor_cost", "parts_cost", "total_cost", "final_amount", "updated_at"])

    logger.debug(
        "job_card_costs_recomputed labor=%s parts=%s total=%s",
        job_card.labor_cost,
        job_card.parts_cost,
        job_card.total_cost,
        extra={"job_card_id": str(job_card.id)},
    )
    return job_card
