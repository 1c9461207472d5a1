import logging
from decimal import Decimal

from django.utils import timezone

from common.errors import InvalidStateError, NotFoundError, ValidationError
from common.results import returns_result
from common.unit_of_work import UnitOfWork
from common.utils import to_money
from core.sequences import JOB_CARD_PREFIX, SequenceNumberAllocator
from garage.ledger import recompute_costs
from garage.models import JobCard, JobCardPart, JobCardService, Vehicle, Worker
from garage.reads import publish_job_card
from inventory.models import InventoryItem, StockTransaction
from inventory.services import InventoryStockGuard

logger = logging.getLogger("garage.engine")

EDITABLE_STATUSES = {
    JobCard.Status.PENDING,
    JobCard.Status.IN_PROGRESS,
    JobCard.Status.COMPLETED,
}

STATUS_TRANSITIONS = {
    JobCard.Status.PENDING: {JobCard.Status.IN_PROGRESS, JobCard.Status.CANCELLED},
    JobCard.Status.IN_PROGRESS: {JobCard.Status.COMPLETED, JobCard.Status.CANCELLED},
    JobCard.Status.COMPLETED: {JobCard.Status.DELIVERED, JobCard.Status.CANCELLED},
    JobCard.Status.DELIVERED: set(),
    JobCard.Status.CANCELLED: set(),
}

job_card_numbers = SequenceNumberAllocator(JOB_CARD_PREFIX, JobCard)


def _has_live_invoice(job_card) -> bool:
    from billing.models import Invoice

    return Invoice.objects.filter(job_card=job_card).exclude(payment_status=Invoice.PaymentStatus.CANCELLED).exists()


def _lock_job_card(job_card_id) -> JobCard:
    try:
        return JobCard.objects.select_for_update().get(pk=job_card_id)
    except JobCard.DoesNotExist as exc:
        raise NotFoundError("job card", "Job card not found") from exc


def _lock_editable_job_card(job_card_id) -> JobCard:
    job_card = _lock_job_card(job_card_id)
    if job_card.status not in EDITABLE_STATUSES:
        raise InvalidStateError(
            f"Job card is {job_card.get_status_display().lower()} and can no longer be changed",
            {"status": job_card.status},
        )
    if _has_live_invoice(job_card):
        raise InvalidStateError("Job card has already been invoiced and can no longer be changed")
    return job_card


def _positive_quantity(quantity):
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("Quantity must be greater than zero")
    return quantity


@returns_result
def create_job_card(
    vehicle_id,
    customer_complaints,
    current_kilometers=0,
    assigned_technician_id=None,
    priority=JobCard.Priority.NORMAL,
    estimated_completion_date=None,
):
    if not (customer_complaints or "").strip():
        raise ValidationError("Customer complaints are required")
    if current_kilometers is None or current_kilometers < 0:
        raise ValidationError("Kilometers cannot be negative")
    if priority not in JobCard.Priority.values:
        raise ValidationError(f"Unknown priority {priority}")

    with UnitOfWork() as uow:
        vehicle = Vehicle.objects.select_for_update().filter(pk=vehicle_id).first()
        if vehicle is None:
            raise NotFoundError("vehicle", "Vehicle not found")
        technician = None
        if assigned_technician_id is not None:
            technician = Worker.objects.filter(pk=assigned_technician_id).first()
            if technician is None:
                raise NotFoundError("worker", "Technician not found")

        job_card = JobCard.objects.create(
            job_card_number=job_card_numbers.next_number(uow),
            vehicle=vehicle,
            assigned_technician=technician,
            priority=priority,
            current_kilometers=current_kilometers,
            customer_complaints=customer_complaints.strip(),
            estimated_completion_date=estimated_completion_date,
        )
        if current_kilometers > vehicle.current_kilometers:
            vehicle.current_kilometers = current_kilometers
            vehicle.save(update_fields=["current_kilometers", "updated_at"])

    logger.info(
        "job_card_created number=%s",
        job_card.job_card_number,
        extra={"job_card_id": str(job_card.id)},
    )
    return job_card


@returns_result
def add_service(job_card_id, service_name, labor_cost, quantity=1, description=None):
    service_name = (service_name or "").strip()
    if not service_name:
        raise ValidationError("Service name is required")
    labor_cost = to_money(labor_cost)
    if labor_cost <= 0:
        raise ValidationError("Labor cost must be greater than zero")
    _positive_quantity(quantity)

    with UnitOfWork() as uow:
        job_card = _lock_editable_job_card(job_card_id)
        service = JobCardService.objects.create(
            job_card=job_card,
            service_name=service_name,
            description=description or "",
            quantity=quantity,
            labor_cost=labor_cost,
            total_cost=to_money(labor_cost * quantity),
        )
        recompute_costs(uow, job_card.id)
        uow.on_commit(lambda: publish_job_card(job_card.id))

    logger.info("job_card_service_added name=%s", service_name, extra={"job_card_id": str(job_card.id)})
    return service


@returns_result
def remove_service(job_card_id, service_id):
    with UnitOfWork() as uow:
        job_card = _lock_editable_job_card(job_card_id)
        deleted, _ = JobCardService.objects.filter(pk=service_id, job_card=job_card).delete()
        if not deleted:
            raise NotFoundError("service", "Service not found on this job card")
        job_card = recompute_costs(uow, job_card.id)
        uow.on_commit(lambda: publish_job_card(job_card.id))

    logger.info("job_card_service_removed", extra={"job_card_id": str(job_card.id)})
    return job_card


@returns_result
def add_part(job_card_id, item_id, quantity, unit_price=None, notes=None):
    _positive_quantity(quantity)

    with UnitOfWork() as uow:
        job_card = _lock_editable_job_card(job_card_id)
        item = InventoryItem.objects.filter(pk=item_id).first()
        if item is None:
            raise NotFoundError("inventory item", "Inventory item not found")
        unit_price = to_money(item.selling_price if unit_price is None else unit_price)
        if unit_price <= Decimal("0"):
            raise ValidationError("Unit price must be greater than zero")

        part = JobCardPart.objects.create(
            job_card=job_card,
            item=item,
            part_name=item.name,
            part_number=item.part_number,
            quantity=quantity,
            unit_price=unit_price,
            total_price=to_money(unit_price * quantity),
            notes=notes or "",
        )
        InventoryStockGuard(uow).debit(
            item.id,
            quantity,
            kind=StockTransaction.Kind.JOB_CARD_ISSUE,
            reference=part,
            notes=job_card.job_card_number,
        )
        recompute_costs(uow, job_card.id)
        uow.on_commit(lambda: publish_job_card(job_card.id))

    logger.info(
        "job_card_part_added part_number=%s quantity=%s",
        part.part_number,
        quantity,
        extra={"job_card_id": str(job_card.id), "item_id": str(item.id)},
    )
    return part


@returns_result
def remove_part(job_card_id, part_id):
    with UnitOfWork() as uow:
        job_card = _lock_editable_job_card(job_card_id)
        part = JobCardPart.objects.filter(pk=part_id, job_card=job_card).first()
        if part is None:
            raise NotFoundError("part", "Part not found on this job card")
        item_id = part.item_id
        InventoryStockGuard(uow).credit(
            item_id,
            part.quantity,
            kind=StockTransaction.Kind.JOB_CARD_RETURN,
            reference=part,
            notes=job_card.job_card_number,
        )
        part.delete()
        job_card = recompute_costs(uow, job_card.id)
        uow.on_commit(lambda: publish_job_card(job_card.id))

    logger.info("job_card_part_removed", extra={"job_card_id": str(job_card.id), "item_id": str(item_id)})
    return job_card


@returns_result
def change_status(job_card_id, new_status, *, when=None):
    if new_status not in JobCard.Status.values:
        raise ValidationError(f"Unknown job card status {new_status}")

    with UnitOfWork() as uow:
        job_card = _lock_job_card(job_card_id)
        current = JobCard.Status(job_card.status)
        target = JobCard.Status(new_status)
        if target == current:
            return job_card
        if target not in STATUS_TRANSITIONS[current]:
            raise InvalidStateError(
                f"Cannot change job card status from {current.label} to {target.label}",
                {"from": current.value, "to": target.value},
            )
        if target == JobCard.Status.CANCELLED and _has_live_invoice(job_card):
            raise InvalidStateError("Cannot cancel a job card that has an active invoice")

        stamp = when or timezone.now()
        update_fields = ["status", "updated_at"]
        job_card.status = target
        if target == JobCard.Status.COMPLETED:
            job_card.actual_completion_date = stamp
            update_fields.append("actual_completion_date")
        elif target == JobCard.Status.DELIVERED:
            job_card.delivery_date = stamp
            update_fields.append("delivery_date")
        job_card.save(update_fields=update_fields)
        uow.on_commit(lambda: publish_job_card(job_card.id))

    logger.info(
        "job_card_status_changed from=%s to=%s",
        current.value,
        target.value,
        extra={"job_card_id": str(job_card.id)},
    )
    return job_card
