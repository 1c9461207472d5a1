import logging

from django.db import IntegrityError
from django.utils import timezone

from billing.calculator import calculate_invoice
from billing.models import Invoice
from common.errors import DuplicateInvoiceError, InvalidStateError, NotFoundError
from common.results import returns_result
from common.unit_of_work import UnitOfWork
from core.sequences import INVOICE_PREFIX, SequenceNumberAllocator
from core.settings_provider import get_default_tax_rate
from garage.models import Customer, JobCard

logger = logging.getLogger("garage.engine")

INVOICEABLE_STATUSES = {JobCard.Status.COMPLETED, JobCard.Status.DELIVERED}

DEFAULT_TERMS_AND_CONDITIONS = "\n".join(
    [
        "1. Payment is due upon receipt of this invoice.",
        "2. All work is guaranteed for 30 days from the date of service.",
        "3. Parts warranty is as per manufacturer's terms.",
        "4. Late payment may incur additional charges.",
        "5. Disputes must be raised within 7 days of invoice date.",
    ]
)

invoice_numbers = SequenceNumberAllocator(INVOICE_PREFIX, Invoice)


@returns_result
def create_invoice(job_card_id, discount=0, discount_percentage=0, notes=None, terms_and_conditions=None):
    try:
        with UnitOfWork() as uow:
            job_card = JobCard.objects.select_for_update().select_related("vehicle").filter(pk=job_card_id).first()
            if job_card is None:
                raise NotFoundError("job card", "Job card not found")
            if job_card.status not in INVOICEABLE_STATUSES:
                raise InvalidStateError(
                    "Invoice can only be generated for completed or delivered job cards",
                    {"status": job_card.status},
                )
            if Invoice.objects.filter(job_card=job_card).exists():
                raise DuplicateInvoiceError(job_card.id)
            customer = Customer.objects.filter(pk=job_card.vehicle.customer_id).first()
            if customer is None:
                raise NotFoundError("customer", "Customer not found for vehicle")

            calculation = calculate_invoice(
                labor_cost=job_card.labor_cost,
                parts_cost=job_card.parts_cost,
                discount=discount,
                discount_percentage=discount_percentage,
                tax_rate=get_default_tax_rate(),
            )
            invoice = Invoice.objects.create(
                invoice_number=invoice_numbers.next_number(uow),
                job_card=job_card,
                customer=customer,
                invoice_date=timezone.now(),
                labor_cost=calculation.labor_cost,
                parts_cost=calculation.parts_cost,
                subtotal=calculation.subtotal,
                discount=calculation.discount_amount,
                discount_percentage=calculation.discount_percentage,
                taxable_amount=calculation.taxable_amount,
                tax_rate=calculation.tax_rate,
                tax_amount=calculation.tax_amount,
                total_amount=calculation.total_amount,
                payment_status=Invoice.PaymentStatus.UNPAID,
                paid_amount=0,
                pending_amount=calculation.total_amount,
                notes=notes or "",
                terms_and_conditions=terms_and_conditions or DEFAULT_TERMS_AND_CONDITIONS,
            )
    except IntegrityError as exc:
        # A concurrent request inserted the invoice between our check and insert.
        if Invoice.objects.filter(job_card_id=job_card_id).exists():
            raise DuplicateInvoiceError(job_card_id) from exc
        raise

    logger.info(
        "invoice_created total=%s",
        invoice.total_amount,
        extra={
            "invoice_id": str(invoice.id),
            "invoice_number": invoice.invoice_number,
            "job_card_id": str(job_card.id),
            "customer_id": str(customer.id),
        },
    )
    return invoice
