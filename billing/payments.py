"""Invoice payment state and the customer spending ledger.

``Customer.total_spent`` is written only from this module.
"""
import logging

from django.db.models import Count, Q, Sum
from django.utils import timezone

from billing.models import Invoice, Payment, PaymentMode
from common.errors import InvalidStateError, NotFoundError, ValidationError
from common.results import returns_result
from common.unit_of_work import UnitOfWork
from common.utils import ZERO, to_money
from garage.models import Customer

logger = logging.getLogger("garage.engine")


def _lock_invoice(invoice_id) -> Invoice:
    try:
        return Invoice.objects.select_for_update().get(pk=invoice_id)
    except Invoice.DoesNotExist as exc:
        raise NotFoundError("invoice", "Invoice not found") from exc


@returns_result
def record_payment(invoice_id, paid_amount, payment_mode, transaction_id=None, recorded_by=None):
    paid_amount = to_money(paid_amount)
    if paid_amount <= ZERO:
        raise ValidationError("Payment amount must be greater than zero")
    if payment_mode not in PaymentMode.values:
        raise ValidationError(f"Unknown payment mode {payment_mode}")

    with UnitOfWork():
        invoice = _lock_invoice(invoice_id)
        if paid_amount > invoice.total_amount:
            raise ValidationError(
                "Payment amount cannot exceed total amount",
                {"total_amount": str(invoice.total_amount), "paid_amount": str(paid_amount)},
            )
        if invoice.payment_status == Invoice.PaymentStatus.PAID:
            raise InvalidStateError("Invoice is already paid")
        if invoice.payment_status == Invoice.PaymentStatus.CANCELLED:
            raise InvalidStateError("Cannot update payment for cancelled invoice")

        fully_paid = paid_amount >= invoice.total_amount
        invoice.paid_amount = paid_amount
        invoice.payment_mode = payment_mode
        invoice.transaction_id = transaction_id or None
        if fully_paid:
            invoice.payment_status = Invoice.PaymentStatus.PAID
            invoice.pending_amount = ZERO
            invoice.payment_date = timezone.now()
        else:
            invoice.pending_amount = invoice.total_amount - paid_amount
        invoice.save(
            update_fields=[
                "paid_amount",
                "pending_amount",
                "payment_status",
                "payment_mode",
                "payment_date",
                "transaction_id",
                "updated_at",
            ]
        )
        Payment.objects.create(
            invoice=invoice,
            amount=paid_amount,
            mode=payment_mode,
            transaction_id=invoice.transaction_id,
            resulting_status=invoice.payment_status,
            recorded_by=recorded_by,
        )

        if fully_paid:
            customer = Customer.objects.select_for_update().get(pk=invoice.customer_id)
            customer.total_spent = to_money(customer.total_spent + paid_amount)
            customer.save(update_fields=["total_spent", "updated_at"])

    logger.info(
        "payment_recorded amount=%s status=%s",
        paid_amount,
        invoice.payment_status,
        extra={
            "invoice_id": str(invoice.id),
            "invoice_number": invoice.invoice_number,
            "customer_id": str(invoice.customer_id),
        },
    )
    return invoice


@returns_result
def cancel_invoice(invoice_id):
    with UnitOfWork():
        invoice = _lock_invoice(invoice_id)
        if invoice.payment_status == Invoice.PaymentStatus.PAID:
            raise InvalidStateError("Cannot cancel paid invoice")
        if invoice.payment_status == Invoice.PaymentStatus.CANCELLED:
            raise InvalidStateError("Invoice is already cancelled")

        invoice.payment_status = Invoice.PaymentStatus.CANCELLED
        invoice.paid_amount = ZERO
        invoice.pending_amount = invoice.total_amount
        invoice.payment_mode = None
        invoice.transaction_id = None
        invoice.save(
            update_fields=[
                "payment_status",
                "paid_amount",
                "pending_amount",
                "payment_mode",
                "transaction_id",
                "updated_at",
            ]
        )

    logger.info(
        "invoice_cancelled",
        extra={"invoice_id": str(invoice.id), "invoice_number": invoice.invoice_number},
    )
    return invoice


def _lock_customers():
    return list(Customer.objects.select_for_update().order_by("name"))


def _paid_totals_by_customer():
    return dict(
        Invoice.objects.filter(payment_status=Invoice.PaymentStatus.PAID)
        .values_list("customer_id")
        .annotate(total=Sum("paid_amount"))
        .order_by()
    )


def reconcile_customer_spending(fix=False):
    """Compare each customer's ``total_spent`` with the sum of their paid invoices.

    Returns one row per drifting customer. With ``fix=True`` the stored figure
    is rewritten from the invoices. Customer rows are locked before the invoice
    sums are read.
    """
    drift = []
    with UnitOfWork():
        customers = _lock_customers()
        paid_totals = _paid_totals_by_customer()
        for customer in customers:
            expected = to_money(paid_totals.get(customer.id) or ZERO)
            if customer.total_spent == expected:
                continue
            drift.append(
                {
                    "customer_id": str(customer.id),
                    "name": customer.name,
                    "recorded": customer.total_spent,
                    "expected": expected,
                }
            )
            if fix:
                customer.total_spent = expected
                customer.save(update_fields=["total_spent", "updated_at"])
                logger.warning(
                    "customer_spending_corrected recorded=%s expected=%s",
                    drift[-1]["recorded"],
                    expected,
                    extra={"customer_id": str(customer.id)},
                )
    return drift


def invoice_stats():
    summary = Invoice.objects.aggregate(
        total_revenue=Sum("paid_amount", filter=Q(payment_status=Invoice.PaymentStatus.PAID)),
        total_pending=Sum("pending_amount", filter=Q(payment_status=Invoice.PaymentStatus.UNPAID)),
        paid_count=Count("id", filter=Q(payment_status=Invoice.PaymentStatus.PAID)),
        unpaid_count=Count("id", filter=Q(payment_status=Invoice.PaymentStatus.UNPAID)),
        cancelled_count=Count("id", filter=Q(payment_status=Invoice.PaymentStatus.CANCELLED)),
    )
    summary["total_revenue"] = to_money(summary["total_revenue"] or ZERO)
    summary["total_pending"] = to_money(summary["total_pending"] or ZERO)
    return summary
