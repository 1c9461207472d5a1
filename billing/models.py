import uuid

from django.conf import settings
from django.db import models
from django.db.models import Q


class PaymentMode(models.TextChoices):
    CASH = "cash", "Cash"
    UPI = "upi", "UPI"
    CARD = "card", "Card"
    BANK_TRANSFER = "bank_transfer", "Bank transfer"


class Invoice(models.Model):
    class PaymentStatus(models.TextChoices):
        UNPAID = "unpaid", "Unpaid"
        PAID = "paid", "Paid"
        CANCELLED = "cancelled", "Cancelled"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    invoice_number = models.CharField(max_length=32, unique=True)
    job_card = models.OneToOneField("garage.JobCard", on_delete=models.PROTECT, related_name="invoice")
    customer = models.ForeignKey("garage.Customer", on_delete=models.PROTECT, related_name="invoices")
    invoice_date = models.DateTimeField()
    labor_cost = models.DecimalField(max_digits=12, decimal_places=2)
    parts_cost = models.DecimalField(max_digits=12, decimal_places=2)
    subtotal = models.DecimalField(max_digits=12, decimal_places=2)
    discount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    discount_percentage = models.DecimalField(max_digits=5, decimal_places=2, default=0)
    taxable_amount = models.DecimalField(max_digits=12, decimal_places=2)
    tax_rate = models.DecimalField(max_digits=5, decimal_places=2)
    tax_amount = models.DecimalField(max_digits=12, decimal_places=2)
    total_amount = models.DecimalField(max_digits=12, decimal_places=2)
    payment_status = models.CharField(max_length=16, choices=PaymentStatus.choices, default=PaymentStatus.UNPAID)
    paid_amount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    pending_amount = models.DecimalField(max_digits=12, decimal_places=2)
    payment_mode = models.CharField(max_length=16, choices=PaymentMode.choices, null=True, blank=True)
    payment_date = models.DateTimeField(null=True, blank=True)
    transaction_id = models.CharField(max_length=128, null=True, blank=True)
    notes = models.TextField(blank=True)
    terms_and_conditions = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["payment_status", "created_at"], name="billing_inv_status_idx"),
            models.Index(fields=["customer", "created_at"], name="billing_inv_customer_idx"),
            models.Index(fields=["created_at"], name="billing_inv_created_idx"),
        ]
        constraints = [
            models.CheckConstraint(condition=Q(paid_amount__gte=0), name="billing_inv_paid_non_negative"),
            models.CheckConstraint(condition=Q(pending_amount__gte=0), name="billing_inv_pending_non_negative"),
        ]

    def __str__(self):
        return self.invoice_number


class Payment(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    invoice = models.ForeignKey(Invoice, on_delete=models.PROTECT, related_name="payments")
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    mode = models.CharField(max_length=16, choices=PaymentMode.choices)
    transaction_id = models.CharField(max_length=128, null=True, blank=True)
    resulting_status = models.CharField(max_length=16, choices=Invoice.PaymentStatus.choices)
    recorded_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True)
    recorded_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["recorded_at"]
        indexes = [
            models.Index(fields=["invoice", "recorded_at"], name="billing_payment_invoice_idx"),
        ]
