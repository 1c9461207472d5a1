import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models

PAYMENT_MODE_CHOICES = [
    ("cash", "Cash"),
    ("upi", "UPI"),
    ("card", "Card"),
    ("bank_transfer", "Bank transfer"),
]

PAYMENT_STATUS_CHOICES = [
    ("unpaid", "Unpaid"),
    ("paid", "Paid"),
    ("cancelled", "Cancelled"),
]


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("garage", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Invoice",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("invoice_number", models.CharField(max_length=32, unique=True)),
                ("invoice_date", models.DateTimeField()),
                ("labor_cost", models.DecimalField(decimal_places=2, max_digits=12)),
                ("parts_cost", models.DecimalField(decimal_places=2, max_digits=12)),
                ("subtotal", models.DecimalField(decimal_places=2, max_digits=12)),
                ("discount", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("discount_percentage", models.DecimalField(decimal_places=2, default=0, max_digits=5)),
                ("taxable_amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("tax_rate", models.DecimalField(decimal_places=2, max_digits=5)),
                ("tax_amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("total_amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("payment_status", models.CharField(choices=PAYMENT_STATUS_CHOICES, default="unpaid", max_length=16)),
                ("paid_amount", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("pending_amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("payment_mode", models.CharField(blank=True, choices=PAYMENT_MODE_CHOICES, max_length=16, null=True)),
                ("payment_date", models.DateTimeField(blank=True, null=True)),
                ("transaction_id", models.CharField(blank=True, max_length=128, null=True)),
                ("notes", models.TextField(blank=True)),
                ("terms_and_conditions", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "customer",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="invoices",
                        to="garage.customer",
                    ),
                ),
                (
                    "job_card",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="invoice",
                        to="garage.jobcard",
                    ),
                ),
            ],
            options={
                "indexes": [
                    models.Index(fields=["payment_status", "created_at"], name="billing_inv_status_idx"),
                    models.Index(fields=["customer", "created_at"], name="billing_inv_customer_idx"),
                    models.Index(fields=["created_at"], name="billing_inv_created_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(("paid_amount__gte", 0)), name="billing_inv_paid_non_negative"),
                    models.CheckConstraint(condition=models.Q(("pending_amount__gte", 0)), name="billing_inv_pending_non_negative"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Payment",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("mode", models.CharField(choices=PAYMENT_MODE_CHOICES, max_length=16)),
                ("transaction_id", models.CharField(blank=True, max_length=128, null=True)),
                ("resulting_status", models.CharField(choices=PAYMENT_STATUS_CHOICES, max_length=16)),
                ("recorded_at", models.DateTimeField(auto_now_add=True)),
                (
                    "invoice",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payments",
                        to="billing.invoice",
                    ),
                ),
                (
                    "recorded_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["recorded_at"],
                "indexes": [
                    models.Index(fields=["invoice", "recorded_at"], name="billing_payment_invoice_idx"),
                ],
            },
        ),
    ]
