from rest_framework import serializers

from billing.models import Invoice, Payment, PaymentMode
from core.settings_provider import get_business_profile
from garage.serializers import (
    CustomerSerializer,
    JobCardPartSerializer,
    JobCardServiceSerializer,
    VehicleSerializer,
)

AMOUNT_FIELDS = [
    "labor_cost",
    "parts_cost",
    "subtotal",
    "discount",
    "discount_percentage",
    "taxable_amount",
    "tax_rate",
    "tax_amount",
    "total_amount",
    "paid_amount",
    "pending_amount",
]


class PaymentSerializer(serializers.ModelSerializer):
    recorded_by_username = serializers.CharField(source="recorded_by.username", read_only=True, default=None)

    class Meta:
        model = Payment
        fields = ["id", "amount", "mode", "transaction_id", "resulting_status", "recorded_by", "recorded_by_username", "recorded_at"]
        read_only_fields = fields


class InvoiceSerializer(serializers.ModelSerializer):
    job_card_number = serializers.CharField(source="job_card.job_card_number", read_only=True)
    customer_name = serializers.CharField(source="customer.name", read_only=True)

    class Meta:
        model = Invoice
        fields = [
            "id",
            "invoice_number",
            "invoice_date",
            "job_card",
            "job_card_number",
            "customer",
            "customer_name",
            *AMOUNT_FIELDS,
            "payment_status",
            "payment_mode",
            "payment_date",
            "transaction_id",
            "notes",
            "terms_and_conditions",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class InvoiceDetailSerializer(InvoiceSerializer):
    payments = PaymentSerializer(many=True, read_only=True)

    class Meta(InvoiceSerializer.Meta):
        fields = InvoiceSerializer.Meta.fields + ["payments"]
        read_only_fields = fields


class InvoiceCreateSerializer(serializers.Serializer):
    discount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, default=0)
    discount_percentage = serializers.DecimalField(max_digits=5, decimal_places=2, required=False, default=0)
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    terms_and_conditions = serializers.CharField(required=False, allow_blank=True, allow_null=True, default=None)


class RecordPaymentSerializer(serializers.Serializer):
    paid_amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    payment_mode = serializers.ChoiceField(choices=PaymentMode.choices)
    transaction_id = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=128, default=None)


class _DocumentJobCardSerializer(serializers.Serializer):
    job_card_number = serializers.CharField()
    status = serializers.CharField()
    current_kilometers = serializers.IntegerField()
    customer_complaints = serializers.CharField()
    mechanic_observations = serializers.CharField()
    technician_name = serializers.CharField(source="assigned_technician.name", default=None)
    services = JobCardServiceSerializer(many=True)
    parts = JobCardPartSerializer(many=True)


class InvoiceDocumentSerializer(serializers.Serializer):
    """Fully resolved invoice handed to the document renderer."""

    business = serializers.SerializerMethodField()
    invoice = serializers.SerializerMethodField()
    customer = CustomerSerializer()
    vehicle = VehicleSerializer(source="job_card.vehicle")
    job_card = _DocumentJobCardSerializer()

    def get_business(self, obj):
        return get_business_profile()

    def get_invoice(self, obj):
        return InvoiceSerializer(obj).data
