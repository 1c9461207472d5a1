from django.utils.dateparse import parse_date
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from billing.models import Invoice
from billing.payments import cancel_invoice, invoice_stats, record_payment
from billing.serializers import (
    InvoiceDetailSerializer,
    InvoiceDocumentSerializer,
    InvoiceSerializer,
    RecordPaymentSerializer,
)
from common.audit import create_audit_log_from_request
from common.permissions import RoleCapabilityPermission
from common.utils import local_day_bounds


class InvoiceViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = Invoice.objects.select_related("customer", "job_card")
    serializer_class = InvoiceSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "billing.view",
        "retrieve": "billing.view",
        "document": "billing.view",
        "stats": "billing.view",
        "payment": "billing.payment",
        "cancel": "billing.cancel",
    }

    def get_queryset(self):
        qs = super().get_queryset().order_by("-created_at")
        params = self.request.query_params
        if params.get("payment_status"):
            qs = qs.filter(payment_status=params["payment_status"])
        if params.get("customer_id"):
            qs = qs.filter(customer_id=params["customer_id"])
        date_from = parse_date(params.get("date_from") or "")
        date_to = parse_date(params.get("date_to") or "")
        if date_from:
            qs = qs.filter(invoice_date__gte=local_day_bounds(date_from)[0])
        if date_to:
            qs = qs.filter(invoice_date__lte=local_day_bounds(date_to)[1])
        if self.action in {"retrieve", "document"}:
            qs = qs.select_related("job_card__vehicle", "job_card__assigned_technician").prefetch_related(
                "payments", "job_card__services", "job_card__parts"
            )
        return qs

    def get_serializer_class(self):
        if self.action == "retrieve":
            return InvoiceDetailSerializer
        return super().get_serializer_class()

    def _audit(self, action_name, invoice, before_snapshot, after_snapshot):
        create_audit_log_from_request(
            self.request,
            action=f"invoice.{action_name}",
            entity="invoice",
            entity_id=invoice.id,
            before_snapshot=before_snapshot,
            after_snapshot=after_snapshot,
        )

    @action(detail=True, methods=["post"], url_path="payment")
    def payment(self, request, pk=None):
        invoice = self.get_object()
        serializer = RecordPaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        before_snapshot = InvoiceSerializer(invoice).data
        invoice = record_payment(
            invoice.id,
            serializer.validated_data["paid_amount"],
            serializer.validated_data["payment_mode"],
            transaction_id=serializer.validated_data["transaction_id"],
            recorded_by=request.user,
        ).unwrap()
        payload = InvoiceSerializer(invoice).data
        self._audit("payment", invoice, before_snapshot, payload)
        return Response(payload, status=status.HTTP_200_OK)

    @action(detail=True, methods=["post"], url_path="cancel")
    def cancel(self, request, pk=None):
        invoice = self.get_object()
        before_snapshot = InvoiceSerializer(invoice).data
        invoice = cancel_invoice(invoice.id).unwrap()
        payload = InvoiceSerializer(invoice).data
        self._audit("cancel", invoice, before_snapshot, payload)
        return Response(payload, status=status.HTTP_200_OK)

    @action(detail=True, methods=["get"], url_path="document")
    def document(self, request, pk=None):
        return Response(InvoiceDocumentSerializer(self.get_object()).data)

    @action(detail=False, methods=["get"], url_path="stats")
    def stats(self, request):
        return Response(invoice_stats())
