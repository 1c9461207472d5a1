from django.db import transaction
from django.db.models import ProtectedError, Q
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from billing.serializers import InvoiceCreateSerializer, InvoiceSerializer
from billing.services import create_invoice
from common.audit import AuditedMutationMixin, create_audit_log_from_request
from common.errors import InvalidStateError
from common.permissions import RoleCapabilityPermission
from garage import services
from garage.models import Customer, JobCard, Vehicle, Worker
from garage.reads import publish_job_card, read_job_card
from garage.serializers import (
    AddPartSerializer,
    AddServiceSerializer,
    CustomerSerializer,
    JobCardCreateSerializer,
    JobCardSerializer,
    JobCardStatusSerializer,
    VehicleSerializer,
    WorkerSerializer,
)

UUID_PATTERN = "[0-9a-fA-F-]{36}"

DIRECTORY_PERMISSIONS = {
    "list": "directory.view",
    "retrieve": "directory.view",
    "create": "directory.manage",
    "update": "directory.manage",
    "partial_update": "directory.manage",
    "destroy": "directory.manage",
}


class ProtectedDeleteMixin:
    protected_message = "This record is still referenced and cannot be deleted"

    def perform_destroy(self, instance):
        try:
            with transaction.atomic():
                super().perform_destroy(instance)
        except ProtectedError as exc:
            raise InvalidStateError(self.protected_message) from exc


class CustomerViewSet(ProtectedDeleteMixin, AuditedMutationMixin, viewsets.ModelViewSet):
    queryset = Customer.objects.all()
    serializer_class = CustomerSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = DIRECTORY_PERMISSIONS
    audit_entity = "customer"
    protected_message = "Customer has vehicles or invoices and cannot be deleted"

    def get_queryset(self):
        qs = super().get_queryset()
        search = self.request.query_params.get("search")
        if search:
            qs = qs.filter(Q(name__icontains=search) | Q(phone__icontains=search) | Q(email__icontains=search))
        return qs


class VehicleViewSet(ProtectedDeleteMixin, AuditedMutationMixin, viewsets.ModelViewSet):
    queryset = Vehicle.objects.select_related("customer")
    serializer_class = VehicleSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = DIRECTORY_PERMISSIONS
    audit_entity = "vehicle"
    protected_message = "Vehicle has job cards and cannot be deleted"

    def get_queryset(self):
        qs = super().get_queryset().order_by("registration_number")
        customer_id = self.request.query_params.get("customer_id")
        search = self.request.query_params.get("search")
        if customer_id:
            qs = qs.filter(customer_id=customer_id)
        if search:
            qs = qs.filter(Q(registration_number__icontains=search) | Q(make__icontains=search) | Q(model__icontains=search))
        return qs


class WorkerViewSet(AuditedMutationMixin, viewsets.ModelViewSet):
    queryset = Worker.objects.all()
    serializer_class = WorkerSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = DIRECTORY_PERMISSIONS
    audit_entity = "worker"

    def get_queryset(self):
        qs = super().get_queryset()
        worker_status = self.request.query_params.get("status")
        role = self.request.query_params.get("role")
        if worker_status:
            qs = qs.filter(status=worker_status)
        if role:
            qs = qs.filter(role=role)
        return qs

    def perform_destroy(self, instance):
        before_snapshot = self.get_serializer(instance).data
        instance.status = Worker.Status.INACTIVE
        instance.save(update_fields=["status", "updated_at"])
        self._audit(action="deactivate", instance=instance, before_snapshot=before_snapshot)


class JobCardViewSet(AuditedMutationMixin, viewsets.ModelViewSet):
    queryset = JobCard.objects.select_related("vehicle__customer", "assigned_technician")
    serializer_class = JobCardSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    http_method_names = ["get", "post", "patch", "delete", "head", "options"]
    lookup_value_regex = UUID_PATTERN
    permission_action_map = {
        "list": "jobcards.view",
        "retrieve": "jobcards.view",
        "create": "jobcards.manage",
        "partial_update": "jobcards.manage",
        "destroy": "jobcards.manage",
        "change_status": "jobcards.manage",
        "add_service": "jobcards.manage",
        "remove_service": "jobcards.manage",
        "add_part": "jobcards.manage",
        "remove_part": "jobcards.manage",
        "generate_invoice": "billing.invoice",
    }
    audit_entity = "job_card"

    def get_queryset(self):
        qs = super().get_queryset().order_by("-created_at")
        params = self.request.query_params
        if params.get("status"):
            qs = qs.filter(status=params["status"])
        if params.get("vehicle_id"):
            qs = qs.filter(vehicle_id=params["vehicle_id"])
        if params.get("technician_id"):
            qs = qs.filter(assigned_technician_id=params["technician_id"])
        if params.get("search"):
            search = params["search"]
            qs = qs.filter(
                Q(job_card_number__icontains=search)
                | Q(vehicle__registration_number__icontains=search)
                | Q(vehicle__customer__name__icontains=search)
            )
        return qs

    def _job_card_response(self, job_card_id, response_status=status.HTTP_200_OK):
        return Response(read_job_card(job_card_id), status=response_status)

    def _audit_job_card(self, action_name, job_card_id, before_snapshot=None, after_snapshot=None):
        create_audit_log_from_request(
            self.request,
            action=f"job_card.{action_name}",
            entity="job_card",
            entity_id=job_card_id,
            before_snapshot=before_snapshot,
            after_snapshot=after_snapshot,
        )

    def retrieve(self, request, *args, **kwargs):
        return self._job_card_response(kwargs["pk"])

    def create(self, request, *args, **kwargs):
        serializer = JobCardCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        job_card = services.create_job_card(
            vehicle_id=data["vehicle"],
            customer_complaints=data["customer_complaints"],
            current_kilometers=data["current_kilometers"],
            assigned_technician_id=data["assigned_technician"],
            priority=data["priority"],
            estimated_completion_date=data["estimated_completion_date"],
        ).unwrap()
        payload = read_job_card(job_card.id)
        self._audit_job_card("create", job_card.id, after_snapshot=payload)
        return Response(payload, status=status.HTTP_201_CREATED)

    def perform_update(self, serializer):
        super().perform_update(serializer)
        job_card_id = serializer.instance.id
        transaction.on_commit(lambda: publish_job_card(job_card_id))

    def destroy(self, request, *args, **kwargs):
        job_card = self.get_object()
        services.change_status(job_card.id, JobCard.Status.CANCELLED).unwrap()
        self._audit_job_card("cancel", job_card.id, before_snapshot={"status": job_card.status})
        return self._job_card_response(job_card.id)

    @action(detail=True, methods=["post"], url_path="status")
    def change_status(self, request, pk=None):
        job_card = self.get_object()
        serializer = JobCardStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        updated = services.change_status(job_card.id, serializer.validated_data["status"]).unwrap()
        self._audit_job_card(
            "status",
            job_card.id,
            before_snapshot={"status": job_card.status},
            after_snapshot={"status": updated.status},
        )
        return self._job_card_response(job_card.id)

    @action(detail=True, methods=["post"], url_path="services")
    def add_service(self, request, pk=None):
        job_card = self.get_object()
        serializer = AddServiceSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        service = services.add_service(
            job_card.id,
            data["service_name"],
            data["labor_cost"],
            quantity=data["quantity"],
            description=data["description"],
        ).unwrap()
        self._audit_job_card(
            "service.add",
            job_card.id,
            after_snapshot={"service_id": str(service.id), "service_name": service.service_name, "total_cost": service.total_cost},
        )
        return self._job_card_response(job_card.id, status.HTTP_201_CREATED)

    @action(detail=True, methods=["delete"], url_path=rf"services/(?P<service_id>{UUID_PATTERN})")
    def remove_service(self, request, pk=None, service_id=None):
        job_card = self.get_object()
        services.remove_service(job_card.id, service_id).unwrap()
        self._audit_job_card("service.remove", job_card.id, before_snapshot={"service_id": service_id})
        return self._job_card_response(job_card.id)

    @action(detail=True, methods=["post"], url_path="parts")
    def add_part(self, request, pk=None):
        job_card = self.get_object()
        serializer = AddPartSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        part = services.add_part(
            job_card.id,
            data["item"],
            data["quantity"],
            unit_price=data["unit_price"],
            notes=data["notes"],
        ).unwrap()
        self._audit_job_card(
            "part.add",
            job_card.id,
            after_snapshot={
                "part_id": str(part.id),
                "item_id": str(part.item_id),
                "quantity": part.quantity,
                "total_price": part.total_price,
            },
        )
        return self._job_card_response(job_card.id, status.HTTP_201_CREATED)

    @action(detail=True, methods=["delete"], url_path=rf"parts/(?P<part_id>{UUID_PATTERN})")
    def remove_part(self, request, pk=None, part_id=None):
        job_card = self.get_object()
        services.remove_part(job_card.id, part_id).unwrap()
        self._audit_job_card("part.remove", job_card.id, before_snapshot={"part_id": part_id})
        return self._job_card_response(job_card.id)

    @action(detail=True, methods=["post"], url_path="invoice")
    def generate_invoice(self, request, pk=None):
        job_card = self.get_object()
        serializer = InvoiceCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        invoice = create_invoice(job_card.id, **serializer.validated_data).unwrap()
        payload = InvoiceSerializer(invoice).data
        self._audit(action="invoice", instance=job_card, after_snapshot=payload)
        return Response(payload, status=status.HTTP_201_CREATED)
