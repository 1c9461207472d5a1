from django.db.models import F, Q
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from common.audit import AuditedMutationMixin
from common.permissions import RoleCapabilityPermission
from inventory.models import InventoryItem
from inventory.serializers import (
    InventoryItemSerializer,
    StockAdjustSerializer,
    StockReceiveSerializer,
    StockTransactionSerializer,
)
from inventory.services import adjust_stock, create_inventory_item, low_stock_items, receive_stock


class InventoryItemViewSet(AuditedMutationMixin, viewsets.ModelViewSet):
    queryset = InventoryItem.objects.all()
    serializer_class = InventoryItemSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "inventory.view",
        "retrieve": "inventory.view",
        "low_stock": "inventory.view",
        "transactions": "inventory.view",
        "create": "inventory.manage",
        "update": "inventory.manage",
        "partial_update": "inventory.manage",
        "destroy": "inventory.manage",
        "receive": "inventory.manage",
        "adjust": "inventory.manage",
    }
    audit_entity = "inventory_item"

    def get_queryset(self):
        qs = super().get_queryset()
        params = self.request.query_params
        search = params.get("search")
        category = params.get("category")
        stock_status = params.get("stock_status")

        if params.get("include_inactive") not in {"1", "true"}:
            qs = qs.filter(is_active=True)
        if search:
            qs = qs.filter(Q(name__icontains=search) | Q(part_number__icontains=search) | Q(brand__icontains=search))
        if category:
            qs = qs.filter(category__iexact=category)
        if stock_status == InventoryItem.StockStatus.OUT_OF_STOCK:
            qs = qs.filter(current_stock__lte=0)
        elif stock_status == InventoryItem.StockStatus.LOW_STOCK:
            qs = qs.filter(current_stock__gt=0, current_stock__lte=F("minimum_stock"))
        elif stock_status == InventoryItem.StockStatus.IN_STOCK:
            qs = qs.filter(current_stock__gt=F("minimum_stock"))
        return qs

    def perform_create(self, serializer):
        data = dict(serializer.validated_data)
        item = create_inventory_item(
            part_number=data.pop("part_number"),
            name=data.pop("name"),
            opening_stock=data.pop("opening_stock", 0),
            **data,
        ).unwrap()
        serializer.instance = item
        self._audit(action="create", instance=item, after_snapshot=self.get_serializer(item).data)

    def perform_destroy(self, instance):
        before_snapshot = self.get_serializer(instance).data
        instance.is_active = False
        instance.save(update_fields=["is_active", "updated_at"])
        self._audit(action="deactivate", instance=instance, before_snapshot=before_snapshot)

    @action(detail=True, methods=["post"], url_path="receive")
    def receive(self, request, pk=None):
        item = self.get_object()
        serializer = StockReceiveSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        before_snapshot = self.get_serializer(item).data
        item = receive_stock(item.id, **serializer.validated_data).unwrap()
        after_snapshot = self.get_serializer(item).data
        self._audit(action="receive", instance=item, before_snapshot=before_snapshot, after_snapshot=after_snapshot)
        return Response(after_snapshot, status=status.HTTP_200_OK)

    @action(detail=True, methods=["post"], url_path="adjust")
    def adjust(self, request, pk=None):
        item = self.get_object()
        serializer = StockAdjustSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        before_snapshot = self.get_serializer(item).data
        item = adjust_stock(item.id, serializer.validated_data["delta"], notes=serializer.validated_data["notes"]).unwrap()
        after_snapshot = self.get_serializer(item).data
        self._audit(action="adjust", instance=item, before_snapshot=before_snapshot, after_snapshot=after_snapshot)
        return Response(after_snapshot, status=status.HTTP_200_OK)

    @action(detail=False, methods=["get"], url_path="low-stock")
    def low_stock(self, request):
        return Response(self.get_serializer(low_stock_items(), many=True).data)

    @action(detail=True, methods=["get"], url_path="transactions")
    def transactions(self, request, pk=None):
        item = self.get_object()
        qs = item.transactions.order_by("-created_at")
        page = self.paginate_queryset(qs)
        if page is not None:
            return self.get_paginated_response(StockTransactionSerializer(page, many=True).data)
        return Response(StockTransactionSerializer(qs, many=True).data)
