from rest_framework import serializers

from inventory.models import InventoryItem, StockTransaction


class InventoryItemSerializer(serializers.ModelSerializer):
    stock_status = serializers.CharField(read_only=True)
    opening_stock = serializers.IntegerField(write_only=True, required=False, min_value=0, default=0)

    class Meta:
        model = InventoryItem
        fields = [
            "id",
            "part_number",
            "name",
            "description",
            "category",
            "brand",
            "unit",
            "current_stock",
            "opening_stock",
            "minimum_stock",
            "purchase_price",
            "selling_price",
            "location",
            "is_active",
            "stock_status",
            "last_restock_date",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "current_stock", "last_restock_date", "created_at", "updated_at"]

    def validate(self, attrs):
        for price_field in ("purchase_price", "selling_price"):
            if attrs.get(price_field) is not None and attrs[price_field] < 0:
                raise serializers.ValidationError({price_field: "Price cannot be negative."})
        if self.instance is not None:
            attrs.pop("opening_stock", None)
        return attrs


class StockTransactionSerializer(serializers.ModelSerializer):
    class Meta:
        model = StockTransaction
        fields = [
            "id",
            "item",
            "quantity",
            "kind",
            "balance_after",
            "source_ref_type",
            "source_ref_id",
            "notes",
            "created_at",
        ]
        read_only_fields = fields


class StockReceiveSerializer(serializers.Serializer):
    quantity = serializers.IntegerField(min_value=1)
    purchase_price = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, allow_null=True, min_value=0)
    notes = serializers.CharField(required=False, allow_blank=True, max_length=255, default="")


class StockAdjustSerializer(serializers.Serializer):
    delta = serializers.IntegerField()
    notes = serializers.CharField(required=False, allow_blank=True, max_length=255, default="")

    def validate_delta(self, value):
        if value == 0:
            raise serializers.ValidationError("Adjustment quantity cannot be zero.")
        return value
