import uuid

from django.db import models
from django.db.models import Q


class InventoryItem(models.Model):
    class StockStatus(models.TextChoices):
        OUT_OF_STOCK = "out_of_stock", "Out of stock"
        LOW_STOCK = "low_stock", "Low stock"
        IN_STOCK = "in_stock", "In stock"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    part_number = models.CharField(max_length=64, unique=True)
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    category = models.CharField(max_length=128, blank=True)
    brand = models.CharField(max_length=128, blank=True)
    unit = models.CharField(max_length=16, default="PCS")
    current_stock = models.IntegerField(default=0)
    minimum_stock = models.PositiveIntegerField(default=10)
    purchase_price = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    selling_price = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    location = models.CharField(max_length=128, blank=True)
    is_active = models.BooleanField(default=True)
    last_restock_date = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]
        indexes = [
            models.Index(fields=["is_active", "name"], name="inv_item_active_name_idx"),
            models.Index(fields=["category"], name="inv_item_category_idx"),
        ]
        constraints = [
            models.CheckConstraint(condition=Q(current_stock__gte=0), name="inv_item_stock_non_negative"),
        ]

    def __str__(self):
        return f"{self.part_number} {self.name}"

    @property
    def stock_status(self):
        if self.current_stock <= 0:
            return self.StockStatus.OUT_OF_STOCK
        if self.current_stock <= self.minimum_stock:
            return self.StockStatus.LOW_STOCK
        return self.StockStatus.IN_STOCK


class StockTransaction(models.Model):
    class Kind(models.TextChoices):
        OPENING = "opening", "Opening stock"
        PURCHASE = "purchase", "Purchase"
        JOB_CARD_ISSUE = "job_card_issue", "Issued to job card"
        JOB_CARD_RETURN = "job_card_return", "Returned from job card"
        ADJUSTMENT = "adjustment", "Adjustment"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    item = models.ForeignKey(InventoryItem, on_delete=models.PROTECT, related_name="transactions")
    quantity = models.IntegerField()
    kind = models.CharField(max_length=32, choices=Kind.choices)
    balance_after = models.IntegerField()
    source_ref_type = models.CharField(max_length=64, null=True, blank=True)
    source_ref_id = models.CharField(max_length=64, null=True, blank=True)
    notes = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["item", "created_at"], name="inv_txn_item_created_idx"),
            models.Index(fields=["source_ref_id", "source_ref_type"], name="inv_txn_source_idx"),
        ]
