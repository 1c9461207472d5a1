import uuid

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="InventoryItem",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("part_number", models.CharField(max_length=64, unique=True)),
                ("name", models.CharField(max_length=255)),
                ("description", models.TextField(blank=True)),
                ("category", models.CharField(blank=True, max_length=128)),
                ("brand", models.CharField(blank=True, max_length=128)),
                ("unit", models.CharField(default="PCS", max_length=16)),
                ("current_stock", models.IntegerField(default=0)),
                ("minimum_stock", models.PositiveIntegerField(default=10)),
                ("purchase_price", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("selling_price", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("location", models.CharField(blank=True, max_length=128)),
                ("is_active", models.BooleanField(default=True)),
                ("last_restock_date", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["name"],
                "indexes": [
                    models.Index(fields=["is_active", "name"], name="inv_item_active_name_idx"),
                    models.Index(fields=["category"], name="inv_item_category_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(("current_stock__gte", 0)), name="inv_item_stock_non_negative"),
                ],
            },
        ),
        migrations.CreateModel(
            name="StockTransaction",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("quantity", models.IntegerField()),
                (
                    "kind",
                    models.CharField(
                        choices=[
                            ("opening", "Opening stock"),
                            ("purchase", "Purchase"),
                            ("job_card_issue", "Issued to job card"),
                            ("job_card_return", "Returned from job card"),
                            ("adjustment", "Adjustment"),
                        ],
                        max_length=32,
                    ),
                ),
                ("balance_after", models.IntegerField()),
                ("source_ref_type", models.CharField(blank=True, max_length=64, null=True)),
                ("source_ref_id", models.CharField(blank=True, max_length=64, null=True)),
                ("notes", models.CharField(blank=True, max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "item",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="transactions",
                        to="inventory.inventoryitem",
                    ),
                ),
            ],
            options={
                "indexes": [
                    models.Index(fields=["item", "created_at"], name="inv_txn_item_created_idx"),
                    models.Index(fields=["source_ref_id", "source_ref_type"], name="inv_txn_source_idx"),
                ],
            },
        ),
    ]
