from decimal import Decimal

from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction
from django.test import TestCase
from rest_framework.test import APIClient

from common.errors import InsufficientStockError, NotFoundError, ValidationError
from common.unit_of_work import UnitOfWork
from inventory.models import InventoryItem, StockTransaction
from inventory.services import (
    InventoryStockGuard,
    adjust_stock,
    create_inventory_item,
    low_stock_items,
    receive_stock,
)


def make_item(part_number="BP-001", name="Brake Pad", stock=5, **fields):
    return create_inventory_item(
        part_number=part_number,
        name=name,
        opening_stock=stock,
        selling_price=fields.pop("selling_price", Decimal("450.00")),
        **fields,
    ).unwrap()


class InventoryStockGuardTests(TestCase):
    def setUp(self):
        self.item = make_item(stock=5)

    def test_debit_and_credit_update_stock_and_record_transactions(self):
        with UnitOfWork() as uow:
            guard = InventoryStockGuard(uow)
            self.assertEqual(guard.debit(self.item.id, 3, kind=StockTransaction.Kind.JOB_CARD_ISSUE), 2)
            self.assertEqual(guard.credit(self.item.id, 1, kind=StockTransaction.Kind.JOB_CARD_RETURN), 3)

        self.item.refresh_from_db()
        self.assertEqual(self.item.current_stock, 3)
        self.assertCountEqual(
            self.item.transactions.values_list("quantity", "balance_after"),
            [(5, 5), (-3, 2), (1, 3)],
        )

    def test_debit_beyond_stock_is_rejected_without_writing(self):
        with self.assertRaises(InsufficientStockError) as ctx:
            with UnitOfWork() as uow:
                InventoryStockGuard(uow).debit(self.item.id, 6, kind=StockTransaction.Kind.JOB_CARD_ISSUE)

        self.assertEqual(str(ctx.exception), "Insufficient stock for Brake Pad. Available: 5, Required: 6")
        self.assertEqual(ctx.exception.available, 5)
        self.assertEqual(ctx.exception.required, 6)
        self.item.refresh_from_db()
        self.assertEqual(self.item.current_stock, 5)
        self.assertEqual(self.item.transactions.count(), 1)

    def test_debit_to_exactly_zero_is_allowed(self):
        with UnitOfWork() as uow:
            balance = InventoryStockGuard(uow).debit(self.item.id, 5, kind=StockTransaction.Kind.ADJUSTMENT)

        self.assertEqual(balance, 0)
        self.item.refresh_from_db()
        self.assertEqual(self.item.stock_status, InventoryItem.StockStatus.OUT_OF_STOCK)

    def test_guard_requires_active_unit_of_work(self):
        with self.assertRaises(RuntimeError):
            InventoryStockGuard(UnitOfWork()).debit(self.item.id, 1, kind=StockTransaction.Kind.ADJUSTMENT)

    def test_non_positive_or_non_integer_quantity_is_rejected(self):
        with UnitOfWork() as uow:
            guard = InventoryStockGuard(uow)
            for quantity in (0, -2, True, False, 1.5, "3"):
                with self.assertRaises(ValidationError):
                    guard.credit(self.item.id, quantity, kind=StockTransaction.Kind.ADJUSTMENT)

    def test_unknown_item_is_not_found(self):
        missing_id = "00000000-0000-0000-0000-000000000000"
        with UnitOfWork() as uow:
            with self.assertRaises(NotFoundError):
                InventoryStockGuard(uow).credit(missing_id, 1, kind=StockTransaction.Kind.PURCHASE)

    def test_database_rejects_negative_stock(self):
        with self.assertRaises(IntegrityError), transaction.atomic():
            InventoryItem.objects.filter(pk=self.item.pk).update(current_stock=-1)


class InventoryServiceTests(TestCase):
    def test_create_item_credits_opening_stock(self):
        item = make_item(stock=12)

        self.assertEqual(item.current_stock, 12)
        self.assertEqual(item.unit, "PCS")
        self.assertEqual(item.minimum_stock, 10)
        opening = item.transactions.get()
        self.assertEqual(opening.kind, StockTransaction.Kind.OPENING)

    def test_duplicate_part_number_is_rejected(self):
        make_item(part_number="OF-1")

        result = create_inventory_item(part_number="of-1", name="Other filter")

        self.assertFalse(result.ok)
        self.assertIsInstance(result.error, ValidationError)
        self.assertEqual(InventoryItem.objects.count(), 1)

    def test_receive_stock_stamps_restock_date_and_price(self):
        item = make_item(stock=0)

        updated = receive_stock(item.id, 8, purchase_price="310.456").unwrap()

        self.assertEqual(updated.current_stock, 8)
        self.assertIsNotNone(updated.last_restock_date)
        self.assertEqual(updated.purchase_price, Decimal("310.46"))
        self.assertEqual(updated.transactions.latest("created_at").kind, StockTransaction.Kind.PURCHASE)

    def test_negative_adjustment_cannot_go_below_zero(self):
        item = make_item(stock=2)

        result = adjust_stock(item.id, -3)

        self.assertFalse(result.ok)
        self.assertIsInstance(result.error, InsufficientStockError)
        item.refresh_from_db()
        self.assertEqual(item.current_stock, 2)

    def test_zero_adjustment_is_rejected(self):
        item = make_item(stock=2)

        self.assertFalse(adjust_stock(item.id, 0).ok)

    def test_low_stock_items_and_stock_status(self):
        low = make_item(part_number="LOW", name="Wiper", stock=3, minimum_stock=5)
        healthy = make_item(part_number="OK", name="Bulb", stock=30, minimum_stock=5)
        make_item(part_number="OFF", name="Old part", stock=0, is_active=False)

        self.assertEqual(list(low_stock_items()), [low])
        self.assertEqual(low.stock_status, InventoryItem.StockStatus.LOW_STOCK)
        self.assertEqual(healthy.stock_status, InventoryItem.StockStatus.IN_STOCK)


class InventoryApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        user_model = get_user_model()
        self.advisor = user_model.objects.create_user(username="inv-advisor", password="pass1234", role="advisor")
        self.technician = user_model.objects.create_user(username="inv-tech", password="pass1234", role="technician")

    def test_advisor_creates_item_with_opening_stock(self):
        self.client.force_authenticate(user=self.advisor)

        response = self.client.post(
            "/api/v1/inventory-items/",
            {
                "part_number": "SP-100",
                "name": "Spark Plug",
                "opening_stock": 4,
                "current_stock": 999,
                "selling_price": "120.00",
            },
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["current_stock"], 4)
        self.assertEqual(response.json()["stock_status"], InventoryItem.StockStatus.LOW_STOCK)

    def test_technician_can_list_but_not_create(self):
        make_item()
        self.client.force_authenticate(user=self.technician)

        list_response = self.client.get("/api/v1/inventory-items/")
        create_response = self.client.post(
            "/api/v1/inventory-items/",
            {"part_number": "X-1", "name": "Nope"},
            format="json",
        )

        self.assertEqual(list_response.status_code, 200)
        self.assertEqual(list_response.json()["count"], 1)
        self.assertEqual(create_response.status_code, 403)

    def test_receive_endpoint_adds_stock(self):
        item = make_item(stock=1)
        self.client.force_authenticate(user=self.advisor)

        response = self.client.post(f"/api/v1/inventory-items/{item.id}/receive/", {"quantity": 9}, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["current_stock"], 10)

    def test_adjust_endpoint_reports_insufficient_stock_verbatim(self):
        item = make_item(stock=2)
        self.client.force_authenticate(user=self.advisor)

        response = self.client.post(f"/api/v1/inventory-items/{item.id}/adjust/", {"delta": -5}, format="json")

        self.assertEqual(response.status_code, 409)
        payload = response.json()
        self.assertEqual(payload["code"], "insufficient_stock")
        self.assertEqual(payload["message"], "Insufficient stock for Brake Pad. Available: 2, Required: 5")

    def test_low_stock_endpoint(self):
        make_item(part_number="LOW-1", name="Fuse", stock=1, minimum_stock=3)
        make_item(part_number="OK-1", name="Relay", stock=50, minimum_stock=3)
        self.client.force_authenticate(user=self.technician)

        response = self.client.get("/api/v1/inventory-items/low-stock/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual([row["part_number"] for row in response.json()], ["LOW-1"])

    def test_delete_deactivates_item(self):
        item = make_item()
        self.client.force_authenticate(user=self.advisor)

        response = self.client.delete(f"/api/v1/inventory-items/{item.id}/")

        self.assertEqual(response.status_code, 204)
        item.refresh_from_db()
        self.assertFalse(item.is_active)
