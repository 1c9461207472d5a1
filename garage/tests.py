from decimal import Decimal
from unittest import mock

from django.contrib.auth import get_user_model
from django.test import TestCase
from rest_framework.test import APIClient

from billing.payments import cancel_invoice
from billing.services import create_invoice
from common.errors import InsufficientStockError, InvalidStateError, NotFoundError, ValidationError
from core.models import AuditLog
from garage import reads
from garage.models import Customer, JobCard, Vehicle, Worker
from garage.services import (
    add_part,
    add_service,
    change_status,
    create_job_card,
    remove_part,
    remove_service,
)
from inventory.models import InventoryItem, StockTransaction
from inventory.services import create_inventory_item


class GarageFixtureMixin:
    def make_directory(self):
        self.customer = Customer.objects.create(name="Ravi Kumar", phone="+919800000010")
        self.vehicle = Vehicle.objects.create(
            customer=self.customer,
            registration_number="ka01ab1234",
            make="Maruti",
            model="Swift",
            current_kilometers=42000,
        )
        self.worker = Worker.objects.create(name="Suresh", phone="+919800000011")
        self.item = create_inventory_item(
            part_number="OF-200",
            name="Oil Filter",
            opening_stock=5,
            selling_price="250.00",
        ).unwrap()

    def make_job_card(self, **kwargs):
        return create_job_card(
            vehicle_id=kwargs.pop("vehicle_id", self.vehicle.id),
            customer_complaints=kwargs.pop("customer_complaints", "Engine noise"),
            **kwargs,
        ).unwrap()

    def complete(self, job_card):
        change_status(job_card.id, JobCard.Status.IN_PROGRESS).unwrap()
        return change_status(job_card.id, JobCard.Status.COMPLETED).unwrap()


class JobCardServiceTests(GarageFixtureMixin, TestCase):
    def setUp(self):
        reads.reset_coalescer(grace_period=0)
        self.make_directory()

    def test_create_job_card_numbers_per_day_and_updates_odometer(self):
        first = self.make_job_card(current_kilometers=43500, assigned_technician_id=self.worker.id)
        second = self.make_job_card()

        self.assertRegex(first.job_card_number, r"^JC-\d{4}-\d{4}-0001$")
        self.assertTrue(second.job_card_number.endswith("-0002"))
        self.assertEqual(first.status, JobCard.Status.PENDING)
        self.vehicle.refresh_from_db()
        self.assertEqual(self.vehicle.current_kilometers, 43500)

    def test_create_job_card_for_unknown_vehicle(self):
        result = create_job_card(vehicle_id="00000000-0000-0000-0000-000000000000", customer_complaints="Noise")

        self.assertFalse(result.ok)
        self.assertIsInstance(result.error, NotFoundError)
        self.assertFalse(JobCard.objects.exists())

    def test_services_and_parts_keep_costs_in_step(self):
        job_card = self.make_job_card()

        service = add_service(job_card.id, "Oil change", "300.00", quantity=2).unwrap()
        add_part(job_card.id, self.item.id, 2).unwrap()
        job_card.refresh_from_db()

        self.assertEqual(service.total_cost, Decimal("600.00"))
        self.assertEqual(job_card.labor_cost, Decimal("600.00"))
        self.assertEqual(job_card.parts_cost, Decimal("500.00"))
        self.assertEqual(job_card.total_cost, Decimal("1100.00"))
        self.assertEqual(job_card.final_amount, Decimal("1100.00"))

        remove_service(job_card.id, service.id).unwrap()
        job_card.refresh_from_db()
        self.assertEqual(job_card.labor_cost, Decimal("0.00"))
        self.assertEqual(job_card.total_cost, Decimal("500.00"))

    def test_part_issue_and_return_conserve_stock(self):
        job_card = self.make_job_card()

        part = add_part(job_card.id, self.item.id, 3, unit_price="199.99").unwrap()
        self.item.refresh_from_db()
        self.assertEqual(self.item.current_stock, 2)
        issue = StockTransaction.objects.get(kind=StockTransaction.Kind.JOB_CARD_ISSUE)
        self.assertEqual(issue.quantity, -3)
        self.assertEqual(issue.source_ref_id, str(part.id))
        self.assertEqual(part.total_price, Decimal("599.97"))

        remove_part(job_card.id, part.id).unwrap()
        self.item.refresh_from_db()
        job_card.refresh_from_db()
        self.assertEqual(self.item.current_stock, 5)
        self.assertEqual(job_card.parts_cost, Decimal("0.00"))
        self.assertFalse(job_card.parts.exists())
        self.assertEqual(
            StockTransaction.objects.get(kind=StockTransaction.Kind.JOB_CARD_RETURN).quantity,
            3,
        )

    def test_stock_matches_net_issued_quantity_after_mixed_operations(self):
        job_card = self.make_job_card()
        first = add_part(job_card.id, self.item.id, 2).unwrap()
        second = add_part(job_card.id, self.item.id, 3).unwrap()
        self.assertFalse(add_part(job_card.id, self.item.id, 1).ok)
        remove_part(job_card.id, first.id).unwrap()
        add_part(job_card.id, self.item.id, 1).unwrap()

        self.item.refresh_from_db()
        job_card.refresh_from_db()
        self.assertEqual(self.item.current_stock, 5 - (2 + 3 + 1) + 2)
        self.assertEqual(sorted(job_card.parts.values_list("quantity", flat=True)), [1, 3])
        self.assertEqual(job_card.parts_cost, Decimal("1000.00"))
        self.assertEqual(
            min(self.item.transactions.values_list("balance_after", flat=True)),
            0,
        )
        self.assertTrue(job_card.parts.filter(pk=second.pk).exists())

    def test_insufficient_stock_leaves_job_card_and_inventory_untouched(self):
        job_card = self.make_job_card()

        result = add_part(job_card.id, self.item.id, 6)

        self.assertFalse(result.ok)
        self.assertIsInstance(result.error, InsufficientStockError)
        self.assertEqual(result.error.message, "Insufficient stock for Oil Filter. Available: 5, Required: 6")
        self.item.refresh_from_db()
        job_card.refresh_from_db()
        self.assertEqual(self.item.current_stock, 5)
        self.assertFalse(job_card.parts.exists())
        self.assertEqual(job_card.parts_cost, Decimal("0.00"))
        self.assertEqual(self.item.transactions.count(), 1)

    def test_boolean_quantity_is_not_a_part_count(self):
        job_card = self.make_job_card()

        for quantity in (True, False):
            with self.subTest(quantity=quantity):
                result = add_part(job_card.id, self.item.id, quantity)

                self.assertIsInstance(result.error, ValidationError)
                self.assertEqual(result.error.message, "Quantity must be greater than zero")
        self.item.refresh_from_db()
        self.assertEqual(self.item.current_stock, 5)
        self.assertFalse(job_card.parts.exists())

    def test_status_machine_rejects_skipping_steps(self):
        job_card = self.make_job_card()

        result = change_status(job_card.id, JobCard.Status.DELIVERED)

        self.assertFalse(result.ok)
        self.assertIsInstance(result.error, InvalidStateError)
        self.assertEqual(result.error.message, "Cannot change job card status from Pending to Delivered")

    def test_completion_and_delivery_are_stamped(self):
        job_card = self.complete(self.make_job_card())
        self.assertIsNotNone(job_card.actual_completion_date)

        delivered = change_status(job_card.id, JobCard.Status.DELIVERED).unwrap()

        self.assertIsNotNone(delivered.delivery_date)
        result = add_service(job_card.id, "Wash", "100")
        self.assertFalse(result.ok)
        self.assertEqual(result.error.message, "Job card is delivered and can no longer be changed")

    def test_invoiced_job_card_is_frozen_until_invoice_is_cancelled(self):
        job_card = self.make_job_card()
        add_service(job_card.id, "Tune up", "800").unwrap()
        self.complete(job_card)
        invoice = create_invoice(job_card.id).unwrap()

        blocked_cancel = change_status(job_card.id, JobCard.Status.CANCELLED)
        blocked_part = add_part(job_card.id, self.item.id, 1)

        self.assertEqual(blocked_cancel.error.message, "Cannot cancel a job card that has an active invoice")
        self.assertIsInstance(blocked_part.error, InvalidStateError)
        self.item.refresh_from_db()
        self.assertEqual(self.item.current_stock, 5)

        cancel_invoice(invoice.id).unwrap()
        cancelled = change_status(job_card.id, JobCard.Status.CANCELLED).unwrap()
        self.assertEqual(cancelled.status, JobCard.Status.CANCELLED)


class JobCardReadCoalescingTests(GarageFixtureMixin, TestCase):
    def setUp(self):
        reads.reset_coalescer(grace_period=0)
        self.make_directory()
        self.job_card = self.make_job_card()

    def tearDown(self):
        reads.reset_coalescer()

    def test_observers_share_one_load(self):
        with mock.patch("garage.reads.load_job_card", wraps=reads.load_job_card) as loader:
            first = reads.observe_job_card(self.job_card.id, None)
            second = reads.observe_job_card(self.job_card.id, None)

            self.assertEqual(loader.call_count, 1)
            self.assertEqual(reads.get_coalescer().subscriber_count(reads.JOB_CARD, self.job_card.id), 2)
            self.assertEqual(first.value["job_card_number"], self.job_card.job_card_number)

            first.close()
            second.close()

        self.assertFalse(reads.get_coalescer().is_active(reads.JOB_CARD, self.job_card.id))

    def test_committed_writes_are_pushed_to_observers(self):
        received = []
        subscription = reads.observe_job_card(self.job_card.id, received.append)

        with self.captureOnCommitCallbacks(execute=True):
            add_service(self.job_card.id, "Brake bleed", "450").unwrap()

        self.assertEqual(len(received), 2)
        self.assertEqual(received[0]["labor_cost"], "0.00")
        self.assertEqual(received[-1]["labor_cost"], "450.00")
        self.assertEqual(len(received[-1]["services"]), 1)
        subscription.close()

    def test_failed_write_publishes_nothing(self):
        received = []
        subscription = reads.observe_job_card(self.job_card.id, received.append)

        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            add_part(self.job_card.id, self.item.id, 99)

        self.assertEqual(callbacks, [])
        self.assertEqual(len(received), 1)
        subscription.close()

    def test_missing_job_card_raises_not_found(self):
        with self.assertRaises(NotFoundError):
            reads.read_job_card("00000000-0000-0000-0000-000000000000")


class JobCardApiTests(GarageFixtureMixin, TestCase):
    def setUp(self):
        reads.reset_coalescer(grace_period=0)
        self.make_directory()
        self.client = APIClient()
        user_model = get_user_model()
        self.technician = user_model.objects.create_user(username="jc-tech", password="pass1234", role="technician")
        self.advisor = user_model.objects.create_user(username="jc-advisor", password="pass1234", role="advisor")

    def tearDown(self):
        reads.reset_coalescer()

    def create_via_api(self):
        response = self.client.post(
            "/api/v1/job-cards/",
            {
                "vehicle": str(self.vehicle.id),
                "customer_complaints": "Brakes squeal",
                "current_kilometers": 42100,
                "priority": "high",
            },
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        return response.json()

    def test_technician_builds_job_card(self):
        self.client.force_authenticate(user=self.technician)
        created = self.create_via_api()

        service_response = self.client.post(
            f"/api/v1/job-cards/{created['id']}/services/",
            {"service_name": "Brake service", "labor_cost": "700.00"},
            format="json",
        )
        part_response = self.client.post(
            f"/api/v1/job-cards/{created['id']}/parts/",
            {"item": str(self.item.id), "quantity": 2},
            format="json",
        )

        self.assertTrue(created["job_card_number"].startswith("JC-"))
        self.assertEqual(created["registration_number"], "KA01AB1234")
        self.assertEqual(service_response.status_code, 201)
        self.assertEqual(part_response.status_code, 201)
        payload = part_response.json()
        self.assertEqual(payload["labor_cost"], "700.00")
        self.assertEqual(payload["parts_cost"], "500.00")
        self.assertEqual(payload["total_cost"], "1200.00")
        self.assertEqual(payload["parts"][0]["part_number"], "OF-200")
        self.assertTrue(AuditLog.objects.filter(action="job_card.part.add", entity_id=created["id"]).exists())

    def test_insufficient_stock_envelope(self):
        self.client.force_authenticate(user=self.technician)
        created = self.create_via_api()

        response = self.client.post(
            f"/api/v1/job-cards/{created['id']}/parts/",
            {"item": str(self.item.id), "quantity": 10},
            format="json",
        )

        self.assertEqual(response.status_code, 409)
        self.assertEqual(
            response.json(),
            {
                "code": "insufficient_stock",
                "message": "Insufficient stock for Oil Filter. Available: 5, Required: 10",
                "errors": {"item_name": "Oil Filter", "available": 5, "required": 10},
                "status": 409,
            },
        )

    def test_invalid_transition_is_conflict(self):
        self.client.force_authenticate(user=self.technician)
        created = self.create_via_api()

        response = self.client.post(f"/api/v1/job-cards/{created['id']}/status/", {"status": "completed"}, format="json")

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "invalid_state")

    def test_delete_cancels_job_card(self):
        self.client.force_authenticate(user=self.technician)
        created = self.create_via_api()

        response = self.client.delete(f"/api/v1/job-cards/{created['id']}/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], JobCard.Status.CANCELLED)
        self.assertTrue(JobCard.objects.filter(pk=created["id"]).exists())

    def test_only_desk_roles_generate_invoices(self):
        job_card = self.make_job_card()
        add_service(job_card.id, "General service", "1000").unwrap()
        self.complete(job_card)

        self.client.force_authenticate(user=self.technician)
        denied = self.client.post(f"/api/v1/job-cards/{job_card.id}/invoice/", {}, format="json")
        self.client.force_authenticate(user=self.advisor)
        created = self.client.post(f"/api/v1/job-cards/{job_card.id}/invoice/", {}, format="json")
        duplicate = self.client.post(f"/api/v1/job-cards/{job_card.id}/invoice/", {}, format="json")

        self.assertEqual(denied.status_code, 403)
        self.assertEqual(created.status_code, 201)
        self.assertTrue(created.json()["invoice_number"].startswith("INV-"))
        self.assertEqual(duplicate.status_code, 409)
        self.assertEqual(duplicate.json()["message"], "Invoice already exists for this job card")

    def test_unknown_job_card_is_not_found(self):
        self.client.force_authenticate(user=self.technician)

        response = self.client.get("/api/v1/job-cards/00000000-0000-0000-0000-000000000000/")

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["message"], "Job card not found")


class DirectoryApiTests(GarageFixtureMixin, TestCase):
    def setUp(self):
        self.make_directory()
        self.client = APIClient()
        user_model = get_user_model()
        self.advisor = user_model.objects.create_user(username="dir-advisor", password="pass1234", role="advisor")
        self.technician = user_model.objects.create_user(username="dir-tech", password="pass1234", role="technician")

    def test_customer_with_vehicles_cannot_be_deleted(self):
        self.client.force_authenticate(user=self.advisor)

        response = self.client.delete(f"/api/v1/customers/{self.customer.id}/")

        self.assertEqual(response.status_code, 409)
        self.assertTrue(Customer.objects.filter(pk=self.customer.pk).exists())

    def test_technician_cannot_create_customers(self):
        self.client.force_authenticate(user=self.technician)

        response = self.client.post("/api/v1/customers/", {"name": "New", "phone": "123"}, format="json")

        self.assertEqual(response.status_code, 403)

    def test_vehicle_search_and_registration_normalisation(self):
        self.client.force_authenticate(user=self.advisor)

        created = self.client.post(
            "/api/v1/vehicles/",
            {"customer": str(self.customer.id), "registration_number": " mh14xy0001 ", "make": "Honda", "model": "City"},
            format="json",
        )
        search = self.client.get("/api/v1/vehicles/", {"search": "MH14"})

        self.assertEqual(created.status_code, 201)
        self.assertEqual(created.json()["registration_number"], "MH14XY0001")
        self.assertEqual([row["registration_number"] for row in search.json()["results"]], ["MH14XY0001"])

    def test_worker_delete_marks_inactive(self):
        self.client.force_authenticate(user=self.advisor)

        response = self.client.delete(f"/api/v1/workers/{self.worker.id}/")

        self.assertEqual(response.status_code, 204)
        self.worker.refresh_from_db()
        self.assertEqual(self.worker.status, Worker.Status.INACTIVE)
        self.assertEqual(InventoryItem.objects.count(), 1)
