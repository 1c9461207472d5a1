from datetime import timedelta
from decimal import Decimal
from io import StringIO
from unittest import mock

from django.contrib.auth import get_user_model
from django.core.cache import cache
from django.core.management import call_command
from django.db import DatabaseError
from django.test import SimpleTestCase, TestCase
from django.utils import timezone
from rest_framework.test import APIClient

from billing import payments
from billing.calculator import calculate_invoice
from billing.models import Invoice, Payment
from billing.payments import cancel_invoice, invoice_stats, reconcile_customer_spending, record_payment
from billing.reports import (
    customer_stats,
    dashboard_summary,
    inventory_stats,
    job_card_stats,
    revenue_report,
    technician_performance,
)
from billing.services import DEFAULT_TERMS_AND_CONDITIONS, create_invoice
from common.errors import DuplicateInvoiceError, InvalidStateError, NotFoundError, ValidationError
from common.utils import local_day_bounds
from core.settings_provider import get_garage_settings
from garage import reads
from garage.models import Customer, JobCard, Vehicle, Worker
from garage.services import add_part, add_service, change_status, create_job_card
from inventory.services import create_inventory_item


class CalculateInvoiceTests(SimpleTestCase):
    def test_percentage_discount_and_tax(self):
        calc = calculate_invoice(
            labor_cost="1000",
            parts_cost="500",
            discount_percentage="10",
            tax_rate="18",
        )

        self.assertEqual(calc.subtotal, Decimal("1500.00"))
        self.assertEqual(calc.discount_amount, Decimal("150.00"))
        self.assertEqual(calc.taxable_amount, Decimal("1350.00"))
        self.assertEqual(calc.tax_amount, Decimal("243.00"))
        self.assertEqual(calc.total_amount, Decimal("1593.00"))

    def test_flat_discount_applies_without_percentage(self):
        calc = calculate_invoice(labor_cost="200", parts_cost="100", discount="50", tax_rate="0")

        self.assertEqual(calc.discount_amount, Decimal("50.00"))
        self.assertEqual(calc.total_amount, Decimal("250.00"))

    def test_percentage_wins_over_flat_discount(self):
        calc = calculate_invoice(labor_cost="100", parts_cost="0", discount="90", discount_percentage="5")

        self.assertEqual(calc.discount_amount, Decimal("5.00"))

    def test_amounts_round_half_up_and_add_up(self):
        calc = calculate_invoice(labor_cost="333.33", parts_cost="0.02", discount_percentage="7.5", tax_rate="18")

        self.assertEqual(calc.discount_amount, Decimal("25.00"))
        self.assertEqual(calc.tax_amount, Decimal("55.50"))
        self.assertEqual(calc.subtotal - calc.discount_amount + calc.tax_amount, calc.total_amount)

    def test_rejects_invalid_inputs(self):
        cases = [
            {"labor_cost": "-1", "parts_cost": "0"},
            {"labor_cost": "10", "parts_cost": "0", "discount": "-1"},
            {"labor_cost": "10", "parts_cost": "0", "discount_percentage": "101"},
            {"labor_cost": "10", "parts_cost": "0", "tax_rate": "-5"},
            {"labor_cost": "10", "parts_cost": "0", "discount": "11"},
        ]
        for kwargs in cases:
            with self.subTest(kwargs=kwargs), self.assertRaises(ValidationError):
                calculate_invoice(**kwargs)

    def test_rejects_unparseable_and_non_finite_amounts(self):
        cases = [
            {"labor_cost": "1000", "parts_cost": "500", "discount": "abc"},
            {"labor_cost": "NaN", "parts_cost": "0"},
            {"labor_cost": "10", "parts_cost": "0", "tax_rate": "Infinity"},
            {"labor_cost": "10", "parts_cost": "0", "discount_percentage": [5]},
        ]
        for kwargs in cases:
            with self.subTest(kwargs=kwargs), self.assertRaises(ValidationError) as caught:
                calculate_invoice(**kwargs)
            self.assertEqual(caught.exception.message, "Invalid amount")


class BillingFixtureMixin:
    def make_completed_job_card(self, registration="DL03CD7788"):
        customer = Customer.objects.create(name="Anita Rao", phone="+919800000020")
        vehicle = Vehicle.objects.create(customer=customer, registration_number=registration, make="Hyundai", model="i20")
        item = create_inventory_item(
            part_number=f"PAD-{registration}",
            name="Brake Pad Set",
            opening_stock=4,
            selling_price="250.00",
        ).unwrap()
        job_card = create_job_card(vehicle_id=vehicle.id, customer_complaints="Brake noise").unwrap()
        add_service(job_card.id, "Brake overhaul", "1000").unwrap()
        add_part(job_card.id, item.id, 2).unwrap()
        change_status(job_card.id, JobCard.Status.IN_PROGRESS).unwrap()
        change_status(job_card.id, JobCard.Status.COMPLETED).unwrap()
        return job_card, customer


class InvoiceServiceTests(BillingFixtureMixin, TestCase):
    def setUp(self):
        reads.reset_coalescer(grace_period=0)
        self.job_card, self.customer = self.make_completed_job_card()

    def test_invoice_uses_job_card_costs_and_default_tax(self):
        invoice = create_invoice(self.job_card.id, discount_percentage=10).unwrap()

        self.assertRegex(invoice.invoice_number, r"^INV-\d{4}-\d{4}-0001$")
        self.assertEqual(invoice.customer, self.customer)
        self.assertEqual(invoice.subtotal, Decimal("1500.00"))
        self.assertEqual(invoice.discount, Decimal("150.00"))
        self.assertEqual(invoice.tax_amount, Decimal("243.00"))
        self.assertEqual(invoice.total_amount, Decimal("1593.00"))
        self.assertEqual(invoice.pending_amount, Decimal("1593.00"))
        self.assertEqual(invoice.payment_status, Invoice.PaymentStatus.UNPAID)
        self.assertEqual(invoice.terms_and_conditions, DEFAULT_TERMS_AND_CONDITIONS)

    def test_tax_rate_follows_garage_settings(self):
        garage_settings = get_garage_settings()
        garage_settings.default_tax_rate = Decimal("5.00")
        garage_settings.save()

        invoice = create_invoice(self.job_card.id).unwrap()

        self.assertEqual(invoice.tax_rate, Decimal("5.00"))
        self.assertEqual(invoice.total_amount, Decimal("1575.00"))

    def test_second_invoice_for_job_card_is_rejected(self):
        create_invoice(self.job_card.id).unwrap()

        result = create_invoice(self.job_card.id)

        self.assertIsInstance(result.error, DuplicateInvoiceError)
        self.assertEqual(Invoice.objects.count(), 1)

    def test_invoice_requires_completed_job_card(self):
        customer = Customer.objects.create(name="Other", phone="1")
        vehicle = Vehicle.objects.create(customer=customer, registration_number="GJ01AA0001", make="Tata", model="Nexon")
        pending = create_job_card(vehicle_id=vehicle.id, customer_complaints="AC").unwrap()

        result = create_invoice(pending.id)

        self.assertIsInstance(result.error, InvalidStateError)
        self.assertEqual(result.error.message, "Invoice can only be generated for completed or delivered job cards")

    def test_unknown_job_card(self):
        result = create_invoice("00000000-0000-0000-0000-000000000000")

        self.assertIsInstance(result.error, NotFoundError)
        self.assertEqual(result.error.message, "Job card not found")


class PaymentTests(BillingFixtureMixin, TestCase):
    def setUp(self):
        reads.reset_coalescer(grace_period=0)
        self.job_card, self.customer = self.make_completed_job_card()
        self.invoice = create_invoice(self.job_card.id).unwrap()

    def test_partial_payment_keeps_invoice_unpaid(self):
        invoice = record_payment(self.invoice.id, "500", "upi", transaction_id="UPI-1").unwrap()

        self.assertEqual(invoice.payment_status, Invoice.PaymentStatus.UNPAID)
        self.assertEqual(invoice.paid_amount, Decimal("500.00"))
        self.assertEqual(invoice.pending_amount, self.invoice.total_amount - Decimal("500.00"))
        self.customer.refresh_from_db()
        self.assertEqual(self.customer.total_spent, Decimal("0.00"))

    def test_full_payment_marks_paid_and_credits_customer_once(self):
        invoice = record_payment(self.invoice.id, self.invoice.total_amount, "cash").unwrap()
        repeat = record_payment(self.invoice.id, "1", "cash")

        self.assertEqual(invoice.payment_status, Invoice.PaymentStatus.PAID)
        self.assertEqual(invoice.pending_amount, Decimal("0.00"))
        self.assertIsNotNone(invoice.payment_date)
        self.assertEqual(repeat.error.message, "Invoice is already paid")
        self.customer.refresh_from_db()
        self.assertEqual(self.customer.total_spent, self.invoice.total_amount)
        self.assertEqual(Payment.objects.filter(invoice=self.invoice).count(), 1)

    def test_overpayment_is_rejected(self):
        result = record_payment(self.invoice.id, self.invoice.total_amount + Decimal("0.01"), "card")

        self.assertEqual(result.error.message, "Payment amount cannot exceed total amount")
        self.invoice.refresh_from_db()
        self.customer.refresh_from_db()
        self.assertEqual(self.invoice.paid_amount, Decimal("0.00"))
        self.assertEqual(self.invoice.pending_amount, self.invoice.total_amount)
        self.assertEqual(self.invoice.payment_status, Invoice.PaymentStatus.UNPAID)
        self.assertIsNone(self.invoice.payment_mode)
        self.assertEqual(Payment.objects.filter(invoice=self.invoice).count(), 0)
        self.assertEqual(self.customer.total_spent, Decimal("0.00"))

    def test_non_positive_payment_and_unknown_mode(self):
        self.assertIsInstance(record_payment(self.invoice.id, "0", "cash").error, ValidationError)
        self.assertIsInstance(record_payment(self.invoice.id, "10", "cheque").error, ValidationError)

    def test_unparseable_amount_is_a_validation_result(self):
        for amount in ("NaN", "Infinity", "ten rupees"):
            with self.subTest(amount=amount):
                result = record_payment(self.invoice.id, amount, "cash")

                self.assertFalse(result.ok)
                self.assertIsInstance(result.error, ValidationError)
                self.assertEqual(result.error.message, "Invalid amount")
        self.assertEqual(Payment.objects.count(), 0)

    def test_failed_customer_update_rolls_back_the_payment(self):
        with mock.patch.object(
            Customer.objects, "select_for_update", side_effect=DatabaseError("could not lock customer")
        ):
            with self.assertRaises(DatabaseError):
                record_payment(self.invoice.id, self.invoice.total_amount, "cash")

        self.invoice.refresh_from_db()
        self.customer.refresh_from_db()
        self.assertEqual(self.invoice.payment_status, Invoice.PaymentStatus.UNPAID)
        self.assertEqual(self.invoice.paid_amount, Decimal("0.00"))
        self.assertEqual(self.invoice.pending_amount, self.invoice.total_amount)
        self.assertIsNone(self.invoice.payment_date)
        self.assertEqual(Payment.objects.filter(invoice=self.invoice).count(), 0)
        self.assertEqual(self.customer.total_spent, Decimal("0.00"))

    def test_only_unpaid_invoices_can_be_cancelled(self):
        cancelled = cancel_invoice(self.invoice.id).unwrap()

        self.assertEqual(cancelled.payment_status, Invoice.PaymentStatus.CANCELLED)
        self.assertEqual(cancelled.pending_amount, cancelled.total_amount)
        self.assertEqual(cancel_invoice(self.invoice.id).error.message, "Invoice is already cancelled")
        self.assertEqual(
            record_payment(self.invoice.id, "10", "cash").error.message,
            "Cannot update payment for cancelled invoice",
        )

    def test_paid_invoice_cannot_be_cancelled(self):
        record_payment(self.invoice.id, self.invoice.total_amount, "bank_transfer").unwrap()

        self.assertEqual(cancel_invoice(self.invoice.id).error.message, "Cannot cancel paid invoice")

    def test_stats(self):
        job_card, _ = self.make_completed_job_card(registration="DL03CD9999")
        other = create_invoice(job_card.id).unwrap()
        record_payment(self.invoice.id, self.invoice.total_amount, "cash").unwrap()

        stats = invoice_stats()

        self.assertEqual(stats["total_revenue"], self.invoice.total_amount)
        self.assertEqual(stats["total_pending"], other.total_amount)
        self.assertEqual(stats["paid_count"], 1)
        self.assertEqual(stats["unpaid_count"], 1)
        self.assertEqual(stats["cancelled_count"], 0)


class ReconcileCustomerSpendingTests(BillingFixtureMixin, TestCase):
    def setUp(self):
        reads.reset_coalescer(grace_period=0)
        job_card, self.customer = self.make_completed_job_card()
        self.invoice = create_invoice(job_card.id).unwrap()
        record_payment(self.invoice.id, self.invoice.total_amount, "cash").unwrap()

    def test_consistent_ledger_reports_no_drift(self):
        self.assertEqual(reconcile_customer_spending(), [])

    def test_customers_are_locked_before_invoice_sums_are_read(self):
        calls = mock.Mock()
        with mock.patch(
            "billing.payments._lock_customers", wraps=payments._lock_customers
        ) as lock_customers, mock.patch(
            "billing.payments._paid_totals_by_customer", wraps=payments._paid_totals_by_customer
        ) as paid_totals:
            calls.attach_mock(lock_customers, "lock_customers")
            calls.attach_mock(paid_totals, "paid_totals")

            drift = reconcile_customer_spending(fix=True)

        self.assertEqual(drift, [])
        self.assertEqual(calls.mock_calls, [mock.call.lock_customers(), mock.call.paid_totals()])

    def test_command_reports_and_fixes_drift(self):
        Customer.objects.filter(pk=self.customer.pk).update(total_spent=Decimal("1.00"))

        report = StringIO()
        call_command("reconcile_customer_spending", stdout=report)
        self.customer.refresh_from_db()
        self.assertEqual(self.customer.total_spent, Decimal("1.00"))
        self.assertIn("Re-run with --fix", report.getvalue())

        fixed = StringIO()
        call_command("reconcile_customer_spending", "--fix", stdout=fixed)
        self.customer.refresh_from_db()
        self.assertEqual(self.customer.total_spent, self.invoice.total_amount)
        self.assertIn("Corrected 1 customer(s).", fixed.getvalue())


class InvoiceApiTests(BillingFixtureMixin, TestCase):
    def setUp(self):
        reads.reset_coalescer(grace_period=0)
        self.job_card, self.customer = self.make_completed_job_card()
        self.invoice = create_invoice(self.job_card.id).unwrap()
        self.client = APIClient()
        user_model = get_user_model()
        self.admin = user_model.objects.create_user(username="bill-admin", password="pass1234", role="admin")
        self.advisor = user_model.objects.create_user(username="bill-advisor", password="pass1234", role="advisor")
        self.technician = user_model.objects.create_user(username="bill-tech", password="pass1234", role="technician")

    def test_technician_cannot_see_invoices(self):
        self.client.force_authenticate(user=self.technician)

        response = self.client.get("/api/v1/invoices/")

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["code"], "permission_denied")

    def test_advisor_records_payment(self):
        self.client.force_authenticate(user=self.advisor)

        response = self.client.post(
            f"/api/v1/invoices/{self.invoice.id}/payment/",
            {"paid_amount": str(self.invoice.total_amount), "payment_mode": "upi", "transaction_id": "UTR123"},
            format="json",
        )
        detail = self.client.get(f"/api/v1/invoices/{self.invoice.id}/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["payment_status"], Invoice.PaymentStatus.PAID)
        self.assertEqual(detail.json()["payments"][0]["recorded_by_username"], "bill-advisor")

    def test_overpayment_envelope(self):
        self.client.force_authenticate(user=self.advisor)

        response = self.client.post(
            f"/api/v1/invoices/{self.invoice.id}/payment/",
            {"paid_amount": "99999.00", "payment_mode": "cash"},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "Payment amount cannot exceed total amount")

    def test_only_admin_cancels(self):
        self.client.force_authenticate(user=self.advisor)
        denied = self.client.post(f"/api/v1/invoices/{self.invoice.id}/cancel/")
        self.client.force_authenticate(user=self.admin)
        allowed = self.client.post(f"/api/v1/invoices/{self.invoice.id}/cancel/")

        self.assertEqual(denied.status_code, 403)
        self.assertEqual(allowed.status_code, 200)
        self.assertEqual(allowed.json()["payment_status"], Invoice.PaymentStatus.CANCELLED)

    def test_document_resolves_all_parties(self):
        self.client.force_authenticate(user=self.advisor)

        response = self.client.get(f"/api/v1/invoices/{self.invoice.id}/document/")

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["business"]["business_name"], "My Garage")
        self.assertEqual(payload["invoice"]["invoice_number"], self.invoice.invoice_number)
        self.assertEqual(payload["customer"]["name"], "Anita Rao")
        self.assertEqual(payload["vehicle"]["registration_number"], "DL03CD7788")
        self.assertEqual(len(payload["job_card"]["services"]), 1)
        self.assertEqual(payload["job_card"]["parts"][0]["quantity"], 2)

    def test_filter_by_status_and_stats(self):
        self.client.force_authenticate(user=self.advisor)

        unpaid = self.client.get("/api/v1/invoices/", {"payment_status": "unpaid"})
        paid = self.client.get("/api/v1/invoices/", {"payment_status": "paid"})
        stats = self.client.get("/api/v1/invoices/stats/")

        self.assertEqual(unpaid.json()["count"], 1)
        self.assertEqual(paid.json()["count"], 0)
        self.assertEqual(stats.json()["unpaid_count"], 1)


class ReportFixtureMixin(BillingFixtureMixin):
    def make_report_ledger(self):
        reads.reset_coalescer(grace_period=0)
        cache.clear()
        self.paid_job_card, self.paying_customer = self.make_completed_job_card()
        self.unpaid_job_card, self.owing_customer = self.make_completed_job_card(registration="DL03CD9999")
        self.paid_invoice = create_invoice(self.paid_job_card.id).unwrap()
        self.unpaid_invoice = create_invoice(self.unpaid_job_card.id).unwrap()
        record_payment(self.paid_invoice.id, self.paid_invoice.total_amount, "cash").unwrap()

    def backdate_creation(self, job_card, hours):
        job_card.refresh_from_db()
        JobCard.objects.filter(pk=job_card.pk).update(
            created_at=job_card.actual_completion_date - timedelta(hours=hours)
        )


class ReportQueryTests(ReportFixtureMixin, TestCase):
    def setUp(self):
        self.make_report_ledger()

    def test_revenue_excludes_cancelled_invoices(self):
        job_card, _ = self.make_completed_job_card(registration="DL03CD5555")
        cancel_invoice(create_invoice(job_card.id).unwrap().id).unwrap()

        report = revenue_report()

        self.assertEqual(report["total_invoiced"], Decimal("3540.00"))
        self.assertEqual(report["paid_amount"], Decimal("1770.00"))
        self.assertEqual(report["pending_amount"], Decimal("1770.00"))
        self.assertEqual(report["average_invoice_value"], Decimal("1770.00"))
        self.assertEqual(
            (report["invoice_count"], report["paid_count"], report["unpaid_count"], report["cancelled_count"]),
            (2, 1, 1, 1),
        )
        self.assertEqual(
            report["daily"],
            [{"day": timezone.localdate().isoformat(), "invoice_count": 2, "revenue": Decimal("3540.00")}],
        )
        self.assertEqual(
            report["payment_modes"],
            [{"payment_mode": "cash", "invoice_count": 1, "amount": Decimal("1770.00")}],
        )

    def test_revenue_window_filters_on_invoice_date(self):
        Invoice.objects.filter(pk=self.unpaid_invoice.pk).update(invoice_date=timezone.now() - timedelta(days=40))
        start, end = local_day_bounds(timezone.localdate())

        report = revenue_report(start, end)

        self.assertEqual(report["total_invoiced"], Decimal("1770.00"))
        self.assertEqual(report["invoice_count"], 1)
        self.assertEqual(report["pending_amount"], Decimal("0.00"))

    def test_job_card_stats_zero_fill_every_status(self):
        worker = Worker.objects.create(name="Meera", phone="+919800000030")
        create_job_card(
            vehicle_id=self.paid_job_card.vehicle_id,
            customer_complaints="Wipers",
            assigned_technician_id=worker.id,
            priority=JobCard.Priority.HIGH,
        ).unwrap()
        self.backdate_creation(self.paid_job_card, hours=3)
        self.backdate_creation(self.unpaid_job_card, hours=5)

        stats = job_card_stats()

        self.assertEqual(stats["total_job_cards"], 3)
        self.assertEqual(
            stats["status_breakdown"],
            {"pending": 1, "in_progress": 0, "completed": 2, "delivered": 0, "cancelled": 0},
        )
        self.assertEqual(stats["priority_breakdown"], {"low": 0, "normal": 2, "high": 1, "urgent": 0})
        self.assertEqual(stats["technician_workload"], [{"worker_id": str(worker.id), "name": "Meera", "job_cards": 1}])
        self.assertEqual(stats["average_completion_hours"], 4.0)

    def test_technician_performance_counts_finished_work(self):
        busy = Worker.objects.create(name="Meera", phone="+919800000030")
        idle = Worker.objects.create(name="Arjun", phone="+919800000031")
        Worker.objects.create(name="Gone", phone="+919800000032", status=Worker.Status.RESIGNED)
        JobCard.objects.filter(pk=self.paid_job_card.pk).update(assigned_technician=busy)
        self.backdate_creation(self.paid_job_card, hours=2)
        create_job_card(
            vehicle_id=self.paid_job_card.vehicle_id,
            customer_complaints="Wipers",
            assigned_technician_id=busy.id,
        ).unwrap()

        rows = technician_performance()

        self.assertEqual([row["name"] for row in rows], ["Meera", "Arjun"])
        self.assertEqual(rows[0]["total_jobs"], 2)
        self.assertEqual(rows[0]["completed_jobs"], 1)
        self.assertEqual(rows[0]["pending_jobs"], 1)
        self.assertEqual(rows[0]["completion_rate"], Decimal("50.00"))
        self.assertEqual(rows[0]["average_completion_hours"], 2.0)
        self.assertEqual(rows[0]["revenue_generated"], Decimal("1500.00"))
        self.assertEqual(rows[1]["worker_id"], str(idle.id))
        self.assertEqual(rows[1]["completion_rate"], Decimal("0.00"))
        self.assertEqual(rows[1]["revenue_generated"], Decimal("0.00"))

    def test_customer_stats_rank_by_total_spent(self):
        stats = customer_stats()

        self.assertEqual(stats["total_customers"], 2)
        self.assertEqual(stats["new_customers"], 2)
        self.assertEqual(stats["active_customers"], 2)
        self.assertEqual(stats["retention_rate"], Decimal("100.00"))
        self.assertEqual(stats["average_customer_value"], Decimal("885.00"))
        self.assertEqual(
            stats["top_customers"],
            [
                {
                    "customer_id": str(self.paying_customer.id),
                    "name": "Anita Rao",
                    "phone": "+919800000020",
                    "total_spent": Decimal("1770.00"),
                    "job_card_count": 1,
                }
            ],
        )

    def test_inventory_stats_value_and_alerts(self):
        create_inventory_item(part_number="BLB-1", name="Bulb", opening_stock=0, selling_price="50.00").unwrap()
        create_inventory_item(
            part_number="CLT-1",
            name="Coolant",
            opening_stock=20,
            minimum_stock=5,
            purchase_price="6.00",
            selling_price="10.00",
        ).unwrap()

        stats = inventory_stats()

        self.assertEqual(stats["total_items"], 4)
        self.assertEqual((stats["in_stock"], stats["low_stock"], stats["out_of_stock"]), (1, 2, 1))
        self.assertEqual(stats["total_inventory_value"], Decimal("1200.00"))
        self.assertEqual(stats["total_inventory_cost"], Decimal("120.00"))
        self.assertEqual([alert["alert_level"] for alert in stats["stock_alerts"]], ["out", "low", "low"])
        self.assertEqual(stats["stock_alerts"][0]["part_number"], "BLB-1")
        self.assertEqual(len(stats["top_used_parts"]), 2)
        self.assertEqual({row["quantity"] for row in stats["top_used_parts"]}, {2})
        self.assertEqual({row["total_value"] for row in stats["top_used_parts"]}, {Decimal("500.00")})

    def test_dashboard_compares_month_with_last_month(self):
        now = timezone.now()
        last_month = timezone.localdate(now).replace(day=1) - timedelta(days=5)
        Invoice.objects.filter(pk=self.unpaid_invoice.pk).update(invoice_date=local_day_bounds(last_month)[0])

        summary = dashboard_summary(now=now)

        self.assertEqual(summary["today_revenue"], Decimal("1770.00"))
        self.assertEqual(summary["month_revenue"], Decimal("1770.00"))
        self.assertEqual(summary["last_month_revenue"], Decimal("1770.00"))
        self.assertEqual(summary["revenue_growth"], Decimal("0.00"))
        self.assertEqual(summary["pending_invoices"], 1)
        self.assertEqual(summary["pending_job_cards"], 0)
        self.assertEqual(summary["low_stock_items"], 2)
        self.assertEqual(summary["new_customers_this_month"], 2)

    def test_dashboard_growth_without_last_month_revenue(self):
        summary = dashboard_summary()

        self.assertEqual(summary["month_revenue"], Decimal("3540.00"))
        self.assertEqual(summary["revenue_growth"], Decimal("100.00"))


class ReportApiTests(ReportFixtureMixin, TestCase):
    def setUp(self):
        self.make_report_ledger()
        self.client = APIClient()
        user_model = get_user_model()
        self.advisor = user_model.objects.create_user(username="report-advisor", password="pass1234", role="advisor")
        self.technician = user_model.objects.create_user(username="report-tech", password="pass1234", role="technician")

    def test_desk_roles_read_reports(self):
        self.client.force_authenticate(user=self.advisor)

        for url in (
            "/api/v1/reports/revenue/",
            "/api/v1/reports/job-cards/",
            "/api/v1/reports/technicians/",
            "/api/v1/reports/customers/",
            "/api/v1/reports/inventory/",
            "/api/v1/reports/dashboard/",
        ):
            with self.subTest(url=url):
                self.assertEqual(self.client.get(url).status_code, 200)

        revenue = self.client.get("/api/v1/reports/revenue/").json()
        self.assertEqual(revenue["total_invoiced"], 3540.0)
        self.assertEqual(revenue["paid_count"], 1)

    def test_technician_cannot_read_reports(self):
        self.client.force_authenticate(user=self.technician)

        response = self.client.get("/api/v1/reports/revenue/")

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["code"], "permission_denied")

    def test_date_window_and_limit_are_validated(self):
        self.client.force_authenticate(user=self.advisor)

        half_window = self.client.get("/api/v1/reports/revenue/", {"date_from": "2026-01-01"})
        reversed_window = self.client.get(
            "/api/v1/reports/job-cards/", {"date_from": "2026-02-01", "date_to": "2026-01-01"}
        )
        bad_limit = self.client.get("/api/v1/reports/customers/", {"limit": "0"})
        bad_timezone = self.client.get("/api/v1/reports/revenue/", {"timezone": "Mars/Olympus"})

        for response in (half_window, reversed_window, bad_limit, bad_timezone):
            self.assertEqual(response.status_code, 400)
            self.assertEqual(response.json()["code"], "validation_error")
        self.assertIn("date_range", half_window.json()["errors"])
        self.assertIn("limit", bad_limit.json()["errors"])

    def test_window_outside_activity_is_empty(self):
        self.client.force_authenticate(user=self.advisor)

        response = self.client.get("/api/v1/reports/revenue/", {"date_from": "2000-01-01", "date_to": "2000-01-31"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["invoice_count"], 0)
        self.assertEqual(response.json()["daily"], [])

    def test_csv_export(self):
        self.client.force_authenticate(user=self.advisor)

        response = self.client.get("/api/v1/reports/customers/", {"export": "csv"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response["Content-Type"], "text/csv")
        self.assertIn('filename="top_customers.csv"', response["Content-Disposition"])
        lines = response.content.decode().splitlines()
        self.assertEqual(lines[0], "customer_id,name,phone,total_spent,job_card_count")
        self.assertIn("Anita Rao", lines[1])
