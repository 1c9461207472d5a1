from datetime import date, datetime
from decimal import Decimal
from io import StringIO

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.test import SimpleTestCase, TestCase, override_settings
from django.utils import timezone
from rest_framework.test import APIClient

from common.unit_of_work import UnitOfWork
from core.models import AuditLog, GarageSettings, SequenceCounter
from core.sequences import SequenceNumberAllocator, allocate, day_window
from core.settings_provider import get_business_profile, get_default_tax_rate
from garage.models import Customer, JobCard, Vehicle


class AllocateFormatTests(SimpleTestCase):
    def test_formats_prefix_date_and_padded_serial(self):
        start = datetime(2024, 12, 15, 0, 0, 0)
        end = datetime(2024, 12, 15, 23, 59, 59)

        self.assertEqual(allocate("JC", start, end, 0), "JC-2024-1215-0001")
        self.assertEqual(allocate("INV", start, end, 41), "INV-2024-1215-0042")

    def test_rejects_negative_count(self):
        start = datetime(2024, 1, 1)
        with self.assertRaises(ValueError):
            allocate("JC", start, start, -1)

    @override_settings(TIME_ZONE="Asia/Kolkata")
    def test_day_window_covers_the_local_calendar_day(self):
        start, end = day_window(date(2024, 3, 9))

        self.assertEqual(timezone.localtime(start).strftime("%Y-%m-%d %H:%M:%S"), "2024-03-09 00:00:00")
        self.assertEqual(timezone.localtime(end).strftime("%Y-%m-%d %H:%M:%S"), "2024-03-09 23:59:59")
        self.assertEqual(end.microsecond, 999999)


class SequenceNumberAllocatorTests(TestCase):
    def setUp(self):
        self.allocator = SequenceNumberAllocator("JC", JobCard)
        self.today = timezone.localdate()
        self.prefix = f"JC-{self.today:%Y}-{self.today:%m%d}-"

    def test_numbers_are_sequential_within_a_day(self):
        with UnitOfWork() as uow:
            first = self.allocator.next_number(uow)
            second = self.allocator.next_number(uow)

        self.assertEqual(first, f"{self.prefix}0001")
        self.assertEqual(second, f"{self.prefix}0002")
        self.assertEqual(SequenceCounter.objects.get(prefix="JC", day=self.today).last_value, 2)

    def test_existing_rows_without_counter_are_counted(self):
        customer = Customer.objects.create(name="Asha", phone="900")
        vehicle = Vehicle.objects.create(customer=customer, registration_number="ka01aa0001", make="Tata", model="Nexon")
        for number in ("legacy-1", "legacy-2"):
            JobCard.objects.create(job_card_number=number, vehicle=vehicle, customer_complaints="noise")

        with UnitOfWork() as uow:
            number = self.allocator.next_number(uow)

        self.assertEqual(number, f"{self.prefix}0003")

    def test_rolled_back_allocation_returns_the_number(self):
        uow = UnitOfWork().begin()
        self.allocator.next_number(uow)
        uow.rollback()

        with UnitOfWork() as uow:
            number = self.allocator.next_number(uow)

        self.assertEqual(number, f"{self.prefix}0001")

    def test_counters_are_scoped_per_prefix_and_day(self):
        other_day = date(2023, 1, 5)
        with UnitOfWork() as uow:
            self.allocator.next_number(uow)
            invoice_number = SequenceNumberAllocator("INV", JobCard).next_number(uow)
            past_number = self.allocator.next_number(uow, day=other_day)

        self.assertTrue(invoice_number.startswith("INV-"))
        self.assertTrue(invoice_number.endswith("-0001"))
        self.assertEqual(past_number, "JC-2023-0105-0001")

    def test_requires_active_unit_of_work(self):
        with self.assertRaises(RuntimeError):
            self.allocator.next_number(UnitOfWork())


class SettingsProviderTests(TestCase):
    def test_default_tax_rate_is_eighteen_percent(self):
        self.assertEqual(get_default_tax_rate(), Decimal("18.00"))
        self.assertEqual(GarageSettings.objects.count(), 1)

    @override_settings(GARAGE_DEFAULT_TAX_RATE="12.5")
    def test_default_tax_rate_seeded_from_environment(self):
        self.assertEqual(get_default_tax_rate(), Decimal("12.50"))

    def test_stored_tax_rate_wins(self):
        GarageSettings.objects.create(default_tax_rate=Decimal("5.00"), business_name="Quick Fix")

        self.assertEqual(get_default_tax_rate(), Decimal("5.00"))
        self.assertEqual(get_business_profile()["business_name"], "Quick Fix")


class GarageSettingsApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        user_model = get_user_model()
        self.admin = user_model.objects.create_user(username="settings-admin", password="pass1234", role="admin")
        self.technician = user_model.objects.create_user(username="settings-tech", password="pass1234", role="technician")

    def test_any_user_can_read_settings(self):
        self.client.force_authenticate(user=self.technician)

        response = self.client.get("/api/v1/settings/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["default_tax_rate"], "18.00")

    def test_technician_cannot_change_settings_and_denial_is_logged(self):
        self.client.force_authenticate(user=self.technician)
        with self.assertLogs("security.authorization", level="WARNING") as cm:
            response = self.client.patch("/api/v1/settings/", {"default_tax_rate": "5.00"}, format="json")

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["code"], "permission_denied")
        self.assertTrue(any("permission_denied" in message for message in cm.output))

    def test_admin_update_writes_audit_log(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.patch(
            "/api/v1/settings/",
            {"default_tax_rate": "12.00", "business_name": "Speedy Motors"},
            format="json",
            HTTP_X_REQUEST_ID="req-settings",
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(get_default_tax_rate(), Decimal("12.00"))
        self.assertTrue(AuditLog.objects.filter(action="settings.update", request_id="req-settings").exists())

    def test_rejects_tax_rate_above_hundred(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.patch("/api/v1/settings/", {"default_tax_rate": "120.00"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")
        self.assertIn("default_tax_rate", response.json()["errors"])


class AuditLogApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        user_model = get_user_model()
        self.admin = user_model.objects.create_user(username="audit-admin", password="pass1234", role="admin")
        self.advisor = user_model.objects.create_user(username="audit-advisor", password="pass1234", role="advisor")

    def test_audit_logs_are_read_only(self):
        self.client.force_authenticate(user=self.admin)
        log = AuditLog.objects.create(action="test.action", entity="test", actor=self.admin)

        patch_res = self.client.patch(f"/api/v1/admin/audit-logs/{log.id}/", {"action": "changed"}, format="json")
        delete_res = self.client.delete(f"/api/v1/admin/audit-logs/{log.id}/")

        self.assertEqual(patch_res.status_code, 405)
        self.assertEqual(delete_res.status_code, 405)

    def test_audit_logs_filter_by_entity(self):
        self.client.force_authenticate(user=self.admin)
        AuditLog.objects.create(action="invoice.cancel", entity="invoice", entity_id="abc")
        AuditLog.objects.create(action="job_card.create", entity="job_card", entity_id="def")

        response = self.client.get("/api/v1/admin/audit-logs/", {"entity": "invoice"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual([row["action"] for row in response.json()["results"]], ["invoice.cancel"])

    def test_advisor_cannot_read_audit_logs(self):
        self.client.force_authenticate(user=self.advisor)

        response = self.client.get("/api/v1/admin/audit-logs/")

        self.assertEqual(response.status_code, 403)


class TokenTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = get_user_model().objects.create_user(
            username="token-user",
            email="Token.User@Example.com",
            password="pass1234",
            role="advisor",
        )

    def test_email_is_normalized_on_save(self):
        self.assertEqual(self.user.email, "token.user@example.com")

    def test_can_obtain_token_with_email(self):
        response = self.client.post(
            "/api/v1/token/",
            {"username": "TOKEN.USER@example.com", "password": "pass1234"},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.assertIn("access", response.json())


class SeedGarageDemoCommandTests(TestCase):
    def test_seed_is_idempotent(self):
        out = StringIO()
        call_command("seed_garage_demo", stdout=out)
        call_command("seed_garage_demo", stdout=out)

        self.assertIn("Demo garage seeded successfully.", out.getvalue())
        self.assertEqual(Vehicle.objects.filter(registration_number="MH12AB1234").count(), 1)
        self.assertEqual(get_user_model().objects.filter(username="admin").count(), 1)
