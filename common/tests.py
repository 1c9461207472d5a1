import json
import logging
import threading
import time

from django.db.models import ProtectedError
from django.test import SimpleTestCase, TestCase
from rest_framework.exceptions import NotFound

from common.coalescer import AggregateReadCoalescer
from common.errors import InsufficientStockError, InvalidStateError, NotFoundError, ValidationError
from common.exceptions import custom_exception_handler
from common.logging import JsonFormatter
from common.results import OperationResult, returns_result
from common.unit_of_work import UnitOfWork
from common.utils import to_decimal, to_money
from garage.models import Customer


class FakeTimer:
    created = []

    def __init__(self, interval, function, args=()):
        self.interval = interval
        self.function = function
        self.args = args
        self.daemon = False
        self.started = False
        self.cancelled = False
        FakeTimer.created.append(self)

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.function(*self.args)


class AggregateReadCoalescerTests(SimpleTestCase):
    def setUp(self):
        FakeTimer.created = []
        self.loads = 0
        self.value = {"version": 1}
        self.coalescer = AggregateReadCoalescer(grace_period=5, timer_factory=FakeTimer)

    def loader(self):
        self.loads += 1
        return dict(self.value)

    def test_concurrent_subscribers_share_one_load(self):
        first = self.coalescer.subscribe("job_card", "a", self.loader)
        second = self.coalescer.subscribe("job_card", "a", self.loader)

        self.assertEqual(self.loads, 1)
        self.assertEqual(first.value, second.value)
        self.assertEqual(self.coalescer.subscriber_count("job_card", "a"), 2)

    def test_threads_subscribing_together_share_one_load(self):
        workers = 16
        barrier = threading.Barrier(workers)
        counter_lock = threading.Lock()
        received = [[] for _ in range(workers)]
        initial = [None] * workers
        errors = []

        def slow_loader():
            with counter_lock:
                self.loads += 1
            time.sleep(0.05)
            return dict(self.value)

        def subscribe(index):
            try:
                barrier.wait()
                subscription = self.coalescer.subscribe("job_card", "a", slow_loader, received[index].append)
                initial[index] = subscription.value
            except Exception as exc:
                errors.append(exc)

        threads = [threading.Thread(target=subscribe, args=(index,)) for index in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        self.assertEqual(errors, [])
        self.assertEqual(self.loads, 1)
        self.assertEqual(self.coalescer.subscriber_count("job_card", "a"), workers)
        self.assertTrue(all(value is initial[0] for value in initial))

        self.value = {"version": 2}
        self.coalescer.publish("job_card", "a")

        self.assertEqual(self.loads, 2)
        for values in received:
            self.assertEqual(values, [{"version": 1}, {"version": 2}])

    def test_late_subscriber_gets_latest_value_immediately(self):
        self.coalescer.subscribe("job_card", "a", self.loader)
        self.value = {"version": 2}
        self.coalescer.publish("job_card", "a")

        received = []
        self.coalescer.subscribe("job_card", "a", self.loader, received.append)

        self.assertEqual(received, [{"version": 2}])
        self.assertEqual(self.loads, 2)

    def test_publish_fans_out_to_every_subscriber(self):
        first, second = [], []
        self.coalescer.subscribe("job_card", "a", self.loader, first.append)
        self.coalescer.subscribe("job_card", "a", self.loader, second.append)

        self.value = {"version": 3}
        self.assertTrue(self.coalescer.publish("job_card", "a"))

        self.assertEqual(first[-1], {"version": 3})
        self.assertEqual(second[-1], {"version": 3})
        self.assertFalse(self.coalescer.publish("job_card", "unknown"))

    def test_keys_are_independent(self):
        self.coalescer.subscribe("job_card", "a", self.loader)
        self.coalescer.subscribe("job_card", "b", self.loader)
        self.coalescer.subscribe("invoice", "a", self.loader)

        self.assertEqual(self.loads, 3)

    def test_handle_survives_grace_period_churn(self):
        subscription = self.coalescer.subscribe("job_card", "a", self.loader)
        subscription.close()
        subscription.close()

        self.assertTrue(self.coalescer.is_active("job_card", "a"))
        self.assertEqual(len(FakeTimer.created), 1)
        self.assertTrue(FakeTimer.created[0].started)

        self.coalescer.subscribe("job_card", "a", self.loader)
        FakeTimer.created[0].fire()

        self.assertTrue(FakeTimer.created[0].cancelled)
        self.assertTrue(self.coalescer.is_active("job_card", "a"))
        self.assertEqual(self.loads, 1)

    def test_handle_is_removed_after_grace_period(self):
        with self.coalescer.subscribe("job_card", "a", self.loader):
            pass

        FakeTimer.created[0].fire()

        self.assertFalse(self.coalescer.is_active("job_card", "a"))
        self.coalescer.subscribe("job_card", "a", self.loader)
        self.assertEqual(self.loads, 2)

    def test_zero_grace_period_tears_down_immediately(self):
        coalescer = AggregateReadCoalescer(grace_period=0, timer_factory=FakeTimer)
        coalescer.subscribe("job_card", "a", self.loader).close()

        self.assertFalse(coalescer.is_active("job_card", "a"))
        self.assertEqual(FakeTimer.created, [])

    def test_failed_load_does_not_leak_handle(self):
        coalescer = AggregateReadCoalescer(grace_period=0, timer_factory=FakeTimer)

        def broken():
            raise NotFoundError("job card")

        with self.assertRaises(NotFoundError):
            coalescer.subscribe("job_card", "missing", broken)
        self.assertFalse(coalescer.is_active("job_card", "missing"))


class UnitOfWorkTests(TestCase):
    def test_commit_persists_and_runs_callbacks(self):
        called = []
        with self.captureOnCommitCallbacks(execute=True):
            with UnitOfWork() as uow:
                Customer.objects.create(name="Committed", phone="1")
                uow.on_commit(lambda: called.append("done"))

        self.assertTrue(Customer.objects.filter(name="Committed").exists())
        self.assertEqual(called, ["done"])

    def test_error_rolls_back_every_write(self):
        with self.captureOnCommitCallbacks() as callbacks:
            with self.assertRaises(InvalidStateError):
                with UnitOfWork() as uow:
                    Customer.objects.create(name="Rolled back", phone="1")
                    uow.on_commit(lambda: None)
                    raise InvalidStateError("stop")

        self.assertFalse(Customer.objects.filter(name="Rolled back").exists())
        self.assertEqual(callbacks, [])

    def test_explicit_rollback(self):
        uow = UnitOfWork().begin()
        Customer.objects.create(name="Explicit", phone="1")
        uow.rollback()

        self.assertFalse(uow.active)
        self.assertFalse(Customer.objects.filter(name="Explicit").exists())

    def test_inactive_unit_refuses_work(self):
        uow = UnitOfWork()
        with self.assertRaises(RuntimeError):
            uow.ensure_active()
        with self.assertRaises(RuntimeError):
            uow.commit()


class ReturnsResultTests(SimpleTestCase):
    def test_business_errors_become_failures(self):
        @returns_result
        def reject():
            raise InsufficientStockError("Clutch plate", 1, 2)

        result = reject()

        self.assertFalse(result.ok)
        self.assertEqual(result.error.details, {"item_name": "Clutch plate", "available": 1, "required": 2})
        with self.assertRaises(InsufficientStockError):
            result.unwrap()

    def test_success_and_unexpected_errors(self):
        @returns_result
        def ok():
            return 42

        @returns_result
        def broken():
            raise KeyError("bug")

        self.assertEqual(ok(), OperationResult.success(42))
        with self.assertRaises(KeyError):
            broken()


class ExceptionHandlerTests(SimpleTestCase):
    def test_garage_error_envelope(self):
        response = custom_exception_handler(InvalidStateError("Invoice is already paid"), {})

        self.assertEqual(response.status_code, 409)
        self.assertEqual(
            response.data,
            {"code": "invalid_state", "message": "Invoice is already paid", "errors": None, "status": 409},
        )

    def test_drf_errors_use_same_envelope(self):
        response = custom_exception_handler(NotFound(), {})

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.data["code"], "not_found")
        self.assertEqual(response.data["status"], 404)

    def test_protected_delete_becomes_conflict(self):
        response = custom_exception_handler(ProtectedError("still referenced", set()), {})

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data["code"], "invalid_state")


class MoneyAndLoggingTests(SimpleTestCase):
    def test_to_money_rounds_half_up(self):
        self.assertEqual(str(to_money("2.345")), "2.35")
        self.assertEqual(str(to_money(0.1)), "0.10")
        self.assertEqual(str(to_money(None)), "0.00")

    def test_unparseable_and_non_finite_amounts_are_rejected(self):
        for value in ("abc", "", "NaN", "sNaN", "Infinity", "-Infinity", float("nan"), object()):
            with self.subTest(value=value), self.assertRaises(ValidationError) as caught:
                to_decimal(value)
            self.assertEqual(caught.exception.message, "Invalid amount")

        with self.assertRaises(ValidationError):
            to_money("Infinity")
        with self.assertRaises(ValidationError):
            to_money("1e40")

    def test_json_formatter_includes_domain_keys(self):
        record = logging.LogRecord("garage.engine", logging.INFO, __file__, 1, "invoice_created", None, None)
        record.invoice_number = "INV-2026-0101-0001"
        record.error_code = None

        payload = json.loads(JsonFormatter().format(record))

        self.assertEqual(payload["logger"], "garage.engine")
        self.assertEqual(payload["invoice_number"], "INV-2026-0101-0001")
        self.assertNotIn("error_code", payload)
