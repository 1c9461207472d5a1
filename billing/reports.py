"""Read-only reports over the invoice, job card, customer and inventory ledgers.

Revenue figures ignore cancelled invoices. Windows are inclusive and filter on
``invoice_date`` for invoices and ``created_at`` for everything else.
"""
import csv
from collections import defaultdict
from datetime import datetime, time, timedelta
from decimal import Decimal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from django.conf import settings
from django.core.cache import cache
from django.db.models import Count, DecimalField, ExpressionWrapper, F, Q, Sum
from django.db.models.functions import Coalesce, TruncDate
from django.http import HttpResponse
from django.utils import timezone
from django.utils.dateparse import parse_date
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from billing.models import Invoice
from common.permissions import RoleCapabilityPermission
from common.utils import ZERO, local_day_bounds, to_money
from garage.models import Customer, JobCard, JobCardPart, Worker
from inventory.models import InventoryItem
from inventory.services import low_stock_items

HUNDRED = Decimal("100")
FINISHED_STATUSES = (JobCard.Status.COMPLETED, JobCard.Status.DELIVERED)
OPEN_STATUSES = (JobCard.Status.PENDING, JobCard.Status.IN_PROGRESS)
STOCK_VALUE_FIELD = DecimalField(max_digits=16, decimal_places=2)

NOT_CANCELLED = ~Q(payment_status=Invoice.PaymentStatus.CANCELLED)
PAID = Q(payment_status=Invoice.PaymentStatus.PAID)
UNPAID = Q(payment_status=Invoice.PaymentStatus.UNPAID)


def _window(field, start, end):
    if start is None or end is None:
        return Q()
    return Q(**{f"{field}__gte": start, f"{field}__lte": end})


def _percentage(part, whole):
    if not whole:
        return ZERO
    return to_money(Decimal(part) * HUNDRED / Decimal(whole))


def _average(total, count):
    if not count:
        return ZERO
    return to_money(Decimal(total) / count)


def _average_hours(spans):
    hours = [(finished - started).total_seconds() / 3600 for started, finished in spans]
    if not hours:
        return 0.0
    return round(sum(hours) / len(hours), 2)


def _invoiced_total(condition):
    total = Invoice.objects.filter(NOT_CANCELLED, condition).aggregate(total=Coalesce(Sum("total_amount"), ZERO))["total"]
    return to_money(total)


def revenue_report(start=None, end=None, tz=None):
    tz = tz or timezone.get_current_timezone()
    invoices = Invoice.objects.filter(_window("invoice_date", start, end))
    totals = invoices.aggregate(
        total_invoiced=Coalesce(Sum("total_amount", filter=NOT_CANCELLED), ZERO),
        paid_amount=Coalesce(Sum("paid_amount", filter=PAID), ZERO),
        pending_amount=Coalesce(Sum("pending_amount", filter=UNPAID), ZERO),
        invoice_count=Count("id", filter=NOT_CANCELLED),
        paid_count=Count("id", filter=PAID),
        unpaid_count=Count("id", filter=UNPAID),
        cancelled_count=Count("id", filter=~NOT_CANCELLED),
    )

    billed = invoices.filter(NOT_CANCELLED)
    daily = (
        billed.annotate(day=TruncDate("invoice_date", tzinfo=tz))
        .values("day")
        .annotate(invoice_count=Count("id"), revenue=Coalesce(Sum("total_amount"), ZERO))
        .order_by("day")
    )
    modes = (
        billed.filter(PAID)
        .values("payment_mode")
        .annotate(invoice_count=Count("id"), amount=Coalesce(Sum("paid_amount"), ZERO))
        .order_by("-amount", "payment_mode")
    )

    return {
        "total_invoiced": to_money(totals["total_invoiced"]),
        "paid_amount": to_money(totals["paid_amount"]),
        "pending_amount": to_money(totals["pending_amount"]),
        "average_invoice_value": _average(totals["total_invoiced"], totals["invoice_count"]),
        "invoice_count": totals["invoice_count"],
        "paid_count": totals["paid_count"],
        "unpaid_count": totals["unpaid_count"],
        "cancelled_count": totals["cancelled_count"],
        "daily": [
            {"day": row["day"].isoformat(), "invoice_count": row["invoice_count"], "revenue": to_money(row["revenue"])}
            for row in daily
        ],
        "payment_modes": [
            {"payment_mode": row["payment_mode"], "invoice_count": row["invoice_count"], "amount": to_money(row["amount"])}
            for row in modes
        ],
    }


def job_card_stats(start=None, end=None):
    job_cards = JobCard.objects.filter(_window("created_at", start, end))
    by_status = dict(job_cards.values_list("status").annotate(total=Count("id")).order_by())
    by_priority = dict(job_cards.values_list("priority").annotate(total=Count("id")).order_by())
    workload = (
        job_cards.filter(assigned_technician__isnull=False)
        .values("assigned_technician_id", "assigned_technician__name")
        .annotate(job_cards=Count("id"))
        .order_by("-job_cards", "assigned_technician__name")
    )
    spans = job_cards.filter(actual_completion_date__isnull=False).values_list("created_at", "actual_completion_date")

    return {
        "total_job_cards": sum(by_status.values()),
        "status_breakdown": {status: by_status.get(status, 0) for status in JobCard.Status.values},
        "priority_breakdown": {priority: by_priority.get(priority, 0) for priority in JobCard.Priority.values},
        "technician_workload": [
            {
                "worker_id": str(row["assigned_technician_id"]),
                "name": row["assigned_technician__name"],
                "job_cards": row["job_cards"],
            }
            for row in workload
        ],
        "average_completion_hours": _average_hours(spans),
    }


def technician_performance(start=None, end=None):
    """Per active worker: workload, completion rate and the final amount of finished job cards."""
    in_window = _window("job_cards__created_at", start, end)
    finished = in_window & Q(job_cards__status__in=FINISHED_STATUSES)
    workers = Worker.objects.filter(status=Worker.Status.ACTIVE).annotate(
        total_jobs=Count("job_cards", filter=in_window),
        completed_jobs=Count("job_cards", filter=finished),
        pending_jobs=Count("job_cards", filter=in_window & Q(job_cards__status__in=OPEN_STATUSES)),
        revenue_generated=Coalesce(Sum("job_cards__final_amount", filter=finished), ZERO),
    )

    spans = defaultdict(list)
    completed = JobCard.objects.filter(
        _window("created_at", start, end),
        assigned_technician__isnull=False,
        actual_completion_date__isnull=False,
    ).values_list("assigned_technician_id", "created_at", "actual_completion_date")
    for worker_id, started, finished_at in completed:
        spans[worker_id].append((started, finished_at))

    rows = [
        {
            "worker_id": str(worker.id),
            "name": worker.name,
            "role": worker.role,
            "total_jobs": worker.total_jobs,
            "completed_jobs": worker.completed_jobs,
            "pending_jobs": worker.pending_jobs,
            "completion_rate": _percentage(worker.completed_jobs, worker.total_jobs),
            "average_completion_hours": _average_hours(spans[worker.id]),
            "revenue_generated": to_money(worker.revenue_generated),
        }
        for worker in workers
    ]
    rows.sort(key=lambda row: (-row["revenue_generated"], row["name"]))
    return rows


def customer_stats(start=None, end=None, limit=10):
    customers = Customer.objects.all()
    summary = customers.aggregate(
        total_customers=Count("id"),
        total_spent=Coalesce(Sum("total_spent"), ZERO),
        total_loyalty_points=Sum("loyalty_points"),
    )
    new_customers = customers.filter(_window("created_at", start, end)).count()
    active_customers = (
        customers.filter(_window("vehicles__job_cards__created_at", start, end), vehicles__job_cards__isnull=False)
        .distinct()
        .count()
    )
    top = (
        customers.filter(total_spent__gt=0)
        .annotate(job_card_count=Count("vehicles__job_cards"))
        .order_by("-total_spent", "name")[:limit]
    )

    return {
        "total_customers": summary["total_customers"],
        "new_customers": new_customers,
        "active_customers": active_customers,
        "retention_rate": _percentage(active_customers, summary["total_customers"]),
        "total_loyalty_points": summary["total_loyalty_points"] or 0,
        "average_customer_value": _average(summary["total_spent"], summary["total_customers"]),
        "top_customers": [
            {
                "customer_id": str(customer.id),
                "name": customer.name,
                "phone": customer.phone,
                "total_spent": to_money(customer.total_spent),
                "job_card_count": customer.job_card_count,
            }
            for customer in top
        ],
    }


def inventory_stats(start=None, end=None, limit=10):
    items = InventoryItem.objects.filter(is_active=True)
    selling_value = ExpressionWrapper(F("selling_price") * F("current_stock"), output_field=STOCK_VALUE_FIELD)
    cost_value = ExpressionWrapper(F("purchase_price") * F("current_stock"), output_field=STOCK_VALUE_FIELD)
    totals = items.aggregate(
        total_items=Count("id"),
        in_stock=Count("id", filter=Q(current_stock__gt=F("minimum_stock"))),
        low_stock=Count("id", filter=Q(current_stock__gt=0, current_stock__lte=F("minimum_stock"))),
        out_of_stock=Count("id", filter=Q(current_stock__lte=0)),
        total_inventory_value=Coalesce(Sum(selling_value), ZERO),
        total_inventory_cost=Coalesce(Sum(cost_value), ZERO),
    )
    used = (
        JobCardPart.objects.filter(_window("job_card__created_at", start, end))
        .values("item_id", "part_number", "part_name")
        .annotate(quantity=Sum("quantity"), total_value=Coalesce(Sum("total_price"), ZERO))
        .order_by("-quantity", "part_name")[:limit]
    )

    return {
        "total_items": totals["total_items"],
        "in_stock": totals["in_stock"],
        "low_stock": totals["low_stock"],
        "out_of_stock": totals["out_of_stock"],
        "total_inventory_value": to_money(totals["total_inventory_value"]),
        "total_inventory_cost": to_money(totals["total_inventory_cost"]),
        "stock_alerts": [
            {
                "item_id": str(item.id),
                "part_number": item.part_number,
                "name": item.name,
                "current_stock": item.current_stock,
                "minimum_stock": item.minimum_stock,
                "alert_level": "out" if item.current_stock <= 0 else "low",
            }
            for item in low_stock_items()
        ],
        "top_used_parts": [
            {
                "item_id": str(row["item_id"]),
                "part_number": row["part_number"],
                "part_name": row["part_name"],
                "quantity": row["quantity"],
                "total_value": to_money(row["total_value"]),
            }
            for row in used
        ],
    }


def dashboard_summary(now=None):
    now = now or timezone.now()
    today = timezone.localtime(now).date()
    month_first = today.replace(day=1)
    last_month_first = (month_first - timedelta(days=1)).replace(day=1)
    today_start = local_day_bounds(today)[0]
    month_start = local_day_bounds(month_first)[0]
    last_month_start = local_day_bounds(last_month_first)[0]

    today_revenue = _invoiced_total(Q(invoice_date__gte=today_start, invoice_date__lte=now))
    month_revenue = _invoiced_total(Q(invoice_date__gte=month_start, invoice_date__lte=now))
    last_month_revenue = _invoiced_total(Q(invoice_date__gte=last_month_start, invoice_date__lt=month_start))
    if last_month_revenue > ZERO:
        growth = to_money((month_revenue - last_month_revenue) * HUNDRED / last_month_revenue)
    elif month_revenue > ZERO:
        growth = to_money(HUNDRED)
    else:
        growth = ZERO

    return {
        "today_revenue": today_revenue,
        "month_revenue": month_revenue,
        "last_month_revenue": last_month_revenue,
        "revenue_growth": growth,
        "pending_invoices": Invoice.objects.filter(UNPAID).count(),
        "pending_job_cards": JobCard.objects.filter(status=JobCard.Status.PENDING).count(),
        "active_job_cards": JobCard.objects.filter(status=JobCard.Status.IN_PROGRESS).count(),
        "low_stock_items": low_stock_items().count(),
        "new_customers_this_month": Customer.objects.filter(created_at__gte=month_start).count(),
    }


class BaseReportView(APIView):
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"get": "reports.view"}

    @property
    def cache_timeout(self):
        return settings.REPORT_CACHE_SECONDS

    def _parse_timezone(self, request):
        tz_name = request.query_params.get("timezone")
        if not tz_name:
            return timezone.get_current_timezone()
        try:
            return ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValidationError({"timezone": "Invalid IANA timezone."})

    def _parse_limit(self, request, default=10, minimum=1, maximum=100):
        raw_limit = request.query_params.get("limit")
        if raw_limit is None:
            return default

        try:
            limit = int(raw_limit)
        except (TypeError, ValueError):
            raise ValidationError({"limit": f"Limit must be an integer between {minimum} and {maximum}."})

        if not minimum <= limit <= maximum:
            raise ValidationError({"limit": f"Limit must be between {minimum} and {maximum}."})
        return limit

    def _date_range(self, request, tz):
        date_from = parse_date(request.query_params.get("date_from", ""))
        date_to = parse_date(request.query_params.get("date_to", ""))
        if not date_from and not date_to:
            return None, None

        if not date_from or not date_to:
            raise ValidationError({"date_range": "Both date_from and date_to are required."})
        if date_from > date_to:
            raise ValidationError({"date_range": "date_from must be before or equal to date_to."})

        start = datetime.combine(date_from, time.min).replace(tzinfo=tz)
        end = datetime.combine(date_to, time.max).replace(tzinfo=tz)
        return start, end

    def _csv_response(self, filename, rows):
        response = HttpResponse(content_type="text/csv")
        response["Content-Disposition"] = f'attachment; filename="{filename}"'

        if not rows:
            return response

        writer = csv.DictWriter(response, fieldnames=list(rows[0].keys()))
        writer.writeheader()
        for row in rows:
            writer.writerow(row)
        return response

    def _cached(self, request, key, callback):
        cache_key = f"reports:{key}:{request.get_full_path()}"
        payload = cache.get(cache_key)
        if payload is None:
            payload = callback()
            cache.set(cache_key, payload, self.cache_timeout)
        return payload

    def _wants_csv(self, request):
        return request.query_params.get("export") == "csv"


class RevenueReportView(BaseReportView):
    def get(self, request):
        tz = self._parse_timezone(request)
        start, end = self._date_range(request, tz)
        payload = self._cached(request, "revenue", lambda: revenue_report(start, end, tz))
        if self._wants_csv(request):
            return self._csv_response("revenue.csv", payload["daily"])
        return Response(payload)


class JobCardStatsReportView(BaseReportView):
    def get(self, request):
        start, end = self._date_range(request, self._parse_timezone(request))
        return Response(self._cached(request, "job-cards", lambda: job_card_stats(start, end)))


class TechnicianPerformanceReportView(BaseReportView):
    def get(self, request):
        start, end = self._date_range(request, self._parse_timezone(request))
        rows = self._cached(request, "technicians", lambda: technician_performance(start, end))
        if self._wants_csv(request):
            return self._csv_response("technician_performance.csv", rows)
        return Response({"results": rows})


class CustomerStatsReportView(BaseReportView):
    def get(self, request):
        start, end = self._date_range(request, self._parse_timezone(request))
        limit = self._parse_limit(request)
        payload = self._cached(request, "customers", lambda: customer_stats(start, end, limit))
        if self._wants_csv(request):
            return self._csv_response("top_customers.csv", payload["top_customers"])
        return Response(payload)


class InventoryStatsReportView(BaseReportView):
    def get(self, request):
        start, end = self._date_range(request, self._parse_timezone(request))
        limit = self._parse_limit(request)
        payload = self._cached(request, "inventory", lambda: inventory_stats(start, end, limit))
        if self._wants_csv(request):
            return self._csv_response("stock_alerts.csv", payload["stock_alerts"])
        return Response(payload)


class DashboardSummaryView(BaseReportView):
    def get(self, request):
        return Response(self._cached(request, "dashboard", dashboard_summary))
