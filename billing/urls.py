from django.urls import path
from rest_framework.routers import DefaultRouter

from billing.reports import (
    CustomerStatsReportView,
    DashboardSummaryView,
    InventoryStatsReportView,
    JobCardStatsReportView,
    RevenueReportView,
    TechnicianPerformanceReportView,
)
from billing.views import InvoiceViewSet

router = DefaultRouter()
router.register(r"invoices", InvoiceViewSet, basename="invoice")

urlpatterns = router.urls

urlpatterns += [
    path("reports/revenue/", RevenueReportView.as_view(), name="report-revenue"),
    path("reports/job-cards/", JobCardStatsReportView.as_view(), name="report-job-cards"),
    path("reports/technicians/", TechnicianPerformanceReportView.as_view(), name="report-technicians"),
    path("reports/customers/", CustomerStatsReportView.as_view(), name="report-customers"),
    path("reports/inventory/", InventoryStatsReportView.as_view(), name="report-inventory"),
    path("reports/dashboard/", DashboardSummaryView.as_view(), name="report-dashboard"),
]
