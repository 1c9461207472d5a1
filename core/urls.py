from django.urls import path
from rest_framework.routers import DefaultRouter

from core.views import AuditLogViewSet, GarageSettingsView

router = DefaultRouter()
router.register(r"admin/audit-logs", AuditLogViewSet, basename="audit-log")

urlpatterns = router.urls + [
    path("settings/", GarageSettingsView.as_view(), name="garage_settings"),
]
