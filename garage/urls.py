from rest_framework.routers import DefaultRouter

from garage.views import CustomerViewSet, JobCardViewSet, VehicleViewSet, WorkerViewSet

router = DefaultRouter()
router.register(r"customers", CustomerViewSet, basename="customer")
router.register(r"vehicles", VehicleViewSet, basename="vehicle")
router.register(r"workers", WorkerViewSet, basename="worker")
router.register(r"job-cards", JobCardViewSet, basename="job-card")

urlpatterns = router.urls
