from rest_framework.routers import DefaultRouter

from inventory.views import InventoryItemViewSet

router = DefaultRouter()
router.register(r"inventory-items", InventoryItemViewSet, basename="inventory-item")

urlpatterns = router.urls
