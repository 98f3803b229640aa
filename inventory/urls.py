from rest_framework.routers import DefaultRouter

from inventory.views import ConsignmentViewSet, ProductViewSet

router = DefaultRouter()
router.register(r"products", ProductViewSet, basename="product")
router.register(r"consignments", ConsignmentViewSet, basename="consignment")

urlpatterns = router.urls
