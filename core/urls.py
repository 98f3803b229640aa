from django.urls import path
from rest_framework.routers import DefaultRouter

from core.views import AuditLogViewSet, CurrentUserView, healthz, readyz

router = DefaultRouter()
router.register(r"admin/audit-logs", AuditLogViewSet, basename="audit-log")

urlpatterns = router.urls + [
    path("me/", CurrentUserView.as_view(), name="current-user"),
    path("healthz/", healthz, name="healthz"),
    path("readyz/", readyz, name="readyz"),
]
