from django.urls import path
from rest_framework.routers import DefaultRouter

from sales.reports import (
    DashboardReportView,
    PaymentMethodSplitReportView,
    SalesSummaryReportView,
    SalonCommissionReportView,
    SalonPerformanceReportView,
    TopProductsReportView,
)
from sales.views import ClientViewSet, SaleViewSet, SalonViewSet

router = DefaultRouter()
router.register(r"clients", ClientViewSet, basename="client")
router.register(r"salons", SalonViewSet, basename="salon")
router.register(r"sales", SaleViewSet, basename="sale")

urlpatterns = router.urls + [
    path("reports/dashboard/", DashboardReportView.as_view(), name="report-dashboard"),
    path("reports/summary/", SalesSummaryReportView.as_view(), name="report-summary"),
    path("reports/top-products/", TopProductsReportView.as_view(), name="report-top-products"),
    path("reports/salon-performance/", SalonPerformanceReportView.as_view(), name="report-salon-performance"),
    path("reports/payment-method-split/", PaymentMethodSplitReportView.as_view(), name="report-payment-method-split"),
    path("reports/salon-commissions/", SalonCommissionReportView.as_view(), name="report-salon-commissions"),
]
