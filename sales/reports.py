import csv
from datetime import datetime, time

from django.http import HttpResponse
from django.utils import timezone
from django.utils.dateparse import parse_date
from rest_framework.exceptions import ValidationError
from rest_framework.renderers import BrowsableAPIRenderer, JSONRenderer
from rest_framework.response import Response
from rest_framework.views import APIView

from common.renderers import CSVRenderer
from common.utils import to_json_compatible, uuid_query_param
from inventory.models import Consignment, Product
from sales import aggregates
from sales.models import Sale, Salon
from sales.serializers import PendingCommissionSerializer


class BaseReportView(APIView):
    """Reports are recomputed from the current rows on every request; nothing is cached."""

    renderer_classes = [JSONRenderer, BrowsableAPIRenderer, CSVRenderer]

    def _parse_limit(self, request, default=5, minimum=1, maximum=100):
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

    def _date_range(self, request):
        date_from = parse_date(request.query_params.get("date_from", ""))
        date_to = parse_date(request.query_params.get("date_to", ""))
        if not date_from and not date_to:
            return None, None

        if not date_from or not date_to:
            raise ValidationError({"date_range": "Both date_from and date_to are required."})
        if date_from > date_to:
            raise ValidationError({"date_range": "date_from must be before or equal to date_to."})

        tz = timezone.get_current_timezone()
        start = timezone.make_aware(datetime.combine(date_from, time.min), tz)
        end = timezone.make_aware(datetime.combine(date_to, time.max), tz)
        return start, end

    def _sales(self, request):
        start, end = self._date_range(request)
        qs = Sale.objects.prefetch_related("items")
        if start and end:
            qs = qs.filter(date__gte=start, date__lte=end)
        return list(qs)

    def _wants_csv(self, request):
        return request.query_params.get("format") == "csv"

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


class DashboardReportView(BaseReportView):
    def get(self, request):
        products = list(Product.objects.all())
        salons = list(Salon.objects.all())
        payload = aggregates.dashboard_summary(
            sales=self._sales(request),
            products=products,
            salons=salons,
            active_consignments=Consignment.objects.filter(status=Consignment.Status.ACTIVE).count(),
        )
        if self._wants_csv(request):
            return self._csv_response("dashboard_revenue_by_day.csv", payload["revenue_by_day"])
        return Response(to_json_compatible(payload))


class SalesSummaryReportView(BaseReportView):
    def get(self, request):
        payload = aggregates.report_summary(
            sales=self._sales(request),
            salons=list(Salon.objects.all()),
            top_limit=self._parse_limit(request),
        )
        if self._wants_csv(request):
            summary = {key: value for key, value in payload.items() if not isinstance(value, list)}
            return self._csv_response("sales_summary.csv", [summary])
        return Response(to_json_compatible(payload))


class TopProductsReportView(BaseReportView):
    def get(self, request):
        rows = aggregates.top_products(self._sales(request), limit=self._parse_limit(request))
        if self._wants_csv(request):
            return self._csv_response("top_products.csv", rows)
        return Response({"results": to_json_compatible(rows)})


class SalonPerformanceReportView(BaseReportView):
    def get(self, request):
        rows = aggregates.salon_performance(self._sales(request), list(Salon.objects.all()))
        if self._wants_csv(request):
            return self._csv_response("salon_performance.csv", rows)
        return Response({"results": to_json_compatible(rows)})


class PaymentMethodSplitReportView(BaseReportView):
    def get(self, request):
        rows = aggregates.payment_method_split(self._sales(request))
        if self._wants_csv(request):
            return self._csv_response("payment_method_split.csv", rows)
        return Response({"results": to_json_compatible(rows)})


class SalonCommissionReportView(BaseReportView):
    def get(self, request):
        salons = Salon.objects.all()
        salon_id = uuid_query_param(request, "salon")
        if salon_id:
            salons = salons.filter(id=salon_id)
        sales = list(Sale.objects.filter(type=Sale.Type.CONSIGNMENT, commission_paid=False))
        rows = aggregates.pending_commissions(sales, list(salons))
        if self._wants_csv(request):
            flat = [{**row, "pending_sale_ids": " ".join(str(sale_id) for sale_id in row["pending_sale_ids"])} for row in rows]
            return self._csv_response("salon_commissions.csv", flat)
        return Response({"results": PendingCommissionSerializer(rows, many=True).data})
