from django.db import transaction
from django.db.models import Q
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from common.audit import create_audit_log_from_request
from common.mixins import OutboxMutationMixin
from common.utils import uuid_query_param
from inventory.models import Consignment, Product
from inventory.serializers import (
    ConsignmentCreateSerializer,
    ConsignmentReturnSerializer,
    ConsignmentSerializer,
    ProductImportSerializer,
    ProductSerializer,
)
from inventory.services import (
    create_consignment,
    delete_consignment,
    import_products,
    record_consignment_return,
    settle_consignment,
)


class ProductViewSet(OutboxMutationMixin, viewsets.ModelViewSet):
    queryset = Product.objects.all()
    serializer_class = ProductSerializer

    outbox_entity = "product"
    audit_entity = "product"

    def get_queryset(self):
        qs = super().get_queryset()
        search = self.request.query_params.get("search")
        if search:
            qs = qs.filter(Q(name__icontains=search) | Q(code__icontains=search))
        return qs

    @action(detail=False, methods=["post"], url_path="import")
    def import_rows(self, request):
        serializer = ProductImportSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        summary = import_products(serializer.validated_data["rows"])
        create_audit_log_from_request(request, action="product.import", entity="product", after_snapshot=summary)
        return Response(summary, status=status.HTTP_200_OK)


class ConsignmentViewSet(
    OutboxMutationMixin,
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.CreateModelMixin,
    mixins.DestroyModelMixin,
    viewsets.GenericViewSet,
):
    queryset = Consignment.objects.select_related("salon", "product")
    serializer_class = ConsignmentSerializer
    snapshot_serializer_class = ConsignmentSerializer

    outbox_entity = "consignment"
    audit_entity = "consignment"

    def get_queryset(self):
        qs = super().get_queryset()
        salon_id = uuid_query_param(self.request, "salon")
        product_id = uuid_query_param(self.request, "product")
        status_value = self.request.query_params.get("status")
        if salon_id:
            qs = qs.filter(salon_id=salon_id)
        if product_id:
            qs = qs.filter(product_id=product_id)
        if status_value:
            qs = qs.filter(status=status_value)
        return qs

    def get_serializer_class(self):
        if self.action == "create":
            return ConsignmentCreateSerializer
        return super().get_serializer_class()

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        consignment = create_consignment(**serializer.validated_data)
        after_snapshot = self.snapshot(consignment)
        self._audit(action="create", instance=consignment, after_snapshot=after_snapshot)
        return Response(after_snapshot, status=status.HTTP_201_CREATED)

    def perform_destroy(self, instance):
        # delete_consignment publishes the product and the consignment itself.
        with transaction.atomic():
            before_snapshot = self.snapshot(instance)
            instance_id = instance.id
            delete_consignment(instance)
            self._audit(action="delete", instance=instance, before_snapshot=before_snapshot, entity_id=instance_id)

    @action(detail=True, methods=["post"], url_path="return")
    def record_return(self, request, pk=None):
        consignment = self.get_object()
        serializer = ConsignmentReturnSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        before_snapshot = self.snapshot(consignment)
        consignment = record_consignment_return(consignment, serializer.validated_data["quantity"])
        after_snapshot = self.snapshot(consignment)
        self._audit(action="return", instance=consignment, before_snapshot=before_snapshot, after_snapshot=after_snapshot)
        return Response(after_snapshot)

    @action(detail=True, methods=["post"], url_path="settle")
    def settle(self, request, pk=None):
        consignment = self.get_object()
        before_snapshot = self.snapshot(consignment)
        consignment = settle_consignment(consignment)
        after_snapshot = self.snapshot(consignment)
        self._audit(action="settle", instance=consignment, before_snapshot=before_snapshot, after_snapshot=after_snapshot)
        return Response(after_snapshot)
