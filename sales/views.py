from django.db import transaction
from django.db.models import Q
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from common.mixins import OutboxMutationMixin
from common.utils import uuid_query_param
from sales.lifecycle import delete_sale, pay_commission
from sales.models import Client, Sale, Salon
from sales.serializers import (
    ClientSerializer,
    PayCommissionSerializer,
    SaleSerializer,
    SaleWriteSerializer,
    SalonSerializer,
)


class ClientViewSet(OutboxMutationMixin, viewsets.ModelViewSet):
    queryset = Client.objects.all()
    serializer_class = ClientSerializer

    outbox_entity = "client"
    audit_entity = "client"

    def get_queryset(self):
        qs = super().get_queryset()
        search = self.request.query_params.get("search")
        if search:
            qs = qs.filter(Q(name__icontains=search) | Q(phone__icontains=search) | Q(instagram__icontains=search))
        return qs


class SalonViewSet(OutboxMutationMixin, viewsets.ModelViewSet):
    queryset = Salon.objects.all()
    serializer_class = SalonSerializer

    outbox_entity = "salon"
    audit_entity = "salon"

    @action(detail=True, methods=["post"], url_path="pay-commission")
    def pay_commission(self, request, pk=None):
        salon = self.get_object()
        serializer = PayCommissionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        with transaction.atomic():
            paid = pay_commission(salon, serializer.validated_data["sale_ids"])
            paid_ids = [str(sale.id) for sale in paid]
            self._audit(
                action="commission_paid",
                instance=salon,
                after_snapshot={"sale_ids": paid_ids},
            )

        return Response({"salon": str(salon.id), "paid_sale_ids": paid_ids})


class SaleViewSet(OutboxMutationMixin, viewsets.ModelViewSet):
    """
    Sales are written as whole carts through the sale lifecycle.

    Create/update/delete responses carry an ``inventory_effect`` block listing
    skipped products and any quantity that found no consignment batch.
    """

    queryset = Sale.objects.select_related("client", "origin_salon").prefetch_related("items")
    serializer_class = SaleSerializer
    snapshot_serializer_class = SaleSerializer
    http_method_names = ["get", "post", "put", "delete", "head", "options"]

    outbox_entity = "sale"
    audit_entity = "sale"

    def get_queryset(self):
        qs = super().get_queryset()
        params = self.request.query_params
        if params.get("type"):
            qs = qs.filter(type=params["type"])
        origin_salon_id = uuid_query_param(self.request, "origin_salon")
        if origin_salon_id:
            qs = qs.filter(origin_salon_id=origin_salon_id)
        client_id = uuid_query_param(self.request, "client")
        if client_id:
            qs = qs.filter(client_id=client_id)
        if params.get("commission_paid") in {"true", "false"}:
            qs = qs.filter(commission_paid=params["commission_paid"] == "true")
        return qs

    def get_serializer_class(self):
        if self.action in {"create", "update"}:
            return SaleWriteSerializer
        return super().get_serializer_class()

    def _effect_response(self, serializer, status_code):
        data = dict(self.snapshot(serializer.instance))
        data["inventory_effect"] = serializer.inventory_effect.as_dict()
        return Response(data, status=status_code)

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        self.perform_create(serializer)
        return self._effect_response(serializer, status.HTTP_201_CREATED)

    def update(self, request, *args, **kwargs):
        instance = self.get_object()
        serializer = self.get_serializer(instance, data=request.data)
        serializer.is_valid(raise_exception=True)
        self.perform_update(serializer)
        return self._effect_response(serializer, status.HTTP_200_OK)

    def destroy(self, request, *args, **kwargs):
        instance = self.get_object()
        with transaction.atomic():
            before_snapshot = self.snapshot(instance)
            instance_id = instance.id
            effect = delete_sale(instance)
            self._emit(instance, "delete", payload=before_snapshot, entity_id=instance_id)
            self._audit(action="delete", instance=instance, before_snapshot=before_snapshot, entity_id=instance_id)
        return Response({"id": str(instance_id), "inventory_effect": effect.as_dict()}, status=status.HTTP_200_OK)
