from rest_framework import serializers

from inventory.models import Product
from sales.lifecycle import SaleLine, create_sale, edit_sale
from sales.models import Client, Sale, SaleItem, Salon


class ClientSerializer(serializers.ModelSerializer):
    class Meta:
        model = Client
        fields = ["id", "name", "phone", "instagram", "created_at", "updated_at"]
        read_only_fields = ["id", "created_at", "updated_at"]


class SalonSerializer(serializers.ModelSerializer):
    class Meta:
        model = Salon
        fields = ["id", "name", "contact_person", "phone", "address", "commission_rate", "created_at", "updated_at"]
        read_only_fields = ["id", "created_at", "updated_at"]

    def validate_commission_rate(self, value):
        if value < 0 or value > 100:
            raise serializers.ValidationError("Commission rate must be between 0 and 100.")
        return value


class SaleItemSerializer(serializers.ModelSerializer):
    line_total = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)

    class Meta:
        model = SaleItem
        fields = ["id", "product_id", "product_name", "quantity", "unit_price", "unit_cost", "line_total"]
        read_only_fields = fields


class SaleSerializer(serializers.ModelSerializer):
    items = SaleItemSerializer(many=True, read_only=True)
    client_name = serializers.CharField(source="client.name", read_only=True, default=None)
    origin_salon_name = serializers.CharField(source="origin_salon.name", read_only=True, default=None)

    class Meta:
        model = Sale
        fields = [
            "id",
            "date",
            "client",
            "client_name",
            "items",
            "total_value",
            "total_cost",
            "payment_method",
            "type",
            "origin_salon",
            "origin_salon_name",
            "commission_paid",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class SaleLineInputSerializer(serializers.Serializer):
    product = serializers.PrimaryKeyRelatedField(queryset=Product.objects.all())
    quantity = serializers.IntegerField(min_value=1)
    unit_price = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, required=False, allow_null=True)


class SaleWriteSerializer(serializers.Serializer):
    """
    Accepts a full cart and hands it to the sale lifecycle.

    Editing always replaces the whole item list; the lifecycle reverts the
    stored inventory effect before applying the new one.
    """

    items = SaleLineInputSerializer(many=True, allow_empty=False)
    type = serializers.ChoiceField(choices=Sale.Type.choices, default=Sale.Type.DIRECT)
    payment_method = serializers.ChoiceField(choices=Sale.PaymentMethod.choices, default=Sale.PaymentMethod.CASH)
    client = serializers.PrimaryKeyRelatedField(queryset=Client.objects.all(), required=False, allow_null=True)
    origin_salon = serializers.PrimaryKeyRelatedField(queryset=Salon.objects.all(), required=False, allow_null=True)
    date = serializers.DateTimeField(required=False)

    inventory_effect = None

    def validate(self, attrs):
        sale_type = attrs.get("type", Sale.Type.DIRECT)
        origin_salon = attrs.get("origin_salon")
        if sale_type == Sale.Type.CONSIGNMENT and origin_salon is None:
            raise serializers.ValidationError({"origin_salon": "Consignment sales must name the salon that sold them."})
        if sale_type == Sale.Type.DIRECT and origin_salon is not None:
            raise serializers.ValidationError({"origin_salon": "Direct sales cannot carry a salon."})
        return attrs

    def _lines(self, validated_data):
        return [
            SaleLine(product=line["product"], quantity=line["quantity"], unit_price=line.get("unit_price"))
            for line in validated_data["items"]
        ]

    def create(self, validated_data):
        result = create_sale(
            lines=self._lines(validated_data),
            sale_type=validated_data["type"],
            payment_method=validated_data["payment_method"],
            client=validated_data.get("client"),
            origin_salon=validated_data.get("origin_salon"),
            date=validated_data.get("date"),
        )
        self.inventory_effect = result.effect
        return result.sale

    def update(self, instance, validated_data):
        result = edit_sale(
            instance,
            lines=self._lines(validated_data),
            sale_type=validated_data["type"],
            payment_method=validated_data["payment_method"],
            client=validated_data.get("client"),
            origin_salon=validated_data.get("origin_salon"),
            date=validated_data.get("date"),
        )
        self.inventory_effect = result.effect
        return result.sale


class PayCommissionSerializer(serializers.Serializer):
    sale_ids = serializers.ListField(child=serializers.UUIDField(), allow_empty=False)


class PendingCommissionSerializer(serializers.Serializer):
    salon_id = serializers.UUIDField()
    salon_name = serializers.CharField()
    commission_rate = serializers.DecimalField(max_digits=5, decimal_places=2)
    pending_base = serializers.DecimalField(max_digits=12, decimal_places=2)
    pending_commission = serializers.DecimalField(max_digits=12, decimal_places=2)
    pending_sale_ids = serializers.ListField(child=serializers.UUIDField())
