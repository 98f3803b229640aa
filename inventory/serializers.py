from rest_framework import serializers

from inventory.models import Consignment, Product
from sales.models import Salon


class ProductSerializer(serializers.ModelSerializer):
    class Meta:
        model = Product
        fields = [
            "id",
            "code",
            "name",
            "cost_price",
            "sell_price",
            "stock_quantity",
            "consigned_quantity",
            "created_at",
            "updated_at",
        ]
        # Consigned stock only moves through consignments and consignment sales.
        read_only_fields = ["id", "consigned_quantity", "created_at", "updated_at"]

    def validate_code(self, value):
        return value.strip()

    def validate(self, attrs):
        for field_name in ("cost_price", "sell_price"):
            if attrs.get(field_name) is not None and attrs[field_name] < 0:
                raise serializers.ValidationError({field_name: "Prices cannot be negative."})
        return attrs


class ConsignmentSerializer(serializers.ModelSerializer):
    salon_name = serializers.CharField(source="salon.name", read_only=True)
    product_name = serializers.CharField(source="product.name", read_only=True)
    product_code = serializers.CharField(source="product.code", read_only=True)
    available_quantity = serializers.IntegerField(read_only=True)

    class Meta:
        model = Consignment
        fields = [
            "id",
            "salon",
            "salon_name",
            "product",
            "product_name",
            "product_code",
            "quantity",
            "sold_quantity",
            "returned_quantity",
            "available_quantity",
            "status",
            "date",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class ConsignmentCreateSerializer(serializers.Serializer):
    salon = serializers.PrimaryKeyRelatedField(queryset=Salon.objects.all())
    product = serializers.PrimaryKeyRelatedField(queryset=Product.objects.all())
    quantity = serializers.IntegerField(min_value=1)
    date = serializers.DateTimeField(required=False)


class ConsignmentReturnSerializer(serializers.Serializer):
    quantity = serializers.IntegerField(min_value=1)


class ProductImportRowSerializer(serializers.Serializer):
    code = serializers.CharField(max_length=64)
    name = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
    cost_price = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, allow_null=True, min_value=0)
    sell_price = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, allow_null=True, min_value=0)
    stock_quantity = serializers.IntegerField(required=False, default=0)

    def validate_code(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("Product code is required.")
        return value


class ProductImportSerializer(serializers.Serializer):
    rows = ProductImportRowSerializer(many=True, allow_empty=False)

    def validate_rows(self, rows):
        seen = set()
        duplicates = set()
        for row in rows:
            if row["code"] in seen:
                duplicates.add(row["code"])
            seen.add(row["code"])
        if duplicates:
            raise serializers.ValidationError(f"Duplicate product codes in import: {', '.join(sorted(duplicates))}.")
        return rows
