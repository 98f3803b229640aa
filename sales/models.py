import uuid

from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.utils import timezone


class Client(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255)
    phone = models.CharField(max_length=64, blank=True, default="")
    instagram = models.CharField(max_length=128, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]
        indexes = [
            models.Index(fields=["name"], name="client_name_idx"),
        ]

    def __str__(self):
        return self.name


class Salon(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255)
    contact_person = models.CharField(max_length=255, blank=True, default="")
    phone = models.CharField(max_length=64, blank=True, default="")
    address = models.CharField(max_length=500, blank=True, default="")
    commission_rate = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        default=0,
        validators=[MinValueValidator(0), MaxValueValidator(100)],
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.name


class Sale(models.Model):
    class Type(models.TextChoices):
        DIRECT = "direct", "Direct"
        CONSIGNMENT = "consignment", "Consignment"

    class PaymentMethod(models.TextChoices):
        CASH = "cash", "Cash"
        PIX = "pix", "Pix"
        CREDIT = "credit", "Credit card"
        DEBIT = "debit", "Debit card"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    date = models.DateTimeField(default=timezone.now)
    client = models.ForeignKey(Client, on_delete=models.SET_NULL, null=True, blank=True, related_name="sales")
    total_value = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    total_cost = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    payment_method = models.CharField(max_length=16, choices=PaymentMethod.choices, default=PaymentMethod.CASH)
    type = models.CharField(max_length=16, choices=Type.choices, default=Type.DIRECT)
    origin_salon = models.ForeignKey(Salon, on_delete=models.PROTECT, null=True, blank=True, related_name="sales")
    commission_paid = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-date", "-created_at"]
        indexes = [
            models.Index(fields=["date"], name="sale_date_idx"),
            models.Index(fields=["origin_salon", "commission_paid"], name="sale_salon_commission_idx"),
        ]


class SaleItem(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    sale = models.ForeignKey(Sale, on_delete=models.CASCADE, related_name="items")
    # Not a foreign key: items keep their snapshot after the product is deleted.
    product_id = models.UUIDField()
    product_name = models.CharField(max_length=255)
    quantity = models.IntegerField()
    unit_price = models.DecimalField(max_digits=12, decimal_places=2)
    unit_cost = models.DecimalField(max_digits=12, decimal_places=2)

    class Meta:
        indexes = [
            models.Index(fields=["product_id"], name="saleitem_product_idx"),
        ]

    @property
    def line_total(self):
        return self.quantity * self.unit_price
