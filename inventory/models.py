import uuid

from django.db import models
from django.utils import timezone


class Product(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    code = models.CharField(max_length=64, unique=True)
    name = models.CharField(max_length=255)
    cost_price = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    sell_price = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    stock_quantity = models.IntegerField(default=0)
    consigned_quantity = models.IntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]
        indexes = [
            models.Index(fields=["name"], name="product_name_idx"),
        ]

    def __str__(self):
        return f"{self.code} {self.name}"


class Consignment(models.Model):
    class Status(models.TextChoices):
        ACTIVE = "active", "Active"
        SETTLED = "settled", "Settled"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    salon = models.ForeignKey("sales.Salon", on_delete=models.PROTECT, related_name="consignments")
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="consignments")
    quantity = models.IntegerField()
    sold_quantity = models.IntegerField(default=0)
    returned_quantity = models.IntegerField(default=0)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.ACTIVE)
    date = models.DateTimeField(default=timezone.now)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-date", "-created_at"]
        indexes = [
            models.Index(fields=["salon", "product", "date"], name="consignment_batch_idx"),
            models.Index(fields=["status"], name="consignment_status_idx"),
        ]

    @property
    def available_quantity(self):
        return self.quantity - self.sold_quantity - self.returned_quantity
