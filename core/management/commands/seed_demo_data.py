from datetime import timedelta
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand
from django.utils import timezone

from inventory.models import Consignment, Product
from inventory.services import create_consignment
from sales.lifecycle import SaleLine, create_sale
from sales.models import Client, Sale, Salon

PRODUCTS = [
    ("SH-001", "Shampoo Hidratante 300ml", Decimal("18.00"), Decimal("39.90"), 40),
    ("CD-001", "Condicionador Reparador 300ml", Decimal("19.50"), Decimal("42.90"), 35),
    ("MS-001", "Mascara Nutritiva 250g", Decimal("27.00"), Decimal("64.90"), 20),
    ("OL-001", "Oleo Capilar 60ml", Decimal("22.00"), Decimal("54.90"), 25),
]


class Command(BaseCommand):
    help = "Seed a demo catalog, salons, clients, a consignment and a couple of sales for local development."

    def handle(self, *args, **options):
        User = get_user_model()

        admin_user, admin_created = User.objects.get_or_create(
            username="admin",
            defaults={
                "email": "admin@example.com",
                "is_staff": True,
                "is_superuser": True,
                "is_active": True,
                "is_approved": True,
            },
        )
        if admin_created:
            admin_user.set_password("admin1234")
            admin_user.save(update_fields=["password"])

        seller_user, seller_created = User.objects.get_or_create(
            username="seller",
            defaults={"email": "seller@example.com", "is_active": True, "is_approved": True},
        )
        if seller_created:
            seller_user.set_password("seller1234")
            seller_user.save(update_fields=["password"])

        products = {}
        for code, name, cost_price, sell_price, stock in PRODUCTS:
            products[code], _ = Product.objects.get_or_create(
                code=code,
                defaults={
                    "name": name,
                    "cost_price": cost_price,
                    "sell_price": sell_price,
                    "stock_quantity": stock,
                },
            )

        salon, _ = Salon.objects.get_or_create(
            name="Studio Bella",
            defaults={
                "contact_person": "Marina",
                "phone": "+55 11 90000-0001",
                "address": "Rua das Flores, 100",
                "commission_rate": Decimal("20.00"),
            },
        )
        Salon.objects.get_or_create(
            name="Espaco Aurora",
            defaults={"contact_person": "Paula", "phone": "+55 11 90000-0002", "commission_rate": Decimal("15.00")},
        )

        client, _ = Client.objects.get_or_create(
            name="Ana Souza",
            defaults={"phone": "+55 11 98888-0000", "instagram": "@anasouza"},
        )

        if not Consignment.objects.filter(salon=salon).exists():
            create_consignment(
                salon=salon,
                product=products["MS-001"],
                quantity=6,
                date=timezone.now() - timedelta(days=7),
            )

        if not Sale.objects.exists():
            create_sale(
                lines=[SaleLine(product=products["SH-001"], quantity=2), SaleLine(product=products["CD-001"], quantity=1)],
                sale_type=Sale.Type.DIRECT,
                payment_method=Sale.PaymentMethod.PIX,
                client=client,
            )
            create_sale(
                lines=[SaleLine(product=Product.objects.get(code="MS-001"), quantity=2)],
                sale_type=Sale.Type.CONSIGNMENT,
                payment_method=Sale.PaymentMethod.CREDIT,
                origin_salon=salon,
            )

        self.stdout.write(self.style.SUCCESS("Demo data seeded successfully."))
        self.stdout.write("Credentials: admin/admin1234, seller/seller1234")
        self.stdout.write(f"Products: {Product.objects.count()} | Salons: {Salon.objects.count()} | Sales: {Sale.objects.count()}")
