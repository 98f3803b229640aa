import uuid
from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace

from django.contrib.auth import get_user_model
from django.test import SimpleTestCase, TestCase
from django.utils import timezone
from rest_framework.test import APIClient

from core.models import AuditLog
from inventory.allocation import available_quantity, plan_consumption, plan_reversal, pool_available
from inventory.ledger import (
    CONSIGNMENT,
    DIRECT,
    QuantityDelta,
    apply_delta,
    negative_balances,
    return_delta,
    sale_deltas,
    shipment_delta,
)
from inventory.models import Consignment, Product
from inventory.services import create_consignment, delete_consignment, import_products, record_consignment_return, settle_consignment
from sales.models import Salon
from sync.models import SyncOutbox


def _batch(days_ago, quantity, sold=0, returned=0, status="active"):
    return SimpleNamespace(
        id=uuid.uuid4(),
        date=timezone.now() - timedelta(days=days_ago),
        quantity=quantity,
        sold_quantity=sold,
        returned_quantity=returned,
        status=status,
    )


class LedgerPrimitiveTests(SimpleTestCase):
    def setUp(self):
        self.p1 = uuid.uuid4()
        self.p2 = uuid.uuid4()
        self.items = [
            SimpleNamespace(product_id=self.p1, quantity=2),
            SimpleNamespace(product_id=self.p2, quantity=1),
            SimpleNamespace(product_id=self.p1, quantity=3),
        ]

    def test_direct_sale_draws_on_stock(self):
        deltas = sale_deltas(self.items, DIRECT)

        self.assertEqual(list(deltas), [self.p1, self.p2])
        self.assertEqual(deltas[self.p1], QuantityDelta(self.p1, stock=-5))
        self.assertEqual(deltas[self.p2], QuantityDelta(self.p2, stock=-1))

    def test_consignment_sale_draws_on_consigned_stock(self):
        deltas = sale_deltas(self.items, CONSIGNMENT)

        self.assertEqual(deltas[self.p1], QuantityDelta(self.p1, consigned=-5))
        self.assertEqual(deltas[self.p1].stock, 0)

    def test_reverse_inverts_signs(self):
        deltas = sale_deltas(self.items, CONSIGNMENT, reverse=True)

        self.assertEqual(deltas[self.p1], QuantityDelta(self.p1, consigned=5))
        self.assertEqual(deltas[self.p2], QuantityDelta(self.p2, consigned=1))

    def test_unknown_sale_type_is_rejected(self):
        with self.assertRaises(ValueError):
            sale_deltas(self.items, "barter")

    def test_shipment_and_return_move_units_between_pools(self):
        product = SimpleNamespace(stock_quantity=10, consigned_quantity=0)

        apply_delta(product, shipment_delta(self.p1, 4))
        self.assertEqual((product.stock_quantity, product.consigned_quantity), (6, 4))

        apply_delta(product, return_delta(self.p1, 1))
        self.assertEqual((product.stock_quantity, product.consigned_quantity), (7, 3))

    def test_negative_balances_are_reported_not_clamped(self):
        product = SimpleNamespace(stock_quantity=1, consigned_quantity=0)

        apply_delta(product, QuantityDelta(self.p1, stock=-3))

        self.assertEqual(product.stock_quantity, -2)
        self.assertEqual(negative_balances(product), {"stock_quantity": -2})


class AllocatorTests(SimpleTestCase):
    def test_consumption_within_oldest_batch(self):
        older = _batch(10, 5)
        newer = _batch(2, 5)

        plan = plan_consumption([newer, older], 3)

        self.assertEqual(plan.as_dict(), {older.id: 3})
        self.assertEqual(plan.unallocated, 0)

    def test_consumption_spills_into_next_batch(self):
        older = _batch(10, 5, sold=1)
        newer = _batch(2, 5)

        plan = plan_consumption([older, newer], 6)

        self.assertEqual(plan.as_dict(), {older.id: 4, newer.id: 2})
        self.assertEqual(plan.allocated, 6)

    def test_consumption_skips_settled_batches(self):
        settled = _batch(10, 5, status="settled")
        active = _batch(2, 5)

        plan = plan_consumption([settled, active], 2)

        self.assertEqual(plan.as_dict(), {active.id: 2})

    def test_consumption_reports_under_allocation(self):
        only = _batch(3, 4, sold=1, returned=1)

        plan = plan_consumption([only], 5)

        self.assertEqual(plan.as_dict(), {only.id: 2})
        self.assertEqual(plan.requested, 5)
        self.assertEqual(plan.unallocated, 3)

    def test_consumption_without_batches(self):
        plan = plan_consumption([], 2)

        self.assertEqual(plan.allocations, ())
        self.assertEqual(plan.unallocated, 2)

    def test_reversal_gives_back_newest_first(self):
        older = _batch(10, 5, sold=5)
        newer = _batch(2, 5, sold=2)

        plan = plan_reversal([older, newer], 4)

        self.assertEqual(plan.as_dict(), {newer.id: 2, older.id: 2})

    def test_reversal_ignores_status(self):
        settled = _batch(2, 5, sold=3, status="settled")

        plan = plan_reversal([settled], 3)

        self.assertEqual(plan.as_dict(), {settled.id: 3})

    def test_reversal_reports_what_it_could_not_return(self):
        batch = _batch(2, 5, sold=1)

        plan = plan_reversal([batch], 4)

        self.assertEqual(plan.unallocated, 3)

    def test_available_quantity(self):
        self.assertEqual(available_quantity(_batch(1, 10, sold=3, returned=2)), 5)


class ConsignmentServiceTests(TestCase):
    def setUp(self):
        self.salon = Salon.objects.create(name="Studio A", commission_rate=Decimal("20"))
        self.product = Product.objects.create(
            code="P-1",
            name="Serum",
            cost_price=Decimal("10.00"),
            sell_price=Decimal("25.00"),
            stock_quantity=10,
        )

    def test_create_consignment_moves_stock_to_consigned(self):
        with self.assertLogs("ledger", level="INFO") as cm:
            consignment = create_consignment(salon=self.salon, product=self.product, quantity=5)

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 5)
        self.assertEqual(self.product.consigned_quantity, 5)
        self.assertEqual(consignment.status, Consignment.Status.ACTIVE)
        self.assertEqual(consignment.sold_quantity, 0)
        self.assertEqual(consignment.available_quantity, 5)
        self.assertTrue(any("consignment.created" in message for message in cm.output))
        self.assertEqual(
            set(SyncOutbox.objects.values_list("entity", flat=True)),
            {"product", "consignment"},
        )

    def test_shipping_more_than_stock_goes_negative_with_warning(self):
        with self.assertLogs("ledger", level="WARNING") as cm:
            create_consignment(salon=self.salon, product=self.product, quantity=12)

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, -2)
        self.assertEqual(self.product.consigned_quantity, 12)
        self.assertTrue(any("ledger.negative_balance" in message for message in cm.output))

    def test_return_brings_units_back_to_stock(self):
        consignment = create_consignment(salon=self.salon, product=self.product, quantity=5)

        consignment = record_consignment_return(consignment, 2)

        self.product.refresh_from_db()
        self.assertEqual(consignment.returned_quantity, 2)
        self.assertEqual(consignment.available_quantity, 3)
        self.assertEqual(self.product.stock_quantity, 7)
        self.assertEqual(self.product.consigned_quantity, 3)

    def test_return_cannot_exceed_available(self):
        from rest_framework.exceptions import ValidationError

        consignment = create_consignment(salon=self.salon, product=self.product, quantity=2)

        with self.assertRaises(ValidationError):
            record_consignment_return(consignment, 3)

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 8)

    def test_settle_twice_is_rejected(self):
        from rest_framework.exceptions import ValidationError

        consignment = create_consignment(salon=self.salon, product=self.product, quantity=2)
        settle_consignment(consignment)

        with self.assertRaises(ValidationError):
            settle_consignment(consignment)

    def test_settled_batches_leave_the_selling_pool(self):
        first = create_consignment(salon=self.salon, product=self.product, quantity=2)
        create_consignment(salon=self.salon, product=self.product, quantity=3)

        self.assertEqual(pool_available(self.salon.id, self.product.id), 5)
        settle_consignment(first)
        self.assertEqual(pool_available(self.salon.id, self.product.id), 3)

    def test_delete_returns_outstanding_units(self):
        consignment = create_consignment(salon=self.salon, product=self.product, quantity=5)
        Consignment.objects.filter(pk=consignment.pk).update(sold_quantity=2)

        delete_consignment(consignment)

        self.product.refresh_from_db()
        self.assertFalse(Consignment.objects.filter(pk=consignment.pk).exists())
        self.assertEqual(self.product.stock_quantity, 8)
        self.assertEqual(self.product.consigned_quantity, 2)
        self.assertTrue(SyncOutbox.objects.filter(entity="consignment", op="delete", entity_id=consignment.pk).exists())


class ProductImportTests(TestCase):
    def test_import_upserts_by_code(self):
        existing = Product.objects.create(
            code="EX-1",
            name="Old name",
            cost_price=Decimal("5.00"),
            sell_price=Decimal("9.00"),
            stock_quantity=3,
            consigned_quantity=4,
        )

        summary = import_products(
            [
                {"code": "EX-1", "name": "", "cost_price": None, "sell_price": Decimal("11.00"), "stock_quantity": 8},
                {"code": "NEW-1", "name": "Fresh", "cost_price": Decimal("7.00"), "sell_price": None, "stock_quantity": 2},
            ]
        )

        self.assertEqual(summary, {"created": 1, "updated": 1})
        existing.refresh_from_db()
        self.assertEqual(existing.name, "Old name")
        self.assertEqual(existing.cost_price, Decimal("5.00"))
        self.assertEqual(existing.sell_price, Decimal("11.00"))
        self.assertEqual(existing.stock_quantity, 8)
        self.assertEqual(existing.consigned_quantity, 4)

        created = Product.objects.get(code="NEW-1")
        self.assertEqual(created.sell_price, Decimal("7.00"))
        self.assertEqual(created.cost_price, Decimal("7.00"))
        self.assertEqual(created.consigned_quantity, 0)


class InventoryApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = get_user_model().objects.create_user(username="stock-user", password="pass1234", is_approved=True)
        self.client.force_authenticate(user=self.user)
        self.salon = Salon.objects.create(name="Studio B", commission_rate=Decimal("15"))
        self.product = Product.objects.create(
            code="LIP-01",
            name="Lip tint",
            cost_price=Decimal("8.00"),
            sell_price=Decimal("20.00"),
            stock_quantity=10,
        )

    def test_product_crud_and_search(self):
        response = self.client.post(
            "/api/v1/products/",
            {"code": "EYE-01", "name": "Eyeliner", "cost_price": "4.00", "sell_price": "12.00", "stock_quantity": 6},
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["consigned_quantity"], 0)
        self.assertTrue(AuditLog.objects.filter(action="product.create").exists())

        search = self.client.get("/api/v1/products/?search=eye")
        codes = [row["code"] for row in search.json()["results"]]
        self.assertEqual(codes, ["EYE-01"])

    def test_consigned_quantity_is_read_only(self):
        response = self.client.patch(
            f"/api/v1/products/{self.product.id}/",
            {"consigned_quantity": 50, "stock_quantity": 12},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.product.refresh_from_db()
        self.assertEqual(self.product.consigned_quantity, 0)
        self.assertEqual(self.product.stock_quantity, 12)

    def test_duplicate_code_is_a_validation_error(self):
        response = self.client.post(
            "/api/v1/products/",
            {"code": "LIP-01", "name": "Copy", "cost_price": "1.00", "sell_price": "2.00"},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")
        self.assertIn("code", response.json()["errors"])

    def test_consignment_endpoints(self):
        created = self.client.post(
            "/api/v1/consignments/",
            {"salon": str(self.salon.id), "product": str(self.product.id), "quantity": 4},
            format="json",
        )
        self.assertEqual(created.status_code, 201)
        consignment_id = created.json()["id"]
        self.assertEqual(created.json()["available_quantity"], 4)

        returned = self.client.post(f"/api/v1/consignments/{consignment_id}/return/", {"quantity": 1}, format="json")
        self.assertEqual(returned.status_code, 200)
        self.assertEqual(returned.json()["returned_quantity"], 1)

        too_many = self.client.post(f"/api/v1/consignments/{consignment_id}/return/", {"quantity": 9}, format="json")
        self.assertEqual(too_many.status_code, 400)
        self.assertEqual(too_many.json()["code"], "validation_error")
        self.assertIn("Only 3 unit(s)", too_many.json()["errors"]["quantity"][0])

        settled = self.client.post(f"/api/v1/consignments/{consignment_id}/settle/")
        self.assertEqual(settled.json()["status"], "settled")

        listed = self.client.get(f"/api/v1/consignments/?salon={self.salon.id}&status=settled")
        self.assertEqual([row["id"] for row in listed.json()["results"]], [consignment_id])

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 7)
        self.assertEqual(self.product.consigned_quantity, 3)

    def test_deleting_product_with_consignments_is_a_conflict(self):
        create_consignment(salon=self.salon, product=self.product, quantity=1)

        response = self.client.delete(f"/api/v1/products/{self.product.id}/")

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "protected")
        self.assertEqual(response.json()["errors"], {"references": ["Consignment"]})
        self.assertTrue(Product.objects.filter(pk=self.product.pk).exists())

    def test_import_endpoint_rejects_duplicate_codes(self):
        response = self.client.post(
            "/api/v1/products/import/",
            {"rows": [{"code": "A"}, {"code": "A"}]},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn("rows", response.json()["errors"])

    def test_malformed_consignment_filters_are_validation_errors(self):
        for param in ("salon", "product"):
            with self.subTest(param=param):
                response = self.client.get(f"/api/v1/consignments/?{param}=abc")

                self.assertEqual(response.status_code, 400)
                self.assertEqual(response.json()["code"], "validation_error")
                self.assertEqual(response.json()["errors"], {param: ["Must be a valid UUID."]})
