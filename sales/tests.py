import uuid
from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.test import SimpleTestCase, TestCase, override_settings
from django.utils import timezone
from rest_framework.exceptions import ValidationError
from rest_framework.test import APIClient

from core.models import AuditLog
from inventory.models import Consignment, Product
from inventory.services import create_consignment, settle_consignment
from sales import aggregates
from sales.lifecycle import SaleLine, create_sale, delete_sale, edit_sale, pay_commission
from sales.models import Client, Sale, SaleItem, Salon
from sync.models import SyncOutbox


class LifecycleTestMixin:
    def make_product(self, code="P-1", stock=10, cost="10.00", sell="25.00"):
        return Product.objects.create(
            code=code,
            name=f"Product {code}",
            cost_price=Decimal(cost),
            sell_price=Decimal(sell),
            stock_quantity=stock,
        )

    def refresh(self, *objects):
        for obj in objects:
            obj.refresh_from_db()


class DirectSaleLifecycleTests(LifecycleTestMixin, TestCase):
    def setUp(self):
        self.product = self.make_product()
        self.other = self.make_product(code="P-2", stock=4, cost="3.00", sell="8.00")

    def test_create_decrements_stock_and_snapshots_items(self):
        result = create_sale(
            lines=[SaleLine(self.product, 2), SaleLine(self.other, 1, unit_price=Decimal("7.50"))],
            sale_type=Sale.Type.DIRECT,
            payment_method=Sale.PaymentMethod.PIX,
        )

        self.refresh(self.product, self.other)
        self.assertEqual(self.product.stock_quantity, 8)
        self.assertEqual(self.other.stock_quantity, 3)
        self.assertEqual(self.product.consigned_quantity, 0)

        sale = result.sale
        self.assertEqual(sale.total_value, Decimal("57.50"))
        self.assertEqual(sale.total_cost, Decimal("23.00"))
        self.assertFalse(sale.commission_paid)
        item = sale.items.get(product_id=self.product.id)
        self.assertEqual(item.product_name, "Product P-1")
        self.assertEqual(item.unit_price, Decimal("25.00"))
        self.assertEqual(item.unit_cost, Decimal("10.00"))
        self.assertEqual(set(result.effect.products), {self.product.id, self.other.id})

    def test_delete_restores_stock(self):
        result = create_sale(lines=[SaleLine(self.product, 3)], sale_type=Sale.Type.DIRECT)

        with self.assertLogs("ledger", level="INFO") as cm:
            delete_sale(result.sale)

        self.refresh(self.product)
        self.assertEqual(self.product.stock_quantity, 10)
        self.assertFalse(Sale.objects.exists())
        self.assertFalse(SaleItem.objects.exists())
        self.assertTrue(any("sale.deleted" in message for message in cm.output))

    def test_item_prices_survive_product_price_change(self):
        result = create_sale(lines=[SaleLine(self.product, 1)], sale_type=Sale.Type.DIRECT)
        Product.objects.filter(pk=self.product.pk).update(sell_price=Decimal("99.00"), cost_price=Decimal("50.00"))

        item = result.sale.items.get()
        self.assertEqual(item.unit_price, Decimal("25.00"))
        self.assertEqual(item.unit_cost, Decimal("10.00"))

    def test_empty_cart_is_rejected_before_any_write(self):
        with self.assertRaises(ValidationError):
            create_sale(lines=[], sale_type=Sale.Type.DIRECT)

        self.assertFalse(Sale.objects.exists())

    def test_direct_sale_with_salon_is_rejected(self):
        salon = Salon.objects.create(name="Salon", commission_rate=Decimal("10"))

        with self.assertRaises(ValidationError):
            create_sale(lines=[SaleLine(self.product, 1)], sale_type=Sale.Type.DIRECT, origin_salon=salon)

    def test_cart_larger_than_stock_is_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            create_sale(lines=[SaleLine(self.other, 3), SaleLine(self.other, 2)], sale_type=Sale.Type.DIRECT)

        self.assertIn("items", ctx.exception.detail)
        self.refresh(self.other)
        self.assertEqual(self.other.stock_quantity, 4)
        self.assertFalse(Sale.objects.exists())

    @override_settings(LEDGER_ENFORCE_AVAILABILITY=False)
    def test_overselling_is_tolerated_when_check_is_off(self):
        with self.assertLogs("ledger", level="WARNING") as cm:
            create_sale(lines=[SaleLine(self.other, 6)], sale_type=Sale.Type.DIRECT)

        self.refresh(self.other)
        self.assertEqual(self.other.stock_quantity, -2)
        self.assertTrue(any("ledger.negative_balance" in message for message in cm.output))

    def test_missing_product_is_skipped_on_delete(self):
        result = create_sale(lines=[SaleLine(self.product, 1), SaleLine(self.other, 1)], sale_type=Sale.Type.DIRECT)
        Product.objects.filter(pk=self.other.pk).delete()

        with self.assertLogs("ledger", level="WARNING") as cm:
            effect = delete_sale(result.sale)

        self.refresh(self.product)
        self.assertEqual(self.product.stock_quantity, 10)
        self.assertEqual(effect.skipped_product_ids, [self.other.id])
        self.assertTrue(any("ledger.product_missing" in message for message in cm.output))

    def test_failure_mid_operation_rolls_back_everything(self):
        with patch("sales.lifecycle.save_product_balance", side_effect=RuntimeError("storage down")):
            with self.assertRaises(RuntimeError):
                create_sale(lines=[SaleLine(self.product, 2)], sale_type=Sale.Type.DIRECT)

        self.refresh(self.product)
        self.assertEqual(self.product.stock_quantity, 10)
        self.assertFalse(Sale.objects.exists())
        self.assertFalse(SyncOutbox.objects.exists())


class ConsignmentSaleLifecycleTests(LifecycleTestMixin, TestCase):
    def setUp(self):
        self.salon = Salon.objects.create(name="Studio A", commission_rate=Decimal("20"))
        self.product = self.make_product()

    def test_create_consume_and_delete_scenario(self):
        consignment = create_consignment(salon=self.salon, product=self.product, quantity=5)
        self.refresh(self.product)
        self.assertEqual((self.product.stock_quantity, self.product.consigned_quantity), (5, 5))
        self.assertEqual(consignment.available_quantity, 5)

        result = create_sale(lines=[SaleLine(self.product, 3)], sale_type=Sale.Type.CONSIGNMENT, origin_salon=self.salon)
        self.refresh(self.product, consignment)
        self.assertEqual(consignment.sold_quantity, 3)
        self.assertEqual(self.product.consigned_quantity, 2)
        self.assertEqual(self.product.stock_quantity, 5)
        self.assertEqual(list(result.effect.consignments), [consignment.id])

        delete_sale(result.sale)
        self.refresh(self.product, consignment)
        self.assertEqual(consignment.sold_quantity, 0)
        self.assertEqual(self.product.consigned_quantity, 5)

    def test_fifo_consumption_across_batches(self):
        older = create_consignment(salon=self.salon, product=self.product, quantity=2, date=timezone.now() - timedelta(days=5))
        newer = create_consignment(salon=self.salon, product=self.product, quantity=4, date=timezone.now() - timedelta(days=1))

        create_sale(lines=[SaleLine(self.product, 3)], sale_type=Sale.Type.CONSIGNMENT, origin_salon=self.salon)

        self.refresh(older, newer)
        self.assertEqual(older.sold_quantity, 2)
        self.assertEqual(newer.sold_quantity, 1)

    def test_lifo_reversal_returns_to_newest_batch_first(self):
        older = create_consignment(salon=self.salon, product=self.product, quantity=3, date=timezone.now() - timedelta(days=5))
        newer = create_consignment(salon=self.salon, product=self.product, quantity=3, date=timezone.now() - timedelta(days=1))
        first = create_sale(lines=[SaleLine(self.product, 2)], sale_type=Sale.Type.CONSIGNMENT, origin_salon=self.salon)
        create_sale(lines=[SaleLine(self.product, 2)], sale_type=Sale.Type.CONSIGNMENT, origin_salon=self.salon)
        self.refresh(older, newer)
        self.assertEqual((older.sold_quantity, newer.sold_quantity), (3, 1))

        # The first sale drew only from the older batch, but reversal starts at the newest.
        delete_sale(first.sale)

        self.refresh(older, newer)
        self.assertEqual((older.sold_quantity, newer.sold_quantity), (2, 0))

    def test_settled_batch_still_receives_reversal(self):
        consignment = create_consignment(salon=self.salon, product=self.product, quantity=3)
        result = create_sale(lines=[SaleLine(self.product, 2)], sale_type=Sale.Type.CONSIGNMENT, origin_salon=self.salon)
        settle_consignment(consignment)

        delete_sale(result.sale)

        self.refresh(consignment)
        self.assertEqual(consignment.sold_quantity, 0)
        self.assertEqual(consignment.status, Consignment.Status.SETTLED)

    @override_settings(LEDGER_ENFORCE_AVAILABILITY=False)
    def test_under_allocation_still_decrements_consigned_quantity(self):
        consignment = create_consignment(salon=self.salon, product=self.product, quantity=2)

        with self.assertLogs("ledger", level="WARNING") as cm:
            result = create_sale(lines=[SaleLine(self.product, 5)], sale_type=Sale.Type.CONSIGNMENT, origin_salon=self.salon)

        self.refresh(self.product, consignment)
        self.assertEqual(consignment.sold_quantity, 2)
        self.assertEqual(self.product.consigned_quantity, -3)
        self.assertEqual(result.effect.unallocated, {self.product.id: 3})
        self.assertTrue(any("ledger.under_allocated" in message for message in cm.output))

    def test_consignment_sale_needs_salon(self):
        with self.assertRaises(ValidationError):
            create_sale(lines=[SaleLine(self.product, 1)], sale_type=Sale.Type.CONSIGNMENT)

    def test_consignment_cart_checked_against_active_batches(self):
        create_consignment(salon=self.salon, product=self.product, quantity=2)
        other_salon = Salon.objects.create(name="Studio B")
        create_consignment(salon=other_salon, product=self.product, quantity=5)

        with self.assertRaises(ValidationError):
            create_sale(lines=[SaleLine(self.product, 3)], sale_type=Sale.Type.CONSIGNMENT, origin_salon=self.salon)


class EditSaleTests(LifecycleTestMixin, TestCase):
    def setUp(self):
        self.salon = Salon.objects.create(name="Studio A", commission_rate=Decimal("20"))
        self.product = self.make_product()
        self.consignment = create_consignment(salon=self.salon, product=self.product, quantity=4)
        self.refresh(self.product)

    def test_edit_switches_direct_sale_to_consignment(self):
        result = create_sale(lines=[SaleLine(self.product, 2)], sale_type=Sale.Type.DIRECT)
        self.refresh(self.product)
        self.assertEqual(self.product.stock_quantity, 4)

        edited = edit_sale(
            result.sale,
            lines=[SaleLine(self.product, 3)],
            sale_type=Sale.Type.CONSIGNMENT,
            payment_method=Sale.PaymentMethod.CASH,
            origin_salon=self.salon,
        )

        self.refresh(self.product, self.consignment)
        self.assertEqual(self.product.stock_quantity, 6)
        self.assertEqual(self.product.consigned_quantity, 1)
        self.assertEqual(self.consignment.sold_quantity, 3)
        self.assertEqual(edited.sale.total_value, Decimal("75.00"))
        self.assertEqual(edited.sale.items.count(), 1)

    def test_edit_keeps_commission_flag_and_date(self):
        original_date = timezone.now() - timedelta(days=3)
        result = create_sale(
            lines=[SaleLine(self.product, 1)],
            sale_type=Sale.Type.CONSIGNMENT,
            origin_salon=self.salon,
            date=original_date,
        )
        pay_commission(self.salon, [result.sale.id])

        edited = edit_sale(
            result.sale,
            lines=[SaleLine(self.product, 2)],
            sale_type=Sale.Type.CONSIGNMENT,
            payment_method=Sale.PaymentMethod.DEBIT,
            origin_salon=self.salon,
        )

        self.assertTrue(edited.sale.commission_paid)
        self.assertEqual(edited.sale.date, original_date)
        self.assertEqual(edited.sale.payment_method, Sale.PaymentMethod.DEBIT)

    def test_edit_counts_own_quantities_as_available(self):
        result = create_sale(lines=[SaleLine(self.product, 4)], sale_type=Sale.Type.CONSIGNMENT, origin_salon=self.salon)

        edit_sale(
            result.sale,
            lines=[SaleLine(self.product, 4)],
            sale_type=Sale.Type.CONSIGNMENT,
            payment_method=Sale.PaymentMethod.PIX,
            origin_salon=self.salon,
        )

        self.refresh(self.consignment, self.product)
        self.assertEqual(self.consignment.sold_quantity, 4)
        self.assertEqual(self.product.consigned_quantity, 0)

    def test_edit_does_not_count_units_returning_to_settled_batch(self):
        result = create_sale(lines=[SaleLine(self.product, 4)], sale_type=Sale.Type.CONSIGNMENT, origin_salon=self.salon)
        settle_consignment(self.consignment)

        with self.assertRaises(ValidationError) as ctx:
            edit_sale(
                result.sale,
                lines=[SaleLine(self.product, 4)],
                sale_type=Sale.Type.CONSIGNMENT,
                payment_method=Sale.PaymentMethod.PIX,
                origin_salon=self.salon,
            )

        self.assertIn("items", ctx.exception.detail)
        self.refresh(self.consignment, self.product)
        self.assertEqual(self.consignment.sold_quantity, 4)
        self.assertEqual(self.product.consigned_quantity, 0)

    def test_edit_counts_reversal_into_active_batch_only(self):
        result = create_sale(lines=[SaleLine(self.product, 4)], sale_type=Sale.Type.CONSIGNMENT, origin_salon=self.salon)
        settle_consignment(self.consignment)
        fresh = create_consignment(salon=self.salon, product=self.product, quantity=2)

        edited = edit_sale(
            result.sale,
            lines=[SaleLine(self.product, 2)],
            sale_type=Sale.Type.CONSIGNMENT,
            payment_method=Sale.PaymentMethod.PIX,
            origin_salon=self.salon,
        )

        self.assertEqual(edited.effect.unallocated, {})
        self.refresh(self.consignment, fresh)
        self.assertEqual(self.consignment.sold_quantity, 0)
        self.assertEqual(fresh.sold_quantity, 2)


class CommissionTests(LifecycleTestMixin, TestCase):
    def setUp(self):
        self.salon = Salon.objects.create(name="Studio A", commission_rate=Decimal("20"))
        self.product = self.make_product(stock=100, cost="60.00", sell="1000.00")
        create_consignment(salon=self.salon, product=self.product, quantity=5)

    def test_pay_commission_clears_pending_contribution(self):
        result = create_sale(lines=[SaleLine(self.product, 1)], sale_type=Sale.Type.CONSIGNMENT, origin_salon=self.salon)

        pending = aggregates.pending_commissions(list(Sale.objects.all()), [self.salon])[0]
        self.assertEqual(pending["pending_commission"], Decimal("200.00"))
        self.assertEqual(pending["pending_sale_ids"], [result.sale.id])

        with self.assertLogs("ledger", level="INFO") as cm:
            paid = pay_commission(self.salon, [result.sale.id])

        self.assertEqual([sale.id for sale in paid], [result.sale.id])
        self.assertTrue(any("commission.paid" in message for message in cm.output))
        pending = aggregates.pending_commissions(list(Sale.objects.all()), [self.salon])[0]
        self.assertEqual(pending["pending_commission"], Decimal("0.00"))
        self.assertEqual(pending["pending_sale_ids"], [])

    def test_pay_commission_ignores_other_salons_sales(self):
        other = Salon.objects.create(name="Studio B", commission_rate=Decimal("10"))
        create_consignment(salon=other, product=self.product, quantity=1)
        foreign = create_sale(lines=[SaleLine(self.product, 1)], sale_type=Sale.Type.CONSIGNMENT, origin_salon=other)

        paid = pay_commission(self.salon, [foreign.sale.id])

        self.assertEqual(paid, [])
        foreign.sale.refresh_from_db()
        self.assertFalse(foreign.sale.commission_paid)

    def test_pay_commission_does_not_touch_quantities(self):
        result = create_sale(lines=[SaleLine(self.product, 1)], sale_type=Sale.Type.CONSIGNMENT, origin_salon=self.salon)
        self.refresh(self.product)
        before = (self.product.stock_quantity, self.product.consigned_quantity)

        pay_commission(self.salon, [result.sale.id])

        self.refresh(self.product)
        self.assertEqual((self.product.stock_quantity, self.product.consigned_quantity), before)


def _sale(total_value, total_cost, sale_type="direct", salon=None, paid=False, days_ago=0, method="cash", items=()):
    return SimpleNamespace(
        id=uuid.uuid4(),
        total_value=Decimal(total_value),
        total_cost=Decimal(total_cost),
        type=sale_type,
        origin_salon_id=salon.id if salon else None,
        commission_paid=paid,
        date=timezone.now() - timedelta(days=days_ago),
        payment_method=method,
        items=list(items),
    )


def _item(product_id, name, quantity, unit_price):
    return SimpleNamespace(product_id=product_id, product_name=name, quantity=quantity, unit_price=Decimal(unit_price))


class AggregateTests(SimpleTestCase):
    def setUp(self):
        self.salon = SimpleNamespace(id=uuid.uuid4(), name="Studio A", commission_rate=Decimal("10"))
        self.quiet_salon = SimpleNamespace(id=uuid.uuid4(), name="Studio Q", commission_rate=Decimal("5"))

    def test_profit_nets_cost_and_commission(self):
        direct = _sale("100", "60")
        consigned = _sale("100", "60", sale_type="consignment", salon=self.salon)

        self.assertEqual(aggregates.total_profit([direct], [self.salon]), Decimal("40"))
        self.assertEqual(aggregates.total_profit([consigned], [self.salon]), Decimal("30"))

    def test_unknown_salon_means_no_commission(self):
        orphan = _sale("100", "60", sale_type="consignment", salon=SimpleNamespace(id=uuid.uuid4()))

        self.assertEqual(aggregates.total_profit([orphan], [self.salon]), Decimal("40"))

    def test_inventory_and_consigned_value(self):
        products = [
            SimpleNamespace(stock_quantity=3, consigned_quantity=2, cost_price=Decimal("10.00")),
            SimpleNamespace(stock_quantity=1, consigned_quantity=0, cost_price=Decimal("4.50")),
        ]

        self.assertEqual(aggregates.inventory_value(products), Decimal("34.50"))
        self.assertEqual(aggregates.consigned_value(products), Decimal("20.00"))

    def test_top_products_ranked_by_quantity(self):
        p1, p2, p3 = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
        sales = [
            _sale("50", "20", items=[_item(p1, "Gloss", 1, "10"), _item(p2, "Blush", 4, "10")]),
            _sale("30", "10", items=[_item(p1, "Gloss", 2, "10"), _item(p3, "Primer", 1, "30")]),
        ]

        rows = aggregates.top_products(sales, limit=2)

        self.assertEqual([row["product_name"] for row in rows], ["Blush", "Gloss"])
        self.assertEqual(rows[1]["quantity"], 3)
        self.assertEqual(rows[1]["revenue"], Decimal("30.00"))

    def test_salon_performance_lists_every_salon(self):
        sales = [_sale("80", "30", sale_type="consignment", salon=self.salon), _sale("20", "5")]

        rows = aggregates.salon_performance(sales, [self.quiet_salon, self.salon])

        self.assertEqual([row["salon_name"] for row in rows], ["Studio A", "Studio Q"])
        self.assertEqual(rows[0]["sales_count"], 1)
        self.assertEqual(rows[1]["revenue"], Decimal("0.00"))

    def test_payment_split_omits_unused_methods(self):
        rows = aggregates.payment_method_split([_sale("10", "1", method="pix"), _sale("5", "1", method="pix")])

        self.assertEqual(rows, [{"payment_method": "pix", "revenue": Decimal("15.00")}])

    def test_revenue_by_day_keeps_most_recent_days(self):
        sales = [_sale("10", "1", days_ago=days) for days in range(5)] + [_sale("5", "1", days_ago=0)]

        rows = aggregates.revenue_by_day(sales, 3)

        self.assertEqual(len(rows), 3)
        self.assertEqual(rows[-1]["revenue"], Decimal("15.00"))
        self.assertLess(rows[0]["date"], rows[-1]["date"])

    def test_report_summary_without_sales(self):
        summary = aggregates.report_summary(sales=[], salons=[self.salon])

        self.assertEqual(summary["total_revenue"], Decimal("0.00"))
        self.assertEqual(summary["profit_margin"], Decimal("0.00"))
        self.assertEqual(summary["average_ticket"], Decimal("0.00"))
        self.assertEqual(summary["items_sold"], 0)

    def test_report_summary_margin_and_ticket(self):
        sales = [_sale("100", "60"), _sale("100", "60", sale_type="consignment", salon=self.salon)]

        summary = aggregates.report_summary(sales=sales, salons=[self.salon])

        self.assertEqual(summary["total_profit"], Decimal("70.00"))
        self.assertEqual(summary["profit_margin"], Decimal("35.00"))
        self.assertEqual(summary["average_ticket"], Decimal("100.00"))


class SalesApiTests(LifecycleTestMixin, TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = get_user_model().objects.create_user(username="seller", password="pass1234", is_approved=True)
        self.client.force_authenticate(user=self.user)
        self.salon = Salon.objects.create(name="Studio A", commission_rate=Decimal("20"))
        self.customer = Client.objects.create(name="Ana", instagram="@ana")
        self.product = self.make_product(stock=10, cost="10.00", sell="50.00")

    def _post_sale(self, **overrides):
        payload = {
            "items": [{"product": str(self.product.id), "quantity": 2}],
            "type": "direct",
            "payment_method": "cash",
            "client": str(self.customer.id),
        }
        payload.update(overrides)
        return self.client.post("/api/v1/sales/", payload, format="json", HTTP_X_REQUEST_ID="sale-req-1")

    def test_create_sale_returns_sale_and_inventory_effect(self):
        response = self._post_sale()

        self.assertEqual(response.status_code, 201)
        payload = response.json()
        self.assertEqual(payload["total_value"], "100.00")
        self.assertEqual(payload["client_name"], "Ana")
        self.assertEqual(payload["inventory_effect"]["product_ids"], [str(self.product.id)])
        self.assertEqual(payload["inventory_effect"]["unallocated"], {})
        self.refresh(self.product)
        self.assertEqual(self.product.stock_quantity, 8)

        self.assertTrue(AuditLog.objects.filter(action="sale.create", request_id="sale-req-1").exists())
        self.assertEqual(
            list(SyncOutbox.objects.order_by("id").values_list("entity", flat=True)),
            ["product", "sale"],
        )

    def test_empty_cart_is_validation_error(self):
        response = self._post_sale(items=[])

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")
        self.assertIn("items", response.json()["errors"])

    def test_non_positive_quantity_is_rejected(self):
        response = self._post_sale(items=[{"product": str(self.product.id), "quantity": 0}])

        self.assertEqual(response.status_code, 400)

    def test_unknown_payment_method_is_rejected(self):
        response = self._post_sale(payment_method="barter")

        self.assertEqual(response.status_code, 400)
        self.assertIn("payment_method", response.json()["errors"])

    def test_consignment_sale_without_salon_is_rejected(self):
        response = self._post_sale(type="consignment")

        self.assertEqual(response.status_code, 400)
        self.assertIn("origin_salon", response.json()["errors"])

    def test_insufficient_stock_is_rejected(self):
        response = self._post_sale(items=[{"product": str(self.product.id), "quantity": 11}])

        self.assertEqual(response.status_code, 400)
        self.refresh(self.product)
        self.assertEqual(self.product.stock_quantity, 10)

    def test_put_replaces_sale(self):
        sale_id = self._post_sale().json()["id"]

        response = self.client.put(
            f"/api/v1/sales/{sale_id}/",
            {"items": [{"product": str(self.product.id), "quantity": 5, "unit_price": "40.00"}], "type": "direct", "payment_method": "pix"},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["total_value"], "200.00")
        self.refresh(self.product)
        self.assertEqual(self.product.stock_quantity, 5)
        log = AuditLog.objects.get(action="sale.update")
        self.assertEqual(log.before_snapshot["total_value"], "100.00")
        self.assertEqual(log.after_snapshot["total_value"], "200.00")

    def test_patch_is_not_allowed(self):
        sale_id = self._post_sale().json()["id"]

        response = self.client.patch(f"/api/v1/sales/{sale_id}/", {"payment_method": "pix"}, format="json")

        self.assertEqual(response.status_code, 405)

    def test_delete_sale_restores_stock(self):
        sale_id = self._post_sale().json()["id"]

        response = self.client.delete(f"/api/v1/sales/{sale_id}/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["inventory_effect"]["skipped_product_ids"], [])
        self.refresh(self.product)
        self.assertEqual(self.product.stock_quantity, 10)
        self.assertTrue(SyncOutbox.objects.filter(entity="sale", op="delete").exists())

    def test_list_filters_by_type(self):
        self._post_sale()
        create_consignment(salon=self.salon, product=self.product, quantity=3)
        self._post_sale(type="consignment", origin_salon=str(self.salon.id), items=[{"product": str(self.product.id), "quantity": 1}])

        response = self.client.get("/api/v1/sales/?type=consignment")

        self.assertEqual(response.json()["count"], 1)
        self.assertEqual(response.json()["results"][0]["origin_salon_name"], "Studio A")

    def test_salon_with_sales_cannot_be_deleted(self):
        create_consignment(salon=self.salon, product=self.product, quantity=3)
        self._post_sale(type="consignment", origin_salon=str(self.salon.id), items=[{"product": str(self.product.id), "quantity": 1}])

        response = self.client.delete(f"/api/v1/salons/{self.salon.id}/")

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "protected")

    def test_deleting_client_keeps_sale_anonymous(self):
        sale_id = self._post_sale().json()["id"]

        response = self.client.delete(f"/api/v1/clients/{self.customer.id}/")

        self.assertEqual(response.status_code, 204)
        self.assertIsNone(Sale.objects.get(pk=sale_id).client_id)

    def test_commission_rate_must_be_a_percentage(self):
        response = self.client.post("/api/v1/salons/", {"name": "Too greedy", "commission_rate": "120"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("commission_rate", response.json()["errors"])

    def test_pay_commission_endpoint(self):
        create_consignment(salon=self.salon, product=self.product, quantity=3)
        sale_id = self._post_sale(
            type="consignment",
            origin_salon=str(self.salon.id),
            items=[{"product": str(self.product.id), "quantity": 2}],
        ).json()["id"]

        report = self.client.get("/api/v1/reports/salon-commissions/")
        row = report.json()["results"][0]
        self.assertEqual(row["pending_commission"], "20.00")
        self.assertEqual(row["pending_sale_ids"], [sale_id])

        response = self.client.post(f"/api/v1/salons/{self.salon.id}/pay-commission/", {"sale_ids": [sale_id]}, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["paid_sale_ids"], [sale_id])
        self.assertTrue(Sale.objects.get(pk=sale_id).commission_paid)
        self.assertTrue(AuditLog.objects.filter(action="salon.commission_paid", entity_id=self.salon.id).exists())

    def test_pay_commission_requires_ids(self):
        response = self.client.post(f"/api/v1/salons/{self.salon.id}/pay-commission/", {"sale_ids": []}, format="json")

        self.assertEqual(response.status_code, 400)

    def test_malformed_id_filters_are_validation_errors(self):
        for param in ("origin_salon", "client"):
            with self.subTest(param=param):
                response = self.client.get(f"/api/v1/sales/?{param}=abc")

                self.assertEqual(response.status_code, 400)
                self.assertEqual(response.json()["code"], "validation_error")
                self.assertEqual(response.json()["errors"], {param: ["Must be a valid UUID."]})

    def test_filters_by_client(self):
        self._post_sale()
        other = Client.objects.create(name="Bia")

        response = self.client.get(f"/api/v1/sales/?client={other.id}")

        self.assertEqual(response.json()["count"], 0)


class ReportApiTests(LifecycleTestMixin, TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = get_user_model().objects.create_user(username="reporter", password="pass1234", is_approved=True)
        self.client.force_authenticate(user=self.user)
        self.salon = Salon.objects.create(name="Studio A", commission_rate=Decimal("10"))
        Salon.objects.create(name="Studio Idle", commission_rate=Decimal("5"))
        self.product = self.make_product(stock=20, cost="60.00", sell="100.00")
        create_consignment(salon=self.salon, product=self.product, quantity=5)
        create_sale(lines=[SaleLine(self.product, 1)], sale_type=Sale.Type.DIRECT, payment_method=Sale.PaymentMethod.PIX)
        create_sale(lines=[SaleLine(self.product, 1)], sale_type=Sale.Type.CONSIGNMENT, origin_salon=self.salon)

    def test_dashboard(self):
        response = self.client.get("/api/v1/reports/dashboard/")

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["total_revenue"], "200.00")
        self.assertEqual(payload["total_profit"], "70.00")
        self.assertEqual(payload["inventory_value"], "840.00")
        self.assertEqual(payload["consigned_value"], "240.00")
        self.assertEqual(payload["active_consignment_count"], 1)
        self.assertEqual(len(payload["revenue_by_day"]), 1)

    def test_summary(self):
        response = self.client.get("/api/v1/reports/summary/")

        payload = response.json()
        self.assertEqual(payload["items_sold"], 2)
        self.assertEqual(payload["profit_margin"], "35.00")
        self.assertEqual(payload["average_ticket"], "100.00")
        self.assertEqual([row["salon_name"] for row in payload["salon_performance"]], ["Studio A", "Studio Idle"])
        self.assertEqual({row["payment_method"] for row in payload["payment_methods"]}, {"pix", "cash"})

    def test_top_products_csv(self):
        response = self.client.get("/api/v1/reports/top-products/?format=csv")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response["Content-Type"], "text/csv")
        content = response.content.decode()
        self.assertIn("product_id,product_name,quantity,revenue", content)
        self.assertIn("Product P-1", content)

    def test_invalid_limit(self):
        response = self.client.get("/api/v1/reports/top-products/?limit=0")

        self.assertEqual(response.status_code, 400)
        self.assertIn("limit", response.json()["errors"])

    def test_half_open_date_range_is_rejected(self):
        response = self.client.get("/api/v1/reports/summary/?date_from=2024-01-01")

        self.assertEqual(response.status_code, 400)
        self.assertIn("date_range", response.json()["errors"])

    def test_salon_commissions_rejects_malformed_salon(self):
        response = self.client.get("/api/v1/reports/salon-commissions/?salon=abc")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["errors"], {"salon": ["Must be a valid UUID."]})
