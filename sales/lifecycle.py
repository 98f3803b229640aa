"""
Sale create/edit/delete and their inventory effects.

Every operation runs in a single transaction: the sale row, its items and
every product/consignment write either all land or none do. Missing
products and exhausted batches are tolerated, reported in the returned
``InventoryEffect`` and logged on the ``ledger`` logger.
"""

import logging
from dataclasses import dataclass, field

from django.conf import settings
from django.db import transaction
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from common.utils import emit_outbox, to_money
from inventory.allocation import (
    ACTIVE,
    apply_consumption,
    apply_reversal,
    load_batches,
    plan_consumption,
    plan_reversal,
    pool_available,
)
from inventory.ledger import CONSIGNMENT, DIRECT, sale_deltas, sale_quantities
from inventory.models import Product
from inventory.services import publish_consignment, publish_product, save_product_balance
from sales.models import Sale, SaleItem

logger = logging.getLogger("ledger")


@dataclass
class SaleLine:
    product: Product
    quantity: int
    unit_price: object = None

    @property
    def product_id(self):
        return self.product.id


@dataclass
class InventoryEffect:
    skipped_product_ids: list = field(default_factory=list)
    unallocated: dict = field(default_factory=dict)
    unreverted: dict = field(default_factory=dict)
    products: dict = field(default_factory=dict)
    consignments: dict = field(default_factory=dict)

    def as_dict(self):
        return {
            "skipped_product_ids": [str(product_id) for product_id in self.skipped_product_ids],
            "unallocated": {str(product_id): quantity for product_id, quantity in self.unallocated.items()},
            "unreverted": {str(product_id): quantity for product_id, quantity in self.unreverted.items()},
            "product_ids": [str(product_id) for product_id in self.products],
            "consignment_ids": [str(consignment_id) for consignment_id in self.consignments],
        }

    def publish(self):
        for product in self.products.values():
            publish_product(product)
        for consignment in self.consignments.values():
            publish_consignment(consignment)


@dataclass
class SaleResult:
    sale: Sale
    effect: InventoryEffect


def _validate_shape(lines, sale_type, origin_salon):
    if sale_type not in (DIRECT, CONSIGNMENT):
        raise ValidationError({"type": f"Unknown sale type: {sale_type}."})
    if not lines:
        raise ValidationError({"items": "A sale needs at least one item."})
    for line in lines:
        if int(line.quantity) <= 0:
            raise ValidationError({"items": "Item quantities must be greater than zero."})
    if sale_type == CONSIGNMENT and origin_salon is None:
        raise ValidationError({"origin_salon": "Consignment sales must name the salon that sold them."})
    if sale_type == DIRECT and origin_salon is not None:
        raise ValidationError({"origin_salon": "Direct sales cannot carry a salon."})


def _same_pool(previous, sale_type, origin_salon):
    if previous is None or previous.type != sale_type:
        return False
    if sale_type == CONSIGNMENT:
        return previous.origin_salon_id == getattr(origin_salon, "id", None)
    return True


def _released_to_active_batches(salon_id, product_id, quantity):
    batches = load_batches(salon_id, product_id, lock=True)
    plan = plan_reversal(batches, quantity)
    active_ids = {batch.id for batch in batches if batch.status == ACTIVE}
    return sum(allocation.quantity for allocation in plan.allocations if allocation.consignment_id in active_ids)


def _released_quantities(previous):
    released = sale_quantities(previous.items.all())
    if previous.type != CONSIGNMENT:
        return released
    return {
        product_id: _released_to_active_batches(previous.origin_salon_id, product_id, quantity)
        for product_id, quantity in released.items()
    }


def check_availability(lines, sale_type, origin_salon=None, previous=None):
    """
    Reject a cart that asks for more than its pool holds.

    Direct sales draw on central stock; consignment sales on the salon's
    active batches. When ``previous`` (the sale being edited) drew from the
    same pool its quantities count as available again, except units whose
    reversal lands on a settled batch.
    """
    requested = sale_quantities(lines)
    released = {}
    if _same_pool(previous, sale_type, origin_salon):
        released = _released_quantities(previous)

    products = {line.product_id: line.product for line in lines}
    shortages = []
    for product_id, quantity in requested.items():
        product = products[product_id]
        if sale_type == DIRECT:
            available = product.stock_quantity
        else:
            available = pool_available(origin_salon.id, product_id)
        available += released.get(product_id, 0)
        if quantity > available:
            shortages.append(f"{product.name}: requested {quantity}, available {max(available, 0)}")

    if shortages:
        raise ValidationError({"items": shortages})


def _apply_inventory(items, sale_type, origin_salon_id, effect, *, reverse, sale_id):
    deltas = sale_deltas(items, sale_type, reverse=reverse)
    products = Product.objects.select_for_update().in_bulk(list(deltas))

    for product_id, delta in deltas.items():
        product = products.get(product_id)
        if product is None:
            logger.warning(
                "ledger.product_missing",
                extra={"sale_id": str(sale_id), "product_id": str(product_id), "quantity": abs(delta.stock or delta.consigned)},
            )
            if product_id not in effect.skipped_product_ids:
                effect.skipped_product_ids.append(product_id)
            continue

        save_product_balance(product, delta, sale_id=str(sale_id))
        effect.products[product.id] = product

        if sale_type != CONSIGNMENT or origin_salon_id is None:
            continue

        quantity = abs(delta.consigned)
        batches = load_batches(origin_salon_id, product_id, lock=True)
        if reverse:
            plan = plan_reversal(batches, quantity)
            changed = apply_reversal(batches, plan)
        else:
            plan = plan_consumption(batches, quantity)
            changed = apply_consumption(batches, plan)

        for batch in changed:
            batch.save(update_fields=["sold_quantity", "updated_at"])
            effect.consignments[batch.id] = batch

        if plan.unallocated:
            shortfall = effect.unreverted if reverse else effect.unallocated
            shortfall[product_id] = shortfall.get(product_id, 0) + plan.unallocated
            logger.warning(
                "ledger.under_reverted" if reverse else "ledger.under_allocated",
                extra={
                    "sale_id": str(sale_id),
                    "salon_id": str(origin_salon_id),
                    "product_id": str(product_id),
                    "requested": plan.requested,
                    "unallocated": plan.unallocated,
                },
            )


def _replace_items(sale, lines):
    sale.items.all().delete()
    items = []
    for line in lines:
        unit_price = line.unit_price if line.unit_price is not None else line.product.sell_price
        items.append(
            SaleItem(
                sale=sale,
                product_id=line.product.id,
                product_name=line.product.name,
                quantity=int(line.quantity),
                unit_price=to_money(unit_price),
                unit_cost=to_money(line.product.cost_price),
            )
        )
    SaleItem.objects.bulk_create(items)
    sale.total_value = to_money(sum(item.quantity * item.unit_price for item in items))
    sale.total_cost = to_money(sum(item.quantity * item.unit_cost for item in items))
    return items


def _enforce_availability(lines, sale_type, origin_salon, previous=None):
    if getattr(settings, "LEDGER_ENFORCE_AVAILABILITY", True):
        check_availability(lines, sale_type, origin_salon, previous=previous)


def create_sale(*, lines, sale_type, payment_method=Sale.PaymentMethod.CASH, client=None, origin_salon=None, date=None):
    _validate_shape(lines, sale_type, origin_salon)
    effect = InventoryEffect()

    with transaction.atomic():
        _enforce_availability(lines, sale_type, origin_salon)
        sale = Sale.objects.create(
            date=date or timezone.now(),
            client=client,
            payment_method=payment_method,
            type=sale_type,
            origin_salon=origin_salon,
            commission_paid=False,
        )
        items = _replace_items(sale, lines)
        sale.save(update_fields=["total_value", "total_cost", "updated_at"])

        _apply_inventory(items, sale.type, sale.origin_salon_id, effect, reverse=False, sale_id=sale.id)
        effect.publish()

    logger.info(
        "sale.created",
        extra={"sale_id": str(sale.id), "sale_type": sale.type, "salon_id": str(sale.origin_salon_id or "")},
    )
    return SaleResult(sale=sale, effect=effect)


def edit_sale(sale, *, lines, sale_type, payment_method, client=None, origin_salon=None, date=None):
    """
    Replace a sale's contents: revert the stored effect, then apply the new one.

    Because both halves are computed from their own items, type and salon,
    switching between direct and consignment moves the quantities to the
    right pool. ``commission_paid`` is kept; ``date`` is kept unless given.
    """
    _validate_shape(lines, sale_type, origin_salon)
    effect = InventoryEffect()

    with transaction.atomic():
        sale = Sale.objects.select_for_update().get(pk=sale.pk)
        _enforce_availability(lines, sale_type, origin_salon, previous=sale)

        old_items = list(sale.items.all())
        _apply_inventory(old_items, sale.type, sale.origin_salon_id, effect, reverse=True, sale_id=sale.id)

        sale.type = sale_type
        sale.origin_salon = origin_salon
        sale.client = client
        sale.payment_method = payment_method
        if date is not None:
            sale.date = date
        items = _replace_items(sale, lines)
        sale.save()

        _apply_inventory(items, sale.type, sale.origin_salon_id, effect, reverse=False, sale_id=sale.id)
        effect.publish()

    logger.info(
        "sale.updated",
        extra={"sale_id": str(sale.id), "sale_type": sale.type, "salon_id": str(sale.origin_salon_id or "")},
    )
    return SaleResult(sale=sale, effect=effect)


def delete_sale(sale):
    effect = InventoryEffect()
    sale_id = sale.pk

    with transaction.atomic():
        sale = Sale.objects.select_for_update().get(pk=sale_id)
        items = list(sale.items.all())
        _apply_inventory(items, sale.type, sale.origin_salon_id, effect, reverse=True, sale_id=sale_id)
        sale.delete()
        effect.publish()

    logger.info("sale.deleted", extra={"sale_id": str(sale_id), "sale_type": sale.type})
    return effect


def pay_commission(salon, sale_ids):
    """Mark the salon's unpaid consignment sales among ``sale_ids`` as paid. Quantities are not touched."""
    with transaction.atomic():
        sales = list(
            Sale.objects.select_for_update().filter(
                id__in=sale_ids,
                origin_salon=salon,
                type=Sale.Type.CONSIGNMENT,
                commission_paid=False,
            )
        )
        for sale in sales:
            sale.commission_paid = True
            sale.save(update_fields=["commission_paid", "updated_at"])
            emit_outbox(
                entity="sale",
                entity_id=sale.id,
                op="upsert",
                payload={"id": sale.id, "commission_paid": True, "origin_salon": sale.origin_salon_id},
            )

    paid_ids = [str(sale.id) for sale in sales]
    logger.info("commission.paid", extra={"salon_id": str(salon.id), "sale_ids": paid_ids})
    return sales
