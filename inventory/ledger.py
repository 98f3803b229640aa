"""
Quantity deltas for sales and consignment shipments.

Nothing here touches the database: callers pass objects exposing
``product_id`` and ``quantity`` (sale items) or products exposing
``stock_quantity`` / ``consigned_quantity`` and get plain values back.
"""

from dataclasses import dataclass

DIRECT = "direct"
CONSIGNMENT = "consignment"
SALE_TYPES = (DIRECT, CONSIGNMENT)


@dataclass(frozen=True)
class QuantityDelta:
    product_id: object
    stock: int = 0
    consigned: int = 0

    def __add__(self, other):
        if other.product_id != self.product_id:
            raise ValueError("Cannot add deltas for different products.")
        return QuantityDelta(self.product_id, self.stock + other.stock, self.consigned + other.consigned)

    def inverted(self):
        return QuantityDelta(self.product_id, -self.stock, -self.consigned)

    @property
    def is_zero(self):
        return self.stock == 0 and self.consigned == 0


def item_delta(product_id, quantity, sale_type) -> QuantityDelta:
    quantity = int(quantity)
    if sale_type == DIRECT:
        return QuantityDelta(product_id, stock=-quantity)
    if sale_type == CONSIGNMENT:
        return QuantityDelta(product_id, consigned=-quantity)
    raise ValueError(f"Unknown sale type: {sale_type!r}")


def sale_deltas(items, sale_type, *, reverse=False) -> dict:
    """
    Aggregate the per-product effect of a sale's items.

    Direct sales draw on ``stock_quantity``; consignment sales draw on
    ``consigned_quantity``. With ``reverse=True`` the signs are inverted,
    which is what deleting a sale (or the first half of an edit) applies.
    Products keep the order in which they first appear in ``items``.
    """
    deltas = {}
    for item in items:
        delta = item_delta(item.product_id, item.quantity, sale_type)
        if reverse:
            delta = delta.inverted()
        existing = deltas.get(item.product_id)
        deltas[item.product_id] = delta if existing is None else existing + delta
    return deltas


def sale_quantities(items) -> dict:
    totals = {}
    for item in items:
        totals[item.product_id] = totals.get(item.product_id, 0) + int(item.quantity)
    return totals


def shipment_delta(product_id, quantity) -> QuantityDelta:
    """Stock leaving for a salon: central stock goes down, consigned stock goes up."""
    return QuantityDelta(product_id, stock=-int(quantity), consigned=int(quantity))


def return_delta(product_id, quantity) -> QuantityDelta:
    return shipment_delta(product_id, quantity).inverted()


def apply_delta(product, delta: QuantityDelta):
    product.stock_quantity += delta.stock
    product.consigned_quantity += delta.consigned
    return product


def negative_balances(product) -> dict:
    balances = {}
    if product.stock_quantity < 0:
        balances["stock_quantity"] = product.stock_quantity
    if product.consigned_quantity < 0:
        balances["consigned_quantity"] = product.consigned_quantity
    return balances
