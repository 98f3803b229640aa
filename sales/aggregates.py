"""Read-side rollups over already-loaded sales, products and salons. Nothing here writes."""

from collections import OrderedDict
from decimal import Decimal

from django.utils import timezone

from common.utils import to_money
from inventory.ledger import CONSIGNMENT

ZERO = Decimal("0")
HUNDRED = Decimal("100")

PAYMENT_METHODS = ("cash", "pix", "credit", "debit")


def _items(sale):
    items = sale.items
    return items.all() if hasattr(items, "all") else items


def _salon_index(salons):
    return {salon.id: salon for salon in salons}


def sale_commission(sale, salons_by_id) -> Decimal:
    """Commission owed to the origin salon; zero for direct sales or an unknown salon."""
    if sale.type != CONSIGNMENT or not sale.origin_salon_id:
        return ZERO
    salon = salons_by_id.get(sale.origin_salon_id)
    if salon is None:
        return ZERO
    return Decimal(sale.total_value) * Decimal(salon.commission_rate) / HUNDRED


def sale_profit(sale, salons_by_id) -> Decimal:
    return Decimal(sale.total_value) - Decimal(sale.total_cost) - sale_commission(sale, salons_by_id)


def total_revenue(sales) -> Decimal:
    return sum((Decimal(sale.total_value) for sale in sales), ZERO)


def total_profit(sales, salons) -> Decimal:
    salons_by_id = _salon_index(salons)
    return sum((sale_profit(sale, salons_by_id) for sale in sales), ZERO)


def inventory_value(products) -> Decimal:
    return sum((product.stock_quantity * Decimal(product.cost_price) for product in products), ZERO)


def consigned_value(products) -> Decimal:
    return sum((product.consigned_quantity * Decimal(product.cost_price) for product in products), ZERO)


def items_sold(sales) -> int:
    return sum(item.quantity for sale in sales for item in _items(sale))


def profit_margin(revenue, profit) -> Decimal:
    if not revenue:
        return ZERO
    return profit / revenue * HUNDRED


def average_ticket(sales, revenue=None) -> Decimal:
    if not sales:
        return ZERO
    if revenue is None:
        revenue = total_revenue(sales)
    return revenue / len(sales)


def top_products(sales, limit=5):
    rows = OrderedDict()
    for sale in sales:
        for item in _items(sale):
            row = rows.setdefault(
                item.product_id,
                {"product_id": item.product_id, "product_name": item.product_name, "quantity": 0, "revenue": ZERO},
            )
            row["product_name"] = item.product_name
            row["quantity"] += item.quantity
            row["revenue"] += item.quantity * Decimal(item.unit_price)

    ranked = sorted(rows.values(), key=lambda row: row["quantity"], reverse=True)[:limit]
    return [{**row, "revenue": to_money(row["revenue"])} for row in ranked]


def salon_performance(sales, salons):
    """One row per salon, including salons without sales, highest revenue first."""
    totals = {salon.id: {"revenue": ZERO, "sales_count": 0} for salon in salons}
    for sale in sales:
        if sale.origin_salon_id in totals:
            totals[sale.origin_salon_id]["revenue"] += Decimal(sale.total_value)
            totals[sale.origin_salon_id]["sales_count"] += 1

    rows = [
        {
            "salon_id": salon.id,
            "salon_name": salon.name,
            "revenue": to_money(totals[salon.id]["revenue"]),
            "sales_count": totals[salon.id]["sales_count"],
        }
        for salon in salons
    ]
    return sorted(rows, key=lambda row: row["revenue"], reverse=True)


def payment_method_split(sales):
    totals = OrderedDict((method, ZERO) for method in PAYMENT_METHODS)
    for sale in sales:
        totals[sale.payment_method] = totals.get(sale.payment_method, ZERO) + Decimal(sale.total_value)
    return [{"payment_method": method, "revenue": to_money(value)} for method, value in totals.items() if value > 0]


def revenue_by_day(sales, days):
    """Revenue per calendar day for the last ``days`` days that have sales, oldest first."""
    totals = {}
    for sale in sales:
        day = timezone.localdate(sale.date) if timezone.is_aware(sale.date) else sale.date.date()
        totals[day] = totals.get(day, ZERO) + Decimal(sale.total_value)
    ordered = sorted(totals.items())[-days:] if days else []
    return [{"date": day, "revenue": to_money(value)} for day, value in ordered]


def pending_commissions(sales, salons):
    rows = []
    for salon in salons:
        pending = [
            sale
            for sale in sales
            if sale.origin_salon_id == salon.id and sale.type == CONSIGNMENT and not sale.commission_paid
        ]
        base = total_revenue(pending)
        rows.append(
            {
                "salon_id": salon.id,
                "salon_name": salon.name,
                "commission_rate": salon.commission_rate,
                "pending_base": to_money(base),
                "pending_commission": to_money(base * Decimal(salon.commission_rate) / HUNDRED),
                "pending_sale_ids": [sale.id for sale in pending],
            }
        )
    return rows


def dashboard_summary(*, sales, products, salons, active_consignments=0, days=10):
    return {
        "total_revenue": to_money(total_revenue(sales)),
        "total_profit": to_money(total_profit(sales, salons)),
        "inventory_value": to_money(inventory_value(products)),
        "consigned_value": to_money(consigned_value(products)),
        "product_count": len(products),
        "salon_count": len(salons),
        "sales_count": len(sales),
        "active_consignment_count": active_consignments,
        "revenue_by_day": revenue_by_day(sales, days),
    }


def report_summary(*, sales, salons, top_limit=5, days=15):
    revenue = total_revenue(sales)
    profit = total_profit(sales, salons)
    return {
        "total_revenue": to_money(revenue),
        "total_profit": to_money(profit),
        "profit_margin": to_money(profit_margin(revenue, profit)),
        "items_sold": items_sold(sales),
        "average_ticket": to_money(average_ticket(sales, revenue)),
        "top_products": top_products(sales, limit=top_limit),
        "salon_performance": salon_performance(sales, salons),
        "payment_methods": payment_method_split(sales),
        "revenue_by_day": revenue_by_day(sales, days),
    }
