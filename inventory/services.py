import logging

from django.db import transaction
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from common.utils import emit_outbox, to_money
from inventory.allocation import available_quantity
from inventory.ledger import apply_delta, negative_balances, return_delta, shipment_delta
from inventory.models import Consignment, Product
from inventory.serializers import ConsignmentSerializer, ProductSerializer

logger = logging.getLogger("ledger")

PRODUCT_BALANCE_FIELDS = ["stock_quantity", "consigned_quantity", "updated_at"]


def publish_product(product, op="upsert"):
    emit_outbox(entity="product", entity_id=product.id, op=op, payload=ProductSerializer(product).data)


def publish_consignment(consignment, op="upsert"):
    emit_outbox(entity="consignment", entity_id=consignment.id, op=op, payload=ConsignmentSerializer(consignment).data)


def warn_on_negative_balance(product, **extra):
    balances = negative_balances(product)
    if balances:
        logger.warning(
            "ledger.negative_balance",
            extra={
                "product_id": str(product.id),
                "stock_quantity": product.stock_quantity,
                "consigned_quantity": product.consigned_quantity,
                **extra,
            },
        )
    return balances


def save_product_balance(product, delta, **log_extra):
    apply_delta(product, delta)
    product.save(update_fields=PRODUCT_BALANCE_FIELDS)
    warn_on_negative_balance(product, **log_extra)
    return product


def _locked_product(product_id):
    return Product.objects.select_for_update().get(pk=product_id)


def create_consignment(*, salon, product, quantity, date=None):
    """
    Ship ``quantity`` units of ``product`` to ``salon``.

    Central stock is not checked first: shipping more than is on hand
    leaves ``stock_quantity`` negative and logs a warning.
    """
    with transaction.atomic():
        product = _locked_product(product.id)
        save_product_balance(product, shipment_delta(product.id, quantity), salon_id=str(salon.id))
        consignment = Consignment.objects.create(
            salon=salon,
            product=product,
            quantity=quantity,
            sold_quantity=0,
            returned_quantity=0,
            status=Consignment.Status.ACTIVE,
            date=date or timezone.now(),
        )
        publish_product(product)
        publish_consignment(consignment)

    logger.info(
        "consignment.created",
        extra={
            "consignment_id": str(consignment.id),
            "salon_id": str(salon.id),
            "product_id": str(product.id),
            "quantity": quantity,
        },
    )
    return consignment


def record_consignment_return(consignment, quantity):
    """Units the salon sends back unsold go back into central stock."""
    with transaction.atomic():
        consignment = Consignment.objects.select_for_update().get(pk=consignment.pk)
        available = available_quantity(consignment)
        if quantity <= 0 or quantity > available:
            raise ValidationError({"quantity": f"Only {max(available, 0)} unit(s) are still available in this consignment."})

        consignment.returned_quantity += quantity
        consignment.save(update_fields=["returned_quantity", "updated_at"])

        product = _locked_product(consignment.product_id)
        save_product_balance(product, return_delta(product.id, quantity), consignment_id=str(consignment.id))
        publish_product(product)
        publish_consignment(consignment)

    logger.info(
        "consignment.returned",
        extra={"consignment_id": str(consignment.id), "product_id": str(consignment.product_id), "quantity": quantity},
    )
    return consignment


def settle_consignment(consignment):
    with transaction.atomic():
        consignment = Consignment.objects.select_for_update().get(pk=consignment.pk)
        if consignment.status == Consignment.Status.SETTLED:
            raise ValidationError({"status": "Consignment is already settled."})
        consignment.status = Consignment.Status.SETTLED
        consignment.save(update_fields=["status", "updated_at"])
        publish_consignment(consignment)

    logger.info("consignment.settled", extra={"consignment_id": str(consignment.id)})
    return consignment


def delete_consignment(consignment):
    """Remove a batch, bringing its outstanding units back to central stock."""
    with transaction.atomic():
        consignment = Consignment.objects.select_for_update().get(pk=consignment.pk)
        outstanding = max(available_quantity(consignment), 0)
        product = _locked_product(consignment.product_id)
        if outstanding:
            save_product_balance(product, return_delta(product.id, outstanding), consignment_id=str(consignment.id))
            publish_product(product)

        consignment_id = consignment.id
        publish_consignment(consignment, op="delete")
        consignment.delete()

    logger.info(
        "consignment.deleted",
        extra={"consignment_id": str(consignment_id), "product_id": str(product.id), "quantity": outstanding},
    )
    return product


def import_products(rows):
    """
    Upsert products by ``code``.

    Existing products only take the incoming name and prices when they are
    truthy, always take the incoming stock level and keep their consigned
    quantity. New products fall back to the cost price for a missing sell
    price and vice versa.
    """
    created = 0
    updated = 0
    with transaction.atomic():
        existing = Product.objects.select_for_update().in_bulk([row["code"] for row in rows], field_name="code")
        for row in rows:
            product = existing.get(row["code"])
            cost_price = row.get("cost_price")
            sell_price = row.get("sell_price")
            stock_quantity = int(row.get("stock_quantity") or 0)

            if product is not None:
                if row.get("name"):
                    product.name = row["name"]
                if cost_price:
                    product.cost_price = to_money(cost_price)
                if sell_price:
                    product.sell_price = to_money(sell_price)
                product.stock_quantity = stock_quantity
                product.save(update_fields=["name", "cost_price", "sell_price", "stock_quantity", "updated_at"])
                updated += 1
            else:
                product = Product.objects.create(
                    code=row["code"],
                    name=row.get("name") or row["code"],
                    cost_price=to_money(cost_price or sell_price),
                    sell_price=to_money(sell_price or cost_price),
                    stock_quantity=stock_quantity,
                    consigned_quantity=0,
                )
                created += 1
            publish_product(product)

    logger.info("products.imported", extra={"quantity": created + updated})
    return {"created": created, "updated": updated}
