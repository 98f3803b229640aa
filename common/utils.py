import datetime
import decimal
import uuid
from decimal import Decimal, ROUND_HALF_UP

from rest_framework.exceptions import ValidationError

from sync.models import SyncOutbox

MONEY_QUANT = Decimal("0.01")


def to_money(value):
    return Decimal(value or 0).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def to_json_compatible(value):
    if isinstance(value, dict):
        return {key: to_json_compatible(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_json_compatible(item) for item in value]
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, decimal.Decimal):
        return str(value)
    if isinstance(value, (datetime.date, datetime.datetime, datetime.time)):
        return value.isoformat()
    return value


def emit_outbox(entity, entity_id, op, payload):
    payload_data = to_json_compatible(dict(payload or {}))

    envelope = {
        "entity": entity,
        "op": op,
        "entity_id": str(entity_id),
        "payload": payload_data,
    }

    return SyncOutbox.objects.create(
        entity=entity,
        entity_id=entity_id,
        op=op,
        payload=envelope,
    )


def uuid_query_param(request, name):
    """Return ``?name=`` as a UUID, None when absent; malformed ids are a 400."""
    raw_value = request.query_params.get(name)
    if not raw_value:
        return None
    try:
        return uuid.UUID(raw_value)
    except ValueError:
        raise ValidationError({name: "Must be a valid UUID."})
