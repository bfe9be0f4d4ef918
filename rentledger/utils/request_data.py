"""Request body helpers. Clients send snake_case or the older camelCase keys."""
from flask import request

from rentledger.errors import ValidationError

ALIASES = {
    "tenant_id": ("tenantId",),
    "unit_id": ("unitId",),
    "external_tx_id": ("txId", "tx_id", "externalTxId"),
    "msisdn": ("phone", "phoneNumber", "phone_number"),
    "paid_at": ("paidAt",),
    "period_year": ("periodYear",),
    "period_month": ("periodMonth",),
    "amount_due": ("amountDue",),
    "due_date": ("dueDate",),
    "lease_id": ("leaseId",),
    "created_by": ("createdBy",),
    "gateway_reference": ("gatewayReference",),
}


def json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("request body must be a JSON object")
    return data


def field(data, name, default=None):
    if name in data:
        return data[name]
    for alias in ALIASES.get(name, ()):
        if alias in data:
            return data[alias]
    return default


def required(data, name):
    value = field(data, name)
    if value is None or value == "":
        raise ValidationError(f"Missing required field: {name}")
    return value
