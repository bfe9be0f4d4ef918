import logging

from flask import Blueprint, current_app, jsonify
from flask_jwt_extended import jwt_required

from rentledger.errors import NotFoundError, ValidationError
from rentledger.extensions import db
from rentledger.gateways import get_gateway
from rentledger.gateways.base import PaymentRequest
from rentledger.models import Tenant
from rentledger.reconciliation.service import ensure_no_pending_attempt, get_reconciliation_service
from rentledger.utils.auth_utils import admin_required
from rentledger.utils.request_data import field, json_body, required

logger = logging.getLogger(__name__)

gateways_bp = Blueprint("gateways", __name__, url_prefix="/api/payments")


def _int_field(value, name):
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer")


def _payment_request(data):
    tenant_id = _int_field(required(data, "tenant_id"), "tenant_id")
    tenant = db.session.get(Tenant, tenant_id)
    if tenant is None:
        raise ValidationError(f"tenant {tenant_id} does not exist")
    unit_id = field(data, "unit_id")
    if unit_id in (None, ""):
        unit_id = tenant.current_unit.id if tenant.current_unit is not None else None
    else:
        unit_id = _int_field(unit_id, "unit_id")
    return PaymentRequest(
        tenant_id=tenant.id,
        amount=required(data, "amount"),
        unit_id=unit_id,
        msisdn=field(data, "msisdn"),
        narrative=field(data, "narrative") or field(data, "description"),
        account_reference=field(data, "account_reference"),
    )

# ============= CLIENT-DRIVEN FLOW =============

@gateways_bp.post("/<provider>/initiate")
@jwt_required()
def initiate(provider):
    """Start a collection; the caller polls /status with the returned payment_id"""
    gateway = get_gateway(provider)
    payment_request = _payment_request(json_body())
    ensure_no_pending_attempt(payment_request.tenant_id)
    result = gateway.initiate(payment_request)
    return jsonify(result.serialize()), 201


@gateways_bp.get("/<provider>/status/<payment_id>")
@jwt_required()
def status(provider, payment_id):
    result = get_gateway(provider).check_status(payment_id)
    return jsonify(result.serialize())

# ============= SERVER-SIDE RECONCILIATION =============

@gateways_bp.post("/<provider>/collect")
@jwt_required()
def collect(provider):
    """Initiate and let the server poll until the payment settles"""
    data = json_body()
    machine = get_reconciliation_service().start(
        provider,
        _payment_request(data),
        method=field(data, "method"),
        source=field(data, "source"),
    )
    return jsonify(machine.snapshot()), 202


@gateways_bp.get("/attempts/<handle>")
@jwt_required()
def attempt_snapshot(handle):
    return jsonify(get_reconciliation_service().get(handle).snapshot())


@gateways_bp.delete("/attempts/<handle>")
@jwt_required()
def cancel_attempt(handle):
    """Stop polling; the charge itself may still complete"""
    machine = get_reconciliation_service().cancel(handle)
    return jsonify(machine.snapshot())


@gateways_bp.post("/<provider>/reconcile/<handle>")
@admin_required
def reconcile(provider, handle):
    return jsonify(get_reconciliation_service().reconcile_manually(provider, handle))

# ============= KCB SANDBOX =============

@gateways_bp.post("/kcb/simulate/<handle>")
@jwt_required()
def simulate_kcb(handle):
    """Settle a sandbox attempt as if the paybill notification arrived"""
    if not current_app.config.get("KCB_SANDBOX_SIMULATION_ENABLED"):
        raise NotFoundError("sandbox simulation is disabled")
    data = json_body()
    attempt = get_gateway("kcb").settle(
        handle,
        status=field(data, "status", "paid"),
        receipt_number=field(data, "external_tx_id") or field(data, "receipt_number"),
        notes=field(data, "notes") or "Simulated",
    )
    logger.info("Simulated KCB settlement for %s", handle)
    return jsonify(attempt.serialize())
