from flask import Blueprint, jsonify

from rentledger.errors import ValidationError
from rentledger.ledger.billing import run_billing_cycle
from rentledger.ledger.store import LedgerStore
from rentledger.utils.auth_utils import admin_required, current_actor
from rentledger.utils.periods import parse_period
from rentledger.utils.request_data import field, json_body, required

ledger_bp = Blueprint("ledger", __name__, url_prefix="/api/ledger")

# ============= ADJUSTMENTS =============

@ledger_bp.post("/adjustments")
@admin_required
def create_adjustment():
    """Debit raises what the tenant owes, credit lowers it"""
    data = json_body()
    adjustment = LedgerStore().record_adjustment(
        required(data, "tenant_id"),
        required(data, "amount"),
        required(data, "kind"),
        unit_id=field(data, "unit_id"),
        reason=field(data, "reason"),
        created_by=field(data, "created_by") or current_actor(),
    )
    return jsonify(adjustment.serialize()), 201

# ============= INVOICES =============

@ledger_bp.post("/invoices")
@admin_required
def create_invoice():
    data = json_body()
    invoice = LedgerStore().issue_invoice(
        required(data, "tenant_id"),
        required(data, "period_year"),
        required(data, "period_month"),
        required(data, "amount_due"),
        unit_id=field(data, "unit_id"),
        lease_id=field(data, "lease_id"),
        due_date=field(data, "due_date"),
        description=field(data, "description"),
        source=field(data, "source", "manual-invoice"),
    )
    return jsonify(invoice.serialize()), 201


@ledger_bp.post("/invoices/generate-monthly")
@admin_required
def generate_monthly_invoices():
    """Bill every active lease for a month (default: current)"""
    data = json_body()
    try:
        period = parse_period(field(data, "period") or field(data, "month"))
    except ValueError as e:
        raise ValidationError(str(e))
    result = run_billing_cycle(period)
    return jsonify(result.serialize())
