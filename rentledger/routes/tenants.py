from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required

from rentledger.errors import NotFoundError
from rentledger.extensions import db
from rentledger.ledger.cache import get_summary_cache
from rentledger.ledger.entries import serialize_entry
from rentledger.ledger.store import DEFAULT_HISTORY_LIMIT, LedgerStore
from rentledger.models import Tenant

tenants_bp = Blueprint("tenants", __name__, url_prefix="/api/tenants")

# ============= FINANCE =============

@tenants_bp.get("/summary")
@jwt_required()
def finance_summaries():
    """FinanceSummary for every tenant"""
    summaries = get_summary_cache().get_all()
    return jsonify([summary.serialize() for summary in summaries])


@tenants_bp.get("/<int:tenant_id>/finance-summary")
@jwt_required()
def finance_summary(tenant_id):
    summary = get_summary_cache().get_for_tenant_id(tenant_id)
    return jsonify(summary.serialize())


@tenants_bp.get("/<int:tenant_id>/finance-history")
@jwt_required()
def finance_history(tenant_id):
    """Ledger entries newest first with running balance"""
    if db.session.get(Tenant, tenant_id) is None:
        raise NotFoundError(f"tenant {tenant_id} not found")
    entries = LedgerStore().list_history(
        tenant_id,
        unit_id=request.args.get("unit_id") or request.args.get("unitId"),
        limit=request.args.get("limit", DEFAULT_HISTORY_LIMIT),
    )
    return jsonify([serialize_entry(entry) for entry in entries])
