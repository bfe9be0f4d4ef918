from flask import Blueprint, request, jsonify, send_file
from flask_jwt_extended import jwt_required

from rentledger.errors import NotFoundError
from rentledger.extensions import db
from rentledger.ledger.receipts import generate_payment_receipt, receipt_number
from rentledger.ledger.store import LedgerStore
from rentledger.models import Payment
from rentledger.utils.auth_utils import admin_required
from rentledger.utils.request_data import field, json_body, required

payments_bp = Blueprint("payments", __name__, url_prefix="/api")

# ============= PAYMENT RECORDING =============

@payments_bp.post("/payments")
@jwt_required()
def create_payment():
    """Record a counter, bank or imported payment"""
    data = json_body()
    payment = LedgerStore().record_payment(
        required(data, "tenant_id"),
        required(data, "amount"),
        field(data, "method", "cash"),
        field(data, "source", "counter"),
        unit_id=field(data, "unit_id"),
        external_tx_id=field(data, "external_tx_id"),
        msisdn=field(data, "msisdn"),
        paid_at=field(data, "paid_at"),
        description=field(data, "description"),
        notes=field(data, "notes"),
        status=field(data, "status", "paid"),
        gateway_reference=field(data, "gateway_reference"),
    )
    return jsonify(payment.serialize()), 201


@payments_bp.get("/payments")
@jwt_required()
def list_payments():
    """Get payments with optional tenant/status filtering"""
    payments = LedgerStore().list_payments(
        tenant_id=request.args.get("tenant_id"),
        status=request.args.get("status"),
        limit=request.args.get("limit", 100),
    )
    return jsonify({
        "payments": [payment.serialize() for payment in payments],
        "count": len(payments),
    })


@payments_bp.get("/payments/<int:payment_id>")
@jwt_required()
def get_payment(payment_id):
    payment = db.session.get(Payment, payment_id)
    if payment is None:
        raise NotFoundError(f"payment {payment_id} not found")
    return jsonify(payment.serialize())


@payments_bp.post("/payments/<int:payment_id>/settle")
@admin_required
def settle_payment(payment_id):
    """Move a pending payment to paid or failed"""
    data = json_body()
    payment = LedgerStore().settle_payment(
        payment_id,
        required(data, "status"),
        external_tx_id=field(data, "external_tx_id"),
        notes=field(data, "notes"),
        paid_at=field(data, "paid_at"),
    )
    return jsonify(payment.serialize())


@payments_bp.get("/payments/<int:payment_id>/receipt")
@jwt_required()
def payment_receipt(payment_id):
    """Download the PDF receipt, generating it on first request"""
    path = generate_payment_receipt(payment_id)
    payment = db.session.get(Payment, payment_id)
    return send_file(path, mimetype="application/pdf", as_attachment=True,
                     download_name=f"{receipt_number(payment)}.pdf")
