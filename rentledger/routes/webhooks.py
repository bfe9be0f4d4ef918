import hmac
import logging

from flask import Blueprint, current_app, request, jsonify

from rentledger.errors import WebhookAuthError
from rentledger.gateways.callbacks import (
    STK_ACCEPTED,
    apply_stk_callback,
    normalize_c2b_payload,
    normalize_kcb_payload,
    record_incoming_payment,
)
from rentledger.utils.request_data import json_body

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/api/webhooks")


def _verify_kcb_secret():
    secret = current_app.config.get("KCB_WEBHOOK_SECRET")
    if not secret:
        return
    supplied = request.headers.get("X-KCB-Webhook-Secret") or request.headers.get("X-Webhook-Secret") or ""
    if not hmac.compare_digest(supplied, secret):
        logger.warning("KCB webhook rejected from %s: bad secret", request.remote_addr)
        raise WebhookAuthError("invalid webhook secret")

# ============= M-PESA =============

@webhooks_bp.post("/mpesa/stk")
def mpesa_stk_callback():
    """Daraja STK result. Always acknowledged so Safaricom stops retrying"""
    attempt = apply_stk_callback(request.get_json(silent=True))
    logger.info("STK callback received for %s", attempt.handle if attempt else "no known attempt")
    return jsonify(STK_ACCEPTED)


@webhooks_bp.post("/mpesa/c2b")
def mpesa_c2b_confirmation():
    incoming = normalize_c2b_payload(json_body())
    logger.info("C2B confirmation %s: KES %s account %r", incoming.tx_id, incoming.amount, incoming.account_ref)
    result = record_incoming_payment(incoming)
    body = result.serialize()
    body.update(STK_ACCEPTED)
    return jsonify(body)

# ============= KCB =============

@webhooks_bp.post("/kcb")
def kcb_notification():
    _verify_kcb_secret()
    incoming = normalize_kcb_payload(json_body())
    logger.info("KCB notification %s: KES %s account %r", incoming.tx_id, incoming.amount, incoming.account_ref)
    result = record_incoming_payment(incoming)
    return jsonify(result.serialize())
