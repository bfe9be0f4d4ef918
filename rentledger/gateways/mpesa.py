"""Safaricom Daraja STK push (Lipa na M-Pesa Online)."""
import base64
import logging
import threading
import time
from datetime import datetime
from decimal import Decimal

import requests
from requests.auth import HTTPBasicAuth

from rentledger.errors import GatewayError, TransientPollError
from rentledger.extensions import db
from rentledger.models import PaymentAttempt
from rentledger.money import whole_shillings
from rentledger.utils.periods import billing_timezone

from .base import (
    InitiateResult,
    PaymentRequest,
    StatusResult,
    load_attempt,
    new_handle,
    require_amount,
    require_msisdn,
    stored_status,
)

logger = logging.getLogger(__name__)

SANDBOX_URL = "https://sandbox.safaricom.co.ke"
PRODUCTION_URL = "https://api.safaricom.co.ke"

# Daraja answers a query for an STK push that is still on the handset with this
PROCESSING_ERROR_CODE = "500.001.1001"

FAILURE_REASONS = {
    "1": "Insufficient M-Pesa balance",
    "1032": "Request cancelled by user",
    "1037": "Phone could not be reached",
    "2001": "Wrong M-Pesa PIN entered",
}


class MpesaGateway:
    name = "mpesa"
    min_amount = Decimal("1")

    def __init__(self, consumer_key, consumer_secret, short_code, passkey, callback_url,
                 environment="sandbox", poll_interval=10, max_polls=12, timeout_seconds=120,
                 http_timeout=15, session=None):
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.short_code = str(short_code)
        self.passkey = passkey
        self.callback_url = callback_url
        self.environment = environment
        self.poll_interval = poll_interval
        self.max_polls = max_polls
        self.timeout_seconds = timeout_seconds
        self.http_timeout = http_timeout
        self.session = session or requests.Session()

        self._token = None
        self._token_expiry = 0.0
        self._token_lock = threading.Lock()

    @classmethod
    def from_config(cls, config):
        return cls(
            consumer_key=config.get("MPESA_CONSUMER_KEY", ""),
            consumer_secret=config.get("MPESA_CONSUMER_SECRET", ""),
            short_code=config.get("MPESA_BUSINESS_SHORT_CODE", "174379"),
            passkey=config.get("MPESA_PASSKEY", ""),
            callback_url=config.get("MPESA_CALLBACK_URL"),
            environment=config.get("MPESA_ENVIRONMENT", "sandbox"),
            poll_interval=config.get("MPESA_POLL_INTERVAL", 10),
            max_polls=config.get("MPESA_MAX_POLLS", 12),
            timeout_seconds=config.get("MPESA_TIMEOUT_SECONDS", 120),
            http_timeout=config.get("MPESA_HTTP_TIMEOUT", 15),
        )

    @property
    def base_url(self):
        return PRODUCTION_URL if self.environment == "production" else SANDBOX_URL

    # ============= DARAJA PLUMBING =============

    def _access_token(self):
        with self._token_lock:
            if self._token and time.monotonic() < self._token_expiry:
                return self._token
            r = self.session.get(
                f"{self.base_url}/oauth/v1/generate",
                params={"grant_type": "client_credentials"},
                auth=HTTPBasicAuth(self.consumer_key, self.consumer_secret),
                timeout=self.http_timeout,
            )
            r.raise_for_status()
            data = r.json()
            if "access_token" not in data:
                raise requests.RequestException("Daraja did not issue an access token")
            self._token = data["access_token"]
            # Refresh a minute early so a token never expires mid-request
            self._token_expiry = time.monotonic() + max(int(data.get("expires_in", 3599)) - 60, 0)
            return self._token

    def _timestamp(self):
        return datetime.now(billing_timezone()).strftime("%Y%m%d%H%M%S")

    def password(self, timestamp):
        raw = f"{self.short_code}{self.passkey}{timestamp}"
        return base64.b64encode(raw.encode()).decode()

    def _post(self, path, body):
        token = self._access_token()
        r = self.session.post(
            f"{self.base_url}{path}",
            json=body,
            headers={"Authorization": f"Bearer {token}"},
            timeout=self.http_timeout,
        )
        try:
            return r.json()
        except ValueError:
            r.raise_for_status()
            raise requests.RequestException(f"non-JSON response from Daraja ({r.status_code})")

    # ============= GATEWAY =============

    def initiate(self, request: PaymentRequest) -> InitiateResult:
        amount = require_amount(request.amount, self.min_amount)
        msisdn = require_msisdn(request.msisdn)
        shillings = whole_shillings(amount)
        timestamp = self._timestamp()
        account_reference = (request.account_reference or f"TENANT{request.tenant_id}")[:12]

        body = {
            "BusinessShortCode": self.short_code,
            "Password": self.password(timestamp),
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": shillings,
            "PartyA": msisdn,
            "PartyB": self.short_code,
            "PhoneNumber": msisdn,
            "CallBackURL": self.callback_url,
            "AccountReference": account_reference,
            "TransactionDesc": (request.narrative or "Rent payment")[:13],
        }
        try:
            data = self._post("/mpesa/stkpush/v1/processrequest", body)
        except requests.RequestException as e:
            logger.warning("STK push to %s failed: %s", msisdn, e)
            raise GatewayError("Could not reach M-Pesa, please try again")

        if str(data.get("ResponseCode")) != "0":
            message = data.get("errorMessage") or data.get("ResponseDescription") or "STK push rejected"
            logger.warning("STK push rejected for %s: %s", msisdn, message)
            raise GatewayError(message)

        attempt = PaymentAttempt(
            handle=new_handle(self.name),
            provider=self.name,
            tenant_id=request.tenant_id,
            unit_id=request.unit_id,
            amount=Decimal(shillings),
            msisdn=msisdn,
            narrative=request.narrative,
            status="pending",
            checkout_request_id=data.get("CheckoutRequestID"),
            merchant_request_id=data.get("MerchantRequestID"),
        )
        db.session.add(attempt)
        db.session.commit()
        logger.info("STK push %s sent to %s for KES %s (checkout %s)",
                    attempt.handle, msisdn, shillings, attempt.checkout_request_id)
        return InitiateResult(
            handle=attempt.handle,
            message=data.get("CustomerMessage") or "Check your phone to complete the payment",
            status="pending",
        )

    def check_status(self, handle: str) -> StatusResult:
        attempt = load_attempt(handle, self.name)
        if attempt.is_terminal:
            return stored_status(attempt)

        attempt.poll_count += 1
        db.session.commit()

        timestamp = self._timestamp()
        body = {
            "BusinessShortCode": self.short_code,
            "Password": self.password(timestamp),
            "Timestamp": timestamp,
            "CheckoutRequestID": attempt.checkout_request_id,
        }
        try:
            data = self._post("/mpesa/stkpushquery/v1/query", body)
        except requests.RequestException as e:
            raise TransientPollError(f"M-Pesa status query failed: {e}")

        if "ResultCode" not in data:
            if data.get("errorCode") == PROCESSING_ERROR_CODE:
                return StatusResult("pending", data.get("errorMessage"))
            raise TransientPollError(data.get("errorMessage") or "unexpected status response")

        code = str(data["ResultCode"])
        description = data.get("ResultDesc")
        # The STK callback may have settled the attempt while we were querying
        attempt = load_attempt(handle, self.name)
        if code == "0":
            attempt.settle("paid", notes=description)
        else:
            attempt.settle("failed", notes=FAILURE_REASONS.get(code, description or f"M-Pesa result {code}"))
        db.session.commit()
        logger.info("STK push %s resolved as %s (ResultCode %s)", handle, attempt.status, code)
        return stored_status(attempt)
