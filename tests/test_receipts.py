import os

import pytest

from rentledger.errors import NotFoundError, ValidationError
from rentledger.ledger.receipts import generate_payment_receipt, receipt_number, render_receipt
from rentledger.ledger.store import LedgerStore

from .conftest import NOW


@pytest.fixture
def receipts_dir(app, tmp_path):
    app.config["RECEIPTS_DIR"] = str(tmp_path)
    return tmp_path


@pytest.fixture
def store(app):
    return LedgerStore()


class TestReceiptNumber:
    def test_uses_transaction_id(self, store, make_tenant):
        tenant = make_tenant()
        payment = store.record_payment(tenant.id, 20000, "mpesa", "stk", external_tx_id="SJK7H2P9QX", paid_at=NOW)
        assert receipt_number(payment) == "RP-SJK7H2P9QX"

    def test_manual_payment(self, store, make_tenant):
        tenant = make_tenant()
        payment = store.record_payment(tenant.id, 20000, "cash", "counter", paid_at=NOW)
        assert receipt_number(payment) == f"RP-MANUAL-{payment.id}"


class TestGenerateReceipt:
    def test_writes_pdf_and_sets_url(self, store, make_tenant, receipts_dir):
        tenant = make_tenant()
        store.issue_invoice(tenant.id, 2026, 10, 20000)
        payment = store.record_payment(tenant.id, 20000, "mpesa", "portal", msisdn="254712345678", paid_at=NOW)

        path = generate_payment_receipt(payment.id)

        assert os.path.dirname(path) == str(receipts_dir)
        with open(path, "rb") as fh:
            assert fh.read(4) == b"%PDF"
        assert payment.receipt_url == f"/api/payments/{payment.id}/receipt"
        assert payment.serialize()["receipt_url"] == payment.receipt_url

    def test_existing_file_is_reused(self, store, make_tenant, receipts_dir):
        tenant = make_tenant()
        payment = store.record_payment(tenant.id, 20000, "cash", "counter", paid_at=NOW)
        path = generate_payment_receipt(payment.id)
        mtime = os.path.getmtime(path)

        assert generate_payment_receipt(payment.id) == path
        assert os.path.getmtime(path) == mtime

    def test_non_latin_names_render(self, store, make_tenant):
        tenant = make_tenant()
        tenant.first_name = "Zoë Ŵanjiru"
        payment = store.record_payment(tenant.id, 1500, "cash", "counter", paid_at=NOW)
        assert render_receipt(payment).startswith(b"%PDF")

    def test_pending_payment_has_no_receipt(self, store, make_tenant, receipts_dir):
        tenant = make_tenant()
        payment = store.record_payment(tenant.id, 20000, "bank", "import", paid_at=NOW, status="pending")

        with pytest.raises(ValidationError):
            generate_payment_receipt(payment.id)
        assert payment.receipt_url is None
        assert os.listdir(receipts_dir) == []

    def test_missing_payment(self, app, receipts_dir):
        with pytest.raises(NotFoundError):
            generate_payment_receipt(9999)


class TestReceiptRoute:
    def test_download(self, client, user_headers, make_tenant, receipts_dir):
        tenant = make_tenant()
        created = client.post("/api/payments", headers=user_headers,
                              json={"tenant_id": tenant.id, "amount": 20000}).get_json()

        response = client.get(f"/api/payments/{created['id']}/receipt", headers=user_headers)

        assert response.status_code == 200
        assert response.mimetype == "application/pdf"
        assert response.data.startswith(b"%PDF")
        assert f"RP-MANUAL-{created['id']}.pdf" in response.headers["Content-Disposition"]
        body = client.get(f"/api/payments/{created['id']}", headers=user_headers).get_json()
        assert body["receipt_url"] == f"/api/payments/{created['id']}/receipt"

    def test_pending_payment_is_rejected(self, client, user_headers, make_tenant, receipts_dir):
        tenant = make_tenant()
        created = client.post("/api/payments", headers=user_headers,
                              json={"tenant_id": tenant.id, "amount": 20000, "status": "pending"}).get_json()
        response = client.get(f"/api/payments/{created['id']}/receipt", headers=user_headers)
        assert response.status_code == 400

    def test_missing_payment(self, client, user_headers, receipts_dir):
        assert client.get("/api/payments/9999/receipt", headers=user_headers).status_code == 404

    def test_requires_login(self, client):
        assert client.get("/api/payments/1/receipt").status_code == 401
