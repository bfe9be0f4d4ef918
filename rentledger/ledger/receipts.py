"""PDF receipts for settled payments."""
import logging
import os
from datetime import timezone

from flask import current_app
from fpdf import FPDF
from fpdf.enums import XPos, YPos

from rentledger.errors import NotFoundError, ValidationError
from rentledger.extensions import db
from rentledger.models import Payment, Tenant, Unit
from rentledger.money import to_money
from rentledger.utils.periods import billing_timezone

logger = logging.getLogger(__name__)


def receipt_number(payment):
    if payment.external_tx_id:
        return f"RP-{payment.external_tx_id}"
    return f"RP-MANUAL-{payment.id}"


def receipts_dir():
    path = current_app.config.get("RECEIPTS_DIR") or os.path.join(current_app.instance_path, "receipts")
    os.makedirs(path, exist_ok=True)
    return path


def receipt_path(payment):
    return os.path.join(receipts_dir(), f"{receipt_number(payment)}.pdf")


def _latin1(text):
    # Core PDF fonts only cover Latin-1
    return str(text).encode("latin-1", "replace").decode("latin-1")


def _receipt_lines(payment):
    tenant = db.session.get(Tenant, payment.tenant_id)
    unit = db.session.get(Unit, payment.unit_id) if payment.unit_id else None
    paid_at = payment.paid_at.replace(tzinfo=timezone.utc).astimezone(billing_timezone())
    invoices = ", ".join(str(a.invoice_id) for a in payment.allocations) or "-"

    lines = [
        ("Receipt No", receipt_number(payment)),
        ("Date", paid_at.strftime("%d %b %Y %H:%M")),
        ("Tenant", tenant.full_name if tenant else payment.tenant_id),
        ("Unit", unit.unit_number if unit else "-"),
    ]
    if payment.msisdn:
        lines.append(("MPesa", payment.msisdn))
    lines += [
        ("Method", f"{payment.method} ({payment.source})"),
        ("Invoice ID", invoices),
        ("Amount", f"KES {to_money(payment.amount):,.2f}"),
    ]
    if payment.unapplied_amount and to_money(payment.unapplied_amount) > 0:
        lines.append(("Credit carried", f"KES {to_money(payment.unapplied_amount):,.2f}"))
    return lines


def render_receipt(payment) -> bytes:
    pdf = FPDF()
    pdf.add_page()
    pdf.set_font("Helvetica", "B", 16)
    pdf.cell(0, 12, "Rent Payment Receipt", new_x=XPos.LMARGIN, new_y=YPos.NEXT, align="C")
    pdf.ln(4)
    for label, value in _receipt_lines(payment):
        pdf.set_font("Helvetica", "B", 12)
        pdf.cell(45, 9, _latin1(f"{label}:"))
        pdf.set_font("Helvetica", size=12)
        pdf.cell(0, 9, _latin1(value), new_x=XPos.LMARGIN, new_y=YPos.NEXT)
    pdf.ln(6)
    pdf.set_font("Helvetica", "I", 12)
    pdf.cell(0, 9, "Thank you for your payment.", new_x=XPos.LMARGIN, new_y=YPos.NEXT)
    return bytes(pdf.output())


def generate_payment_receipt(payment_id):
    """Write the receipt for a paid payment and return its file path.

    An existing receipt file is reused. ``receipt_url`` on the payment
    points at the download route.
    """
    payment = db.session.get(Payment, payment_id)
    if payment is None:
        raise NotFoundError(f"payment {payment_id} not found")
    if payment.status != "paid":
        raise ValidationError(f"payment {payment_id} is {payment.status}, receipts are issued for paid payments only")

    path = receipt_path(payment)
    if not os.path.exists(path):
        with open(path, "wb") as fh:
            fh.write(render_receipt(payment))
        logger.info("Receipt %s written for payment %s", receipt_number(payment), payment.id)

    url = f"/api/payments/{payment.id}/receipt"
    if payment.receipt_url != url:
        payment.receipt_url = url
        db.session.commit()
    return path
