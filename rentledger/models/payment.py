from . import db
from rentledger.money import ZERO, as_float
from rentledger.utils.periods import utcnow

PAYMENT_METHODS = ('cash', 'bank', 'mpesa', 'manual', 'card', 'other')
PAYMENT_SOURCES = ('counter', 'portal', 'import', 'sandbox', 'stk', 'c2b', 'kcb-mpesa')
PAYMENT_STATUSES = ('pending', 'paid', 'failed')


class Payment(db.Model):
    __tablename__ = 'payments'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id'), nullable=False, index=True)
    unit_id = db.Column(db.Integer, db.ForeignKey('units.id'), nullable=True)

    # Payment details
    amount = db.Column(db.Numeric(14, 2), nullable=False)
    method = db.Column(db.String(20), nullable=False)
    source = db.Column(db.String(20), nullable=False)

    # Status tracking
    status = db.Column(db.String(20), default='pending', index=True)

    # External payment processor data
    external_tx_id = db.Column(db.String(100), unique=True, nullable=True)  # receipt / transaction id
    gateway_reference = db.Column(db.String(100), unique=True, nullable=True)  # reconciliation handle
    msisdn = db.Column(db.String(20), nullable=True)

    # Portion not allocated to any invoice (tenant credit)
    unapplied_amount = db.Column(db.Numeric(14, 2), nullable=False, default=ZERO)

    # Timestamps
    paid_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    settled_at = db.Column(db.DateTime, nullable=True)

    # Additional details
    description = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    receipt_url = db.Column(db.String(255), nullable=True)

    allocations = db.relationship('PaymentAllocation', backref='payment', lazy=True,
                                  cascade='all, delete-orphan')

    def __repr__(self):
        return f'<Payment {self.id}: KES {self.amount} - {self.status}>'

    def serialize(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "unit_id": self.unit_id,
            "amount": as_float(self.amount),
            "method": self.method,
            "source": self.source,
            "status": self.status,
            "external_tx_id": self.external_tx_id,
            "gateway_reference": self.gateway_reference,
            "msisdn": self.msisdn,
            "unapplied_amount": as_float(self.unapplied_amount),
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "settled_at": self.settled_at.isoformat() if self.settled_at else None,
            "description": self.description,
            "notes": self.notes,
            "receipt_url": self.receipt_url,
            "allocations": [a.serialize() for a in self.allocations],
        }

    def mark_failed(self, reason=None):
        """Mark payment as failed"""
        self.status = 'failed'
        self.settled_at = utcnow()
        if reason:
            self.notes = reason


class PaymentAllocation(db.Model):
    __tablename__ = 'payment_allocations'

    id = db.Column(db.Integer, primary_key=True)
    payment_id = db.Column(db.Integer, db.ForeignKey('payments.id'), nullable=False, index=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey('invoices.id'), nullable=False, index=True)
    amount = db.Column(db.Numeric(14, 2), nullable=False)
    applied_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    invoice = db.relationship('Invoice', backref=db.backref('allocations', lazy=True))

    def __repr__(self):
        return f'<PaymentAllocation payment {self.payment_id} -> invoice {self.invoice_id}: KES {self.amount}>'

    def serialize(self):
        return {
            "payment_id": self.payment_id,
            "invoice_id": self.invoice_id,
            "amount": as_float(self.amount),
            "applied_at": self.applied_at.isoformat() if self.applied_at else None,
        }
