from . import db
from rentledger.money import as_float
from rentledger.utils.periods import utcnow


class PaymentAttempt(db.Model):
    """Gateway-side record of one initiated collection.

    Only gateway adapters and provider callbacks write these rows; the
    ledger learns about a settled attempt through the reconciliation machine.
    """

    __tablename__ = 'payment_attempts'

    id = db.Column(db.Integer, primary_key=True)
    handle = db.Column(db.String(64), unique=True, nullable=False, index=True)
    provider = db.Column(db.String(20), nullable=False)

    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id'), nullable=False, index=True)
    unit_id = db.Column(db.Integer, db.ForeignKey('units.id'), nullable=True)
    amount = db.Column(db.Numeric(14, 2), nullable=False)
    msisdn = db.Column(db.String(20), nullable=True)
    narrative = db.Column(db.String(255), nullable=True)

    status = db.Column(db.String(20), default='pending', index=True)  # 'pending', 'paid', 'failed'

    # Daraja identifiers
    checkout_request_id = db.Column(db.String(100), unique=True, nullable=True)
    merchant_request_id = db.Column(db.String(100), nullable=True)
    receipt_number = db.Column(db.String(100), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    poll_count = db.Column(db.Integer, default=0, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    settled_at = db.Column(db.DateTime, nullable=True)

    def __repr__(self):
        return f'<PaymentAttempt {self.handle}: {self.provider} KES {self.amount} - {self.status}>'

    @property
    def is_terminal(self):
        return self.status in ('paid', 'failed')

    def settle(self, status, notes=None, receipt_number=None):
        """Move a pending attempt to paid/failed. Returns False if already terminal."""
        if self.is_terminal:
            return False
        self.status = status
        self.settled_at = utcnow()
        if notes:
            self.notes = notes
        if receipt_number:
            self.receipt_number = receipt_number
        return True

    def serialize(self):
        return {
            "payment_id": self.handle,
            "provider": self.provider,
            "tenant_id": self.tenant_id,
            "unit_id": self.unit_id,
            "amount": as_float(self.amount),
            "msisdn": self.msisdn,
            "narrative": self.narrative,
            "status": self.status,
            "checkout_request_id": self.checkout_request_id,
            "receipt_number": self.receipt_number,
            "notes": self.notes,
            "poll_count": self.poll_count,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "settled_at": self.settled_at.isoformat() if self.settled_at else None,
        }
