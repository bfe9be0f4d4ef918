from . import db
from rentledger.money import ZERO, as_float, to_money
from rentledger.utils.periods import utcnow

INVOICE_SOURCES = ('auto-billing', 'manual-invoice', 'lease-assignment')


class Invoice(db.Model):
    __tablename__ = 'invoices'

    id = db.Column(db.Integer, primary_key=True)

    # Foreign Keys
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id'), nullable=False, index=True)
    unit_id = db.Column(db.Integer, db.ForeignKey('units.id'), nullable=True, index=True)
    lease_id = db.Column(db.Integer, db.ForeignKey('leases.id'), nullable=True)

    # Billing period (calendar month in the billing timezone)
    period_year = db.Column(db.Integer, nullable=False)
    period_month = db.Column(db.Integer, nullable=False)

    # Financial details
    amount_due = db.Column(db.Numeric(14, 2), nullable=False)
    amount_paid = db.Column(db.Numeric(14, 2), nullable=False, default=ZERO)

    status = db.Column(db.String(20), default='open', index=True)  # 'open', 'partially_paid', 'paid'
    source = db.Column(db.String(30), nullable=False, default='manual-invoice')
    # "auto-billing:<tenant>:<YYYY-MM>" for generated rent, NULL otherwise
    billing_key = db.Column(db.String(64), unique=True, nullable=True)

    due_date = db.Column(db.Date, nullable=True)
    issued_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    description = db.Column(db.String(255), nullable=True)

    tenant = db.relationship('Tenant', backref=db.backref('invoices', lazy='dynamic'))
    unit = db.relationship('Unit')

    def __repr__(self):
        return f'<Invoice {self.id}: Tenant {self.tenant_id} {self.period_label} KES {self.amount_due} ({self.status})>'

    @property
    def period_label(self):
        return f"{self.period_year:04d}-{self.period_month:02d}"

    @property
    def period_key(self):
        return (self.period_year, self.period_month)

    @property
    def outstanding(self):
        return to_money(self.amount_due) - to_money(self.amount_paid or ZERO)

    def apply(self, amount):
        """Apply up to ``amount`` against this invoice; returns the slice used."""
        applied = min(to_money(amount), self.outstanding)
        if applied <= ZERO:
            return ZERO
        self.amount_paid = to_money(self.amount_paid or ZERO) + applied
        self.status = 'paid' if self.outstanding == ZERO else 'partially_paid'
        return applied

    def serialize(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "unit_id": self.unit_id,
            "lease_id": self.lease_id,
            "period": self.period_label,
            "amount_due": as_float(self.amount_due),
            "amount_paid": as_float(self.amount_paid),
            "outstanding": as_float(self.outstanding),
            "status": self.status,
            "source": self.source,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "issued_at": self.issued_at.isoformat() if self.issued_at else None,
            "description": self.description,
            "unit_number": self.unit.unit_number if self.unit else None,
        }
