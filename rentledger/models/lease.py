from . import db
from rentledger.money import as_float
from rentledger.utils.periods import utcnow


class Lease(db.Model):
    __tablename__ = 'leases'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id'), nullable=False, index=True)
    unit_id = db.Column(db.Integer, db.ForeignKey('units.id'), nullable=False, index=True)

    # Lease Terms
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=True)

    # Falls back to the unit's rent when unset
    monthly_rent = db.Column(db.Numeric(14, 2), nullable=True)
    payment_due_day = db.Column(db.Integer, default=1)  # Day of month rent is due

    status = db.Column(db.String(20), default='active')  # draft, active, expired, terminated
    created_at = db.Column(db.DateTime, default=utcnow)

    def __repr__(self):
        return f'<Lease {self.id}: tenant {self.tenant_id} unit {self.unit_id} ({self.status})>'

    @property
    def effective_rent(self):
        if self.monthly_rent is not None:
            return self.monthly_rent
        return self.unit.rent_amount if self.unit else None

    def serialize(self):
        rent = self.effective_rent
        return {
            'id': self.id,
            'tenant_id': self.tenant_id,
            'unit_id': self.unit_id,
            'start_date': self.start_date.isoformat(),
            'end_date': self.end_date.isoformat() if self.end_date else None,
            'monthly_rent': as_float(rent) if rent is not None else None,
            'payment_due_day': self.payment_due_day,
            'status': self.status,
        }
