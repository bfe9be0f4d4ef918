from . import db
from rentledger.money import as_float, to_money
from rentledger.utils.periods import utcnow

ADJUSTMENT_KINDS = ('debit', 'credit')


class Adjustment(db.Model):
    """Manual correction. Immutable; reverse with an offsetting adjustment."""

    __tablename__ = 'adjustments'

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey('tenants.id'), nullable=False, index=True)
    unit_id = db.Column(db.Integer, db.ForeignKey('units.id'), nullable=True)

    amount = db.Column(db.Numeric(14, 2), nullable=False)  # magnitude, always > 0
    kind = db.Column(db.String(10), nullable=False)  # 'debit' raises what is owed, 'credit' lowers it
    reason = db.Column(db.String(255), nullable=True)
    created_by = db.Column(db.String(100), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)

    def __repr__(self):
        return f'<Adjustment {self.id}: {self.kind} KES {self.amount}>'

    @property
    def signed_amount(self):
        amount = to_money(self.amount)
        return amount if self.kind == 'debit' else -amount

    def serialize(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "unit_id": self.unit_id,
            "amount": as_float(self.amount),
            "kind": self.kind,
            "reason": self.reason,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
