from . import db
from rentledger.utils.periods import utcnow


class Tenant(db.Model):
    __tablename__ = 'tenants'

    id = db.Column(db.Integer, primary_key=True)

    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=True, index=True)
    phone_primary = db.Column(db.String(20), nullable=True)

    status = db.Column(db.String(20), default='active')  # active, inactive, former
    created_at = db.Column(db.DateTime, default=utcnow)

    # Relationships
    leases = db.relationship('Lease', backref='tenant', lazy='dynamic')

    def __repr__(self):
        return f'<Tenant {self.id}: {self.first_name} {self.last_name}>'

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}"

    @property
    def current_lease(self):
        """Get the current active lease for this tenant"""
        return self.leases.filter_by(status='active').order_by(db.text('start_date DESC')).first()

    @property
    def current_unit(self):
        """Get the current unit this tenant is in"""
        current_lease = self.current_lease
        return current_lease.unit if current_lease else None

    def serialize(self):
        current_unit = self.current_unit
        return {
            'id': self.id,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'full_name': self.full_name,
            'email': self.email,
            'phone_primary': self.phone_primary,
            'status': self.status,
            'current_unit_id': current_unit.id if current_unit else None,
            'current_unit_number': current_unit.unit_number if current_unit else None,
        }
