from . import db
from rentledger.money import as_float
from rentledger.utils.periods import utcnow


class Property(db.Model):
    __tablename__ = 'properties'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    address = db.Column(db.String(512), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    # Relationships
    units = db.relationship('Unit', backref='property', lazy=True, cascade='all, delete-orphan')

    def __repr__(self):
        return f'<Property {self.id}: {self.name}>'

    def serialize(self):
        return {
            'id': self.id,
            'name': self.name,
            'address': self.address,
            'unit_count': len(self.units),
        }


class Unit(db.Model):
    __tablename__ = 'units'

    id = db.Column(db.Integer, primary_key=True)
    property_id = db.Column(db.Integer, db.ForeignKey('properties.id'), nullable=False)
    # Doubles as the paybill account reference ("A3-04")
    unit_number = db.Column(db.String(50), nullable=False, index=True)
    rent_amount = db.Column(db.Numeric(14, 2), nullable=True)

    # Unit status
    status = db.Column(db.String(20), default='available')  # available, occupied, unavailable
    created_at = db.Column(db.DateTime, default=utcnow)

    # Relationships
    leases = db.relationship('Lease', backref='unit', lazy=True)

    __table_args__ = (db.UniqueConstraint('property_id', 'unit_number'),)

    def __repr__(self):
        return f'<Unit {self.id}: {self.unit_number} at Property {self.property_id}>'

    @property
    def active_lease(self):
        return next((lease for lease in self.leases if lease.status == 'active'), None)

    def serialize(self):
        return {
            'id': self.id,
            'property_id': self.property_id,
            'unit_number': self.unit_number,
            'rent_amount': as_float(self.rent_amount) if self.rent_amount is not None else None,
            'status': self.status,
        }
