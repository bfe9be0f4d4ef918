from rentledger.extensions import db

# Core Models
from .property import Property, Unit
from .tenant import Tenant
from .lease import Lease
from .invoice import Invoice
from .payment import Payment, PaymentAllocation
from .adjustment import Adjustment
from .payment_attempt import PaymentAttempt

__all__ = [
    "db",
    "Property",
    "Unit",
    "Tenant",
    "Lease",
    "Invoice",
    "Payment",
    "PaymentAllocation",
    "Adjustment",
    "PaymentAttempt",
]
