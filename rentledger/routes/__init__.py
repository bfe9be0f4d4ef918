from .gateways import gateways_bp
from .health import health_bp
from .ledger import ledger_bp
from .payments import payments_bp
from .tenants import tenants_bp
from .webhooks import webhooks_bp

BLUEPRINTS = (
    health_bp,
    payments_bp,
    gateways_bp,
    ledger_bp,
    tenants_bp,
    webhooks_bp,
)
