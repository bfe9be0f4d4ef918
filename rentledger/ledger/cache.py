"""Per-tenant FinanceSummary cache, dropped whenever the tenant's ledger changes."""
import logging
import threading

from flask import current_app

from rentledger.ledger.events import ledger_changed
from rentledger.ledger.summary import compute_finance_summary
from rentledger.models import Tenant
from rentledger.errors import NotFoundError
from rentledger.extensions import db
from rentledger.utils.periods import current_period

logger = logging.getLogger(__name__)


class SummaryCache:
    def __init__(self, app=None):
        self._entries = {}
        self._versions = {}
        self._lock = threading.Lock()
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        app.extensions["summary_cache"] = self
        # Weak by default: the subscription lives as long as the app does
        ledger_changed.connect(self._on_ledger_changed)

    def _on_ledger_changed(self, sender, tenant_id=None, **extra):
        if tenant_id is not None:
            self.invalidate(tenant_id)

    def version(self, tenant_id):
        with self._lock:
            return self._versions.get(int(tenant_id), 0)

    def invalidate(self, tenant_id):
        tenant_id = int(tenant_id)
        with self._lock:
            self._versions[tenant_id] = self._versions.get(tenant_id, 0) + 1
            self._entries.pop(tenant_id, None)
        logger.debug("summary cache invalidated for tenant %s", tenant_id)

    def clear(self):
        with self._lock:
            for tenant_id in list(self._entries):
                self._versions[tenant_id] = self._versions.get(tenant_id, 0) + 1
            self._entries.clear()

    def get(self, tenant, now=None):
        period = current_period(now).label
        with self._lock:
            version = self._versions.get(tenant.id, 0)
            cached = self._entries.get(tenant.id)
            if cached is not None and cached[0] == version and cached[1] == period:
                return cached[2]

        summary = compute_finance_summary(tenant, now)
        with self._lock:
            # A write that landed while computing makes this result stale
            if self._versions.get(tenant.id, 0) == version:
                self._entries[tenant.id] = (version, period, summary)
        return summary

    def get_for_tenant_id(self, tenant_id, now=None):
        tenant = db.session.get(Tenant, int(tenant_id))
        if tenant is None:
            raise NotFoundError(f"tenant {tenant_id} not found")
        return self.get(tenant, now)

    def get_all(self, now=None):
        tenants = db.session.query(Tenant).order_by(Tenant.last_name, Tenant.first_name, Tenant.id).all()
        return [self.get(tenant, now) for tenant in tenants]


def get_summary_cache():
    return current_app.extensions["summary_cache"]
