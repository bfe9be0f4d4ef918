"""``ledger-changed`` notification, sent once a ledger write has committed."""
import logging

from blinker import Namespace
from sqlalchemy import event
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

_signals = Namespace()
ledger_changed = _signals.signal("ledger-changed")

_PENDING_KEY = "rentledger.changed_tenants"


def mark_changed(session, tenant_id):
    """Queue a notification for ``tenant_id``; sent after the session commits."""
    session.info.setdefault(_PENDING_KEY, set()).add(int(tenant_id))


def _after_commit(session):
    tenants = session.info.pop(_PENDING_KEY, None)
    for tenant_id in sorted(tenants or ()):
        logger.debug("ledger changed for tenant %s", tenant_id)
        ledger_changed.send("ledger", tenant_id=tenant_id)


def _after_rollback(session):
    session.info.pop(_PENDING_KEY, None)


def register_ledger_events():
    # Import inside create_app; listeners are process-wide so register once
    if not event.contains(Session, "after_commit", _after_commit):
        event.listen(Session, "after_commit", _after_commit)
        event.listen(Session, "after_rollback", _after_rollback)
