from flask import current_app

from rentledger.errors import UnknownProviderError

from .base import (
    InitiateResult,
    PaymentGateway,
    PaymentRequest,
    StatusResult,
    normalize_msisdn,
)
from .kcb import KcbSandboxGateway
from .manual import ManualGateway
from .mpesa import MpesaGateway

# Provider name -> factory taking the app config
GATEWAY_FACTORIES = {
    MpesaGateway.name: MpesaGateway.from_config,
    KcbSandboxGateway.name: KcbSandboxGateway.from_config,
    ManualGateway.name: ManualGateway.from_config,
}


def get_gateway(name, app=None) -> PaymentGateway:
    """Return the app's gateway for ``name``, building it on first use."""
    app = app or current_app._get_current_object()
    gateways = app.extensions.setdefault("payment_gateways", {})
    if name not in gateways:
        factory = GATEWAY_FACTORIES.get(name)
        if factory is None:
            raise UnknownProviderError(f"unknown payment provider {name!r}")
        gateways[name] = factory(app.config)
    return gateways[name]


__all__ = [
    "GATEWAY_FACTORIES",
    "InitiateResult",
    "KcbSandboxGateway",
    "ManualGateway",
    "MpesaGateway",
    "PaymentGateway",
    "PaymentRequest",
    "StatusResult",
    "get_gateway",
    "normalize_msisdn",
]
