"""Feature gating utilities coordinating entitlement and limit enforcement."""
from ..errors import EntitlementRequiredError, FeatureGateError, LimitExceededError
from .context import CustomerGate
from .enforcement import enforce_limit, require_entitlement

__all__ = [
    "CustomerGate",
    "EntitlementRequiredError",
    "FeatureGateError",
    "LimitExceededError",
    "enforce_limit",
    "require_entitlement",
]
