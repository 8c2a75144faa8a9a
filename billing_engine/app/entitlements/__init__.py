"""Per-customer feature flags with expiration and provenance."""

from .models import EntitlementDefinition, EntitlementGrant, GrantSource, later_expiration

__all__ = ["EntitlementDefinition", "EntitlementGrant", "GrantSource", "later_expiration"]
