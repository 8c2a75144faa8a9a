"""Grant, revoke and check customer entitlements."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional, Sequence

from ..common import Clock, utc_now
from ..errors import NotFoundError, ValidationError
from ..events.bus import EventBus
from ..events.models import BillingEventType
from ..storage.interfaces import EntitlementRepository
from .models import EntitlementDefinition, EntitlementGrant, GrantSource, later_expiration

logger = logging.getLogger(__name__)


def merge_grant(
    existing: Optional[EntitlementGrant],
    *,
    customer_id: str,
    key: str,
    source: GrantSource,
    source_id: Optional[str],
    expires_at: Optional[datetime],
    now: datetime,
) -> EntitlementGrant:
    """Re-granting never shortens a benefit; provenance follows the latest caller."""

    if existing is None:
        return EntitlementGrant(
            customer_id=customer_id,
            entitlement_key=key,
            source=source,
            source_id=source_id,
            expires_at=expires_at,
            granted_at=now,
            updated_at=now,
        )
    return existing.model_copy(
        update={
            "source": source,
            "source_id": source_id,
            "expires_at": later_expiration(existing.expires_at, expires_at),
            "updated_at": now,
        }
    )


class EntitlementService:
    """Coordinates entitlement grants and announces changes on the event bus."""

    def __init__(
        self,
        repository: EntitlementRepository,
        events: EventBus,
        *,
        clock: Optional[Clock] = None,
    ) -> None:
        self._repository = repository
        self._events = events
        self._clock = clock or utc_now

    def define(self, key: str, name: str, description: Optional[str] = None) -> EntitlementDefinition:
        if not key:
            raise ValidationError("entitlement key must not be empty", detail={"field": "key"})
        return self._repository.save_definition(EntitlementDefinition(key=key, name=name, description=description))

    def list_definitions(self) -> Sequence[EntitlementDefinition]:
        return self._repository.list_definitions()

    def grant(
        self,
        customer_id: str,
        key: str,
        *,
        source: GrantSource = GrantSource.MANUAL,
        source_id: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> EntitlementGrant:
        """Create the grant or update it in place, keeping the later expiry."""

        if self._repository.get_definition(key) is None:
            raise NotFoundError(f"Unknown entitlement {key!r}", entity="entitlement", entity_id=key)

        existing = self._repository.get_grant(customer_id, key)
        grant = merge_grant(
            existing,
            customer_id=customer_id,
            key=key,
            source=source,
            source_id=source_id,
            expires_at=expires_at,
            now=self._clock(),
        )
        stored = self._repository.save_grant(grant)
        logger.info(
            "Entitlement %s granted to customer=%s source=%s source_id=%s expires_at=%s",
            key,
            customer_id,
            stored.source.value,
            stored.source_id,
            stored.expires_at,
        )
        self._events.emit(BillingEventType.ENTITLEMENT_GRANTED, stored)
        return stored

    def revoke(self, customer_id: str, key: str) -> bool:
        removed = self._repository.delete_grant(customer_id, key)
        if removed is None:
            return False
        logger.info("Entitlement %s revoked from customer=%s", key, customer_id)
        self._events.emit(BillingEventType.ENTITLEMENT_REVOKED, removed)
        return True

    def revoke_by_source(self, source: GrantSource, source_id: Optional[str]) -> int:
        """Remove every grant with this provenance and return how many went."""

        removed = self._repository.delete_by_source(source, source_id)
        for grant in removed:
            self._events.emit(BillingEventType.ENTITLEMENT_REVOKED, grant)
        if removed:
            logger.info(
                "Revoked %s entitlement grants for source=%s source_id=%s",
                len(removed),
                source.value,
                source_id,
            )
        return len(removed)

    def check(self, customer_id: str, key: str) -> bool:
        grant = self._repository.get_grant(customer_id, key)
        return grant is not None and grant.is_active(self._clock())

    def get(self, customer_id: str, key: str) -> Optional[EntitlementGrant]:
        return self._repository.get_grant(customer_id, key)

    def list_for_customer(self, customer_id: str, *, include_expired: bool = False) -> Sequence[EntitlementGrant]:
        grants = self._repository.list_grants(customer_id)
        if include_expired:
            return grants
        now = self._clock()
        return [grant for grant in grants if grant.is_active(now)]

    def find_expiring_soon(self, within: timedelta) -> Sequence[EntitlementGrant]:
        now = self._clock()
        return self._repository.find_expiring_between(now, now + within)


__all__ = ["EntitlementService", "merge_grant"]
