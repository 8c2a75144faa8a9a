"""Customer registration mirrored to the payment provider."""
from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

from ...config import BillingConfig
from ..common import Clock, new_id, utc_now
from ..errors import ConflictError, NotFoundError
from ..events.bus import EventBus
from ..events.models import BillingEventType
from ..providers.gateway import ProviderGateway
from ..storage.interfaces import CustomerRepository, ListOptions, Page
from .models import Customer

logger = logging.getLogger(__name__)


class CustomerService:
    def __init__(
        self,
        repository: CustomerRepository,
        events: EventBus,
        *,
        config: Optional[BillingConfig] = None,
        gateway: Optional[ProviderGateway] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._repository = repository
        self._events = events
        self._config = config or BillingConfig()
        self._gateway = gateway
        self._clock = clock or utc_now

    def create(
        self,
        external_id: str,
        email: str,
        *,
        name: Optional[str] = None,
        metadata: Optional[Mapping[str, str]] = None,
    ) -> Customer:
        """Register a customer; ``external_id`` must be unused."""

        if self._repository.get_by_external_id(external_id) is not None:
            raise ConflictError(
                f"Customer with external id {external_id} already exists",
                detail={"external_id": external_id},
            )

        now = self._clock()
        customer = Customer(
            id=new_id("cus"),
            external_id=external_id,
            email=email,
            name=name,
            metadata=dict(metadata or {}),
            livemode=self._config.livemode,
            created_at=now,
            updated_at=now,
        )
        if self._gateway is not None:
            provider_customer_id = self._gateway.call(
                "customers.create", self._gateway.provider.customers.create, customer
            )
            customer = customer.model_copy(update={"provider_customer_ids": {self._gateway.name: provider_customer_id}})

        stored = self._repository.create(customer)
        logger.info("Customer %s created external_id=%s", stored.id, stored.external_id)
        self._events.emit(BillingEventType.CUSTOMER_CREATED, stored)
        return stored

    def get(self, customer_id: str) -> Optional[Customer]:
        customer = self._repository.get(customer_id)
        if customer is None or customer.is_deleted:
            return None
        return customer

    def get_by_external_id(self, external_id: str) -> Optional[Customer]:
        return self._repository.get_by_external_id(external_id)

    def require(self, customer_id: str) -> Customer:
        customer = self.get(customer_id)
        if customer is None:
            raise NotFoundError(f"Customer {customer_id} not found", entity="customer", entity_id=customer_id)
        return customer

    def update(
        self,
        customer_id: str,
        *,
        email: Optional[str] = None,
        name: Optional[str] = None,
        metadata: Optional[Mapping[str, str]] = None,
    ) -> Customer:
        customer = self.require(customer_id)
        updates: Dict[str, Any] = {}
        if email is not None:
            updates["email"] = email
        if name is not None:
            updates["name"] = name
        if metadata is not None:
            updates["metadata"] = {**customer.metadata, **metadata}
        if not updates:
            return customer

        provider_customer_id = self._provider_customer_id(customer)
        if provider_customer_id:
            self._gateway.call(
                "customers.update",
                self._gateway.provider.customers.update,
                provider_customer_id,
                email=email,
                name=name,
                metadata=updates.get("metadata"),
            )

        updates["updated_at"] = self._clock()
        # model_validate re-runs email validation on the new address.
        updated = Customer.model_validate({**customer.model_dump(), **updates})
        stored = self._repository.update(updated)
        logger.info("Customer %s updated fields=%s", stored.id, sorted(key for key in updates if key != "updated_at"))
        self._events.emit(BillingEventType.CUSTOMER_UPDATED, stored)
        return stored

    def delete(self, customer_id: str) -> Customer:
        customer = self.require(customer_id)
        provider_customer_id = self._provider_customer_id(customer)
        if provider_customer_id:
            self._gateway.call("customers.delete", self._gateway.provider.customers.delete, provider_customer_id)

        deleted = self._repository.soft_delete(customer.id, deleted_at=self._clock())
        if deleted is None:
            raise NotFoundError(f"Customer {customer_id} not found", entity="customer", entity_id=customer_id)
        logger.info("Customer %s deleted", deleted.id)
        self._events.emit(BillingEventType.CUSTOMER_DELETED, deleted)
        return deleted

    def list(self, options: Optional[ListOptions] = None) -> Page[Customer]:
        return self._repository.list(options or ListOptions())

    def sync_user(
        self,
        external_id: str,
        email: str,
        *,
        name: Optional[str] = None,
        metadata: Optional[Mapping[str, str]] = None,
    ) -> Customer:
        """Create the customer for an application user, or refresh its details."""

        existing = self._repository.get_by_external_id(external_id)
        if existing is None:
            return self.create(external_id, email, name=name, metadata=metadata)
        changed_email = email if email.lower() != str(existing.email).lower() else None
        changed_name = name if name is not None and name != existing.name else None
        return self.update(existing.id, email=changed_email, name=changed_name, metadata=metadata)

    def _provider_customer_id(self, customer: Customer) -> Optional[str]:
        if self._gateway is None:
            return None
        return customer.provider_customer_id(self._gateway.name)


__all__ = ["CustomerService"]
