"""Subscription lifecycle engine: creation, plan changes and status transitions."""
from __future__ import annotations

import logging
from contextlib import contextmanager, nullcontext
from datetime import datetime, timedelta
from typing import Any, Callable, ContextManager, Dict, Iterator, Mapping, Optional, Sequence, Union

from ...config import BillingConfig
from ..billing.catalog import PlanCatalog
from ..billing.models import Customer, Plan, Price
from ..billing.periods import add_interval
from ..common import Clock, new_id, utc_now
from ..entitlements.models import GrantSource
from ..entitlements.service import EntitlementService
from ..errors import ConflictError, InvalidStateError, NotFoundError, ProviderError, ValidationError
from ..events.bus import EventBus
from ..events.models import BillingEventType
from ..limits.service import LimitService
from ..money.amounts import safe_multiply
from ..money.proration import ProrationResult, calculate_plan_change_proration
from ..providers.gateway import ProviderGateway
from ..storage.interfaces import CustomerRepository, ListOptions, Page, SubscriptionRepository
from .models import (
    ADD_ON_METADATA_KEY,
    PeriodStartedPayload,
    PlanChangeResult,
    PlanChangeTiming,
    ProrationBehavior,
    Subscription,
    SubscriptionStatus,
)
from .transitions import assert_transition

logger = logging.getLogger(__name__)

# Returns True when the charge for ``subscription`` succeeded.
PaymentCollector = Callable[[Subscription, str], bool]
ProrationInvoicer = Callable[[Subscription, ProrationResult], Any]


class SubscriptionLifecycleEngine:
    """State machine governing subscription status and billing periods.

    Provider-side effects happen before the local write, so a provider
    failure leaves the stored subscription untouched.
    """

    def __init__(
        self,
        subscriptions: SubscriptionRepository,
        customers: CustomerRepository,
        catalog: PlanCatalog,
        entitlements: EntitlementService,
        limits: LimitService,
        events: EventBus,
        *,
        config: Optional[BillingConfig] = None,
        gateway: Optional[ProviderGateway] = None,
        clock: Optional[Clock] = None,
        transaction: Optional[Callable[[], ContextManager[Any]]] = None,
    ) -> None:
        self._subscriptions = subscriptions
        self._customers = customers
        self._catalog = catalog
        self._entitlements = entitlements
        self._limits = limits
        self._events = events
        self._config = config or BillingConfig()
        self._gateway = gateway
        self._clock = clock or utc_now
        self._transaction = transaction or nullcontext
        self.payment_collector: Optional[PaymentCollector] = None
        self.proration_invoicer: Optional[ProrationInvoicer] = None

    # ------------------------------------------------------------------ reads

    def get(self, subscription_id: str) -> Optional[Subscription]:
        return self._subscriptions.get(subscription_id)

    def get_by_customer_id(self, customer_id: str) -> Sequence[Subscription]:
        return self._subscriptions.find_by_customer_id(customer_id)

    def get_active_by_customer_id(self, customer_id: str) -> Sequence[Subscription]:
        return self._subscriptions.find_active_by_customer_id(customer_id)

    def list(self, options: Optional[ListOptions] = None, *, customer_id: Optional[str] = None) -> Page[Subscription]:
        return self._subscriptions.list(options or ListOptions(), customer_id=customer_id)

    def find_needing_retry(self, now: Optional[datetime] = None) -> Sequence[Subscription]:
        return self._subscriptions.find_needing_retry(now or self._clock())

    def find_trials_ending(self, now: Optional[datetime] = None) -> Sequence[Subscription]:
        return self._subscriptions.find_trials_ending(now or self._clock())

    def find_due_for_rollover(self, now: Optional[datetime] = None) -> Sequence[Subscription]:
        return self._subscriptions.find_due_for_rollover(now or self._clock())

    # ------------------------------------------------------------- mutations

    def create(
        self,
        customer_id: str,
        plan_id: str,
        price_id: Optional[str] = None,
        *,
        quantity: int = 1,
        trial_days: Optional[int] = None,
        promo_code_id: Optional[str] = None,
        metadata: Optional[Mapping[str, str]] = None,
        add_on: bool = False,
    ) -> Subscription:
        if quantity < 1:
            raise ValidationError("quantity must be >= 1", detail={"field": "quantity"})
        if trial_days is not None and trial_days < 0:
            raise ValidationError("trial_days must be >= 0", detail={"field": "trial_days"})

        customer = self._require_customer(customer_id)
        plan, price = self._catalog.resolve_price(plan_id, price_id)
        self._assert_can_subscribe(customer_id, plan, add_on=add_on)
        if promo_code_id is not None:
            validation = self._catalog.validate_promo_code(promo_code_id, plan_id=plan.id)
            if not validation.valid:
                raise ValidationError(
                    f"Promo code {promo_code_id} cannot be applied",
                    detail={"promo_code_id": promo_code_id, "reason": validation.reason},
                )

        now = self._clock()
        days = price.trial_days if trial_days is None else trial_days
        trialing = bool(days)
        tags: Dict[str, str] = dict(metadata or {})
        if add_on:
            tags[ADD_ON_METADATA_KEY] = "true"

        subscription = Subscription(
            id=new_id("sub"),
            customer_id=customer.id,
            plan_id=plan.id,
            price_id=price.id,
            quantity=quantity,
            status=SubscriptionStatus.TRIALING if trialing else SubscriptionStatus.INCOMPLETE,
            billing_interval=price.billing_interval,
            interval_count=price.interval_count,
            current_period_start=now,
            current_period_end=add_interval(now, price.billing_interval, price.interval_count),
            trial_start=now if trialing else None,
            trial_end=now + timedelta(days=days) if trialing else None,
            promo_code_id=promo_code_id,
            metadata=tags,
            livemode=self._config.livemode,
            created_at=now,
            updated_at=now,
        )
        subscription = self._create_at_provider(customer, price, subscription, trial_days=days)

        with self._atomic():
            if promo_code_id is not None:
                self._catalog.redeem_promo_code(promo_code_id, plan_id=plan.id)
            stored = self._subscriptions.create(subscription)
            if trialing:
                self._grant_plan_benefits(stored, plan)

        logger.info(
            "Subscription %s created customer=%s plan=%s price=%s status=%s",
            stored.id,
            stored.customer_id,
            stored.plan_id,
            stored.price_id,
            stored.status.value,
        )
        self._events.emit(BillingEventType.SUBSCRIPTION_CREATED, stored)
        return stored

    def update(
        self,
        subscription_id: str,
        *,
        quantity: Optional[int] = None,
        metadata: Optional[Mapping[str, str]] = None,
    ) -> Subscription:
        subscription = self._get(subscription_id)
        if subscription.is_terminal:
            raise InvalidStateError(
                f"Cannot update a subscription in status {subscription.status.value}",
                current_status=subscription.status.value,
                action="update",
            )
        updates: Dict[str, Any] = {}
        if quantity is not None:
            if quantity < 1:
                raise ValidationError("quantity must be >= 1", detail={"field": "quantity"})
            self._call_provider(subscription, "update", quantity=quantity)
            updates["quantity"] = quantity
        if metadata is not None:
            updates["metadata"] = {**subscription.metadata, **metadata}
        updated = self._save(subscription, **updates)
        self._events.emit(BillingEventType.SUBSCRIPTION_UPDATED, updated)
        return updated

    def activate(self, subscription_id: str) -> Subscription:
        """Record a successful first or recovered payment."""

        subscription = self._get(subscription_id)
        assert_transition(subscription.status, SubscriptionStatus.ACTIVE, action="activate")
        if not subscription.is_active:
            self._assert_sole_primary(subscription)

        now = self._clock()
        updates: Dict[str, Any] = {
            "status": SubscriptionStatus.ACTIVE,
            "retry_count": 0,
            "next_retry_at": None,
            "grace_period_ends_at": None,
        }
        if subscription.status in {SubscriptionStatus.INCOMPLETE, SubscriptionStatus.TRIALING}:
            updates["current_period_start"] = now
            updates["current_period_end"] = add_interval(now, subscription.billing_interval, subscription.interval_count)
        if subscription.status == SubscriptionStatus.TRIALING and subscription.trial_end and subscription.trial_end > now:
            updates["trial_end"] = now

        plan = self._require_plan(subscription.plan_id)
        with self._atomic():
            updated = self._save(subscription, **updates)
            self._grant_plan_benefits(updated, plan)

        logger.info("Subscription %s activated from %s", updated.id, subscription.status.value)
        self._events.emit(BillingEventType.SUBSCRIPTION_UPDATED, updated)
        # A recovered renewal pays for the period after the elapsed one.
        recovered = subscription.status in {SubscriptionStatus.PAST_DUE, SubscriptionStatus.UNPAID}
        if recovered and updated.current_period_end <= now:
            return self.rollover_period(updated.id)
        return updated

    def change_plan(
        self,
        subscription_id: str,
        new_price_id: str,
        proration_behavior: Union[ProrationBehavior, str] = ProrationBehavior.CREATE_PRORATIONS,
        *,
        apply_at: Union[PlanChangeTiming, str] = PlanChangeTiming.IMMEDIATELY,
    ) -> PlanChangeResult:
        behavior = ProrationBehavior(proration_behavior)
        timing = PlanChangeTiming(apply_at)
        subscription = self._get(subscription_id)
        if not subscription.is_active:
            raise InvalidStateError(
                f"Cannot change plan of a subscription in status {subscription.status.value}",
                current_status=subscription.status.value,
                action="change_plan",
            )
        if subscription.cancel_at is not None:
            raise InvalidStateError(
                "Cannot change plan of a subscription scheduled for cancellation",
                current_status=subscription.status.value,
                action="change_plan",
            )

        new_plan, new_price = self._catalog.find_plan_for_price(new_price_id)
        if new_price.id == subscription.price_id:
            raise ValidationError(
                f"Subscription {subscription.id} is already on price {new_price.id}",
                detail={"price_id": new_price.id},
            )
        current_price = self._catalog.get_price(subscription.price_id)
        if current_price is not None and current_price.currency != new_price.currency:
            raise ValidationError(
                "Plan changes cannot switch currency",
                detail={"from": current_price.currency, "to": new_price.currency},
            )

        if timing == PlanChangeTiming.PERIOD_END:
            updated = self._save(subscription, scheduled_price_id=new_price.id)
            logger.info("Subscription %s plan change to %s scheduled for period end", updated.id, new_price.id)
            self._events.emit(BillingEventType.SUBSCRIPTION_UPDATED, updated)
            return PlanChangeResult(subscription=updated, scheduled=True)

        now = self._clock()
        proration: Optional[ProrationResult] = None
        if behavior != ProrationBehavior.NONE and subscription.status == SubscriptionStatus.ACTIVE:
            proration = calculate_plan_change_proration(
                current_unit_amount=current_price.unit_amount if current_price else 0,
                new_unit_amount=new_price.unit_amount,
                quantity=subscription.quantity,
                period_start=subscription.current_period_start,
                period_end=subscription.current_period_end,
                now=now,
                max_amount=self._config.max_safe_amount,
            )

        updated = self._swap_price(subscription, new_plan, new_price, proration_behavior=behavior.value)
        if (
            proration is not None
            and behavior == ProrationBehavior.ALWAYS_INVOICE
            and proration.charge_amount > 0
            and self.proration_invoicer is not None
        ):
            self.proration_invoicer(updated, proration)

        logger.info(
            "Subscription %s changed plan %s -> %s proration=%s",
            updated.id,
            subscription.price_id,
            updated.price_id,
            proration.to_dict() if proration else None,
        )
        self._events.emit(BillingEventType.SUBSCRIPTION_UPDATED, updated)
        return PlanChangeResult(subscription=updated, proration=proration)

    def cancel(self, subscription_id: str, *, cancel_at_period_end: bool = False) -> Subscription:
        subscription = self._get(subscription_id)
        if subscription.is_terminal:
            raise InvalidStateError(
                f"Subscription {subscription.id} is already {subscription.status.value}",
                current_status=subscription.status.value,
                action="cancel",
            )

        if cancel_at_period_end:
            if subscription.status not in {
                SubscriptionStatus.ACTIVE,
                SubscriptionStatus.TRIALING,
                SubscriptionStatus.PAST_DUE,
            }:
                raise InvalidStateError(
                    f"Cannot schedule cancellation from status {subscription.status.value}",
                    current_status=subscription.status.value,
                    action="cancel_at_period_end",
                )
            self._call_provider(subscription, "cancel", cancel_at_period_end=True)
            updated = self._save(subscription, cancel_at=subscription.current_period_end)
            logger.info("Subscription %s scheduled to cancel at %s", updated.id, updated.cancel_at)
            self._events.emit(BillingEventType.SUBSCRIPTION_UPDATED, updated)
            return updated

        return self._terminate(subscription, action="cancel")

    def pause(self, subscription_id: str) -> Subscription:
        subscription = self._get(subscription_id)
        assert_transition(subscription.status, SubscriptionStatus.PAUSED, action="pause")
        if subscription.cancel_at is not None:
            raise InvalidStateError(
                f"Cannot pause subscription {subscription.id} while its cancellation is scheduled",
                current_status=subscription.status.value,
                action="pause",
            )
        self._call_provider(subscription, "pause")
        updated = self._save(subscription, status=SubscriptionStatus.PAUSED, paused_at=self._clock())
        logger.info("Subscription %s paused", updated.id)
        self._events.emit(BillingEventType.SUBSCRIPTION_PAUSED, updated)
        return updated

    def resume(self, subscription_id: str) -> Subscription:
        subscription = self._get(subscription_id)
        if subscription.status != SubscriptionStatus.PAUSED:
            raise InvalidStateError(
                f"Cannot resume a subscription in status {subscription.status.value}",
                current_status=subscription.status.value,
                action="resume",
            )
        self._assert_sole_primary(subscription)
        self._call_provider(subscription, "resume")
        now = self._clock()
        updates: Dict[str, Any] = {"status": SubscriptionStatus.ACTIVE, "paused_at": None}
        if subscription.current_period_end <= now:
            updates["current_period_start"] = now
            updates["current_period_end"] = add_interval(now, subscription.billing_interval, subscription.interval_count)
        updated = self._save(subscription, **updates)
        logger.info("Subscription %s resumed", updated.id)
        self._events.emit(BillingEventType.SUBSCRIPTION_RESUMED, updated)
        return updated

    def end_trial(self, subscription_id: str) -> Subscription:
        """Convert a trial: paid becomes active, unpaid becomes past due."""

        subscription = self._get(subscription_id)
        if subscription.status != SubscriptionStatus.TRIALING:
            raise InvalidStateError(
                f"Cannot end the trial of a subscription in status {subscription.status.value}",
                current_status=subscription.status.value,
                action="end_trial",
            )

        paid = self.payment_collector is not None and self.payment_collector(subscription, "trial_conversion")
        if paid:
            updated = self.activate(subscription.id)
        else:
            logger.warning("Trial conversion payment missing for subscription %s", subscription.id)
            updated = self._enter_past_due(subscription)
        self._events.emit(BillingEventType.SUBSCRIPTION_TRIAL_ENDED, updated)
        return updated

    def mark_past_due(self, subscription_id: str) -> Subscription:
        """Record a failed renewal charge and start the dunning schedule."""

        subscription = self._get(subscription_id)
        assert_transition(subscription.status, SubscriptionStatus.PAST_DUE, action="mark_past_due")
        return self._enter_past_due(subscription)

    def retry_past_due(self, subscription_id: str, max_retries: Optional[int] = None) -> Subscription:
        """Count one more failed retry and schedule the next or give up."""

        subscription = self._get(subscription_id)
        if subscription.status != SubscriptionStatus.PAST_DUE:
            raise InvalidStateError(
                f"Cannot retry a subscription in status {subscription.status.value}",
                current_status=subscription.status.value,
                action="retry_past_due",
            )

        policy = self._config.retry_policy
        limit = policy.max_retries if max_retries is None else max_retries
        retry_count = subscription.retry_count + 1
        now = self._clock()

        if retry_count < limit:
            updated = self._save(
                subscription,
                retry_count=retry_count,
                next_retry_at=now + timedelta(days=policy.retry_interval_days),
            )
            logger.info(
                "Subscription %s retry %s/%s scheduled for %s",
                updated.id,
                retry_count,
                limit,
                updated.next_retry_at,
            )
            self._events.emit(BillingEventType.SUBSCRIPTION_RETRY_SCHEDULED, updated)
            return updated

        logger.warning("Subscription %s exhausted %s payment retries", subscription.id, retry_count)
        exhausted = SubscriptionStatus(policy.exhausted_status)
        if exhausted == SubscriptionStatus.CANCELED:
            failed = self._save(subscription, retry_count=retry_count, next_retry_at=None)
            self._events.emit(BillingEventType.SUBSCRIPTION_RETRY_FAILED, failed)
            return self._terminate(failed, action="retry_past_due")

        assert_transition(subscription.status, exhausted, action="retry_past_due")
        with self._atomic():
            updated = self._save(subscription, status=exhausted, retry_count=retry_count, next_retry_at=None)
            self._entitlements.revoke_by_source(GrantSource.SUBSCRIPTION, updated.id)
        self._events.emit(BillingEventType.SUBSCRIPTION_RETRY_FAILED, updated)
        self._events.emit(BillingEventType.SUBSCRIPTION_UPDATED, updated)
        return updated

    def rollover_period(self, subscription_id: str) -> Subscription:
        """Start the next billing period, or cancel when cancellation is scheduled."""

        subscription = self._get(subscription_id)
        if subscription.cancel_at is not None:
            logger.info("Subscription %s reached scheduled cancellation at rollover", subscription.id)
            return self._terminate(subscription, action="rollover")
        if subscription.status != SubscriptionStatus.ACTIVE:
            raise InvalidStateError(
                f"Cannot roll over a subscription in status {subscription.status.value}",
                current_status=subscription.status.value,
                action="rollover",
            )

        if subscription.scheduled_price_id is not None:
            new_plan, new_price = self._catalog.find_plan_for_price(subscription.scheduled_price_id)
            subscription = self._swap_price(subscription, new_plan, new_price, proration_behavior=ProrationBehavior.NONE.value)

        plan = self._require_plan(subscription.plan_id)
        period_start = subscription.current_period_end
        period_end = add_interval(period_start, subscription.billing_interval, subscription.interval_count)
        with self._atomic():
            updated = self._save(subscription, current_period_start=period_start, current_period_end=period_end)
            self._limits.reset_for_source(GrantSource.SUBSCRIPTION, updated.id, ceilings=plan.limits)

        logger.info("Subscription %s rolled over to %s - %s", updated.id, period_start, period_end)
        self._events.emit(
            BillingEventType.BILLING_PERIOD_STARTED,
            PeriodStartedPayload(
                subscription=updated,
                period_start=period_start,
                period_end=period_end,
                previous_period_start=subscription.current_period_start,
                previous_period_end=subscription.current_period_end,
            ),
        )
        return updated

    # --------------------------------------------------------------- helpers

    def renewal_amount(self, subscription: Subscription) -> int:
        price = self._catalog.get_price(subscription.price_id)
        if price is None:
            raise NotFoundError(f"Price {subscription.price_id} not found", entity="price", entity_id=subscription.price_id)
        return safe_multiply(price.unit_amount, subscription.quantity, max_amount=self._config.max_safe_amount)

    def _get(self, subscription_id: str) -> Subscription:
        subscription = self._subscriptions.get(subscription_id)
        if subscription is None:
            raise NotFoundError(
                f"Subscription {subscription_id} not found",
                entity="subscription",
                entity_id=subscription_id,
            )
        return subscription

    def _require_customer(self, customer_id: str) -> Customer:
        customer = self._customers.get(customer_id)
        if customer is None or customer.is_deleted:
            raise NotFoundError(f"Customer {customer_id} not found", entity="customer", entity_id=customer_id)
        return customer

    def _require_plan(self, plan_id: str) -> Plan:
        plan = self._catalog.get_plan(plan_id)
        if plan is None:
            raise NotFoundError(f"Plan {plan_id} not found", entity="plan", entity_id=plan_id)
        return plan

    def _assert_can_subscribe(self, customer_id: str, plan: Plan, *, add_on: bool) -> None:
        active = self._subscriptions.find_active_by_customer_id(customer_id)
        if add_on:
            if any(item.is_add_on and item.plan_id == plan.id for item in active):
                raise ConflictError(
                    f"Customer {customer_id} already has an active {plan.id} add-on",
                    detail={"customer_id": customer_id, "plan_id": plan.id},
                )
            return
        if any(not item.is_add_on for item in active):
            raise ValidationError(
                f"Customer {customer_id} already holds an active primary subscription",
                detail={"customer_id": customer_id},
            )

    def _assert_sole_primary(self, subscription: Subscription) -> None:
        if subscription.is_add_on:
            return
        others = [
            item.id
            for item in self._subscriptions.find_active_by_customer_id(subscription.customer_id)
            if item.id != subscription.id and not item.is_add_on
        ]
        if others:
            raise ConflictError(
                f"Customer {subscription.customer_id} already holds an active primary subscription {others[0]}",
                detail={"customer_id": subscription.customer_id, "subscription_id": others[0]},
            )

    @contextmanager
    def _atomic(self) -> Iterator[None]:
        # Events raised inside the block reach subscribers only after commit.
        with self._events.deferred(), self._transaction():
            yield

    def _save(self, subscription: Subscription, **updates: Any) -> Subscription:
        updated = subscription.model_copy(update={**updates, "updated_at": self._clock()})
        return self._subscriptions.update(updated)

    def _grant_plan_benefits(self, subscription: Subscription, plan: Plan) -> None:
        for key in plan.entitlements:
            self._entitlements.grant(
                subscription.customer_id,
                key,
                source=GrantSource.SUBSCRIPTION,
                source_id=subscription.id,
            )
        if plan.limits:
            self._limits.apply_plan_limits(subscription.customer_id, plan.limits, source_id=subscription.id)

    def _swap_price(
        self,
        subscription: Subscription,
        new_plan: Plan,
        new_price: Price,
        *,
        proration_behavior: str,
    ) -> Subscription:
        if self._gateway is not None and subscription.provider_subscription_id(self._gateway.name):
            provider_price_id = new_price.provider_price_ids.get(self._gateway.name)
            if not provider_price_id:
                raise ProviderError(
                    f"Price {new_price.id} is not registered with {self._gateway.name}",
                    code="provider_price_not_linked",
                    provider=self._gateway.name,
                    operation="subscriptions.update",
                )
            self._call_provider(
                subscription,
                "update",
                provider_price_id=provider_price_id,
                proration_behavior=proration_behavior,
            )

        with self._atomic():
            updated = self._save(
                subscription,
                plan_id=new_plan.id,
                price_id=new_price.id,
                billing_interval=new_price.billing_interval,
                interval_count=new_price.interval_count,
                scheduled_price_id=None,
                metadata={**subscription.metadata, "previous_price_id": subscription.price_id},
            )
            if new_plan.id != subscription.plan_id:
                self._entitlements.revoke_by_source(GrantSource.SUBSCRIPTION, updated.id)
            self._grant_plan_benefits(updated, new_plan)
        return updated

    def _enter_past_due(self, subscription: Subscription) -> Subscription:
        now = self._clock()
        policy = self._config.retry_policy
        updated = self._save(
            subscription,
            status=SubscriptionStatus.PAST_DUE,
            retry_count=0,
            next_retry_at=now + timedelta(days=policy.retry_interval_days),
            grace_period_ends_at=now + timedelta(days=self._config.grace_period_days),
        )
        logger.warning(
            "Subscription %s is past due; first retry at %s, grace period ends %s",
            updated.id,
            updated.next_retry_at,
            updated.grace_period_ends_at,
        )
        self._events.emit(BillingEventType.SUBSCRIPTION_PAST_DUE, updated)
        return updated

    def _terminate(self, subscription: Subscription, *, action: str) -> Subscription:
        target = (
            SubscriptionStatus.INCOMPLETE_EXPIRED
            if subscription.status == SubscriptionStatus.INCOMPLETE
            else SubscriptionStatus.CANCELED
        )
        assert_transition(subscription.status, target, action=action)
        self._call_provider(subscription, "cancel", cancel_at_period_end=False)
        with self._atomic():
            updated = self._save(
                subscription,
                status=target,
                canceled_at=self._clock(),
                next_retry_at=None,
            )
            revoked = self._entitlements.revoke_by_source(GrantSource.SUBSCRIPTION, updated.id)
        logger.info(
            "Subscription %s %s via %s; revoked %s entitlements",
            updated.id,
            target.value,
            action,
            revoked,
        )
        self._events.emit(BillingEventType.SUBSCRIPTION_CANCELED, updated)
        return updated

    def _create_at_provider(
        self,
        customer: Customer,
        price: Price,
        subscription: Subscription,
        *,
        trial_days: Optional[int],
    ) -> Subscription:
        if self._gateway is None:
            return subscription
        name = self._gateway.name
        provider_customer_id = customer.provider_customer_id(name)
        if not provider_customer_id:
            raise ProviderError(
                f"Customer {customer.id} is not linked to {name}",
                code="provider_customer_not_linked",
                provider=name,
                operation="subscriptions.create",
            )
        provider_price_id = price.provider_price_ids.get(name)
        if not provider_price_id:
            raise ProviderError(
                f"Price {price.id} is not registered with {name}",
                code="provider_price_not_linked",
                provider=name,
                operation="subscriptions.create",
            )
        created = self._gateway.idempotent(
            "subscriptions.create",
            self._gateway.provider.subscriptions.create,
            provider_customer_id,
            provider_price_id,
            quantity=subscription.quantity,
            trial_days=trial_days or None,
            metadata={"billing_subscription_id": subscription.id},
            idempotency_key=f"{subscription.id}:create",
        )
        return subscription.model_copy(update={"provider_subscription_ids": {name: created.id}})

    def _call_provider(self, subscription: Subscription, method: str, **kwargs: Any) -> None:
        if self._gateway is None:
            return
        provider_subscription_id = subscription.provider_subscription_id(self._gateway.name)
        if not provider_subscription_id:
            return
        adapter = self._gateway.provider.subscriptions
        self._gateway.call(f"subscriptions.{method}", getattr(adapter, method), provider_subscription_id, **kwargs)


__all__ = ["PaymentCollector", "ProrationInvoicer", "SubscriptionLifecycleEngine"]
