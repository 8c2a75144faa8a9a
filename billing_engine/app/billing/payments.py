"""Charges and refunds routed through the payment provider."""
from __future__ import annotations

import logging
from typing import Mapping, Optional, Sequence

from ...config import BillingConfig
from ..common import Clock, new_id, utc_now
from ..errors import InvalidStateError, NotFoundError, ProviderError, ValidationError
from ..events.bus import EventBus
from ..events.models import BillingEventType
from ..money.amounts import assert_amount_safe, assert_valid_amount
from ..providers.gateway import ProviderGateway
from ..storage.interfaces import CustomerRepository, ListOptions, Page, PaymentRepository
from .invoices import InvoiceService
from .models import InvoiceStatus, Payment, PaymentStatus

logger = logging.getLogger(__name__)

REFUNDABLE_STATUSES = frozenset({PaymentStatus.SUCCEEDED, PaymentStatus.PARTIALLY_REFUNDED})


class PaymentService:
    def __init__(
        self,
        repository: PaymentRepository,
        customers: CustomerRepository,
        invoices: InvoiceService,
        events: EventBus,
        *,
        config: Optional[BillingConfig] = None,
        gateway: Optional[ProviderGateway] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._repository = repository
        self._customers = customers
        self._invoices = invoices
        self._events = events
        self._config = config or BillingConfig()
        self._gateway = gateway
        self._clock = clock or utc_now

    def process(
        self,
        customer_id: str,
        amount: int,
        *,
        currency: Optional[str] = None,
        invoice_id: Optional[str] = None,
        subscription_id: Optional[str] = None,
        payment_method_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        metadata: Optional[Mapping[str, str]] = None,
    ) -> Payment:
        """Charge ``amount`` and record the outcome.

        A declined charge is returned as a failed payment; provider outages
        are recorded as failed and re-raised.
        """

        assert_valid_amount(amount)
        if amount < 1:
            raise ValidationError("amount must be positive", detail={"field": "amount"})
        assert_amount_safe(amount, operation="process_payment", max_amount=self._config.max_safe_amount)

        customer = self._customers.get(customer_id)
        if customer is None or customer.is_deleted:
            raise NotFoundError(f"Customer {customer_id} not found", entity="customer", entity_id=customer_id)

        if idempotency_key:
            existing = self._repository.get_by_idempotency_key(idempotency_key)
            if existing is not None:
                logger.info("Payment %s replayed for idempotency key %s", existing.id, idempotency_key)
                return existing

        if invoice_id is not None:
            invoice = self._invoices.get(invoice_id)
            if invoice is None:
                raise NotFoundError(f"Invoice {invoice_id} not found", entity="invoice", entity_id=invoice_id)
            if invoice.status != InvoiceStatus.OPEN:
                raise InvalidStateError(
                    f"Cannot pay an invoice in status {invoice.status.value}",
                    current_status=invoice.status.value,
                    action="process_payment",
                )
            if amount > invoice.amount_due:
                raise ValidationError(
                    f"Payment of {amount} exceeds the {invoice.amount_due} due on invoice {invoice.id}",
                    detail={"amount": amount, "amount_due": invoice.amount_due},
                )
            currency = currency or invoice.currency
            subscription_id = subscription_id or invoice.subscription_id

        if self._gateway is None:
            raise ProviderError(
                "No payment provider is configured",
                code="provider_not_configured",
                operation="payments.create",
            )
        provider_customer_id = customer.provider_customer_id(self._gateway.name)
        if not provider_customer_id:
            raise ValidationError(
                f"Customer {customer_id} has no {self._gateway.name} customer",
                detail={"customer_id": customer_id, "provider": self._gateway.name},
            )

        now = self._clock()
        payment = self._repository.create(
            Payment(
                id=new_id("pay"),
                customer_id=customer_id,
                amount=amount,
                currency=currency or self._config.default_currency,
                status=PaymentStatus.PENDING,
                invoice_id=invoice_id,
                subscription_id=subscription_id,
                payment_method_id=payment_method_id,
                idempotency_key=idempotency_key,
                metadata=dict(metadata or {}),
                livemode=self._config.livemode,
                created_at=now,
                updated_at=now,
            )
        )

        try:
            charge = self._gateway.idempotent(
                "payments.create",
                self._gateway.provider.payments.create,
                provider_customer_id,
                payment.amount,
                payment.currency,
                payment_method_id=payment_method_id,
                metadata={"billing_payment_id": payment.id},
                idempotency_key=idempotency_key,
            )
        except ProviderError as exc:
            failed = self._save(payment, status=PaymentStatus.FAILED, failure_message=exc.message)
            self._events.emit(BillingEventType.PAYMENT_FAILED, failed)
            raise

        provider_ids = {self._gateway.name: charge.id}
        if not charge.succeeded:
            failed = self._save(
                payment,
                status=PaymentStatus.FAILED,
                failure_message=charge.failure_message or charge.status,
                provider_payment_ids=provider_ids,
            )
            logger.warning(
                "Payment %s failed customer=%s amount=%s reason=%s",
                failed.id,
                customer_id,
                amount,
                failed.failure_message,
            )
            self._events.emit(BillingEventType.PAYMENT_FAILED, failed)
            return failed

        succeeded = self._save(payment, status=PaymentStatus.SUCCEEDED, provider_payment_ids=provider_ids)
        logger.info("Payment %s succeeded customer=%s amount=%s %s", succeeded.id, customer_id, amount, succeeded.currency)
        self._events.emit(BillingEventType.PAYMENT_SUCCEEDED, succeeded)
        if invoice_id is not None:
            self._invoices.apply_payment(invoice_id, amount)
        return succeeded

    def refund(
        self,
        payment_id: str,
        amount: Optional[int] = None,
        *,
        idempotency_key: Optional[str] = None,
    ) -> Payment:
        """Refund all of the remaining balance, or ``amount`` of it."""

        payment = self._get(payment_id)
        if payment.status not in REFUNDABLE_STATUSES:
            raise InvalidStateError(
                f"Cannot refund a payment in status {payment.status.value}",
                current_status=payment.status.value,
                action="refund",
            )
        refund_amount = payment.refundable_amount if amount is None else assert_valid_amount(amount)
        if refund_amount < 1 or refund_amount > payment.refundable_amount:
            raise ValidationError(
                f"Refund of {refund_amount} is outside the refundable {payment.refundable_amount}",
                detail={"amount": refund_amount, "refundable_amount": payment.refundable_amount},
            )

        if self._gateway is not None and payment.provider_payment_ids.get(self._gateway.name):
            self._gateway.idempotent(
                "payments.refund",
                self._gateway.provider.payments.refund,
                payment.provider_payment_ids[self._gateway.name],
                refund_amount,
                idempotency_key=idempotency_key,
            )

        refunded_amount = payment.refunded_amount + refund_amount
        status = PaymentStatus.REFUNDED if refunded_amount == payment.amount else PaymentStatus.PARTIALLY_REFUNDED
        updated = self._save(payment, status=status, refunded_amount=refunded_amount)
        logger.info("Payment %s refunded %s (%s)", updated.id, refund_amount, status.value)
        self._events.emit(BillingEventType.PAYMENT_REFUNDED, updated)
        return updated

    def get(self, payment_id: str) -> Optional[Payment]:
        return self._repository.get(payment_id)

    def list_by_customer(self, customer_id: str) -> Sequence[Payment]:
        return self._repository.find_by_customer_id(customer_id)

    def list(self, options: Optional[ListOptions] = None, *, customer_id: Optional[str] = None) -> Page[Payment]:
        return self._repository.list(options or ListOptions(), customer_id=customer_id)

    def _get(self, payment_id: str) -> Payment:
        payment = self._repository.get(payment_id)
        if payment is None:
            raise NotFoundError(f"Payment {payment_id} not found", entity="payment", entity_id=payment_id)
        return payment

    def _save(self, payment: Payment, **updates: object) -> Payment:
        return self._repository.update(payment.model_copy(update={**updates, "updated_at": self._clock()}))


__all__ = ["PaymentService", "REFUNDABLE_STATUSES"]
