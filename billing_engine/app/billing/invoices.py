"""Invoice assembly and settlement."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Mapping, Optional, Sequence, Union

from ...config import BillingConfig
from ..common import Clock, new_id, utc_now
from ..errors import InvalidStateError, NotFoundError, ValidationError
from ..events.bus import EventBus
from ..events.models import BillingEventType
from ..money.amounts import assert_valid_amount, calculate_invoice_total, safe_add, safe_multiply
from ..storage.interfaces import CustomerRepository, InvoiceRepository, ListOptions, Page
from .catalog import PlanCatalog, promo_discount
from .models import Invoice, InvoiceLine, InvoiceStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LineItem:
    """Requested invoice line; the amount is derived from unit price and quantity."""

    description: str
    unit_amount: int
    quantity: int = 1
    price_id: Optional[str] = None


LineInput = Union[LineItem, Mapping[str, object]]


def _as_line_item(line: LineInput) -> LineItem:
    if isinstance(line, LineItem):
        return line
    return LineItem(
        description=str(line["description"]),
        unit_amount=line["unit_amount"],  # type: ignore[arg-type]
        quantity=line.get("quantity", 1),  # type: ignore[arg-type]
        price_id=line.get("price_id"),  # type: ignore[arg-type]
    )


class InvoiceService:
    def __init__(
        self,
        repository: InvoiceRepository,
        customers: CustomerRepository,
        events: EventBus,
        *,
        catalog: Optional[PlanCatalog] = None,
        config: Optional[BillingConfig] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._repository = repository
        self._customers = customers
        self._events = events
        self._catalog = catalog
        self._config = config or BillingConfig()
        self._clock = clock or utc_now

    def create(
        self,
        customer_id: str,
        lines: Iterable[LineInput],
        *,
        subscription_id: Optional[str] = None,
        currency: Optional[str] = None,
        discount: int = 0,
        tax: int = 0,
        promo_code: Optional[str] = None,
        period_start: Optional[datetime] = None,
        period_end: Optional[datetime] = None,
        due_date: Optional[datetime] = None,
        metadata: Optional[Mapping[str, str]] = None,
    ) -> Invoice:
        """Build an open invoice; every sum is overflow checked."""

        customer = self._customers.get(customer_id)
        if customer is None or customer.is_deleted:
            raise NotFoundError(f"Customer {customer_id} not found", entity="customer", entity_id=customer_id)

        max_amount = self._config.max_safe_amount
        invoice_lines = []
        for item in map(_as_line_item, lines):
            assert_valid_amount(item.unit_amount, "unit_amount")
            if isinstance(item.quantity, bool) or not isinstance(item.quantity, int) or item.quantity < 1:
                raise ValidationError("quantity must be a positive integer", detail={"field": "quantity"})
            invoice_lines.append(
                InvoiceLine(
                    description=item.description,
                    quantity=item.quantity,
                    unit_amount=item.unit_amount,
                    amount=safe_multiply(item.unit_amount, item.quantity, max_amount=max_amount),
                    price_id=item.price_id,
                )
            )
        if not invoice_lines:
            raise ValidationError("An invoice needs at least one line", detail={"field": "lines"})

        subtotal = calculate_invoice_total((line.amount for line in invoice_lines), max_amount=max_amount)
        assert_valid_amount(discount, "discount")
        assert_valid_amount(tax, "tax")

        tags = dict(metadata or {})
        if promo_code is not None:
            if self._catalog is None:
                raise ValidationError("Promo codes require a plan catalog", detail={"promo_code": promo_code})
            validation = self._catalog.validate_promo_code(promo_code)
            if not validation.valid or validation.promo_code is None:
                raise ValidationError(
                    f"Promo code {promo_code} cannot be applied",
                    detail={"promo_code": promo_code, "reason": validation.reason},
                )
            discount = safe_add(discount, promo_discount(validation.promo_code, subtotal), max_amount=max_amount)
            tags["promo_code_id"] = validation.promo_code.id
        if discount > subtotal:
            raise ValidationError("discount cannot exceed the subtotal", detail={"discount": discount, "subtotal": subtotal})

        total = safe_add(subtotal - discount, tax, max_amount=max_amount)
        now = self._clock()
        invoice = Invoice(
            id=new_id("inv"),
            customer_id=customer_id,
            subscription_id=subscription_id,
            status=InvoiceStatus.OPEN,
            currency=currency or self._config.default_currency,
            subtotal=subtotal,
            discount=discount,
            tax=tax,
            total=total,
            amount_paid=0,
            amount_due=total,
            lines=tuple(invoice_lines),
            period_start=period_start,
            period_end=period_end,
            due_date=due_date,
            metadata=tags,
            livemode=self._config.livemode,
            created_at=now,
            updated_at=now,
        )
        if promo_code is not None:
            self._catalog.redeem_promo_code(tags["promo_code_id"])
        stored = self._repository.create(invoice)
        logger.info(
            "Invoice %s created customer=%s total=%s %s",
            stored.id,
            stored.customer_id,
            stored.total,
            stored.currency,
        )
        self._events.emit(BillingEventType.INVOICE_CREATED, stored)
        if stored.total == 0:
            return self.mark_paid(stored.id)
        return stored

    def get(self, invoice_id: str) -> Optional[Invoice]:
        return self._repository.get(invoice_id)

    def list_by_customer(self, customer_id: str) -> Sequence[Invoice]:
        return self._repository.find_by_customer_id(customer_id)

    def list(self, options: Optional[ListOptions] = None, *, customer_id: Optional[str] = None) -> Page[Invoice]:
        return self._repository.list(options or ListOptions(), customer_id=customer_id)

    def apply_payment(self, invoice_id: str, amount: int) -> Invoice:
        """Credit ``amount`` against the balance; settles the invoice when nothing is due."""

        invoice = self._require_open(invoice_id, action="apply_payment")
        assert_valid_amount(amount)
        if amount < 1:
            raise ValidationError("payment amount must be positive", detail={"field": "amount"})
        if amount > invoice.amount_due:
            raise ValidationError(
                f"Payment of {amount} exceeds the {invoice.amount_due} due on invoice {invoice.id}",
                detail={"amount": amount, "amount_due": invoice.amount_due},
            )

        now = self._clock()
        amount_paid = invoice.amount_paid + amount
        settled = amount_paid == invoice.total
        updated = self._repository.update(
            invoice.model_copy(
                update={
                    "amount_paid": amount_paid,
                    "amount_due": invoice.total - amount_paid,
                    "status": InvoiceStatus.PAID if settled else invoice.status,
                    "paid_at": now if settled else None,
                    "updated_at": now,
                }
            )
        )
        logger.info("Applied %s to invoice %s; %s still due", amount, updated.id, updated.amount_due)
        self._events.emit(BillingEventType.INVOICE_PAYMENT_APPLIED, updated)
        if settled:
            self._events.emit(BillingEventType.INVOICE_PAID, updated)
        return updated

    def mark_paid(self, invoice_id: str) -> Invoice:
        invoice = self._require_open(invoice_id, action="mark_paid")
        now = self._clock()
        updated = self._repository.update(
            invoice.model_copy(
                update={
                    "status": InvoiceStatus.PAID,
                    "amount_paid": invoice.total,
                    "amount_due": 0,
                    "paid_at": now,
                    "updated_at": now,
                }
            )
        )
        logger.info("Invoice %s marked paid", updated.id)
        self._events.emit(BillingEventType.INVOICE_PAID, updated)
        return updated

    def void(self, invoice_id: str) -> Invoice:
        invoice = self._get(invoice_id)
        if invoice.status not in {InvoiceStatus.DRAFT, InvoiceStatus.OPEN}:
            raise InvalidStateError(
                f"Cannot void an invoice in status {invoice.status.value}",
                current_status=invoice.status.value,
                action="void",
            )
        now = self._clock()
        updated = self._repository.update(
            invoice.model_copy(update={"status": InvoiceStatus.VOID, "voided_at": now, "updated_at": now})
        )
        logger.info("Invoice %s voided", updated.id)
        self._events.emit(BillingEventType.INVOICE_VOIDED, updated)
        return updated

    def _get(self, invoice_id: str) -> Invoice:
        invoice = self._repository.get(invoice_id)
        if invoice is None:
            raise NotFoundError(f"Invoice {invoice_id} not found", entity="invoice", entity_id=invoice_id)
        return invoice

    def _require_open(self, invoice_id: str, *, action: str) -> Invoice:
        invoice = self._get(invoice_id)
        if invoice.status != InvoiceStatus.OPEN:
            raise InvalidStateError(
                f"Cannot {action.replace('_', ' ')} on an invoice in status {invoice.status.value}",
                current_status=invoice.status.value,
                action=action,
            )
        return invoice


__all__ = ["InvoiceService", "LineItem"]
