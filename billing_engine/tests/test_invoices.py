from __future__ import annotations

import pytest

from billing_engine.app.billing.invoices import InvoiceService, LineItem
from billing_engine.app.billing.catalog import PlanCatalog
from billing_engine.app.billing.models import InvoiceStatus, PromoCode, PromoDiscountType
from billing_engine.app.errors import AmountOverflowError, InvalidStateError, NotFoundError, ValidationError
from billing_engine.app.events import BillingEventType
from billing_engine.app.billing.customers import CustomerService
from billing_engine.config import BillingConfig


@pytest.fixture
def catalog(storage, clock) -> PlanCatalog:
    return PlanCatalog(storage.plans, storage.promo_codes, clock=clock)


@pytest.fixture
def invoice_service(storage, events, catalog, clock) -> InvoiceService:
    return InvoiceService(storage.invoices, storage.customers, events, catalog=catalog, clock=clock)


@pytest.fixture
def customer(storage, events, clock):
    return CustomerService(storage.customers, events, clock=clock).create("user-1", "ada@example.com")


def test_invoice_totals_are_derived_from_lines(invoice_service, customer) -> None:
    invoice = invoice_service.create(
        customer.id,
        [
            LineItem(description="Pro plan", unit_amount=1900, quantity=2),
            {"description": "Setup fee", "unit_amount": 500},
        ],
        discount=300,
        tax=420,
    )

    assert invoice.id.startswith("inv_")
    assert invoice.status == InvoiceStatus.OPEN
    assert invoice.currency == "USD"
    assert invoice.subtotal == 4300
    assert invoice.total == 4420
    assert invoice.amount_due == 4420
    assert [line.amount for line in invoice.lines] == [3800, 500]


def test_invoice_rejects_bad_input(invoice_service, customer) -> None:
    with pytest.raises(ValidationError):
        invoice_service.create(customer.id, [])
    with pytest.raises(ValidationError):
        invoice_service.create(customer.id, [LineItem(description="Fractional", unit_amount=19.99)])
    with pytest.raises(ValidationError):
        invoice_service.create(customer.id, [LineItem(description="None", unit_amount=100, quantity=0)])
    with pytest.raises(ValidationError):
        invoice_service.create(customer.id, [LineItem(description="Small", unit_amount=100)], discount=200)
    with pytest.raises(NotFoundError):
        invoice_service.create("cus_missing", [LineItem(description="Pro", unit_amount=100)])


def test_invoice_total_overflow_is_rejected(storage, events, catalog, clock, customer) -> None:
    service = InvoiceService(
        storage.invoices,
        storage.customers,
        events,
        catalog=catalog,
        config=BillingConfig(max_safe_amount=10_000),
        clock=clock,
    )

    with pytest.raises(AmountOverflowError):
        service.create(customer.id, [LineItem(description="Seats", unit_amount=6000, quantity=2)])


def test_promo_code_discount_is_applied_and_redeemed(invoice_service, catalog, customer) -> None:
    catalog.register_promo_code(
        PromoCode(id="promo_1", code="SPRING", discount_type=PromoDiscountType.PERCENTAGE, discount_value=25)
    )

    invoice = invoice_service.create(
        customer.id,
        [LineItem(description="Pro plan", unit_amount=2000)],
        promo_code="spring",
    )

    assert invoice.discount == 500
    assert invoice.total == 1500
    assert invoice.metadata["promo_code_id"] == "promo_1"
    assert catalog.get_promo_code("promo_1").redemptions == 1


def test_fixed_promo_never_exceeds_subtotal(invoice_service, catalog, customer) -> None:
    catalog.register_promo_code(
        PromoCode(id="promo_2", code="BIG", discount_type=PromoDiscountType.FIXED_AMOUNT, discount_value=5000)
    )

    invoice = invoice_service.create(customer.id, [LineItem(description="Pro", unit_amount=1900)], promo_code="BIG")

    assert invoice.discount == 1900
    assert invoice.status == InvoiceStatus.PAID


def test_invalid_promo_code_is_rejected(invoice_service, customer) -> None:
    with pytest.raises(ValidationError) as exc:
        invoice_service.create(customer.id, [LineItem(description="Pro", unit_amount=1900)], promo_code="NOPE")

    assert exc.value.payload["reason"] == "not_found"


def test_zero_total_invoice_is_paid_immediately(invoice_service, customer, events) -> None:
    paid = []
    events.on(BillingEventType.INVOICE_PAID, lambda event: paid.append(event.data.id))

    invoice = invoice_service.create(customer.id, [LineItem(description="Free tier", unit_amount=0)])

    assert invoice.status == InvoiceStatus.PAID
    assert invoice.amount_due == 0
    assert paid == [invoice.id]


def test_partial_payments_settle_the_invoice(invoice_service, customer, events) -> None:
    emitted = []
    events.on_any(lambda event: emitted.append(event.type))
    invoice = invoice_service.create(customer.id, [LineItem(description="Pro", unit_amount=1900)])

    partial = invoice_service.apply_payment(invoice.id, 900)

    assert partial.status == InvoiceStatus.OPEN
    assert partial.amount_due == 1000

    with pytest.raises(ValidationError):
        invoice_service.apply_payment(invoice.id, 1001)

    settled = invoice_service.apply_payment(invoice.id, 1000)

    assert settled.status == InvoiceStatus.PAID
    assert settled.paid_at is not None
    assert emitted[-2:] == [BillingEventType.INVOICE_PAYMENT_APPLIED, BillingEventType.INVOICE_PAID]


def test_void_only_from_open(invoice_service, customer) -> None:
    invoice = invoice_service.create(customer.id, [LineItem(description="Pro", unit_amount=1900)])

    voided = invoice_service.void(invoice.id)

    assert voided.status == InvoiceStatus.VOID
    assert voided.is_finalized is True
    with pytest.raises(InvalidStateError):
        invoice_service.void(invoice.id)
    with pytest.raises(InvalidStateError):
        invoice_service.mark_paid(invoice.id)


def test_listing_invoices(invoice_service, customer) -> None:
    for amount in (100, 200, 300):
        invoice_service.create(customer.id, [LineItem(description="Usage", unit_amount=amount)])

    page = invoice_service.list(customer_id=customer.id)

    assert page.total == 3
    assert page.has_more is False
    assert len(invoice_service.list_by_customer(customer.id)) == 3
