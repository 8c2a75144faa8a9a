from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from billing_engine.app.billing.models import Customer
from billing_engine.app.events import BillingEvent, BillingEventType, EventBus


def _customer(customer_id: str = "cus_1") -> Customer:
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    return Customer(
        id=customer_id,
        external_id=f"user-{customer_id}",
        email="ada@example.com",
        created_at=now,
        updated_at=now,
    )


def test_emit_delivers_envelope_to_subscribers(clock) -> None:
    bus = EventBus(livemode=True, clock=clock)
    received: list[BillingEvent] = []
    bus.on(BillingEventType.CUSTOMER_CREATED, received.append)

    event = bus.emit(BillingEventType.CUSTOMER_CREATED, _customer())

    assert received == [event]
    assert event.type == BillingEventType.CUSTOMER_CREATED
    assert event.data.id == "cus_1"
    assert event.livemode is True
    assert event.created_at == clock.now
    assert event.id.startswith("evt_")


def test_string_event_names_are_accepted() -> None:
    bus = EventBus()
    received = []
    bus.on("customer.updated", received.append)

    bus.emit("customer.updated", _customer())

    assert len(received) == 1


def test_unknown_event_name_is_rejected() -> None:
    bus = EventBus()

    with pytest.raises(ValueError):
        bus.on("customer.exploded", lambda event: None)


def test_payload_type_is_enforced() -> None:
    bus = EventBus()

    with pytest.raises(TypeError):
        bus.emit(BillingEventType.CUSTOMER_CREATED, {"id": "cus_1"})


def test_once_handler_runs_a_single_time() -> None:
    bus = EventBus()
    calls = []
    bus.once(BillingEventType.CUSTOMER_CREATED, calls.append)

    bus.emit(BillingEventType.CUSTOMER_CREATED, _customer())
    bus.emit(BillingEventType.CUSTOMER_CREATED, _customer())

    assert len(calls) == 1
    assert bus.listener_count(BillingEventType.CUSTOMER_CREATED) == 0


def test_unsubscribe_and_off() -> None:
    bus = EventBus()
    first, second = [], []
    unsubscribe = bus.on(BillingEventType.CUSTOMER_CREATED, first.append)
    bus.on(BillingEventType.CUSTOMER_CREATED, second.append)

    assert unsubscribe() is True
    assert unsubscribe() is False
    assert bus.off(BillingEventType.CUSTOMER_CREATED, second.append) is True

    bus.emit(BillingEventType.CUSTOMER_CREATED, _customer())

    assert first == []
    assert second == []


def test_failing_handler_does_not_block_others() -> None:
    errors = []
    bus = EventBus(on_error=lambda exc, event: errors.append((exc, event.type)))
    delivered = []

    def broken(event: BillingEvent) -> None:
        raise RuntimeError("boom")

    bus.on(BillingEventType.CUSTOMER_CREATED, broken)
    bus.on(BillingEventType.CUSTOMER_CREATED, delivered.append)

    bus.emit(BillingEventType.CUSTOMER_CREATED, _customer())

    assert len(delivered) == 1
    assert len(errors) == 1
    assert isinstance(errors[0][0], RuntimeError)
    assert errors[0][1] == BillingEventType.CUSTOMER_CREATED


def test_on_any_sees_every_event_after_specific_handlers() -> None:
    bus = EventBus()
    order = []
    bus.on_any(lambda event: order.append(("any", event.type)))
    bus.on(BillingEventType.CUSTOMER_DELETED, lambda event: order.append(("specific", event.type)))

    bus.emit(BillingEventType.CUSTOMER_CREATED, _customer())
    bus.emit(BillingEventType.CUSTOMER_DELETED, _customer())

    assert order == [
        ("any", BillingEventType.CUSTOMER_CREATED),
        ("specific", BillingEventType.CUSTOMER_DELETED),
        ("any", BillingEventType.CUSTOMER_DELETED),
    ]


def test_coroutine_handlers_are_awaited() -> None:
    bus = EventBus()
    seen = []

    async def handler(event: BillingEvent) -> None:
        await asyncio.sleep(0)
        seen.append(event.data.id)

    bus.on(BillingEventType.CUSTOMER_CREATED, handler)

    bus.emit(BillingEventType.CUSTOMER_CREATED, _customer("cus_sync"))
    asyncio.run(bus.emit_async(BillingEventType.CUSTOMER_CREATED, _customer("cus_async")))

    assert seen == ["cus_sync", "cus_async"]


def test_max_listeners_logs_possible_leak(caplog) -> None:
    bus = EventBus(max_listeners=1)

    with caplog.at_level("WARNING"):
        bus.on(BillingEventType.CUSTOMER_CREATED, lambda event: None)
        bus.on(BillingEventType.CUSTOMER_CREATED, lambda event: None)

    assert "Possible event listener leak" in caplog.text


def test_remove_all_listeners() -> None:
    bus = EventBus()
    bus.on(BillingEventType.CUSTOMER_CREATED, lambda event: None)
    bus.on_any(lambda event: None)

    assert bus.listener_count() == 2
    assert bus.event_names() == [BillingEventType.CUSTOMER_CREATED]

    bus.remove_all_listeners()

    assert bus.listener_count() == 0


def test_deferred_events_are_delivered_after_the_block() -> None:
    bus = EventBus()
    received = []
    bus.on(BillingEventType.CUSTOMER_CREATED, lambda event: received.append(event.data.id))

    with bus.deferred():
        bus.emit(BillingEventType.CUSTOMER_CREATED, _customer("cus_1"))
        with bus.deferred():
            bus.emit(BillingEventType.CUSTOMER_CREATED, _customer("cus_2"))
        assert received == []

    assert received == ["cus_1", "cus_2"]


def test_deferred_events_are_dropped_when_the_block_raises() -> None:
    bus = EventBus()
    received = []
    bus.on(BillingEventType.CUSTOMER_CREATED, received.append)

    with pytest.raises(RuntimeError):
        with bus.deferred():
            bus.emit(BillingEventType.CUSTOMER_CREATED, _customer())
            raise RuntimeError("rolled back")

    assert received == []
    bus.emit(BillingEventType.CUSTOMER_CREATED, _customer())
    assert len(received) == 1
