"""Synchronous publish/subscribe bus for billing events."""
from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional, Union

from ..common import Clock, new_id, utc_now
from .models import BillingEvent, BillingEventType

logger = logging.getLogger(__name__)

EventHandler = Callable[[BillingEvent], Union[None, Awaitable[None]]]
ErrorHandler = Callable[[BaseException, BillingEvent], None]
Unsubscribe = Callable[[], bool]


@dataclass(eq=False)
class _Listener:
    handler: EventHandler
    once: bool = False


async def _await(awaitable: Awaitable[Any]) -> Any:
    return await awaitable


class EventBus:
    """Typed register of event handlers.

    Handlers run in subscription order before :meth:`emit` returns. A failing
    handler is logged and reported to ``on_error``; the remaining handlers
    still receive the event.
    """

    def __init__(
        self,
        *,
        livemode: bool = False,
        on_error: Optional[ErrorHandler] = None,
        max_listeners: int = 0,
        clock: Optional[Clock] = None,
    ) -> None:
        self._livemode = livemode
        self._on_error = on_error
        self._max_listeners = max(0, max_listeners)
        self._clock = clock or utc_now
        self._listeners: Dict[BillingEventType, List[_Listener]] = {}
        self._wildcard: List[_Listener] = []
        self._lock = threading.RLock()
        self._held = threading.local()

    @property
    def livemode(self) -> bool:
        return self._livemode

    def on(self, event_type: Union[BillingEventType, str], handler: EventHandler) -> Unsubscribe:
        """Subscribe ``handler``; the returned callable unsubscribes it."""

        return self._add(BillingEventType(event_type), _Listener(handler))

    def once(self, event_type: Union[BillingEventType, str], handler: EventHandler) -> Unsubscribe:
        return self._add(BillingEventType(event_type), _Listener(handler, once=True))

    def on_any(self, handler: EventHandler) -> Unsubscribe:
        listener = _Listener(handler)
        with self._lock:
            self._wildcard.append(listener)

        def unsubscribe() -> bool:
            return self._discard(self._wildcard, listener)

        return unsubscribe

    def off(self, event_type: Union[BillingEventType, str], handler: EventHandler) -> bool:
        """Remove the first registration of ``handler`` for ``event_type``."""

        with self._lock:
            listeners = self._listeners.get(BillingEventType(event_type), [])
            for listener in listeners:
                if listener.handler == handler:
                    listeners.remove(listener)
                    return True
        return False

    def off_any(self, handler: EventHandler) -> bool:
        with self._lock:
            for listener in self._wildcard:
                if listener.handler == handler:
                    self._wildcard.remove(listener)
                    return True
        return False

    def remove_all_listeners(self, event_type: Optional[Union[BillingEventType, str]] = None) -> None:
        with self._lock:
            if event_type is None:
                self._listeners.clear()
                self._wildcard.clear()
            else:
                self._listeners.pop(BillingEventType(event_type), None)

    def listener_count(self, event_type: Optional[Union[BillingEventType, str]] = None) -> int:
        with self._lock:
            if event_type is None:
                return sum(len(items) for items in self._listeners.values()) + len(self._wildcard)
            return len(self._listeners.get(BillingEventType(event_type), []))

    def event_names(self) -> List[BillingEventType]:
        with self._lock:
            return [event_type for event_type, items in self._listeners.items() if items]

    def emit(self, event_type: Union[BillingEventType, str], data: Any) -> BillingEvent:
        """Deliver an event to every subscriber and return its envelope.

        Coroutine handlers are run to completion. Inside a running event loop
        use :meth:`emit_async` instead; a coroutine handler reached from
        :meth:`emit` there is reported as a handler failure.
        """

        event = self._build_event(event_type, data)
        held = self._held_events()
        if held:
            held[-1].append(event)
            return event
        self._deliver(event)
        return event

    @contextmanager
    def deferred(self) -> Iterator[None]:
        """Hold events emitted on this thread until the block exits.

        Held events are delivered in order when the block completes and
        dropped when it raises. A nested block hands its events to the
        enclosing one.
        """

        held = self._held_events()
        buffer: List[BillingEvent] = []
        held.append(buffer)
        try:
            yield
        finally:
            held.pop()
        if held:
            held[-1].extend(buffer)
            return
        for event in buffer:
            self._deliver(event)

    async def emit_async(self, event_type: Union[BillingEventType, str], data: Any) -> BillingEvent:
        event = self._build_event(event_type, data)
        for listener in self._take_listeners(event.type):
            try:
                result = listener.handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                self._report(exc, event, listener)
        return event

    def _deliver(self, event: BillingEvent) -> None:
        for listener in self._take_listeners(event.type):
            try:
                result = listener.handler(event)
                if inspect.isawaitable(result):
                    self._run_awaitable(result)
            except Exception as exc:
                self._report(exc, event, listener)

    def _held_events(self) -> List[List[BillingEvent]]:
        stack = getattr(self._held, "stack", None)
        if stack is None:
            stack = self._held.stack = []
        return stack

    def _build_event(self, event_type: Union[BillingEventType, str], data: Any) -> BillingEvent:
        # Payload models import the domain packages, which import this module.
        from .payloads import payload_type_for

        resolved = BillingEventType(event_type)
        expected = payload_type_for(resolved)
        if not isinstance(data, expected):
            raise TypeError(
                f"{resolved.value} carries {expected.__name__}, got {type(data).__name__}"
            )
        return BillingEvent(
            id=new_id("evt"),
            type=resolved,
            data=data,
            livemode=self._livemode,
            created_at=self._clock(),
        )

    def _add(self, event_type: BillingEventType, listener: _Listener) -> Unsubscribe:
        with self._lock:
            listeners = self._listeners.setdefault(event_type, [])
            listeners.append(listener)
            if self._max_listeners and len(listeners) > self._max_listeners:
                logger.warning(
                    "Possible event listener leak: %s listeners registered for %s (max %s)",
                    len(listeners),
                    event_type.value,
                    self._max_listeners,
                )

        def unsubscribe() -> bool:
            return self._discard(self._listeners.get(event_type, []), listener)

        return unsubscribe

    def _discard(self, listeners: List[_Listener], listener: _Listener) -> bool:
        with self._lock:
            if listener in listeners:
                listeners.remove(listener)
                return True
        return False

    def _take_listeners(self, event_type: BillingEventType) -> List[_Listener]:
        with self._lock:
            specific = self._listeners.get(event_type, [])
            snapshot = list(specific) + list(self._wildcard)
            for listener in snapshot:
                if listener.once and listener in specific:
                    specific.remove(listener)
        return snapshot

    def _run_awaitable(self, awaitable: Awaitable[Any]) -> None:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(_await(awaitable))
            return
        if inspect.iscoroutine(awaitable):
            awaitable.close()
        raise RuntimeError("Coroutine handlers inside a running event loop require emit_async()")

    def _report(self, exc: Exception, event: BillingEvent, listener: _Listener) -> None:
        logger.exception(
            "Billing event handler failed",
            extra={
                "event_id": event.id,
                "event_type": event.type.value,
                "event_handler": getattr(listener.handler, "__qualname__", repr(listener.handler)),
            },
        )
        if self._on_error is None:
            return
        try:
            self._on_error(exc, event)
        except Exception:
            logger.exception("Billing event error callback failed", extra={"event_id": event.id})


__all__ = ["ErrorHandler", "EventBus", "EventHandler", "Unsubscribe"]
