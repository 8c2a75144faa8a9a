"""Typed event bus announcing billing state changes."""

from .bus import ErrorHandler, EventBus, EventHandler, Unsubscribe
from .models import BillingEvent, BillingEventType

__all__ = [
    "BillingEvent",
    "BillingEventType",
    "ErrorHandler",
    "EventBus",
    "EventHandler",
    "Unsubscribe",
]
