"""Small helpers shared across billing domain packages."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable
from uuid import uuid4

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    """Return a random identifier such as ``cus_3f2a...``."""

    return f"{prefix}_{uuid4().hex}"


__all__ = ["Clock", "new_id", "utc_now"]
