"""Error taxonomy shared by every billing domain service."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

from fastapi import HTTPException, status


@dataclass
class BillingError(Exception):
    """Base class for failures surfaced to billing callers."""

    message: str
    code: str = "billing_error"
    status_code: int = status.HTTP_400_BAD_REQUEST
    detail: Optional[Mapping[str, Any]] = None

    def __post_init__(self) -> None:
        base_detail: Dict[str, Any] = {"error": self.code, "message": self.message}
        base_detail.update(self._extra_detail())
        if self.detail:
            base_detail.update(self.detail)
        object.__setattr__(self, "_payload", base_detail)
        super().__init__(self.message)

    def _extra_detail(self) -> Dict[str, Any]:
        return {}

    @property
    def payload(self) -> Mapping[str, Any]:
        """Serialized representation suitable for JSON responses."""

        return self._payload

    def to_http_exception(self) -> HTTPException:
        """Convert the domain error into a FastAPI HTTPException."""

        return HTTPException(status_code=self.status_code, detail=dict(self.payload))


@dataclass
class ValidationError(BillingError):
    """Malformed or out-of-range input. Never retried."""

    code: str = "validation_failed"
    status_code: int = status.HTTP_422_UNPROCESSABLE_ENTITY


@dataclass
class InvalidPeriodError(ValidationError):
    """A billing period with zero or negative length was used for proration."""

    code: str = "invalid_period"
    total_days: Optional[float] = None

    def _extra_detail(self) -> Dict[str, Any]:
        return {"total_days": self.total_days}


@dataclass
class NotFoundError(BillingError):
    """A referenced entity does not exist."""

    code: str = "entity_not_found"
    status_code: int = status.HTTP_404_NOT_FOUND
    entity: Optional[str] = None
    entity_id: Optional[str] = None

    def _extra_detail(self) -> Dict[str, Any]:
        return {"entity": self.entity, "entity_id": self.entity_id}


@dataclass
class ConflictError(BillingError):
    """Duplicate record or a collision with existing state."""

    code: str = "resource_conflict"
    status_code: int = status.HTTP_409_CONFLICT


@dataclass
class InvalidStateError(BillingError):
    """An operation is not legal from the entity's current status."""

    code: str = "invalid_state"
    status_code: int = status.HTTP_409_CONFLICT
    current_status: Optional[str] = None
    action: Optional[str] = None

    def _extra_detail(self) -> Dict[str, Any]:
        return {"current_status": self.current_status, "action": self.action}


@dataclass
class AmountOverflowError(BillingError):
    """An amount or an arithmetic result exceeded the configured safe ceiling."""

    code: str = "amount_overflow"
    status_code: int = status.HTTP_422_UNPROCESSABLE_ENTITY
    operation: str = "calculate"
    operands: Tuple[Any, ...] = ()

    def _extra_detail(self) -> Dict[str, Any]:
        return {"operation": self.operation, "operands": list(self.operands)}


@dataclass
class ProviderError(BillingError):
    """The external payment processor rejected or failed a call."""

    code: str = "provider_error"
    status_code: int = status.HTTP_502_BAD_GATEWAY
    provider: Optional[str] = None
    operation: Optional[str] = None
    retryable: bool = False

    def _extra_detail(self) -> Dict[str, Any]:
        return {"provider": self.provider, "operation": self.operation, "retryable": self.retryable}


@dataclass
class FeatureGateError(BillingError):
    """Represents an actionable gating failure surfaced to API callers."""

    code: str = "feature_gated"
    status_code: int = status.HTTP_403_FORBIDDEN


@dataclass
class EntitlementRequiredError(FeatureGateError):
    code: str = "entitlement_required"


@dataclass
class LimitExceededError(FeatureGateError):
    code: str = "limit_exceeded"


__all__ = [
    "AmountOverflowError",
    "BillingError",
    "ConflictError",
    "EntitlementRequiredError",
    "FeatureGateError",
    "InvalidPeriodError",
    "InvalidStateError",
    "LimitExceededError",
    "NotFoundError",
    "ProviderError",
    "ValidationError",
]
