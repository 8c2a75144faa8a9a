"""Numeric usage quotas tracked per customer."""

from .models import UNLIMITED, CustomerLimit, LimitCheck, LimitDefinition, evaluate_limit

__all__ = ["CustomerLimit", "LimitCheck", "LimitDefinition", "UNLIMITED", "evaluate_limit"]
