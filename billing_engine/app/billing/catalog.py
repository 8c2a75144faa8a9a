"""Plan, price and promo code lookups used by the billing services."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from ..common import Clock, utc_now
from ..errors import NotFoundError, ValidationError
from ..money.amounts import apply_fixed_discount, percentage_of
from ..providers.gateway import ProviderGateway
from ..storage.interfaces import PlanRepository, PromoCodeRepository
from .models import Plan, Price, PromoCode, PromoDiscountType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PromoCodeValidation:
    valid: bool
    promo_code: Optional[PromoCode] = None
    reason: Optional[str] = None


def promo_discount(promo_code: PromoCode, amount: int) -> int:
    """Discount in minor units; never larger than ``amount``."""

    if promo_code.discount_type == PromoDiscountType.PERCENTAGE:
        return min(amount, percentage_of(amount, promo_code.discount_value))
    return amount - apply_fixed_discount(amount, promo_code.discount_value)


class PlanCatalog:
    """Read side of the catalog plus provider price registration."""

    def __init__(
        self,
        plans: PlanRepository,
        promo_codes: PromoCodeRepository,
        *,
        gateway: Optional[ProviderGateway] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._plans = plans
        self._promo_codes = promo_codes
        self._gateway = gateway
        self._clock = clock or utc_now

    def register_plan(self, plan: Plan) -> Plan:
        """Store ``plan``, creating missing prices at the payment provider."""

        if self._gateway is not None:
            prices = []
            for price in plan.prices:
                if price.provider_price_ids.get(self._gateway.name):
                    prices.append(price)
                    continue
                provider_price_id = self._gateway.call("prices.create", self._gateway.provider.prices.create, price)
                prices.append(
                    price.model_copy(
                        update={"provider_price_ids": {**price.provider_price_ids, self._gateway.name: provider_price_id}}
                    )
                )
            plan = plan.model_copy(update={"prices": tuple(prices)})
        stored = self._plans.save(plan)
        logger.info("Registered plan %s with %s prices", stored.id, len(stored.prices))
        return stored

    def get_plan(self, plan_id: str) -> Optional[Plan]:
        return self._plans.get(plan_id)

    def get_active_plans(self) -> Sequence[Plan]:
        return self._plans.list(active_only=True)

    def get_prices(self, plan_id: str) -> Tuple[Price, ...]:
        plan = self._plans.get(plan_id)
        if plan is None:
            raise NotFoundError(f"Plan {plan_id} not found", entity="plan", entity_id=plan_id)
        return plan.prices

    def get_price(self, price_id: str) -> Optional[Price]:
        return self._plans.get_price(price_id)

    def resolve_price(self, plan_id: str, price_id: Optional[str] = None) -> Tuple[Plan, Price]:
        """Return the plan and a sellable price, validating both are active."""

        plan = self._plans.get(plan_id)
        if plan is None:
            raise NotFoundError(f"Plan {plan_id} not found", entity="plan", entity_id=plan_id)
        if not plan.active:
            raise ValidationError(f"Plan {plan_id} is not active", detail={"plan_id": plan_id})

        if price_id is None:
            if not plan.active_prices:
                raise ValidationError(f"Plan {plan_id} has no active prices", detail={"plan_id": plan_id})
            return plan, plan.active_prices[0]

        price = plan.get_price(price_id)
        if price is None:
            if self._plans.get_price(price_id) is not None:
                raise ValidationError(
                    f"Price {price_id} does not belong to plan {plan_id}",
                    detail={"plan_id": plan_id, "price_id": price_id},
                )
            raise NotFoundError(f"Price {price_id} not found", entity="price", entity_id=price_id)
        if not price.active:
            raise ValidationError(f"Price {price_id} is not active", detail={"price_id": price_id})
        return plan, price

    def find_plan_for_price(self, price_id: str) -> Tuple[Plan, Price]:
        price = self._plans.get_price(price_id)
        if price is None:
            raise NotFoundError(f"Price {price_id} not found", entity="price", entity_id=price_id)
        return self.resolve_price(price.plan_id, price_id)

    def register_promo_code(self, promo_code: PromoCode) -> PromoCode:
        return self._promo_codes.save(promo_code)

    def get_promo_code(self, promo_code_id: str) -> Optional[PromoCode]:
        return self._promo_codes.get(promo_code_id)

    def validate_promo_code(self, code: str, *, plan_id: Optional[str] = None) -> PromoCodeValidation:
        promo_code = self._promo_codes.get_by_code(code) or self._promo_codes.get(code)
        if promo_code is None:
            return PromoCodeValidation(valid=False, reason="not_found")
        if not promo_code.active:
            return PromoCodeValidation(valid=False, promo_code=promo_code, reason="inactive")
        if promo_code.valid_until is not None and promo_code.valid_until <= self._clock():
            return PromoCodeValidation(valid=False, promo_code=promo_code, reason="expired")
        if promo_code.redemptions_exhausted:
            return PromoCodeValidation(valid=False, promo_code=promo_code, reason="max_redemptions_reached")
        if plan_id is not None and promo_code.plan_ids and plan_id not in promo_code.plan_ids:
            return PromoCodeValidation(valid=False, promo_code=promo_code, reason="plan_not_eligible")
        return PromoCodeValidation(valid=True, promo_code=promo_code)

    def redeem_promo_code(self, promo_code_id: str, *, plan_id: Optional[str] = None) -> PromoCode:
        validation = self.validate_promo_code(promo_code_id, plan_id=plan_id)
        if not validation.valid or validation.promo_code is None:
            raise ValidationError(
                f"Promo code {promo_code_id} cannot be applied",
                detail={"promo_code_id": promo_code_id, "reason": validation.reason},
            )
        redeemed = self._promo_codes.increment_redemptions(validation.promo_code.id)
        if redeemed is None:
            raise ValidationError(
                f"Promo code {promo_code_id} cannot be applied",
                detail={"promo_code_id": promo_code_id, "reason": "max_redemptions_reached"},
            )
        return redeemed


__all__ = ["PlanCatalog", "PromoCodeValidation", "promo_discount"]
