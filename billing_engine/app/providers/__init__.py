"""Payment provider contracts, retry gateway and the sandbox provider."""

from .gateway import TRANSIENT_ERRORS, ProviderGateway
from .interfaces import (
    PaymentProvider,
    ProviderCustomerAdapter,
    ProviderPayment,
    ProviderPaymentAdapter,
    ProviderPrice,
    ProviderPriceAdapter,
    ProviderRefund,
    ProviderSubscription,
    ProviderSubscriptionAdapter,
    ProviderWebhookAdapter,
    WebhookEvent,
)
from .sandbox import DECLINED_PAYMENT_METHODS, SandboxPaymentProvider

__all__ = [
    "DECLINED_PAYMENT_METHODS",
    "PaymentProvider",
    "ProviderCustomerAdapter",
    "ProviderGateway",
    "ProviderPayment",
    "ProviderPaymentAdapter",
    "ProviderPrice",
    "ProviderPriceAdapter",
    "ProviderRefund",
    "ProviderSubscription",
    "ProviderSubscriptionAdapter",
    "ProviderWebhookAdapter",
    "SandboxPaymentProvider",
    "TRANSIENT_ERRORS",
    "WebhookEvent",
]
