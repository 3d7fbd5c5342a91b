"""Billing domain errors.

Services raise these; routers translate them into HTTP responses. Messages are
safe to show to end users and never include provider response text.
"""


class BillingError(Exception):
    """Base class for payment and subscription errors."""

    message = "Billing operation failed"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)
        self.message = message or self.message


class InvalidPhoneFormat(BillingError):
    message = "Invalid phone number format. Use a 9-digit number starting with 6, optionally prefixed with 237."


class AmountMismatch(BillingError):
    def __init__(self, expected: int, received: int) -> None:
        super().__init__(f"Invalid amount. Expected {expected}, received {received}")
        self.expected = expected
        self.received = received


class UnknownPlan(BillingError):
    def __init__(self, plan_type: str, available: list[str]) -> None:
        super().__init__(
            f"Invalid subscription plan '{plan_type}'. Available plans: {', '.join(available)}"
        )
        self.plan_type = plan_type
        self.available = available


class DuplicatePendingPayment(BillingError):
    def __init__(self, transaction_id: str) -> None:
        super().__init__(
            "A payment is already in progress. Check its status instead of starting a new one."
        )
        self.transaction_id = transaction_id


class PaymentInitiationFailed(BillingError):
    message = "Payment initiation failed. Please try again."

    def __init__(self, transaction_id: str | None = None) -> None:
        super().__init__()
        self.transaction_id = transaction_id


class PaymentNotFound(BillingError):
    message = "Payment not found"


class DuplicateActiveSubscription(BillingError):
    def __init__(self, subscription_id) -> None:
        super().__init__("You already have an active subscription of this type")
        self.subscription_id = subscription_id


class SubscriptionNotFound(BillingError):
    message = "Subscription not found"


class SubscriptionAlreadyCancelled(BillingError):
    message = "Subscription is already cancelled"


class InvalidSignature(BillingError):
    message = "Invalid webhook signature"


class InvalidPaymentTransition(BillingError):
    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Payment cannot move from {current} to {target}")
        self.current = current
        self.target = target


class ProviderError(BillingError):
    """The payment provider rejected a request or could not be reached."""

    message = "Payment provider request failed"

    def __init__(self, code: str, detail: str | None = None) -> None:
        super().__init__()
        self.code = code
        self.detail = detail
