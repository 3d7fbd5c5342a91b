"""Translate billing domain errors into HTTP responses."""

from fastapi import HTTPException, status

from paperhub.billing.exceptions import (
    BillingError,
    DuplicateActiveSubscription,
    DuplicatePendingPayment,
    InvalidPaymentTransition,
    PaymentInitiationFailed,
    PaymentNotFound,
    ProviderError,
    SubscriptionNotFound,
)


def http_error(exc: BillingError) -> HTTPException:
    """Map a BillingError to an HTTPException with a client-safe body."""
    if isinstance(exc, (PaymentNotFound, SubscriptionNotFound)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message)
    if isinstance(exc, DuplicatePendingPayment):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": exc.message, "transaction_id": exc.transaction_id},
        )
    if isinstance(exc, DuplicateActiveSubscription):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": exc.message, "subscription_id": str(exc.subscription_id)},
        )
    if isinstance(exc, InvalidPaymentTransition):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.message)
    if isinstance(exc, PaymentInitiationFailed):
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": exc.message, "transaction_id": exc.transaction_id},
        )
    if isinstance(exc, ProviderError):
        # Provider detail stays in the server log.
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Payment provider is unavailable. Please try again later.",
        )
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message)
