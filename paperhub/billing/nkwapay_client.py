"""Async Nkwa Pay API wrapper for PaperHub."""

import logging
from typing import Any

import httpx

from paperhub.billing.exceptions import ProviderError
from paperhub.billing.phone import mask_phone
from paperhub.config import settings
from paperhub.models.payment import PaymentStatus

logger = logging.getLogger(__name__)

_SUCCESS_STATUSES = {"successful", "completed", "success"}
_FAILED_STATUSES = {"failed", "cancelled", "canceled"}


def get_nkwapay_client() -> httpx.AsyncClient:
    """Create an HTTP client preconfigured for the Nkwa Pay API."""
    if not settings.nkwapay_api_key:
        raise ProviderError("not_configured", "NKWAPAY_API_KEY is not set")
    return httpx.AsyncClient(
        base_url=settings.nkwapay_base_url,
        headers={"X-API-Key": settings.nkwapay_api_key, "Accept": "application/json"},
        timeout=settings.nkwapay_timeout_seconds,
    )


async def _request(method: str, path: str, json: dict[str, Any] | None = None) -> dict[str, Any]:
    async with get_nkwapay_client() as client:
        try:
            response = await client.request(method, path, json=json)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                "Nkwa Pay %s %s returned %s: %s",
                method,
                path,
                e.response.status_code,
                e.response.text,
            )
            raise ProviderError(f"http_{e.response.status_code}", e.response.text) from e
        except httpx.HTTPError as e:
            logger.error("Nkwa Pay %s %s failed: %s", method, path, e)
            raise ProviderError("network_error", str(e)) from e

    try:
        payload = response.json()
    except ValueError as e:
        raise ProviderError("invalid_response", "Response body is not JSON") from e
    if not isinstance(payload, dict):
        raise ProviderError("invalid_response", "Response body is not an object")
    return payload


async def request_collection(
    amount: int,
    phone_number: str,
    reference: str,
    description: str | None = None,
) -> dict[str, Any]:
    """Ask the provider to collect ``amount`` from a subscriber's wallet."""
    logger.info(
        "Requesting collection of %s %s from %s (reference %s)",
        amount,
        settings.currency,
        mask_phone(phone_number),
        reference,
    )
    body: dict[str, Any] = {"amount": amount, "phoneNumber": phone_number, "reference": reference}
    if description:
        body["description"] = description
    data = await _request("POST", "/collect", json=body)
    logger.info("Collection accepted for %s: provider id %s", reference, data.get("id"))
    return data


async def get_payment_status(provider_transaction_id: str) -> dict[str, Any]:
    """Retrieve a payment from the provider by its provider-side id."""
    return await _request("GET", f"/payments/{provider_transaction_id}")


def map_provider_status(raw_status: str | None) -> PaymentStatus | None:
    """Translate provider vocabulary into a local terminal status.

    Returns None for anything that does not settle the payment.
    """
    if not raw_status:
        return None
    value = raw_status.strip().lower()
    if value in _SUCCESS_STATUSES:
        return PaymentStatus.SUCCESS
    if value in _FAILED_STATUSES:
        return PaymentStatus.FAILED
    return None
