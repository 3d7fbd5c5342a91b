"""Tests for the Nkwa Pay client against a mocked HTTP transport."""

import json
from unittest.mock import patch

import httpx
import pytest

from paperhub.billing.exceptions import ProviderError
from paperhub.billing.nkwapay_client import (
    get_payment_status,
    map_provider_status,
    request_collection,
)
from paperhub.models.payment import PaymentStatus


def _client_for(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        transport=httpx.MockTransport(handler),
        base_url="https://nkwapay.test",
        headers={"X-API-Key": "test-api-key"},
    )


def _patch_client(handler):
    return patch(
        "paperhub.billing.nkwapay_client.get_nkwapay_client",
        side_effect=lambda: _client_for(handler),
    )


class TestRequestCollection:
    async def test_posts_collect_request(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            seen["api_key"] = request.headers.get("X-API-Key")
            return httpx.Response(200, json={"id": "nkwa-1", "status": "pending"})

        with _patch_client(handler):
            data = await request_collection(1000, "237677123456", "PAY_1_ABC", "Registration fee")

        assert data["id"] == "nkwa-1"
        assert seen["method"] == "POST"
        assert seen["path"] == "/collect"
        assert seen["api_key"] == "test-api-key"
        assert seen["body"] == {
            "amount": 1000,
            "phoneNumber": "237677123456",
            "reference": "PAY_1_ABC",
            "description": "Registration fee",
        }

    async def test_http_error_becomes_provider_error(self):
        def handler(request):
            return httpx.Response(400, json={"message": "insufficient funds"})

        with _patch_client(handler), pytest.raises(ProviderError) as exc_info:
            await request_collection(1000, "237677123456", "PAY_1_ABC")

        assert exc_info.value.code == "http_400"
        assert "insufficient funds" in exc_info.value.detail
        # Client-facing message never carries provider text.
        assert "insufficient" not in exc_info.value.message

    async def test_network_error_becomes_provider_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with _patch_client(handler), pytest.raises(ProviderError) as exc_info:
            await request_collection(1000, "237677123456", "PAY_1_ABC")
        assert exc_info.value.code == "network_error"

    async def test_non_json_body_rejected(self):
        def handler(request):
            return httpx.Response(200, text="<html>ok</html>")

        with _patch_client(handler), pytest.raises(ProviderError) as exc_info:
            await request_collection(1000, "237677123456", "PAY_1_ABC")
        assert exc_info.value.code == "invalid_response"


class TestGetPaymentStatus:
    async def test_fetches_by_provider_id(self):
        def handler(request):
            assert request.method == "GET"
            assert request.url.path == "/payments/nkwa-42"
            return httpx.Response(200, json={"id": "nkwa-42", "status": "success"})

        with _patch_client(handler):
            data = await get_payment_status("nkwa-42")
        assert data["status"] == "success"


class TestGetClient:
    def test_missing_api_key_raises(self):
        from paperhub.billing import nkwapay_client

        with patch.object(nkwapay_client.settings, "nkwapay_api_key", ""):
            with pytest.raises(ProviderError) as exc_info:
                nkwapay_client.get_nkwapay_client()
        assert exc_info.value.code == "not_configured"


class TestMapProviderStatus:
    @pytest.mark.parametrize("raw", ["successful", "SUCCESS", "completed", " Success "])
    def test_success_vocabulary(self, raw):
        assert map_provider_status(raw) == PaymentStatus.SUCCESS

    @pytest.mark.parametrize("raw", ["failed", "cancelled", "canceled", "FAILED"])
    def test_failure_vocabulary(self, raw):
        assert map_provider_status(raw) == PaymentStatus.FAILED

    @pytest.mark.parametrize("raw", [None, "", "pending", "processing", "unknown"])
    def test_non_final(self, raw):
        assert map_provider_status(raw) is None
