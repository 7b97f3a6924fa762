"""
Tests for the Daraja client: token caching, STK payload and failure mapping.
"""

import base64
from datetime import datetime, timezone
from decimal import Decimal

import httpx
import pytest

from ticketpay.services.mpesa_client import GatewayError, MpesaClient


async def _charge(client: MpesaClient, amount=Decimal("1000.00")):
    return await client.initiate_charge(
        "254712345678", amount, reference="Event-1", description="Payment for Test Concert"
    )


@pytest.mark.asyncio
async def test_token_is_cached(mpesa_client, daraja):
    first = await mpesa_client.get_access_token()
    second = await mpesa_client.get_access_token()

    assert first == second == "token-1"
    assert daraja.token_requests == 1


@pytest.mark.asyncio
async def test_refresh_forces_new_token(mpesa_client, daraja):
    await mpesa_client.get_access_token()
    assert await mpesa_client.refresh_access_token() == "token-2"
    assert daraja.token_requests == 2


@pytest.mark.asyncio
async def test_token_refreshed_inside_margin(mpesa_client, daraja):
    daraja.token_response = httpx.Response(200, json={"access_token": "short-lived", "expires_in": 30})
    await mpesa_client.get_access_token()
    # 30s lifetime is already inside the 60s refresh margin
    await mpesa_client.get_access_token()
    assert daraja.token_requests == 2


@pytest.mark.asyncio
async def test_missing_credentials(mpesa_settings, daraja):
    settings = mpesa_settings.model_copy(update={"MPESA_CONSUMER_KEY": ""})
    http = httpx.AsyncClient(transport=httpx.MockTransport(daraja.handler), base_url="https://sandbox.safaricom.co.ke")
    client = MpesaClient(settings, http_client=http)

    with pytest.raises(GatewayError, match="credentials"):
        await client.get_access_token()
    assert daraja.token_requests == 0
    await http.aclose()


@pytest.mark.asyncio
async def test_token_rejected(mpesa_client, daraja):
    daraja.token_response = httpx.Response(400, json={"errorCode": "400.008.01", "errorMessage": "Invalid Authentication passed"})
    with pytest.raises(GatewayError) as exc:
        await mpesa_client.get_access_token()
    assert exc.value.status_code == 400
    assert exc.value.payload["errorCode"] == "400.008.01"


def test_timestamp_is_east_africa_time():
    now = datetime(2024, 3, 1, 21, 30, 5, tzinfo=timezone.utc)
    assert MpesaClient.timestamp(now) == "20240302003005"


@pytest.mark.asyncio
async def test_password(mpesa_client):
    expected = base64.b64encode(b"174379test-passkey20240302003005").decode()
    assert mpesa_client.password("20240302003005") == expected


@pytest.mark.asyncio
async def test_stk_payload(mpesa_client):
    payload = mpesa_client.build_stk_payload(
        "254712345678",
        Decimal("999.99"),
        reference="Event-123456789",
        description="Payment for Nairobi Jazz Night",
        timestamp="20240302003005",
    )

    assert payload["Amount"] == 999
    assert payload["AccountReference"] == "Event-123456"
    assert payload["TransactionDesc"] == "Payment for N"
    assert payload["PartyA"] == payload["PhoneNumber"] == "254712345678"
    assert payload["PartyB"] == payload["BusinessShortCode"] == "174379"
    assert payload["TransactionType"] == "CustomerPayBillOnline"
    assert payload["CallBackURL"] == "https://ticketpay.test/api/v1/payments/mpesa-callback"


@pytest.mark.asyncio
async def test_initiate_charge(mpesa_client, daraja):
    daraja.checkout_ids.append("ws_CO_ABC123")

    charge = await _charge(mpesa_client)

    assert charge.checkout_request_id == "ws_CO_ABC123"
    assert charge.merchant_request_id == "29115-1"
    assert charge.customer_message.startswith("Success")

    sent = daraja.stk_requests[0]
    assert sent["headers"]["authorization"] == "Bearer token-1"
    assert sent["body"]["Amount"] == 1000


@pytest.mark.asyncio
async def test_initiate_charge_non_2xx(mpesa_client, daraja):
    daraja.stk_response = httpx.Response(500, json={"errorCode": "500.001.1001", "errorMessage": "Unable to lock subscriber"})

    with pytest.raises(GatewayError) as exc:
        await _charge(mpesa_client)

    assert exc.value.status_code == 500
    assert exc.value.payload["errorMessage"] == "Unable to lock subscriber"


@pytest.mark.asyncio
async def test_initiate_charge_401_drops_cached_token(mpesa_client, daraja):
    daraja.stk_response = httpx.Response(401, json={"errorMessage": "Invalid Access Token"})
    with pytest.raises(GatewayError):
        await _charge(mpesa_client)

    daraja.stk_response = None
    await _charge(mpesa_client)
    assert daraja.token_requests == 2


@pytest.mark.asyncio
async def test_initiate_charge_non_json(mpesa_client, daraja):
    daraja.stk_response = httpx.Response(200, text="<html>gateway timeout</html>")
    with pytest.raises(GatewayError, match="Malformed"):
        await _charge(mpesa_client)


@pytest.mark.asyncio
async def test_initiate_charge_without_checkout_id(mpesa_client, daraja):
    daraja.stk_response = httpx.Response(200, json={"ResponseCode": "0"})
    with pytest.raises(GatewayError, match="CheckoutRequestID"):
        await _charge(mpesa_client)


@pytest.mark.asyncio
async def test_initiate_charge_nonzero_response_code(mpesa_client, daraja):
    daraja.stk_response = httpx.Response(
        200,
        json={"CheckoutRequestID": "ws_CO_X", "ResponseCode": "1", "ResponseDescription": "Rejected"},
    )
    with pytest.raises(GatewayError, match="Rejected") as exc:
        await _charge(mpesa_client)
    assert exc.value.payload["ResponseCode"] == "1"


@pytest.mark.asyncio
async def test_network_error_is_not_retried(mpesa_settings):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        if request.url.path == "/oauth/v1/generate":
            return httpx.Response(200, json={"access_token": "t", "expires_in": 3599})
        raise httpx.ConnectTimeout("timed out", request=request)

    http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="https://sandbox.safaricom.co.ke")
    client = MpesaClient(mpesa_settings, http_client=http)

    with pytest.raises(GatewayError, match="timed out"):
        await _charge(client)
    assert calls.count("/mpesa/stkpush/v1/processrequest") == 1
    await http.aclose()
