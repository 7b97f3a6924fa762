"""
M-Pesa (Daraja) STK Push client.

One instance is built per process in the application lifespan and injected
into the payment routes. It keeps the OAuth access token in memory until
shortly before it expires; everything else is a plain remote call.

Charge initiation is never retried here. After a timeout we cannot tell
"Safaricom never saw the request" from "the customer is looking at the PIN
prompt right now", and a second push could charge them twice. The caller
reports the failure and the user decides whether to try again.
"""

import asyncio
import base64
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import ROUND_FLOOR, Decimal
from typing import Any, Optional

import httpx

from ticketpay.core.config import Settings
from ticketpay.core.logging import get_logger
from ticketpay.core.metrics import gateway_latency

logger = get_logger(__name__)

# Daraja timestamps are East Africa Time, which has no DST
EAT = timezone(timedelta(hours=3), "EAT")

TOKEN_PATH = "/oauth/v1/generate"
STK_PUSH_PATH = "/mpesa/stkpush/v1/processrequest"


class GatewayError(Exception):
    """STK push could not be started. `payload` is the provider's raw error body, if any."""

    def __init__(self, message: str, payload: Any = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.payload = payload
        self.status_code = status_code


@dataclass(frozen=True)
class ChargeInitiated:
    checkout_request_id: str
    merchant_request_id: Optional[str] = None
    customer_message: Optional[str] = None
    raw: dict = field(default_factory=dict)


def _error_payload(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class MpesaClient:

    def __init__(self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self._http = http_client or httpx.AsyncClient(base_url=settings.mpesa_base_url)
        self._owns_http = http_client is None
        self._access_token: Optional[str] = None
        self._token_expires_at = 0.0
        self._token_lock = asyncio.Lock()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    # ---------------------------------------------------------------- auth

    def _token_is_fresh(self) -> bool:
        margin = self.settings.MPESA_TOKEN_REFRESH_MARGIN
        return self._access_token is not None and time.monotonic() < self._token_expires_at - margin

    async def get_access_token(self) -> str:
        if self._token_is_fresh():
            return self._access_token
        async with self._token_lock:
            # another task may have refreshed while we waited
            if self._token_is_fresh():
                return self._access_token
            return await self.refresh_access_token()

    async def refresh_access_token(self) -> str:
        key = self.settings.MPESA_CONSUMER_KEY
        secret = self.settings.MPESA_CONSUMER_SECRET
        if not key or not secret:
            raise GatewayError("M-Pesa credentials are not configured")

        logger.info("mpesa_token_requested", consumer_key_suffix=key[-4:])
        started = time.perf_counter()
        try:
            response = await self._http.get(
                TOKEN_PATH,
                params={"grant_type": "client_credentials"},
                auth=(key, secret),
                timeout=self.settings.MPESA_TOKEN_TIMEOUT,
            )
        except httpx.HTTPError as e:
            logger.error("mpesa_token_unreachable", error=str(e))
            raise GatewayError(f"Failed to get M-Pesa access token: {e}") from e
        finally:
            gateway_latency.labels(endpoint="token").observe(time.perf_counter() - started)

        if response.is_error:
            payload = _error_payload(response)
            logger.error("mpesa_token_rejected", status_code=response.status_code, payload=payload)
            raise GatewayError(
                "Failed to get M-Pesa access token",
                payload=payload,
                status_code=response.status_code,
            )

        try:
            body = response.json()
            token = body["access_token"]
            expires_in = int(body.get("expires_in", 3599))
        except (ValueError, KeyError, TypeError) as e:
            raise GatewayError("Malformed M-Pesa token response", payload=response.text) from e

        self._access_token = token
        self._token_expires_at = time.monotonic() + expires_in
        logger.info("mpesa_token_refreshed", expires_in=expires_in)
        return token

    # ---------------------------------------------------------------- stk push

    @staticmethod
    def timestamp(now: Optional[datetime] = None) -> str:
        return (now or datetime.now(EAT)).astimezone(EAT).strftime("%Y%m%d%H%M%S")

    def password(self, timestamp: str) -> str:
        raw = f"{self.settings.MPESA_SHORTCODE}{self.settings.MPESA_PASSKEY}{timestamp}"
        return base64.b64encode(raw.encode()).decode()

    def build_stk_payload(
        self,
        phone: str,
        amount: Decimal,
        reference: str,
        description: str,
        timestamp: str,
    ) -> dict:
        shortcode = self.settings.MPESA_SHORTCODE
        return {
            "BusinessShortCode": shortcode,
            "Password": self.password(timestamp),
            "Timestamp": timestamp,
            "TransactionType": self.settings.MPESA_TRANSACTION_TYPE,
            # M-Pesa only takes whole shillings
            "Amount": int(Decimal(amount).to_integral_value(rounding=ROUND_FLOOR)),
            "PartyA": phone,
            "PartyB": shortcode,
            "PhoneNumber": phone,
            "CallBackURL": self.settings.MPESA_CALLBACK_URL,
            "AccountReference": reference[:12],
            "TransactionDesc": description[:13],
        }

    async def initiate_charge(
        self,
        phone: str,
        amount: Decimal,
        reference: str,
        description: str,
    ) -> ChargeInitiated:
        """
        Send an STK push to `phone` and return the CheckoutRequestID the
        callback will carry. Raises GatewayError on any failure.
        """
        token = await self.get_access_token()
        payload = self.build_stk_payload(phone, amount, reference, description, self.timestamp())

        logger.info(
            "mpesa_stk_push_started",
            phone=phone,
            amount=payload["Amount"],
            reference=payload["AccountReference"],
        )
        started = time.perf_counter()
        try:
            response = await self._http.post(
                STK_PUSH_PATH,
                json=payload,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.settings.MPESA_STK_TIMEOUT,
            )
        except httpx.HTTPError as e:
            logger.error("mpesa_stk_push_unreachable", error=str(e))
            raise GatewayError(f"Failed to initiate M-Pesa payment: {e}") from e
        finally:
            gateway_latency.labels(endpoint="stkpush").observe(time.perf_counter() - started)

        if response.is_error:
            error = _error_payload(response)
            logger.error("mpesa_stk_push_rejected", status_code=response.status_code, payload=error)
            if response.status_code == 401:
                # drop the cached token so the user's retry fetches a new one
                self._access_token = None
            raise GatewayError(
                "M-Pesa rejected the payment request",
                payload=error,
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise GatewayError("Malformed M-Pesa response", payload=response.text) from e

        if not isinstance(body, dict) or not body.get("CheckoutRequestID"):
            raise GatewayError("M-Pesa response carried no CheckoutRequestID", payload=body)
        if str(body.get("ResponseCode", "0")) != "0":
            raise GatewayError(
                body.get("ResponseDescription") or "M-Pesa declined the payment request",
                payload=body,
            )

        logger.info(
            "mpesa_stk_push_accepted",
            checkout_request_id=body["CheckoutRequestID"],
            merchant_request_id=body.get("MerchantRequestID"),
        )
        return ChargeInitiated(
            checkout_request_id=body["CheckoutRequestID"],
            merchant_request_id=body.get("MerchantRequestID"),
            customer_message=body.get("CustomerMessage"),
            raw=body,
        )
