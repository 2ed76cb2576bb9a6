# Overview: HTTP client for the MTN MoMo collection API (request-to-pay and status polling).

from __future__ import annotations

import base64
import logging
import re
import threading
import time
import uuid
from decimal import Decimal

import httpx
from flask import current_app

from ..errors import BadRequestError, PaymentGatewayError

logger = logging.getLogger(__name__)

# Refresh the token this many seconds before the gateway says it expires
TOKEN_EXPIRY_MARGIN = 60
DEFAULT_TOKEN_TTL = 3600


def sanitize_phone_number(phone_number: str) -> str:
    """
    Normalize a Rwandan MSISDN to 250XXXXXXXXX.

    '0788 123 456', '+250788123456' and '788123456' all become
    '250788123456'. Anything that is not 12 digits afterwards is rejected.
    """
    digits = re.sub(r"\D", "", phone_number or "")
    if digits.startswith("0"):
        digits = "250" + digits[1:]
    elif not digits.startswith("250"):
        digits = "250" + digits
    if len(digits) != 12:
        raise BadRequestError(
            f"Invalid phone number format. Expected Rwanda number (e.g., 250788123456), got: {phone_number}"
        )
    return digits


class MtnMomoClient:
    """
    Thin client over the collection API.

    Token handling: one OAuth token is cached per client instance and shared
    across threads; it is refreshed TOKEN_EXPIRY_MARGIN seconds early.

    Every transport or HTTP failure leaves this class as PaymentGatewayError
    with a status the route can return as-is.
    """

    def __init__(
        self,
        *,
        api_url: str,
        api_user: str,
        api_key: str,
        primary_key: str,
        callback_url: str = "",
        environment: str = "sandbox",
        currency: str = "RWF",
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.api_user = api_user
        self.api_key = api_key
        self.primary_key = primary_key
        self.callback_url = callback_url
        self.environment = environment
        self.currency = currency
        self.timeout = timeout
        self._transport = transport
        self._token: str | None = None
        self._token_expires_at = 0.0
        self._token_lock = threading.Lock()

        missing = [
            name
            for name, value in (
                ("MOMO_API_USER", api_user),
                ("MOMO_API_KEY", api_key),
                ("MOMO_PRIMARY_KEY", primary_key),
                ("MOMO_CALLBACK_URL", callback_url),
            )
            if not value
        ]
        if missing:
            logger.warning("Missing MTN MoMo configuration: %s. Payment processing will fail.", ", ".join(missing))

    @classmethod
    def from_config(cls, config, *, transport: httpx.BaseTransport | None = None) -> "MtnMomoClient":
        return cls(
            api_url=config.get("MOMO_API_URL") or "https://sandbox.momodeveloper.mtn.com",
            api_user=config.get("MOMO_API_USER", ""),
            api_key=config.get("MOMO_API_KEY", ""),
            primary_key=config.get("MOMO_PRIMARY_KEY", ""),
            callback_url=config.get("MOMO_CALLBACK_URL", ""),
            environment=config.get("MOMO_ENVIRONMENT", "sandbox"),
            currency=config.get("MOMO_CURRENCY", "RWF"),
            timeout=float(config.get("MOMO_TIMEOUT_SECONDS", 30)),
            transport=transport,
        )

    def is_configured(self) -> bool:
        return bool(self.api_user and self.api_key and self.primary_key and self.callback_url)

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.api_url,
            timeout=self.timeout,
            transport=self._transport,
            headers={
                "Content-Type": "application/json",
                "Ocp-Apim-Subscription-Key": self.primary_key,
            },
        )

    # -------------------------------------------------------------------------
    # Auth
    # -------------------------------------------------------------------------

    def _get_access_token(self) -> str:
        with self._token_lock:
            if self._token and self._token_expires_at > time.monotonic():
                return self._token

            credentials = base64.b64encode(f"{self.api_user}:{self.api_key}".encode()).decode()
            try:
                with self._client() as client:
                    response = client.post(
                        "/collection/token/",
                        headers={"Authorization": f"Basic {credentials}"},
                    )
                    response.raise_for_status()
                    data = response.json()
            except (httpx.HTTPError, ValueError) as exc:
                logger.error("Failed to obtain MTN MoMo access token: %s", exc)
                raise PaymentGatewayError("Failed to authenticate with MTN MoMo", status_code=502)

            token = data.get("access_token")
            if not token:
                raise PaymentGatewayError("Failed to authenticate with MTN MoMo", status_code=502)
            expires_in = int(data.get("expires_in") or DEFAULT_TOKEN_TTL)
            self._token = token
            self._token_expires_at = time.monotonic() + max(expires_in - TOKEN_EXPIRY_MARGIN, 0)
            logger.info("MTN MoMo access token obtained")
            return token

    # -------------------------------------------------------------------------
    # Collection API
    # -------------------------------------------------------------------------

    def request_to_pay(
        self,
        amount: Decimal,
        phone_number: str,
        external_id: str,
        payer_message: str | None = None,
        payee_note: str | None = None,
    ) -> str:
        """Start a charge; returns the X-Reference-Id used to track it."""
        msisdn = sanitize_phone_number(phone_number)
        logger.info("Initiating MTN MoMo payment: %s %s for %s", amount, self.currency, msisdn)

        token = self._get_access_token()
        reference_id = str(uuid.uuid4())
        payload = {
            "amount": str(amount),
            "currency": self.currency,
            "externalId": external_id,
            "payer": {"partyIdType": "MSISDN", "partyId": msisdn},
            "payerMessage": payer_message or "Invoice Payment",
            "payeeNote": payee_note or f"Payment for invoice {external_id}",
        }
        headers = {
            "Authorization": f"Bearer {token}",
            "X-Reference-Id": reference_id,
            "X-Target-Environment": self.environment,
        }
        if self.callback_url:
            headers["X-Callback-Url"] = self.callback_url

        try:
            with self._client() as client:
                response = client.post("/collection/v1_0/requesttopay", json=payload, headers=headers)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("MTN MoMo request to pay failed: %s", exc)
            raise self._map_error(exc)

        logger.info("MTN MoMo payment initiated. Reference ID: %s", reference_id)
        return reference_id

    def get_transaction_status(self, reference_id: str) -> dict:
        """
        Poll a request-to-pay.

        Returns the gateway body, e.g.
        {"status": "SUCCESSFUL", "amount": "1000", "financialTransactionId": ...}
        """
        token = self._get_access_token()
        try:
            with self._client() as client:
                response = client.get(
                    f"/collection/v1_0/requesttopay/{reference_id}",
                    headers={
                        "Authorization": f"Bearer {token}",
                        "X-Target-Environment": self.environment,
                    },
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as exc:
            logger.error("Failed to check transaction status for %s: %s", reference_id, exc)
            raise self._map_error(exc)
        except ValueError:
            raise PaymentGatewayError("MTN MoMo returned an unreadable status response")

        logger.info("Transaction %s status: %s", reference_id, data.get("status"))
        return data

    @staticmethod
    def _map_error(exc: httpx.HTTPError) -> PaymentGatewayError:
        if isinstance(exc, httpx.HTTPStatusError):
            status = exc.response.status_code
            try:
                message = (exc.response.json() or {}).get("message")
            except ValueError:
                message = None
            if status == 400:
                return PaymentGatewayError(
                    message or "Invalid payment request. Please check payment details.", status_code=400
                )
            if status == 401:
                return PaymentGatewayError("MTN MoMo authentication failed", status_code=401)
            if status == 409:
                return PaymentGatewayError("Duplicate transaction reference", status_code=400)
            if status >= 500:
                return PaymentGatewayError("MTN MoMo service is temporarily unavailable", status_code=503)
            return PaymentGatewayError(f"MTN MoMo error: {message or 'Unknown error'}", status_code=502)
        if isinstance(exc, httpx.TimeoutException):
            return PaymentGatewayError("Payment request timeout. Please try again.", status_code=504)
        if isinstance(exc, httpx.ConnectError):
            return PaymentGatewayError("Cannot connect to MTN MoMo service", status_code=503)
        return PaymentGatewayError("Payment processing failed. Please try again later.", status_code=502)


def get_gateway():
    """
    The app's gateway client, built lazily from config.

    Tests replace it by assigning app.extensions["momo_gateway"].
    """
    gateway = current_app.extensions.get("momo_gateway")
    if gateway is None:
        gateway = MtnMomoClient.from_config(current_app.config)
        current_app.extensions["momo_gateway"] = gateway
    return gateway
