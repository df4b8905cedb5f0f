"""
Safaricom Daraja API client for M-Pesa Express (STK push).

Handles OAuth client-credential exchange, password derivation and the STK
push request. Every non-success outcome is raised as ProviderError.
"""
import base64
import logging
import time
from datetime import datetime
from typing import Optional, Dict, Any
from zoneinfo import ZoneInfo

import requests

from app.core import config
from app.core.errors import ConfigError, ProviderError
from app.core.logging_config import sanitize_log_data

logger = logging.getLogger(__name__)

DARAJA_BASE_URLS = {
    "sandbox": "https://sandbox.safaricom.co.ke",
    "production": "https://api.safaricom.co.ke",
}

OAUTH_PATH = "/oauth/v1/generate?grant_type=client_credentials"
STK_PUSH_PATH = "/mpesa/stkpush/v1/processrequest"
CALLBACK_PATH = "/mpesa-callback"

TRANSACTION_TYPE = "CustomerPayBillOnline"

# Refresh the cached token this many seconds before the provider expires it
TOKEN_EXPIRY_MARGIN_SECONDS = 60


def build_timestamp(now: Optional[datetime] = None) -> str:
    """Daraja timestamp: YYYYMMDDHHMMSS in the provider's local time."""
    if now is None:
        now = datetime.now(ZoneInfo(config.MPESA_TIMEZONE))
    return now.strftime("%Y%m%d%H%M%S")


def build_password(shortcode: str, passkey: str, timestamp: str) -> str:
    """STK push password: base64(shortcode + passkey + timestamp)."""
    raw = f"{shortcode}{passkey}{timestamp}".encode("utf-8")
    return base64.b64encode(raw).decode("ascii")


class MpesaClient:
    """Thin requests-based client for the Daraja endpoints used by STK push."""

    def __init__(
        self,
        consumer_key: str,
        consumer_secret: str,
        shortcode: str,
        passkey: str,
        callback_url: str,
        base_url: str = DARAJA_BASE_URLS["sandbox"],
        timeout: int = 30,
        session: Optional[requests.Session] = None,
    ):
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.shortcode = shortcode
        self.passkey = passkey
        self.callback_url = callback_url
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

        self._access_token: Optional[str] = None
        self._token_expires_at: float = 0.0

    @classmethod
    def from_config(cls, session: Optional[requests.Session] = None) -> "MpesaClient":
        """
        Build a client from environment configuration.
        
        Raises:
            ConfigError: If any credential or the callback base URL is missing
        """
        required = {
            "MPESA_CONSUMER_KEY": config.MPESA_CONSUMER_KEY,
            "MPESA_CONSUMER_SECRET": config.MPESA_CONSUMER_SECRET,
            "MPESA_SHORTCODE": config.MPESA_SHORTCODE,
            "MPESA_PASSKEY": config.MPESA_PASSKEY,
            "MPESA_CALLBACK_BASE_URL": config.MPESA_CALLBACK_BASE_URL,
        }
        for name, value in required.items():
            if not value:
                logger.error(f"Missing required environment variable: {name}")
                raise ConfigError(f"Missing configuration: {name}")

        base_url = DARAJA_BASE_URLS.get(config.MPESA_ENVIRONMENT.lower())
        if not base_url:
            raise ConfigError(f"Unknown MPESA_ENVIRONMENT: {config.MPESA_ENVIRONMENT}")

        return cls(
            consumer_key=config.MPESA_CONSUMER_KEY,
            consumer_secret=config.MPESA_CONSUMER_SECRET,
            shortcode=config.MPESA_SHORTCODE,
            passkey=config.MPESA_PASSKEY,
            callback_url=config.MPESA_CALLBACK_BASE_URL.rstrip("/") + CALLBACK_PATH,
            base_url=base_url,
            timeout=config.MPESA_TIMEOUT_SECONDS,
            session=session,
        )

    def get_access_token(self) -> str:
        """
        Obtain a bearer token via client-credential exchange.
        
        The token is reused until shortly before it expires.
        """
        if self._access_token and time.time() < self._token_expires_at:
            return self._access_token

        try:
            response = self.session.get(
                f"{self.base_url}{OAUTH_PATH}",
                auth=(self.consumer_key, self.consumer_secret),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"M-Pesa OAuth request failed: {e}")
            raise ProviderError("Failed to get M-Pesa authentication token") from e

        if not response.ok:
            logger.error(f"M-Pesa OAuth response not ok: status={response.status_code}")
            raise ProviderError("Failed to get M-Pesa authentication token")

        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"M-Pesa OAuth response is not JSON: {response.text[:200]}")
            raise ProviderError("Failed to get M-Pesa authentication token") from e

        token = data.get("access_token") if isinstance(data, dict) else None
        if not token:
            raise ProviderError("Failed to get M-Pesa authentication token")

        try:
            expires_in = int(data.get("expires_in", 3599))
        except (TypeError, ValueError):
            expires_in = 3599

        self._access_token = token
        self._token_expires_at = time.time() + max(0, expires_in - TOKEN_EXPIRY_MARGIN_SECONDS)
        return token

    def build_stk_payload(
        self,
        phone: str,
        amount: int,
        account_reference: str,
        description: str,
        timestamp: Optional[str] = None,
    ) -> Dict[str, Any]:
        timestamp = timestamp or build_timestamp()
        return {
            "BusinessShortCode": self.shortcode,
            "Password": build_password(self.shortcode, self.passkey, timestamp),
            "Timestamp": timestamp,
            "TransactionType": TRANSACTION_TYPE,
            "Amount": amount,
            "PartyA": phone,
            "PartyB": self.shortcode,
            "PhoneNumber": phone,
            "CallBackURL": self.callback_url,
            "AccountReference": account_reference,
            "TransactionDesc": description,
        }

    def stk_push(
        self,
        phone: str,
        amount: int,
        account_reference: str,
        description: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Send an STK push request.
        
        Args:
            phone: Payer phone in 254XXXXXXXXX format
            amount: Whole KES amount
            account_reference: Reference shown to the payer
            description: Transaction description
            
        Returns:
            Provider response (MerchantRequestID, CheckoutRequestID, ResponseCode, ...)
            
        Raises:
            ProviderError: On transport errors, non-2xx HTTP or ResponseCode != "0"
        """
        token = self.get_access_token()
        payload = self.build_stk_payload(
            phone=phone,
            amount=amount,
            account_reference=account_reference,
            description=description or f"Payment for {account_reference}",
        )
        logger.debug(f"STK push payload: {sanitize_log_data(payload)}")

        try:
            response = self.session.post(
                f"{self.base_url}{STK_PUSH_PATH}",
                json=payload,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"STK push request failed: {e}")
            raise ProviderError(f"STK Push failed: {e}") from e

        if not response.ok:
            logger.error(f"STK push response not ok: status={response.status_code}, body={response.text[:500]}")
            raise ProviderError(f"STK Push failed: {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"STK push response is not JSON: status={response.status_code}, body={response.text[:500]}")
            raise ProviderError("STK Push failed: unreadable provider response") from e
        if not isinstance(data, dict):
            raise ProviderError("STK Push failed: unreadable provider response")

        response_code = str(data.get("ResponseCode"))
        if response_code != "0":
            raise ProviderError(
                f"STK Push failed: {data.get('ResponseDescription') or 'unknown provider error'}",
                response_code=response_code,
            )

        if not data.get("CheckoutRequestID") or not data.get("MerchantRequestID"):
            raise ProviderError("STK Push failed: response is missing request identifiers", response_code=response_code)

        return data
