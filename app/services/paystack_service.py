"""
Paystack Service - webhook signature verification and transaction initialization.
"""

import hashlib
import hmac
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional

import httpx

from app.config import settings
from app.exceptions import GatewayError

logger = logging.getLogger(__name__)

# Header Paystack signs webhook deliveries with
SIGNATURE_HEADER = "x-paystack-signature"


def compute_signature(raw_body: bytes, secret: str) -> str:
    """HMAC-SHA512 of the raw request body, lowercase hex."""
    return hmac.new(
        secret.encode("utf-8"),
        msg=raw_body,
        digestmod=hashlib.sha512,
    ).hexdigest()


def verify_paystack_signature(raw_body: bytes, signature: Optional[str], secret: str) -> bool:
    """
    Verify a Paystack webhook signature.

    Must run on the exact bytes received; re-serialized JSON will not match.
    An unset secret rejects everything.
    """
    if not signature:
        return False
    if not secret:
        logger.error("Paystack secret key not configured; rejecting webhook")
        return False

    expected = compute_signature(raw_body, secret)
    # bytes so a non-ASCII header can't raise inside compare_digest
    return hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8"))


def to_minor_units(amount: Decimal) -> int:
    """Convert a major-unit amount to kobo/cents."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PaystackService:
    """Client for the Paystack transaction API."""

    def __init__(
        self,
        secret_key: str,
        base_url: str = "https://api.paystack.co",
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def verify_signature(self, raw_body: bytes, signature: Optional[str]) -> bool:
        return verify_paystack_signature(raw_body, signature, self.secret_key)

    async def initialize_transaction(
        self,
        email: str,
        amount: Decimal,
        callback_url: str,
        reference: Optional[str] = None,
        currency: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, str]:
        """
        Initialize a redirect payment.

        Returns authorization_url, access_code and reference.
        Raises GatewayError when Paystack refuses or answers garbage.
        """
        url = f"{self.base_url}/transaction/initialize"
        headers = {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }
        payload: Dict[str, Any] = {
            "email": email,
            "amount": to_minor_units(amount),
            "callback_url": callback_url,
            "metadata": metadata or {},
        }
        if reference:
            payload["reference"] = reference
        if currency:
            payload["currency"] = currency.upper()

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            logger.error("Paystack initialize timeout")
            raise GatewayError("Paystack request timed out") from e
        except httpx.HTTPError as e:
            logger.error(f"Paystack initialize transport error: {e}")
            raise GatewayError("Could not reach Paystack") from e

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        if response.status_code != 200:
            logger.error(f"Paystack HTTP error: {response.status_code} {response.text}")
            raise GatewayError(data.get("message") or "Failed to initialize Paystack payment")

        body = data.get("data") or {}
        if not data.get("status") or not body.get("authorization_url") or not body.get("reference"):
            logger.error(f"Invalid Paystack initialize response: {data}")
            raise GatewayError("Invalid response from Paystack")

        logger.info(f"Paystack transaction initialized: {body['reference']}")
        return {
            "authorization_url": body["authorization_url"],
            "access_code": body.get("access_code", ""),
            "reference": body["reference"],
        }


def get_paystack_service() -> PaystackService:
    """Build a PaystackService from settings (FastAPI dependency)."""
    return PaystackService(
        secret_key=settings.paystack_secret_key,
        base_url=settings.paystack_base_url,
        timeout=settings.paystack_timeout_seconds,
    )
