"""
Razorpay client: order creation and signature checks.

Orders are created through the REST Orders API with HTTP basic auth. Checkout
callbacks and webhooks are authenticated with HMAC-SHA256 signatures.
"""

import hashlib
import hmac
import logging
from typing import Any, Dict, Optional

import requests
from requests.auth import HTTPBasicAuth
from django.conf import settings

logger = logging.getLogger(__name__)


class GatewayError(Exception):
    """Base class for Razorpay client failures."""
    pass


class GatewayUnavailableError(GatewayError):
    """Timeout, connection error or 5xx. Retrying later may succeed."""
    pass


class GatewayRejectedError(GatewayError):
    """The gateway refused the request (4xx). Retrying will not help."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def create_order(
    amount: int,
    currency: str,
    receipt: str,
    notes: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Create a Razorpay order.

    Args:
        amount: Amount in minor units (paise)
        currency: ISO currency code
        receipt: Merchant receipt, ``booking_<id>``
        notes: Free-form key/value pairs stored with the order

    Returns:
        The order document returned by Razorpay (``id``, ``amount``, ``status``...)

    Raises:
        GatewayUnavailableError: On timeout, connection failure or 5xx
        GatewayRejectedError: On a 4xx answer
    """
    if not settings.RAZORPAY_KEY_ID or not settings.RAZORPAY_KEY_SECRET:
        raise GatewayRejectedError("Razorpay credentials are not configured")

    payload = {
        "amount": amount,
        "currency": currency,
        "receipt": receipt,
        "partial_payment": False,
        "notes": notes or {},
    }

    try:
        response = requests.post(
            f"{settings.RAZORPAY_API_URL.rstrip('/')}/orders",
            json=payload,
            auth=HTTPBasicAuth(settings.RAZORPAY_KEY_ID, settings.RAZORPAY_KEY_SECRET),
            timeout=settings.PAYMENT_GATEWAY_TIMEOUT_SECONDS,
        )
    except requests.RequestException as e:
        logger.warning("Razorpay order request for %s failed: %s", receipt, e)
        raise GatewayUnavailableError(str(e)) from e

    if response.status_code >= 500:
        logger.warning("Razorpay returned %s for %s", response.status_code, receipt)
        raise GatewayUnavailableError(f"Razorpay error {response.status_code}")

    if response.status_code >= 400:
        logger.error("Razorpay rejected order %s: %s", receipt, response.text)
        raise GatewayRejectedError(_error_description(response), response.status_code)

    try:
        order = response.json()
    except ValueError as e:
        raise GatewayUnavailableError("Razorpay returned an unreadable response") from e

    if not order.get("id"):
        raise GatewayUnavailableError("Razorpay response did not include an order id")

    logger.info("Razorpay order %s created for %s", order["id"], receipt)
    return order


def _error_description(response) -> str:
    try:
        return response.json()["error"]["description"]
    except (ValueError, KeyError, TypeError):
        return f"Razorpay error {response.status_code}"


def _hmac_hexdigest(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def verify_checkout_signature(order_id: str, payment_id: str, signature: str) -> bool:
    """Check the ``razorpay_signature`` sent back by the checkout widget."""
    if not signature or not settings.RAZORPAY_KEY_SECRET:
        return False
    expected = _hmac_hexdigest(
        settings.RAZORPAY_KEY_SECRET, f"{order_id}|{payment_id}".encode()
    )
    return hmac.compare_digest(expected, signature)


def verify_webhook_signature(body: bytes, signature: str) -> bool:
    """Check the ``X-Razorpay-Signature`` header against the raw request body."""
    if not signature or not settings.RAZORPAY_WEBHOOK_SECRET:
        return False
    expected = _hmac_hexdigest(settings.RAZORPAY_WEBHOOK_SECRET, body)
    return hmac.compare_digest(expected, signature)
