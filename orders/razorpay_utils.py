# orders/razorpay_utils.py
import hashlib
import hmac
import logging
import time
import uuid
from decimal import Decimal, ROUND_HALF_UP

import requests
from django.conf import settings

from .exceptions import GatewayRejected, GatewayUnavailable
from .types import GatewayRefund

logger = logging.getLogger(__name__)


def to_minor_units(amount):
    """Convert a decimal major-unit amount to integer minor units (paise)"""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount):
    return (Decimal(int(amount)) / 100).quantize(Decimal("0.01"))


def compute_signature(secret, message):
    """HMAC-SHA256 hex digest of ``message`` (str or bytes) with ``secret``"""
    if isinstance(message, str):
        message = message.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def signatures_match(expected, received):
    if not received:
        return False
    return hmac.compare_digest(expected, str(received))


def generate_idempotency_key(user_id):
    """Server-side idempotency key for checkouts that do not supply one"""
    return f"{user_id}_{int(time.time() * 1000)}_{uuid.uuid4()}"


class RazorpayAPI:
    """Razorpay REST client: order creation, signature checks and refunds"""

    def __init__(self, key_id=None, key_secret=None, base_url=None, timeout=None):
        self.key_id = key_id if key_id is not None else settings.RAZORPAY_KEY_ID
        self.key_secret = key_secret if key_secret is not None else settings.RAZORPAY_KEY_SECRET
        self.base_url = (base_url or settings.RAZORPAY_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.RAZORPAY_TIMEOUT

    @property
    def public_key(self):
        return self.key_id

    def _request(self, method, path, **kwargs):
        url = f"{self.base_url}{path}"
        try:
            response = requests.request(
                method, url, auth=(self.key_id, self.key_secret), timeout=self.timeout, **kwargs
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Razorpay {method} {path} transport error: {str(e)}")
            raise GatewayUnavailable(f"Payment gateway unreachable: {e.__class__.__name__}") from e

        if response.status_code >= 500:
            logger.error(f"Razorpay {method} {path} returned {response.status_code}")
            raise GatewayUnavailable(f"Payment gateway error ({response.status_code})")

        try:
            data = response.json()
        except ValueError as e:
            raise GatewayUnavailable("Payment gateway returned an unreadable response") from e

        if response.status_code >= 400:
            description = (data.get("error") or {}).get("description") or "Request rejected"
            logger.error(f"Razorpay {method} {path} rejected: {description}")
            raise GatewayRejected(description)

        return data

    def create_intent(self, amount_minor_units, currency, metadata):
        """Create a remote payment order; returns its id"""
        data = self._request("POST", "/orders", json={
            "amount": int(amount_minor_units),
            "currency": currency,
            "receipt": f"receipt_{int(time.time() * 1000)}",
            "notes": {key: str(value) for key, value in (metadata or {}).items()},
        })
        if not data.get("id"):
            raise GatewayUnavailable("Payment gateway did not return an order id")
        logger.info(f"Razorpay order created: {data['id']}")
        return data["id"]

    def verify_signature(self, external_order_id, external_payment_id, signature):
        """Local check of the checkout signature; never raises on mismatch"""
        expected = compute_signature(self.key_secret, f"{external_order_id}|{external_payment_id}")
        return signatures_match(expected, signature)

    def issue_refund(self, external_payment_id, amount_minor_units, notes=None):
        data = self._request("POST", f"/payments/{external_payment_id}/refund", json={
            "amount": int(amount_minor_units),
            "speed": "normal",
            "notes": {key: str(value) for key, value in (notes or {}).items()},
        })
        if not data.get("id"):
            raise GatewayRejected("Payment gateway did not return a refund id")
        logger.info(f"Razorpay refund created: {data['id']} ({data.get('status')})")
        return GatewayRefund(external_refund_id=data["id"], remote_status=data.get("status", ""))

    def fetch_refund_status(self, external_payment_id, external_refund_id):
        data = self._request("GET", f"/payments/{external_payment_id}/refunds/{external_refund_id}")
        return data.get("status", "")


def verify_webhook_signature(payload, signature):
    """Verify a Razorpay webhook body (raw bytes) using HMAC-SHA256"""
    secret = settings.RAZORPAY_WEBHOOK_SECRET
    if not secret:
        logger.error("RAZORPAY_WEBHOOK_SECRET is not configured")
        return False
    return signatures_match(compute_signature(secret, payload), signature)


def get_payment_gateway():
    return RazorpayAPI()
