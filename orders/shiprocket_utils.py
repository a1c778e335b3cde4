# orders/shiprocket_utils.py
import logging
import time
from decimal import Decimal, InvalidOperation

import requests
from django.conf import settings
from django.core.cache import cache

from .exceptions import (
    PickupRequestFailed,
    ShipmentCancelFailed,
    ShipmentCreateFailed,
    ShippingProviderError,
    TrackingUnavailable,
    WaybillAssignFailed,
)
from .razorpay_utils import compute_signature, signatures_match
from .types import CourierOption, ServiceabilityQuote, ShipmentRef, TrackingInfo, Waybill

logger = logging.getLogger(__name__)

TOKEN_CACHE_KEY = "shiprocket_auth_token"


def _decimal(value, default="0"):
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        return Decimal(default)


class ShiprocketAPI:
    """Shiprocket API client with a cached bearer token and retry on quotes"""

    def __init__(self, email=None, password=None, base_url=None, timeout=None):
        self.email = email or settings.SHIPROCKET_EMAIL
        self.password = password or settings.SHIPROCKET_API_PASSWORD
        self.base_url = (base_url or settings.SHIPROCKET_BASE_URL).strip().rstrip("/")
        self.timeout = timeout or settings.SHIPROCKET_TIMEOUT

    # ---------- auth ----------

    def _authenticate(self):
        """Log in and cache the token for SHIPROCKET_TOKEN_TTL seconds"""
        try:
            response = requests.post(
                f"{self.base_url}/auth/login",
                json={"email": self.email, "password": self.password},
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.error(f"Shiprocket auth error: {str(e)}")
            raise ShippingProviderError("Failed to authenticate with Shiprocket") from e

        token = data.get("token")
        if not token:
            logger.error("Shiprocket auth failed: no token in response")
            raise ShippingProviderError("Failed to authenticate with Shiprocket")

        cache.set(TOKEN_CACHE_KEY, token, settings.SHIPROCKET_TOKEN_TTL)
        logger.info("Shiprocket authentication successful")
        return token

    def get_token(self):
        return cache.get(TOKEN_CACHE_KEY) or self._authenticate()

    def get_headers(self):
        """Get authorized headers"""
        return {
            "Authorization": f"Bearer {self.get_token()}",
            "Content-Type": "application/json",
        }

    def _request(self, method, path, error_class, **kwargs):
        try:
            response = requests.request(
                method, f"{self.base_url}{path}", headers=self.get_headers(), timeout=self.timeout, **kwargs
            )
            response.raise_for_status()
            return response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.error(f"Shiprocket {method} {path} error: {str(e)}")
            raise error_class() from e

    # ---------- quotes ----------

    def check_serviceability(self, pickup_pincode, delivery_pincode, weight_kg, cod_amount=0):
        """
        Quote couriers for a route. Returns ``available=False`` when no courier
        serves it; raises ShippingProviderError when the provider cannot be asked.
        """
        params = {
            "pickup_postcode": pickup_pincode,
            "delivery_postcode": delivery_pincode,
            "weight": float(weight_kg),
            "cod": 1 if cod_amount else 0,
        }
        data = None
        for attempt in range(3):
            try:
                data = self._request("GET", "/courier/serviceability/", ShippingProviderError, params=params)
                break
            except ShippingProviderError:
                logger.warning(f"Serviceability check failed (attempt {attempt + 1})")
                if attempt == 2:
                    raise
                time.sleep(2 ** attempt)

        couriers = (data.get("data") or {}).get("available_courier_companies") or []
        if data.get("status") != 200 or not couriers:
            logger.warning(f"No courier companies available for {pickup_pincode} -> {delivery_pincode}")
            return ServiceabilityQuote(available=False)

        options = [
            CourierOption(
                courier_id=courier.get("courier_company_id"),
                name=courier.get("courier_name", ""),
                rate=_decimal(courier.get("rate")),
                etd=courier.get("etd"),
            )
            for courier in couriers
        ]
        # min() keeps the first of equal rates, i.e. provider order breaks ties
        cheapest = min(options, key=lambda option: option.rate)
        logger.info(f"Found {len(options)} shipping options, cheapest {cheapest.name} at {cheapest.rate}")
        return ServiceabilityQuote(
            available=True,
            cheapest_cost=cheapest.rate,
            etd=cheapest.etd,
            courier_id=cheapest.courier_id,
            courier_name=cheapest.name,
            all_options=options,
        )

    # ---------- shipments ----------

    def create_shipment(self, order_data):
        """Create an adhoc order; ``order_data`` is the provider payload"""
        data = self._request("POST", "/orders/create/adhoc", ShipmentCreateFailed, json=order_data)
        if not (data.get("order_id") and data.get("shipment_id")):
            logger.error(f"Shiprocket order creation failed: {data.get('message')}")
            raise ShipmentCreateFailed(data.get("message") or ShipmentCreateFailed.default_message)
        logger.info(f"Shiprocket order created: {data['order_id']}")
        return ShipmentRef(external_order_id=str(data["order_id"]), external_shipment_id=str(data["shipment_id"]))

    def get_available_couriers(self, shipment_id):
        """Couriers for an existing shipment; empty list on any error"""
        try:
            data = self._request("GET", f"/courier/courierListWithCounts/{shipment_id}", ShippingProviderError)
        except ShippingProviderError:
            return []
        couriers = (data.get("data") or {}).get("available_couriers_list") or []
        return [
            CourierOption(
                courier_id=courier.get("courier_company_id"),
                name=courier.get("courier_name", ""),
                rate=_decimal(courier.get("rate")),
                etd=courier.get("etd"),
            )
            for courier in couriers
        ]

    def assign_waybill(self, shipment_id, courier_id):
        data = self._request("POST", "/courier/assign/awb", WaybillAssignFailed, json={
            "shipment_id": shipment_id,
            "courier_id": courier_id,
        })
        payload = (data.get("response") or {}).get("data") or data
        if data.get("awb_assign_status") != 1 and payload.get("awb_assign_status") != 1:
            raise WaybillAssignFailed()
        return Waybill(awb_code=payload.get("awb_code"), courier_name=payload.get("courier_name"))

    def request_pickup(self, shipment_id):
        """Returns the scheduled pickup date string, if the provider gave one"""
        data = self._request("POST", "/courier/generate/pickup", PickupRequestFailed, json={
            "shipment_id": [shipment_id],
        })
        response = data.get("response") or {}
        return response.get("pickup_scheduled_date") or data.get("pickup_scheduled_date")

    def track_shipment(self, shipment_id):
        data = self._request("GET", f"/courier/track/shipment/{shipment_id}", TrackingUnavailable)
        tracking = data.get("tracking_data")
        if not tracking:
            raise TrackingUnavailable()
        shipment_track = (tracking.get("shipment_track") or [{}])[0]
        return TrackingInfo(
            status=shipment_track.get("current_status") or tracking.get("shipment_status"),
            history=tracking.get("shipment_track_activities") or [],
            eta=tracking.get("etd") or shipment_track.get("edd"),
            tracking_url=tracking.get("track_url"),
            awb_code=shipment_track.get("awb_code"),
            courier_name=shipment_track.get("courier_name"),
        )

    def cancel_shipment(self, awb_codes):
        self._request("POST", "/orders/cancel/shipment/awbs", ShipmentCancelFailed, json={"awbs": list(awb_codes)})
        logger.info(f"Shiprocket shipment(s) cancelled: {awb_codes}")
        return True


def verify_webhook_signature(payload, signature):
    """Verify a Shiprocket webhook body (raw bytes) using HMAC-SHA256"""
    secret = settings.SHIPROCKET_WEBHOOK_SECRET
    if not secret:
        logger.error("SHIPROCKET_WEBHOOK_SECRET is not configured")
        return False
    return signatures_match(compute_signature(secret, payload), signature)


def get_shipping_provider():
    return ShiprocketAPI()
