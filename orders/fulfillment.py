# orders/fulfillment.py
"""
Payment verification and shipment booking.

A verified payment is durable: the PAID/SUCCESS flip commits before any call
to the logistics provider, and nothing that happens during booking can undo it.
Booking failures are captured in a BookingOutcome for the caller to report.
"""
import logging
from datetime import datetime

from django.conf import settings
from django.db import transaction
from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime

from .exceptions import Forbidden, NotFound, PaymentVerificationFailed, ShippingProviderError, ValidationError
from .models import Order, OrderStatus, Payment, PaymentStatus, ShipmentStatus, ShippingDetail
from .notifications import notify_order_paid
from .razorpay_utils import get_payment_gateway
from .shiprocket_utils import get_shipping_provider
from .types import BookingOutcome, PaymentVerification

logger = logging.getLogger(__name__)


def parse_provider_datetime(value):
    """Parse the date/datetime strings the providers send; None if unreadable"""
    if not value:
        return None
    value = str(value)
    parsed = parse_datetime(value) or parse_datetime(value.replace(" ", "T", 1))
    if parsed is None:
        day = parse_date(value[:10])
        if day is None:
            return None
        parsed = datetime(day.year, day.month, day.day)
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed, timezone.get_default_timezone())
    return parsed


def mark_paid(payment_id, external_payment_id, signature=None):
    """
    Flip Payment to SUCCESS and its Order to PAID in one transaction.

    Returns the order when this call performed the flip, None when the payment
    had already left PENDING (another path got there first).
    """
    with transaction.atomic():
        payment = Payment.objects.select_for_update().get(pk=payment_id)
        if payment.status != PaymentStatus.PENDING:
            return None
        order = Order.objects.select_for_update().get(pk=payment.order_id)

        payment.external_payment_id = external_payment_id
        if signature:
            payment.external_signature = signature
        payment.status = PaymentStatus.SUCCESS
        payment.save(update_fields=["external_payment_id", "external_signature", "status", "updated_at"])

        order.status = OrderStatus.PAID
        order.save(update_fields=["status", "updated_at"])

    logger.info(f"Payment verified for Order #{order.id}")
    return order


def mark_failed(payment_id, external_payment_id=None):
    """Mark a still-PENDING payment as FAILED; returns True if it changed"""
    updates = {"status": PaymentStatus.FAILED, "updated_at": timezone.now()}
    if external_payment_id:
        updates["external_payment_id"] = external_payment_id
    return bool(
        Payment.objects.filter(pk=payment_id, status=PaymentStatus.PENDING).update(**updates)
    )


def verify_payment(user, order_id, external_payment_id, external_order_id, signature, gateway=None, shipping=None):
    """Verify a checkout callback and book the shipment; returns PaymentVerification"""
    if not all([order_id, external_payment_id, external_order_id, signature]):
        raise ValidationError("Missing payment verification details")

    order = Order.objects.filter(pk=order_id).select_related("payment").first()
    if order is None:
        raise NotFound("Order not found")
    if order.user_id != user.pk:
        raise Forbidden()

    payment = order.payment
    if payment.status in (PaymentStatus.SUCCESS, PaymentStatus.REFUNDED, PaymentStatus.PARTIALLY_REFUNDED):
        return PaymentVerification(order=order, already_verified=True)
    if payment.status != PaymentStatus.PENDING:
        raise PaymentVerificationFailed(f"Payment is {payment.status.lower()} and cannot be verified")

    gateway = gateway or get_payment_gateway()
    # Sign the stored intent id so a valid triple from another intent cannot be replayed here
    if external_order_id != payment.external_order_id or not gateway.verify_signature(
        payment.external_order_id, external_payment_id, signature
    ):
        # The payment id is unverified here and may belong to another payment
        mark_failed(payment.pk)
        logger.warning(f"Signature mismatch for Order #{order.id}")
        raise PaymentVerificationFailed()

    paid_order = mark_paid(payment.pk, external_payment_id, signature)
    if paid_order is None:
        # Webhook flipped it between our read and our lock
        order.refresh_from_db()
        return PaymentVerification(order=order, already_verified=True)

    booking = book_shipment(paid_order, shipping=shipping)
    notify_order_paid(paid_order)
    return PaymentVerification(order=paid_order, booking=booking)


def build_shipment_payload(order):
    """Shiprocket adhoc-order payload built from the order snapshot"""
    user = order.user
    address = order.shipping_address
    names = (user.get_full_name() or user.get_username()).split(" ")

    return {
        "order_id": str(order.id),
        "order_date": order.created_at.strftime("%Y-%m-%d %H:%M"),
        "pickup_location": settings.SHIPROCKET_PICKUP_LOCATION,
        "billing_customer_name": names[0] or "Customer",
        "billing_last_name": " ".join(names[1:]),
        "billing_address": address.street,
        "billing_city": address.city,
        "billing_pincode": address.pincode,
        "billing_state": address.state,
        "billing_country": address.country or "India",
        "billing_email": user.email,
        "billing_phone": address.phone_number or "0000000000",
        "shipping_is_billing": True,
        "order_items": [
            {
                "name": item.name[:100],
                "sku": f"SKU_{item.product_id}",
                "units": item.quantity,
                "selling_price": float(item.price_at_purchase),
            }
            for item in order.items.all()
        ],
        "payment_method": "Prepaid",
        "sub_total": float(order.subtotal_amount),
        "length": float(order.length_cm or 10),
        "breadth": float(order.breadth_cm or 10),
        "height": float(order.height_cm or 10),
        "weight": float(order.weight_kg or 0.5),
    }


def book_shipment(order, shipping=None):
    """
    Create shipment -> pick cheapest courier -> assign AWB -> request pickup.

    Never raises for provider failures: the outcome records which step failed.
    The shipping detail is saved as soon as the provider has a shipment for
    the order, so a later AWB failure does not orphan the remote shipment.
    """
    existing = ShippingDetail.objects.filter(order=order).first()
    if existing:
        logger.info(f"Shipment already exists for Order #{order.id}")
        return BookingOutcome(booked=existing.current_status != ShipmentStatus.PENDING, shipping_detail=existing)

    shipping = shipping or get_shipping_provider()
    step = "create_shipment"
    detail = None
    try:
        ref = shipping.create_shipment(build_shipment_payload(order))
        detail = ShippingDetail.objects.create(
            order=order,
            external_order_id=ref.external_order_id,
            external_shipment_id=ref.external_shipment_id,
            current_status=ShipmentStatus.PENDING,
        )

        step = "assign_waybill"
        couriers = shipping.get_available_couriers(ref.external_shipment_id)
        selected = min(couriers, key=lambda courier: courier.rate) if couriers else None
        if selected:
            waybill = shipping.assign_waybill(ref.external_shipment_id, selected.courier_id)
            detail.awb_code = waybill.awb_code
            detail.courier_name = waybill.courier_name or selected.name

            step = "request_pickup"
            try:
                detail.pickup_scheduled_date = parse_provider_datetime(
                    shipping.request_pickup(ref.external_shipment_id)
                )
            except ShippingProviderError as e:
                logger.warning(f"Pickup request failed for Order #{order.id}: {str(e)}")

        detail.current_status = ShipmentStatus.PROCESSING
        detail.save()
        logger.info(f"Shipment booked for Order #{order.id}: AWB {detail.awb_code}")
        return BookingOutcome(booked=True, shipping_detail=detail)

    except (ShippingProviderError, KeyError, TypeError, ValueError) as e:
        # Provider timeouts arrive as ShippingProviderError; payment stays PAID either way
        logger.error(f"Shipment booking failed for Order #{order.id} at {step}: {str(e)}", exc_info=True)
        return BookingOutcome(booked=False, shipping_detail=detail, failed_step=step, error=str(e))
