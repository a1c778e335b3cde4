# orders/reconciliation.py
"""
Webhook reconciliation for both providers.

Deliveries are at-least-once, so every handler here is safe to replay: history
entries are de-duplicated, status writes are conditional, and payment flips go
through the same locked ``mark_paid``/``mark_failed`` used by verify-payment.
"""
import logging

from django.db import transaction
from django.utils import timezone

from .exceptions import Conflict, NotFound
from .fulfillment import book_shipment, mark_failed, mark_paid, parse_provider_datetime
from .lifecycle import transition_order
from .models import OrderStatus, Payment, Refund, RefundStatus, ShipmentStatus, ShippingDetail
from .notifications import notify_order_paid
from .types import StatusHistoryEntry

logger = logging.getLogger(__name__)

# Keys are lower-cased; Shiprocket is inconsistent about capitalisation
SHIPROCKET_STATUS_MAP = {
    "new": ShipmentStatus.PENDING,
    "pickup scheduled": ShipmentStatus.PROCESSING,
    "picked up": ShipmentStatus.DISPATCHED,
    "shipped": ShipmentStatus.DISPATCHED,
    "in transit": ShipmentStatus.IN_TRANSIT,
    "out for delivery": ShipmentStatus.OUT_FOR_DELIVERY,
    "delivered": ShipmentStatus.DELIVERED,
    "cancelled": ShipmentStatus.CANCELLED,
    "rto initiated": ShipmentStatus.RTO_INITIATED,
    "rto delivered": ShipmentStatus.RTO_DELIVERED,
    "lost": ShipmentStatus.FAILED,
    "damaged": ShipmentStatus.FAILED,
}
DEFAULT_SHIPMENT_STATUS = ShipmentStatus.IN_TRANSIT

# Shipment statuses missing here leave the order alone
ORDER_STATUS_FOR_SHIPMENT = {
    ShipmentStatus.PROCESSING: OrderStatus.PAID,
    ShipmentStatus.DISPATCHED: OrderStatus.SHIPPED,
    ShipmentStatus.IN_TRANSIT: OrderStatus.SHIPPED,
    ShipmentStatus.OUT_FOR_DELIVERY: OrderStatus.SHIPPED,
    ShipmentStatus.DELIVERED: OrderStatus.DELIVERED,
    ShipmentStatus.CANCELLED: OrderStatus.CANCELLED,
}

TERMINAL_REFUND_STATUSES = (RefundStatus.COMPLETED, RefundStatus.REJECTED, RefundStatus.FAILED)


def map_shipment_status(provider_status):
    """Provider free text -> ShipmentStatus, IN_TRANSIT when unrecognised"""
    key = str(provider_status or "").strip().lower()
    status = SHIPROCKET_STATUS_MAP.get(key)
    if status is None:
        logger.warning(f"Unmapped Shiprocket status '{provider_status}', defaulting to {DEFAULT_SHIPMENT_STATUS}")
        return DEFAULT_SHIPMENT_STATUS
    return status


def _provider_status_text(payload):
    current = payload.get("current_status")
    if isinstance(current, dict):
        current = current.get("name")
    return current or payload.get("shipment_status") or ""


# ==================== SHIPPING PROVIDER ====================

def reconcile_shipment(payload):
    """Apply a Shiprocket status push; returns the updated ShippingDetail"""
    shipment_id = payload.get("shipment_id")
    awb_code = payload.get("awb") or payload.get("awb_code")
    provider_status = _provider_status_text(payload)
    mapped = map_shipment_status(provider_status)

    with transaction.atomic():
        detail = None
        if shipment_id:
            detail = ShippingDetail.objects.select_for_update().filter(external_shipment_id=str(shipment_id)).first()
        if detail is None and awb_code:
            detail = ShippingDetail.objects.select_for_update().filter(awb_code=str(awb_code)).first()
        if detail is None:
            logger.warning(f"Shipping details not found for webhook: shipment {shipment_id}, awb {awb_code}")
            raise NotFound("Shipping details not found")

        timestamp = str(payload.get("current_timestamp") or payload.get("timestamp") or timezone.now().isoformat())
        added = detail.append_history(StatusHistoryEntry(
            status=provider_status,
            timestamp=timestamp,
            courier_name=payload.get("courier_name"),
            awb_code=awb_code,
        ))

        detail.current_status = mapped
        detail.courier_name = payload.get("courier_name") or detail.courier_name
        detail.awb_code = awb_code or detail.awb_code
        detail.tracking_url = payload.get("tracking_url") or detail.tracking_url

        edd = parse_provider_datetime(payload.get("edd") or payload.get("etd"))
        if edd:
            detail.estimated_delivery_date = edd
        pickup = parse_provider_datetime(payload.get("pickup_date") or payload.get("pickup_scheduled_date"))
        if pickup:
            detail.pickup_scheduled_date = pickup
        if mapped == ShipmentStatus.DISPATCHED and not detail.dispatched_date:
            detail.dispatched_date = timezone.now()
        if mapped == ShipmentStatus.DELIVERED or payload.get("delivered_date"):
            detail.delivered_date = (
                parse_provider_datetime(payload.get("delivered_date")) or detail.delivered_date or timezone.now()
            )
        detail.save()

        _apply_order_status(detail, mapped, awb_code)

    logger.info(
        f"Webhook processed: Order #{detail.order_id} -> {mapped}" + ("" if added else " (history entry already recorded)")
    )
    return detail


def _apply_order_status(detail, shipment_status, awb_code):
    new_status = ORDER_STATUS_FOR_SHIPMENT.get(shipment_status)
    if new_status is None or detail.order.status == new_status:
        return

    extra = {}
    if new_status == OrderStatus.DELIVERED and (awb_code or detail.awb_code):
        extra["delivery_tracking_id"] = awb_code or detail.awb_code
    try:
        transition_order(detail.order_id, new_status, **extra)
    except Conflict as e:
        # Shipment fields above still reflect what the provider reported
        logger.warning(f"Webhook order update skipped for Order #{detail.order_id}: {e.message}")


# ==================== PAYMENT PROVIDER ====================

def _entity(payload, name):
    return ((payload.get("payload") or {}).get(name) or {}).get("entity") or {}


def reconcile_payment_event(payload, shipping=None):
    """Dispatch a Razorpay event; unknown events are accepted and ignored"""
    event = payload.get("event")
    handler = PAYMENT_EVENT_HANDLERS.get(event)
    if handler is None:
        logger.info(f"Unhandled Razorpay event: {event}")
        return "ignored"
    return handler(payload, shipping)


def _refund_created(payload, shipping):
    refund_id = _entity(payload, "refund").get("id")
    if not refund_id:
        return "ignored"
    updated = Refund.objects.filter(external_refund_id=refund_id).exclude(
        status__in=TERMINAL_REFUND_STATUSES + (RefundStatus.PROCESSING,)
    ).update(status=RefundStatus.PROCESSING, updated_at=timezone.now())
    logger.info(f"Refund {refund_id} created at gateway ({updated} row(s) updated)")
    return "processed"


def _refund_processed(payload, shipping):
    refund_id = _entity(payload, "refund").get("id")
    if not refund_id:
        return "ignored"
    now = timezone.now()
    updated = Refund.objects.filter(external_refund_id=refund_id).exclude(
        status__in=(RefundStatus.COMPLETED, RefundStatus.REJECTED)
    ).update(status=RefundStatus.COMPLETED, completed_at=now, updated_at=now)
    logger.info(f"Refund {refund_id} processed at gateway ({updated} row(s) updated)")
    return "processed"


def _find_payment(entity):
    external_order_id = entity.get("order_id")
    if not external_order_id:
        return None
    return Payment.objects.filter(external_order_id=external_order_id).first()


def _payment_captured(payload, shipping):
    entity = _entity(payload, "payment")
    payment = _find_payment(entity)
    if payment is None:
        logger.warning(f"Captured payment {entity.get('id')} has no matching order")
        return "ignored"

    order = mark_paid(payment.pk, entity.get("id"))
    if order is None:
        logger.info(f"Payment {entity.get('id')} already settled")
        return "processed"

    book_shipment(order, shipping=shipping)
    notify_order_paid(order)
    return "processed"


def _payment_failed(payload, shipping):
    entity = _entity(payload, "payment")
    payment = _find_payment(entity)
    if payment is None:
        logger.warning(f"Failed payment {entity.get('id')} has no matching order")
        return "ignored"
    if mark_failed(payment.pk, entity.get("id")):
        logger.info(f"Payment {entity.get('id')} marked failed for Order #{payment.order_id}")
    return "processed"


PAYMENT_EVENT_HANDLERS = {
    "refund.created": _refund_created,
    "refund.processed": _refund_processed,
    "payment.captured": _payment_captured,
    "payment.failed": _payment_failed,
}
