# orders/lifecycle.py
"""
Order status changes outside checkout and payment: user cancellation, the
admin override, and tracking refreshes. Every status write goes through
``transition_order`` so the state machine and stock release live in one place.
"""
import logging

from django.db import transaction
from django.utils import timezone

from catalog import inventory

from .exceptions import Conflict, Forbidden, NotFound, ShippingProviderError, TrackingUnavailable, ValidationError
from .fulfillment import parse_provider_datetime
from .models import Order, OrderStatus, ShipmentStatus, ShippingDetail
from .shiprocket_utils import get_shipping_provider

logger = logging.getLogger(__name__)

ORDER_TO_SHIPMENT_STATUS = {
    OrderStatus.PENDING: ShipmentStatus.PENDING,
    OrderStatus.PAID: ShipmentStatus.PROCESSING,
    OrderStatus.SHIPPED: ShipmentStatus.DISPATCHED,
    OrderStatus.DELIVERED: ShipmentStatus.DELIVERED,
    OrderStatus.CANCELLED: ShipmentStatus.CANCELLED,
}


def transition_order(order_id, new_status, **extra_fields):
    """
    Move an order to ``new_status`` under a row lock.

    Returns the locked, updated order, or None when the order is already in
    ``new_status``. Raises Conflict when the state machine forbids the move.
    Cancelling returns the order's reserved stock in the same transaction.
    """
    with transaction.atomic():
        order = Order.objects.select_for_update().get(pk=order_id)
        if order.status == new_status:
            return None
        if not order.can_transition_to(new_status):
            raise Conflict(f"Cannot change order status from {order.status} to {new_status}")

        if new_status == OrderStatus.CANCELLED:
            inventory.release_order_items(order)

        order.status = new_status
        for field, value in extra_fields.items():
            setattr(order, field, value)
        order.save(update_fields=["status", "updated_at", *extra_fields])

    logger.info(f"Order #{order.id} moved to {new_status}")
    return order


def get_owned_order(user, order_id):
    order = Order.objects.filter(pk=order_id).first()
    if order is None:
        raise NotFound("Order not found")
    if order.user_id != user.pk:
        raise Forbidden()
    return order


def cancel_order(user, order_id, shipping=None):
    """Cancel a PENDING or PAID order, restore stock, cancel the remote shipment"""
    order = get_owned_order(user, order_id)

    if order.status == OrderStatus.CANCELLED:
        raise Conflict("Order is already cancelled")
    if order.status == OrderStatus.DELIVERED:
        raise Conflict("Cannot cancel delivered order. Please request a refund instead.")
    if order.status == OrderStatus.SHIPPED:
        raise Conflict("Order has been shipped. Please request a refund instead.")

    order = transition_order(order.pk, OrderStatus.CANCELLED) or order

    detail = ShippingDetail.objects.filter(order=order).first()
    if detail and detail.awb_code:
        shipping = shipping or get_shipping_provider()
        try:
            shipping.cancel_shipment([detail.awb_code])
        except ShippingProviderError as e:
            # Stock and order state are already settled; the shipment can be cancelled manually
            logger.error(f"Shiprocket cancellation error for Order #{order.id}: {str(e)}")
        else:
            detail.current_status = ShipmentStatus.CANCELLED
            detail.save(update_fields=["current_status", "updated_at"])

    return order


def override_status(order_id, status, tracking_id=None):
    """Admin status change, mirrored onto the shipment when one exists"""
    if status not in OrderStatus.values:
        raise ValidationError("Invalid status value")
    if not Order.objects.filter(pk=order_id).exists():
        raise NotFound("Order not found")

    extra = {"delivery_tracking_id": tracking_id} if tracking_id else {}
    order = transition_order(order_id, status, **extra)
    if order is None:
        order = Order.objects.get(pk=order_id)
        if tracking_id:
            order.delivery_tracking_id = tracking_id
            order.save(update_fields=["delivery_tracking_id", "updated_at"])

    detail = ShippingDetail.objects.filter(order=order).first()
    if detail:
        detail.current_status = ORDER_TO_SHIPMENT_STATUS[OrderStatus(status)]
        fields = ["current_status", "updated_at"]
        if status == OrderStatus.SHIPPED and not detail.dispatched_date:
            detail.dispatched_date = timezone.now()
            fields.append("dispatched_date")
        if status == OrderStatus.DELIVERED and not detail.delivered_date:
            detail.delivered_date = timezone.now()
            fields.append("delivered_date")
        detail.save(update_fields=fields)

    return order


def refresh_tracking(user, order_id, shipping=None):
    """Fetch live tracking; stores URL and ETA, leaves the status history alone"""
    order = get_owned_order(user, order_id)
    detail = ShippingDetail.objects.filter(order=order).first()
    if detail is None or not detail.external_shipment_id:
        raise ValidationError("Shipment not yet created for this order")

    shipping = shipping or get_shipping_provider()
    tracking = shipping.track_shipment(detail.external_shipment_id)
    if tracking is None:
        raise TrackingUnavailable()

    detail.tracking_url = tracking.tracking_url or detail.tracking_url
    detail.estimated_delivery_date = parse_provider_datetime(tracking.eta) or detail.estimated_delivery_date
    detail.save(update_fields=["tracking_url", "estimated_delivery_date", "updated_at"])
    return detail, tracking
