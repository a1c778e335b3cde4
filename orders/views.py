import logging
import re
import uuid
from decimal import Decimal, InvalidOperation

from django.conf import settings
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_http_methods, require_POST

from . import lifecycle, reconciliation, refunds
from .checkout import cart_weight, get_cart_lines, place_order, quote_shipping
from .exceptions import EmptyCart, InvalidSignature, NotFound, ValidationError
from .fulfillment import verify_payment as verify_payment_service
from .http import api_view, json_body, login_required_json, money, staff_required_json
from .models import Order, ShippingDetail
from .razorpay_utils import get_payment_gateway
from .razorpay_utils import verify_webhook_signature as verify_payment_webhook
from .shiprocket_utils import get_shipping_provider
from .shiprocket_utils import verify_webhook_signature as verify_shipping_webhook

logger = logging.getLogger(__name__)

# ==================== VALIDATION HELPERS ====================

def validate_pincode(pincode):
    """Validate 6-digit Indian pincode"""
    return bool(re.match(r'^\d{6}$', str(pincode or "")))


def parse_uuid(value, field):
    """UUID from a JSON field; None passes through so services report it missing"""
    if value in (None, ""):
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise ValidationError(f"{field} is not a valid ID")


def parse_int(value, field):
    if value in (None, ""):
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} is not a valid ID")
    try:
        return int(str(value))
    except ValueError:
        raise ValidationError(f"{field} is not a valid ID")


def _isoformat(value):
    return value.isoformat() if value else None


# ==================== SERIALIZERS ====================

def serialize_shipping(detail):
    if detail is None:
        return None
    return {
        "status": detail.current_status,
        "externalShipmentId": detail.external_shipment_id,
        "awbCode": detail.awb_code,
        "courierName": detail.courier_name,
        "trackingUrl": detail.tracking_url,
        "estimatedDeliveryDate": _isoformat(detail.estimated_delivery_date),
        "pickupScheduledDate": _isoformat(detail.pickup_scheduled_date),
        "dispatchedDate": _isoformat(detail.dispatched_date),
        "deliveredDate": _isoformat(detail.delivered_date),
        "statusHistory": [entry.to_dict() for entry in detail.history],
    }


def serialize_order(order, include_items=True):
    data = {
        "id": str(order.id),
        "status": order.status,
        "subtotal": money(order.subtotal_amount),
        "shippingCost": money(order.shipping_cost),
        "totalAmount": money(order.total_amount),
        "deliveryTrackingId": order.delivery_tracking_id,
        "shippingAddress": order.shipping_address.to_dict(),
        "createdAt": _isoformat(order.created_at),
    }
    payment = getattr(order, "payment", None)
    if payment is not None:
        data["payment"] = {
            "status": payment.status,
            "externalOrderId": payment.external_order_id,
            "amount": money(payment.amount),
            "amountRefunded": money(payment.amount_refunded),
        }
    if include_items:
        data["items"] = [
            {
                "productId": item.product_id,
                "name": item.name,
                "quantity": item.quantity,
                "price": money(item.price_at_purchase),
                "lineTotal": money(item.line_total),
            }
            for item in order.items.all()
        ]
        data["shipping"] = serialize_shipping(ShippingDetail.objects.filter(order=order).first())
    return data


def serialize_refund(refund, admin=False):
    data = {
        "id": str(refund.id),
        "orderId": str(refund.order_id),
        "amount": money(refund.amount),
        "reason": refund.reason,
        "userNote": refund.user_note,
        "adminNote": refund.admin_note,
        "status": refund.status,
        "requestedAt": _isoformat(refund.requested_at),
        "decidedAt": _isoformat(refund.decided_at),
        "processedAt": _isoformat(refund.processed_at),
        "completedAt": _isoformat(refund.completed_at),
    }
    if admin:
        payment = getattr(refund.order, "payment", None)
        data["externalRefundId"] = refund.external_refund_id
        data["user"] = {"id": refund.user_id, "email": refund.user.email, "name": refund.user.get_full_name()}
        data["order"] = {
            "id": str(refund.order_id),
            "totalAmount": money(refund.order.total_amount),
            "status": refund.order.status,
            "externalPaymentId": payment.external_payment_id if payment else None,
        }
    return data


# ==================== CHECKOUT & PAYMENT ====================

@require_POST
@login_required_json
@api_view
def checkout(request):
    """Create a PENDING order and a gateway payment intent from the cart"""
    data = json_body(request)
    gateway = get_payment_gateway()
    result = place_order(
        request.user,
        parse_int(data.get("addressId"), "addressId"),
        idempotency_key=data.get("idempotencyKey") or None,
        gateway=gateway,
    )
    order = result.order
    return JsonResponse({
        "success": True,
        "message": "Order already created for this request" if result.replayed else "Order created successfully",
        "order": {
            "id": str(order.id),
            "externalOrderId": order.payment.external_order_id,
            "subtotal": money(order.subtotal_amount),
            "shippingCost": money(order.shipping_cost),
            "totalAmount": money(order.total_amount),
            "currency": settings.RAZORPAY_CURRENCY,
        },
        "gatewayPublicKey": gateway.public_key,
        "courierName": result.courier_name,
    }, status=200 if result.replayed else 201)


@require_POST
@login_required_json
@api_view
def verify_payment(request):
    data = json_body(request)
    result = verify_payment_service(
        request.user,
        parse_uuid(data.get("orderId"), "orderId"),
        data.get("externalPaymentId"),
        data.get("externalOrderId"),
        data.get("signature"),
    )

    body = {
        "success": True,
        "message": "Payment already verified" if result.already_verified else "Payment verified successfully",
        "order": serialize_order(result.order),
    }
    if result.booking is not None:
        body["shipping"] = serialize_shipping(result.booking.shipping_detail)
        body["shipmentBooked"] = result.booking.booked
        if not result.booking.booked:
            body["shippingMessage"] = "Payment verified; shipment booking is pending"
    return JsonResponse(body)


# ==================== ORDERS ====================

@require_GET
@login_required_json
@api_view
def order_list(request):
    orders = Order.objects.filter(user=request.user).select_related("payment")
    return JsonResponse({
        "success": True,
        "orders": [serialize_order(order, include_items=False) for order in orders],
    })


@require_GET
@login_required_json
@api_view
def order_detail(request, order_id):
    order = lifecycle.get_owned_order(request.user, order_id)
    return JsonResponse({"success": True, "order": serialize_order(order)})


@require_GET
@login_required_json
@api_view
def track_order(request, order_id):
    detail, tracking = lifecycle.refresh_tracking(request.user, order_id)
    return JsonResponse({
        "success": True,
        "tracking": {
            "status": tracking.status,
            "awbCode": tracking.awb_code or detail.awb_code,
            "courierName": tracking.courier_name or detail.courier_name,
            "trackingUrl": detail.tracking_url,
            "estimatedDeliveryDate": _isoformat(detail.estimated_delivery_date),
            "activities": tracking.history,
        },
        "shipping": serialize_shipping(detail),
    })


@require_http_methods(["PUT"])
@login_required_json
@api_view
def cancel_order(request, order_id):
    order = lifecycle.cancel_order(request.user, order_id)
    return JsonResponse({
        "success": True,
        "message": "Order cancelled successfully",
        "order": serialize_order(order),
    })


@require_http_methods(["PUT"])
@staff_required_json
@api_view
def admin_update_status(request, order_id):
    data = json_body(request)
    order = lifecycle.override_status(order_id, data.get("status"), tracking_id=data.get("trackingId"))
    return JsonResponse({
        "success": True,
        "message": f"Order status updated to {order.status}",
        "order": serialize_order(order),
    })


# ==================== REFUNDS ====================

@require_POST
@login_required_json
@api_view
def request_refund(request):
    data = json_body(request)
    refund = refunds.request_refund(
        request.user,
        parse_uuid(data.get("orderId"), "orderId"),
        data.get("reason"),
        data.get("userNote"),
    )
    return JsonResponse({
        "success": True,
        "message": "Refund request submitted successfully. Our admin team will review it shortly.",
        "refund": serialize_refund(refund),
    }, status=201)


@require_GET
@login_required_json
@api_view
def my_refunds(request):
    return JsonResponse({
        "success": True,
        "refunds": [serialize_refund(refund) for refund in refunds.refunds_for_user(request.user)],
    })


@require_GET
@staff_required_json
@api_view
def admin_refunds(request):
    page = request.GET.get("page", 1)
    limit = request.GET.get("limit", 20)
    items, paginator = refunds.paginate_refunds(request.GET.get("status"), page, limit)
    return JsonResponse({
        "success": True,
        "refunds": [serialize_refund(refund, admin=True) for refund in items],
        "pagination": {
            "total": paginator.count,
            "page": int(page),
            "limit": int(limit),
            "totalPages": paginator.num_pages if paginator.count else 0,
        },
    })


@require_POST
@staff_required_json
@api_view
def approve_refund(request, refund_id):
    data = json_body(request)
    refund, gateway_refund = refunds.approve_refund(refund_id, request.user, data.get("adminNote"))
    return JsonResponse({
        "success": True,
        "message": "Refund approved and initiated successfully. Amount will be credited in 5-7 business days.",
        "refund": serialize_refund(refund, admin=True),
        "gatewayRefund": {"id": gateway_refund.external_refund_id, "status": gateway_refund.remote_status},
    })


@require_POST
@staff_required_json
@api_view
def reject_refund(request, refund_id):
    data = json_body(request)
    refund = refunds.reject_refund(refund_id, request.user, data.get("adminNote"))
    return JsonResponse({"success": True, "message": "Refund request rejected", "refund": serialize_refund(refund)})


@require_GET
@staff_required_json
@api_view
def check_refund_status(request, refund_id):
    refund, remote_status = refunds.check_refund_status(refund_id)
    return JsonResponse({
        "success": True,
        "refund": {"id": str(refund.id), "localStatus": refund.status, "gatewayStatus": remote_status},
    })


# ==================== SHIPPING QUOTE ====================

def _weight(value):
    if value in (None, ""):
        return settings.DEFAULT_ITEM_WEIGHT_KG
    try:
        weight = Decimal(str(value))
    except InvalidOperation:
        raise ValidationError("weightKg must be a number")
    if weight <= 0:
        raise ValidationError("weightKg must be positive")
    return weight


@require_POST
@login_required_json
@api_view
def calculate_shipping(request):
    """Quote couriers for an arbitrary parcel"""
    data = json_body(request)
    pincode = str(data.get("deliveryPincode") or "").strip()
    if not pincode:
        raise ValidationError("Delivery pincode is required")

    shipping = get_shipping_provider()
    quote = shipping.check_serviceability(
        pickup_pincode=settings.SHIPROCKET_PICKUP_PINCODE.strip(),
        delivery_pincode=pincode,
        weight_kg=_weight(data.get("weightKg")),
        cod_amount=data.get("codAmount") or 0,
    )
    return JsonResponse({"success": True, **quote.to_dict()})


@require_POST
@login_required_json
@api_view
def calculate_shipping_for_cart(request):
    data = json_body(request)
    pincode = str(data.get("deliveryPincode") or "").strip()
    if not pincode:
        raise ValidationError("Delivery pincode is required")

    lines = get_cart_lines(request.user)
    if not lines:
        raise EmptyCart()

    weight = cart_weight(lines)
    quote = quote_shipping(pincode, weight)
    return JsonResponse({"success": True, "cartWeight": float(weight), **quote.to_dict()})


@require_GET
@api_view
def check_pincode(request, pincode):
    if not validate_pincode(pincode):
        raise ValidationError("Valid 6-digit pincode is required")

    quote = quote_shipping(pincode, settings.DEFAULT_ITEM_WEIGHT_KG)
    return JsonResponse({
        "success": True,
        "available": quote.available,
        "message": "Delivery available to this pincode" if quote.available else "Delivery not available to this pincode",
    })


# ==================== WEBHOOKS ====================

def _signed_payload(request, verify, header):
    if not verify(request.body, request.headers.get(header)):
        logger.warning(f"Invalid webhook signature on {request.path}")
        raise InvalidSignature()
    return json_body(request)


@csrf_exempt
@require_POST
@api_view
def shipping_webhook(request):
    """Shiprocket status push, authenticated by HMAC of the raw body"""
    logger.info("Shiprocket webhook received")
    payload = _signed_payload(request, verify_shipping_webhook, "X-Shiprocket-Signature")
    try:
        reconciliation.reconcile_shipment(payload)
    except NotFound:
        # Shipments we never booked are acknowledged so the provider stops retrying
        return JsonResponse({"success": True, "message": "Shipping details not found; ignored"})
    return JsonResponse({"success": True, "message": "Webhook processed successfully"})


@csrf_exempt
@require_POST
@api_view
def payment_webhook(request):
    """Razorpay event push; unknown events are acknowledged"""
    payload = _signed_payload(request, verify_payment_webhook, "X-Razorpay-Signature")
    logger.info(f"Razorpay webhook: {payload.get('event')}")
    outcome = reconciliation.reconcile_payment_event(payload)
    return JsonResponse({"success": True, "message": f"Webhook {outcome}"})
