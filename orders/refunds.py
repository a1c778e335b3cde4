# orders/refunds.py
"""
Refund workflow: REQUESTED -> APPROVED -> PROCESSING -> COMPLETED, or
REQUESTED -> REJECTED, or a gateway failure ending in FAILED.

Money only moves in ``approve_refund``. The refund is claimed (REQUESTED ->
APPROVED) before the gateway call so two admins cannot refund twice, and
``Payment.amount_refunded`` is only incremented after the gateway accepted it.
"""
import logging

from django.core.paginator import Paginator
from django.db import IntegrityError, transaction
from django.utils import timezone

from .exceptions import (
    AlreadyRefunded,
    Conflict,
    Forbidden,
    InvariantViolation,
    NotFound,
    UpstreamUnavailable,
    ValidationError,
)
from .models import Order, Payment, PaymentStatus, Refund, RefundStatus, ACTIVE_REFUND_STATUSES
from .razorpay_utils import get_payment_gateway, to_minor_units

logger = logging.getLogger(__name__)

REFUNDABLE_PAYMENT_STATUSES = (PaymentStatus.SUCCESS, PaymentStatus.PARTIALLY_REFUNDED)


def request_refund(user, order_id, reason, user_note=None):
    """Open a refund for the full refundable amount of a paid order"""
    if not order_id or not isinstance(reason, str) or not reason.strip():
        raise ValidationError("Order ID and reason are required")
    if user_note is not None and not isinstance(user_note, str):
        raise ValidationError("userNote must be text")

    order = Order.objects.filter(pk=order_id).select_related("payment").first()
    if order is None:
        raise NotFound("Order not found")
    if order.user_id != user.pk:
        raise Forbidden("Unauthorized access to this order")

    payment = getattr(order, "payment", None)
    if payment is not None and payment.status == PaymentStatus.REFUNDED:
        raise AlreadyRefunded()
    if payment is None or payment.status not in REFUNDABLE_PAYMENT_STATUSES:
        raise ValidationError("Refund can only be requested for paid orders")

    if order.refunds.filter(status__in=ACTIVE_REFUND_STATUSES).exists():
        raise Conflict("A refund request already exists for this order")

    refundable = payment.refundable_amount
    if refundable <= 0:
        raise AlreadyRefunded()

    try:
        with transaction.atomic():
            refund = Refund.objects.create(
                order=order,
                user=user,
                amount=refundable,
                reason=reason.strip(),
                user_note=user_note or None,
                status=RefundStatus.REQUESTED,
            )
    except IntegrityError:
        # Lost the race against a concurrent request for the same order
        raise Conflict("A refund request already exists for this order")

    logger.info(f"Refund {refund.id} requested for Order #{order.id}: Rs.{refundable}")
    return refund


def _claim_for_approval(refund_id, admin, admin_note):
    with transaction.atomic():
        refund = Refund.objects.select_for_update().filter(pk=refund_id).first()
        if refund is None:
            raise NotFound("Refund request not found")
        if refund.status != RefundStatus.REQUESTED:
            raise Conflict(f"Cannot approve refund with status: {refund.status}")

        payment = Payment.objects.filter(order_id=refund.order_id).first()
        if payment is None or not payment.external_payment_id:
            raise ValidationError("Payment information not found for this order")
        if refund.amount <= 0 or refund.amount > payment.refundable_amount:
            raise InvariantViolation(
                f"Refund {refund.id} amount {refund.amount} exceeds refundable {payment.refundable_amount}"
            )

        refund.status = RefundStatus.APPROVED
        refund.admin_note = admin_note or None
        refund.decided_at = timezone.now()
        refund.decided_by = admin
        refund.save(update_fields=["status", "admin_note", "decided_at", "decided_by", "updated_at"])

    return refund, payment


def approve_refund(refund_id, admin, admin_note=None, gateway=None):
    """Issue the refund at the gateway; returns (refund, GatewayRefund)"""
    if admin_note is not None and not isinstance(admin_note, str):
        raise ValidationError("adminNote must be text")
    refund, payment = _claim_for_approval(refund_id, admin, admin_note)

    gateway = gateway or get_payment_gateway()
    try:
        gateway_refund = gateway.issue_refund(
            payment.external_payment_id,
            to_minor_units(refund.amount),
            {"refund_id": refund.id, "order_id": refund.order_id, "reason": refund.reason},
        )
    except UpstreamUnavailable as e:
        logger.error(f"Razorpay refund error for Refund {refund.id}: {e.message}")
        Refund.objects.filter(pk=refund.pk, status=RefundStatus.APPROVED).update(
            status=RefundStatus.FAILED,
            admin_note=f"Failed: {e.message}",
            updated_at=timezone.now(),
        )
        raise

    with transaction.atomic():
        payment = Payment.objects.select_for_update().get(pk=payment.pk)
        refunded = payment.amount_refunded + refund.amount
        if refunded > payment.amount:
            raise InvariantViolation(f"Refunds for Payment {payment.pk} would exceed the captured amount")

        payment.amount_refunded = refunded
        payment.status = PaymentStatus.REFUNDED if refunded == payment.amount else PaymentStatus.PARTIALLY_REFUNDED
        payment.save(update_fields=["amount_refunded", "status", "updated_at"])

        refund.status = RefundStatus.PROCESSING
        refund.external_refund_id = gateway_refund.external_refund_id
        refund.processed_at = timezone.now()
        refund.save(update_fields=["status", "external_refund_id", "processed_at", "updated_at"])

    logger.info(f"Refund {refund.id} initiated at gateway as {gateway_refund.external_refund_id}")
    return refund, gateway_refund


def reject_refund(refund_id, admin, admin_note):
    if not isinstance(admin_note, str) or not admin_note.strip():
        raise ValidationError("Admin note is required when rejecting a refund")

    with transaction.atomic():
        refund = Refund.objects.select_for_update().filter(pk=refund_id).first()
        if refund is None:
            raise NotFound("Refund request not found")
        if refund.status != RefundStatus.REQUESTED:
            raise Conflict(f"Cannot reject refund with status: {refund.status}")

        refund.status = RefundStatus.REJECTED
        refund.admin_note = admin_note.strip()
        refund.decided_at = timezone.now()
        refund.decided_by = admin
        refund.save(update_fields=["status", "admin_note", "decided_at", "decided_by", "updated_at"])

    logger.info(f"Refund {refund.id} rejected")
    return refund


def check_refund_status(refund_id, gateway=None):
    """
    Poll the gateway for a refund. Completes it locally when the gateway
    reports it processed; returns (refund, remote_status).
    """
    refund = Refund.objects.filter(pk=refund_id).select_related("order__payment").first()
    if refund is None or not refund.external_refund_id:
        raise NotFound("Refund not found or not yet processed")

    gateway = gateway or get_payment_gateway()
    remote_status = gateway.fetch_refund_status(refund.order.payment.external_payment_id, refund.external_refund_id)

    if remote_status == "processed" and refund.status != RefundStatus.COMPLETED:
        now = timezone.now()
        Refund.objects.filter(pk=refund.pk).exclude(status=RefundStatus.COMPLETED).update(
            status=RefundStatus.COMPLETED, completed_at=now, updated_at=now
        )
        refund.refresh_from_db()
        logger.info(f"Refund {refund.id} completed via status poll")

    return refund, remote_status


def refunds_for_user(user):
    return Refund.objects.filter(user=user).select_related("order")


def paginate_refunds(status=None, page=1, limit=20):
    """Admin listing; returns (refunds on the page, paginator)"""
    refunds = Refund.objects.select_related("user", "order__payment")
    if status:
        if status not in RefundStatus.values:
            raise ValidationError("Invalid status value")
        refunds = refunds.filter(status=status)

    try:
        page, limit = int(page), int(limit)
    except (TypeError, ValueError):
        raise ValidationError("page and limit must be integers")
    if page < 1 or not 1 <= limit <= 100:
        raise ValidationError("page must be >= 1 and limit between 1 and 100")

    paginator = Paginator(refunds, limit)
    if page > paginator.num_pages:
        return [], paginator
    return list(paginator.page(page).object_list), paginator
