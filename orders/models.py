# orders/models.py
import uuid
from decimal import Decimal

from django.conf import settings
from django.db import models

from .types import AddressSnapshot, StatusHistoryEntry


class OrderStatus(models.TextChoices):
    PENDING = "PENDING", "Pending Payment"
    PAID = "PAID", "Paid"
    SHIPPED = "SHIPPED", "Shipped"
    DELIVERED = "DELIVERED", "Delivered"
    CANCELLED = "CANCELLED", "Cancelled"


class PaymentStatus(models.TextChoices):
    PENDING = "PENDING", "Pending"
    SUCCESS = "SUCCESS", "Success"
    FAILED = "FAILED", "Failed"
    REFUNDED = "REFUNDED", "Refunded"
    PARTIALLY_REFUNDED = "PARTIALLY_REFUNDED", "Partially Refunded"


class ShipmentStatus(models.TextChoices):
    PENDING = "PENDING", "Pending"
    PROCESSING = "PROCESSING", "Processing"
    DISPATCHED = "DISPATCHED", "Dispatched"
    IN_TRANSIT = "IN_TRANSIT", "In Transit"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY", "Out For Delivery"
    DELIVERED = "DELIVERED", "Delivered"
    FAILED = "FAILED", "Failed"
    CANCELLED = "CANCELLED", "Cancelled"
    RTO_INITIATED = "RTO_INITIATED", "RTO Initiated"
    RTO_DELIVERED = "RTO_DELIVERED", "RTO Delivered"


class RefundStatus(models.TextChoices):
    REQUESTED = "REQUESTED", "Requested"
    PENDING_ADMIN_APPROVAL = "PENDING_ADMIN_APPROVAL", "Pending Admin Approval"
    APPROVED = "APPROVED", "Approved"
    REJECTED = "REJECTED", "Rejected"
    PROCESSING = "PROCESSING", "Processing"
    COMPLETED = "COMPLETED", "Completed"
    FAILED = "FAILED", "Failed"


ACTIVE_REFUND_STATUSES = (
    RefundStatus.REQUESTED,
    RefundStatus.PENDING_ADMIN_APPROVAL,
    RefundStatus.APPROVED,
    RefundStatus.PROCESSING,
)

ORDER_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PAID, OrderStatus.CANCELLED},
    OrderStatus.PAID: {OrderStatus.SHIPPED, OrderStatus.DELIVERED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}


class Order(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(settings.AUTH_USER_MODEL, related_name="orders", on_delete=models.PROTECT)

    # Pricing (total is fixed at checkout and never recomputed)
    subtotal_amount = models.DecimalField(max_digits=10, decimal_places=2)
    shipping_cost = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    total_amount = models.DecimalField(max_digits=10, decimal_places=2)

    # Status
    status = models.CharField(max_length=20, choices=OrderStatus.choices, default=OrderStatus.PENDING, db_index=True)
    delivery_tracking_id = models.CharField(max_length=100, blank=True, null=True)

    # Shipping snapshot & package
    shipping_address_snapshot = models.JSONField()
    pickup_pincode = models.CharField(max_length=10, blank=True, null=True)
    delivery_pincode = models.CharField(max_length=10, blank=True, null=True)
    weight_kg = models.DecimalField(max_digits=7, decimal_places=3, blank=True, null=True)
    length_cm = models.DecimalField(max_digits=6, decimal_places=2, blank=True, null=True)
    breadth_cm = models.DecimalField(max_digits=6, decimal_places=2, blank=True, null=True)
    height_cm = models.DecimalField(max_digits=6, decimal_places=2, blank=True, null=True)

    # Idempotency flag for confirmation e-mails
    customer_notified = models.BooleanField(default=False, db_index=True)

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=['user', 'created_at'], name='order_user_created_idx'),
            models.Index(fields=['status', 'created_at'], name='order_status_created_idx'),
        ]

    def __str__(self):
        return f"Order #{self.id} - {self.status}"

    @property
    def shipping_address(self):
        return AddressSnapshot.from_dict(self.shipping_address_snapshot)

    def can_transition_to(self, status):
        return status in ORDER_TRANSITIONS[OrderStatus(self.status)]

    @property
    def is_cancellable(self):
        return self.can_transition_to(OrderStatus.CANCELLED)


class OrderItem(models.Model):
    order = models.ForeignKey(Order, related_name="items", on_delete=models.CASCADE)
    product = models.ForeignKey("catalog.Product", related_name="order_items", on_delete=models.PROTECT)
    name = models.CharField(max_length=200)
    quantity = models.PositiveIntegerField()
    price_at_purchase = models.DecimalField(max_digits=10, decimal_places=2)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.name} x {self.quantity}"

    @property
    def line_total(self):
        return self.price_at_purchase * self.quantity


class Payment(models.Model):
    order = models.OneToOneField(Order, related_name="payment", on_delete=models.CASCADE)
    external_order_id = models.CharField(max_length=100, blank=True, null=True, unique=True)
    external_payment_id = models.CharField(max_length=100, blank=True, null=True, unique=True)
    external_signature = models.CharField(max_length=255, blank=True, null=True)
    idempotency_key = models.CharField(max_length=255, unique=True)
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    amount_refunded = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0.00"))
    status = models.CharField(max_length=20, choices=PaymentStatus.choices, default=PaymentStatus.PENDING, db_index=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount_refunded__gte=0) & models.Q(amount_refunded__lte=models.F("amount")),
                name="payment_refund_within_amount",
            ),
        ]

    def __str__(self):
        return f"Payment {self.external_order_id} ({self.status})"

    @property
    def refundable_amount(self):
        return self.amount - self.amount_refunded


class ShippingDetail(models.Model):
    order = models.OneToOneField(Order, related_name="shipping_detail", on_delete=models.CASCADE)
    external_order_id = models.CharField(max_length=100, blank=True, null=True)
    external_shipment_id = models.CharField(max_length=100, blank=True, null=True, db_index=True)
    awb_code = models.CharField(max_length=100, blank=True, null=True, db_index=True)
    courier_name = models.CharField(max_length=200, blank=True, null=True)
    courier_phone = models.CharField(max_length=20, blank=True, null=True)
    courier_email = models.EmailField(blank=True, null=True)
    tracking_url = models.URLField(max_length=500, blank=True, null=True)
    estimated_delivery_date = models.DateTimeField(blank=True, null=True)
    current_status = models.CharField(
        max_length=20, choices=ShipmentStatus.choices, default=ShipmentStatus.PENDING, db_index=True
    )
    status_history = models.JSONField(default=list, blank=True)
    pickup_scheduled_date = models.DateTimeField(blank=True, null=True)
    dispatched_date = models.DateTimeField(blank=True, null=True)
    delivered_date = models.DateTimeField(blank=True, null=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"Shipment {self.external_shipment_id} ({self.current_status})"

    @property
    def history(self):
        return [StatusHistoryEntry.from_dict(entry) for entry in self.status_history or []]

    def append_history(self, entry):
        """Append ``entry`` unless the same (status, timestamp) was already recorded"""
        if any(existing.dedupe_key == entry.dedupe_key for existing in self.history):
            return False
        self.status_history = list(self.status_history or []) + [entry.to_dict()]
        return True


class Refund(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order = models.ForeignKey(Order, related_name="refunds", on_delete=models.PROTECT)
    user = models.ForeignKey(settings.AUTH_USER_MODEL, related_name="refunds", on_delete=models.PROTECT)
    external_refund_id = models.CharField(max_length=100, blank=True, null=True, unique=True)
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    reason = models.TextField()
    user_note = models.TextField(blank=True, null=True)
    admin_note = models.TextField(blank=True, null=True)
    status = models.CharField(max_length=30, choices=RefundStatus.choices, default=RefundStatus.REQUESTED, db_index=True)

    requested_at = models.DateTimeField(auto_now_add=True)
    decided_at = models.DateTimeField(blank=True, null=True)
    processed_at = models.DateTimeField(blank=True, null=True)
    completed_at = models.DateTimeField(blank=True, null=True)
    decided_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, related_name="decided_refunds", on_delete=models.SET_NULL, blank=True, null=True
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            # CRITICAL: at most one refund in flight per order
            models.UniqueConstraint(
                fields=["order"],
                condition=models.Q(status__in=ACTIVE_REFUND_STATUSES),
                name="unique_active_refund_per_order",
            ),
            models.CheckConstraint(condition=models.Q(amount__gt=0), name="refund_amount_positive"),
            models.CheckConstraint(
                condition=~models.Q(status=RefundStatus.REJECTED) | (
                    models.Q(admin_note__isnull=False) & ~models.Q(admin_note="")
                ),
                name="rejected_refund_has_admin_note",
            ),
        ]

    def __str__(self):
        return f"Refund {self.id} for Order #{self.order_id} ({self.status})"

    @property
    def is_active(self):
        return self.status in ACTIVE_REFUND_STATUSES
