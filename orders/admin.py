from django.contrib import admin
from .models import Order, OrderItem, Payment, Refund, ShippingDetail


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    fields = ('product', 'name', 'price_at_purchase', 'quantity')
    readonly_fields = ('product', 'name', 'price_at_purchase', 'quantity')
    can_delete = False  # Items are a checkout snapshot


class PaymentInline(admin.StackedInline):
    model = Payment
    extra = 0
    can_delete = False
    # Gateway-owned: written only by checkout, verification, webhooks and refunds
    readonly_fields = (
        'external_order_id',
        'external_payment_id',
        'external_signature',
        'idempotency_key',
        'amount',
        'amount_refunded',
        'status',
    )


class ShippingDetailInline(admin.StackedInline):
    model = ShippingDetail
    extra = 0
    can_delete = False
    readonly_fields = (
        'external_order_id',
        'external_shipment_id',
        'awb_code',
        'courier_name',
        'current_status',
        'status_history',
        'pickup_scheduled_date',
        'dispatched_date',
        'delivered_date',
    )


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "user",
        "status",
        "subtotal_amount",
        "shipping_cost",
        "total_amount",
        "delivery_pincode",
        "customer_notified",
        "created_at",
    )
    list_filter = ("status", "customer_notified", "created_at")
    search_fields = (
        "id",
        "user__email",
        "delivery_pincode",
        "payment__external_order_id",
        "payment__external_payment_id",
        "shipping_detail__awb_code",
    )
    list_select_related = ("user",)

    # Status changes go through the admin status endpoint so stock and shipment stay in step
    readonly_fields = (
        'status',
        'subtotal_amount',
        'shipping_cost',
        'total_amount',
        'shipping_address_snapshot',
        'customer_notified',
        'created_at',
        'updated_at',
    )

    inlines = [OrderItemInline, PaymentInline, ShippingDetailInline]

    fieldsets = (
        ("Customer", {
            "fields": ("user", "shipping_address_snapshot")
        }),
        ("Pricing", {
            "fields": ("subtotal_amount", "shipping_cost", "total_amount")
        }),
        ("Status", {
            "fields": ("status", "delivery_tracking_id", "customer_notified")
        }),
        ("Package", {
            "fields": ("pickup_pincode", "delivery_pincode", "weight_kg", "length_cm", "breadth_cm", "height_cm"),
            "classes": ("collapse",)
        }),
        ("System Metadata", {
            "fields": ("created_at", "updated_at"),
            "classes": ("collapse",)
        }),
    )

    def get_queryset(self, request):
        return super().get_queryset(request).prefetch_related('items')


@admin.register(Refund)
class RefundAdmin(admin.ModelAdmin):
    list_display = ("id", "order", "user", "amount", "status", "requested_at", "decided_by")
    list_filter = ("status", ("requested_at", admin.DateFieldListFilter))
    search_fields = ("id", "order__id", "user__email", "external_refund_id")
    list_select_related = ("order", "user", "decided_by")

    # Decisions are made through the refund endpoints, which call the gateway
    readonly_fields = (
        "order",
        "user",
        "amount",
        "status",
        "external_refund_id",
        "requested_at",
        "decided_at",
        "decided_by",
        "processed_at",
        "completed_at",
    )
