from django.urls import path
from . import views

urlpatterns = [
    # ============ Checkout & Payment ============
    path("orders/checkout", views.checkout, name="checkout"),
    path("orders/verify-payment", views.verify_payment, name="verify_payment"),

    # ============ Orders ============
    path("orders/", views.order_list, name="order_list"),
    path("orders/<uuid:order_id>/", views.order_detail, name="order_detail"),
    path("orders/<uuid:order_id>/track", views.track_order, name="track_order"),
    path("orders/<uuid:order_id>/cancel", views.cancel_order, name="cancel_order"),
    path("admin/orders/<uuid:order_id>/status", views.admin_update_status, name="admin_update_status"),

    # ============ Refunds ============
    path("refunds/request", views.request_refund, name="request_refund"),
    path("refunds/my-requests", views.my_refunds, name="my_refunds"),
    path("refunds/admin/all", views.admin_refunds, name="admin_refunds"),
    path("refunds/admin/<uuid:refund_id>/approve", views.approve_refund, name="approve_refund"),
    path("refunds/admin/<uuid:refund_id>/reject", views.reject_refund, name="reject_refund"),
    path("refunds/admin/<uuid:refund_id>/check-status", views.check_refund_status, name="check_refund_status"),

    # ============ Shipping quotes ============
    path("shipping/calculate", views.calculate_shipping, name="calculate_shipping"),
    path("shipping/calculate-for-cart", views.calculate_shipping_for_cart, name="calculate_shipping_for_cart"),
    path("shipping/check-pincode/<str:pincode>", views.check_pincode, name="check_pincode"),

    # ============ Webhooks ============
    path("webhooks/shipping-provider", views.shipping_webhook, name="shipping_webhook"),
    path("webhooks/payment-provider", views.payment_webhook, name="payment_webhook"),
]
