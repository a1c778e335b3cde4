from django.contrib import admin
from django.urls import path, include

urlpatterns = [
    # ============ ORDERS, REFUNDS, SHIPPING, WEBHOOKS ============
    # Mounted once at /api/ so URLs are exactly /api/orders/..., /api/refunds/...
    path("api/", include("orders.urls")),

    # ============ ADMIN ============
    path("admin/", admin.site.urls),
]
