import json
from unittest import mock

from django.test import TestCase

from orders.exceptions import Conflict, Forbidden, ShipmentCancelFailed, ValidationError
from orders.lifecycle import cancel_order, override_status, refresh_tracking
from orders.models import OrderStatus, ShipmentStatus
from orders.types import TrackingInfo

from .factories import make_order, make_paid_order, make_product, make_shipping, make_shipping_detail, make_user


class CancelOrderTests(TestCase):
    def setUp(self):
        self.user = make_user()
        # Checkout already took 2 of the original 10 units
        self.product = make_product(stock=8)
        self.order = make_paid_order(self.user, self.product, quantity=2)
        self.shipping = make_shipping()

    def test_cancel_paid_order_restores_stock_and_cancels_shipment(self):
        detail = make_shipping_detail(self.order)

        order = cancel_order(self.user, self.order.pk, shipping=self.shipping)

        self.assertEqual(order.status, OrderStatus.CANCELLED)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 10)
        self.shipping.cancel_shipment.assert_called_once_with(["AWB123456"])
        detail.refresh_from_db()
        self.assertEqual(detail.current_status, ShipmentStatus.CANCELLED)

    def test_cancel_pending_order_without_shipment(self):
        order = make_order(self.user, self.product, quantity=3)

        cancel_order(self.user, order.pk, shipping=self.shipping)

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 11)
        self.shipping.cancel_shipment.assert_not_called()

    def test_remote_cancel_failure_still_cancels_locally(self):
        detail = make_shipping_detail(self.order)
        self.shipping.cancel_shipment.side_effect = ShipmentCancelFailed()

        order = cancel_order(self.user, self.order.pk, shipping=self.shipping)

        self.assertEqual(order.status, OrderStatus.CANCELLED)
        detail.refresh_from_db()
        self.assertEqual(detail.current_status, ShipmentStatus.PROCESSING)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 10)

    def test_shipped_order_cannot_be_cancelled(self):
        shipped = make_order(self.user, self.product, status=OrderStatus.SHIPPED)

        with self.assertRaises(Conflict) as ctx:
            cancel_order(self.user, shipped.pk, shipping=self.shipping)

        self.assertIn("request a refund", ctx.exception.message)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 8)

    def test_cancelling_twice_releases_once(self):
        cancel_order(self.user, self.order.pk, shipping=self.shipping)
        with self.assertRaises(Conflict):
            cancel_order(self.user, self.order.pk, shipping=self.shipping)

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 10)

    def test_other_users_order(self):
        with self.assertRaises(Forbidden):
            cancel_order(make_user("ravi"), self.order.pk, shipping=self.shipping)


class OverrideStatusTests(TestCase):
    def setUp(self):
        self.user = make_user()
        self.product = make_product(stock=8)
        self.order = make_paid_order(self.user, self.product, quantity=2)

    def test_ship_mirrors_onto_shipment(self):
        detail = make_shipping_detail(self.order)

        order = override_status(self.order.pk, "SHIPPED", tracking_id="TRK-1")

        self.assertEqual(order.status, OrderStatus.SHIPPED)
        self.assertEqual(order.delivery_tracking_id, "TRK-1")
        detail.refresh_from_db()
        self.assertEqual(detail.current_status, ShipmentStatus.DISPATCHED)
        self.assertIsNotNone(detail.dispatched_date)

    def test_same_status_only_updates_tracking_id(self):
        order = override_status(self.order.pk, "PAID", tracking_id="TRK-2")

        self.assertEqual(order.status, OrderStatus.PAID)
        self.assertEqual(order.delivery_tracking_id, "TRK-2")

    def test_illegal_transition(self):
        delivered = make_order(self.user, self.product, status=OrderStatus.DELIVERED)
        with self.assertRaises(Conflict):
            override_status(delivered.pk, "PAID")

    def test_unknown_status(self):
        with self.assertRaises(ValidationError):
            override_status(self.order.pk, "LOST_IN_SPACE")

    def test_cancel_pending_releases_stock(self):
        pending = make_order(self.user, self.product, quantity=1)

        override_status(pending.pk, "CANCELLED")

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 9)


class RefreshTrackingTests(TestCase):
    def setUp(self):
        self.user = make_user()
        self.order = make_paid_order(self.user, make_product())
        self.detail = make_shipping_detail(self.order)
        self.shipping = make_shipping()
        self.shipping.track_shipment.return_value = TrackingInfo(
            status="In Transit",
            history=[{"activity": "Reached hub"}],
            eta="2026-10-24 18:00:00",
            tracking_url="https://track.test/AWB123456",
        )

    def test_stores_url_and_eta_only(self):
        detail, tracking = refresh_tracking(self.user, self.order.pk, shipping=self.shipping)

        self.shipping.track_shipment.assert_called_once_with("SH-200")
        self.assertEqual(tracking.status, "In Transit")
        detail.refresh_from_db()
        self.assertEqual(detail.tracking_url, "https://track.test/AWB123456")
        self.assertEqual(detail.estimated_delivery_date.date().isoformat(), "2026-10-24")
        self.assertEqual(detail.status_history, [])
        self.assertEqual(detail.current_status, ShipmentStatus.PROCESSING)

    def test_requires_shipment(self):
        order = make_paid_order(self.user, make_product(name="Pen"))
        with self.assertRaises(ValidationError):
            refresh_tracking(self.user, order.pk, shipping=self.shipping)


class LifecycleViewTests(TestCase):
    def setUp(self):
        self.user = make_user()
        self.product = make_product(stock=8)

    def put(self, url, body=None):
        return self.client.put(url, data=json.dumps(body or {}), content_type="application/json")

    def test_cancel(self):
        order = make_order(self.user, self.product)
        self.client.force_login(self.user)

        response = self.put(f"/api/orders/{order.pk}/cancel")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["order"]["status"], "CANCELLED")

    def test_cancel_shipped_is_400(self):
        order = make_order(self.user, self.product, status=OrderStatus.SHIPPED)
        self.client.force_login(self.user)

        response = self.put(f"/api/orders/{order.pk}/cancel")

        self.assertEqual(response.status_code, 400)
        self.assertFalse(response.json()["success"])

    def test_cancel_is_put_only(self):
        order = make_order(self.user, self.product)
        self.client.force_login(self.user)
        self.assertEqual(self.client.post(f"/api/orders/{order.pk}/cancel").status_code, 405)

    def test_status_override_needs_staff(self):
        order = make_paid_order(self.user, self.product)
        self.client.force_login(self.user)

        response = self.put(f"/api/admin/orders/{order.pk}/status", {"status": "SHIPPED"})

        self.assertEqual(response.status_code, 403)
        order.refresh_from_db()
        self.assertEqual(order.status, OrderStatus.PAID)

    def test_status_override_by_staff(self):
        order = make_paid_order(self.user, self.product)
        self.client.force_login(make_user("admin", is_staff=True))

        response = self.put(f"/api/admin/orders/{order.pk}/status", {"status": "SHIPPED", "trackingId": "TRK-9"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["order"]["status"], "SHIPPED")

    def test_order_list_is_scoped_to_user(self):
        mine = make_order(self.user, self.product)
        make_order(make_user("ravi"), self.product)
        self.client.force_login(self.user)

        response = self.client.get("/api/orders/")

        orders = response.json()["orders"]
        self.assertEqual([o["id"] for o in orders], [str(mine.pk)])
        self.assertIn("no-store", response["Cache-Control"])

    @mock.patch("orders.lifecycle.get_shipping_provider")
    def test_track(self, get_shipping):
        order = make_paid_order(self.user, self.product)
        make_shipping_detail(order)
        shipping = make_shipping()
        shipping.track_shipment.return_value = TrackingInfo(status="Shipped", history=[], awb_code="AWB123456")
        get_shipping.return_value = shipping
        self.client.force_login(self.user)

        response = self.client.get(f"/api/orders/{order.pk}/track")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["tracking"]["awbCode"], "AWB123456")
