from decimal import Decimal
from unittest import mock

import requests
from django.core import mail
from django.core.cache import cache
from django.test import SimpleTestCase, TestCase, override_settings

from orders import razorpay_utils, shiprocket_utils
from orders.exceptions import (
    GatewayRejected,
    GatewayUnavailable,
    ShipmentCreateFailed,
    ShippingProviderError,
    WaybillAssignFailed,
)
from orders.notifications import notify_order_paid
from orders.razorpay_utils import RazorpayAPI, compute_signature, from_minor_units, to_minor_units
from orders.shiprocket_utils import ShiprocketAPI

from .factories import GATEWAY_SECRET, make_order, make_product, make_user, sign


def fake_response(status_code=200, json_data=None):
    response = mock.Mock(status_code=status_code)
    response.json.return_value = json_data if json_data is not None else {}
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(f"{status_code} error")
    return response


class MinorUnitTests(SimpleTestCase):
    def test_to_minor_units(self):
        self.assertEqual(to_minor_units(Decimal("1450.00")), 145000)
        self.assertEqual(to_minor_units("19.99"), 1999)
        self.assertEqual(to_minor_units(Decimal("0.005")), 1)

    def test_from_minor_units(self):
        self.assertEqual(from_minor_units(145000), Decimal("1450.00"))


class RazorpayAPITests(SimpleTestCase):
    def setUp(self):
        self.api = RazorpayAPI(key_id="rzp_test_key", key_secret=GATEWAY_SECRET, base_url="https://razorpay.test/v1")

    def test_verify_signature(self):
        good = sign("order_1", "pay_1")
        self.assertTrue(self.api.verify_signature("order_1", "pay_1", good))
        self.assertFalse(self.api.verify_signature("order_1", "pay_2", good))
        self.assertFalse(self.api.verify_signature("order_1", "pay_1", ""))
        self.assertFalse(self.api.verify_signature("order_1", "pay_1", None))

    @mock.patch("orders.razorpay_utils.requests.request")
    def test_create_intent(self, request):
        request.return_value = fake_response(200, {"id": "order_ABC", "status": "created"})

        intent = self.api.create_intent(145000, "INR", {"idempotencyKey": "k1", "userId": 3})

        self.assertEqual(intent, "order_ABC")
        method, url = request.call_args.args
        self.assertEqual((method, url), ("POST", "https://razorpay.test/v1/orders"))
        body = request.call_args.kwargs["json"]
        self.assertEqual(body["amount"], 145000)
        self.assertEqual(body["notes"], {"idempotencyKey": "k1", "userId": "3"})
        self.assertEqual(request.call_args.kwargs["auth"], ("rzp_test_key", GATEWAY_SECRET))

    @mock.patch("orders.razorpay_utils.requests.request")
    def test_transport_errors_are_unavailable(self, request):
        request.side_effect = requests.exceptions.ConnectionError("refused")
        with self.assertRaises(GatewayUnavailable):
            self.api.create_intent(100, "INR", {})

    @mock.patch("orders.razorpay_utils.requests.request")
    def test_server_errors_are_unavailable(self, request):
        request.return_value = fake_response(503)
        with self.assertRaises(GatewayUnavailable):
            self.api.create_intent(100, "INR", {})

    @mock.patch("orders.razorpay_utils.requests.request")
    def test_client_errors_carry_gateway_description(self, request):
        request.return_value = fake_response(400, {"error": {"description": "The amount must be at least INR 1.00"}})

        with self.assertRaises(GatewayRejected) as ctx:
            self.api.create_intent(10, "INR", {})

        self.assertEqual(ctx.exception.message, "The amount must be at least INR 1.00")

    @mock.patch("orders.razorpay_utils.requests.request")
    def test_issue_refund(self, request):
        request.return_value = fake_response(200, {"id": "rfnd_1", "status": "pending"})

        refund = self.api.issue_refund("pay_1", 145000, {"reason": "damaged"})

        self.assertEqual(refund.external_refund_id, "rfnd_1")
        self.assertEqual(refund.remote_status, "pending")
        self.assertEqual(request.call_args.args[1], "https://razorpay.test/v1/payments/pay_1/refund")
        self.assertEqual(request.call_args.kwargs["json"]["speed"], "normal")

    @mock.patch("orders.razorpay_utils.requests.request")
    def test_fetch_refund_status(self, request):
        request.return_value = fake_response(200, {"id": "rfnd_1", "status": "processed"})
        self.assertEqual(self.api.fetch_refund_status("pay_1", "rfnd_1"), "processed")


class WebhookSignatureTests(SimpleTestCase):
    body = b'{"event":"refund.processed"}'

    @override_settings(RAZORPAY_WEBHOOK_SECRET="whsec")
    def test_payment_webhook_signature(self):
        good = compute_signature("whsec", self.body)
        self.assertTrue(razorpay_utils.verify_webhook_signature(self.body, good))
        self.assertFalse(razorpay_utils.verify_webhook_signature(self.body + b" ", good))

    @override_settings(RAZORPAY_WEBHOOK_SECRET="")
    def test_unconfigured_secret_rejects_everything(self):
        self.assertFalse(razorpay_utils.verify_webhook_signature(self.body, compute_signature("", self.body)))

    @override_settings(SHIPROCKET_WEBHOOK_SECRET="shipsec")
    def test_shipping_webhook_signature(self):
        good = compute_signature("shipsec", self.body)
        self.assertTrue(shiprocket_utils.verify_webhook_signature(self.body, good))
        self.assertFalse(shiprocket_utils.verify_webhook_signature(self.body, "0" * 64))


@mock.patch("orders.shiprocket_utils.requests.request")
@mock.patch("orders.shiprocket_utils.requests.post")
class ShiprocketAPITests(SimpleTestCase):
    def setUp(self):
        cache.clear()
        self.api = ShiprocketAPI(email="ops@example.com", password="pw", base_url="https://shiprocket.test/v1/external")

    def tearDown(self):
        cache.clear()

    def quote_response(self, couriers, status=200):
        return fake_response(200, {"status": status, "data": {"available_courier_companies": couriers}})

    def test_token_is_cached(self, post, request):
        post.return_value = fake_response(200, {"token": "tok-1"})
        request.return_value = fake_response(200, {"tracking_data": {"track_url": "u", "shipment_track": [{}]}})

        self.api.track_shipment("SH-1")
        self.api.track_shipment("SH-1")

        post.assert_called_once()
        self.assertEqual(request.call_args.kwargs["headers"]["Authorization"], "Bearer tok-1")

    def test_auth_failure(self, post, request):
        post.return_value = fake_response(200, {"message": "Invalid credentials"})
        with self.assertRaises(ShippingProviderError):
            self.api.get_token()

    def test_cheapest_courier_wins(self, post, request):
        post.return_value = fake_response(200, {"token": "tok"})
        request.return_value = self.quote_response([
            {"courier_company_id": 1, "courier_name": "BlueDart", "rate": 95.5, "etd": "2 days"},
            {"courier_company_id": 2, "courier_name": "Delhivery", "rate": 62, "etd": "4 days"},
            {"courier_company_id": 3, "courier_name": "Ekart", "rate": 62, "etd": "5 days"},
        ])

        quote = self.api.check_serviceability("700059", "560001", Decimal("1.5"))

        self.assertTrue(quote.available)
        self.assertEqual(quote.cheapest_cost, Decimal("62"))
        # Equal rates keep the provider's order
        self.assertEqual(quote.courier_name, "Delhivery")
        self.assertEqual(quote.courier_id, 2)
        self.assertEqual(len(quote.all_options), 3)
        self.assertEqual(request.call_args.kwargs["params"]["weight"], 1.5)

    def test_no_couriers_means_unavailable(self, post, request):
        post.return_value = fake_response(200, {"token": "tok"})
        request.return_value = self.quote_response([])

        quote = self.api.check_serviceability("700059", "000000", Decimal("1"))

        self.assertFalse(quote.available)
        self.assertEqual(quote.cheapest_cost, Decimal("0"))

    @mock.patch("orders.shiprocket_utils.time.sleep")
    def test_quote_is_retried_then_raised(self, sleep, post, request):
        post.return_value = fake_response(200, {"token": "tok"})
        request.side_effect = requests.exceptions.Timeout("slow")

        with self.assertRaises(ShippingProviderError):
            self.api.check_serviceability("700059", "560001", Decimal("1"))

        self.assertEqual(request.call_count, 3)
        self.assertEqual([c.args[0] for c in sleep.call_args_list], [1, 2])

    @mock.patch("orders.shiprocket_utils.time.sleep")
    def test_quote_recovers_after_transient_error(self, sleep, post, request):
        post.return_value = fake_response(200, {"token": "tok"})
        request.side_effect = [
            requests.exceptions.ConnectionError("reset"),
            self.quote_response([{"courier_company_id": 2, "courier_name": "Delhivery", "rate": 50}]),
        ]

        quote = self.api.check_serviceability("700059", "560001", Decimal("1"))

        self.assertTrue(quote.available)
        sleep.assert_called_once_with(1)

    def test_create_shipment(self, post, request):
        post.return_value = fake_response(200, {"token": "tok"})
        request.return_value = fake_response(200, {"order_id": 111, "shipment_id": 222, "status": "NEW"})

        ref = self.api.create_shipment({"order_id": "x"})

        self.assertEqual((ref.external_order_id, ref.external_shipment_id), ("111", "222"))

    def test_create_shipment_without_ids_fails(self, post, request):
        post.return_value = fake_response(200, {"token": "tok"})
        request.return_value = fake_response(200, {"message": "Pickup location missing"})

        with self.assertRaises(ShipmentCreateFailed) as ctx:
            self.api.create_shipment({"order_id": "x"})

        self.assertEqual(ctx.exception.message, "Pickup location missing")

    def test_assign_waybill_checks_assign_status(self, post, request):
        post.return_value = fake_response(200, {"token": "tok"})
        request.return_value = fake_response(200, {
            "awb_assign_status": 1,
            "response": {"data": {"awb_code": "AWB9", "courier_name": "Delhivery"}},
        })
        waybill = self.api.assign_waybill("222", 2)
        self.assertEqual(waybill.awb_code, "AWB9")

        request.return_value = fake_response(200, {"awb_assign_status": 0, "response": {"data": {}}})
        with self.assertRaises(WaybillAssignFailed):
            self.api.assign_waybill("222", 2)

    def test_available_couriers_swallow_errors(self, post, request):
        post.return_value = fake_response(200, {"token": "tok"})
        request.return_value = fake_response(500)

        self.assertEqual(self.api.get_available_couriers("222"), [])


class NotificationTests(TestCase):
    def setUp(self):
        self.order = make_order(make_user(), make_product())

    @override_settings(ADMIN_ORDER_EMAIL="ops@example.com")
    def test_sends_customer_and_admin_mail_once(self):
        self.assertTrue(notify_order_paid(self.order))
        self.assertFalse(notify_order_paid(self.order))

        self.assertEqual(len(mail.outbox), 2)
        customer_mail = next(m for m in mail.outbox if m.to == ["asha@example.com"])
        self.assertIn("Rs.1450.00", customer_mail.body)
        self.assertIn("12 MG Road", customer_mail.body)

    @override_settings(ADMIN_ORDER_EMAIL=None)
    @mock.patch("orders.notifications.send_mail", side_effect=ConnectionRefusedError("smtp down"))
    def test_mail_failure_is_not_fatal(self, send):
        self.assertFalse(notify_order_paid(self.order))

        self.order.refresh_from_db()
        self.assertFalse(self.order.customer_notified)
