import json
from decimal import Decimal
from unittest import mock

from django.db import IntegrityError, transaction
from django.test import TestCase

from orders.exceptions import AlreadyRefunded, Conflict, Forbidden, GatewayRejected, NotFound, ValidationError
from orders.models import Payment, PaymentStatus, Refund, RefundStatus
from orders.refunds import approve_refund, check_refund_status, paginate_refunds, reject_refund, request_refund
from orders.types import GatewayRefund

from .factories import make_gateway, make_order, make_paid_order, make_product, make_user


class RefundWorkflowTests(TestCase):
    def setUp(self):
        self.user = make_user()
        self.admin = make_user("admin", is_staff=True)
        self.order = make_paid_order(self.user, make_product(price="700.00"), quantity=2)
        self.gateway = make_gateway()
        self.gateway.issue_refund.return_value = GatewayRefund(external_refund_id="rfnd_001", remote_status="pending")

    def request(self):
        return request_refund(self.user, self.order.pk, "Arrived damaged", "Seal was broken")

    def test_request_is_for_remaining_amount(self):
        refund = self.request()

        self.assertEqual(refund.status, RefundStatus.REQUESTED)
        self.assertEqual(refund.amount, Decimal("1450.00"))
        self.assertEqual(refund.user_note, "Seal was broken")

    def test_second_request_while_active_is_conflict(self):
        self.request()
        with self.assertRaises(Conflict):
            self.request()

    def test_only_paid_orders_are_refundable(self):
        pending = make_order(self.user, make_product(name="Pen"))
        with self.assertRaises(ValidationError):
            request_refund(self.user, pending.pk, "Changed my mind")

    def test_reason_is_required(self):
        with self.assertRaises(ValidationError):
            request_refund(self.user, self.order.pk, "  ")

    def test_notes_must_be_text(self):
        for reason in (42, ["Arrived damaged"], None):
            with self.subTest(reason=reason):
                with self.assertRaises(ValidationError):
                    request_refund(self.user, self.order.pk, reason)
        with self.assertRaises(ValidationError):
            request_refund(self.user, self.order.pk, "Arrived damaged", {"note": "x"})
        self.assertFalse(Refund.objects.exists())

        refund = self.request()
        with self.assertRaises(ValidationError):
            reject_refund(refund.pk, self.admin, ["Item shows signs of use"])
        with self.assertRaises(ValidationError):
            approve_refund(refund.pk, self.admin, 123, gateway=self.gateway)

        refund.refresh_from_db()
        self.assertEqual(refund.status, RefundStatus.REQUESTED)
        self.gateway.issue_refund.assert_not_called()

    def test_other_users_order(self):
        with self.assertRaises(Forbidden):
            request_refund(make_user("ravi"), self.order.pk, "Not mine")

    def test_approve_refunds_at_gateway_and_records_amount(self):
        refund = self.request()

        refund, gateway_refund = approve_refund(refund.pk, self.admin, "Photos confirm damage", gateway=self.gateway)

        self.assertEqual(refund.status, RefundStatus.PROCESSING)
        self.assertEqual(refund.external_refund_id, "rfnd_001")
        self.assertEqual(refund.decided_by, self.admin)
        self.assertIsNotNone(refund.processed_at)
        payment_id, amount, notes = self.gateway.issue_refund.call_args.args
        self.assertEqual(payment_id, self.order.payment.external_payment_id)
        self.assertEqual(amount, 145000)

        payment = Payment.objects.get(order=self.order)
        self.assertEqual(payment.amount_refunded, Decimal("1450.00"))
        self.assertEqual(payment.status, PaymentStatus.REFUNDED)

    def test_partial_refund_state(self):
        Payment.objects.filter(order=self.order).update(amount_refunded=Decimal("450.00"))
        refund = self.request()
        self.assertEqual(refund.amount, Decimal("1000.00"))

        approve_refund(refund.pk, self.admin, gateway=self.gateway)

        payment = Payment.objects.get(order=self.order)
        self.assertEqual(payment.amount_refunded, Decimal("1450.00"))
        self.assertEqual(payment.status, PaymentStatus.REFUNDED)

    def test_approve_twice_refunds_once(self):
        refund = self.request()
        approve_refund(refund.pk, self.admin, gateway=self.gateway)

        with self.assertRaises(Conflict):
            approve_refund(refund.pk, self.admin, gateway=self.gateway)

        self.assertEqual(self.gateway.issue_refund.call_count, 1)
        payment = Payment.objects.get(order=self.order)
        self.assertLessEqual(payment.amount_refunded, payment.amount)

    def test_fully_refunded_order_cannot_be_refunded_again(self):
        refund = self.request()
        approve_refund(refund.pk, self.admin, gateway=self.gateway)
        Refund.objects.filter(pk=refund.pk).update(status=RefundStatus.COMPLETED)

        with self.assertRaises(AlreadyRefunded):
            self.request()

    def test_gateway_failure_fails_refund_and_leaves_payment(self):
        self.gateway.issue_refund.side_effect = GatewayRejected("The refund amount exceeds the captured amount")
        refund = self.request()

        with self.assertRaises(GatewayRejected):
            approve_refund(refund.pk, self.admin, gateway=self.gateway)

        refund.refresh_from_db()
        self.assertEqual(refund.status, RefundStatus.FAILED)
        self.assertTrue(refund.admin_note.startswith("Failed:"))
        payment = Payment.objects.get(order=self.order)
        self.assertEqual(payment.amount_refunded, Decimal("0.00"))
        self.assertEqual(payment.status, PaymentStatus.SUCCESS)

        # A failed refund no longer blocks a new request
        self.assertEqual(self.request().status, RefundStatus.REQUESTED)

    def test_reject_requires_note(self):
        refund = self.request()
        with self.assertRaises(ValidationError):
            reject_refund(refund.pk, self.admin, "")

        refund = reject_refund(refund.pk, self.admin, "Item shows signs of use")
        self.assertEqual(refund.status, RefundStatus.REJECTED)

        with self.assertRaises(Conflict):
            approve_refund(refund.pk, self.admin, gateway=self.gateway)
        self.gateway.issue_refund.assert_not_called()

    def test_database_allows_one_active_refund_per_order(self):
        self.request()
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                Refund.objects.create(
                    order=self.order, user=self.user, amount=Decimal("1.00"), reason="dup",
                    status=RefundStatus.PROCESSING,
                )

    def test_status_poll_completes_processed_refund(self):
        refund = self.request()
        approve_refund(refund.pk, self.admin, gateway=self.gateway)
        self.gateway.fetch_refund_status.return_value = "processed"

        refund, remote_status = check_refund_status(refund.pk, gateway=self.gateway)

        self.assertEqual(remote_status, "processed")
        self.assertEqual(refund.status, RefundStatus.COMPLETED)
        self.assertIsNotNone(refund.completed_at)

    def test_status_poll_needs_gateway_refund(self):
        refund = self.request()
        with self.assertRaises(NotFound):
            check_refund_status(refund.pk, gateway=self.gateway)

    def test_admin_listing_filters_and_paginates(self):
        self.request()
        other_order = make_paid_order(self.user, make_product(name="Pen"))
        request_refund(self.user, other_order.pk, "Late")

        items, paginator = paginate_refunds(status=RefundStatus.REQUESTED, page=1, limit=1)
        self.assertEqual(len(items), 1)
        self.assertEqual(paginator.count, 2)
        self.assertEqual(paginator.num_pages, 2)

        items, _ = paginate_refunds(status=RefundStatus.COMPLETED)
        self.assertEqual(items, [])

        with self.assertRaises(ValidationError):
            paginate_refunds(status="BOGUS")


@mock.patch("orders.refunds.get_payment_gateway")
class RefundViewTests(TestCase):
    def setUp(self):
        self.user = make_user()
        self.admin = make_user("admin", is_staff=True)
        self.order = make_paid_order(self.user, make_product())

    def post(self, url, body):
        return self.client.post(url, data=json.dumps(body), content_type="application/json")

    def test_customer_requests_and_admin_approves(self, get_gateway):
        gateway = make_gateway()
        gateway.issue_refund.return_value = GatewayRefund(external_refund_id="rfnd_v1", remote_status="pending")
        get_gateway.return_value = gateway

        self.client.force_login(self.user)
        response = self.post("/api/refunds/request", {"orderId": str(self.order.pk), "reason": "Damaged"})
        self.assertEqual(response.status_code, 201)
        refund_id = response.json()["refund"]["id"]

        mine = self.client.get("/api/refunds/my-requests").json()["refunds"]
        self.assertEqual([r["id"] for r in mine], [refund_id])

        # Customers cannot approve
        self.assertEqual(self.post(f"/api/refunds/admin/{refund_id}/approve", {}).status_code, 403)

        self.client.force_login(self.admin)
        response = self.post(f"/api/refunds/admin/{refund_id}/approve", {"adminNote": "ok"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["refund"]["status"], "PROCESSING")

        listing = self.client.get("/api/refunds/admin/all?status=PROCESSING&page=1&limit=10").json()
        self.assertEqual(listing["pagination"]["total"], 1)
        self.assertEqual(listing["refunds"][0]["externalRefundId"], "rfnd_v1")

    def test_gateway_error_is_surfaced(self, get_gateway):
        gateway = make_gateway()
        gateway.issue_refund.side_effect = GatewayRejected("Payment already refunded")
        get_gateway.return_value = gateway
        refund = request_refund(self.user, self.order.pk, "Damaged")

        self.client.force_login(self.admin)
        response = self.post(f"/api/refunds/admin/{refund.pk}/approve", {})

        self.assertEqual(response.status_code, 502)
        self.assertEqual(response.json()["message"], "Payment already refunded")

    def test_duplicate_request_is_400(self, get_gateway):
        self.client.force_login(self.user)
        body = {"orderId": str(self.order.pk), "reason": "Damaged"}
        self.post("/api/refunds/request", body)

        response = self.post("/api/refunds/request", body)

        self.assertEqual(response.status_code, 400)
        self.assertFalse(response.json()["success"])

    def test_reject_without_note_is_400(self, get_gateway):
        refund = request_refund(self.user, self.order.pk, "Damaged")
        self.client.force_login(self.admin)

        response = self.post(f"/api/refunds/admin/{refund.pk}/reject", {})

        self.assertEqual(response.status_code, 400)

    def test_malformed_order_id_is_400(self, get_gateway):
        self.client.force_login(self.user)

        response = self.post("/api/refunds/request", {"orderId": "42", "reason": "Damaged"})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "orderId is not a valid ID")
        self.assertFalse(Refund.objects.exists())

    def test_non_text_reason_is_400(self, get_gateway):
        self.client.force_login(self.user)

        for reason in (5, ["Damaged"], {"text": "Damaged"}):
            with self.subTest(reason=reason):
                response = self.post("/api/refunds/request", {"orderId": str(self.order.pk), "reason": reason})
                self.assertEqual(response.status_code, 400)

        self.assertFalse(Refund.objects.exists())

    def test_non_text_reject_note_is_400(self, get_gateway):
        refund = request_refund(self.user, self.order.pk, "Damaged")
        self.client.force_login(self.admin)

        response = self.post(f"/api/refunds/admin/{refund.pk}/reject", {"adminNote": 7})

        self.assertEqual(response.status_code, 400)
        refund.refresh_from_db()
        self.assertEqual(refund.status, RefundStatus.REQUESTED)
