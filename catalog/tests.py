import threading

from django.db import IntegrityError, connection, transaction
from django.test import TestCase, TransactionTestCase

from catalog import inventory
from catalog.models import Category, Product
from orders.exceptions import InsufficientStock, InvariantViolation


class InventoryLedgerTests(TestCase):
    def setUp(self):
        category = Category.objects.create(name="Books")
        self.product = Product.objects.create(
            category=category,
            name="The Hungry Caterpillar",
            real_price="350.00",
            discounted_price="299.00",
            stock_quantity=5,
        )

    def stock(self):
        self.product.refresh_from_db()
        return self.product.stock_quantity

    def test_reserve_and_release(self):
        inventory.reserve(self.product.pk, 3)
        self.assertEqual(self.stock(), 2)

        inventory.release(self.product.pk, 3)
        self.assertEqual(self.stock(), 5)

    def test_reserving_more_than_available_changes_nothing(self):
        with self.assertRaises(InsufficientStock) as ctx:
            inventory.reserve(self.product.pk, 6)

        self.assertIn("Only 5 available", ctx.exception.message)
        self.assertEqual(self.stock(), 5)

    def test_sequential_reservations_never_oversell(self):
        inventory.reserve(self.product.pk, 2)
        inventory.reserve(self.product.pk, 2)
        with self.assertRaises(InsufficientStock):
            inventory.reserve(self.product.pk, 2)
        inventory.reserve(self.product.pk, 1)

        self.assertEqual(self.stock(), 0)

    def test_inactive_product_cannot_be_reserved(self):
        Product.objects.filter(pk=self.product.pk).update(is_active=False)

        with self.assertRaises(InsufficientStock):
            inventory.reserve(self.product.pk, 1)
        self.assertEqual(self.stock(), 5)

    def test_missing_product(self):
        with self.assertRaises(InsufficientStock):
            inventory.reserve(999999, 1)
        with self.assertRaises(InvariantViolation):
            inventory.release(999999, 1)

    def test_quantity_must_be_positive(self):
        for quantity in (0, -2):
            with self.subTest(quantity=quantity):
                with self.assertRaises(InvariantViolation):
                    inventory.reserve(self.product.pk, quantity)
                with self.assertRaises(InvariantViolation):
                    inventory.release(self.product.pk, quantity)
        self.assertEqual(self.stock(), 5)

    def test_database_rejects_negative_stock(self):
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                Product.objects.filter(pk=self.product.pk).update(stock_quantity=-1)


class ConcurrentReservationTests(TransactionTestCase):
    # Each thread gets its own connection to the file-backed test database
    buyers = 8

    def setUp(self):
        category = Category.objects.create(name="Books")
        self.product = Product.objects.create(
            category=category,
            name="Goodnight Moon",
            real_price="250.00",
            discounted_price="199.00",
            stock_quantity=9,
        )

    def test_parallel_buyers_never_oversell(self):
        barrier = threading.Barrier(self.buyers, timeout=10)
        lock = threading.Lock()
        outcomes = []

        def buy():
            try:
                barrier.wait()
                inventory.reserve(self.product.pk, 2)
                outcome = "reserved"
            except InsufficientStock:
                outcome = "rejected"
            except Exception as e:
                outcome = repr(e)
            finally:
                connection.close()
            with lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=buy) for _ in range(self.buyers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(outcomes.count("reserved"), 4)
        self.assertEqual(outcomes.count("rejected"), 4)
        self.assertEqual(len(outcomes), self.buyers)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 1)


class ProductSlugTests(TestCase):
    def setUp(self):
        self.category = Category.objects.create(name="Toys")

    def make(self, name):
        return Product.objects.create(
            category=self.category, name=name, real_price="10.00", discounted_price="9.00"
        )

    def test_slug_from_name(self):
        self.assertEqual(self.make("Wooden  Blocks (Set of 20)!").slug, "wooden-blocks-set-of-20")

    def test_duplicate_names_get_numbered_slugs(self):
        self.make("Kite")
        self.assertEqual(self.make("Kite").slug, "kite-1")
        self.assertEqual(self.make("Kite").slug, "kite-2")

    def test_fallback_weight(self):
        product = self.make("Ball")
        self.assertEqual(str(product.shipping_weight_kg), "0.5")
