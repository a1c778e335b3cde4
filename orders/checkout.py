# orders/checkout.py
"""
Checkout: turns the caller's cart into a PENDING order with an open payment
intent.

The idempotency key is the only guard against double submission. It is
enforced by the unique index on ``Payment.idempotency_key``: the early lookup
is just a fast path, and a concurrent request that loses the insert race
resolves to the winner's order instead of failing.
"""
import logging
from decimal import Decimal

from django.conf import settings
from django.db import IntegrityError, transaction

from catalog import inventory
from customers.models import Address, Cart, CartItem

from .exceptions import (
    Conflict,
    DeliveryUnavailable,
    EmptyCart,
    InsufficientStock,
    NotFound,
    ProductUnavailable,
    ShippingProviderError,
    ValidationError,
)
from .models import Order, OrderItem, OrderStatus, Payment, PaymentStatus
from .razorpay_utils import generate_idempotency_key, get_payment_gateway, to_minor_units
from .shiprocket_utils import get_shipping_provider
from .types import AddressSnapshot, CheckoutResult

logger = logging.getLogger(__name__)


def _existing_checkout(user, idempotency_key):
    payment = Payment.objects.select_related("order").filter(idempotency_key=idempotency_key).first()
    if payment is None:
        return None
    if payment.order.user_id != user.pk:
        raise Conflict("This idempotency key has already been used")
    logger.info(f"Checkout replay for key {idempotency_key}: Order #{payment.order_id}")
    return CheckoutResult(order=payment.order, replayed=True)


def get_cart_lines(user):
    cart = Cart.objects.filter(user=user).first()
    if cart is None:
        return []
    return list(cart.items.select_related("product").order_by("pk"))


def cart_weight(lines):
    """Total shipping weight of cart lines, using per-product weight when known"""
    return sum((line.product.shipping_weight_kg * line.quantity for line in lines), Decimal("0"))


def quote_shipping(delivery_pincode, weight_kg, shipping=None):
    shipping = shipping or get_shipping_provider()
    return shipping.check_serviceability(
        pickup_pincode=settings.SHIPROCKET_PICKUP_PINCODE.strip(),
        delivery_pincode=delivery_pincode,
        weight_kg=weight_kg,
        cod_amount=0,
    )


def _price_cart(lines):
    """Validate every line against live product data and return (subtotal, weight)"""
    subtotal = Decimal("0.00")
    for line in lines:
        product = line.product
        if not product.is_active:
            raise ProductUnavailable(f"Product \"{product.name}\" is no longer available")
        if line.quantity > product.stock_quantity:
            raise InsufficientStock(
                f"Insufficient stock for \"{product.name}\". Only {product.stock_quantity} available"
            )
        subtotal += product.discounted_price * line.quantity
    return subtotal, cart_weight(lines)


def place_order(user, address_id, idempotency_key=None, gateway=None, shipping=None):
    """Run checkout for ``user``; returns a CheckoutResult"""
    if not address_id:
        raise ValidationError("Address ID is required")

    idempotency_key = idempotency_key or generate_idempotency_key(user.pk)

    existing = _existing_checkout(user, idempotency_key)
    if existing:
        return existing

    address = Address.objects.filter(pk=address_id).first()
    if address is None or address.user_id != user.pk:
        raise NotFound("Address not found")

    lines = get_cart_lines(user)
    if not lines:
        raise EmptyCart()

    subtotal, weight = _price_cart(lines)

    # A failing quote must not block revenue; an explicit "not serviceable" must
    used_fallback = False
    courier_name = None
    try:
        quote = quote_shipping(address.pincode, weight, shipping=shipping)
    except ShippingProviderError as e:
        logger.warning(f"Shipping calculation failed, using default cost: {str(e)}")
        shipping_cost = settings.DEFAULT_SHIPPING_COST
        used_fallback = True
    else:
        if not quote.available:
            raise DeliveryUnavailable()
        shipping_cost = quote.cheapest_cost
        courier_name = quote.courier_name

    total = subtotal + shipping_cost

    gateway = gateway or get_payment_gateway()
    external_order_id = gateway.create_intent(
        to_minor_units(total),
        settings.RAZORPAY_CURRENCY,
        {"idempotencyKey": idempotency_key, "userId": user.pk, "addressId": address.pk},
    )

    try:
        order = _persist_order(
            user, address, lines, subtotal, shipping_cost, total, weight, idempotency_key, external_order_id
        )
    except IntegrityError:
        existing = _existing_checkout(user, idempotency_key)
        if existing:
            return existing
        raise

    logger.info(f"Order #{order.id} created: subtotal {subtotal}, shipping {shipping_cost}, total {total}")
    return CheckoutResult(order=order, courier_name=courier_name, used_fallback_shipping=used_fallback)


def _persist_order(user, address, lines, subtotal, shipping_cost, total, weight, idempotency_key, external_order_id):
    """Order, items, payment, stock and cart change together or not at all"""
    with transaction.atomic():
        order = Order.objects.create(
            user=user,
            subtotal_amount=subtotal,
            shipping_cost=shipping_cost,
            total_amount=total,
            status=OrderStatus.PENDING,
            shipping_address_snapshot=AddressSnapshot.from_address(address).to_dict(),
            pickup_pincode=settings.SHIPROCKET_PICKUP_PINCODE.strip(),
            delivery_pincode=address.pincode,
            weight_kg=weight,
            length_cm=settings.PACKAGE_LENGTH_CM,
            breadth_cm=settings.PACKAGE_BREADTH_CM,
            height_cm=settings.PACKAGE_HEIGHT_CM,
        )

        OrderItem.objects.bulk_create([
            OrderItem(
                order=order,
                product=line.product,
                name=line.product.name,
                quantity=line.quantity,
                price_at_purchase=line.product.discounted_price,
            )
            for line in lines
        ])

        Payment.objects.create(
            order=order,
            external_order_id=external_order_id,
            idempotency_key=idempotency_key,
            amount=total,
            status=PaymentStatus.PENDING,
        )

        for line in lines:
            inventory.reserve(line.product_id, line.quantity)

        CartItem.objects.filter(pk__in=[line.pk for line in lines]).delete()

    return order
