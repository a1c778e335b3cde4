import logging
from django.conf import settings
from django.core.mail import send_mail

logger = logging.getLogger(__name__)


def _customer_name(user):
    return user.get_full_name() or user.get_username()


def send_admin_order_notification(order):
    """Send order summary to the admin mailbox"""
    if not settings.ADMIN_ORDER_EMAIL:
        return False, "ADMIN_ORDER_EMAIL is not configured"

    try:
        items = list(order.items.all())
        items_details = "\n".join(
            f"- {item.name} (Qty: {item.quantity}, Price: Rs.{item.price_at_purchase})"
            for item in items
        )
        address = order.shipping_address

        message = f"""
Hello Admin,

A new order has been paid.

ORDER DETAILS:
Order ID: #{order.id}
Order Date: {order.created_at.strftime('%d-%b-%Y %I:%M %p')}
Status: {order.status}

CUSTOMER DETAILS:
Name: {_customer_name(order.user)}
Email: {order.user.email}
Phone: {address.phone_number}

SHIPPING ADDRESS:
{address.street}
{address.city}, {address.state} - {address.pincode}

ORDER ITEMS:
{items_details}

PAYMENT SUMMARY:
Subtotal: Rs.{order.subtotal_amount}
Shipping: Rs.{order.shipping_cost}
TOTAL: Rs.{order.total_amount}
        """.strip()

        send_mail(
            subject=f'New Order Received - #{order.id}',
            message=message,
            from_email=settings.DEFAULT_FROM_EMAIL,
            recipient_list=[settings.ADMIN_ORDER_EMAIL],
            fail_silently=False,
        )

        logger.info(f"Admin notification sent for Order #{order.id}")
        return True, "Admin email sent successfully"

    except Exception as e:
        logger.error(f"Admin notification failed for Order #{order.id}: {str(e)}")
        return False, str(e)


def send_customer_order_confirmation(order):
    """Send order confirmation to the customer"""
    if not order.user.email:
        return False, "Customer has no email address"

    try:
        items = list(order.items.all())
        items_text = ", ".join(item.name for item in items[:3])
        if len(items) > 3:
            items_text += f" and {len(items) - 3} more"
        address = order.shipping_address

        message = f"""
Order Confirmed!

Order ID: #{order.id}
Items: {items_text}
Total: Rs.{order.total_amount}
Delivery Address: {address.street}, {address.city}, {address.state} - {address.pincode}

We will share tracking details as soon as your order ships.

Thank you for shopping with us!
        """.strip()

        send_mail(
            subject=f'Order Confirmed - #{order.id}',
            message=message,
            from_email=settings.DEFAULT_FROM_EMAIL,
            recipient_list=[order.user.email],
            fail_silently=False,
        )

        logger.info(f"Customer confirmation sent for Order #{order.id}")
        return True, "Customer email sent successfully"

    except Exception as e:
        logger.error(f"Customer notification failed for Order #{order.id}: {str(e)}")
        return False, str(e)


def notify_order_paid(order):
    """Send both confirmation e-mails once per order"""
    if order.customer_notified:
        return False

    send_admin_order_notification(order)
    sent, _ = send_customer_order_confirmation(order)
    if sent:
        type(order).objects.filter(pk=order.pk).update(customer_notified=True)
        order.customer_notified = True
    return sent
