# orders/exceptions.py


class OrderError(Exception):
    """Base error; the message is safe to show to the caller"""

    status_code = 400
    default_message = "Request could not be processed"

    def __init__(self, message=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class ValidationError(OrderError):
    status_code = 400
    default_message = "Invalid request"


class NotFound(OrderError):
    status_code = 404
    default_message = "Not found"


class Forbidden(OrderError):
    status_code = 403
    default_message = "Unauthorized access"


class Conflict(OrderError):
    status_code = 400
    default_message = "Request conflicts with the current state"


class UpstreamUnavailable(OrderError):
    status_code = 502
    default_message = "An upstream provider is unavailable"


class InvariantViolation(OrderError):
    status_code = 500
    default_message = "Internal consistency check failed"


# ---------- Checkout ----------

class EmptyCart(ValidationError):
    default_message = "Cart is empty"


class ProductUnavailable(ValidationError):
    default_message = "Product is no longer available"


class InsufficientStock(ValidationError):
    default_message = "Insufficient stock"


class DeliveryUnavailable(ValidationError):
    default_message = "Shipping not available to your location. Please try a different address."


# ---------- Payment ----------

class PaymentVerificationFailed(ValidationError):
    default_message = "Payment verification failed. Signature mismatch."


class AlreadyRefunded(Conflict):
    default_message = "This order has already been fully refunded"


class InvalidSignature(OrderError):
    status_code = 401
    default_message = "Invalid signature"


class GatewayUnavailable(UpstreamUnavailable):
    default_message = "Payment gateway is unavailable"


class GatewayRejected(UpstreamUnavailable):
    default_message = "Payment gateway rejected the request"


# ---------- Shipping ----------

class ShippingProviderError(UpstreamUnavailable):
    default_message = "Shipping provider is unavailable"


class ShipmentCreateFailed(ShippingProviderError):
    default_message = "Failed to create shipment"


class WaybillAssignFailed(ShippingProviderError):
    default_message = "Failed to generate AWB code"


class PickupRequestFailed(ShippingProviderError):
    default_message = "Failed to request pickup"


class ShipmentCancelFailed(ShippingProviderError):
    default_message = "Failed to cancel shipment"


class TrackingUnavailable(ShippingProviderError):
    default_message = "Tracking information not available yet"
