# orders/types.py
"""
Value objects passed between the order services and the provider clients.

JSON columns (address snapshot, shipment status history) are converted to and
from these records only at the model boundary.
"""
from dataclasses import asdict, dataclass, field
from decimal import Decimal
from typing import List, Optional


@dataclass(frozen=True)
class AddressSnapshot:
    street: str
    city: str
    state: str
    pincode: str
    country: str = "India"
    phone_number: str = ""

    @classmethod
    def from_address(cls, address):
        return cls(
            street=address.street,
            city=address.city,
            state=address.state,
            pincode=address.pincode,
            country=address.country,
            phone_number=address.phone_number,
        )

    @classmethod
    def from_dict(cls, data):
        data = data or {}
        return cls(
            street=data.get("street", ""),
            city=data.get("city", ""),
            state=data.get("state", ""),
            pincode=data.get("pincode", ""),
            country=data.get("country", "India"),
            phone_number=data.get("phone_number", ""),
        )

    def to_dict(self):
        return asdict(self)


@dataclass(frozen=True)
class StatusHistoryEntry:
    status: str
    timestamp: str
    courier_name: Optional[str] = None
    awb_code: Optional[str] = None

    @classmethod
    def from_dict(cls, data):
        return cls(
            status=data.get("status", ""),
            timestamp=data.get("timestamp", ""),
            courier_name=data.get("courier_name"),
            awb_code=data.get("awb_code"),
        )

    def to_dict(self):
        return asdict(self)

    @property
    def dedupe_key(self):
        return (self.status, self.timestamp)


@dataclass(frozen=True)
class CourierOption:
    courier_id: int
    name: str
    rate: Decimal
    etd: Optional[str] = None

    def to_dict(self):
        return {"id": self.courier_id, "name": self.name, "rate": float(self.rate), "etd": self.etd}


@dataclass(frozen=True)
class ServiceabilityQuote:
    available: bool
    cheapest_cost: Decimal = Decimal("0")
    etd: Optional[str] = None
    courier_id: Optional[int] = None
    courier_name: Optional[str] = None
    all_options: List[CourierOption] = field(default_factory=list)

    def to_dict(self):
        return {
            "available": self.available,
            "shippingCost": float(self.cheapest_cost),
            "estimatedDays": self.etd,
            "courierId": self.courier_id,
            "courierName": self.courier_name,
            "allCouriers": [option.to_dict() for option in self.all_options],
        }


@dataclass(frozen=True)
class ShipmentRef:
    external_order_id: str
    external_shipment_id: str


@dataclass(frozen=True)
class Waybill:
    awb_code: str
    courier_name: Optional[str] = None


@dataclass(frozen=True)
class TrackingInfo:
    status: Optional[str]
    history: list
    eta: Optional[str] = None
    tracking_url: Optional[str] = None
    awb_code: Optional[str] = None
    courier_name: Optional[str] = None


@dataclass(frozen=True)
class GatewayRefund:
    external_refund_id: str
    remote_status: str


@dataclass
class BookingOutcome:
    """Result of the best-effort shipment booking that follows a verified payment"""

    booked: bool
    shipping_detail: object = None
    failed_step: Optional[str] = None
    error: Optional[str] = None


@dataclass
class PaymentVerification:
    order: object
    already_verified: bool = False
    booking: Optional[BookingOutcome] = None


@dataclass
class CheckoutResult:
    order: object
    replayed: bool = False
    courier_name: Optional[str] = None
    used_fallback_shipping: bool = False
