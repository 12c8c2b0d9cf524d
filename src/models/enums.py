import enum


class ItemStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class AssignmentStatus(str, enum.Enum):
    ASSIGNED = "assigned"
    ACCEPTED = "accepted"
    PICKED_UP = "picked_up"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class AssignmentRequestStatus(str, enum.Enum):
    QUEUED = "QUEUED"
    MISSING_GEO = "MISSING_GEO"
    FULFILLED = "FULFILLED"
    CLOSED = "CLOSED"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    REFUNDED = "REFUNDED"
    FAILED = "FAILED"


class ActorRole(str, enum.Enum):
    CUSTOMER = "CUSTOMER"
    VENDOR = "VENDOR"
    DELIVERY_PARTNER = "DELIVERY_PARTNER"
    ADMIN = "ADMIN"
    SYSTEM = "SYSTEM"


class DisplayStatus(str, enum.Enum):
    """Status shown to customers and vendors; derived, never stored."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    ASSIGNED_TO_DELIVERY = "assigned_to_delivery"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class SlotPriority(str, enum.Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class PartnerCancellationReason(str, enum.Enum):
    CUSTOMER_UNAVAILABLE = "Customer unavailable"
    INCORRECT_ADDRESS = "Incorrect address"
    DAMAGED_PRODUCT = "Damaged product"
    CUSTOMER_REFUSED = "Customer refused delivery"
    DELIVERY_ISSUES = "Delivery issues"
    PAYMENT_ISSUES = "Payment issues"
    VENDOR_ISSUES = "Vendor issues"
    WEATHER_CONDITIONS = "Weather conditions"
    VEHICLE_BREAKDOWN = "Vehicle breakdown"
    OTHER = "Other"


class ItemCancellationReason(str, enum.Enum):
    FAULT_IN_PRODUCT = "FAULT_IN_PRODUCT"
    NOT_NEEDED_NOW = "NOT_NEEDED_NOW"
    OTHER = "OTHER"


class EventStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
