"""Notification copy per lifecycle event and audience."""

from __future__ import annotations

from dataclasses import dataclass

from src.modules.orders.constants import (
    EVENT_ASSIGNMENT_CANCELLED,
    EVENT_CANCELLED,
    EVENT_DELIVERED,
    EVENT_DELIVERY_ACCEPTED,
    EVENT_DELIVERY_ASSIGNED,
    EVENT_ORDER_CONFIRMED,
    EVENT_ORDER_PLACED,
    EVENT_ORDER_REJECTED,
    EVENT_OUT_FOR_DELIVERY,
    EVENT_PICKED_UP,
)

AUDIENCE_CUSTOMER = "customer"
AUDIENCE_VENDOR = "vendor"
AUDIENCE_PARTNER = "delivery_partner"

# Payload key holding each audience's recipient id
RECIPIENT_KEYS = {
    AUDIENCE_CUSTOMER: "customer_id",
    AUDIENCE_VENDOR: "vendor_id",
    AUDIENCE_PARTNER: "partner_id",
}


@dataclass(frozen=True)
class Template:
    audience: str
    title: str
    body: str


TEMPLATES: dict[str, list[Template]] = {
    EVENT_ORDER_PLACED: [
        Template(
            AUDIENCE_CUSTOMER,
            "Order Placed Successfully!",
            "Order #{order_number} for Rs.{amount} has been placed. Waiting for vendor confirmation.",
        ),
        Template(
            AUDIENCE_VENDOR,
            "New Order Received!",
            "Order #{order_number} for {product_name} (Rs.{amount}). Please confirm or reject.",
        ),
    ],
    EVENT_ORDER_CONFIRMED: [
        Template(
            AUDIENCE_CUSTOMER,
            "Order Confirmed!",
            "{vendor_name} confirmed your order #{order_number}. Preparing for delivery.",
        ),
    ],
    EVENT_ORDER_REJECTED: [
        Template(
            AUDIENCE_CUSTOMER,
            "Order Update",
            "{vendor_name} is unable to fulfill {product_name} in order #{order_number}.",
        ),
    ],
    EVENT_DELIVERY_ASSIGNED: [
        Template(
            AUDIENCE_CUSTOMER,
            "Delivery Partner Assigned",
            "{partner_name} will deliver your order #{order_number}. "
            "Share code {delivery_otp} at delivery.",
        ),
        Template(
            AUDIENCE_VENDOR,
            "Delivery Partner Assigned",
            "{partner_name} assigned for order #{order_number}. Prepare {product_name} "
            "for pickup; pickup code {pickup_otp}.",
        ),
        Template(
            AUDIENCE_PARTNER,
            "New Delivery Assigned",
            "Order #{order_number}: collect {product_name} from {vendor_name}.",
        ),
    ],
    EVENT_DELIVERY_ACCEPTED: [
        Template(
            AUDIENCE_VENDOR,
            "Pickup Reminder",
            "Delivery partner arriving soon for order #{order_number}. "
            "Please keep {product_name} ready.",
        ),
    ],
    EVENT_PICKED_UP: [
        Template(
            AUDIENCE_CUSTOMER,
            "Order Picked Up!",
            "Your order #{order_number} is now with our delivery partner.",
        ),
        Template(
            AUDIENCE_VENDOR,
            "Order Picked Up",
            "Order #{order_number} picked up by the delivery partner.",
        ),
    ],
    EVENT_OUT_FOR_DELIVERY: [
        Template(
            AUDIENCE_CUSTOMER,
            "Out for Delivery!",
            "Your order #{order_number} is on the way!",
        ),
    ],
    EVENT_DELIVERED: [
        Template(
            AUDIENCE_CUSTOMER,
            "Delivered Successfully!",
            "Order #{order_number} has been delivered. Thank you for shopping with us!",
        ),
        Template(
            AUDIENCE_VENDOR,
            "Order Delivered!",
            "Order #{order_number} delivered to {customer_name}.",
        ),
    ],
    EVENT_CANCELLED: [
        Template(
            AUDIENCE_VENDOR,
            "Order Cancelled",
            "Customer cancelled order #{order_number} for {product_name}. Update your inventory.",
        ),
    ],
    EVENT_ASSIGNMENT_CANCELLED: [
        Template(
            AUDIENCE_VENDOR,
            "Delivery Partner Changed",
            "The delivery partner for order #{order_number} dropped out ({reason}). "
            "We are finding another one.",
        ),
    ],
}


class _Blank(dict):
    def __missing__(self, key: str) -> str:
        return ""


def render(template: Template, payload: dict) -> tuple[str, str]:
    values = _Blank(payload)
    return template.title.format_map(values), template.body.format_map(values)
