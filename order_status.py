"""
Order status rules

    pending (never assigned) -> confirm -> failed | cancelled | completed | delivered -> refund

completed and cancelled are terminal: the only way out is refund.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from errors import ConflictError, ValidationError

MAX_REASON_LENGTH = 500
MAX_TRACKING_LENGTH = 100


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRM = "confirm"
    FAILED = "failed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    DELIVERED = "delivered"
    REFUND = "refund"


class PaymentMethod(str, Enum):
    ONLINE = "online"
    PAY_AT_LOCATION = "pay_at_location"


ORDER_STATUS_VALUES = [s.value for s in OrderStatus]
PAYMENT_METHOD_VALUES = [m.value for m in PaymentMethod]

# orders can never be pushed back to pending
ADMIN_TARGET_STATUSES = [s for s in OrderStatus if s is not OrderStatus.PENDING]
TERMINAL_STATUSES = frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED})


@dataclass
class Transition:
    status: OrderStatus
    cancel_reason: Optional[str] = None
    tracking_number: Optional[str] = None


def parse_admin_target(value: Optional[str]) -> OrderStatus:
    try:
        status = OrderStatus(value)
    except ValueError:
        status = None
    if status is None or status not in ADMIN_TARGET_STATUSES:
        allowed = ", ".join(s.value for s in ADMIN_TARGET_STATUSES)
        raise ValidationError(f"Invalid order status provided. Allowed statuses: {allowed}")
    return status


def _clean_reason(reason: Optional[str], required: bool) -> Optional[str]:
    if reason is None or not reason.strip():
        if required:
            raise ValidationError("Cancel reason is required when cancelling an order")
        if reason is not None:
            raise ValidationError("Cancel reason cannot be empty")
        return None
    reason = reason.strip()
    if len(reason) > MAX_REASON_LENGTH:
        raise ValidationError(f"Cancel reason cannot exceed {MAX_REASON_LENGTH} characters")
    return reason


def validate_transition(current: str, target: str, cancel_reason: Optional[str] = None,
                        tracking_number: Optional[str] = None) -> Transition:
    """Check an admin status change and return the side data to store with it."""
    status = parse_admin_target(target)

    if OrderStatus(current) in TERMINAL_STATUSES and status is not OrderStatus.REFUND:
        raise ConflictError(f"Cannot change status. Order is already {current}.")

    transition = Transition(status=status)
    if status is OrderStatus.CANCELLED:
        transition.cancel_reason = _clean_reason(cancel_reason, required=True)

    if status is OrderStatus.DELIVERED:
        if tracking_number is None or not tracking_number.strip():
            raise ValidationError("Tracking number is required when marking order as delivered")
        tracking_number = tracking_number.strip()
        if len(tracking_number) > MAX_TRACKING_LENGTH:
            raise ValidationError(f"Tracking number cannot exceed {MAX_TRACKING_LENGTH} characters")
        transition.tracking_number = tracking_number

    return transition


def validate_customer_cancel(current: str, cancel_reason: Optional[str] = None) -> Transition:
    """Customers may cancel only while the order is still confirm; the reason is optional."""
    reason = _clean_reason(cancel_reason, required=False)
    if current != OrderStatus.CONFIRM.value:
        raise ConflictError("Only confirmed orders can be cancelled")
    return Transition(status=OrderStatus.CANCELLED, cancel_reason=reason)
