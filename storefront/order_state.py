"""
Order lifecycle state machine. An order starts active and can only be completed; complete is terminal.
Item mutations are gated on the order status.
"""
from enum import Enum

from storefront.errors import BadRequestError, ForbiddenError


class OrderStatus(str, Enum):
    ACTIVE = "active"
    COMPLETE = "complete"


ORDER_ALREADY_COMPLETED = "Updating an order that is not active is not allowed"
INVALID_STATUS = "Invalid status for this operation"

# Current status -> allowed target statuses
VALID_TRANSITIONS: dict[str, list[str]] = {
    OrderStatus.ACTIVE.value: [OrderStatus.COMPLETE.value],
    OrderStatus.COMPLETE.value: [],  # terminal
}


def is_valid_transition(current_status: str, target_status: str) -> bool:
    """True if target_status is allowed after current_status."""
    allowed = VALID_TRANSITIONS.get(current_status, [])
    return target_status in allowed


def check_status_change(current_status: str, target_status: str) -> None:
    """
    Raise unless current_status -> target_status is a legal transition.
    A non-active order is rejected as a business-rule conflict before the target is looked at;
    any target other than complete is invalid input.
    """
    if current_status != OrderStatus.ACTIVE.value:
        raise ForbiddenError(ORDER_ALREADY_COMPLETED)
    if not is_valid_transition(current_status, target_status):
        raise BadRequestError(INVALID_STATUS)


def check_can_add_items(status: str) -> None:
    if status != OrderStatus.ACTIVE.value:
        raise ForbiddenError(ORDER_ALREADY_COMPLETED)


def check_can_modify_items(status: str) -> None:
    # Update and delete only need the order not to be finished yet
    if status == OrderStatus.COMPLETE.value:
        raise ForbiddenError(ORDER_ALREADY_COMPLETED)


def check_same_id(body_id: int, path_id: int, what: str) -> None:
    if body_id != path_id:
        raise BadRequestError(f"Mismatched {what} ids")


def check_same_product(requested_product_id: int, stored_product_id: int) -> None:
    """Item updates change quantity only; the product cannot be swapped."""
    if requested_product_id != stored_product_id:
        raise BadRequestError("Mismatched product ids")
