"""
Order service: the only mutation path for orders and order items.
Each operation checks request identities, loads current state, asks the lifecycle rules
whether the change is allowed and then persists it.
"""
import logging
from contextlib import contextmanager
from typing import AsyncContextManager, Iterator, Protocol

from storefront import order_state
from storefront.errors import ApiError, BadRequestError, ForbiddenError, InternalError, NotFoundError
from storefront.metrics import order_items_changed_total, orders_completed_total, orders_created_total
from storefront.models import Order, OrderItem
from storefront.order_state import OrderStatus
from storefront.redis_client import LockTimeoutError
from storefront.repositories import ActiveOrderExistsError, OrderNotActiveError, OrderRepository, ProductLookup
from storefront.validation import CreateOrderBody, OrderBody, OrderItemBody

logger = logging.getLogger(__name__)

ORDER_NOT_FOUND = "The order with the given id was not found"
ORDER_ITEM_NOT_FOUND = "The order item with the given id was not found"
PRODUCT_NOT_FOUND = "The product with the given id was not found"
ACTIVE_ORDER_EXISTS = "Could not create the order: an active order already exists"


class UserLocks(Protocol):
    def hold(self, user_id: int) -> AsyncContextManager[None]:
        ...


@contextmanager
def _store_errors(action: str) -> Iterator[None]:
    """Turn unexpected store failures into a generic internal error."""
    try:
        yield
    except ApiError:
        raise
    except Exception as e:
        logger.exception("Store failure %s", action)
        raise InternalError(f"An unexpected error occurred {action}", e) from e


def _expect(result, action: str):
    if result is None:
        raise InternalError(f"An unexpected error occurred {action}")
    return result


class OrderService:
    def __init__(self, orders: OrderRepository, products: ProductLookup, locks: UserLocks):
        self._orders = orders
        self._products = products
        self._locks = locks

    async def list_orders(self, user_id: int, status: str | None = None) -> list[Order]:
        if status is not None and status not in order_state.VALID_TRANSITIONS:
            raise BadRequestError("Invalid status filter")
        with _store_errors("when trying to get the orders"):
            return await self._orders.list_orders_for_user(user_id, status)

    async def get_order(self, user_id: int, order_id: int) -> Order:
        with _store_errors("when trying to get the order"):
            order = await self._orders.get_order(user_id, order_id)
        if order is None:
            # Also the answer for orders owned by someone else
            raise NotFoundError(ORDER_NOT_FOUND)
        return order

    async def create_order(self, user_id: int, body: CreateOrderBody) -> Order:
        order_state.check_same_id(body.userId, user_id, "user")
        action = "during the creation of the order"
        with _store_errors(action):
            try:
                async with self._locks.hold(user_id):
                    active = await self._orders.list_orders_for_user(user_id, OrderStatus.ACTIVE.value)
                    if active:
                        raise ForbiddenError(ACTIVE_ORDER_EXISTS)
                    try:
                        order = _expect(await self._orders.create_order(user_id), action)
                    except ActiveOrderExistsError:
                        # Lost a race the lock did not cover; the store constraint caught it
                        logger.info("Concurrent active order creation rejected for user_id=%s", user_id)
                        raise ForbiddenError(ACTIVE_ORDER_EXISTS)
            except LockTimeoutError:
                logger.warning("Timed out waiting for the order lock of user_id=%s", user_id)
                raise InternalError(f"An unexpected error occurred {action}")
        orders_created_total.inc()
        logger.info("Created order_id=%s for user_id=%s", order.id, user_id)
        return order

    async def complete_order(self, user_id: int, order_id: int, body: OrderBody) -> Order:
        order_state.check_same_id(body.userId, user_id, "user")
        order_state.check_same_id(body.id, order_id, "order")
        action = "when trying to update the order"
        with _store_errors(action):
            existing = await self.get_order(user_id, order_id)
            order_state.check_status_change(existing.status, body.status)
            updated = await self._orders.update_order(order_id, user_id, body.status)
            if updated is None:
                # Another request may have completed it between the read and the write
                current = await self._orders.get_order(user_id, order_id)
                if current is None:
                    raise NotFoundError(ORDER_NOT_FOUND)
                order_state.check_status_change(current.status, body.status)
                raise InternalError(f"An unexpected error occurred {action}")
        orders_completed_total.inc()
        logger.info("Completed order_id=%s for user_id=%s", order_id, user_id)
        return updated

    async def add_item(self, user_id: int, order_id: int, body: OrderItemBody) -> OrderItem:
        action = "when trying to add the product to the order"
        with _store_errors(action):
            order = await self.get_order(user_id, order_id)
            order_state.check_can_add_items(order.status)
            if await self._products.get(body.productId) is None:
                raise NotFoundError(PRODUCT_NOT_FOUND)
            try:
                item = await self._orders.add_order_item(user_id, order_id, body.productId, body.quantity)
            except OrderNotActiveError as e:
                self._raise_not_active(e)
            item = _expect(item, action)
        order_items_changed_total.labels(operation="add").inc()
        return item

    async def update_item(self, user_id: int, order_id: int, item_id: int, body: OrderItemBody) -> OrderItem:
        if body.id is None:
            raise BadRequestError("id: Field required")
        order_state.check_same_id(body.id, item_id, "order item")
        action = "when trying to update the product in the order"
        with _store_errors(action):
            order = await self.get_order(user_id, order_id)
            order_state.check_can_modify_items(order.status)
            stored = await self._get_item_of(order, item_id)
            order_state.check_same_product(body.productId, stored.productId)
            try:
                item = await self._orders.update_order_item(item_id, order_id, body.productId, body.quantity)
            except OrderNotActiveError as e:
                self._raise_not_active(e)
            item = _expect(item, action)
        order_items_changed_total.labels(operation="update").inc()
        return item

    async def delete_item(self, user_id: int, order_id: int, item_id: int) -> OrderItem:
        action = "when trying to remove the product from the order"
        with _store_errors(action):
            order = await self.get_order(user_id, order_id)
            order_state.check_can_modify_items(order.status)
            await self._get_item_of(order, item_id)
            try:
                item = await self._orders.delete_order_item(item_id)
            except OrderNotActiveError as e:
                self._raise_not_active(e)
            item = _expect(item, action)
        order_items_changed_total.labels(operation="delete").inc()
        return item

    async def _get_item_of(self, order: Order, item_id: int) -> OrderItem:
        item = await self._orders.get_order_item(item_id)
        if item is None or item.orderId != order.id:
            raise NotFoundError(ORDER_ITEM_NOT_FOUND)
        return item

    @staticmethod
    def _raise_not_active(e: OrderNotActiveError):
        if e.current_status is None:
            raise NotFoundError(ORDER_NOT_FOUND)
        raise ForbiddenError(order_state.ORDER_ALREADY_COMPLETED)
