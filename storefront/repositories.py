"""
Storage contracts consumed by the order service and the HTTP layer.
Implementations: Postgres in storefront.db; in-memory doubles in the tests.
"""
from abc import ABC, abstractmethod

from storefront.models import Order, OrderItem, Product, User


class ActiveOrderExistsError(Exception):
    """Raised when a user already owns an active order."""
    def __init__(self, user_id: int):
        self.user_id = user_id
        super().__init__(f"user {user_id} already has an active order")


class OrderNotActiveError(Exception):
    """Raised when an item write finds its order missing, foreign or no longer open."""
    def __init__(self, order_id: int, current_status: str | None = None):
        self.order_id = order_id
        self.current_status = current_status
        super().__init__(f"order {order_id} is {current_status or 'missing'}")


class EmailTakenError(Exception):
    """Raised when another user already registered the email."""


class OrderRepository(ABC):
    """Durable orders and order items. Enforces one active order per user."""

    @abstractmethod
    async def list_orders_for_user(self, user_id: int, status: str | None = None) -> list[Order]:
        ...

    @abstractmethod
    async def get_order(self, user_id: int, order_id: int) -> Order | None:
        """The order if it exists and belongs to user_id."""

    @abstractmethod
    async def create_order(self, user_id: int) -> Order | None:
        """Create an active order. Raises ActiveOrderExistsError if one is already open."""

    @abstractmethod
    async def update_order(self, order_id: int, user_id: int, status: str) -> Order | None:
        """Write status if the order is owned by user_id and still active; None otherwise."""

    @abstractmethod
    async def get_order_item(self, item_id: int) -> OrderItem | None:
        ...

    @abstractmethod
    async def add_order_item(self, user_id: int, order_id: int, product_id: int, quantity: int) -> OrderItem | None:
        ...

    @abstractmethod
    async def update_order_item(self, item_id: int, order_id: int, product_id: int, quantity: int) -> OrderItem | None:
        ...

    @abstractmethod
    async def delete_order_item(self, item_id: int) -> OrderItem | None:
        ...


class UserRepository(ABC):

    @abstractmethod
    async def index(self) -> list[User]:
        ...

    @abstractmethod
    async def show(self, user_id: int) -> User | None:
        ...

    @abstractmethod
    async def show_by_email(self, email: str) -> User | None:
        ...

    @abstractmethod
    async def create(self, email: str, first_name: str, last_name: str, password: str) -> User | None:
        """Raises EmailTakenError if the email is registered."""

    @abstractmethod
    async def update(self, user_id: int, first_name: str, last_name: str, email: str) -> User | None:
        ...

    @abstractmethod
    async def delete(self, user_id: int) -> User | None:
        """Remove the user; their orders and items go with them."""


class ProductLookup(ABC):

    @abstractmethod
    async def get(self, product_id: int) -> Product | None:
        ...
