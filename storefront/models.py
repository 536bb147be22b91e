"""
Records returned to API callers. Field names follow the JSON wire format.
"""
from pydantic import BaseModel, ConfigDict, Field

from storefront.order_state import OrderStatus


class User(BaseModel):
    id: int
    email: str
    firstName: str
    lastName: str


class Product(BaseModel):
    id: int
    name: str
    price: float | None = None
    category: str | None = None


class OrderItem(BaseModel):
    id: int
    orderId: int
    productId: int
    quantity: int


class Order(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    id: int
    userId: int
    status: OrderStatus
    items: list[OrderItem] = Field(default_factory=list)
