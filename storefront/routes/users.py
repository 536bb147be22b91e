import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, Query, Request

from storefront.auth import require_admin, require_current_user
from storefront.dependencies import get_order_service, get_user_repository
from storefront.errors import ApiError, BadRequestError, InternalError, NotFoundError
from storefront.models import Order, OrderItem, User
from storefront.repositories import EmailTakenError, UserRepository
from storefront.services.orders import OrderService
from storefront.validation import parse_id, validate, validate_order_item

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])

USER_NOT_FOUND = "The user with the given id was not found"
EMAIL_TAKEN = "A user already exists with this email"


async def _json_body(request: Request) -> Any:
    # Raw JSON, not a FastAPI body model: validate() must return the first error message unchanged
    raw = await request.body()
    if not raw:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        raise BadRequestError("The request body is not valid JSON")


async def _user_call(coro, action: str):
    try:
        result = await coro
    except (ApiError, EmailTakenError):
        raise
    except Exception as e:
        logger.exception("Store failure %s", action)
        raise InternalError(f"An unexpected error occurred {action}", e) from e
    if result is None:
        raise InternalError(f"An unexpected error occurred {action}")
    return result


@router.get("/", dependencies=[Depends(require_admin)])
async def list_users(users: UserRepository = Depends(get_user_repository)) -> list[User]:
    try:
        return await users.index()
    except Exception as e:
        logger.exception("Could not list users")
        raise InternalError("Could not get the users", e) from e


@router.get("/{userId}", dependencies=[Depends(require_current_user)])
async def get_user(userId: str, users: UserRepository = Depends(get_user_repository)) -> User:
    user_id = parse_id(userId, "user")
    user = await users.show(user_id)
    if user is None:
        raise NotFoundError(USER_NOT_FOUND)
    return user


@router.post("/", status_code=201)
async def register_user(request: Request, users: UserRepository = Depends(get_user_repository)) -> User:
    """New registration. Open to anonymous callers."""
    body = validate("user_input", await _json_body(request))
    if await users.show_by_email(body.email):
        raise BadRequestError(EMAIL_TAKEN)
    try:
        user = await _user_call(
            users.create(body.email, body.firstName, body.lastName, body.password),
            "during the creation of the user",
        )
    except EmailTakenError:
        raise BadRequestError(EMAIL_TAKEN)
    logger.info("Registered user_id=%s", user.id)
    return user


@router.put("/{userId}", dependencies=[Depends(require_current_user)])
async def update_user(
    userId: str,
    request: Request,
    users: UserRepository = Depends(get_user_repository),
) -> User:
    user_id = parse_id(userId, "user")
    body = validate("user_update", await _json_body(request))
    if await users.show(user_id) is None:
        raise NotFoundError(USER_NOT_FOUND)
    try:
        return await _user_call(
            users.update(user_id, body.firstName, body.lastName, body.email),
            "when trying to update the user",
        )
    except EmailTakenError:
        raise BadRequestError(EMAIL_TAKEN)


@router.delete("/{userId}", dependencies=[Depends(require_admin)])
async def delete_user(userId: str, users: UserRepository = Depends(get_user_repository)) -> User:
    user_id = parse_id(userId, "user")
    if await users.show(user_id) is None:
        raise NotFoundError(USER_NOT_FOUND)
    user = await _user_call(users.delete(user_id), "when trying to delete the user")
    logger.info("Deleted user_id=%s with their orders", user_id)
    return user


@router.get("/{userId}/orders/", dependencies=[Depends(require_current_user)])
async def list_orders(
    userId: str,
    status: str | None = Query(default=None),
    service: OrderService = Depends(get_order_service),
) -> list[Order]:
    user_id = parse_id(userId, "user")
    return await service.list_orders(user_id, status)


@router.get("/{userId}/orders/{orderId}", dependencies=[Depends(require_current_user)])
async def get_order(userId: str, orderId: str, service: OrderService = Depends(get_order_service)) -> Order:
    user_id = parse_id(userId, "user")
    order_id = parse_id(orderId, "order")
    return await service.get_order(user_id, order_id)


@router.post("/{userId}/orders/", status_code=201, dependencies=[Depends(require_current_user)])
async def create_order(userId: str, request: Request, service: OrderService = Depends(get_order_service)) -> Order:
    user_id = parse_id(userId, "user")
    body = validate("create_order", await _json_body(request))
    return await service.create_order(user_id, body)


@router.put("/{userId}/orders/{orderId}", dependencies=[Depends(require_current_user)])
async def complete_order(
    userId: str,
    orderId: str,
    request: Request,
    service: OrderService = Depends(get_order_service),
) -> Order:
    user_id = parse_id(userId, "user")
    order_id = parse_id(orderId, "order")
    body = validate("order", await _json_body(request))
    return await service.complete_order(user_id, order_id, body)


@router.post("/{userId}/orders/{orderId}/items", status_code=201, dependencies=[Depends(require_current_user)])
async def add_order_item(
    userId: str,
    orderId: str,
    request: Request,
    service: OrderService = Depends(get_order_service),
) -> OrderItem:
    user_id = parse_id(userId, "user")
    order_id = parse_id(orderId, "order")
    body = validate_order_item(await _json_body(request))
    return await service.add_item(user_id, order_id, body)


@router.put("/{userId}/orders/{orderId}/items/{id}", dependencies=[Depends(require_current_user)])
async def update_order_item(
    userId: str,
    orderId: str,
    id: str,
    request: Request,
    service: OrderService = Depends(get_order_service),
) -> OrderItem:
    user_id = parse_id(userId, "user")
    order_id = parse_id(orderId, "order")
    item_id = parse_id(id, "order item")
    body = validate_order_item(await _json_body(request), require_id=True)
    return await service.update_item(user_id, order_id, item_id, body)


@router.delete("/{userId}/orders/{orderId}/items/{id}", dependencies=[Depends(require_current_user)])
async def delete_order_item(
    userId: str,
    orderId: str,
    id: str,
    service: OrderService = Depends(get_order_service),
) -> OrderItem:
    user_id = parse_id(userId, "user")
    order_id = parse_id(orderId, "order")
    item_id = parse_id(id, "order item")
    return await service.delete_item(user_id, order_id, item_id)
