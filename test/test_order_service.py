"""
Order service against the in-memory stores. Coroutines are driven with asyncio.run.
"""
import asyncio

import pytest

from _helper import (
    BrokenOrderRepository,
    InMemoryOrderRepository,
    InMemoryProductLookup,
    LocalUserLocks,
    NoLocks,
    StuckLocks,
)
from storefront.errors import BadRequestError, ForbiddenError, InternalError, NotFoundError
from storefront.services.orders import ACTIVE_ORDER_EXISTS, OrderService
from storefront.validation import CreateOrderBody, OrderBody, OrderItemBody


def run(coro):
    return asyncio.run(coro)


def create(service, user_id):
    return run(service.create_order(user_id, CreateOrderBody(userId=user_id)))


def complete(service, user_id, order_id, status="complete"):
    return run(service.complete_order(user_id, order_id, OrderBody(id=order_id, userId=user_id, status=status)))


def add(service, user_id, order_id, product_id=1, quantity=2):
    return run(service.add_item(user_id, order_id, OrderItemBody(productId=product_id, quantity=quantity)))


def test_order_lifecycle_scenario(service):
    order = create(service, 7)
    assert (order.userId, order.status, order.items) == (7, "active", [])

    with pytest.raises(ForbiddenError) as exc:
        create(service, 7)
    assert exc.value.message == ACTIVE_ORDER_EXISTS

    done = complete(service, 7, order.id)
    assert (done.id, done.userId, done.status) == (order.id, 7, "complete")

    with pytest.raises(ForbiddenError):
        add(service, 7, order.id, product_id=1, quantity=2)


def test_new_order_allowed_after_completion(service):
    first = create(service, 3)
    complete(service, 3, first.id)
    second = create(service, 3)
    assert second.id != first.id
    assert second.status == "active"


def test_second_active_order_rejected_regardless_of_completed_ones(service):
    for _ in range(3):
        complete(service, 5, create(service, 5).id)
    create(service, 5)
    with pytest.raises(ForbiddenError):
        create(service, 5)
    statuses = [o.status for o in run(service.list_orders(5))]
    assert statuses.count("active") == 1
    assert statuses.count("complete") == 3


def test_create_with_mismatched_user_id(service, order_repo):
    with pytest.raises(BadRequestError, match="Mismatched user ids"):
        run(service.create_order(7, CreateOrderBody(userId=8)))
    assert order_repo.calls == 0


@pytest.mark.parametrize("locks", [None, NoLocks()])
def test_concurrent_creation_yields_one_active_order(locks):
    repo = InMemoryOrderRepository()
    service = OrderService(repo, InMemoryProductLookup(), locks or LocalUserLocks())

    async def attempt():
        try:
            return await service.create_order(11, CreateOrderBody(userId=11))
        except ForbiddenError:
            return None

    async def race():
        return await asyncio.gather(*(attempt() for _ in range(10)))

    results = run(race())
    assert sum(r is not None for r in results) == 1
    active = [o for o in repo.orders.values() if o["user_id"] == 11 and o["status"] == "active"]
    assert len(active) == 1


def test_list_orders_filters_by_status(service):
    first = create(service, 2)
    complete(service, 2, first.id)
    create(service, 2)
    assert [o.status for o in run(service.list_orders(2, "complete"))] == ["complete"]
    assert [o.status for o in run(service.list_orders(2, "active"))] == ["active"]
    assert run(service.list_orders(404)) == []
    with pytest.raises(BadRequestError):
        run(service.list_orders(2, "shipped"))


def test_foreign_order_looks_missing(service):
    order = create(service, 1)
    with pytest.raises(NotFoundError) as foreign:
        run(service.get_order(2, order.id))
    with pytest.raises(NotFoundError) as missing:
        run(service.get_order(2, 999))
    assert foreign.value.to_dict() == missing.value.to_dict()


def test_complete_rejections(service):
    order = create(service, 4)
    with pytest.raises(BadRequestError, match="Invalid status"):
        complete(service, 4, order.id, status="active")
    with pytest.raises(BadRequestError, match="Mismatched order ids"):
        run(service.complete_order(4, order.id, OrderBody(id=order.id + 1, userId=4, status="complete")))
    with pytest.raises(NotFoundError):
        complete(service, 5, order.id)
    complete(service, 4, order.id)
    for status in ("complete", "active"):
        with pytest.raises(ForbiddenError):
            complete(service, 4, order.id, status=status)


def test_add_item_checks_product(service, products):
    order = create(service, 9)
    with pytest.raises(NotFoundError, match="product"):
        add(service, 9, order.id, product_id=77)
    item = add(service, 9, order.id, product_id=2, quantity=3)
    assert (item.orderId, item.productId, item.quantity) == (order.id, 2, 3)
    assert run(service.get_order(9, order.id)).items == [item]
    assert products.calls == [77, 2]


def test_add_item_to_foreign_order_is_not_found(service):
    order = create(service, 9)
    with pytest.raises(NotFoundError):
        add(service, 10, order.id)


def test_update_item_changes_quantity_only(service):
    order = create(service, 6)
    item = add(service, 6, order.id, product_id=1, quantity=1)
    updated = run(service.update_item(6, order.id, item.id, OrderItemBody(id=item.id, productId=1, quantity=5)))
    assert (updated.productId, updated.quantity) == (1, 5)

    with pytest.raises(BadRequestError, match="Mismatched product ids"):
        run(service.update_item(6, order.id, item.id, OrderItemBody(id=item.id, productId=2, quantity=5)))
    with pytest.raises(BadRequestError, match="Mismatched order item ids"):
        run(service.update_item(6, order.id, item.id, OrderItemBody(id=item.id + 1, productId=1, quantity=5)))


def test_item_of_another_order_is_not_found(service):
    mine = create(service, 1)
    theirs = create(service, 2)
    their_item = add(service, 2, theirs.id)
    with pytest.raises(NotFoundError, match="order item"):
        run(service.update_item(1, mine.id, their_item.id, OrderItemBody(id=their_item.id, productId=1, quantity=1)))
    with pytest.raises(NotFoundError, match="order item"):
        run(service.delete_item(1, mine.id, their_item.id))


def test_items_frozen_after_completion(service):
    order = create(service, 8)
    item = add(service, 8, order.id)
    complete(service, 8, order.id)
    with pytest.raises(ForbiddenError):
        run(service.update_item(8, order.id, item.id, OrderItemBody(id=item.id, productId=1, quantity=9)))
    with pytest.raises(ForbiddenError):
        run(service.delete_item(8, order.id, item.id))


def test_delete_item(service):
    order = create(service, 8)
    item = add(service, 8, order.id)
    assert run(service.delete_item(8, order.id, item.id)) == item
    with pytest.raises(NotFoundError):
        run(service.delete_item(8, order.id, item.id))


def test_store_failures_are_internal_errors():
    service = OrderService(BrokenOrderRepository(), InMemoryProductLookup(), NoLocks())
    with pytest.raises(InternalError) as exc:
        create(service, 1)
    assert exc.value.message == (
        "An unexpected error occurred during the creation of the order. connection reset by peer"
    )


def test_missing_write_result_is_internal_error():
    repo = BrokenOrderRepository()
    service = OrderService(repo, InMemoryProductLookup(), NoLocks())
    repo.orders[1] = {"id": 1, "user_id": 1, "status": "active"}
    with pytest.raises(InternalError, match="when trying to update the order"):
        complete(service, 1, 1)


def test_lock_timeout_is_a_generic_internal_error():
    repo = InMemoryOrderRepository()
    service = OrderService(repo, InMemoryProductLookup(), StuckLocks())
    with pytest.raises(InternalError) as exc:
        create(service, 4)
    assert exc.value.message == "An unexpected error occurred during the creation of the order"
    assert "lock:" not in exc.value.message
    assert repo.orders == {}
