"""
FastAPI providers for the stores and the order service. Tests override these.
"""
from storefront.db import PgOrderRepository, PgProductLookup, PgUserRepository, get_pool
from storefront.redis_client import RedisUserLocks, get_redis
from storefront.repositories import UserRepository
from storefront.services.orders import OrderService


async def get_user_repository() -> UserRepository:
    return PgUserRepository(await get_pool())


async def get_order_service() -> OrderService:
    pool = await get_pool()
    return OrderService(
        orders=PgOrderRepository(pool),
        products=PgProductLookup(pool),
        locks=RedisUserLocks(await get_redis()),
    )
