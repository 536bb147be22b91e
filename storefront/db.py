"""
Async Postgres: users, products, orders and order_items.
One active order per user is a partial unique index, so concurrent creations cannot both commit.
Item writes lock the parent order row so they serialize with completing that order.
"""
import asyncpg
from argon2 import PasswordHasher
from asyncpg.exceptions import UniqueViolationError

from storefront.config import settings
from storefront.models import Order, OrderItem, Product, User
from storefront.order_state import OrderStatus
from storefront.repositories import (
    ActiveOrderExistsError,
    EmailTakenError,
    OrderNotActiveError,
    OrderRepository,
    ProductLookup,
    UserRepository,
)

_pool: asyncpg.Pool | None = None

_hasher = PasswordHasher()


async def get_pool() -> asyncpg.Pool:
    global _pool
    if _pool is None:
        _pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=1,
            max_size=5,
            command_timeout=60,
        )
    return _pool


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


async def init_schema(pool: asyncpg.Pool, reset: bool = False) -> None:
    async with pool.acquire() as conn:
        if reset:
            await conn.execute("DROP TABLE IF EXISTS order_items, orders, products, users;")
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id SERIAL PRIMARY KEY,
                email VARCHAR(255) NOT NULL UNIQUE,
                first_name VARCHAR(100) NOT NULL,
                last_name VARCHAR(100) NOT NULL,
                password_digest TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT NOW(),
                updated_at TIMESTAMP DEFAULT NOW()
            );
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS products (
                id SERIAL PRIMARY KEY,
                name VARCHAR(255) NOT NULL,
                price NUMERIC(12, 2),
                category VARCHAR(100)
            );
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS orders (
                id SERIAL PRIMARY KEY,
                user_id INT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                status VARCHAR(20) NOT NULL DEFAULT 'active'
                    CHECK (status IN ('active', 'complete')),
                created_at TIMESTAMP DEFAULT NOW(),
                updated_at TIMESTAMP DEFAULT NOW()
            );
        """)
        await conn.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS uq_orders_one_active_per_user
            ON orders(user_id) WHERE status = 'active';
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS order_items (
                id SERIAL PRIMARY KEY,
                order_id INT NOT NULL REFERENCES orders(id) ON DELETE CASCADE,
                product_id INT NOT NULL REFERENCES products(id),
                quantity INT NOT NULL CHECK (quantity > 0)
            );
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_order_items_order_id
            ON order_items(order_id);
        """)


def hash_password(password: str) -> str:
    """Argon2id digest in PHC string form; salt and parameters are embedded."""
    return _hasher.hash(password)


def _user(row) -> User:
    return User(
        id=row["id"],
        email=row["email"],
        firstName=row["first_name"],
        lastName=row["last_name"],
    )


def _item(row) -> OrderItem:
    return OrderItem(
        id=row["id"],
        orderId=row["order_id"],
        productId=row["product_id"],
        quantity=row["quantity"],
    )


class PgUserRepository(UserRepository):
    _COLUMNS = "id, email, first_name, last_name"

    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    async def index(self) -> list[User]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(f"SELECT {self._COLUMNS} FROM users ORDER BY id;")
        return [_user(r) for r in rows]

    async def show(self, user_id: int) -> User | None:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(f"SELECT {self._COLUMNS} FROM users WHERE id = $1;", user_id)
        return _user(row) if row else None

    async def show_by_email(self, email: str) -> User | None:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {self._COLUMNS} FROM users WHERE email = $1;",
                email.lower(),
            )
        return _user(row) if row else None

    async def create(self, email: str, first_name: str, last_name: str, password: str) -> User | None:
        async with self._pool.acquire() as conn:
            try:
                row = await conn.fetchrow(
                    f"""
                    INSERT INTO users (email, first_name, last_name, password_digest)
                    VALUES ($1, $2, $3, $4)
                    RETURNING {self._COLUMNS};
                    """,
                    email.lower(),
                    first_name,
                    last_name,
                    hash_password(password),
                )
            except UniqueViolationError:
                raise EmailTakenError(email)
        return _user(row) if row else None

    async def update(self, user_id: int, first_name: str, last_name: str, email: str) -> User | None:
        async with self._pool.acquire() as conn:
            try:
                row = await conn.fetchrow(
                    f"""
                    UPDATE users SET first_name = $2, last_name = $3, email = $4, updated_at = NOW()
                    WHERE id = $1
                    RETURNING {self._COLUMNS};
                    """,
                    user_id,
                    first_name,
                    last_name,
                    email.lower(),
                )
            except UniqueViolationError:
                raise EmailTakenError(email)
        return _user(row) if row else None

    async def delete(self, user_id: int) -> User | None:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"DELETE FROM users WHERE id = $1 RETURNING {self._COLUMNS};",
                user_id,
            )
        return _user(row) if row else None


class PgProductLookup(ProductLookup):
    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    async def get(self, product_id: int) -> Product | None:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT id, name, price, category FROM products WHERE id = $1;",
                product_id,
            )
        if row is None:
            return None
        price = row["price"]
        return Product(
            id=row["id"],
            name=row["name"],
            price=float(price) if price is not None else None,
            category=row["category"],
        )


class PgOrderRepository(OrderRepository):
    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    async def _with_items(self, conn: asyncpg.Connection, rows) -> list[Order]:
        if not rows:
            return []
        item_rows = await conn.fetch(
            """
            SELECT id, order_id, product_id, quantity FROM order_items
            WHERE order_id = ANY($1::int[])
            ORDER BY id;
            """,
            [r["id"] for r in rows],
        )
        items: dict[int, list[OrderItem]] = {}
        for ir in item_rows:
            items.setdefault(ir["order_id"], []).append(_item(ir))
        return [
            Order(id=r["id"], userId=r["user_id"], status=r["status"], items=items.get(r["id"], []))
            for r in rows
        ]

    async def list_orders_for_user(self, user_id: int, status: str | None = None) -> list[Order]:
        async with self._pool.acquire() as conn:
            if status is None:
                rows = await conn.fetch(
                    "SELECT id, user_id, status FROM orders WHERE user_id = $1 ORDER BY id;",
                    user_id,
                )
            else:
                rows = await conn.fetch(
                    "SELECT id, user_id, status FROM orders WHERE user_id = $1 AND status = $2 ORDER BY id;",
                    user_id,
                    status,
                )
            return await self._with_items(conn, rows)

    async def get_order(self, user_id: int, order_id: int) -> Order | None:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT id, user_id, status FROM orders WHERE id = $1 AND user_id = $2;",
                order_id,
                user_id,
            )
            if row is None:
                return None
            return (await self._with_items(conn, [row]))[0]

    async def create_order(self, user_id: int) -> Order | None:
        async with self._pool.acquire() as conn:
            try:
                row = await conn.fetchrow(
                    """
                    INSERT INTO orders (user_id, status, updated_at)
                    VALUES ($1, $2, NOW())
                    RETURNING id, user_id, status;
                    """,
                    user_id,
                    OrderStatus.ACTIVE.value,
                )
            except UniqueViolationError:
                raise ActiveOrderExistsError(user_id)
        if row is None:
            return None
        return Order(id=row["id"], userId=row["user_id"], status=row["status"])

    async def update_order(self, order_id: int, user_id: int, status: str) -> Order | None:
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    """
                    UPDATE orders SET status = $3, updated_at = NOW()
                    WHERE id = $1 AND user_id = $2 AND status = $4
                    RETURNING id, user_id, status;
                    """,
                    order_id,
                    user_id,
                    status,
                    OrderStatus.ACTIVE.value,
                )
                if row is None:
                    return None
                return (await self._with_items(conn, [row]))[0]

    async def get_order_item(self, item_id: int) -> OrderItem | None:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT id, order_id, product_id, quantity FROM order_items WHERE id = $1;",
                item_id,
            )
        return _item(row) if row else None

    @staticmethod
    async def _lock_order(conn: asyncpg.Connection, order_id: int, user_id: int | None = None) -> str | None:
        """Lock the order row for the rest of the transaction and return its status."""
        if user_id is None:
            row = await conn.fetchrow(
                "SELECT status FROM orders WHERE id = $1 FOR UPDATE;",
                order_id,
            )
        else:
            row = await conn.fetchrow(
                "SELECT status FROM orders WHERE id = $1 AND user_id = $2 FOR UPDATE;",
                order_id,
                user_id,
            )
        return row["status"] if row else None

    async def add_order_item(self, user_id: int, order_id: int, product_id: int, quantity: int) -> OrderItem | None:
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                status = await self._lock_order(conn, order_id, user_id)
                if status != OrderStatus.ACTIVE.value:
                    raise OrderNotActiveError(order_id, status)
                row = await conn.fetchrow(
                    """
                    INSERT INTO order_items (order_id, product_id, quantity)
                    VALUES ($1, $2, $3)
                    RETURNING id, order_id, product_id, quantity;
                    """,
                    order_id,
                    product_id,
                    quantity,
                )
        return _item(row) if row else None

    async def update_order_item(self, item_id: int, order_id: int, product_id: int, quantity: int) -> OrderItem | None:
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                status = await self._lock_order(conn, order_id)
                if status is None or status == OrderStatus.COMPLETE.value:
                    raise OrderNotActiveError(order_id, status)
                # Product id is matched, never written
                row = await conn.fetchrow(
                    """
                    UPDATE order_items SET quantity = $4
                    WHERE id = $1 AND order_id = $2 AND product_id = $3
                    RETURNING id, order_id, product_id, quantity;
                    """,
                    item_id,
                    order_id,
                    product_id,
                    quantity,
                )
        return _item(row) if row else None

    async def delete_order_item(self, item_id: int) -> OrderItem | None:
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                order_row = await conn.fetchrow(
                    """
                    SELECT o.id, o.status FROM orders o
                    JOIN order_items i ON i.order_id = o.id
                    WHERE i.id = $1
                    FOR UPDATE OF o;
                    """,
                    item_id,
                )
                if order_row is None:
                    return None
                if order_row["status"] == OrderStatus.COMPLETE.value:
                    raise OrderNotActiveError(order_row["id"], order_row["status"])
                row = await conn.fetchrow(
                    "DELETE FROM order_items WHERE id = $1 RETURNING id, order_id, product_id, quantity;",
                    item_id,
                )
        return _item(row) if row else None
