from decimal import Decimal

import pytest

from tmwatch_orders.config import Settings
from tmwatch_orders.json_store import JsonOrderStore, JsonUnitOfWork
from tmwatch_orders.repository import ProductFilter, ProductRecord
from tmwatch_orders.sql_store import SqlOrderStore, SqlUnitOfWork

JWT_SECRET = "test-secret"

UNIT_OF_WORK_CLASSES = {"sql": SqlUnitOfWork, "json": JsonUnitOfWork}


@pytest.fixture
def anyio_backend():
    return "asyncio"


def make_settings(tmp_path, backend="json", **overrides) -> Settings:
    values = dict(
        store_backend=backend,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'shop.db'}" if backend == "sql" else None,
        data_dir=str(tmp_path / "data"),
        jwt_secret=JWT_SECRET,
        jwt_algorithm="HS256",
        redis_url=None,
        catalog_cache_ttl=60,
        rabbitmq_url=None,
        outbox_poll_interval=5,
        seed_products=False,
        log_level="DEBUG",
    )
    values.update(overrides)
    return Settings(**values)


def make_store(backend, tmp_path):
    if backend == "sql":
        return SqlOrderStore(f"sqlite+aiosqlite:///{tmp_path / 'shop.db'}")
    return JsonOrderStore(tmp_path / "data")


def product(product_id, price, stock, **fields):
    return ProductRecord(
        id=product_id,
        name=fields.pop("name", f"Watch {product_id}"),
        brand=fields.pop("brand", "CHRONOLUX"),
        price=Decimal(price),
        stock=stock,
        **fields,
    )


async def add_products(store, *products):
    async with store.transaction() as uow:
        for p in products:
            await uow.add_product(p)


async def add_cart(store, user_id, product_id, quantity):
    async with store.transaction() as uow:
        return await uow.add_to_cart(user_id, product_id, quantity)


async def stock_of(store, product_id):
    async with store.transaction() as uow:
        return (await uow.get_product(product_id)).stock


async def cart_of(store, user_id):
    async with store.transaction() as uow:
        return [(line.product_id, line.quantity) for line in await uow.get_cart(user_id)]


async def orders_of(store, user_id):
    async with store.transaction() as uow:
        return await uow.list_orders(user_id)


async def pending_events(store):
    async with store.transaction() as uow:
        return await uow.pending_outbox_messages()


async def all_products(store):
    async with store.transaction() as uow:
        return await uow.list_products(ProductFilter())


@pytest.fixture(params=["sql", "json"])
async def store(request, tmp_path, anyio_backend):
    s = make_store(request.param, tmp_path)
    await s.init()
    await add_products(s, product(1, "100", 5), product(2, "25.50", 10))
    yield s
    await s.close()
