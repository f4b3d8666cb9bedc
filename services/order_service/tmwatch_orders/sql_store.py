import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .db import (
    CartItemORM,
    OrderItemORM,
    OrderORM,
    OutboxMessageORM,
    ProductORM,
    WishlistItemORM,
    create_sessionmaker,
    init_models,
)
from .errors import (
    AlreadyInWishlist,
    CartItemNotFound,
    InsufficientStock,
    InvalidRequest,
    ProductNotFound,
    WishlistItemNotFound,
)
from .repository import (
    PRODUCT_FIELDS,
    CartLine,
    OrderItemRecord,
    OrderRecord,
    OrderStore,
    OutboxMessage,
    ProductFilter,
    ProductRecord,
    UnitOfWork,
    WishlistEntry,
    storage_errors,
)

logger = logging.getLogger(__name__)


def _product_record(row: ProductORM) -> ProductRecord:
    return ProductRecord(
        id=row.id,
        created_at=row.created_at,
        **{name: getattr(row, name) for name in PRODUCT_FIELDS},
    )


def _order_record(row: OrderORM, items: tuple[OrderItemRecord, ...] = ()) -> OrderRecord:
    return OrderRecord(
        id=row.id,
        user_id=row.user_id,
        total_amount=row.total_amount,
        shipping_address=row.shipping_address,
        payment_method=row.payment_method,
        status=row.status,
        created_at=row.created_at,
        items=items,
    )


class SqlUnitOfWork(UnitOfWork):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_product(self, product_id: int) -> ProductRecord | None:
        res = await self.session.execute(
            select(ProductORM).where(ProductORM.id == product_id).with_for_update()
        )
        row = res.scalar_one_or_none()
        return _product_record(row) if row else None

    async def decrement_stock(self, product_id: int, quantity: int) -> None:
        res = await self.session.execute(
            update(ProductORM)
            .where(ProductORM.id == product_id, ProductORM.stock >= quantity)
            .values(stock=ProductORM.stock - quantity)
        )
        if res.rowcount == 1:
            return
        exists = await self.session.scalar(
            select(ProductORM.id).where(ProductORM.id == product_id)
        )
        if exists is None:
            raise ProductNotFound(product_id)
        raise InsufficientStock(product_id)

    async def insert_order(
        self,
        user_id: int,
        total_amount: Decimal,
        shipping_address: str,
        payment_method: str,
    ) -> int:
        order = OrderORM(
            user_id=user_id,
            total_amount=total_amount,
            shipping_address=shipping_address,
            payment_method=payment_method,
            status="pending",
        )
        self.session.add(order)
        await self.session.flush()
        return order.id

    async def insert_order_item(
        self, order_id: int, product_id: int, quantity: int, price: Decimal
    ) -> None:
        self.session.add(
            OrderItemORM(order_id=order_id, product_id=product_id, quantity=quantity, price=price)
        )
        await self.session.flush()

    async def clear_cart(self, user_id: int) -> int:
        res = await self.session.execute(
            delete(CartItemORM).where(CartItemORM.user_id == user_id)
        )
        return res.rowcount

    async def list_products(self, filters: ProductFilter) -> list[ProductRecord]:
        stmt = select(ProductORM)
        if filters.category:
            stmt = stmt.where(ProductORM.category == filters.category)
        if filters.gender:
            stmt = stmt.where(ProductORM.gender.in_([filters.gender, "unisex"]))
        if filters.brand:
            stmt = stmt.where(ProductORM.brand == filters.brand)
        if filters.min_price is not None:
            stmt = stmt.where(ProductORM.price >= filters.min_price)
        if filters.max_price is not None:
            stmt = stmt.where(ProductORM.price <= filters.max_price)
        if filters.search:
            term = f"%{filters.search}%"
            stmt = stmt.where(
                ProductORM.name.ilike(term)
                | ProductORM.description.ilike(term)
                | ProductORM.brand.ilike(term)
            )
        stmt = stmt.order_by(ProductORM.created_at.desc(), ProductORM.id.desc())
        res = await self.session.execute(stmt)
        return [_product_record(row) for row in res.scalars().all()]

    async def add_product(self, product: ProductRecord) -> int:
        row = ProductORM(**{name: getattr(product, name) for name in PRODUCT_FIELDS})
        if product.id is not None:
            row.id = product.id
        self.session.add(row)
        await self.session.flush()
        return row.id

    async def update_product(self, product_id: int, changes: dict[str, Any]) -> None:
        unknown = set(changes) - set(PRODUCT_FIELDS)
        if unknown:
            raise InvalidRequest(f"Unknown product fields: {', '.join(sorted(unknown))}")
        res = await self.session.execute(
            update(ProductORM).where(ProductORM.id == product_id).values(**changes)
        )
        if res.rowcount == 0:
            raise ProductNotFound(product_id)

    async def delete_product(self, product_id: int) -> None:
        await self.session.execute(delete(CartItemORM).where(CartItemORM.product_id == product_id))
        await self.session.execute(
            delete(WishlistItemORM).where(WishlistItemORM.product_id == product_id)
        )
        res = await self.session.execute(delete(ProductORM).where(ProductORM.id == product_id))
        if res.rowcount == 0:
            raise ProductNotFound(product_id)

    async def get_cart(self, user_id: int) -> list[CartLine]:
        res = await self.session.execute(
            select(CartItemORM, ProductORM)
            .join(ProductORM, CartItemORM.product_id == ProductORM.id)
            .where(CartItemORM.user_id == user_id)
            .order_by(CartItemORM.id)
        )
        return [
            CartLine(
                id=line.id,
                product_id=line.product_id,
                quantity=line.quantity,
                product=_product_record(product),
            )
            for line, product in res.all()
        ]

    async def add_to_cart(self, user_id: int, product_id: int, quantity: int) -> int:
        existing = await self.session.scalar(
            select(CartItemORM).where(
                CartItemORM.user_id == user_id, CartItemORM.product_id == product_id
            )
        )
        if existing:
            existing.quantity += quantity
            await self.session.flush()
            return existing.id

        line = CartItemORM(user_id=user_id, product_id=product_id, quantity=quantity)
        self.session.add(line)
        await self.session.flush()
        return line.id

    async def update_cart_item(self, user_id: int, line_id: int, quantity: int) -> None:
        res = await self.session.execute(
            update(CartItemORM)
            .where(CartItemORM.id == line_id, CartItemORM.user_id == user_id)
            .values(quantity=quantity)
        )
        if res.rowcount == 0:
            raise CartItemNotFound(line_id)

    async def remove_cart_item(self, user_id: int, line_id: int) -> None:
        res = await self.session.execute(
            delete(CartItemORM).where(CartItemORM.id == line_id, CartItemORM.user_id == user_id)
        )
        if res.rowcount == 0:
            raise CartItemNotFound(line_id)

    async def get_wishlist(self, user_id: int) -> list[WishlistEntry]:
        res = await self.session.execute(
            select(WishlistItemORM, ProductORM)
            .join(ProductORM, WishlistItemORM.product_id == ProductORM.id)
            .where(WishlistItemORM.user_id == user_id)
            .order_by(WishlistItemORM.id)
        )
        return [
            WishlistEntry(id=entry.id, product_id=entry.product_id, product=_product_record(product))
            for entry, product in res.all()
        ]

    async def add_to_wishlist(self, user_id: int, product_id: int) -> int:
        existing = await self.session.scalar(
            select(WishlistItemORM.id).where(
                WishlistItemORM.user_id == user_id, WishlistItemORM.product_id == product_id
            )
        )
        if existing is not None:
            raise AlreadyInWishlist(product_id)

        entry = WishlistItemORM(user_id=user_id, product_id=product_id)
        self.session.add(entry)
        await self.session.flush()
        return entry.id

    async def remove_wishlist_item(self, user_id: int, entry_id: int) -> None:
        res = await self.session.execute(
            delete(WishlistItemORM).where(
                WishlistItemORM.id == entry_id, WishlistItemORM.user_id == user_id
            )
        )
        if res.rowcount == 0:
            raise WishlistItemNotFound(entry_id)

    async def list_orders(self, user_id: int) -> list[OrderRecord]:
        res = await self.session.execute(
            select(OrderORM)
            .where(OrderORM.user_id == user_id)
            .order_by(OrderORM.created_at.desc(), OrderORM.id.desc())
        )
        return [_order_record(row) for row in res.scalars().all()]

    async def get_order(self, user_id: int, order_id: int) -> OrderRecord | None:
        order = await self.session.scalar(
            select(OrderORM).where(OrderORM.id == order_id, OrderORM.user_id == user_id)
        )
        if order is None:
            return None

        res = await self.session.execute(
            select(OrderItemORM, ProductORM.name, ProductORM.image, ProductORM.brand)
            .outerjoin(ProductORM, OrderItemORM.product_id == ProductORM.id)
            .where(OrderItemORM.order_id == order_id)
            .order_by(OrderItemORM.id)
        )
        items = tuple(
            OrderItemRecord(
                id=item.id,
                order_id=item.order_id,
                product_id=item.product_id,
                quantity=item.quantity,
                price=item.price,
                product_name=name,
                image=image,
                brand=brand,
            )
            for item, name, image, brand in res.all()
        )
        return _order_record(order, items)

    async def add_outbox_message(self, event_type: str, payload: dict[str, Any]) -> int:
        msg = OutboxMessageORM(event_type=event_type, payload=payload, status="pending")
        self.session.add(msg)
        await self.session.flush()
        return msg.id

    async def pending_outbox_messages(self) -> list[OutboxMessage]:
        res = await self.session.execute(
            select(OutboxMessageORM)
            .where(OutboxMessageORM.status == "pending")
            .order_by(OutboxMessageORM.id)
        )
        return [
            OutboxMessage(id=m.id, event_type=m.event_type, payload=m.payload, status=m.status)
            for m in res.scalars().all()
        ]

    async def mark_outbox_sent(self, message_id: int) -> None:
        await self.session.execute(
            update(OutboxMessageORM)
            .where(OutboxMessageORM.id == message_id)
            .values(status="sent", sent_at=datetime.now(timezone.utc))
        )


class SqlOrderStore(OrderStore):
    """SQLAlchemy backed store, one ``AsyncSession`` per unit of work."""

    name = "sql"

    def __init__(self, database_url: str):
        self.engine, self.sessionmaker = create_sessionmaker(database_url)

    async def init(self) -> None:
        await init_models(self.engine)

    async def close(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def transaction(self):
        async with storage_errors(self.name):
            async with self.sessionmaker() as session:
                async with session.begin():
                    yield SqlUnitOfWork(session)
