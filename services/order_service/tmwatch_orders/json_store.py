"""Flat JSON file store.

One file per collection in the data directory. A unit of work takes the
store lock, loads the collections in a worker thread, works on that
in-memory copy and, on commit, writes each changed collection to a
temporary file that then replaces the original. A rollback simply drops
the copy, so a failed order never leaves anything behind on disk.
"""
import asyncio
import json
import logging
import os
import tempfile
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any

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

COLLECTIONS = ("products", "cart", "wishlist", "orders", "order_items", "outbox")
_MONEY_FIELDS = ("price", "original_price")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _next_id(rows: list[dict]) -> int:
    return max((row["id"] for row in rows), default=0) + 1


def _parse_time(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _product_record(row: dict) -> ProductRecord:
    data = dict(row)
    for name in _MONEY_FIELDS:
        if data.get(name) is not None:
            data[name] = Decimal(str(data[name]))
    data["created_at"] = _parse_time(data.get("created_at"))
    known = ProductRecord.__dataclass_fields__
    return ProductRecord(**{k: v for k, v in data.items() if k in known})


def _product_row(product: ProductRecord, product_id: int) -> dict:
    row = {
        name: getattr(product, name)
        for name in ProductRecord.__dataclass_fields__
        if name not in ("id", "created_at")
    }
    for name in _MONEY_FIELDS:
        if row[name] is not None:
            row[name] = str(row[name])
    row["id"] = product_id
    row["created_at"] = (product.created_at.isoformat() if product.created_at else _now())
    return row


def _order_record(row: dict, items: tuple[OrderItemRecord, ...] = ()) -> OrderRecord:
    return OrderRecord(
        id=row["id"],
        user_id=row["user_id"],
        total_amount=Decimal(row["total_amount"]),
        shipping_address=row.get("shipping_address", ""),
        payment_method=row.get("payment_method", ""),
        status=row.get("status", "pending"),
        created_at=_parse_time(row.get("created_at")),
        items=items,
    )


class JsonUnitOfWork(UnitOfWork):
    def __init__(self, tables: dict[str, list[dict]]):
        self._tables = tables
        self.dirty: set[str] = set()

    def table(self, name: str) -> list[dict]:
        return self._tables[name]

    def changed(self, name: str) -> list[dict]:
        self.dirty.add(name)
        return self.table(name)

    def changes(self) -> dict[str, list[dict]]:
        return {name: self._tables[name] for name in self.dirty}

    def _product_row(self, product_id: int) -> dict | None:
        return next((p for p in self.table("products") if p["id"] == product_id), None)

    async def get_product(self, product_id: int) -> ProductRecord | None:
        row = self._product_row(product_id)
        return _product_record(row) if row else None

    async def decrement_stock(self, product_id: int, quantity: int) -> None:
        row = self._product_row(product_id)
        if row is None:
            raise ProductNotFound(product_id)
        if row.get("stock", 0) < quantity:
            raise InsufficientStock(product_id)
        self.changed("products")
        row["stock"] -= quantity

    async def insert_order(
        self,
        user_id: int,
        total_amount: Decimal,
        shipping_address: str,
        payment_method: str,
    ) -> int:
        orders = self.changed("orders")
        order_id = _next_id(orders)
        orders.append(
            {
                "id": order_id,
                "user_id": user_id,
                "total_amount": str(total_amount),
                "shipping_address": shipping_address,
                "payment_method": payment_method,
                "status": "pending",
                "created_at": _now(),
            }
        )
        return order_id

    async def insert_order_item(
        self, order_id: int, product_id: int, quantity: int, price: Decimal
    ) -> None:
        items = self.changed("order_items")
        items.append(
            {
                "id": _next_id(items),
                "order_id": order_id,
                "product_id": product_id,
                "quantity": quantity,
                "price": str(price),
            }
        )

    async def clear_cart(self, user_id: int) -> int:
        cart = self.changed("cart")
        kept = [line for line in cart if line["user_id"] != user_id]
        removed = len(cart) - len(kept)
        cart[:] = kept
        return removed

    async def list_products(self, filters: ProductFilter) -> list[ProductRecord]:
        products = [_product_record(row) for row in self.table("products")]
        products = [p for p in products if filters.matches(p)]
        epoch = datetime.min.replace(tzinfo=timezone.utc)
        products.sort(key=lambda p: (p.created_at or epoch, p.id), reverse=True)
        return products

    async def add_product(self, product: ProductRecord) -> int:
        products = self.changed("products")
        product_id = product.id if product.id is not None else _next_id(products)
        if self._product_row(product_id) is not None:
            raise ValueError(f"Product {product_id} already exists")
        products.append(_product_row(product, product_id))
        return product_id

    async def update_product(self, product_id: int, changes: dict[str, Any]) -> None:
        unknown = set(changes) - set(PRODUCT_FIELDS)
        if unknown:
            raise InvalidRequest(f"Unknown product fields: {', '.join(sorted(unknown))}")
        row = self._product_row(product_id)
        if row is None:
            raise ProductNotFound(product_id)
        self.changed("products")
        for name, value in changes.items():
            if name in _MONEY_FIELDS and value is not None:
                value = str(value)
            row[name] = value

    async def delete_product(self, product_id: int) -> None:
        row = self._product_row(product_id)
        if row is None:
            raise ProductNotFound(product_id)
        self.changed("products").remove(row)
        for name in ("cart", "wishlist"):
            rows = self.changed(name)
            rows[:] = [r for r in rows if r["product_id"] != product_id]

    async def get_cart(self, user_id: int) -> list[CartLine]:
        lines = []
        for line in self.table("cart"):
            if line["user_id"] != user_id:
                continue
            product = self._product_row(line["product_id"])
            if product is None:
                continue
            lines.append(
                CartLine(
                    id=line["id"],
                    product_id=line["product_id"],
                    quantity=line["quantity"],
                    product=_product_record(product),
                )
            )
        return lines

    async def add_to_cart(self, user_id: int, product_id: int, quantity: int) -> int:
        cart = self.changed("cart")
        for line in cart:
            if line["user_id"] == user_id and line["product_id"] == product_id:
                line["quantity"] += quantity
                return line["id"]

        line_id = _next_id(cart)
        cart.append(
            {
                "id": line_id,
                "user_id": user_id,
                "product_id": product_id,
                "quantity": quantity,
                "created_at": _now(),
            }
        )
        return line_id

    def _cart_line(self, user_id: int, line_id: int) -> dict:
        for line in self.table("cart"):
            if line["id"] == line_id and line["user_id"] == user_id:
                return line
        raise CartItemNotFound(line_id)

    async def update_cart_item(self, user_id: int, line_id: int, quantity: int) -> None:
        line = self._cart_line(user_id, line_id)
        self.changed("cart")
        line["quantity"] = quantity

    async def remove_cart_item(self, user_id: int, line_id: int) -> None:
        line = self._cart_line(user_id, line_id)
        self.changed("cart").remove(line)

    async def get_wishlist(self, user_id: int) -> list[WishlistEntry]:
        entries = []
        for entry in self.table("wishlist"):
            if entry["user_id"] != user_id:
                continue
            product = self._product_row(entry["product_id"])
            if product is None:
                continue
            entries.append(
                WishlistEntry(
                    id=entry["id"],
                    product_id=entry["product_id"],
                    product=_product_record(product),
                )
            )
        return entries

    async def add_to_wishlist(self, user_id: int, product_id: int) -> int:
        wishlist = self.table("wishlist")
        if any(e["user_id"] == user_id and e["product_id"] == product_id for e in wishlist):
            raise AlreadyInWishlist(product_id)

        entry_id = _next_id(wishlist)
        self.changed("wishlist").append(
            {"id": entry_id, "user_id": user_id, "product_id": product_id, "created_at": _now()}
        )
        return entry_id

    async def remove_wishlist_item(self, user_id: int, entry_id: int) -> None:
        for entry in self.table("wishlist"):
            if entry["id"] == entry_id and entry["user_id"] == user_id:
                self.changed("wishlist").remove(entry)
                return
        raise WishlistItemNotFound(entry_id)

    async def list_orders(self, user_id: int) -> list[OrderRecord]:
        orders = [_order_record(o) for o in self.table("orders") if o["user_id"] == user_id]
        epoch = datetime.min.replace(tzinfo=timezone.utc)
        orders.sort(key=lambda o: (o.created_at or epoch, o.id), reverse=True)
        return orders

    async def get_order(self, user_id: int, order_id: int) -> OrderRecord | None:
        row = next(
            (o for o in self.table("orders") if o["id"] == order_id and o["user_id"] == user_id),
            None,
        )
        if row is None:
            return None

        items = []
        for item in self.table("order_items"):
            if item["order_id"] != order_id:
                continue
            product = self._product_row(item["product_id"]) or {}
            items.append(
                OrderItemRecord(
                    id=item["id"],
                    order_id=order_id,
                    product_id=item["product_id"],
                    quantity=item["quantity"],
                    price=Decimal(item["price"]),
                    product_name=product.get("name"),
                    image=product.get("image"),
                    brand=product.get("brand"),
                )
            )
        return _order_record(row, tuple(items))

    async def add_outbox_message(self, event_type: str, payload: dict[str, Any]) -> int:
        outbox = self.changed("outbox")
        message_id = _next_id(outbox)
        outbox.append(
            {
                "id": message_id,
                "event_type": event_type,
                "payload": payload,
                "status": "pending",
                "created_at": _now(),
                "sent_at": None,
            }
        )
        return message_id

    async def pending_outbox_messages(self) -> list[OutboxMessage]:
        return [
            OutboxMessage(id=m["id"], event_type=m["event_type"], payload=m["payload"])
            for m in self.table("outbox")
            if m["status"] == "pending"
        ]

    async def mark_outbox_sent(self, message_id: int) -> None:
        for message in self.changed("outbox"):
            if message["id"] == message_id:
                message["status"] = "sent"
                message["sent_at"] = _now()
                return


class JsonOrderStore(OrderStore):
    """Store backed by JSON files, serialised by a single in-process lock.

    File reads and writes run in a worker thread, the event loop only waits
    on them. The lock only guards this process: running several workers
    against one data directory needs the SQL backend.
    """

    name = "json"

    def __init__(self, data_dir: str | os.PathLike):
        self.data_dir = Path(data_dir)
        self._lock = asyncio.Lock()

    def path(self, name: str) -> Path:
        return self.data_dir / f"{name}.json"

    def _create_missing(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        missing = {name: [] for name in COLLECTIONS if not self.path(name).exists()}
        if missing:
            self._commit(missing)

    async def init(self) -> None:
        await asyncio.to_thread(self._create_missing)
        logger.info("JSON file storage initialized: %s", self.data_dir)

    def read_collection(self, name: str) -> list[dict]:
        path = self.path(name)
        if not path.exists():
            return []
        with path.open(encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, list):
            raise ValueError(f"{path} does not hold a JSON array")
        return data

    def read_all(self) -> dict[str, list[dict]]:
        return {name: self.read_collection(name) for name in COLLECTIONS}

    def _commit(self, changes: dict[str, list[dict]]) -> None:
        staged = []
        try:
            for name, rows in changes.items():
                fd, tmp = tempfile.mkstemp(dir=self.data_dir, prefix=f".{name}.", suffix=".tmp")
                staged.append((tmp, self.path(name)))
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(rows, f, indent=2)
        except BaseException:
            for tmp, _ in staged:
                if os.path.exists(tmp):
                    os.unlink(tmp)
            raise
        for tmp, target in staged:
            os.replace(tmp, target)

    @asynccontextmanager
    async def transaction(self):
        async with self._lock:
            async with storage_errors(self.name):
                uow = JsonUnitOfWork(await asyncio.to_thread(self.read_all))
                yield uow
                if uow.dirty:
                    write = asyncio.ensure_future(asyncio.to_thread(self._commit, uow.changes()))
                    try:
                        await asyncio.shield(write)
                    except asyncio.CancelledError:
                        # files are being swapped in, finish before releasing the lock
                        await write
                        raise
