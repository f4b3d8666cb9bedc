"""Storage interface shared by the SQL and JSON backends.

Every read and write goes through a unit of work obtained from
``OrderStore.transaction()``. Leaving the block normally commits, leaving it
with an exception rolls everything back. Backend failures surface as
``StorageError``.
"""
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, AsyncIterator

from .errors import OrderError, StorageError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProductRecord:
    id: int | None
    name: str
    brand: str
    price: Decimal
    stock: int = 0
    original_price: Decimal | None = None
    discount: int = 0
    rating: float = 0.0
    reviews: int = 0
    image: str | None = None
    gender: str | None = None
    category: str | None = None
    strap_type: str | None = None
    dial_color: str | None = None
    movement: str | None = None
    description: str | None = None
    created_at: datetime | None = None


# fields a caller may set on a product, id and created_at belong to the store
PRODUCT_FIELDS = (
    "name", "brand", "price", "stock", "original_price", "discount", "rating",
    "reviews", "image", "gender", "category", "strap_type", "dial_color",
    "movement", "description",
)


@dataclass(frozen=True)
class ProductFilter:
    category: str | None = None
    gender: str | None = None
    brand: str | None = None
    min_price: Decimal | None = None
    max_price: Decimal | None = None
    search: str | None = None

    def matches(self, product: ProductRecord) -> bool:
        if self.category and product.category != self.category:
            return False
        if self.gender and product.gender not in (self.gender, "unisex"):
            return False
        if self.brand and product.brand != self.brand:
            return False
        if self.min_price is not None and product.price < self.min_price:
            return False
        if self.max_price is not None and product.price > self.max_price:
            return False
        if self.search:
            needle = self.search.lower()
            haystacks = (product.name, product.description or "", product.brand)
            if not any(needle in h.lower() for h in haystacks):
                return False
        return True

    def cache_key(self) -> str:
        parts = [
            f"{name}={value}"
            for name, value in sorted(self.__dict__.items())
            if value is not None and value != ""
        ]
        return "&".join(parts) or "all"


@dataclass(frozen=True)
class CartLine:
    id: int
    product_id: int
    quantity: int
    product: ProductRecord


@dataclass(frozen=True)
class WishlistEntry:
    id: int
    product_id: int
    product: ProductRecord


@dataclass(frozen=True)
class OrderItemRecord:
    id: int
    order_id: int
    product_id: int
    quantity: int
    price: Decimal
    product_name: str | None = None
    image: str | None = None
    brand: str | None = None


@dataclass(frozen=True)
class OrderRecord:
    id: int
    user_id: int
    total_amount: Decimal
    shipping_address: str
    payment_method: str
    status: str
    created_at: datetime | None
    items: tuple[OrderItemRecord, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class OutboxMessage:
    id: int
    event_type: str
    payload: dict[str, Any]
    status: str = "pending"


class UnitOfWork(ABC):
    """Typed operations available inside one transaction."""

    # order placement

    @abstractmethod
    async def get_product(self, product_id: int) -> ProductRecord | None:
        ...

    @abstractmethod
    async def decrement_stock(self, product_id: int, quantity: int) -> None:
        """Take ``quantity`` units off the product's stock.

        Raises ``InsufficientStock`` instead of letting stock go below zero
        and ``ProductNotFound`` if the product row no longer exists.
        """

    @abstractmethod
    async def insert_order(
        self,
        user_id: int,
        total_amount: Decimal,
        shipping_address: str,
        payment_method: str,
    ) -> int:
        ...

    @abstractmethod
    async def insert_order_item(
        self, order_id: int, product_id: int, quantity: int, price: Decimal
    ) -> None:
        ...

    @abstractmethod
    async def clear_cart(self, user_id: int) -> int:
        """Delete every cart line of the user, returns how many were removed."""

    # catalogue

    @abstractmethod
    async def list_products(self, filters: ProductFilter) -> list[ProductRecord]:
        """Products matching ``filters``, newest first."""

    @abstractmethod
    async def add_product(self, product: ProductRecord) -> int:
        ...

    @abstractmethod
    async def update_product(self, product_id: int, changes: dict[str, Any]) -> None:
        """Overwrite the given product fields, ``ProductNotFound`` if absent.

        Keys outside ``PRODUCT_FIELDS`` raise ``InvalidRequest``.
        """

    @abstractmethod
    async def delete_product(self, product_id: int) -> None:
        """Remove the product and any cart or wishlist lines pointing at it.

        Order items keep their own price snapshot and stay untouched.
        """

    # cart

    @abstractmethod
    async def get_cart(self, user_id: int) -> list[CartLine]:
        ...

    @abstractmethod
    async def add_to_cart(self, user_id: int, product_id: int, quantity: int) -> int:
        """Add to the cart, merging with an existing line for the same product."""

    @abstractmethod
    async def update_cart_item(self, user_id: int, line_id: int, quantity: int) -> None:
        ...

    @abstractmethod
    async def remove_cart_item(self, user_id: int, line_id: int) -> None:
        ...

    # wishlist

    @abstractmethod
    async def get_wishlist(self, user_id: int) -> list[WishlistEntry]:
        ...

    @abstractmethod
    async def add_to_wishlist(self, user_id: int, product_id: int) -> int:
        """Raises ``AlreadyInWishlist`` for a product the user already saved."""

    @abstractmethod
    async def remove_wishlist_item(self, user_id: int, entry_id: int) -> None:
        ...

    # order history

    @abstractmethod
    async def list_orders(self, user_id: int) -> list[OrderRecord]:
        ...

    @abstractmethod
    async def get_order(self, user_id: int, order_id: int) -> OrderRecord | None:
        ...

    # outbox

    @abstractmethod
    async def add_outbox_message(self, event_type: str, payload: dict[str, Any]) -> int:
        ...

    @abstractmethod
    async def pending_outbox_messages(self) -> list[OutboxMessage]:
        ...

    @abstractmethod
    async def mark_outbox_sent(self, message_id: int) -> None:
        ...


class OrderStore(ABC):
    """Process-wide persistence handle, injected into the application."""

    name = "store"

    async def init(self) -> None:
        pass

    async def close(self) -> None:
        pass

    @abstractmethod
    def transaction(self) -> "AsyncIterator[UnitOfWork]":
        """Async context manager yielding a ``UnitOfWork``."""


@asynccontextmanager
async def storage_errors(backend: str):
    """Turn anything that is not an ``OrderError`` into ``StorageError``."""
    try:
        yield
    except OrderError:
        raise
    except Exception as exc:
        logger.error("%s store failure", backend, exc_info=exc)
        raise StorageError() from exc
