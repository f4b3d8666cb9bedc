"""Checkout: turn a cart of line items into a persisted order.

All lines are validated, and priced from the catalogue, before anything is
written. The order header, its items, the stock decrements, the cart clear
and the ``order.created`` outbox event then go into the same unit of work,
so a failure at any point leaves the store exactly as it was.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Protocol

from .errors import InsufficientStock, InvalidRequest, ProductNotFound
from .repository import OrderStore

logger = logging.getLogger(__name__)

ORDER_CREATED = "order.created"


class LineItemLike(Protocol):
    product_id: int
    quantity: int


@dataclass(frozen=True)
class LineItem:
    product_id: int
    quantity: int


@dataclass(frozen=True)
class PlacementResult:
    order_id: int
    total: Decimal


def _normalize(items: Iterable[LineItemLike] | None) -> list[LineItem]:
    lines = [LineItem(int(i.product_id), int(i.quantity)) for i in items or ()]
    if not lines:
        raise InvalidRequest()
    for line in lines:
        if line.quantity < 1:
            raise InvalidRequest(f"Quantity for product {line.product_id} must be at least 1")
    return lines


async def place_order(
    store: OrderStore,
    user_id: int,
    items: Iterable[LineItemLike] | None,
    shipping_address: str,
    payment_method: str,
) -> PlacementResult:
    lines = _normalize(items)

    try:
        async with store.transaction() as uow:
            total = Decimal("0")
            priced: list[tuple[LineItem, Decimal]] = []
            requested: dict[int, int] = {}

            for line in lines:
                product = await uow.get_product(line.product_id)
                if product is None:
                    raise ProductNotFound(line.product_id)

                # repeated lines for one product draw on the same stock
                requested[line.product_id] = requested.get(line.product_id, 0) + line.quantity
                if product.stock < requested[line.product_id]:
                    raise InsufficientStock(line.product_id)

                total += product.price * line.quantity
                priced.append((line, product.price))

            order_id = await uow.insert_order(user_id, total, shipping_address, payment_method)

            for line, price in priced:
                await uow.insert_order_item(order_id, line.product_id, line.quantity, price)
                await uow.decrement_stock(line.product_id, line.quantity)

            await uow.clear_cart(user_id)
            await uow.add_outbox_message(
                ORDER_CREATED,
                {"order_id": order_id, "user_id": user_id, "total_amount": str(total)},
            )
    except (ProductNotFound, InsufficientStock) as exc:
        logger.info("Order rejected for user %s: %s", user_id, exc.message)
        raise

    logger.info("Order %s placed for user %s, total %s", order_id, user_id, total)
    return PlacementResult(order_id=order_id, total=total)
