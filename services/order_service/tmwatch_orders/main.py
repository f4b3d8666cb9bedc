import asyncio
import contextlib
import logging
from decimal import Decimal

from fastapi import Depends, FastAPI, Request, status
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .auth import CurrentUser, get_current_user
from .backends import build_store
from .catalog import CatalogCache
from .config import Settings, configure_logging, load_settings
from .errors import InvalidRequest, OrderError, OrderNotFound, ProductNotFound
from .outbox_publisher import publish_outbox_messages
from .placement import place_order
from .repository import OrderStore, ProductFilter, ProductRecord
from .schemas import (
    AddToCartRequest,
    AddToWishlistRequest,
    Cart,
    CartLine,
    CreateOrderRequest,
    Message,
    Order,
    OrderCreated,
    OrderDetail,
    OrderList,
    OrderWithItems,
    Product,
    ProductCreate,
    ProductCreated,
    ProductDetail,
    ProductList,
    ProductUpdate,
    UpdateCartRequest,
    Wishlist,
    WishlistEntry,
)
from .seed import seed_products

logger = logging.getLogger(__name__)


def get_store(request: Request) -> OrderStore:
    return request.app.state.store


def get_cache(request: Request) -> CatalogCache | None:
    return request.app.state.catalog_cache


def create_app(
    settings: Settings | None = None,
    store: OrderStore | None = None,
    catalog_cache: CatalogCache | None = None,
) -> FastAPI:
    """Build the service. Anything not passed in is derived from the environment
    at startup."""
    app = FastAPI(title="TM WATCH Order Service", version="1.0.0")
    app.state.settings = settings
    app.state.store = store
    app.state.catalog_cache = catalog_cache
    app.state.outbox_task = None

    @app.exception_handler(OrderError)
    async def order_error_handler(request: Request, exc: OrderError):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        # checkout reports unparseable bodies as InvalidRequest
        if request.method == "POST" and request.url.path == "/orders":
            logger.info("Rejected malformed order request: %s", exc.errors())
            error = InvalidRequest("Malformed order request")
            return await order_error_handler(request, error)
        return await request_validation_exception_handler(request, exc)

    @app.on_event("startup")
    async def on_startup():
        if app.state.settings is None:
            app.state.settings = load_settings()
        cfg: Settings = app.state.settings
        configure_logging(cfg.log_level)

        if app.state.store is None:
            app.state.store = build_store(cfg)
        await app.state.store.init()
        if cfg.seed_products:
            await seed_products(app.state.store)

        if app.state.catalog_cache is None and cfg.redis_url:
            app.state.catalog_cache = CatalogCache.from_url(cfg.redis_url, cfg.catalog_cache_ttl)

        if cfg.rabbitmq_url:
            app.state.outbox_task = asyncio.create_task(
                publish_outbox_messages(
                    app.state.store, cfg.rabbitmq_url, cfg.outbox_poll_interval
                )
            )
        logger.info("Order service started with %s store", app.state.store.name)

    @app.on_event("shutdown")
    async def on_shutdown():
        task = app.state.outbox_task
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            app.state.outbox_task = None
        await app.state.store.close()

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": "order_service"}

    @app.get("/products", response_model=ProductList)
    async def list_products(
        category: str | None = None,
        gender: str | None = None,
        brand: str | None = None,
        min_price: Decimal | None = None,
        max_price: Decimal | None = None,
        search: str | None = None,
        store: OrderStore = Depends(get_store),
        cache: CatalogCache | None = Depends(get_cache),
    ):
        filters = ProductFilter(
            category=category,
            gender=gender,
            brand=brand,
            min_price=min_price,
            max_price=max_price,
            search=search,
        )
        cached = cache.get(filters) if cache else None
        if cached is not None:
            products = [Product(**p) for p in cached]
        else:
            async with store.transaction() as uow:
                records = await uow.list_products(filters)
            products = [Product.model_validate(r) for r in records]
            if cache:
                cache.set(filters, [p.model_dump(mode="json") for p in products])
        return ProductList(count=len(products), products=products)

    @app.get("/products/{product_id}", response_model=ProductDetail)
    async def get_product(product_id: int, store: OrderStore = Depends(get_store)):
        async with store.transaction() as uow:
            record = await uow.get_product(product_id)
        if record is None:
            raise ProductNotFound(product_id)
        return ProductDetail(product=Product.model_validate(record))

    @app.post("/products", response_model=ProductCreated, status_code=status.HTTP_201_CREATED)
    async def create_product(
        req: ProductCreate,
        user: CurrentUser = Depends(get_current_user),
        store: OrderStore = Depends(get_store),
        cache: CatalogCache | None = Depends(get_cache),
    ):
        async with store.transaction() as uow:
            product_id = await uow.add_product(ProductRecord(id=None, **req.model_dump()))
        if cache:
            cache.invalidate()
        logger.info("User %s created product %s", user.id, product_id)
        return ProductCreated(productId=product_id)

    @app.put("/products/{product_id}", response_model=Message)
    async def update_product(
        product_id: int,
        req: ProductUpdate,
        user: CurrentUser = Depends(get_current_user),
        store: OrderStore = Depends(get_store),
        cache: CatalogCache | None = Depends(get_cache),
    ):
        changes = req.model_dump(exclude_unset=True)
        if not changes:
            raise InvalidRequest("No fields to update")
        for name in ("name", "brand", "price", "stock"):
            if name in changes and changes[name] is None:
                raise InvalidRequest(f"Field {name} cannot be null")
        async with store.transaction() as uow:
            await uow.update_product(product_id, changes)
        if cache:
            cache.invalidate()
        logger.info("User %s updated product %s: %s", user.id, product_id, sorted(changes))
        return Message(message="Product updated successfully")

    @app.delete("/products/{product_id}", response_model=Message)
    async def delete_product(
        product_id: int,
        user: CurrentUser = Depends(get_current_user),
        store: OrderStore = Depends(get_store),
        cache: CatalogCache | None = Depends(get_cache),
    ):
        async with store.transaction() as uow:
            await uow.delete_product(product_id)
        if cache:
            cache.invalidate()
        logger.info("User %s deleted product %s", user.id, product_id)
        return Message(message="Product deleted successfully")

    @app.get("/cart", response_model=Cart)
    async def get_cart(
        user: CurrentUser = Depends(get_current_user),
        store: OrderStore = Depends(get_store),
    ):
        async with store.transaction() as uow:
            lines = await uow.get_cart(user.id)
        return Cart(count=len(lines), cart=[CartLine.model_validate(line) for line in lines])

    @app.post("/cart", response_model=Message)
    async def add_to_cart(
        req: AddToCartRequest,
        user: CurrentUser = Depends(get_current_user),
        store: OrderStore = Depends(get_store),
    ):
        async with store.transaction() as uow:
            if await uow.get_product(req.product_id) is None:
                raise ProductNotFound(req.product_id)
            await uow.add_to_cart(user.id, req.product_id, req.quantity)
        return Message(message="Product added to cart")

    @app.put("/cart/{line_id}", response_model=Message)
    async def update_cart_item(
        line_id: int,
        req: UpdateCartRequest,
        user: CurrentUser = Depends(get_current_user),
        store: OrderStore = Depends(get_store),
    ):
        if req.quantity < 1:
            raise InvalidRequest("Quantity must be at least 1")
        async with store.transaction() as uow:
            await uow.update_cart_item(user.id, line_id, req.quantity)
        return Message(message="Cart updated")

    @app.delete("/cart/{line_id}", response_model=Message)
    async def remove_from_cart(
        line_id: int,
        user: CurrentUser = Depends(get_current_user),
        store: OrderStore = Depends(get_store),
    ):
        async with store.transaction() as uow:
            await uow.remove_cart_item(user.id, line_id)
        return Message(message="Item removed from cart")

    @app.delete("/cart", response_model=Message)
    async def clear_cart(
        user: CurrentUser = Depends(get_current_user),
        store: OrderStore = Depends(get_store),
    ):
        async with store.transaction() as uow:
            await uow.clear_cart(user.id)
        return Message(message="Cart cleared")

    @app.get("/wishlist", response_model=Wishlist)
    async def get_wishlist(
        user: CurrentUser = Depends(get_current_user),
        store: OrderStore = Depends(get_store),
    ):
        async with store.transaction() as uow:
            entries = await uow.get_wishlist(user.id)
        return Wishlist(
            count=len(entries), wishlist=[WishlistEntry.model_validate(e) for e in entries]
        )

    @app.post("/wishlist", response_model=Message)
    async def add_to_wishlist(
        req: AddToWishlistRequest,
        user: CurrentUser = Depends(get_current_user),
        store: OrderStore = Depends(get_store),
    ):
        async with store.transaction() as uow:
            if await uow.get_product(req.product_id) is None:
                raise ProductNotFound(req.product_id)
            await uow.add_to_wishlist(user.id, req.product_id)
        return Message(message="Product added to wishlist")

    @app.delete("/wishlist/{entry_id}", response_model=Message)
    async def remove_from_wishlist(
        entry_id: int,
        user: CurrentUser = Depends(get_current_user),
        store: OrderStore = Depends(get_store),
    ):
        async with store.transaction() as uow:
            await uow.remove_wishlist_item(user.id, entry_id)
        return Message(message="Item removed from wishlist")

    @app.post("/orders", response_model=OrderCreated, status_code=status.HTTP_201_CREATED)
    async def create_order(
        req: CreateOrderRequest,
        user: CurrentUser = Depends(get_current_user),
        store: OrderStore = Depends(get_store),
        cache: CatalogCache | None = Depends(get_cache),
    ):
        result = await place_order(
            store, user.id, req.items, req.shipping_address, req.payment_method
        )
        if cache:
            cache.invalidate()
        return OrderCreated(orderId=result.order_id, total=result.total)

    @app.get("/orders", response_model=OrderList)
    async def list_orders(
        user: CurrentUser = Depends(get_current_user),
        store: OrderStore = Depends(get_store),
    ):
        async with store.transaction() as uow:
            orders = await uow.list_orders(user.id)
        return OrderList(count=len(orders), orders=[Order.model_validate(o) for o in orders])

    @app.get("/orders/{order_id}", response_model=OrderDetail)
    async def get_order(
        order_id: int,
        user: CurrentUser = Depends(get_current_user),
        store: OrderStore = Depends(get_store),
    ):
        async with store.transaction() as uow:
            order = await uow.get_order(user.id, order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return OrderDetail(order=OrderWithItems.model_validate(order))

    return app


app = create_app()
