from datetime import datetime
from decimal import Decimal
from typing import List

from pydantic import BaseModel, ConfigDict, Field


class Product(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    brand: str
    price: Decimal
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
    stock: int = 0
    created_at: datetime | None = None


class ProductList(BaseModel):
    success: bool = True
    count: int
    products: List[Product]


class ProductDetail(BaseModel):
    success: bool = True
    product: Product


class ProductCreate(BaseModel):
    name: str = Field(min_length=1)
    brand: str = Field(min_length=1)
    price: Decimal = Field(ge=0)
    stock: int = Field(0, ge=0)
    original_price: Decimal | None = Field(None, ge=0)
    discount: int = Field(0, ge=0, le=100)
    rating: float = Field(0.0, ge=0, le=5)
    reviews: int = Field(0, ge=0)
    image: str | None = None
    gender: str | None = None
    category: str | None = None
    strap_type: str | None = None
    dial_color: str | None = None
    movement: str | None = None
    description: str | None = None


class ProductUpdate(BaseModel):
    name: str | None = Field(None, min_length=1)
    brand: str | None = Field(None, min_length=1)
    price: Decimal | None = Field(None, ge=0)
    stock: int | None = Field(None, ge=0)
    original_price: Decimal | None = Field(None, ge=0)
    discount: int | None = Field(None, ge=0, le=100)
    rating: float | None = Field(None, ge=0, le=5)
    reviews: int | None = Field(None, ge=0)
    image: str | None = None
    gender: str | None = None
    category: str | None = None
    strap_type: str | None = None
    dial_color: str | None = None
    movement: str | None = None
    description: str | None = None


class ProductCreated(BaseModel):
    success: bool = True
    message: str = "Product created successfully"
    productId: int


class OrderItem(BaseModel):
    product_id: int
    quantity: int


class CreateOrderRequest(BaseModel):
    items: List[OrderItem] = Field(default_factory=list)
    shipping_address: str = ""
    payment_method: str = ""


class OrderCreated(BaseModel):
    success: bool = True
    message: str = "Order created successfully"
    orderId: int
    total: Decimal


class OrderLine(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_id: int
    product_id: int
    quantity: int
    price: Decimal
    product_name: str | None = None
    image: str | None = None
    brand: str | None = None


class Order(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    total_amount: Decimal
    shipping_address: str
    payment_method: str
    status: str
    created_at: datetime | None = None


class OrderWithItems(Order):
    items: List[OrderLine]


class OrderList(BaseModel):
    success: bool = True
    count: int
    orders: List[Order]


class OrderDetail(BaseModel):
    success: bool = True
    order: OrderWithItems


class AddToCartRequest(BaseModel):
    product_id: int
    quantity: int = Field(1, gt=0)


class UpdateCartRequest(BaseModel):
    quantity: int


class CartLine(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: int
    quantity: int
    product: Product


class Cart(BaseModel):
    success: bool = True
    count: int
    cart: List[CartLine]


class AddToWishlistRequest(BaseModel):
    product_id: int


class WishlistEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: int
    product: Product


class Wishlist(BaseModel):
    success: bool = True
    count: int
    wishlist: List[WishlistEntry]


class Message(BaseModel):
    success: bool = True
    message: str
