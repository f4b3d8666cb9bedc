"""Failures raised by the order service.

Every error carries the HTTP status the API answers with and a message that
is safe to show to the caller.
"""


class OrderError(Exception):
    status_code = 500
    message = "Server error"

    def __init__(self, message: str | None = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


class InvalidRequest(OrderError):
    status_code = 400
    message = "No items in order"


class ProductNotFound(OrderError):
    status_code = 404

    def __init__(self, product_id: int):
        self.product_id = product_id
        super().__init__(f"Product {product_id} not found")


class InsufficientStock(OrderError):
    status_code = 400

    def __init__(self, product_id: int):
        self.product_id = product_id
        super().__init__(f"Insufficient stock for product {product_id}")


class StorageError(OrderError):
    """Unexpected persistence failure. The original exception is kept as
    ``__cause__`` and never shown to the caller."""

    status_code = 500

    def __init__(self):
        super().__init__("Server error")


class CartItemNotFound(OrderError):
    status_code = 404

    def __init__(self, line_id: int):
        self.line_id = line_id
        super().__init__("Cart item not found")


class OrderNotFound(OrderError):
    status_code = 404

    def __init__(self, order_id: int):
        self.order_id = order_id
        super().__init__("Order not found")


class WishlistItemNotFound(OrderError):
    status_code = 404

    def __init__(self, entry_id: int):
        self.entry_id = entry_id
        super().__init__("Wishlist item not found")


class AlreadyInWishlist(OrderError):
    status_code = 400

    def __init__(self, product_id: int):
        self.product_id = product_id
        super().__init__("Product already in wishlist")
