from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from conftest import JWT_SECRET, UNIT_OF_WORK_CLASSES, make_settings
from tmwatch_orders.auth import create_access_token
from tmwatch_orders.catalog import CATALOG_GENERATION_KEY, CatalogCache
from tmwatch_orders.main import create_app

# first sample watch: Chronograph Master Elite, 107817, stock 25
WATCH = 1
WATCH_PRICE = Decimal("107817")


class FakeRedis:
    def __init__(self):
        self.data = {}

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value, ex=None):
        self.data[key] = value.encode() if isinstance(value, str) else value

    def incr(self, key):
        self.data[key] = str(int(self.data.get(key, b"0")) + 1).encode()
        return int(self.data[key])


def auth(user_id=7, email="buyer@example.com"):
    return {"Authorization": f"Bearer {create_access_token(user_id, email, JWT_SECRET)}"}


@pytest.fixture(params=["json", "sql"])
def backend(request):
    return request.param


@pytest.fixture
def client(tmp_path, backend):
    app = create_app(settings=make_settings(tmp_path, backend, seed_products=True))
    with TestClient(app) as c:
        yield c


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "service": "order_service"}


def test_list_products_with_filters(client):
    body = client.get("/products").json()
    assert body["success"] is True
    assert body["count"] == 18

    women = client.get("/products", params={"gender": "women"}).json()["products"]
    assert women and {p["gender"] for p in women} == {"women", "unisex"}

    divers = client.get("/products", params={"search": "DIVER"}).json()["products"]
    assert sorted(p["name"] for p in divers) == ["Ocean Explorer Diver", "Sport Diver Pro"]

    cheap = client.get("/products", params={"max_price": "70000"}).json()["products"]
    assert sorted(p["name"] for p in cheap) == ["Minimalist Modern", "Smart Hybrid Pro"]

    brand = client.get("/products", params={"brand": "AVIATOR", "min_price": "150000"}).json()
    assert [p["name"] for p in brand["products"]] == ["Aviation Heritage"]


def test_get_product(client):
    resp = client.get(f"/products/{WATCH}")
    assert resp.status_code == 200
    product = resp.json()["product"]
    assert product["name"] == "Chronograph Master Elite"
    assert Decimal(product["price"]) == WATCH_PRICE

    missing = client.get("/products/999")
    assert missing.status_code == 404
    assert missing.json() == {"detail": "Product 999 not found"}


def test_cart_requires_token(client):
    assert client.get("/cart").status_code == 403
    bad = client.get("/cart", headers={"Authorization": "Bearer not-a-token"})
    assert bad.status_code == 401
    expired = create_access_token(7, "x@example.com", JWT_SECRET, expire_minutes=-1)
    assert client.get("/cart", headers={"Authorization": f"Bearer {expired}"}).status_code == 401

    token = create_access_token(7, "x@example.com", JWT_SECRET)
    assert client.get("/cart", headers={"x-access-token": token}).status_code == 200


def test_cart_lifecycle(client):
    headers = auth()
    assert client.post("/cart", json={"product_id": WATCH, "quantity": 2}, headers=headers).status_code == 200
    client.post("/cart", json={"product_id": WATCH}, headers=headers)
    client.post("/cart", json={"product_id": 3}, headers=headers)

    cart = client.get("/cart", headers=headers).json()
    assert cart["count"] == 2
    line = next(l for l in cart["cart"] if l["product_id"] == WATCH)
    assert line["quantity"] == 3
    assert line["product"]["brand"] == "CHRONOLUX"

    bad_qty = client.put(f"/cart/{line['id']}", json={"quantity": 0}, headers=headers)
    assert bad_qty.status_code == 400
    assert bad_qty.json() == {"detail": "Quantity must be at least 1"}

    assert client.put(f"/cart/{line['id']}", json={"quantity": 1}, headers=auth(8)).status_code == 404
    assert client.put(f"/cart/{line['id']}", json={"quantity": 1}, headers=headers).status_code == 200
    assert client.delete(f"/cart/{line['id']}", headers=headers).status_code == 200
    assert client.delete(f"/cart/{line['id']}", headers=headers).status_code == 404

    assert client.get("/cart", headers=headers).json()["count"] == 1
    assert client.delete("/cart", headers=headers).json()["message"] == "Cart cleared"
    assert client.get("/cart", headers=headers).json()["count"] == 0


def test_add_unknown_product_to_cart(client):
    resp = client.post("/cart", json={"product_id": 404}, headers=auth())
    assert resp.status_code == 404


def test_place_order_end_to_end(client):
    headers = auth()
    client.post("/cart", json={"product_id": WATCH, "quantity": 2}, headers=headers)

    resp = client.post(
        "/orders",
        json={
            "items": [{"product_id": WATCH, "quantity": 2}],
            "shipping_address": "221B Baker Street",
            "payment_method": "card",
        },
        headers=headers,
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["success"] is True
    assert body["message"] == "Order created successfully"
    assert Decimal(body["total"]) == WATCH_PRICE * 2

    assert client.get("/cart", headers=headers).json()["count"] == 0
    assert client.get(f"/products/{WATCH}").json()["product"]["stock"] == 23

    orders = client.get("/orders", headers=headers).json()
    assert orders["count"] == 1
    assert orders["orders"][0]["id"] == body["orderId"]

    detail = client.get(f"/orders/{body['orderId']}", headers=headers).json()["order"]
    assert detail["shipping_address"] == "221B Baker Street"
    assert [(i["product_name"], i["quantity"]) for i in detail["items"]] == [
        ("Chronograph Master Elite", 2)
    ]
    assert Decimal(detail["items"][0]["price"]) == WATCH_PRICE

    other = client.get(f"/orders/{body['orderId']}", headers=auth(8))
    assert other.status_code == 404
    assert other.json() == {"detail": "Order not found"}


@pytest.mark.parametrize(
    "items, status, detail",
    [
        ([], 400, "No items in order"),
        ([{"product_id": WATCH, "quantity": 26}], 400, f"Insufficient stock for product {WATCH}"),
        ([{"product_id": WATCH, "quantity": 1}, {"product_id": 99, "quantity": 1}], 404, "Product 99 not found"),
    ],
)
def test_place_order_rejections(client, items, status, detail):
    resp = client.post("/orders", json={"items": items}, headers=auth())
    assert resp.status_code == status
    assert resp.json() == {"detail": detail}
    assert client.get(f"/products/{WATCH}").json()["product"]["stock"] == 25
    assert client.get("/orders", headers=auth()).json()["count"] == 0


@pytest.mark.parametrize(
    "payload, detail",
    [
        ({"items": [{"product_id": WATCH, "quantity": 0}]}, f"Quantity for product {WATCH} must be at least 1"),
        ({"items": [{"product_id": WATCH, "quantity": -3}]}, f"Quantity for product {WATCH} must be at least 1"),
        ({}, "No items in order"),
        ({"items": "abc"}, "Malformed order request"),
        ({"items": [{"product_id": "one", "quantity": 1}]}, "Malformed order request"),
        ({"items": [{"quantity": 1}]}, "Malformed order request"),
    ],
)
def test_place_order_rejects_malformed_payload(client, payload, detail):
    resp = client.post("/orders", json=payload, headers=auth())
    assert resp.status_code == 400
    assert resp.json() == {"detail": detail}
    assert client.get(f"/products/{WATCH}").json()["product"]["stock"] == 25


def test_other_routes_keep_schema_errors(client):
    assert client.post("/cart", json={"product_id": "one"}, headers=auth()).status_code == 422


def test_storage_failure_is_opaque(client, backend, monkeypatch):
    async def broken_insert_order(self, *args):
        raise OSError("disk full at /var/lib/secret")

    monkeypatch.setattr(UNIT_OF_WORK_CLASSES[backend], "insert_order", broken_insert_order)

    resp = client.post("/orders", json={"items": [{"product_id": WATCH, "quantity": 1}]}, headers=auth())
    assert resp.status_code == 500
    assert resp.json() == {"detail": "Server error"}
    monkeypatch.undo()
    assert client.get(f"/products/{WATCH}").json()["product"]["stock"] == 25


def test_catalog_cache_invalidated_by_orders(tmp_path):
    fake = FakeRedis()
    app = create_app(
        settings=make_settings(tmp_path, "json", seed_products=True),
        catalog_cache=CatalogCache(fake, ttl=60),
    )
    with TestClient(app) as client:
        first = client.get("/products", params={"brand": "CHRONOLUX"}).json()
        assert "catalog:products:0:brand=CHRONOLUX" in fake.data

        # served from the cache from now on
        fake.data["catalog:products:0:brand=CHRONOLUX"] = b"[]"
        assert client.get("/products", params={"brand": "CHRONOLUX"}).json()["count"] == 0

        client.post("/orders", json={"items": [{"product_id": WATCH, "quantity": 1}]}, headers=auth())
        assert fake.data[CATALOG_GENERATION_KEY] == b"1"

        fresh = client.get("/products", params={"brand": "CHRONOLUX"}).json()
        assert fresh["count"] == first["count"]
        stock = {p["id"]: p["stock"] for p in fresh["products"]}
        assert stock[WATCH] == 24


NEW_WATCH = {
    "name": "Tide Master",
    "brand": "OCEANIC",
    "price": "64500.50",
    "stock": 4,
    "gender": "men",
    "category": "sport",
}


def test_product_admin_lifecycle(client):
    assert client.post("/products", json=NEW_WATCH).status_code == 403

    resp = client.post("/products", json=NEW_WATCH, headers=auth())
    assert resp.status_code == 201
    body = resp.json()
    assert body["message"] == "Product created successfully"
    product_id = body["productId"]
    assert product_id == 19

    created = client.get(f"/products/{product_id}").json()["product"]
    assert Decimal(created["price"]) == Decimal("64500.50")
    assert created["stock"] == 4
    assert client.get("/products").json()["count"] == 19

    resp = client.put(
        f"/products/{product_id}", json={"price": "59999", "stock": 9}, headers=auth()
    )
    assert resp.status_code == 200
    assert resp.json()["message"] == "Product updated successfully"
    updated = client.get(f"/products/{product_id}").json()["product"]
    assert Decimal(updated["price"]) == Decimal("59999")
    assert updated["stock"] == 9
    assert updated["name"] == "Tide Master"

    resp = client.delete(f"/products/{product_id}", headers=auth())
    assert resp.status_code == 200
    assert resp.json()["message"] == "Product deleted successfully"
    assert client.get(f"/products/{product_id}").status_code == 404


@pytest.mark.parametrize(
    "payload, detail",
    [
        ({}, "No fields to update"),
        ({"price": None}, "Field price cannot be null"),
    ],
)
def test_update_product_rejections(client, payload, detail):
    resp = client.put(f"/products/{WATCH}", json=payload, headers=auth())
    assert resp.status_code == 400
    assert resp.json() == {"detail": detail}


def test_product_writes_on_unknown_product(client):
    assert client.put("/products/999", json={"stock": 1}, headers=auth()).status_code == 404
    resp = client.delete("/products/999", headers=auth())
    assert resp.status_code == 404
    assert resp.json() == {"detail": "Product 999 not found"}


def test_create_product_validates_payload(client):
    assert client.post("/products", json={"name": "No brand", "price": "10"}, headers=auth()).status_code == 422
    bad_price = dict(NEW_WATCH, price="-1")
    assert client.post("/products", json=bad_price, headers=auth()).status_code == 422


def test_deleting_product_clears_cart_and_wishlist(client):
    headers = auth()
    client.post("/cart", json={"product_id": 3}, headers=headers)
    client.post("/wishlist", json={"product_id": 3}, headers=headers)

    assert client.delete("/products/3", headers=headers).status_code == 200
    assert client.get("/cart", headers=headers).json()["count"] == 0
    assert client.get("/wishlist", headers=headers).json()["count"] == 0


def test_wishlist_lifecycle(client):
    headers = auth()
    assert client.get("/wishlist").status_code == 403
    assert client.get("/wishlist", headers=headers).json() == {
        "success": True,
        "count": 0,
        "wishlist": [],
    }

    resp = client.post("/wishlist", json={"product_id": WATCH}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["message"] == "Product added to wishlist"
    client.post("/wishlist", json={"product_id": 2}, headers=headers)

    again = client.post("/wishlist", json={"product_id": WATCH}, headers=headers)
    assert again.status_code == 400
    assert again.json() == {"detail": "Product already in wishlist"}

    missing = client.post("/wishlist", json={"product_id": 999}, headers=headers)
    assert missing.status_code == 404

    wishlist = client.get("/wishlist", headers=headers).json()
    assert wishlist["count"] == 2
    entry = next(e for e in wishlist["wishlist"] if e["product_id"] == WATCH)
    assert entry["product"]["name"] == "Chronograph Master Elite"

    # another user neither sees nor removes it
    assert client.get("/wishlist", headers=auth(8)).json()["count"] == 0
    assert client.delete(f"/wishlist/{entry['id']}", headers=auth(8)).status_code == 404

    resp = client.delete(f"/wishlist/{entry['id']}", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["message"] == "Item removed from wishlist"
    gone = client.delete(f"/wishlist/{entry['id']}", headers=headers)
    assert gone.status_code == 404
    assert gone.json() == {"detail": "Wishlist item not found"}
    assert client.get("/wishlist", headers=headers).json()["count"] == 1


def test_catalog_cache_invalidated_by_product_writes(tmp_path):
    fake = FakeRedis()
    app = create_app(
        settings=make_settings(tmp_path, "json", seed_products=True),
        catalog_cache=CatalogCache(fake, ttl=60),
    )
    with TestClient(app) as client:
        assert client.get("/products").json()["count"] == 18

        client.post("/products", json=NEW_WATCH, headers=auth())
        assert fake.data[CATALOG_GENERATION_KEY] == b"1"
        assert client.get("/products").json()["count"] == 19

        client.put(f"/products/{WATCH}", json={"stock": 3}, headers=auth())
        assert fake.data[CATALOG_GENERATION_KEY] == b"2"
        stock = {p["id"]: p["stock"] for p in client.get("/products").json()["products"]}
        assert stock[WATCH] == 3

        client.delete(f"/products/{WATCH}", headers=auth())
        assert fake.data[CATALOG_GENERATION_KEY] == b"3"
        assert client.get("/products").json()["count"] == 18
