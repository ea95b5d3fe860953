import pytest

from apps.orders.models import ItemModel, OrderModel

ITEM_URL = "/api/cart/items/{alias}/"
CART_URL = "/api/cart/"
SESSION = {"HTTP_X_CART_SESSION": "cart-1"}


def stock(alias):
    return ItemModel.objects.get(alias=alias).stock


@pytest.mark.django_db
def test_add_item_returns_receipt(client, seed_items):
    r = client.post(ITEM_URL.format(alias="sword"), **SESSION)
    assert r.status_code == 200
    body = r.json()
    assert body["item_name"] == "Sword"
    assert body["item_id"] == seed_items["sword"].id
    assert body["quantity"] == 1
    assert body["sum"] == 1500
    assert body["price"] == 1500
    assert body["customer_id"] is None
    assert body["paid_at"] is None
    assert r.headers["X-Cart-Session"] == "cart-1"
    assert stock("sword") == 4

    order = OrderModel.objects.get(pk=body["order_id"])
    assert order.status == "Open"
    assert order.session_key == "cart-1"


@pytest.mark.django_db
def test_add_same_item_twice(client, seed_items):
    client.post(ITEM_URL.format(alias="sword"), **SESSION)
    r = client.post(ITEM_URL.format(alias="sword"), **SESSION)
    assert r.json()["quantity"] == 2
    assert r.json()["sum"] == 3000

    cart = client.get(CART_URL, **SESSION).json()
    assert len(cart) == 1
    assert cart[0]["quantity"] == 2
    assert cart[0]["item_id"] == seed_items["sword"].id
    assert stock("sword") == 3


@pytest.mark.django_db
def test_out_of_stock_returns_422_and_opens_nothing(client, seed_items):
    r = client.post(ITEM_URL.format(alias="potion"), **SESSION)
    assert r.status_code == 422
    assert r.json()["detail"] == "OUT_OF_STOCK"
    assert OrderModel.objects.count() == 0


@pytest.mark.django_db
def test_unknown_item_returns_404(client, seed_items):
    r = client.post(ITEM_URL.format(alias="dragon"), **SESSION)
    assert r.status_code == 404
    assert r.json()["detail"] == "NOT_FOUND"


@pytest.mark.django_db
def test_remove_item_restocks(client, seed_items):
    client.post(ITEM_URL.format(alias="sword"), **SESSION)
    client.post(ITEM_URL.format(alias="sword"), **SESSION)

    r = client.delete(ITEM_URL.format(alias="sword"), **SESSION)
    assert r.status_code == 204
    assert stock("sword") == 5
    assert client.get(CART_URL, **SESSION).json() == []


@pytest.mark.django_db
def test_remove_without_open_order_returns_404(client, seed_items):
    r = client.delete(ITEM_URL.format(alias="sword"), **SESSION)
    assert r.status_code == 404
    assert r.json()["detail"] == "NOT_FOUND"


@pytest.mark.django_db
def test_cart_details_by_order_id(client, seed_items):
    oid = client.post(ITEM_URL.format(alias="sword"), **SESSION).json()["order_id"]
    client.post(ITEM_URL.format(alias="shield"), **SESSION)

    r = client.get(f"/api/cart/{oid}/", **SESSION)
    assert r.status_code == 200
    assert sorted((x["item_id"], x["quantity"], x["price"]) for x in r.json()) == sorted(
        [(seed_items["sword"].id, 1, 1500), (seed_items["shield"].id, 1, 900)]
    )


@pytest.mark.django_db
def test_carts_are_scoped_by_session(client, seed_items):
    client.post(ITEM_URL.format(alias="sword"), HTTP_X_CART_SESSION="alice")
    client.post(ITEM_URL.format(alias="shield"), HTTP_X_CART_SESSION="bob")

    alice = client.get(CART_URL, HTTP_X_CART_SESSION="alice").json()
    bob = client.get(CART_URL, HTTP_X_CART_SESSION="bob").json()
    assert [x["item_id"] for x in alice] == [seed_items["sword"].id]
    assert [x["item_id"] for x in bob] == [seed_items["shield"].id]
    assert OrderModel.objects.filter(status="Open").count() == 2


@pytest.mark.django_db
def test_browser_session_keeps_the_cart(client, seed_items):
    r1 = client.post(ITEM_URL.format(alias="sword"))
    r2 = client.post(ITEM_URL.format(alias="sword"))
    assert r1.json()["order_id"] == r2.json()["order_id"]
    assert r2.json()["quantity"] == 2
    assert r1.headers["X-Cart-Session"] == r2.headers["X-Cart-Session"]


@pytest.mark.django_db
def test_overlong_cart_session_is_rejected(client, seed_items):
    long_key = "k" * 64
    r = client.post(ITEM_URL.format(alias="sword"), HTTP_X_CART_SESSION=long_key)
    assert r.status_code == 200
    assert r.headers["X-Cart-Session"] == long_key

    r = client.post(ITEM_URL.format(alias="sword"), HTTP_X_CART_SESSION=long_key + "x")
    assert r.status_code == 400
    assert r.json()["detail"] == "INVALID_CART_SESSION"
    assert stock("sword") == 4
    assert OrderModel.objects.count() == 1


@pytest.mark.django_db
def test_request_id_is_echoed(client, seed_items):
    r = client.get(CART_URL, HTTP_X_REQUEST_ID="rid-1", **SESSION)
    assert r.headers["X-Request-ID"] == "rid-1"


@pytest.mark.django_db
def test_oversized_payload_is_rejected(client, settings):
    settings.API_MAX_BYTES = 10
    r = client.post(
        "/api/orders/pay/card/",
        data={"holder": "x" * 100},
        content_type="application/json",
        **SESSION,
    )
    assert r.status_code == 413
    assert r.json()["detail"] == "PAYLOAD_TOO_LARGE"


@pytest.fixture
def memory_backend(settings):
    from apps.orders.adapters import InMemoryCatalog
    from apps.orders.domain import Item
    from apps.orders.providers import MEMORY_STORAGE

    settings.ORDER_STORE_BACKEND = "memory"
    MEMORY_STORAGE.clear()
    InMemoryCatalog(MEMORY_STORAGE).add_item(Item(id=None, alias="sword", name="Sword", price=1500, stock=1))
    yield MEMORY_STORAGE
    MEMORY_STORAGE.clear()


@pytest.mark.django_db
def test_memory_backend_serves_the_cart(client, memory_backend):
    r = client.post(ITEM_URL.format(alias="sword"), **SESSION)
    assert r.status_code == 200
    assert r.json()["sum"] == 1500

    r = client.post(ITEM_URL.format(alias="sword"), **SESSION)
    assert r.status_code == 422
    assert OrderModel.objects.count() == 0
    assert len(memory_backend.orders) == 1
