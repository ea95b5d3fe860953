import pytest
from django.core.cache import cache

from apps.orders.adapters import InMemoryCatalog, InMemoryOrderRepository, InMemoryStorage, PaymentGatewayStub
from apps.orders.domain import Item


@pytest.fixture(autouse=True)
def use_stubs_for_tests(settings):
    settings.USE_HTTP_ADAPTERS = False
    settings.ORDER_STORE_BACKEND = "django"
    # sesiones y throttling viven en la cache local
    cache.clear()


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def catalog(storage):
    c = InMemoryCatalog(storage)
    c.add_item(Item(id=None, alias="sword", name="Sword", price=1500, stock=5))
    c.add_item(Item(id=None, alias="shield", name="Shield", price=900, stock=2, discount=10))
    c.add_item(Item(id=None, alias="potion", name="Potion", price=50, stock=0))
    return c


@pytest.fixture
def order_store(storage):
    return InMemoryOrderRepository(storage)


@pytest.fixture
def gateway():
    return PaymentGatewayStub()


@pytest.fixture
def seed_items(db):
    """Catalog rows for the API tests."""
    from apps.orders.models import ItemModel

    return {
        "sword": ItemModel.objects.create(alias="sword", name="Sword", price=1500, stock=5),
        "shield": ItemModel.objects.create(alias="shield", name="Shield", price=900, stock=2, discount=10),
        "potion": ItemModel.objects.create(alias="potion", name="Potion", price=50, stock=0),
    }
