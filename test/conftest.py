import pytest
from fastapi.testclient import TestClient

from _helper import ADMIN_ID, InMemoryOrderRepository, InMemoryProductLookup, InMemoryUserRepository, LocalUserLocks
from storefront.auth import AuthorizationGate, get_authorization_gate
from storefront.dependencies import get_order_service, get_user_repository
from storefront.services.orders import OrderService


@pytest.fixture
def order_repo():
    return InMemoryOrderRepository()


@pytest.fixture
def products():
    return InMemoryProductLookup()


@pytest.fixture
def user_repo(order_repo):
    return InMemoryUserRepository(order_repo)


@pytest.fixture
def service(order_repo, products):
    return OrderService(order_repo, products, LocalUserLocks())


@pytest.fixture
def client(service, user_repo):
    """Client wired to the in-memory stores; user ADMIN_ID is an administrator."""
    from storefront.main import app

    app.dependency_overrides[get_order_service] = lambda: service
    app.dependency_overrides[get_user_repository] = lambda: user_repo
    app.dependency_overrides[get_authorization_gate] = lambda: AuthorizationGate({ADMIN_ID})
    yield TestClient(app)
    app.dependency_overrides.clear()
