"""
Shared fixtures: an in-memory MongoDB (mongomock), seeded customers/staff,
menu items, and a notifier that records what it was asked to emit.
"""
import threading
from datetime import datetime, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient
from pymongo.errors import ServerSelectionTimeoutError

import database
from auth import create_access_token
from config import set_config_for_test
from database import ensure_indexes
from orders import OrderService
from schemas import MenuItem
from sequences import SequenceAllocator
from stores import CustomerStore, MenuCatalog, StaffStore

FIXED_NOW = datetime(2026, 10, 18, 9, 30, tzinfo=timezone.utc)


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def emit(self, title, message, type="info"):
        self.events.append({"title": title, "message": message, "type": type})


class BrokenDatabase:
    """Every collection lookup fails as if the server were unreachable."""

    def __getitem__(self, name):
        raise ServerSelectionTimeoutError("No servers available")


class SerializedDatabase:
    """Runs each collection call under one lock, the way a server applies a
    single operation atomically. Sequences of calls still interleave freely."""

    def __init__(self, db):
        self._db = db
        self._lock = threading.Lock()

    def __getitem__(self, name):
        return _SerializedCollection(self._db[name], self._lock)

    def __getattr__(self, name):
        return getattr(self._db, name)


class _SerializedCollection:
    def __init__(self, collection, lock):
        self._collection = collection
        self._lock = lock

    def __getattr__(self, name):
        attr = getattr(self._collection, name)
        if not callable(attr):
            return attr

        def call(*args, **kwargs):
            with self._lock:
                return attr(*args, **kwargs)

        return call


@pytest.fixture(autouse=True)
def test_config():
    set_config_for_test(jwt_secret="test-secret", app_env="test", log_level="WARNING")
    yield
    set_config_for_test(jwt_secret="test-secret", app_env="test", log_level="WARNING")


@pytest.fixture
def mongo_db():
    db = mongomock.MongoClient()["restomanager_test"]
    ensure_indexes(db)
    database.use_database(db)
    yield db
    database.use_database(None)


@pytest.fixture
def allocator(mongo_db):
    return SequenceAllocator(mongo_db, clock=lambda: FIXED_NOW)


@pytest.fixture
def add_menu_item(mongo_db):
    catalog = MenuCatalog(mongo_db)
    allocator = SequenceAllocator(mongo_db)

    def _add(name="Chicken Pilau", price=500, available=True, category="Main Course"):
        item = MenuItem(name=name, price=price, available=available, category=category)
        return catalog.create(item, allocator).id

    return _add


@pytest.fixture
def customer(mongo_db):
    return CustomerStore(mongo_db).register(
        "Jane Wanjiku", "jane@example.com", "secret123", "0712345678",
        allocator=SequenceAllocator(mongo_db), address="Kilimani",
    )


@pytest.fixture
def customer_headers(customer):
    token = create_access_token(customer.id, "customer", customer.email)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def staff_headers(mongo_db):
    StaffStore(mongo_db).ensure_admin("admin@example.com", "admin123", "Admin")
    user = mongo_db["user"].find_one({"email": "admin@example.com"})
    token = create_access_token(str(user["_id"]), "admin", user["email"])
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def order_service(mongo_db, notifier, allocator):
    return OrderService(mongo_db, notifier, allocator=allocator)


@pytest.fixture
def client(mongo_db):
    from main import app

    with TestClient(app) as test_client:
        yield test_client
