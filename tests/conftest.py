import itertools

import mongomock
import pytest
from fastapi.testclient import TestClient
from pymongo.errors import DuplicateKeyError

from cache import TaggedCache, get_cache
from database import create_document, ensure_indexes, get_db
from errors import PaymentProcessorError
from main import app
from payments import PaymentGateway, PaymentIntent, get_payment_gateway

PASSWORD = "correct-horse-battery"


class FakeGateway(PaymentGateway):
    """In-memory stand-in for the processor; intents start unconfirmed."""

    def __init__(self):
        self.intents = {}
        self.fail_with = None
        self._ids = itertools.count(1)

    def create_intent(self, amount, currency="usd", idempotency_key=None):
        if self.fail_with:
            raise self.fail_with
        intent = PaymentIntent(id=f"pi_{next(self._ids)}", client_secret="secret", amount=amount,
                               currency=currency, status="requires_payment_method")
        self.intents[intent.id] = intent
        return intent

    def retrieve_intent(self, intent_id):
        if self.fail_with:
            raise self.fail_with
        intent = self.intents.get(intent_id)
        if intent is None:
            raise PaymentProcessorError(f"No such payment_intent: '{intent_id}'")
        return intent

    def confirm(self, intent_id):
        self.intents[intent_id].status = "succeeded"

    def paid_intent(self, amount):
        intent = self.create_intent(amount)
        self.confirm(intent.id)
        return intent.id


@pytest.fixture
def db():
    database = mongomock.MongoClient().db
    ensure_indexes(database)
    return database


@pytest.fixture
def cache():
    return TaggedCache(enabled=True)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def client(db, cache, gateway):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_cache] = lambda: cache
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def register(client, email, name="Shopper"):
    res = client.post("/register", json={"name": name, "email": email, "password": PASSWORD})
    assert res.status_code == 201, res.text
    body = res.json()
    return {"Authorization": f"Bearer {body['access_token']}"}, body["user"]


@pytest.fixture
def user(client):
    headers, profile = register(client, "alice@example.com", "Alice")
    return {"headers": headers, **profile}


@pytest.fixture
def other_user(client):
    headers, profile = register(client, "bob@example.com", "Bob")
    return {"headers": headers, **profile}


@pytest.fixture
def admin(client, db):
    headers, profile = register(client, "admin@example.com", "Admin")
    db["user"].update_one({"email": "admin@example.com"}, {"$set": {"is_admin": True}})
    return {"headers": headers, **profile}


@pytest.fixture
def make_product(db):
    def _make(name="Linen Shirt", price=50.0, sizes=("S", "M", "L"), **extra):
        data = {"name": name, "description": f"{name} description", "price": price, "stock": 5,
                "sizes": list(sizes), "images": [], "image_url": f"https://img.example.com/{name}.jpg",
                "collection_id": None}
        data.update(extra)
        return create_document("product", data, database=db)

    return _make


class RacingCollection:
    """Wraps a collection so the first call to ``method`` runs ``rival`` and then raises DuplicateKeyError."""

    def __init__(self, collection, method, rival=None):
        self._collection = collection
        self._method = method
        self._rival = rival
        self.raced = False

    def __getattr__(self, name):
        attr = getattr(self._collection, name)
        if name != self._method or self.raced:
            return attr

        def racing(*args, **kwargs):
            self.raced = True
            if self._rival:
                self._rival(self._collection)
            raise DuplicateKeyError("E11000 duplicate key error")

        return racing


class RacingDb:
    def __init__(self, database, name, collection):
        self._database = database
        self._name = name
        self.collection = collection

    def __getitem__(self, name):
        return self.collection if name == self._name else self._database[name]
