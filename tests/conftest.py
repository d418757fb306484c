"""Shared fixtures: an application bound to an in-memory mongomock database."""

from datetime import datetime

import bcrypt
import mongomock
import pytest
from flask_jwt_extended import create_access_token

from backend.app import create_app

TEST_CONFIG = {
    "TESTING": True,
    "JWT_SECRET_KEY": "test-secret-key-with-enough-length-for-hs256",
    "JWT_COOKIE_CSRF_PROTECT": False,
    "STRIPE_SECRET": "sk_test_dummy",
    "STRIPE_DEFAULT_CUSTOMER": "",
}


@pytest.fixture
def db():
    return mongomock.MongoClient().db


@pytest.fixture
def app(db):
    return create_app(test_config=TEST_CONFIG, database=db)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def app_ctx(app):
    with app.test_request_context():
        yield app


def _make_customer(db, username="jdoe", is_admin=False, password="secret1"):
    document = {
        "username": username,
        "email": f"{username}@example.com",
        "password": bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(4)),
        "first_name": "john",
        "last_name": "doe",
        "is_admin": is_admin,
        "user_code": 1,
        "created_at": datetime(2024, 1, 1),
        "shipping_address": None,
    }
    document["_id"] = db.customers.insert_one(document).inserted_id
    return document


def _auth_headers(app, customer):
    with app.app_context():
        token = create_access_token(
            identity=str(customer["_id"]),
            additional_claims={"is_admin": bool(customer.get("is_admin"))},
        )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def customer(db):
    return _make_customer(db)


@pytest.fixture
def admin(db):
    return _make_customer(db, username="admin", is_admin=True)


@pytest.fixture
def catalogue(db):
    """Ten products spread over two categories."""
    consoles = db.categories.insert_one({"name": "Video Games", "alias": "games"}).inserted_id
    office = db.categories.insert_one({"name": "Office Products", "alias": ""}).inserted_id
    products = [
        ("Nintendo 64 Console", "Nintendo", 199.99, 249.99, ["console", "nintendo"], consoles),
        ("Playstation 5", "Sony", 309.99, 399.99, ["console", "playstation"], consoles),
        ("Xbox 360", "Microsoft", 199.99, 199.99, ["console", "xbox"], consoles),
        ("Game Boy", "Sony", 89.99, 99.99, ["handheld"], consoles),
        ("Stapler", "Swingline", 12.5, 15.0, ["desk"], office),
        ("Desk Lamp", "Ikea", 25.0, 25.0, ["desk", "light"], office),
        ("Notebook", "Moleskine", 19.0, 20.0, ["paper"], office),
        ("Pen Set", "Pilot", 9.0, 12.0, ["pen"], office),
        ("Monitor Stand", "Ikea", 45.0, 60.0, ["desk"], office),
        ("Whiteboard", "Quartet", 55.0, 55.0, ["board"], office),
    ]
    ids = {}
    for name, brand, price, retail_price, tags, category in products:
        ids[name] = db.products.insert_one(
            {
                "name": name,
                "brand": brand,
                "price": price,
                "retail_price": retail_price,
                "tags": tags,
                "category": [category],
                "quantity": 20,
                "total_bought": 0,
                "__v": 0,
            }
        ).inserted_id
    return {"categories": {"consoles": consoles, "office": office}, "products": ids}


class RecordingCollection:
    """Collection stand-in that records every pipeline handed to ``aggregate``."""

    def __init__(self, count=0, documents=None):
        self.count = count
        self.documents = documents or []
        self.pipelines = []

    def aggregate(self, pipeline):
        self.pipelines.append([dict(stage) for stage in pipeline])
        if any("$count" in stage for stage in pipeline):
            return iter([{"records_count": self.count}] if self.count else [])
        return iter([dict(document) for document in self.documents])


class RecordingDatabase:
    def __init__(self, **collections):
        self._collections = collections

    def __getattr__(self, name):
        try:
            return self._collections[name]
        except KeyError:
            raise AttributeError(name)


@pytest.fixture
def make_customer(db):
    def factory(username="jdoe", is_admin=False, password="secret1"):
        return _make_customer(db, username=username, is_admin=is_admin, password=password)

    return factory


@pytest.fixture
def auth_headers(app):
    def factory(customer):
        return _auth_headers(app, customer)

    return factory


@pytest.fixture
def recording_db():
    """Build a database whose single collection records aggregate calls."""

    def factory(collection_name, count=0, documents=None):
        collection = RecordingCollection(count=count, documents=documents)
        return RecordingDatabase(**{collection_name: collection}), collection

    return factory
