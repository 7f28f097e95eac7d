import mongomock
import pytest
from fastapi.testclient import TestClient

import auth
import database
import main
import notifications
from schemas import Category, Product, User

PASSWORD = "secret123"


@pytest.fixture
def db(monkeypatch):
    mock_db = mongomock.MongoClient()["store_test"]
    monkeypatch.setattr(database, "db", mock_db)
    database.ensure_indexes()
    return mock_db


@pytest.fixture(autouse=True)
def outbox(monkeypatch):
    sent = []

    def fake_send_email(to, subject, html, text=None):
        sent.append({"to": to, "subject": subject, "html": html, "text": text})
        return True

    monkeypatch.setattr(notifications, "send_email", fake_send_email)
    return sent


def make_user(email, role="user", first_name="Test", last_name="User"):
    user = User(
        email=email,
        first_name=first_name,
        last_name=last_name,
        password_hash=auth.hash_password(PASSWORD),
        role=role,
    )
    return database.create_document("user", user)


def logged_in_client(email, role="user", first_name="Test"):
    uid = make_user(email, role=role, first_name=first_name)
    client = TestClient(main.app)
    res = client.post("/api/auth/login", json={"email": email, "password": PASSWORD})
    assert res.status_code == 200, res.text
    client.user_id = uid
    return client


def make_category(name="Phones", slug="phones"):
    return database.create_document("category", Category(name=name, slug=slug))


def make_product(price="500.00", name="Phone", category_id=None, status="active", description=None):
    product = Product(name=name, price=price, category_id=category_id, status=status, description=description)
    return database.create_document("product", product)


@pytest.fixture
def client(db):
    return TestClient(main.app)


@pytest.fixture
def user_client(db):
    return logged_in_client("jane@shop.co.ke", first_name="Jane")


@pytest.fixture
def other_client(db):
    return logged_in_client("otieno@shop.co.ke", first_name="Otieno")


@pytest.fixture
def admin_client(db):
    return logged_in_client("admin@shop.co.ke", role="admin", first_name="Admin")
