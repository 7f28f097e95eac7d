from decimal import Decimal

import pytest
from pymongo.errors import DuplicateKeyError

import main
from conftest import make_product, make_user


def test_stats(admin_client, user_client, db):
    pid = make_product(price="1500.00")
    order_ids = [
        user_client.post("/api/orders", json={
            "items": [{"productId": pid, "quantity": q}],
            "shippingAddress": "Mombasa",
            "phone": "0722000000",
        }).json()["id"]
        for q in (1, 2)
    ]
    admin_client.put(f"/api/orders/{order_ids[1]}/status", json={"status": "delivered"})

    stats = admin_client.get("/api/admin/stats").json()

    assert stats == {
        "totalProducts": 1,
        "totalUsers": 2,
        "pendingOrders": 1,
        "revenue": "KSh 3,000",
    }


def test_stats_require_admin(user_client, client, db):
    assert client.get("/api/admin/stats").status_code == 401
    assert user_client.get("/api/admin/stats").status_code == 403


def test_list_users_hides_hashes(admin_client, db):
    make_user("a@shop.co.ke")

    users = admin_client.get("/api/admin/users").json()

    assert {u["email"] for u in users} == {"admin@shop.co.ke", "a@shop.co.ke"}
    assert all("password_hash" not in u for u in users)


def test_create_user(admin_client, db):
    res = admin_client.post("/api/admin/users", json={"email": "new@shop.co.ke", "firstName": "Akinyi"})

    assert res.status_code == 200
    assert res.json()["role"] == "user"
    assert res.json()["first_name"] == "Akinyi"

    again = admin_client.post("/api/admin/users", json={"email": "new@shop.co.ke", "firstName": "Akinyi"})
    assert again.status_code == 400


def test_create_user_requires_fields(admin_client, db):
    assert admin_client.post("/api/admin/users", json={"email": "new@shop.co.ke"}).status_code == 400
    assert admin_client.post("/api/admin/users", json={"firstName": "Akinyi"}).status_code == 400


def test_delete_user(admin_client, user_client, db):
    res = admin_client.delete(f"/api/admin/users/{user_client.user_id}")

    assert res.status_code == 200
    assert user_client.get("/api/auth/user").status_code == 401
    assert admin_client.delete(f"/api/admin/users/{user_client.user_id}").status_code == 404


def test_admin_accounts_cannot_be_deleted(admin_client, db):
    res = admin_client.delete(f"/api/admin/users/{admin_client.user_id}")
    assert res.status_code == 403


def test_user_management_requires_admin(user_client, other_client, db):
    assert user_client.get("/api/admin/users").status_code == 403
    assert user_client.delete(f"/api/admin/users/{other_client.user_id}").status_code == 403


@pytest.mark.parametrize("amount,expected", [
    ("0", "0"),
    ("1000", "1,000"),
    ("1000.50", "1,000.5"),
    ("1234567.89", "1,234,567.89"),
])
def test_revenue_formatting(amount, expected):
    assert main.format_revenue(Decimal(amount)) == expected


def test_create_user_race_on_unique_email(admin_client, db, monkeypatch):
    def lost_race(collection, data):
        raise DuplicateKeyError("E11000 duplicate key error collection: user index: email_1")

    monkeypatch.setattr(main, "create_document", lost_race)

    res = admin_client.post("/api/admin/users", json={"email": "new@shop.co.ke", "firstName": "Akinyi"})

    assert res.status_code == 400
    assert res.json()["detail"] == "User already exists"
