"""
Authentication and role tests: registration, login, logout, bearer
sessions and the admin gate.
"""

from storefront.models import SessionToken, User
from storefront.services.session_service import hash_token

from conftest import PASSWORD


def _register(client, **overrides):
    body = {"name": "Nina New", "email": "Nina@Example.com", "password": "Secret123"}
    body.update(overrides)
    return client.post("/api/auth/register", json=body)


def test_register_creates_customer_and_session(client, db_session):
    resp = _register(client)
    assert resp.status_code == 201

    data = resp.get_json()
    assert data["user"]["email"] == "nina@example.com"
    assert data["user"]["role"] == "customer"
    assert data["user"]["customer_code"] == f"CUST{data['user']['id']:06d}"
    assert data["token"]
    assert data["expires_at"].endswith("Z")

    # Only the hash is stored
    session = SessionToken.query.one()
    assert session.token_hash == hash_token(data["token"])

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {data['token']}"})
    assert me.status_code == 200
    assert me.get_json()["user"]["email"] == "nina@example.com"


def test_register_duplicate_email_conflicts(client, customer):
    resp = _register(client, email="CASEY@example.com")
    assert resp.status_code == 409
    assert User.query.count() == 1


def test_register_rejects_weak_password(client, db_session):
    resp = _register(client, password="short")
    assert resp.status_code == 400
    assert "8 characters" in resp.get_json()["error"]

    resp = _register(client, password="alllowercase1")
    assert resp.status_code == 400
    assert User.query.count() == 0


def test_register_rejects_bad_email(client, db_session):
    resp = _register(client, email="not-an-email")
    assert resp.status_code == 400


def test_login_and_logout(client, customer):
    resp = client.post("/api/auth/login", json={"email": "casey@example.com", "password": PASSWORD})
    assert resp.status_code == 200
    token = resp.get_json()["token"]
    headers = {"Authorization": f"Bearer {token}"}

    assert client.get("/api/auth/me", headers=headers).status_code == 200

    assert client.post("/api/auth/logout", headers=headers).status_code == 200
    assert client.get("/api/auth/me", headers=headers).status_code == 401
    # Second logout with the same token finds no active session
    assert client.post("/api/auth/logout", headers=headers).status_code == 401


def test_login_wrong_password(client, customer):
    resp = client.post("/api/auth/login", json={"email": "casey@example.com", "password": "Wrong1234"})
    assert resp.status_code == 401


def test_login_requires_fields(client, db_session):
    resp = client.post("/api/auth/login", json={"email": "casey@example.com"})
    assert resp.status_code == 400


def test_missing_or_bad_token(client, db_session):
    assert client.get("/api/auth/me").status_code == 401
    resp = client.get("/api/auth/me", headers={"Authorization": "Bearer nope"})
    assert resp.status_code == 401


def test_deactivated_user_token_rejected(client, db_session, customer, customer_headers):
    customer.is_active = False
    db_session.commit()
    assert client.get("/api/auth/me", headers=customer_headers).status_code == 401


def test_admin_only_routes_forbid_customers(client, customer_headers):
    resp = client.get("/api/orders", headers=customer_headers)
    assert resp.status_code == 403
    assert resp.get_json() == {"error": "Permission denied", "required_role": "admin"}

    assert client.get("/api/inventory", headers=customer_headers).status_code == 403
    assert client.get("/api/sales", headers=customer_headers).status_code == 403


def test_admin_allowed(client, admin_headers):
    assert client.get("/api/orders", headers=admin_headers).status_code == 200
