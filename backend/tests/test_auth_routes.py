from conftest import PASSWORD, auth_headers
from plenaria_legal.core.constants import ROLE_LAWYER, USER_PENDING, USER_SUSPENDED


def _register(client, **fields):
    payload = {"email": "Nova@Example.com", "password": "password123", "role": "customer", "plan": "plus"}
    payload.update(fields)
    return client.post("/api/v1/auth/register", json=payload)


def test_register_customer_starts_trial(client):
    response = _register(client)

    assert response.status_code == 201
    body = response.json()
    assert body["success"] == 1
    assert body["metadata"]["status_code"] == 201
    data = body["data"]
    assert data["user"]["email"] == "nova@example.com"
    assert data["user"]["plan"] == "plus"
    assert data["user"]["is_on_trial"] is True
    assert data["user"]["status"] == "ACTIVE"
    assert data["user"]["trial_active"] is True
    assert data["user"]["plan_active"] is True
    assert data["is_pending"] is False
    assert data["access_token"] and data["refresh_token"]
    assert "password_hash" not in data["user"]


def test_register_customer_requires_plan(client):
    response = _register(client, plan=None)
    assert response.status_code == 400
    assert response.json()["data"]["code"] == "validation_error"


def test_register_lawyer_is_pending(client):
    response = _register(client, email="advogada@example.com", role="lawyer", plan=None)

    assert response.status_code == 201
    data = response.json()["data"]
    assert data["user"]["status"] == USER_PENDING
    assert data["is_pending"] is True


def test_register_enforces_password_length(client):
    response = _register(client, password="short")
    assert response.status_code == 400
    assert response.json()["data"]["details"] == {"field": "password"}


def test_admins_cannot_self_register(client):
    assert _register(client, role="admin").status_code == 400


def test_duplicate_email(client):
    _register(client)
    response = _register(client, email="nova@example.com")
    assert response.status_code == 400
    assert response.json()["data"]["message"] == "Email already registered"


def test_login_by_email_and_phone(client, make_user):
    user = make_user(email="cliente@example.com", phone="+5511999990000")

    by_email = client.post("/api/v1/auth/login", json={"identifier": "Cliente@Example.com", "password": PASSWORD})
    by_phone = client.post("/api/v1/auth/login", json={"identifier": "+5511999990000", "password": PASSWORD})

    assert by_email.status_code == 200
    assert by_phone.status_code == 200
    assert by_phone.json()["data"]["user"]["id"] == user.id


def test_login_failures(client, make_user):
    make_user(email="cliente@example.com")
    suspended = make_user(status=USER_SUSPENDED)

    wrong = client.post("/api/v1/auth/login", json={"identifier": "cliente@example.com", "password": "nope"})
    unknown = client.post("/api/v1/auth/login", json={"identifier": "ghost@example.com", "password": PASSWORD})
    blocked = client.post("/api/v1/auth/login", json={"identifier": suspended.email, "password": PASSWORD})

    assert wrong.status_code == 401
    assert unknown.status_code == 401
    assert wrong.json()["data"]["message"] == unknown.json()["data"]["message"] == "Invalid credentials"
    assert blocked.status_code == 403


def test_pending_lawyer_can_login(client, pending_lawyer):
    response = client.post("/api/v1/auth/login", json={"identifier": pending_lawyer.email, "password": PASSWORD})
    assert response.status_code == 200
    assert response.json()["data"]["is_pending"] is True


def test_refresh_issues_new_pair(client, customer):
    tokens = client.post("/api/v1/auth/login", json={"identifier": customer.email, "password": PASSWORD}).json()["data"]

    refreshed = client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert refreshed.status_code == 200
    assert refreshed.json()["data"]["user"]["id"] == customer.id

    # Access tokens are not accepted as refresh tokens and vice versa
    assert client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["access_token"]}).status_code == 401
    bearer = {"Authorization": f"Bearer {tokens['refresh_token']}"}
    assert client.get("/api/v1/auth/me", headers=bearer).status_code == 401


def test_me_requires_token(client, customer):
    assert client.get("/api/v1/auth/me").status_code == 401
    assert client.get("/api/v1/auth/me", headers={"Authorization": "Bearer garbage"}).status_code == 401

    me = client.get("/api/v1/auth/me", headers=auth_headers(customer))
    assert me.json()["data"]["email"] == customer.email


def test_lawyer_directory_lists_active_lawyers(client, customer, lawyer, pending_lawyer, make_user):
    second = make_user(ROLE_LAWYER, email="aaa-lawyer@example.com")

    response = client.get("/api/v1/auth/lawyers", headers=auth_headers(customer))

    assert [item["id"] for item in response.json()["data"]] == [second.id, lawyer.id]


def test_logout(client, customer):
    response = client.post("/api/v1/auth/logout", headers=auth_headers(customer))
    assert response.status_code == 200
    assert response.json()["data"]["message"] == "Logout successful"
