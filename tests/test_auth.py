from tests.conftest import auth_header, login


def test_register_login_and_me(client):
    r = client.post(
        "/auth/register",
        json={"email": "new@example.com", "password": "supersecret", "full_name": "New Student"},
    )
    assert r.status_code == 201, r.text
    assert r.json()["role"] == "student"

    token = login(client, "new@example.com", "supersecret")
    me = client.get("/auth/me", headers=auth_header(token))
    assert me.status_code == 200
    assert me.json()["email"] == "new@example.com"


def test_duplicate_email_conflicts(client):
    r = client.post(
        "/auth/register",
        json={"email": "student1@example.com", "password": "supersecret"},
    )
    assert r.status_code == 409


def test_admin_role_cannot_be_self_assigned(client):
    r = client.post(
        "/auth/register",
        json={"email": "root@example.com", "password": "supersecret", "role": "admin"},
    )
    assert r.status_code == 422


def test_wrong_password_is_rejected(client):
    r = client.post("/auth/login", json={"email": "student1@example.com", "password": "nope-nope"})
    assert r.status_code == 401


def test_missing_or_bad_token_is_unauthenticated(client):
    assert client.get("/auth/me").status_code == 401

    r = client.get("/auth/me", headers=auth_header("not-a-jwt"))
    assert r.status_code == 401
    assert r.headers["www-authenticate"] == "Bearer"


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}
