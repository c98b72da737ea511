import json
from datetime import timedelta

from cookmate.models import User
from cookmate.security import create_access_token, create_refresh_token


SIGNUP = {"name": "Ada", "email": "Ada@Example.com", "password": "Secret123", "skill_level": "intermediate"}


def test_signup_returns_tokens_and_caches_context(client, db_session, mock_redis):
    resp = client.post("/api/auth/signup", json=SIGNUP)
    assert resp.status_code == 201
    body = resp.json()
    assert body["status"] == "success"
    assert body["token"] and body["refresh_token"]
    user = body["data"]["user"]
    assert user["email"] == "ada@example.com"
    assert user["skill_level"] == "intermediate"
    assert "password_hash" not in user
    assert "jwt" in resp.cookies

    stored = db_session.get(User, user["id"])
    assert stored.password_hash != SIGNUP["password"]
    assert json.loads(mock_redis.get(f"user:{user['id']}:context"))["skill_level"] == "intermediate"


def test_signup_validation(client):
    resp = client.post("/api/auth/signup", json={"name": "", "email": "nope", "password": "short"})
    assert resp.status_code == 400
    fields = {e["field"] for e in resp.json()["errors"]}
    assert {"name", "email", "password"} <= fields

    resp = client.post("/api/auth/signup", json={**SIGNUP, "password": "alllowercase1"})
    assert resp.status_code == 400


def test_duplicate_email_rejected(client, user):
    resp = client.post("/api/auth/signup", json={**SIGNUP, "email": user.email})
    assert resp.status_code == 400
    assert resp.json()["errors"][0]["field"] == "email"


def test_login_and_me(client, user, db_session):
    resp = client.post("/api/auth/login", json={"email": user.email, "password": "Password1"})
    assert resp.status_code == 200
    token = resp.json()["token"]

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["data"]["user"]["id"] == user.id

    db_session.expire_all()
    assert db_session.get(User, user.id).last_login_at is not None


def test_login_bad_password(client, user):
    resp = client.post("/api/auth/login", json={"email": user.email, "password": "Wrong1234"})
    assert resp.status_code == 401
    assert resp.json()["message"] == "Incorrect email or password"


def test_cookie_authenticates_requests(client, user):
    client.post("/api/auth/login", json={"email": user.email, "password": "Password1"})
    assert client.get("/api/auth/me").status_code == 200

    client.post("/api/auth/logout")
    client.cookies.clear()
    assert client.get("/api/auth/me").status_code == 401


def test_rejects_bad_tokens(client, user):
    client.cookies.clear()
    expired = create_access_token(user.id, expires_delta=timedelta(seconds=-5))
    assert client.get("/api/auth/me", headers={"Authorization": f"Bearer {expired}"}).status_code == 401
    assert client.get("/api/auth/me", headers={"Authorization": "Bearer garbage"}).status_code == 401

    # refresh tokens are not access tokens
    refresh = create_refresh_token(user.id)
    assert client.get("/api/auth/me", headers={"Authorization": f"Bearer {refresh}"}).status_code == 401


def test_refresh_issues_new_access_token(client, user):
    client.cookies.clear()
    resp = client.post("/api/auth/refresh", json={"refresh_token": create_refresh_token(user.id)})
    assert resp.status_code == 200
    token = resp.json()["token"]
    assert client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"}).status_code == 200

    bad = client.post("/api/auth/refresh", json={"refresh_token": create_access_token(user.id)})
    assert bad.status_code == 401


def test_deactivated_user_is_locked_out(client, user, auth_headers, db_session):
    user.is_active = False
    db_session.commit()

    assert client.get("/api/auth/me", headers=auth_headers).status_code == 401
    resp = client.post("/api/auth/login", json={"email": user.email, "password": "Password1"})
    assert resp.status_code == 401
