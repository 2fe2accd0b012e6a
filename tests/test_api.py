"""
End-to-end tests for the HTTP surface.
"""

from dataclasses import replace

import pytest
from fastapi.testclient import TestClient

from vcare_access.api.server import create_app
from vcare_access.auth.crud import assign_role, set_share_balance
from vcare_access.config import ConfigError
from vcare_access.db import connect


PASSWORD = "correct-horse-battery"


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


def login_token(client, email, password=PASSWORD):
    r = client.post("/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200, r.text
    return r.json()["token"]


class TestStartup:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_refuses_to_start_without_secret(self, cfg):
        app = create_app(replace(cfg, AUTH_JWT_SECRET=None))
        with pytest.raises(ConfigError):
            with TestClient(app):
                pass

    def test_bootstraps_admin(self, cfg):
        cfg = replace(cfg, AUTH_BOOTSTRAP_ADMIN_EMAIL="root@example.com", AUTH_BOOTSTRAP_ADMIN_PASSWORD="pw-root-1234")
        with TestClient(create_app(cfg)) as c:
            r = c.post("/login", json={"email": "root@example.com", "password": "pw-root-1234"})
            assert r.status_code == 200
            assert r.json()["role"] == "admin"


class TestRegister:
    def test_register_opens_a_session(self, client):
        r = client.post(
            "/register",
            json={"email": "New@Example.com", "password": PASSWORD, "name": "New", "roles": ["angel"]},
        )
        assert r.status_code == 201, r.text
        body = r.json()
        assert body["email"] == "new@example.com"
        assert body["role"] == "customer"
        assert body["roles"] == ["customer", "angel"]
        assert body["token"]
        assert "vcare_sid" in r.cookies

        me = client.get("/user")
        assert me.status_code == 200
        assert me.json()["email"] == "new@example.com"

    def test_duplicate(self, client, make_user):
        make_user("taken@example.com")
        r = client.post("/register", json={"email": "taken@example.com", "password": PASSWORD})
        assert r.status_code == 400
        assert r.json() == {"message": "Username already exists"}

    def test_unknown_role(self, client):
        r = client.post("/register", json={"email": "x@example.com", "password": PASSWORD, "roles": ["emperor"]})
        assert r.status_code == 400
        assert "emperor" in r.json()["message"]

    @pytest.mark.parametrize("email,password", [("no-at-sign", PASSWORD), ("ok@example.com", "short")])
    def test_input_validation(self, client, email, password):
        assert client.post("/register", json={"email": email, "password": password}).status_code == 400


class TestSessionLogin:
    def test_login_logout(self, client, make_user):
        make_user("s@example.com")
        r = client.post("/login", json={"email": "s@example.com", "password": PASSWORD})
        assert r.status_code == 200
        assert client.get("/user").status_code == 200

        assert client.post("/logout").json() == {"ok": True}
        assert client.get("/user").status_code == 401

    def test_wrong_password(self, client, make_user):
        make_user("s@example.com")
        r = client.post("/login", json={"email": "s@example.com", "password": "nope"})
        assert r.status_code == 401
        assert r.json() == {"message": "Invalid credentials"}

    def test_unknown_email_same_answer(self, client):
        r = client.post("/login", json={"email": "ghost@example.com", "password": PASSWORD})
        assert r.status_code == 401
        assert r.json() == {"message": "Invalid credentials"}

    def test_session_sees_role_changes(self, client, make_user, cfg):
        user = make_user("promo@example.com")
        client.post("/login", json={"email": "promo@example.com", "password": PASSWORD})
        assert client.get("/admin/roles").status_code == 403
        with connect(cfg.DB_DSN) as conn:
            assign_role(conn, user.id, "admin")
        assert client.get("/admin/roles").status_code == 200

    def test_logout_is_audited(self, client, make_user, cfg):
        make_user("a@example.com")
        client.post("/login", json={"email": "a@example.com", "password": PASSWORD})
        client.post("/logout")
        with connect(cfg.DB_DSN) as conn:
            actions = [r["action"] for r in conn.execute("SELECT action FROM audit_logs ORDER BY audit_id")]
        assert actions == ["login", "logout"]


class TestTokens:
    def test_token_login_and_use(self, client, make_user):
        make_user("t@example.com", extra_roles=("founder",), shares=250)
        token = login_token(client, "t@example.com")
        client.cookies.clear()

        r = client.get("/user", headers=bearer(token))
        assert r.status_code == 200
        body = r.json()
        assert body["roles"] == ["customer", "founder"]
        assert body["shareBalance"] == 250
        assert body["shareValue"] == 2_500_000

    def test_no_credentials(self, client):
        r = client.get("/user")
        assert r.status_code == 401
        assert r.json() == {"message": "Authentication required"}
        assert r.headers["www-authenticate"] == "Bearer"

    def test_invalid_tokens_are_indistinguishable(self, client, make_user, cfg):
        from datetime import datetime, timedelta, timezone

        from vcare_access.auth.security import TokenIssuer

        user = make_user("t@example.com")
        past = datetime.now(timezone.utc) - timedelta(days=2)
        expired = TokenIssuer(cfg.AUTH_JWT_SECRET, clock=lambda: past).issue(user)
        forged = TokenIssuer("wrong-secret").issue(user)

        bodies = set()
        for token in (expired, forged, "garbage"):
            r = client.get("/user", headers=bearer(token))
            assert r.status_code == 401
            bodies.add(r.text)
        assert len(bodies) == 1

    def test_token_is_stale_until_refreshed(self, client, make_user, cfg):
        user = make_user("stale@example.com")
        token = login_token(client, "stale@example.com")
        with connect(cfg.DB_DSN) as conn:
            assign_role(conn, user.id, "admin")

        assert client.get("/admin/roles", headers=bearer(token)).status_code == 403

        r = client.post("/auth/refresh", json={"token": token})
        assert r.status_code == 200
        fresh = r.json()["token"]
        assert "admin" in r.json()["roles"]
        assert client.get("/admin/roles", headers=bearer(fresh)).status_code == 200

    def test_refresh_rejects_bad_token(self, client):
        r = client.post("/auth/refresh", json={"token": "garbage"})
        assert r.status_code == 401
        assert r.json() == {"message": "Invalid token"}

    def test_refresh_for_deleted_user(self, client, make_user, cfg):
        user = make_user("gone@example.com")
        token = login_token(client, "gone@example.com")
        with connect(cfg.DB_DSN) as conn:
            conn.execute("DELETE FROM user_roles WHERE user_id=?", (user.id,))
            conn.execute("DELETE FROM users WHERE user_id=?", (user.id,))
        assert client.post("/auth/refresh", json={"token": token}).status_code == 401

    def test_rejections_are_counted(self, client, make_user):
        make_user("boss@example.com", role="admin")
        token = login_token(client, "boss@example.com")
        client.get("/user")
        client.get("/user", headers=bearer("garbage"))

        counts = client.get("/admin/auth-rejections", headers=bearer(token)).json()["rejections"]
        assert counts["missing_credentials"] >= 1
        assert counts["token_malformed"] == 1


class TestGates:
    def test_customer_blocked_from_admin(self, client, make_user):
        make_user("c@example.com")
        token = login_token(client, "c@example.com")
        r = client.get("/admin/roles", headers=bearer(token))
        assert r.status_code == 403
        assert r.json() == {"message": "Insufficient permissions", "required": ["admin"], "current": ["customer"]}

    def test_staff_gate(self, client, make_user):
        make_user("acct@example.com", role="accountant")
        make_user("cust@example.com")
        assert client.get("/staff/ping", headers=bearer(login_token(client, "acct@example.com"))).status_code == 200
        client.cookies.clear()
        assert client.get("/staff/ping", headers=bearer(login_token(client, "cust@example.com"))).status_code == 403

    def test_shareholder_gate(self, client, make_user, cfg):
        user = make_user("holder@example.com", shares=40)
        token = login_token(client, "holder@example.com")
        r = client.get("/shareholder/ping", headers=bearer(token))
        assert r.status_code == 403
        assert r.json() == {"message": "Insufficient digital share balance", "required": 100, "current": 40}

        with connect(cfg.DB_DSN) as conn:
            set_share_balance(conn, user.id, 100)
        token = client.post("/auth/refresh", json={"token": token}).json()["token"]
        assert client.get("/shareholder/ping", headers=bearer(token)).status_code == 200


    def test_min_shares_dependency(self, app, make_user):
        from fastapi import Depends

        from vcare_access.auth import require_min_shares

        @app.get("/vip-lounge")
        def vip_lounge(user=Depends(require_min_shares(500))):
            return {"id": user.id}

        make_user("small@example.com", shares=499)
        make_user("big@example.com", shares=500)
        with TestClient(app) as c:
            small = bearer(login_token(c, "small@example.com"))
            big = bearer(login_token(c, "big@example.com"))
            assert c.get("/vip-lounge", headers=small).status_code == 403
            assert c.get("/vip-lounge", headers=big).status_code == 200


class TestDigitalShares:
    def test_rates_are_public(self, client):
        body = client.get("/digital-share/rates").json()
        assert body["currencyPerShare"] == 10_000
        assert body["roleTable"]["version"] == "v2"
        assert body["roleTable"]["roles"]["founder"]["maxout"] == "unlimited"
        assert body["vipTiers"][0] == {"minInvestment": 10_000_000, "bonus": 100}

    def test_quote_requires_login(self, client):
        assert client.post("/digital-share/quote", json={"amount": 1_000_000}).status_code == 401

    def test_quote(self, client, make_user):
        make_user("q@example.com")
        token = login_token(client, "q@example.com")
        r = client.post(
            "/digital-share/quote",
            json={"amount": 20_000_000, "roles": ["founder"], "referralCount": 12},
            headers=bearer(token),
        )
        assert r.status_code == 200, r.text
        q = r.json()
        assert q["baseShares"] == 2_000
        assert q["roles"][0]["shares"] == 6_000
        assert q["roles"][0]["maxoutAmount"] == "unlimited"
        assert q["vipBonus"] == 200
        assert q["referralBonus"] == 100
        assert q["totalShares"] == 8_300

    def test_quote_rejects_negative_amount(self, client, make_user):
        make_user("q@example.com")
        token = login_token(client, "q@example.com")
        r = client.post("/digital-share/quote", json={"amount": -1}, headers=bearer(token))
        assert r.status_code == 422


class TestRateLimit:
    def test_login_is_limited(self, cfg, make_user):
        make_user("rl@example.com")
        with TestClient(create_app(replace(cfg, LOGIN_RATE_LIMIT=2))) as c:
            for _ in range(2):
                c.post("/login", json={"email": "rl@example.com", "password": "bad"})
            r = c.post("/login", json={"email": "rl@example.com", "password": PASSWORD})
            assert r.status_code == 429
            assert int(r.headers["retry-after"]) >= 1
            assert r.json()["retryAfter"] == int(r.headers["retry-after"])

    def test_user_endpoint_not_limited(self, cfg, make_user):
        make_user("rl@example.com")
        with TestClient(create_app(replace(cfg, LOGIN_RATE_LIMIT=1))) as c:
            c.post("/login", json={"email": "rl@example.com", "password": PASSWORD})
            for _ in range(5):
                assert c.get("/user").status_code == 200
