"""HTTP tests for the bot-link, magic link and session endpoints."""

from urllib.parse import parse_qs, urlparse

import pytest
from sqlalchemy import select

from app.core.config import settings
from app.core.cookies import SESSION_COOKIE_NAME
from app.core.errors import EmailDeliveryError
from app.core.security import magic_link_manager
from app.domain.linking.models import LinkedAccount
from app.domain.users.models import User
from conftest import TEST_BOT_HANDLE, bot_headers, login

SECONDARY_ID = 777000111


async def issue(client) -> dict:
    response = await client.post("/api/bot-link/token")
    assert response.status_code == 200, response.text
    return response.json()


async def verify(client, token: str, secondary_id: int = SECONDARY_ID):
    return await client.post(
        "/api/bot-link/verify",
        json={"token": token, "secondaryAccountId": secondary_id},
        headers=bot_headers(),
    )


class TestIssueToken:
    async def test_requires_a_session(self, client):
        response = await client.post("/api/bot-link/token")
        assert response.status_code == 401

    async def test_forged_cookie_is_rejected(self, client):
        client.cookies.set(SESSION_COOKIE_NAME, "forged.value")
        assert (await client.post("/api/bot-link/token")).status_code == 401

    async def test_returns_token_expiry_and_deep_link(self, client, owner):
        login(client, owner)

        body = await issue(client)

        assert len(body["token"]) == 32
        assert body["deepLink"] == f"https://t.me/{TEST_BOT_HANDLE}?start={body['token']}"
        assert "expiresAt" in body

    async def test_response_is_not_cacheable(self, client, owner):
        login(client, owner)
        response = await client.post("/api/bot-link/token")
        assert response.headers["cache-control"] == "no-store"

    async def test_sixth_request_in_a_minute_is_limited(self, client, owner):
        login(client, owner)
        for _ in range(5):
            await issue(client)

        response = await client.post("/api/bot-link/token")

        assert response.status_code == 429
        body = response.json()
        assert body["error"] == "TooManyRequests"
        assert 1 <= body["retryAfterSeconds"] <= 60
        assert response.headers["retry-after"] == str(body["retryAfterSeconds"])

    async def test_limit_can_be_disabled(self, client, owner, monkeypatch):
        monkeypatch.setattr(settings, "TOKEN_RATE_LIMIT_ENABLED", False)
        login(client, owner)
        for _ in range(7):
            await issue(client)


class TestLinkStatus:
    async def test_reports_live_token_and_binding(self, client, owner):
        login(client, owner)
        assert (await client.get("/api/bot-link/status")).json() == {
            "linked": False,
            "secondaryAccountId": None,
            "liveTokenExpiresAt": None,
        }

        body = await issue(client)
        status = (await client.get("/api/bot-link/status")).json()
        assert status["liveTokenExpiresAt"] is not None

        await verify(client, body["token"])
        status = (await client.get("/api/bot-link/status")).json()
        assert status["linked"] is True
        assert status["secondaryAccountId"] == SECONDARY_ID
        assert status["liveTokenExpiresAt"] is None


class TestVerify:
    async def test_requires_the_bot_key(self, client):
        response = await client.post(
            "/api/bot-link/verify",
            json={"token": "A" * 32, "secondaryAccountId": SECONDARY_ID},
            headers={"X-Bot-Api-Key": "wrong"},
        )
        assert response.status_code == 401

    async def test_links_and_returns_locale(self, client, owner):
        login(client, owner)
        body = await issue(client)

        response = await verify(client, body["token"])

        assert response.status_code == 200
        assert response.json() == {"status": "linked", "locale": "pt_BR"}

    @pytest.mark.parametrize(
        ("token", "status_code", "error"),
        [
            ("short", 400, "invalid_format"),
            ("N" * 32, 404, "not_found"),
        ],
    )
    async def test_unusable_tokens(self, client, token, status_code, error):
        response = await verify(client, token)
        assert response.status_code == status_code
        assert response.json() == {"error": error}

    async def test_reused_token_is_a_conflict(self, client, owner):
        login(client, owner)
        body = await issue(client)
        await verify(client, body["token"])

        response = await verify(client, body["token"], SECONDARY_ID + 1)

        assert response.status_code == 409
        assert response.json() == {"error": "used"}

    async def test_superseded_token_is_gone(self, client, owner):
        login(client, owner)
        first = await issue(client)
        await issue(client)

        response = await verify(client, first["token"])

        assert response.status_code == 410
        assert response.json() == {"error": "invalidated"}

    async def test_same_account_twice_is_already_linked(self, client, owner):
        login(client, owner)
        await verify(client, (await issue(client))["token"])

        response = await verify(client, (await issue(client))["token"])

        assert response.status_code == 200
        assert response.json()["status"] == "already_linked"

    async def test_account_bound_elsewhere_is_a_collision(self, client, owner, other_owner):
        login(client, owner)
        await verify(client, (await issue(client))["token"])
        login(client, other_owner)

        response = await verify(client, (await issue(client))["token"])

        assert response.status_code == 409
        assert response.json() == {"error": "collision"}

    async def test_rejects_unknown_fields(self, client):
        response = await client.post(
            "/api/bot-link/verify",
            json={"token": "A" * 32, "secondaryAccountId": SECONDARY_ID, "owner": 1},
            headers=bot_headers(),
        )
        assert response.status_code == 422

    async def test_account_id_beyond_64_bits_is_rejected(self, client, owner):
        login(client, owner)
        body = await issue(client)

        response = await verify(client, body["token"], 2**70)

        assert response.status_code == 422
        # The token stays usable for a well-formed request.
        assert (await verify(client, body["token"])).status_code == 200

    async def test_largest_64_bit_account_id_links(self, client, owner):
        login(client, owner)

        response = await verify(client, (await issue(client))["token"], 2**63 - 1)

        assert response.status_code == 200


class TestSecondaryEndpoints:
    async def test_account_lookup_and_unlink(self, client, owner):
        login(client, owner)
        await verify(client, (await issue(client))["token"])

        lookup = await client.get(f"/api/bot-link/accounts/{SECONDARY_ID}", headers=bot_headers())
        assert lookup.json() == {"linked": True, "locale": "pt_BR"}

        unlink = await client.post(
            "/api/bot-link/unlink",
            json={"secondaryAccountId": SECONDARY_ID},
            headers=bot_headers(),
        )
        assert unlink.json() == {"unlinked": True}

        lookup = await client.get(f"/api/bot-link/accounts/{SECONDARY_ID}", headers=bot_headers())
        assert lookup.json() == {"linked": False, "locale": None}

    async def test_lookup_requires_the_bot_key(self, client):
        response = await client.get(f"/api/bot-link/accounts/{SECONDARY_ID}")
        assert response.status_code == 401

    async def test_oversized_account_id_is_rejected(self, client):
        lookup = await client.get(f"/api/bot-link/accounts/{2**70}", headers=bot_headers())
        unlink = await client.post(
            "/api/bot-link/unlink",
            json={"secondaryAccountId": 2**70},
            headers=bot_headers(),
        )

        assert lookup.status_code == 422
        assert unlink.status_code == 422


class TestMagicLinkRequest:
    async def test_sends_link(self, client, mailer):
        response = await client.post("/api/auth/magic-link", json={"email": "New@Example.com"})

        assert response.status_code == 200
        assert response.json() == {"success": True, "cooldownSeconds": 60}
        ((to, link),) = mailer.sent
        assert to == "new@example.com"
        assert link.startswith("http://testserver/verify?token=")

    async def test_link_uses_public_base_url_when_configured(self, client, mailer, monkeypatch):
        monkeypatch.setattr(settings, "PUBLIC_BASE_URL", "https://botlink.example.org/")

        await client.post("/api/auth/magic-link", json={"email": "user@example.com"})

        ((_, link),) = mailer.sent
        assert link.startswith("https://botlink.example.org/verify?token=")
        token = parse_qs(urlparse(link).query)["token"][0]
        assert magic_link_manager.verify_token(token) == "user@example.com"

    @pytest.mark.parametrize("payload", [{}, {"email": ""}, {"email": "nope"}])
    async def test_invalid_email(self, client, mailer, payload):
        response = await client.post("/api/auth/magic-link", json=payload)

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_email"
        assert mailer.sent == []

    async def test_cooldown(self, client):
        await client.post("/api/auth/magic-link", json={"email": "user@example.com"})

        response = await client.post("/api/auth/magic-link", json={"email": "user@example.com"})

        assert response.status_code == 429
        body = response.json()
        assert body["error"] == "rate_limit_cooldown"
        assert 1 <= body["retryAfterSeconds"] <= 60
        assert response.headers["retry-after"] == str(body["retryAfterSeconds"])

    async def test_memory_backend(self, client, monkeypatch):
        monkeypatch.setattr(settings, "RATE_LIMIT_BACKEND", "memory")
        await client.post("/api/auth/magic-link", json={"email": "mem@example.com"})

        response = await client.post("/api/auth/magic-link", json={"email": "mem@example.com"})
        assert response.json()["error"] == "rate_limit_cooldown"

    async def test_delivery_failure_is_503(self, client):
        from main import app
        from app.web.dependencies import get_mailer

        class BrokenMailer:
            async def send_magic_link(self, to, magic_link):
                raise EmailDeliveryError("down")

        app.dependency_overrides[get_mailer] = BrokenMailer

        response = await client.post("/api/auth/magic-link", json={"email": "user@example.com"})

        assert response.status_code == 503
        assert response.json()["error"] == "email_unavailable"


async def login_via_link(client, mailer, email="login@example.com", headers=None):
    """Request a magic link and follow it, as the user would."""
    await client.post("/api/auth/magic-link", json={"email": email})
    link = mailer.sent[-1][1]
    token = parse_qs(urlparse(link).query)["token"][0]
    return await client.get("/verify", params={"token": token}, headers=headers)


class TestMagicLinkLogin:
    async def test_creates_user_and_sets_session(self, client, mailer, session_factory):
        response = await login_via_link(client, mailer)

        assert response.status_code == 303
        assert response.headers["location"] == "/"
        assert SESSION_COOKIE_NAME in response.headers["set-cookie"]
        async with session_factory() as session:
            user = await session.scalar(select(User).where(User.email == "login@example.com"))
            account = await session.scalar(
                select(LinkedAccount).where(LinkedAccount.owner_id == user.id)
            )
        assert account.secondary_account_id is None

    async def test_locale_comes_from_accept_language(self, client, mailer):
        await login_via_link(client, mailer, headers={"Accept-Language": "en-GB,en;q=0.9"})
        body = await issue(client)

        response = await verify(client, body["token"])
        assert response.json()["locale"] == "en_US"

    async def test_second_login_reuses_the_user(self, client, session_factory):
        token = magic_link_manager.generate_token("again@example.com")
        for _ in range(2):
            response = await client.get("/verify", params={"token": token})
            assert response.status_code == 303

        async with session_factory() as session:
            users = (await session.scalars(select(User))).all()
            accounts = (await session.scalars(select(LinkedAccount))).all()
        assert [user.email for user in users] == ["again@example.com"]
        assert len(accounts) == 1

    async def test_home_reflects_the_session(self, client, mailer):
        await login_via_link(client, mailer)

        body = (await client.get("/")).json()

        assert body["authenticated"] is True
        assert body["email"] == "login@example.com"

    async def test_bad_link(self, client):
        response = await client.get("/verify", params={"token": "tampered"})
        assert response.status_code == 400
        assert "detail" in response.json()


class TestLogout:
    async def test_clears_binding_and_cookie(self, client, mailer):
        login_response = await login_via_link(client, mailer)
        assert login_response.status_code == 303
        await verify(client, (await issue(client))["token"])

        response = await client.post("/logout")

        assert response.status_code == 303
        assert f'{SESSION_COOKIE_NAME}=""' in response.headers["set-cookie"]
        lookup = await client.get(f"/api/bot-link/accounts/{SECONDARY_ID}", headers=bot_headers())
        assert lookup.json()["linked"] is False

    async def test_without_session_still_succeeds(self, client):
        response = await client.get("/logout")
        assert response.status_code == 303


class TestHealth:
    async def test_reports_database_and_backend(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {
            "status": "ok",
            "database": "ok",
            "rateLimitBackend": "database",
            "botLinking": True,
        }

    async def test_unconfigured_bot_is_reported(self, client, monkeypatch):
        from app.core.config import settings

        monkeypatch.setattr(settings, "BOT_API_KEY", "")
        response = await client.get("/health")
        assert response.json()["botLinking"] is False
