"""Tests for the OAuth proxy and client stores."""

import json
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from shared.models import ClientRegistration, ClientRegistrationRequest

UPSTREAM_AUTHORIZE = "https://upstream.example.com/authorize"
UPSTREAM_TOKEN = "https://upstream.example.com/token"
UPSTREAM_REVOKE = "https://upstream.example.com/revoke"


def make_options(**overrides):
    from mcp_auth.proxy import OAuthProxyOptions

    options = {
        "upstream_authorization_endpoint": UPSTREAM_AUTHORIZE,
        "upstream_token_endpoint": UPSTREAM_TOKEN,
        "upstream_revocation_endpoint": UPSTREAM_REVOKE,
        "upstream_client_id": "upstream-app",
        "upstream_client_secret": "upstream-secret",
        "base_url": "http://localhost:8001",
    }
    options.update(overrides)
    return OAuthProxyOptions(**options)


class UpstreamProvider:
    """Mock upstream token and revocation endpoints."""

    def __init__(self):
        self.requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        self.requests.append((str(request.url), form))
        if str(request.url) == UPSTREAM_TOKEN:
            if form.get("code") == "bad":
                return httpx.Response(400, json={"error": "invalid_grant"})
            return httpx.Response(200, json={"access_token": "at", "token_type": "Bearer"})
        return httpx.Response(200)


def make_proxy(upstream=None, **overrides):
    from mcp_auth.proxy import OAuthProxy

    upstream = upstream or UpstreamProvider()
    return OAuthProxy(
        make_options(**overrides),
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(upstream.handler)),
    )


def registration_request(**overrides) -> ClientRegistrationRequest:
    data = {"redirect_uris": ["http://localhost:3000/callback"], "client_name": "Test Client"}
    data.update(overrides)
    return ClientRegistrationRequest(**data)


class TestClientStores:
    """Tests for ClientStore implementations."""

    @pytest.mark.asyncio
    async def test_in_memory_roundtrip(self):
        from mcp_auth.client_store import InMemoryClientStore

        store = InMemoryClientStore()
        registration = ClientRegistration(client_id="c1", redirect_uris=["http://x/cb"])

        await store.store("c1", registration)
        loaded = await store.get("c1")
        loaded.redirect_uris.append("http://mutated")

        assert (await store.get("c1")).redirect_uris == ["http://x/cb"]

        await store.remove("c1")
        await store.remove("c1")
        assert await store.get("c1") is None

    @pytest.mark.asyncio
    async def test_file_store_persists(self, tmp_path):
        from mcp_auth.client_store import FileClientStore

        path = tmp_path / "clients" / "registry.json"
        store = FileClientStore(str(path))
        await store.store("c1", ClientRegistration(client_id="c1", client_secret="s"))

        reopened = FileClientStore(str(path))
        loaded = await reopened.get("c1")

        assert loaded.client_secret == "s"
        assert "c1" in json.loads(path.read_text())

        await reopened.remove("c1")
        assert json.loads(path.read_text()) == {}

    @pytest.mark.asyncio
    async def test_file_store_failed_write_leaves_memory_unchanged(self, tmp_path):
        from unittest.mock import patch

        from mcp_auth.client_store import FileClientStore

        store = FileClientStore(str(tmp_path / "registry.json"))
        await store.store("c1", ClientRegistration(client_id="c1"))

        with patch.object(store, "_save", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                await store.store("c2", ClientRegistration(client_id="c2"))
            with pytest.raises(OSError):
                await store.remove("c1")

        assert await store.get("c2") is None
        assert await store.get("c1") is not None


class TestRegistration:
    """Tests for dynamic client registration."""

    @pytest.mark.asyncio
    async def test_register_generates_credentials(self):
        proxy = make_proxy()

        registration = await proxy.register_client(registration_request())

        assert registration.client_id
        assert registration.client_secret
        assert registration.grant_types == ["authorization_code", "refresh_token"]
        assert await proxy.get_client(registration.client_id) == registration

    @pytest.mark.asyncio
    async def test_public_client_has_no_secret(self):
        proxy = make_proxy()

        registration = await proxy.register_client(registration_request(token_endpoint_auth_method="none"))

        assert registration.client_secret is None

    @pytest.mark.asyncio
    async def test_redirect_uri_patterns(self):
        from mcp_auth.proxy import OAuthError

        proxy = make_proxy(allowed_client_redirect_uris=["http://localhost:*", "https://app.example.com/cb"])

        assert proxy.validate_redirect_uri("http://localhost:3000/callback")
        assert proxy.validate_redirect_uri("HTTPS://APP.EXAMPLE.COM/cb")
        assert not proxy.validate_redirect_uri("https://evil.example.com/cb")

        with pytest.raises(OAuthError) as exc_info:
            await proxy.register_client(registration_request(redirect_uris=["https://evil.example.com/cb"]))
        assert exc_info.value.error == "invalid_redirect_uri"

    @pytest.mark.asyncio
    async def test_missing_redirect_uris(self):
        from mcp_auth.proxy import OAuthError

        with pytest.raises(OAuthError):
            await make_proxy().register_client(registration_request(redirect_uris=[]))

    @pytest.mark.asyncio
    async def test_unsupported_metadata(self):
        from mcp_auth.proxy import OAuthError

        proxy = make_proxy(valid_scopes=["read"])

        with pytest.raises(OAuthError, match="grant types"):
            await proxy.register_client(registration_request(grant_types=["password"]))
        with pytest.raises(OAuthError, match="auth method"):
            await proxy.register_client(registration_request(token_endpoint_auth_method="private_key_jwt"))
        with pytest.raises(OAuthError, match="scopes"):
            await proxy.register_client(registration_request(scope="read admin"))

    @pytest.mark.asyncio
    async def test_reregistration_requires_secret(self):
        from mcp_auth.proxy import OAuthError

        proxy = make_proxy()
        first = await proxy.register_client(registration_request())

        with pytest.raises(OAuthError) as exc_info:
            await proxy.register_client(registration_request(client_id=first.client_id, client_secret="wrong"))
        assert exc_info.value.status_code == 401

        updated = await proxy.register_client(registration_request(
            client_id=first.client_id,
            client_secret=first.client_secret,
            client_name="Renamed",
        ))
        assert updated.client_name == "Renamed"

    @pytest.mark.asyncio
    async def test_public_client_cannot_be_reregistered(self):
        from mcp_auth.proxy import OAuthError

        proxy = make_proxy()
        public = await proxy.register_client(registration_request(token_endpoint_auth_method="none"))

        with pytest.raises(OAuthError) as exc_info:
            await proxy.register_client(registration_request(
                client_id=public.client_id,
                token_endpoint_auth_method="none",
                redirect_uris=["http://localhost:4000/stolen"],
            ))

        assert exc_info.value.status_code == 401
        assert (await proxy.get_client(public.client_id)).redirect_uris == ["http://localhost:3000/callback"]


class TestAuthorize:
    """Tests for the authorization redirect."""

    @pytest.mark.asyncio
    async def test_redirect_substitutes_upstream_client(self):
        proxy = make_proxy()
        client = await proxy.register_client(registration_request())

        location = await proxy.authorization_redirect(
            client_id=client.client_id,
            redirect_uri="http://localhost:3000/callback",
            state="xyz",
            scope="read",
            code_challenge="challenge",
            code_challenge_method="S256",
        )

        parsed = urlparse(location)
        params = {k: v[0] for k, v in parse_qs(parsed.query).items()}
        assert location.startswith(UPSTREAM_AUTHORIZE)
        assert params["client_id"] == "upstream-app"
        assert params["state"] == "xyz"
        assert params["code_challenge"] == "challenge"
        assert params["code_challenge_method"] == "S256"

    @pytest.mark.asyncio
    async def test_pkce_required_and_s256_only(self):
        from mcp_auth.proxy import OAuthError

        proxy = make_proxy()
        client = await proxy.register_client(registration_request())
        common = {"client_id": client.client_id, "redirect_uri": "http://localhost:3000/callback"}

        with pytest.raises(OAuthError, match="code_challenge"):
            await proxy.authorization_redirect(**common)
        with pytest.raises(OAuthError, match="S256"):
            await proxy.authorization_redirect(**common, code_challenge="c", code_challenge_method="plain")

    @pytest.mark.asyncio
    async def test_unregistered_redirect_uri(self):
        from mcp_auth.proxy import OAuthError

        proxy = make_proxy()
        client = await proxy.register_client(registration_request())

        with pytest.raises(OAuthError, match="Redirect URI"):
            await proxy.authorization_redirect(
                client_id=client.client_id,
                redirect_uri="http://localhost:9999/other",
                code_challenge="c",
            )


class TestTokenRelay:
    """Tests for token exchange and revocation."""

    @pytest.mark.asyncio
    async def test_exchange_relays_with_upstream_credentials(self):
        upstream = UpstreamProvider()
        proxy = make_proxy(upstream)
        client = await proxy.register_client(registration_request())

        status_code, body = await proxy.exchange_token({
            "grant_type": "authorization_code",
            "code": "good",
            "redirect_uri": "http://localhost:3000/callback",
            "code_verifier": "verifier",
            "client_id": client.client_id,
            "client_secret": client.client_secret,
        })

        assert status_code == 200
        assert body["access_token"] == "at"
        url, form = upstream.requests[0]
        assert url == UPSTREAM_TOKEN
        assert form["client_id"] == "upstream-app"
        assert form["client_secret"] == "upstream-secret"
        assert form["code_verifier"] == "verifier"

    @pytest.mark.asyncio
    async def test_upstream_error_passed_through(self):
        proxy = make_proxy()
        client = await proxy.register_client(registration_request())

        status_code, body = await proxy.exchange_token({
            "grant_type": "authorization_code",
            "code": "bad",
            "client_id": client.client_id,
            "client_secret": client.client_secret,
        })

        assert status_code == 400
        assert body == {"error": "invalid_grant"}

    @pytest.mark.asyncio
    async def test_exchange_rejects_bad_client(self):
        from mcp_auth.proxy import OAuthError

        upstream = UpstreamProvider()
        proxy = make_proxy(upstream)
        client = await proxy.register_client(registration_request())

        with pytest.raises(OAuthError) as exc_info:
            await proxy.exchange_token({
                "grant_type": "authorization_code",
                "code": "good",
                "client_id": client.client_id,
                "client_secret": "wrong",
            })

        assert exc_info.value.error == "invalid_client"
        assert upstream.requests == []

    @pytest.mark.asyncio
    async def test_unsupported_grant(self):
        from mcp_auth.proxy import OAuthError

        with pytest.raises(OAuthError, match="Unsupported grant type"):
            await make_proxy().exchange_token({"grant_type": "password"})

    @pytest.mark.asyncio
    async def test_upstream_unreachable(self):
        from mcp_auth.proxy import OAuthError, OAuthProxy

        def unreachable(request):
            raise httpx.ConnectError("down", request=request)

        proxy = OAuthProxy(
            make_options(),
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(unreachable)),
        )
        client = await proxy.register_client(registration_request())

        with pytest.raises(OAuthError) as exc_info:
            await proxy.exchange_token({
                "grant_type": "refresh_token",
                "refresh_token": "rt",
                "client_id": client.client_id,
                "client_secret": client.client_secret,
            })

        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_revoke_relays(self):
        upstream = UpstreamProvider()
        proxy = make_proxy(upstream)
        client = await proxy.register_client(registration_request())

        await proxy.revoke_token({
            "token": "at",
            "client_id": client.client_id,
            "client_secret": client.client_secret,
        })

        url, form = upstream.requests[0]
        assert url == UPSTREAM_REVOKE
        assert form["token"] == "at"
        assert form["client_id"] == "upstream-app"


class TestProxyOptions:
    """Tests for building options from settings."""

    def test_from_settings_requires_upstream(self):
        from shared.config import OAuthProxySettings
        from mcp_auth.proxy import OAuthProxyOptions

        with pytest.raises(ValueError, match="upstream_token_endpoint"):
            OAuthProxyOptions.from_settings(
                OAuthProxySettings(enabled=True, upstream_authorization_endpoint=UPSTREAM_AUTHORIZE),
                "http://localhost:8001",
            )

    def test_issuer_defaults_to_base_url(self):
        assert make_options(base_url="http://localhost:8001/").issuer == "http://localhost:8001"
        assert make_options(issuer_url="https://auth.example.com").issuer == "https://auth.example.com"
