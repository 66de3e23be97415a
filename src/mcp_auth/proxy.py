"""OAuth proxy with Dynamic Client Registration.

Lets MCP clients self-register against providers that only support one
pre-registered application. Each local client id/secret maps onto the
single upstream application. The proxy manages local registrations and
relays authorization, token and revocation requests upstream; it never
issues authorization codes or tokens of its own.
"""

import fnmatch
import secrets
import uuid
from typing import Any, Optional
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel, Field

from shared.config import OAuthProxySettings
from shared.logging import get_logger
from shared.models import ClientRegistration, ClientRegistrationRequest
from mcp_auth.client_store import ClientStore, InMemoryClientStore

logger = get_logger(__name__)

SUPPORTED_GRANT_TYPES = ("authorization_code", "refresh_token")
SUPPORTED_AUTH_METHODS = ("client_secret_post", "client_secret_basic", "none")


class OAuthError(Exception):
    """OAuth error response (RFC 6749 section 5.2 shape)."""

    def __init__(self, error: str, description: str = "", status_code: int = 400) -> None:
        self.error = error
        self.description = description
        self.status_code = status_code
        super().__init__(f"{error}: {description}" if description else error)

    def to_dict(self) -> dict[str, str]:
        body = {"error": self.error}
        if self.description:
            body["error_description"] = self.description
        return body


class OAuthProxyOptions(BaseModel):
    """Upstream application and local policy for the proxy."""
    upstream_authorization_endpoint: str
    upstream_token_endpoint: str
    upstream_revocation_endpoint: Optional[str] = None
    upstream_client_id: str
    upstream_client_secret: Optional[str] = None
    base_url: str
    issuer_url: Optional[str] = None
    allowed_client_redirect_uris: list[str] = Field(
        default_factory=list,
        description="Glob patterns (* and ?); empty allows any redirect URI"
    )
    valid_scopes: list[str] = Field(default_factory=list)
    forward_pkce: bool = True

    @property
    def issuer(self) -> str:
        return (self.issuer_url or self.base_url).rstrip("/")

    @classmethod
    def from_settings(cls, settings: OAuthProxySettings, base_url: str) -> "OAuthProxyOptions":
        missing = [
            name for name in (
                "upstream_authorization_endpoint",
                "upstream_token_endpoint",
                "upstream_client_id",
            )
            if not getattr(settings, name)
        ]
        if missing:
            raise ValueError(f"OAuth proxy requires settings: {', '.join(missing)}")

        return cls(
            upstream_authorization_endpoint=settings.upstream_authorization_endpoint,
            upstream_token_endpoint=settings.upstream_token_endpoint,
            upstream_revocation_endpoint=settings.upstream_revocation_endpoint,
            upstream_client_id=settings.upstream_client_id,
            upstream_client_secret=settings.upstream_client_secret,
            base_url=base_url,
            issuer_url=settings.issuer_url,
            allowed_client_redirect_uris=settings.allowed_client_redirect_uris,
            valid_scopes=settings.valid_scopes,
            forward_pkce=settings.forward_pkce,
        )


class OAuthProxy:
    """Dynamic Client Registration facade over one upstream application."""

    def __init__(
        self,
        options: OAuthProxyOptions,
        client_store: Optional[ClientStore] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0
    ) -> None:
        self.options = options
        self.client_store = client_store or InMemoryClientStore()
        self.timeout = timeout
        self._http_client = http_client

    def validate_redirect_uri(self, redirect_uri: str) -> bool:
        """
        Check a client redirect URI against the allowed patterns.

        Exact matches and case-insensitive globs both pass. With no
        patterns configured every URI is allowed.
        """
        patterns = self.options.allowed_client_redirect_uris
        if not patterns:
            return True
        for pattern in patterns:
            if redirect_uri == pattern:
                return True
            if fnmatch.fnmatchcase(redirect_uri.lower(), pattern.lower()):
                return True
        return False

    def _validate_scope(self, scope: Optional[str]) -> None:
        if not scope or not self.options.valid_scopes:
            return
        invalid = [s for s in scope.split() if s not in self.options.valid_scopes]
        if invalid:
            raise OAuthError("invalid_client_metadata", f"Unsupported scopes: {' '.join(invalid)}")

    async def register_client(self, request: ClientRegistrationRequest) -> ClientRegistration:
        """
        Register (or re-register) a client.

        A missing client id or secret is generated. Re-registering an
        existing client id requires its current secret; public clients
        cannot be re-registered.

        Raises:
            OAuthError: If the metadata is invalid
        """
        if not request.redirect_uris:
            raise OAuthError("invalid_redirect_uri", "At least one redirect URI is required")

        for uri in request.redirect_uris:
            if not self.validate_redirect_uri(uri):
                logger.warning("Redirect URI not allowed", redirect_uri=uri)
                raise OAuthError("invalid_redirect_uri", f"Redirect URI not allowed: {uri}")

        grant_types = request.grant_types or list(SUPPORTED_GRANT_TYPES)
        unsupported = [g for g in grant_types if g not in SUPPORTED_GRANT_TYPES]
        if unsupported:
            raise OAuthError("invalid_client_metadata", f"Unsupported grant types: {', '.join(unsupported)}")

        auth_method = request.token_endpoint_auth_method or "client_secret_post"
        if auth_method not in SUPPORTED_AUTH_METHODS:
            raise OAuthError("invalid_client_metadata", f"Unsupported auth method: {auth_method}")

        self._validate_scope(request.scope)

        client_id = request.client_id or uuid.uuid4().hex
        existing = await self.client_store.get(client_id) if request.client_id else None
        if existing is not None and not existing.client_secret:
            # Public clients have no credential to prove ownership with
            raise OAuthError("invalid_client", "Public clients cannot be re-registered", 401)
        if existing is not None:
            if not request.client_secret or not secrets.compare_digest(
                request.client_secret, existing.client_secret
            ):
                raise OAuthError("invalid_client", "Client credentials do not match", 401)

        client_secret = None
        if auth_method != "none":
            client_secret = request.client_secret or secrets.token_urlsafe(32)

        registration = ClientRegistration(
            client_id=client_id,
            client_secret=client_secret,
            redirect_uris=request.redirect_uris,
            grant_types=grant_types,
            response_types=request.response_types or ["code"],
            scope=request.scope or (" ".join(self.options.valid_scopes) or None),
            token_endpoint_auth_method=auth_method,
            client_name=request.client_name,
        )
        await self.client_store.store(client_id, registration)

        logger.info(
            "Client registered",
            client_id=client_id,
            client_name=request.client_name,
            updated=existing is not None
        )
        return registration

    async def get_client(self, client_id: str) -> Optional[ClientRegistration]:
        return await self.client_store.get(client_id)

    async def remove_client(self, client_id: str) -> None:
        await self.client_store.remove(client_id)
        logger.info("Client removed", client_id=client_id)

    async def authenticate_client(
        self,
        client_id: Optional[str],
        client_secret: Optional[str]
    ) -> ClientRegistration:
        """
        Check local client credentials.

        Raises:
            OAuthError: If the client is unknown or the secret is wrong
        """
        if not client_id:
            raise OAuthError("invalid_client", "Missing client_id", 401)

        client = await self.client_store.get(client_id)
        if client is None:
            raise OAuthError("invalid_client", "Unknown client", 401)

        if client.client_secret:
            if not client_secret or not secrets.compare_digest(client_secret, client.client_secret):
                logger.warning("Client authentication failed", client_id=client_id)
                raise OAuthError("invalid_client", "Client authentication failed", 401)

        return client

    async def authorization_redirect(
        self,
        client_id: str,
        redirect_uri: str,
        response_type: str = "code",
        state: Optional[str] = None,
        scope: Optional[str] = None,
        code_challenge: Optional[str] = None,
        code_challenge_method: Optional[str] = None
    ) -> str:
        """
        Build the upstream authorization URL for a local client.

        The upstream application's client id replaces the local one; the
        client's redirect URI, state and PKCE challenge pass through.

        Raises:
            OAuthError: If the request is invalid
        """
        client = await self.client_store.get(client_id)
        if client is None:
            raise OAuthError("invalid_client", "Unknown client")

        if redirect_uri not in client.redirect_uris:
            raise OAuthError("invalid_request", "Redirect URI not registered for this client")

        if response_type != "code":
            raise OAuthError("unsupported_response_type", "Only 'code' is supported")

        if not code_challenge:
            raise OAuthError("invalid_request", "PKCE code_challenge is required")
        if (code_challenge_method or "S256") != "S256":
            raise OAuthError("invalid_request", "Only the S256 code challenge method is supported")

        self._validate_scope(scope)

        params: dict[str, str] = {
            "response_type": "code",
            "client_id": self.options.upstream_client_id,
            "redirect_uri": redirect_uri,
        }
        requested_scope = scope or client.scope
        if requested_scope:
            params["scope"] = requested_scope
        if state:
            params["state"] = state
        if self.options.forward_pkce:
            params["code_challenge"] = code_challenge
            params["code_challenge_method"] = "S256"

        logger.info("Authorization forwarded upstream", client_id=client_id)
        return f"{self.options.upstream_authorization_endpoint}?{urlencode(params)}"

    def _upstream_form(self, form: dict[str, Any]) -> dict[str, Any]:
        upstream = {k: v for k, v in form.items() if k not in ("client_id", "client_secret")}
        upstream["client_id"] = self.options.upstream_client_id
        if self.options.upstream_client_secret:
            upstream["client_secret"] = self.options.upstream_client_secret
        return upstream

    async def _post_upstream(self, url: str, form: dict[str, Any]) -> httpx.Response:
        try:
            if self._http_client is not None:
                return await self._http_client.post(
                    url, data=form, headers={"Accept": "application/json"}
                )
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                return await client.post(url, data=form, headers={"Accept": "application/json"})
        except httpx.HTTPError as e:
            logger.error("Upstream OAuth request failed", url=url, error=str(e))
            raise OAuthError("temporarily_unavailable", "Upstream provider unavailable", 503) from e

    async def exchange_token(self, form: dict[str, Any]) -> tuple[int, dict[str, Any]]:
        """
        Relay a token request to the upstream token endpoint.

        Args:
            form: Token request form including local client credentials

        Returns:
            Tuple of (upstream status code, upstream JSON body)

        Raises:
            OAuthError: If the request fails local validation
        """
        grant_type = form.get("grant_type")
        if grant_type not in SUPPORTED_GRANT_TYPES:
            raise OAuthError("unsupported_grant_type", f"Unsupported grant type: {grant_type}")

        client = await self.authenticate_client(form.get("client_id"), form.get("client_secret"))

        if grant_type not in client.grant_types:
            raise OAuthError("unauthorized_client", f"Grant type not allowed: {grant_type}")

        if grant_type == "authorization_code":
            if not form.get("code"):
                raise OAuthError("invalid_request", "Missing code")
            if form.get("redirect_uri") and form["redirect_uri"] not in client.redirect_uris:
                raise OAuthError("invalid_grant", "Redirect URI mismatch")
        elif not form.get("refresh_token"):
            raise OAuthError("invalid_request", "Missing refresh_token")

        response = await self._post_upstream(self.options.upstream_token_endpoint, self._upstream_form(form))

        try:
            body = response.json()
        except ValueError:
            logger.error("Upstream token response was not JSON", status=response.status_code)
            raise OAuthError("server_error", "Invalid upstream response", 502)

        logger.info(
            "Token request relayed",
            client_id=client.client_id,
            grant_type=grant_type,
            status=response.status_code
        )
        return response.status_code, body

    async def revoke_token(self, form: dict[str, Any]) -> None:
        """
        Relay a revocation request upstream.

        RFC 7009 revocation succeeds even for unknown tokens, so upstream
        failures are logged rather than reported.
        """
        await self.authenticate_client(form.get("client_id"), form.get("client_secret"))

        if not form.get("token"):
            raise OAuthError("invalid_request", "Missing token")

        if not self.options.upstream_revocation_endpoint:
            logger.info("Revocation skipped (no upstream endpoint)")
            return

        response = await self._post_upstream(
            self.options.upstream_revocation_endpoint, self._upstream_form(form)
        )
        if response.status_code >= 400:
            logger.warning("Upstream revocation failed", status=response.status_code)
