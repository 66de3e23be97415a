"""Bearer token verifiers.

A verifier turns a raw token string into an ``AccessToken`` or ``None``.
``verify`` never raises: network failures, malformed tokens and unknown
signing keys are logged server-side and reported as an invalid token so
provider diagnostics never reach the caller.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import httpx
from jose import ExpiredSignatureError, JWTError, jwt
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from shared.errors import UpstreamVerificationError
from shared.logging import get_logger
from shared.models import AccessToken

logger = get_logger(__name__)

_XMLSOAP = "http://schemas.xmlsoap.org/ws/2005/05/identity/claims"

# Canonical claim name -> alternative spellings seen across providers
CLAIM_ALIASES: dict[str, tuple[str, ...]] = {
    "sub": (f"{_XMLSOAP}/nameidentifier", "oid", "user_id"),
    "email": (f"{_XMLSOAP}/emailaddress", "emails", "mail"),
    "name": (f"{_XMLSOAP}/name", "displayName", "display_name"),
    "given_name": (f"{_XMLSOAP}/givenname", "givenName", "first_name"),
    "family_name": (f"{_XMLSOAP}/surname", "familyName", "last_name"),
}

SCOPE_CLAIMS = ("scope", "scp", "scopes")


def normalize_claims(claims: dict[str, Any]) -> dict[str, Any]:
    """
    Copy claims, filling canonical names from known aliases.

    Aliases are kept; a canonical claim already present is never
    overwritten.
    """
    normalized = dict(claims)
    for canonical, aliases in CLAIM_ALIASES.items():
        if normalized.get(canonical) not in (None, ""):
            continue
        for alias in aliases:
            value = claims.get(alias)
            if isinstance(value, list):
                value = value[0] if value else None
            if value not in (None, ""):
                normalized[canonical] = value
                break
    return normalized


def parse_scopes(value: Any) -> list[str]:
    """Scopes from a space/comma separated string or a list."""
    if value is None:
        return []
    if isinstance(value, str):
        return value.replace(",", " ").split()
    if isinstance(value, (list, tuple, set)):
        return [str(scope).strip() for scope in value if str(scope).strip()]
    return []


def _int_or_none(value: Any) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


class TokenVerifier(ABC):
    """
    Base class for token verifiers.

    Subclasses implement ``_verify``; the public ``verify`` wraps it with
    fault containment plus the expiry and required-scope checks shared by
    every verifier.
    """

    scheme: str = "bearer"

    def __init__(
        self,
        required_scopes: Optional[list[str]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0
    ) -> None:
        self.required_scopes: list[str] = list(required_scopes or [])
        self.timeout = timeout
        self._http_client = http_client

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        """Yield the shared HTTP client, or a short-lived one."""
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            yield client

    async def verify(self, token: str) -> Optional[AccessToken]:
        """
        Verify a bearer token.

        Args:
            token: Raw token string

        Returns:
            AccessToken if the token is valid, None otherwise
        """
        if not token:
            return None

        try:
            access_token = await self._verify(token)
        except UpstreamVerificationError as e:
            logger.warning("Upstream verification failed", scheme=self.scheme, error=str(e))
            return None
        except Exception as e:
            logger.warning(
                "Token verification failed",
                scheme=self.scheme,
                error_type=type(e).__name__,
                error=str(e)
            )
            return None

        if access_token is None:
            return None

        if access_token.is_expired:
            logger.info("Token expired", scheme=self.scheme, client_id=access_token.client_id)
            return None

        if not access_token.has_required_scopes(self.required_scopes):
            logger.warning(
                "Token missing required scopes",
                scheme=self.scheme,
                client_id=access_token.client_id,
                required_scopes=self.required_scopes,
                granted_scopes=access_token.scopes
            )
            return None

        return access_token.model_copy(update={"scheme": self.scheme})

    @abstractmethod
    async def _verify(self, token: str) -> Optional[AccessToken]:
        """Provider-specific verification. May raise; ``verify`` contains it."""
        pass


class _KeySet:
    def __init__(self, keys: dict[Optional[str], dict[str, Any]]) -> None:
        self.keys = keys
        self.fetched_at = time.monotonic()

    def find(self, kid: Optional[str]) -> Optional[dict[str, Any]]:
        if kid is None and len(self.keys) == 1:
            return next(iter(self.keys.values()))
        return self.keys.get(kid)


class JWKSCache:
    """
    Published signing keys, cached per issuer.

    Reads are lock-free. A refresh, on first use, on TTL expiry or on an
    unknown key id, runs under the issuer's lock so concurrent callers
    share one fetch.
    """

    def __init__(
        self,
        ttl_seconds: int = 3600,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.timeout = timeout
        self._http_client = http_client
        self._key_sets: dict[str, _KeySet] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _stale(self, key_set: Optional[_KeySet]) -> bool:
        if key_set is None:
            return True
        return time.monotonic() - key_set.fetched_at > self.ttl_seconds

    async def get_key(self, issuer: str, jwks_uri: str, kid: Optional[str]) -> Optional[dict[str, Any]]:
        """
        Find the signing key ``kid`` for ``issuer``.

        An unknown key id triggers at most one refresh of the issuer's key
        set before giving up.

        Raises:
            UpstreamVerificationError: If the key set cannot be fetched
        """
        seen = self._key_sets.get(issuer)
        if not self._stale(seen):
            key = seen.find(kid)
            if key is not None:
                return key

        lock = self._locks.setdefault(issuer, asyncio.Lock())
        async with lock:
            current = self._key_sets.get(issuer)
            # Another caller may have refreshed while we waited
            if current is seen or self._stale(current):
                current = await self._refresh(issuer, jwks_uri)
            return current.find(kid)

    async def _refresh(self, issuer: str, jwks_uri: str) -> _KeySet:
        try:
            document = await self._fetch(jwks_uri)
        except (httpx.HTTPError, ValueError) as e:
            raise UpstreamVerificationError(f"JWKS fetch failed for {issuer}: {e}") from e

        keys = {key.get("kid"): key for key in document.get("keys", []) if isinstance(key, dict)}
        key_set = _KeySet(keys)
        self._key_sets[issuer] = key_set
        logger.info("JWKS refreshed", issuer=issuer, key_count=len(keys))
        return key_set

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True
    )
    async def _fetch(self, jwks_uri: str) -> dict[str, Any]:
        if self._http_client is not None:
            response = await self._http_client.get(jwks_uri)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(jwks_uri)
        response.raise_for_status()
        return response.json()

    def clear(self, issuer: Optional[str] = None) -> None:
        if issuer is None:
            self._key_sets.clear()
        else:
            self._key_sets.pop(issuer, None)


class JWTVerifier(TokenVerifier):
    """Verifies signed JWTs against an issuer's published key set."""

    scheme = "jwt"

    def __init__(
        self,
        jwks_uri: str,
        issuer: str,
        audience: Optional[str] = None,
        algorithms: Optional[list[str]] = None,
        required_scopes: Optional[list[str]] = None,
        jwks_cache: Optional[JWKSCache] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
        leeway: int = 0
    ) -> None:
        super().__init__(required_scopes, http_client, timeout)
        self.jwks_uri = jwks_uri
        self.issuer = issuer
        self.audience = audience
        self.algorithms = algorithms or ["RS256"]
        self.leeway = leeway
        self.jwks_cache = jwks_cache or JWKSCache(http_client=http_client, timeout=timeout)

    async def _verify(self, token: str) -> Optional[AccessToken]:
        try:
            header = jwt.get_unverified_header(token)
        except JWTError as e:
            logger.debug("Malformed JWT", error=str(e))
            return None

        if header.get("alg") not in self.algorithms:
            logger.warning("JWT algorithm not allowed", alg=header.get("alg"))
            return None

        key = await self.jwks_cache.get_key(self.issuer, self.jwks_uri, header.get("kid"))
        if key is None:
            logger.warning("Unknown JWT signing key", issuer=self.issuer, kid=header.get("kid"))
            return None

        try:
            claims = jwt.decode(
                token,
                key,
                algorithms=self.algorithms,
                audience=self.audience,
                issuer=self.issuer,
                options={
                    "verify_aud": self.audience is not None,
                    "verify_at_hash": False,
                    "leeway": self.leeway,
                },
            )
        except ExpiredSignatureError:
            logger.info("JWT expired", issuer=self.issuer)
            return None
        except JWTError as e:
            logger.warning("JWT rejected", issuer=self.issuer, error=str(e))
            return None

        return self._access_token(token, claims)

    def _access_token(self, token: str, claims: dict[str, Any]) -> AccessToken:
        scopes: list[str] = []
        for claim in SCOPE_CLAIMS:
            if claims.get(claim):
                scopes = parse_scopes(claims[claim])
                break

        audience = claims.get("aud")
        if isinstance(audience, list):
            audience = audience[0] if audience else None

        client_id = (
            claims.get("sub")
            or claims.get("client_id")
            or claims.get("azp")
            or audience
            or "unknown"
        )

        return AccessToken(
            token=token,
            client_id=str(client_id),
            scopes=scopes,
            expires_at=_int_or_none(claims.get("exp")),
            claims=normalize_claims(claims),
        )


class IntrospectionTokenVerifier(TokenVerifier):
    """Verifies opaque tokens with an RFC 7662 introspection endpoint."""

    scheme = "introspection"

    def __init__(
        self,
        introspection_url: str,
        client_id: str,
        client_secret: str,
        required_scopes: Optional[list[str]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0
    ) -> None:
        super().__init__(required_scopes, http_client, timeout)
        self.introspection_url = introspection_url
        self.client_id = client_id
        self.client_secret = client_secret

    async def _verify(self, token: str) -> Optional[AccessToken]:
        try:
            async with self._client() as client:
                response = await client.post(
                    self.introspection_url,
                    data={"token": token, "token_type_hint": "access_token"},
                    auth=(self.client_id, self.client_secret),
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as e:
            raise UpstreamVerificationError(f"Introspection request failed: {e}") from e

        if response.status_code >= 500:
            raise UpstreamVerificationError(f"Introspection returned {response.status_code}")
        if response.status_code != 200:
            logger.warning("Introspection rejected request", status=response.status_code)
            return None

        body = response.json()
        if not body.get("active"):
            logger.debug("Token inactive")
            return None

        return AccessToken(
            token=token,
            client_id=str(body.get("client_id") or body.get("sub") or "unknown"),
            scopes=parse_scopes(body.get("scope")),
            expires_at=_int_or_none(body.get("exp")),
            claims=normalize_claims(body),
        )


class UserInfoTokenVerifier(TokenVerifier):
    """
    Verifies opaque tokens by asking the provider who the token belongs to.

    Scopes come from ``scope_header`` on the response when the provider
    sends it, else ``default_scopes`` are assumed.
    """

    scheme = "userinfo"

    def __init__(
        self,
        userinfo_url: str,
        scope_header: Optional[str] = None,
        default_scopes: Optional[list[str]] = None,
        required_scopes: Optional[list[str]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0
    ) -> None:
        super().__init__(required_scopes, http_client, timeout)
        self.userinfo_url = userinfo_url
        self.scope_header = scope_header
        self.default_scopes = list(default_scopes or [])

    def _headers(self, token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}", "Accept": "application/json"}

    def _claims(self, body: dict[str, Any]) -> dict[str, Any]:
        return normalize_claims(body)

    async def _verify(self, token: str) -> Optional[AccessToken]:
        try:
            async with self._client() as client:
                response = await client.get(self.userinfo_url, headers=self._headers(token))
        except httpx.HTTPError as e:
            raise UpstreamVerificationError(f"User lookup failed: {e}") from e

        if response.status_code in (400, 401, 403, 404):
            logger.debug("Provider rejected token", scheme=self.scheme, status=response.status_code)
            return None
        if response.status_code != 200:
            raise UpstreamVerificationError(f"User lookup returned {response.status_code}")

        scopes = self.default_scopes
        if self.scope_header and self.scope_header in response.headers:
            scopes = parse_scopes(response.headers[self.scope_header])

        claims = self._claims(response.json())

        return AccessToken(
            token=token,
            client_id=str(claims.get("sub") or "unknown"),
            scopes=scopes,
            expires_at=None,
            claims=claims,
        )
