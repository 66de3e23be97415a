"""Identity provider presets.

Each preset configures one of the generic verifiers for a well-known
provider, and ``create_token_verifiers`` builds the configured list from
settings.
"""

import time
from typing import Any, Optional

import httpx

from shared.config import AuthSettings
from shared.errors import UpstreamVerificationError
from shared.logging import get_logger
from shared.models import AccessToken
from mcp_auth.verifiers import (
    IntrospectionTokenVerifier,
    JWKSCache,
    JWTVerifier,
    TokenVerifier,
    UserInfoTokenVerifier,
    normalize_claims,
    parse_scopes,
)

logger = get_logger(__name__)

GITHUB_USER_URL = "https://api.github.com/user"
GOOGLE_TOKENINFO_URL = "https://www.googleapis.com/oauth2/v1/tokeninfo"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"


def _https_base(domain: str) -> str:
    domain = domain.rstrip("/")
    if domain.startswith(("http://", "https://")):
        return domain
    return f"https://{domain}"


class GitHubTokenVerifier(UserInfoTokenVerifier):
    """GitHub OAuth app tokens, checked against the ``/user`` API."""

    scheme = "github"

    def __init__(self, required_scopes: Optional[list[str]] = None, **kwargs: Any) -> None:
        super().__init__(
            GITHUB_USER_URL,
            scope_header="X-OAuth-Scopes",
            default_scopes=["user"],
            required_scopes=required_scopes,
            **kwargs
        )

    def _headers(self, token: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "User-Agent": "mcp-host",
        }

    def _claims(self, body: dict[str, Any]) -> dict[str, Any]:
        return normalize_claims({
            "sub": str(body.get("id", "")),
            "login": body.get("login"),
            "name": body.get("name"),
            "email": body.get("email"),
            "avatar_url": body.get("avatar_url"),
        })


class GoogleTokenVerifier(TokenVerifier):
    """
    Google access tokens.

    The tokeninfo endpoint gives scopes, audience and lifetime; the
    userinfo endpoint adds profile claims when the token allows it.
    """

    scheme = "google"

    def __init__(
        self,
        client_id: Optional[str] = None,
        required_scopes: Optional[list[str]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0
    ) -> None:
        super().__init__(required_scopes, http_client, timeout)
        self.client_id = client_id

    async def _verify(self, token: str) -> Optional[AccessToken]:
        try:
            async with self._client() as client:
                info = await client.get(GOOGLE_TOKENINFO_URL, params={"access_token": token})
                if info.status_code != 200:
                    if info.status_code >= 500:
                        raise UpstreamVerificationError(f"Tokeninfo returned {info.status_code}")
                    logger.debug("Google rejected token", status=info.status_code)
                    return None

                token_info = info.json()
                audience = token_info.get("audience") or token_info.get("aud") or token_info.get("issued_to")
                if self.client_id and audience != self.client_id:
                    logger.warning("Google token issued to another client", audience=audience)
                    return None

                profile: dict[str, Any] = {}
                user = await client.get(
                    GOOGLE_USERINFO_URL,
                    headers={"Authorization": f"Bearer {token}"},
                )
                if user.status_code == 200:
                    profile = user.json()
                else:
                    logger.debug("Google userinfo unavailable", status=user.status_code)
        except httpx.HTTPError as e:
            raise UpstreamVerificationError(f"Google verification failed: {e}") from e

        expires_at = None
        if token_info.get("expires_in") is not None:
            expires_at = int(time.time()) + int(token_info["expires_in"])

        claims = {
            "sub": profile.get("id") or token_info.get("user_id") or token_info.get("sub"),
            "email": profile.get("email") or token_info.get("email"),
            "email_verified": profile.get("verified_email", token_info.get("verified_email")),
            "name": profile.get("name"),
            "given_name": profile.get("given_name"),
            "family_name": profile.get("family_name"),
            "picture": profile.get("picture"),
            "aud": audience,
        }
        claims = {k: v for k, v in claims.items() if v is not None}

        return AccessToken(
            token=token,
            client_id=str(claims.get("sub") or audience or "unknown"),
            scopes=parse_scopes(token_info.get("scope")),
            expires_at=expires_at,
            claims=claims,
        )


class Auth0Verifier(JWTVerifier):
    """Auth0 tenant. Issuer is the tenant URL with a trailing slash."""

    scheme = "auth0"

    def __init__(self, domain: str, audience: Optional[str] = None, **kwargs: Any) -> None:
        base = _https_base(domain)
        super().__init__(
            jwks_uri=f"{base}/.well-known/jwks.json",
            issuer=f"{base}/",
            audience=audience,
            **kwargs
        )


class AzureAdVerifier(JWTVerifier):
    """Microsoft Entra ID (Azure AD) v2.0 tokens."""

    scheme = "azure_ad"

    def __init__(self, tenant_id: str, client_id: Optional[str] = None, **kwargs: Any) -> None:
        authority = f"https://login.microsoftonline.com/{tenant_id}"
        super().__init__(
            jwks_uri=f"{authority}/discovery/v2.0/keys",
            issuer=f"{authority}/v2.0",
            audience=client_id,
            **kwargs
        )


class CognitoVerifier(JWTVerifier):
    """
    AWS Cognito user pool tokens.

    Cognito access tokens carry ``client_id`` instead of ``aud``, so the
    app client is checked against either claim.
    """

    scheme = "cognito"

    def __init__(
        self,
        region: str,
        user_pool_id: str,
        client_id: Optional[str] = None,
        required_scopes: Optional[list[str]] = None,
        **kwargs: Any
    ) -> None:
        issuer = f"https://cognito-idp.{region}.amazonaws.com/{user_pool_id}"
        super().__init__(
            jwks_uri=f"{issuer}/.well-known/jwks.json",
            issuer=issuer,
            required_scopes=required_scopes if required_scopes is not None else ["openid"],
            **kwargs
        )
        self.client_id = client_id

    async def _verify(self, token: str) -> Optional[AccessToken]:
        access_token = await super()._verify(token)
        if access_token is None or not self.client_id:
            return access_token

        issued_to = access_token.claims.get("client_id") or access_token.claims.get("aud")
        if issued_to != self.client_id:
            logger.warning("Cognito token issued to another client", client_id=issued_to)
            return None
        return access_token


class OktaVerifier(JWTVerifier):
    """Okta default authorization server, verified locally."""

    scheme = "okta"

    def __init__(self, domain: str, audience: Optional[str] = "api://default", **kwargs: Any) -> None:
        issuer = f"{_https_base(domain)}/oauth2/default"
        super().__init__(
            jwks_uri=f"{issuer}/v1/keys",
            issuer=issuer,
            audience=audience,
            **kwargs
        )


class OktaIntrospectionVerifier(IntrospectionTokenVerifier):
    """Okta default authorization server, verified by introspection."""

    scheme = "okta"

    def __init__(self, domain: str, client_id: str, client_secret: str, **kwargs: Any) -> None:
        super().__init__(
            introspection_url=f"{_https_base(domain)}/oauth2/default/v1/introspect",
            client_id=client_id,
            client_secret=client_secret,
            **kwargs
        )


def _require(settings: AuthSettings, provider: str, *fields: str) -> None:
    missing = [f for f in fields if not getattr(settings, f)]
    if missing:
        raise ValueError(
            f"Auth provider '{provider}' requires settings: {', '.join(missing)}"
        )


def create_token_verifiers(
    settings: AuthSettings,
    http_client: Optional[httpx.AsyncClient] = None,
    jwks_cache: Optional[JWKSCache] = None
) -> list[TokenVerifier]:
    """
    Build the verifiers named in ``settings.providers``, in order.

    Raises:
        ValueError: If a provider is unknown or misconfigured
    """
    jwks_cache = jwks_cache or JWKSCache(
        ttl_seconds=settings.jwks_cache_ttl_seconds,
        http_client=http_client,
        timeout=settings.timeout_seconds,
    )
    common: dict[str, Any] = {
        "required_scopes": settings.required_scopes,
        "http_client": http_client,
        "timeout": settings.timeout_seconds,
    }
    verifiers: list[TokenVerifier] = []

    for provider in settings.providers:
        name = provider.lower()

        if name == "jwt":
            _require(settings, name, "jwks_uri", "issuer")
            verifiers.append(JWTVerifier(
                jwks_uri=settings.jwks_uri,
                issuer=settings.issuer,
                audience=settings.audience,
                algorithms=settings.algorithms,
                jwks_cache=jwks_cache,
                **common
            ))
        elif name == "introspection":
            _require(settings, name, "introspection_url", "introspection_client_id",
                     "introspection_client_secret")
            verifiers.append(IntrospectionTokenVerifier(
                introspection_url=settings.introspection_url,
                client_id=settings.introspection_client_id,
                client_secret=settings.introspection_client_secret,
                **common
            ))
        elif name == "github":
            verifiers.append(GitHubTokenVerifier(**common))
        elif name == "google":
            verifiers.append(GoogleTokenVerifier(client_id=settings.google_client_id, **common))
        elif name == "auth0":
            _require(settings, name, "auth0_domain")
            verifiers.append(Auth0Verifier(
                settings.auth0_domain, audience=settings.auth0_audience,
                jwks_cache=jwks_cache, **common
            ))
        elif name == "azure_ad":
            _require(settings, name, "azure_tenant_id")
            verifiers.append(AzureAdVerifier(
                settings.azure_tenant_id, client_id=settings.azure_client_id,
                jwks_cache=jwks_cache, **common
            ))
        elif name == "cognito":
            _require(settings, name, "cognito_region", "cognito_user_pool_id")
            cognito_common = dict(common)
            if not settings.required_scopes:
                cognito_common.pop("required_scopes")
            verifiers.append(CognitoVerifier(
                settings.cognito_region, settings.cognito_user_pool_id,
                client_id=settings.cognito_client_id, jwks_cache=jwks_cache, **cognito_common
            ))
        elif name == "okta":
            _require(settings, name, "okta_domain")
            if settings.okta_use_introspection:
                _require(settings, name, "okta_client_id", "okta_client_secret")
                verifiers.append(OktaIntrospectionVerifier(
                    settings.okta_domain, settings.okta_client_id, settings.okta_client_secret,
                    **common
                ))
            else:
                verifiers.append(OktaVerifier(
                    settings.okta_domain, audience=settings.okta_audience or "api://default",
                    jwks_cache=jwks_cache, **common
                ))
        else:
            raise ValueError(f"Unknown auth provider '{provider}'")

        logger.info("Token verifier configured", provider=name)

    return verifiers
