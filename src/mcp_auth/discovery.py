"""OAuth discovery documents.

Authorization server metadata (RFC 8414) and protected resource
metadata (RFC 9728). Advertised scopes always mirror the active
verifiers' required scopes.
"""

from typing import Any, Optional

AUTHORIZATION_SERVER_PATH = "/.well-known/oauth-authorization-server"
PROTECTED_RESOURCE_PATH = "/.well-known/oauth-protected-resource"

GRANT_TYPES = ["authorization_code", "refresh_token"]
AUTH_METHODS = ["client_secret_post", "client_secret_basic", "none"]


def authorization_server_metadata(
    base_url: str,
    scopes: list[str],
    issuer: Optional[str] = None,
    registration_enabled: bool = True,
    revocation_enabled: bool = True
) -> dict[str, Any]:
    """
    Build the authorization server metadata document.

    Args:
        base_url: Public base URL of this server
        scopes: Required scopes of the active verifier(s)
        issuer: Issuer identifier, defaults to ``base_url``
        registration_enabled: Advertise the registration endpoint
        revocation_enabled: Advertise the revocation endpoint
    """
    base = base_url.rstrip("/")
    metadata: dict[str, Any] = {
        "issuer": (issuer or base).rstrip("/"),
        "authorization_endpoint": f"{base}/oauth/authorize",
        "token_endpoint": f"{base}/oauth/token",
        "scopes_supported": list(scopes),
        "response_types_supported": ["code"],
        "grant_types_supported": list(GRANT_TYPES),
        "token_endpoint_auth_methods_supported": list(AUTH_METHODS),
        "code_challenge_methods_supported": ["S256"],
    }
    if registration_enabled:
        metadata["registration_endpoint"] = f"{base}/oauth/register"
    if revocation_enabled:
        metadata["revocation_endpoint"] = f"{base}/oauth/revoke"
    return metadata


def protected_resource_metadata(
    base_url: str,
    mcp_path: str,
    scopes: list[str],
    authorization_servers: Optional[list[str]] = None
) -> dict[str, Any]:
    """
    Build the protected resource metadata document for the MCP endpoint.

    Args:
        base_url: Public base URL of this server
        mcp_path: Path of the JSON-RPC endpoint
        scopes: Required scopes of the active verifier(s)
        authorization_servers: Issuers trusted for this resource
    """
    base = base_url.rstrip("/")
    return {
        "resource": f"{base}{mcp_path}",
        "authorization_servers": list(authorization_servers or [base]),
        "scopes_supported": list(scopes),
        "bearer_methods_supported": ["header"],
        "access_methods": [
            {
                "method": "POST",
                "path": mcp_path,
                "bearer_token": True,
                "bearer_token_location": "header",
            }
        ],
    }


def resource_metadata_url(base_url: str) -> str:
    """URL advertised in ``WWW-Authenticate`` challenges."""
    return f"{base_url.rstrip('/')}{PROTECTED_RESOURCE_PATH}"
