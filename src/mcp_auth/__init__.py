"""MCP Auth - Token verification, client registration and discovery.

Verifiers turn bearer tokens into identities for the MCP Server's
authorization gate. The OAuth proxy gives clients a uniform dynamic
registration endpoint in front of providers that lack one.
"""

from mcp_auth.authenticator import BearerAuthenticator, extract_bearer_token
from mcp_auth.client_store import ClientStore, FileClientStore, InMemoryClientStore
from mcp_auth.providers import (
    Auth0Verifier,
    AzureAdVerifier,
    CognitoVerifier,
    GitHubTokenVerifier,
    GoogleTokenVerifier,
    OktaVerifier,
    create_token_verifiers,
)
from mcp_auth.proxy import OAuthError, OAuthProxy, OAuthProxyOptions
from mcp_auth.verifiers import (
    IntrospectionTokenVerifier,
    JWKSCache,
    JWTVerifier,
    TokenVerifier,
    UserInfoTokenVerifier,
)

__all__ = [
    "BearerAuthenticator",
    "extract_bearer_token",
    "ClientStore",
    "FileClientStore",
    "InMemoryClientStore",
    "Auth0Verifier",
    "AzureAdVerifier",
    "CognitoVerifier",
    "GitHubTokenVerifier",
    "GoogleTokenVerifier",
    "OktaVerifier",
    "create_token_verifiers",
    "OAuthError",
    "OAuthProxy",
    "OAuthProxyOptions",
    "IntrospectionTokenVerifier",
    "JWKSCache",
    "JWTVerifier",
    "TokenVerifier",
    "UserInfoTokenVerifier",
]
