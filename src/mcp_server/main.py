"""MCP Server - FastAPI Application.

Connection-oriented transport for the dispatcher: one JSON-RPC request
per POST. Also serves the OAuth discovery documents and, when enabled,
the OAuth proxy routes.
"""

from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from shared.config import Settings, get_settings
from shared.logging import get_logger, setup_logging
from mcp_auth.authenticator import BearerAuthenticator
from mcp_auth.client_store import ClientStore, FileClientStore, InMemoryClientStore
from mcp_auth.discovery import (
    AUTHORIZATION_SERVER_PATH,
    PROTECTED_RESOURCE_PATH,
    authorization_server_metadata,
    protected_resource_metadata,
    resource_metadata_url,
)
from mcp_auth.providers import create_token_verifiers
from mcp_auth.proxy import OAuthProxy, OAuthProxyOptions
from mcp_server.audit import AuditMiddleware
from mcp_server.builder import McpServer, ServerBuilder
from mcp_server.middleware import LoggingMiddleware
from mcp_server.oauth_routes import create_oauth_router

from domains import load_all_domains

logger = get_logger(__name__)


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    name: str
    version: str
    capabilities: dict[str, int]


def build_server(settings: Settings) -> McpServer:
    """Register every domain and build the server."""
    builder = ServerBuilder(
        name=settings.server.name,
        version=settings.server.version,
        icon=settings.server.icon
    )
    builder.add_middleware(LoggingMiddleware())
    if settings.server.enable_audit:
        builder.with_audit(AuditMiddleware(log_path=settings.server.audit_log_path))

    load_all_domains(builder)
    return builder.build()


def build_oauth_proxy(settings: Settings) -> Optional[OAuthProxy]:
    """Create the OAuth proxy when enabled in settings."""
    proxy_settings = settings.oauth_proxy
    if not proxy_settings.enabled:
        return None

    options = OAuthProxyOptions.from_settings(proxy_settings, settings.server.base_url)
    store: ClientStore
    if proxy_settings.client_store_path:
        store = FileClientStore(proxy_settings.client_store_path)
    else:
        store = InMemoryClientStore()
    return OAuthProxy(options, client_store=store, timeout=settings.auth.timeout_seconds)


def _challenge(base_url: str) -> JSONResponse:
    return JSONResponse(
        {"error": "invalid_token", "error_description": "Authentication required"},
        status_code=status.HTTP_401_UNAUTHORIZED,
        headers={"WWW-Authenticate": f'Bearer resource_metadata="{resource_metadata_url(base_url)}"'},
    )


def create_app(
    settings: Optional[Settings] = None,
    server: Optional[McpServer] = None,
    authenticator: Optional[BearerAuthenticator] = None,
    oauth_proxy: Optional[OAuthProxy] = None
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        settings: Application settings, defaults to ``get_settings()``
        server: Built MCP server, defaults to all registered domains
        authenticator: Bearer authenticator, defaults to configured providers
        oauth_proxy: OAuth proxy, defaults to the configured one (if enabled)

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()
    server = server or build_server(settings)
    authenticator = authenticator or BearerAuthenticator(create_token_verifiers(settings.auth))
    if oauth_proxy is None:
        oauth_proxy = build_oauth_proxy(settings)

    base_url = settings.server.base_url.rstrip("/")
    mcp_path = settings.server.mcp_path

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        setup_logging(settings.log_level, json_output=settings.environment == "production")
        logger.info("Starting MCP Server", mcp_path=mcp_path, auth_enabled=authenticator.enabled)
        await server.start()

        yield

        logger.info("Shutting down MCP Server")
        await server.stop(settings.server.shutdown_grace_seconds)

    app = FastAPI(
        title="MCP Server",
        description="Model Context Protocol server",
        version=settings.server.version,
        lifespan=lifespan
    )
    app.state.settings = settings
    app.state.server = server
    app.state.authenticator = authenticator
    app.state.oauth_proxy = oauth_proxy

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.server.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["WWW-Authenticate"],
    )

    @app.post(mcp_path, tags=["MCP"])
    async def mcp_endpoint(request: Request) -> Response:
        """
        JSON-RPC endpoint.

        Always answers 200 with a response envelope, except when
        authentication is required and no valid bearer token is present.
        """
        identity = await authenticator.authenticate(request.headers.get("authorization"))
        if identity is None and settings.server.require_auth:
            return _challenge(base_url)

        body = await request.body()
        response = await server.dispatcher.dispatch_raw(body, identity=identity)
        return JSONResponse(response.to_dict())

    @app.get("/health", response_model=HealthResponse, tags=["System"])
    async def health_check():
        """Health check endpoint."""
        return HealthResponse(
            status="healthy",
            name=server.info.name,
            version=server.info.version,
            capabilities=server.registry.counts()
        )

    def _authorization_servers() -> list[str]:
        if oauth_proxy is not None:
            return [oauth_proxy.options.issuer]
        if settings.auth.issuer:
            return [settings.auth.issuer.rstrip("/")]
        return [base_url]

    @app.get(PROTECTED_RESOURCE_PATH, tags=["Discovery"])
    @app.get(f"{mcp_path}/.well-known/protected-resource", tags=["Discovery"], include_in_schema=False)
    async def protected_resource() -> dict[str, Any]:
        """OAuth 2.0 Protected Resource Metadata (RFC 9728)."""
        return protected_resource_metadata(
            base_url,
            mcp_path,
            scopes=authenticator.required_scopes,
            authorization_servers=_authorization_servers()
        )

    if oauth_proxy is not None:
        @app.get(AUTHORIZATION_SERVER_PATH, tags=["Discovery"])
        async def authorization_server() -> dict[str, Any]:
            """OAuth 2.0 Authorization Server Metadata (RFC 8414)."""
            return authorization_server_metadata(
                base_url,
                scopes=authenticator.required_scopes,
                issuer=oauth_proxy.options.issuer,
                revocation_enabled=bool(oauth_proxy.options.upstream_revocation_endpoint)
            )

        app.include_router(create_oauth_router(oauth_proxy))

    return app


def main():
    """Run the MCP Server."""
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "mcp_server.main:create_app",
        factory=True,
        host=settings.server.host,
        port=settings.server.port,
        reload=settings.environment == "development"
    )


if __name__ == "__main__":
    main()
