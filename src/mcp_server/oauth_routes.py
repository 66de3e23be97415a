"""FastAPI routes for the OAuth proxy.

Dynamic client registration plus the authorize, token and revocation
endpoints that relay to the upstream provider.
"""

import base64
import binascii
from typing import Any, Optional
from urllib.parse import parse_qsl, unquote

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse, RedirectResponse, Response
from pydantic import ValidationError

from shared.logging import get_logger
from shared.models import ClientRegistrationRequest
from mcp_auth.proxy import OAuthError, OAuthProxy

logger = get_logger(__name__)

NO_STORE = {"Cache-Control": "no-store", "Pragma": "no-cache"}


def _error_response(error: OAuthError) -> JSONResponse:
    headers = dict(NO_STORE)
    if error.status_code == status.HTTP_401_UNAUTHORIZED:
        headers["WWW-Authenticate"] = 'Basic realm="oauth"'
    return JSONResponse(error.to_dict(), status_code=error.status_code, headers=headers)


def basic_credentials(authorization: Optional[str]) -> tuple[Optional[str], Optional[str]]:
    """Decode ``client_secret_basic`` credentials from an Authorization header."""
    if not authorization:
        return None, None
    scheme, _, encoded = authorization.partition(" ")
    if scheme.lower() != "basic" or not encoded:
        return None, None
    try:
        decoded = base64.b64decode(encoded.strip()).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        raise OAuthError("invalid_client", "Malformed basic credentials", 401)
    client_id, sep, client_secret = decoded.partition(":")
    if not sep:
        raise OAuthError("invalid_client", "Malformed basic credentials", 401)
    return unquote(client_id), unquote(client_secret)


async def read_form(request: Request) -> dict[str, Any]:
    """
    Parse an ``application/x-www-form-urlencoded`` body.

    Basic client credentials take precedence over form fields.
    """
    body = (await request.body()).decode("utf-8")
    form: dict[str, Any] = dict(parse_qsl(body, keep_blank_values=True))

    client_id, client_secret = basic_credentials(request.headers.get("authorization"))
    if client_id is not None:
        form["client_id"] = client_id
        form["client_secret"] = client_secret
    return form


def create_oauth_router(proxy: OAuthProxy) -> APIRouter:
    """
    Create the OAuth proxy router.

    Args:
        proxy: Configured OAuth proxy

    Returns:
        APIRouter with registration, authorize, token and revoke endpoints
    """
    router = APIRouter(prefix="/oauth", tags=["OAuth"])

    @router.post("/register")
    async def register(request: Request) -> Response:
        """Dynamic Client Registration (RFC 7591)."""
        try:
            payload = await request.json()
            registration_request = ClientRegistrationRequest.model_validate(payload)
        except (ValueError, ValidationError):
            return _error_response(OAuthError("invalid_client_metadata", "Malformed registration request"))

        try:
            registration = await proxy.register_client(registration_request)
        except OAuthError as e:
            return _error_response(e)

        return JSONResponse(
            registration.model_dump(exclude_none=True),
            status_code=status.HTTP_201_CREATED,
            headers=NO_STORE
        )

    @router.get("/register/{client_id}")
    async def read_registration(client_id: str, request: Request) -> Response:
        """Client configuration read (RFC 7592); requires the client's credentials."""
        _, secret = basic_credentials(request.headers.get("authorization"))
        try:
            client = await proxy.authenticate_client(client_id, secret)
        except OAuthError as e:
            return _error_response(e)
        return JSONResponse(client.model_dump(exclude_none=True), headers=NO_STORE)

    @router.delete("/register/{client_id}")
    async def delete_registration(client_id: str, request: Request) -> Response:
        _, secret = basic_credentials(request.headers.get("authorization"))
        try:
            await proxy.authenticate_client(client_id, secret)
        except OAuthError as e:
            return _error_response(e)
        await proxy.remove_client(client_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @router.get("/authorize")
    async def authorize(
        client_id: str,
        redirect_uri: str,
        response_type: str = "code",
        state: Optional[str] = None,
        scope: Optional[str] = None,
        code_challenge: Optional[str] = None,
        code_challenge_method: Optional[str] = None
    ) -> Response:
        """Redirect the user agent to the upstream authorization endpoint."""
        try:
            location = await proxy.authorization_redirect(
                client_id=client_id,
                redirect_uri=redirect_uri,
                response_type=response_type,
                state=state,
                scope=scope,
                code_challenge=code_challenge,
                code_challenge_method=code_challenge_method,
            )
        except OAuthError as e:
            return _error_response(e)
        return RedirectResponse(location, status_code=status.HTTP_302_FOUND)

    @router.post("/token")
    async def token(request: Request) -> Response:
        """Relay a token request to the upstream provider."""
        try:
            form = await read_form(request)
            status_code, body = await proxy.exchange_token(form)
        except OAuthError as e:
            return _error_response(e)
        return JSONResponse(body, status_code=status_code, headers=NO_STORE)

    @router.post("/revoke")
    async def revoke(request: Request) -> Response:
        """Token revocation (RFC 7009)."""
        try:
            form = await read_form(request)
            await proxy.revoke_token(form)
        except OAuthError as e:
            return _error_response(e)
        return Response(status_code=status.HTTP_200_OK)

    return router
