"""Bearer authentication across several identity providers."""

from typing import Optional

from shared.logging import get_logger
from shared.models import AccessToken
from mcp_auth.verifiers import TokenVerifier

logger = get_logger(__name__)


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Return the credentials of an ``Authorization: Bearer`` header value."""
    if not authorization:
        return None
    scheme, _, credentials = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not credentials.strip():
        return None
    return credentials.strip()


class BearerAuthenticator:
    """
    Tries each configured verifier in order; the first success wins.

    An invalid or missing token yields no identity rather than an error,
    leaving the decision to the authorization gate.
    """

    def __init__(self, verifiers: Optional[list[TokenVerifier]] = None) -> None:
        self.verifiers = list(verifiers or [])

    @property
    def enabled(self) -> bool:
        return bool(self.verifiers)

    @property
    def required_scopes(self) -> list[str]:
        """Required scopes of every verifier, de-duplicated in order."""
        scopes: list[str] = []
        for verifier in self.verifiers:
            for scope in verifier.required_scopes:
                if scope not in scopes:
                    scopes.append(scope)
        return scopes

    async def authenticate(self, authorization: Optional[str]) -> Optional[AccessToken]:
        """
        Resolve an ``Authorization`` header to an identity.

        Returns:
            AccessToken from the first verifier accepting the token, or None
        """
        token = extract_bearer_token(authorization)
        if token is None:
            return None

        for verifier in self.verifiers:
            access_token = await verifier.verify(token)
            if access_token is not None:
                logger.debug(
                    "Bearer token accepted",
                    scheme=access_token.scheme,
                    client_id=access_token.client_id
                )
                return access_token

        logger.info("Bearer token rejected", verifiers=len(self.verifiers))
        return None
