"""Core data models for the MCP host.

This module defines the capability tables' entries, identities and
authorization requirements, client registrations and audit records
shared across the server and auth packages.
"""

import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field


class CapabilityKind(str, Enum):
    """Kind of capability exposed by the registry."""
    TOOL = "tool"
    RESOURCE = "resource"
    PROMPT = "prompt"


class ParameterKind(str, Enum):
    """Declared kind of a handler parameter."""
    STRING = "string"
    INTEGER = "integer"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"
    ANY = "any"

    # Supplied by the dispatcher, never by the caller
    CANCELLATION = "cancellation"
    IDENTITY = "identity"
    CONTEXT = "context"

    @property
    def injected(self) -> bool:
        return self in INJECTED_KINDS


INJECTED_KINDS = frozenset({
    ParameterKind.CANCELLATION,
    ParameterKind.IDENTITY,
    ParameterKind.CONTEXT,
})


class ParameterDescriptor(BaseModel):
    """Definition of a single handler parameter."""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    kind: ParameterKind = ParameterKind.ANY
    description: str = ""
    required: bool = True
    default: Any = None
    enum: Optional[list[Any]] = None
    enum_type: Optional[type[Enum]] = None
    items: Optional[dict[str, Any]] = None


class AuthorizationRequirement(BaseModel):
    """
    Per-capability authorization requirement.

    Every facet that is set must pass. A requirement with no facets set
    still requires an authenticated caller.
    """
    model_config = ConfigDict(frozen=True)

    policy: Optional[str] = None
    roles: list[str] = Field(default_factory=list)
    schemes: list[str] = Field(default_factory=list)
    require_mfa: bool = False


class CapabilityEntry(BaseModel):
    """
    A registered tool, resource or prompt.

    Entries are immutable once registered. Names are matched
    case-insensitively by the registry.
    """
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    kind: CapabilityKind
    name: str
    handler: Callable[..., Any]
    parameters: list[ParameterDescriptor] = Field(default_factory=list)
    description: str = ""
    title: Optional[str] = None
    icon: Optional[str] = None
    input_schema: dict[str, Any] = Field(default_factory=dict)
    authorization: Optional[AuthorizationRequirement] = None

    # Resources only
    uri: Optional[str] = None
    mime_type: Optional[str] = None

    @property
    def key(self) -> str:
        """Case-insensitive lookup key."""
        return self.name.lower()


class AccessToken(BaseModel):
    """
    Verified identity produced by a token verifier.

    Created per verification call and never persisted. Expiry and scope
    checks are derived on demand.
    """
    token: str
    client_id: str
    scopes: list[str] = Field(default_factory=list)
    expires_at: Optional[int] = Field(
        default=None,
        description="Epoch seconds; None means the token never expires"
    )
    claims: dict[str, Any] = Field(default_factory=dict)
    scheme: Optional[str] = Field(
        default=None,
        description="Name of the verifier that accepted the token"
    )

    @property
    def is_expired(self) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= time.time()

    def has_required_scopes(self, required: list[str]) -> bool:
        """True if every required scope is granted, ignoring case."""
        granted = {s.lower() for s in self.scopes}
        return all(scope.lower() in granted for scope in required)

    def claim_values(self, name: str) -> list[Any]:
        """Return a claim as a list whether it was stored as scalar or list."""
        value = self.claims.get(name)
        if value is None:
            return []
        if isinstance(value, (list, tuple, set)):
            return list(value)
        return [value]

    @property
    def subject(self) -> str:
        return str(self.claims.get("sub") or self.client_id)


class ClientRegistration(BaseModel):
    """Locally issued OAuth client registration (RFC 7591 response shape)."""
    client_id: str
    client_secret: Optional[str] = None
    redirect_uris: list[str] = Field(default_factory=list)
    grant_types: list[str] = Field(
        default_factory=lambda: ["authorization_code", "refresh_token"]
    )
    response_types: list[str] = Field(default_factory=lambda: ["code"])
    scope: Optional[str] = None
    token_endpoint_auth_method: str = "client_secret_post"
    client_name: Optional[str] = None
    client_id_issued_at: int = Field(default_factory=lambda: int(time.time()))


class ClientRegistrationRequest(BaseModel):
    """Dynamic client registration request body."""
    redirect_uris: list[str] = Field(default_factory=list)
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    grant_types: Optional[list[str]] = None
    response_types: Optional[list[str]] = None
    scope: Optional[str] = None
    token_endpoint_auth_method: Optional[str] = None
    client_name: Optional[str] = None


class InvocationStatus(str, Enum):
    """Outcome of a capability invocation."""
    SUCCESS = "success"
    ERROR = "error"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    CANCELLED = "cancelled"


class AuditEntry(BaseModel):
    """
    Audit log entry for capability invocations.

    Captures caller, capability, arguments, timestamp and outcome.
    """
    id: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Caller
    subject: Optional[str] = None
    scheme: Optional[str] = None

    # Capability
    capability: str
    kind: CapabilityKind
    arguments: dict[str, Any] = Field(default_factory=dict)

    # Outcome
    status: InvocationStatus
    error_code: Optional[int] = None
    execution_time_ms: float = 0

    request_id: Optional[str] = None
