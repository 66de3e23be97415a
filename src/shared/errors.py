"""Error taxonomy for the MCP host.

Every error that can reach a caller maps onto a JSON-RPC error code.
The message of each error is safe to return to the caller; diagnostic
detail belongs in the server log only.
"""

from typing import Any, Optional


class McpError(Exception):
    """Base class for errors that become JSON-RPC error responses."""

    code: int = -32603
    default_message: str = "Internal error"

    def __init__(self, message: Optional[str] = None, data: Any = None) -> None:
        self.message = message or self.default_message
        self.data = data
        super().__init__(self.message)


class ParseError(McpError):
    """Payload is not valid JSON."""
    code = -32700
    default_message = "Parse error"


class InvalidRequestError(McpError):
    """Payload is JSON but not a valid request envelope."""
    code = -32600
    default_message = "Invalid Request"


class MethodNotFoundError(McpError):
    """No reserved method or capability matches the method name."""
    code = -32601
    default_message = "Method not found"


class InvalidParamsError(McpError):
    """Arguments could not be bound to the handler's parameters."""
    code = -32602
    default_message = "Invalid params"


class InternalError(McpError):
    """Handler fault. The message never carries the underlying exception."""
    code = -32603
    default_message = "Internal error"


class UnauthorizedError(McpError):
    """Missing, invalid or expired credentials."""
    code = -32001
    default_message = "Authentication required"


class ForbiddenError(McpError):
    """Valid identity with an insufficient grant."""
    code = -32003
    default_message = "Forbidden"


class RequestCancelledError(McpError):
    """The request's cancellation token fired before completion."""
    code = -32800
    default_message = "Request cancelled"


class UpstreamVerificationError(Exception):
    """
    Identity provider could not be reached or answered unexpectedly.

    Raised inside token verifiers only; it never crosses the verifier
    boundary and callers see an invalid token instead.
    """
    pass
