"""Execution context handed to capability handlers.

Handlers that declare a ``context`` parameter receive an ``McpContext``
giving them the request id, the caller's identity, cancellation, shared
storage, server-to-client notifications and the background queue.
"""

import asyncio
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, Protocol

from shared.errors import RequestCancelledError
from shared.logging import get_logger
from shared.models import AccessToken
from mcp_server.storage import KeyValueStorage

if TYPE_CHECKING:
    from mcp_server.background import BackgroundTaskQueue

logger = get_logger(__name__)


class CancellationToken:
    """Cooperative cancellation signal backed by an ``asyncio.Event``."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RequestCancelledError()


BackgroundWork = Callable[[CancellationToken], Awaitable[None]]


class Session(Protocol):
    """Server-to-client notification channel of a stream transport."""

    async def send_notification(self, method: str, params: dict[str, Any]) -> None:
        ...


class NullSession:
    """Session for connection-oriented transports that cannot push messages."""

    async def send_notification(self, method: str, params: dict[str, Any]) -> None:
        logger.debug("Notification dropped (no session)", method=method)


LOG_LEVELS = {"debug", "info", "notice", "warning", "error", "critical", "alert", "emergency"}


class McpContext:
    """Per-request handle passed to handlers."""

    def __init__(
        self,
        request_id: Any,
        cancellation: CancellationToken,
        storage: KeyValueStorage,
        background: "BackgroundTaskQueue",
        identity: Optional[AccessToken] = None,
        session: Optional[Session] = None,
        logger_name: str = "mcp",
    ) -> None:
        self.request_id = request_id
        self.cancellation = cancellation
        self.storage = storage
        self.identity = identity
        self.session = session or NullSession()
        self.logger_name = logger_name
        self._background = background

    async def log(self, level: str, message: str, data: Any = None) -> None:
        """Send a ``notifications/message`` log notification to the client."""
        level = level.lower()
        if level not in LOG_LEVELS:
            raise ValueError(f"Unknown log level '{level}'")

        params: dict[str, Any] = {
            "level": level,
            "logger": self.logger_name,
            "data": data if data is not None else message,
        }
        await self.session.send_notification("notifications/message", params)

    async def report_progress(
        self,
        progress: float,
        total: Optional[float] = None,
        message: Optional[str] = None
    ) -> None:
        """Send a ``notifications/progress`` notification for this request."""
        params: dict[str, Any] = {"progressToken": self.request_id, "progress": progress}
        if total is not None:
            params["total"] = total
        if message:
            params["message"] = message
        await self.session.send_notification("notifications/progress", params)

    def run_in_background(self, work: BackgroundWork) -> None:
        """
        Queue work that outlives this request.

        The work receives the worker's lifetime cancellation token, not
        this request's.
        """
        self._background.enqueue(work)
