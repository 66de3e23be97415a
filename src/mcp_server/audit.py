"""Audit logging for MCP Server.

Records every capability invocation for compliance and debugging.
Captures: caller, capability, arguments, timestamp, outcome.
"""

import asyncio
import time
import uuid
from pathlib import Path
from typing import Any, Optional

import aiofiles
from pydantic_core import to_jsonable_python

from shared.errors import ForbiddenError, McpError, RequestCancelledError, UnauthorizedError
from shared.logging import get_logger, redact
from shared.models import AuditEntry, InvocationStatus
from mcp_server.middleware import CallContext, CallNext, Middleware

logger = get_logger(__name__)


def _status_for(error: Optional[Exception]) -> InvocationStatus:
    if error is None:
        return InvocationStatus.SUCCESS
    if isinstance(error, UnauthorizedError):
        return InvocationStatus.UNAUTHORIZED
    if isinstance(error, ForbiddenError):
        return InvocationStatus.FORBIDDEN
    if isinstance(error, RequestCancelledError):
        return InvocationStatus.CANCELLED
    return InvocationStatus.ERROR


class AuditMiddleware(Middleware):
    """
    Audit interceptor for capability invocations.

    Every invocation is logged with:
    - Caller subject and authentication scheme
    - Capability name and kind
    - Arguments (with sensitive data redacted)
    - Timestamp and duration
    - Outcome
    """

    def __init__(
        self,
        log_path: str = "logs/audit.log",
        enabled: bool = True,
        buffer_size: int = 100
    ) -> None:
        self.log_path = Path(log_path)
        self.enabled = enabled
        self.buffer_size = buffer_size
        self._buffer: list[AuditEntry] = []
        self._lock = asyncio.Lock()

        if enabled:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)

    def create_entry(
        self,
        context: CallContext,
        error: Optional[Exception],
        execution_time_ms: float
    ) -> AuditEntry:
        """Create an audit entry from invocation data."""
        injected = {p.name for p in context.entry.parameters if p.kind.injected}
        arguments = {k: v for k, v in context.arguments.items() if k not in injected}

        return AuditEntry(
            id=str(uuid.uuid4()),
            subject=context.identity.subject if context.identity else None,
            scheme=context.identity.scheme if context.identity else None,
            capability=context.entry.name,
            kind=context.entry.kind,
            arguments=redact(to_jsonable_python(arguments, fallback=str)),
            status=_status_for(error),
            error_code=error.code if isinstance(error, McpError) else None,
            execution_time_ms=execution_time_ms,
            request_id=str(context.request.id) if context.request.id is not None else None,
        )

    async def invoke(self, context: CallContext, call_next: CallNext) -> Any:
        if not self.enabled:
            return await call_next(context)

        start_time = time.perf_counter()
        error: Optional[Exception] = None
        try:
            return await call_next(context)
        except Exception as e:
            error = e
            raise
        finally:
            await self.log(self.create_entry(
                context, error, (time.perf_counter() - start_time) * 1000
            ))

    async def log(self, entry: AuditEntry) -> None:
        """Record one audit entry."""
        logger.info(
            "Capability audited",
            audit_id=entry.id,
            subject=entry.subject,
            capability=entry.capability,
            status=entry.status.value,
            execution_time_ms=entry.execution_time_ms
        )

        # Buffer for batch file writing
        async with self._lock:
            self._buffer.append(entry)

            if len(self._buffer) >= self.buffer_size:
                await self._flush()

    async def _flush(self) -> None:
        if not self._buffer:
            return

        pending, self._buffer = self._buffer, []
        lines = "".join(entry.model_dump_json() + "\n" for entry in pending)
        try:
            async with aiofiles.open(self.log_path, "a") as f:
                await f.write(lines)
        except OSError as e:
            logger.error("Failed to write audit log", path=str(self.log_path), error=str(e))
            # Kept in order for the next flush
            self._buffer[:0] = pending

    async def flush(self) -> None:
        """Public method to flush audit buffer."""
        async with self._lock:
            await self._flush()

    @property
    def buffered(self) -> int:
        return len(self._buffer)
