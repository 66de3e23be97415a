"""Middleware pipeline for capability invocations.

Interceptors wrap the handler call in registration order: the first
registered middleware is the outermost. A middleware may return without
calling ``call_next``, in which case its return value is the result and
the handler never runs.
"""

import time
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from shared.logging import bound_context, get_logger
from shared.errors import McpError
from shared.models import AccessToken, CapabilityEntry
from shared.protocol import JsonRpcRequest
from mcp_server.context import CancellationToken, McpContext

logger = get_logger(__name__)


class CallContext(BaseModel):
    """Everything known about one capability invocation."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    request: JsonRpcRequest
    entry: CapabilityEntry
    arguments: dict[str, Any] = Field(default_factory=dict)
    identity: Optional[AccessToken] = None
    cancellation: CancellationToken
    context: Optional[McpContext] = None
    items: dict[str, Any] = Field(
        default_factory=dict,
        description="Scratch space shared between middlewares"
    )


CallNext = Callable[[CallContext], Awaitable[Any]]
MiddlewareFunc = Callable[[CallContext, CallNext], Awaitable[Any]]


class Middleware(ABC):
    """Base class for pipeline interceptors."""

    @abstractmethod
    async def invoke(self, context: CallContext, call_next: CallNext) -> Any:
        """
        Handle one invocation.

        Args:
            context: Call context, may be modified before ``call_next``
            call_next: Continuation running the rest of the pipeline

        Returns:
            The invocation result
        """
        pass


class FunctionMiddleware(Middleware):
    """Adapts a plain ``async def (context, call_next)`` to ``Middleware``."""

    def __init__(self, func: MiddlewareFunc) -> None:
        self.func = func

    async def invoke(self, context: CallContext, call_next: CallNext) -> Any:
        return await self.func(context, call_next)


def _link(middleware: Middleware, call_next: CallNext) -> CallNext:
    async def run(context: CallContext) -> Any:
        return await middleware.invoke(context, call_next)
    return run


class Pipeline:
    """Ordered chain of middlewares around a terminal handler."""

    def __init__(self, middlewares: Optional[list[Union[Middleware, MiddlewareFunc]]] = None) -> None:
        self._middlewares: list[Middleware] = []
        for middleware in middlewares or []:
            self.add(middleware)

    def add(self, middleware: Union[Middleware, MiddlewareFunc]) -> None:
        if not isinstance(middleware, Middleware):
            middleware = FunctionMiddleware(middleware)
        self._middlewares.append(middleware)

    def __len__(self) -> int:
        return len(self._middlewares)

    async def run(self, context: CallContext, terminal: CallNext) -> Any:
        """Run ``terminal`` wrapped by every middleware."""
        call_next = terminal
        for middleware in reversed(self._middlewares):
            call_next = _link(middleware, call_next)
        return await call_next(context)


class LoggingMiddleware(Middleware):
    """Binds request correlation to the log context and logs outcomes."""

    async def invoke(self, context: CallContext, call_next: CallNext) -> Any:
        start_time = time.perf_counter()
        with bound_context(request_id=context.request.id, capability=context.entry.name):
            try:
                result = await call_next(context)
            except McpError as e:
                logger.warning(
                    "Capability rejected",
                    code=e.code,
                    error=e.message,
                    duration_ms=(time.perf_counter() - start_time) * 1000
                )
                raise
            except Exception as e:
                logger.warning(
                    "Capability failed",
                    error_type=type(e).__name__,
                    duration_ms=(time.perf_counter() - start_time) * 1000
                )
                raise

            logger.info(
                "Capability executed",
                kind=context.entry.kind.value,
                duration_ms=(time.perf_counter() - start_time) * 1000
            )
            return result
