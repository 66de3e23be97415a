"""Server builder for MCP Server.

Capabilities are registered explicitly, once, at startup: each handler
gets a name, a parameter descriptor list and metadata. ``build()``
wires the registry, pipeline, gate, storage and background queue into
an ``McpServer``.
"""

import inspect
from typing import Any, Callable, Optional, Union

from shared.logging import get_logger
from shared.models import (
    AuthorizationRequirement,
    CapabilityEntry,
    CapabilityKind,
    ParameterDescriptor,
)
from shared.protocol import ServerInfo
from shared.schema import create_input_schema
from mcp_server.audit import AuditMiddleware
from mcp_server.background import BackgroundTaskQueue, BackgroundWorker
from mcp_server.binder import describe_parameters
from mcp_server.dispatcher import RequestDispatcher
from mcp_server.gate import AuthorizationGate, PolicyPredicate, PolicyRegistry
from mcp_server.middleware import Middleware, MiddlewareFunc, Pipeline
from mcp_server.registry import CapabilityRegistry
from mcp_server.storage import InMemoryStorage, KeyValueStorage

logger = get_logger(__name__)


class McpServer:
    """A built server: dispatcher plus the background worker's lifecycle."""

    def __init__(
        self,
        info: ServerInfo,
        registry: CapabilityRegistry,
        dispatcher: RequestDispatcher,
        worker: BackgroundWorker,
        audit: Optional[AuditMiddleware] = None,
    ) -> None:
        self.info = info
        self.registry = registry
        self.dispatcher = dispatcher
        self.worker = worker
        self.audit = audit

    @property
    def background(self) -> BackgroundTaskQueue:
        return self.worker.queue

    async def start(self) -> None:
        self.worker.start()
        logger.info(
            "MCP Server started",
            name=self.info.name,
            version=self.info.version,
            capabilities=self.registry.counts()
        )

    async def stop(self, grace_seconds: float = 5.0) -> None:
        await self.worker.stop(grace_seconds)
        if self.audit is not None:
            await self.audit.flush()
        logger.info("MCP Server stopped", name=self.info.name)


def _summary(handler: Callable[..., Any]) -> str:
    doc = inspect.getdoc(handler) or ""
    return doc.split("\n\n", 1)[0].replace("\n", " ").strip()


class ServerBuilder:
    """Fluent registration of capabilities, middleware and policies."""

    def __init__(self, name: str = "mcp-host", version: str = "0.1.0", icon: Optional[str] = None) -> None:
        self.info = ServerInfo(name=name, version=version, icon=icon)
        self.registry = CapabilityRegistry()
        self.policies = PolicyRegistry()
        self._middlewares: list[Union[Middleware, MiddlewareFunc]] = []
        self._storage: Optional[KeyValueStorage] = None
        self._audit: Optional[AuditMiddleware] = None

    def with_info(self, name: str, version: str, icon: Optional[str] = None) -> "ServerBuilder":
        """Set the identity advertised by ``initialize``."""
        self.info = ServerInfo(name=name, version=version, icon=icon)
        return self

    def _entry(
        self,
        kind: CapabilityKind,
        handler: Callable[..., Any],
        name: Optional[str],
        description: Optional[str],
        parameters: Optional[list[ParameterDescriptor]],
        authorization: Optional[AuthorizationRequirement],
        **metadata: Any
    ) -> CapabilityEntry:
        if not callable(handler):
            raise TypeError(f"Handler for {kind.value} '{name}' is not callable")

        if parameters is None:
            parameters = describe_parameters(handler)

        return CapabilityEntry(
            kind=kind,
            name=name or handler.__name__,
            handler=handler,
            parameters=parameters,
            description=description if description is not None else _summary(handler),
            input_schema=create_input_schema(parameters),
            authorization=authorization,
            **metadata
        )

    def add_tool(
        self,
        handler: Callable[..., Any],
        name: Optional[str] = None,
        description: Optional[str] = None,
        parameters: Optional[list[ParameterDescriptor]] = None,
        authorization: Optional[AuthorizationRequirement] = None,
        title: Optional[str] = None,
        icon: Optional[str] = None
    ) -> "ServerBuilder":
        """
        Register a tool.

        Args:
            handler: Sync or async callable
            name: Tool name, defaults to the function name
            description: Defaults to the first docstring paragraph
            parameters: Explicit descriptors, defaults to the signature
            authorization: Requirement checked before every call
            title: Human readable title
            icon: Icon URL

        Raises:
            ValueError: If a tool with the same name exists
        """
        self.registry.register(self._entry(
            CapabilityKind.TOOL, handler, name, description, parameters, authorization,
            title=title, icon=icon
        ))
        return self

    def add_resource(
        self,
        handler: Callable[..., Any],
        uri: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        mime_type: Optional[str] = None,
        parameters: Optional[list[ParameterDescriptor]] = None,
        authorization: Optional[AuthorizationRequirement] = None,
        icon: Optional[str] = None
    ) -> "ServerBuilder":
        """Register a resource readable at ``uri``."""
        self.registry.register(self._entry(
            CapabilityKind.RESOURCE, handler, name or uri, description, parameters, authorization,
            uri=uri, mime_type=mime_type, icon=icon
        ))
        return self

    def add_prompt(
        self,
        handler: Callable[..., Any],
        name: Optional[str] = None,
        description: Optional[str] = None,
        parameters: Optional[list[ParameterDescriptor]] = None,
        authorization: Optional[AuthorizationRequirement] = None,
        icon: Optional[str] = None
    ) -> "ServerBuilder":
        """Register a prompt template."""
        self.registry.register(self._entry(
            CapabilityKind.PROMPT, handler, name, description, parameters, authorization,
            icon=icon
        ))
        return self

    def add_middleware(self, middleware: Union[Middleware, MiddlewareFunc]) -> "ServerBuilder":
        """Append an interceptor; the first added runs outermost."""
        self._middlewares.append(middleware)
        return self

    def with_policy(self, name: str, predicate: PolicyPredicate) -> "ServerBuilder":
        """Register a named authorization policy."""
        self.policies.add(name, predicate)
        return self

    def with_audit(self, audit: AuditMiddleware) -> "ServerBuilder":
        self._audit = audit
        return self

    def with_storage(self, storage: KeyValueStorage) -> "ServerBuilder":
        self._storage = storage
        return self

    def import_server(self, prefix: str, other: Union["ServerBuilder", CapabilityRegistry]) -> "ServerBuilder":
        """
        Compose another server's capabilities under ``{prefix}_``.

        Raises:
            ValueError: If a prefixed name collides with an existing one
        """
        registry = other.registry if isinstance(other, ServerBuilder) else other
        self.registry.import_registry(registry, prefix)
        return self

    def build(self) -> McpServer:
        """Assemble the server. Registration is closed afterwards."""
        middlewares = list(self._middlewares)
        if self._audit is not None:
            middlewares.insert(0, self._audit)

        queue = BackgroundTaskQueue()
        dispatcher = RequestDispatcher(
            registry=self.registry,
            pipeline=Pipeline(middlewares),
            gate=AuthorizationGate(self.policies),
            server_info=self.info,
            storage=self._storage or InMemoryStorage(),
            background=queue,
        )
        return McpServer(
            info=self.info,
            registry=self.registry,
            dispatcher=dispatcher,
            worker=BackgroundWorker(queue),
            audit=self._audit,
        )
