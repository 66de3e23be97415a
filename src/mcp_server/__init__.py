"""MCP Server - Capability registry, dispatch, authorization and background work.

The MCP Server is the authoritative component for capability execution.
It registers tools, resources and prompts, binds parameters, enforces
authorization, runs the interceptor pipeline, and audits invocations.
"""

from mcp_server.audit import AuditMiddleware
from mcp_server.background import BackgroundTaskQueue, BackgroundWorker
from mcp_server.builder import McpServer, ServerBuilder
from mcp_server.context import CancellationToken, McpContext
from mcp_server.dispatcher import RequestDispatcher
from mcp_server.gate import AuthorizationGate, PolicyRegistry
from mcp_server.middleware import CallContext, LoggingMiddleware, Middleware, Pipeline
from mcp_server.registry import CapabilityRegistry

__all__ = [
    "AuditMiddleware",
    "BackgroundTaskQueue",
    "BackgroundWorker",
    "McpServer",
    "ServerBuilder",
    "CancellationToken",
    "McpContext",
    "RequestDispatcher",
    "AuthorizationGate",
    "PolicyRegistry",
    "CallContext",
    "LoggingMiddleware",
    "Middleware",
    "Pipeline",
    "CapabilityRegistry",
]
