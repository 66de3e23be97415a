"""Tests for the middleware pipeline and audit logging."""

import json

import pytest

from shared.models import AccessToken, AuthorizationRequirement, InvocationStatus


def add(a: int, b: int) -> int:
    return a + b


def login(username: str, password: str) -> str:
    return f"welcome {username}"


def request(method, params=None) -> str:
    return json.dumps({"jsonrpc": "2.0", "method": method, "params": params, "id": 1})


class TestPipeline:
    """Tests for interceptor ordering and short-circuiting."""

    @pytest.mark.asyncio
    async def test_first_registered_runs_outermost(self):
        from mcp_server.builder import ServerBuilder

        order = []

        def tracer(label):
            async def middleware(context, call_next):
                order.append(f"{label}:before")
                result = await call_next(context)
                order.append(f"{label}:after")
                return result
            return middleware

        server = (
            ServerBuilder()
            .add_middleware(tracer("outer"))
            .add_middleware(tracer("inner"))
            .add_tool(add)
            .build()
        )

        response = await server.dispatcher.dispatch_raw(request("add", [1, 2]))

        assert response.result == 3
        assert order == ["outer:before", "inner:before", "inner:after", "outer:after"]

    @pytest.mark.asyncio
    async def test_short_circuit_skips_handler(self):
        from mcp_server.builder import ServerBuilder

        calls = []

        def handler() -> str:
            calls.append("handler")
            return "from handler"

        async def cached(context, call_next):
            return "from cache"

        server = ServerBuilder().add_middleware(cached).add_tool(handler).build()

        response = await server.dispatcher.dispatch_raw(request("handler"))

        assert response.result == "from cache"
        assert calls == []

    @pytest.mark.asyncio
    async def test_middleware_can_rewrite_arguments_and_result(self):
        from mcp_server.builder import ServerBuilder
        from mcp_server.middleware import CallContext, Middleware

        class Doubler(Middleware):
            async def invoke(self, context: CallContext, call_next):
                context.arguments["a"] *= 2
                return await call_next(context) * 10

        server = ServerBuilder().add_middleware(Doubler()).add_tool(add).build()

        response = await server.dispatcher.dispatch_raw(request("add", {"a": 1, "b": 1}))

        assert response.result == 30

    @pytest.mark.asyncio
    async def test_middleware_observes_handler_exception(self):
        from mcp_server.builder import ServerBuilder

        seen = []

        def broken():
            raise KeyError("missing")

        async def observer(context, call_next):
            try:
                return await call_next(context)
            except KeyError as e:
                seen.append(e)
                raise

        server = ServerBuilder().add_middleware(observer).add_tool(broken).build()

        response = await server.dispatcher.dispatch_raw(request("broken"))

        assert response.error.code == -32603
        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_gate_runs_inside_pipeline(self):
        """Interceptors see authorization failures raised by the gate."""
        from mcp_server.builder import ServerBuilder
        from shared.errors import UnauthorizedError

        seen = []

        async def observer(context, call_next):
            try:
                return await call_next(context)
            except UnauthorizedError as e:
                seen.append(e.code)
                raise

        server = (
            ServerBuilder()
            .add_middleware(observer)
            .add_tool(add, authorization=AuthorizationRequirement())
            .build()
        )

        response = await server.dispatcher.dispatch_raw(request("add", [1, 2]))

        assert response.error.code == -32001
        assert seen == [-32001]

    @pytest.mark.asyncio
    async def test_logging_middleware_passes_result(self):
        from mcp_server.builder import ServerBuilder
        from mcp_server.middleware import LoggingMiddleware

        server = ServerBuilder().add_middleware(LoggingMiddleware()).add_tool(add).build()

        response = await server.dispatcher.dispatch_raw(request("add", [2, 2]))

        assert response.result == 4


class TestAuditMiddleware:
    """Tests for the audit interceptor."""

    @pytest.mark.asyncio
    async def test_success_is_audited(self, tmp_path):
        from mcp_server.audit import AuditMiddleware
        from mcp_server.builder import ServerBuilder

        audit = AuditMiddleware(log_path=str(tmp_path / "audit.log"))
        server = ServerBuilder().with_audit(audit).add_tool(add).build()
        identity = AccessToken(token="t", client_id="app", scheme="jwt", claims={"sub": "ada"})

        await server.dispatcher.dispatch_raw(request("add", [1, 2]), identity=identity)
        await audit.flush()

        lines = (tmp_path / "audit.log").read_text().splitlines()
        assert len(lines) == 1
        entry = json.loads(lines[0])
        assert entry["capability"] == "add"
        assert entry["subject"] == "ada"
        assert entry["scheme"] == "jwt"
        assert entry["status"] == InvocationStatus.SUCCESS.value
        assert entry["arguments"] == {"a": 1, "b": 2}

    @pytest.mark.asyncio
    async def test_sensitive_arguments_redacted(self, tmp_path):
        from mcp_server.audit import AuditMiddleware
        from mcp_server.builder import ServerBuilder

        audit = AuditMiddleware(log_path=str(tmp_path / "audit.log"))
        server = ServerBuilder().with_audit(audit).add_tool(login).build()

        await server.dispatcher.dispatch_raw(request("login", {"username": "ada", "password": "pw"}))
        await audit.flush()

        entry = json.loads((tmp_path / "audit.log").read_text())
        assert entry["arguments"] == {"username": "ada", "password": "[REDACTED]"}

    @pytest.mark.asyncio
    async def test_denials_are_audited(self, tmp_path):
        from mcp_server.audit import AuditMiddleware
        from mcp_server.builder import ServerBuilder

        audit = AuditMiddleware(log_path=str(tmp_path / "audit.log"))
        server = (
            ServerBuilder()
            .with_audit(audit)
            .add_tool(add, authorization=AuthorizationRequirement(roles=["admin"]))
            .build()
        )
        identity = AccessToken(token="t", client_id="app")

        await server.dispatcher.dispatch_raw(request("add", [1, 2]))
        await server.dispatcher.dispatch_raw(request("add", [1, 2]), identity=identity)
        await audit.flush()

        entries = [json.loads(line) for line in (tmp_path / "audit.log").read_text().splitlines()]
        assert [e["status"] for e in entries] == ["unauthorized", "forbidden"]
        assert [e["error_code"] for e in entries] == [-32001, -32003]

    @pytest.mark.asyncio
    async def test_buffer_flushes_at_size(self, tmp_path):
        from mcp_server.audit import AuditMiddleware
        from mcp_server.builder import ServerBuilder

        audit = AuditMiddleware(log_path=str(tmp_path / "audit.log"), buffer_size=2)
        server = ServerBuilder().with_audit(audit).add_tool(add).build()

        await server.dispatcher.dispatch_raw(request("add", [1, 1]))
        assert audit.buffered == 1

        await server.dispatcher.dispatch_raw(request("add", [1, 1]))
        assert audit.buffered == 0
        assert len((tmp_path / "audit.log").read_text().splitlines()) == 2

    @pytest.mark.asyncio
    async def test_disabled_audit_writes_nothing(self, tmp_path):
        from mcp_server.audit import AuditMiddleware
        from mcp_server.builder import ServerBuilder

        audit = AuditMiddleware(log_path=str(tmp_path / "audit.log"), enabled=False)
        server = ServerBuilder().with_audit(audit).add_tool(add).build()

        await server.dispatcher.dispatch_raw(request("add", [1, 1]))
        await audit.flush()

        assert not (tmp_path / "audit.log").exists()
