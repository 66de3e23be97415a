"""Tests for application domains."""

import asyncio
import json

import pytest

from shared.models import AccessToken


def request(method, params=None, request_id=1) -> str:
    body = {"jsonrpc": "2.0", "method": method, "id": request_id}
    if params is not None:
        body["params"] = params
    return json.dumps(body)


def create_server():
    from domains import load_all_domains
    from mcp_server.builder import ServerBuilder

    builder = ServerBuilder()
    load_all_domains(builder)
    return builder.build()


def text_of(response) -> str:
    return response.result["content"][0]["text"]


class TestUtilitiesDomain:
    """Tests for the utilities domain."""

    def setup_method(self):
        """Set up test fixtures."""
        self.server = create_server()
        self.dispatcher = self.server.dispatcher

    @pytest.mark.asyncio
    async def test_add_numbers(self):
        response = await self.dispatcher.dispatch_raw(
            request("tools/call", {"name": "add_numbers", "arguments": {"a": 2, "b": 40}})
        )

        assert text_of(response) == "42"

    @pytest.mark.asyncio
    async def test_add_numbers_direct_positional(self):
        response = await self.dispatcher.dispatch_raw(request("add_numbers", [1, "2"]))

        assert response.result == 3

    @pytest.mark.asyncio
    async def test_calculate_with_enum(self):
        response = await self.dispatcher.dispatch_raw(
            request("calculate", {"operation": "multiply", "a": 3, "b": 4})
        )

        assert response.result == 12

    @pytest.mark.asyncio
    async def test_calculate_rejects_unknown_operation(self):
        response = await self.dispatcher.dispatch_raw(
            request("calculate", {"operation": "modulo", "a": 3, "b": 4})
        )

        assert response.error.code == -32602

    @pytest.mark.asyncio
    async def test_divide_by_zero(self):
        response = await self.dispatcher.dispatch_raw(
            request("calculate", {"operation": "divide", "a": 1, "b": 0})
        )

        assert response.error.code == -32602
        assert "zero" in response.error.message.lower()

    @pytest.mark.asyncio
    async def test_echo(self):
        response = await self.dispatcher.dispatch_raw(
            request("echo", {"message": "hi", "uppercase": True})
        )

        assert response.result == "HI"

    @pytest.mark.asyncio
    async def test_protected_tool_requires_mfa(self):
        password_only = AccessToken(token="t", client_id="app", claims={"sub": "ada", "amr": ["pwd"]})
        with_mfa = AccessToken(token="t", client_id="app", claims={"sub": "ada", "amr": ["pwd", "mfa"]})

        anonymous = await self.dispatcher.dispatch_raw(request("protected_tool"))
        denied = await self.dispatcher.dispatch_raw(request("protected_tool"), identity=password_only)
        granted = await self.dispatcher.dispatch_raw(request("protected_tool"), identity=with_mfa)

        assert anonymous.error.code == -32001
        assert denied.error.code == -32003
        assert granted.result == "Access granted to ada"

    @pytest.mark.asyncio
    async def test_job_completes_after_response(self):
        await self.server.start()
        try:
            started = await self.dispatcher.dispatch_raw(
                request("start_job", {"name": "report", "duration_ms": 10})
            )
            assert started.result == "Job 'report' accepted."

            for _ in range(200):
                status = await self.dispatcher.dispatch_raw(request("job_status", ["report"]))
                if status.result == "completed":
                    break
                await asyncio.sleep(0.01)

            assert status.result == "completed"
        finally:
            await self.server.stop()

    @pytest.mark.asyncio
    async def test_failing_job_does_not_affect_response(self):
        await self.server.start()
        try:
            response = await self.dispatcher.dispatch_raw(request("start_failing_job", ["nope"]))
            assert response.result == "Failing job accepted."

            ping = await self.dispatcher.dispatch_raw(request("ping"))
            assert ping.result == "pong"
        finally:
            await self.server.stop()

    @pytest.mark.asyncio
    async def test_read_config_resource(self):
        response = await self.dispatcher.dispatch_raw(request("resources/read", {"uri": "resource://config"}))

        contents = response.result["contents"][0]
        assert contents["uri"] == "resource://config"
        assert contents["mimeType"] == "application/json"
        assert json.loads(contents["text"])["Version"] == "1.0.0"

    @pytest.mark.asyncio
    async def test_analyze_code_prompt(self):
        response = await self.dispatcher.dispatch_raw(
            request("prompts/get", {"name": "analyze_code", "arguments": {"code": "x = 1"}})
        )

        message = response.result["messages"][0]
        assert message["role"] == "user"
        assert "```python\nx = 1\n```" in message["content"]["text"]

    @pytest.mark.asyncio
    async def test_prompt_arguments_listed(self):
        response = await self.dispatcher.dispatch_raw(request("prompts/list"))

        prompts = {p["name"]: p for p in response.result["prompts"]}
        assert [a["name"] for a in prompts["analyze_code"]["arguments"]] == ["code", "language"]
        assert prompts["analyze_code"]["arguments"][1]["required"] is False
        assert "generate_test" in prompts


class TestHRDomain:
    """Tests for the HR domain."""

    def setup_method(self):
        """Set up test fixtures."""
        self.dispatcher = create_server().dispatcher
        self.admin = AccessToken(
            token="t",
            client_id="portal",
            scopes=["hr:write"],
            claims={"sub": "carol", "roles": ["HR_Admin"]},
        )

    @pytest.mark.asyncio
    async def test_tools_are_prefixed(self):
        response = await self.dispatcher.dispatch_raw(request("tools/list"))

        names = [tool["name"] for tool in response.result["tools"]]
        assert "hr_get_employee" in names
        assert "hr_update_employee" in names
        assert "get_employee" not in names

    @pytest.mark.asyncio
    async def test_get_employee(self):
        response = await self.dispatcher.dispatch_raw(request("hr_get_employee", ["e001"]))

        assert response.result["name"] == "Alice Johnson"
        assert response.result["department"] == "Engineering"

    @pytest.mark.asyncio
    async def test_get_employee_not_found(self):
        response = await self.dispatcher.dispatch_raw(request("hr_get_employee", ["E999"]))

        assert response.error.code == -32602
        assert "not found" in response.error.message.lower()

    @pytest.mark.asyncio
    async def test_search_employees(self):
        response = await self.dispatcher.dispatch_raw(
            request("hr_search_employees", {"department": "engineering", "limit": 1})
        )

        assert len(response.result) == 1
        assert response.result[0]["department"] == "Engineering"

    @pytest.mark.asyncio
    async def test_get_department(self):
        response = await self.dispatcher.dispatch_raw(request("hr_get_department", ["finance"]))

        assert response.result["name"] == "Finance"
        assert response.result["budget"] == 800000

    @pytest.mark.asyncio
    async def test_update_employee_requires_role_and_policy(self):
        args = {"employee_id": "E001", "position": "Staff Developer"}
        no_role = AccessToken(token="t", client_id="portal", scopes=["hr:write"])
        no_scope = AccessToken(token="t", client_id="portal", claims={"roles": ["hr_admin"]})

        anonymous = await self.dispatcher.dispatch_raw(request("hr_update_employee", args))
        wrong_role = await self.dispatcher.dispatch_raw(request("hr_update_employee", args), identity=no_role)
        policy_denied = await self.dispatcher.dispatch_raw(request("hr_update_employee", args), identity=no_scope)

        assert anonymous.error.code == -32001
        assert wrong_role.error.code == -32003
        assert policy_denied.error.code == -32003

    @pytest.mark.asyncio
    async def test_update_employee_as_admin(self):
        response = await self.dispatcher.dispatch_raw(
            request("hr_update_employee", {"employee_id": "E001", "position": "Staff Developer"}),
            identity=self.admin
        )

        assert response.result["success"] is True
        assert response.result["employee"]["position"] == "Staff Developer"

    @pytest.mark.asyncio
    async def test_directory_resource(self):
        response = await self.dispatcher.dispatch_raw(
            request("resources/read", {"uri": "resource://hr/directory"})
        )

        directory = json.loads(response.result["contents"][0]["text"])
        assert directory["E002"] == "Bob Smith"
