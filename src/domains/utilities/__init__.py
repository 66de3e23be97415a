"""Utilities Domain - Basic tools, a configuration resource and prompts.

Demonstrates:
- Sync and async tool handlers
- Work queued past the end of a request
- Injected context, identity and cancellation
- A tool requiring multi-factor authentication
"""

import asyncio
from enum import Enum
from typing import Any, Optional

from shared.errors import InvalidParamsError
from shared.logging import get_logger
from shared.models import AccessToken, AuthorizationRequirement, ParameterDescriptor, ParameterKind
from shared.protocol import PromptMessage, TextContent
from mcp_server.builder import ServerBuilder
from mcp_server.context import CancellationToken, McpContext

logger = get_logger(__name__)


class Operation(str, Enum):
    ADD = "add"
    SUBTRACT = "subtract"
    MULTIPLY = "multiply"
    DIVIDE = "divide"


def add_numbers(a: int, b: int) -> int:
    """Adds two numbers together."""
    return a + b


def calculate(operation: Operation, a: float, b: float) -> float:
    """Applies an arithmetic operation to two numbers."""
    if operation == Operation.ADD:
        return a + b
    if operation == Operation.SUBTRACT:
        return a - b
    if operation == Operation.MULTIPLY:
        return a * b
    if b == 0:
        raise InvalidParamsError("Division by zero")
    return a / b


async def echo(message: str, uppercase: bool = False) -> str:
    """Returns the message unchanged, or upper-cased."""
    return message.upper() if uppercase else message


async def whoami(identity: Optional[AccessToken] = None) -> dict[str, Any]:
    """Describes the authenticated caller."""
    if identity is None:
        return {"authenticated": False}
    return {
        "authenticated": True,
        "subject": identity.subject,
        "client_id": identity.client_id,
        "scheme": identity.scheme,
        "scopes": identity.scopes,
    }


async def count_down(seconds: int, context: McpContext, cancellation: CancellationToken) -> str:
    """Counts down one second at a time, reporting progress."""
    for elapsed in range(seconds):
        cancellation.raise_if_cancelled()
        await context.report_progress(elapsed, seconds)
        await asyncio.sleep(1)
    await context.report_progress(seconds, seconds, "done")
    return f"Counted down from {seconds}"


async def start_job(name: str, context: McpContext, duration_ms: int = 2000) -> str:
    """Starts a named job that completes after the response is sent."""

    async def work(cancellation: CancellationToken) -> None:
        logger.info("Job started", job=name)
        try:
            await asyncio.wait_for(cancellation.wait(), timeout=duration_ms / 1000)
            logger.warning("Job cancelled", job=name)
        except asyncio.TimeoutError:
            await context.storage.set(f"job:{name}", "completed")
            logger.info("Job completed", job=name)

    await context.storage.set(f"job:{name}", "queued")
    context.run_in_background(work)
    await context.log("info", f"Job '{name}' queued")
    return f"Job '{name}' accepted."


async def start_failing_job(reason: str, context: McpContext) -> str:
    """Starts a job that fails; the failure is only logged."""

    async def work(cancellation: CancellationToken) -> None:
        raise RuntimeError(reason)

    context.run_in_background(work)
    return "Failing job accepted."


async def job_status(name: str, context: McpContext) -> str:
    """Reports the state of a job started with start_job."""
    status = await context.storage.get(f"job:{name}")
    return status or "unknown"


def protected_tool(identity: AccessToken) -> str:
    """Sensitive operation available to callers who completed MFA."""
    return f"Access granted to {identity.subject}"


def server_config() -> dict[str, str]:
    return {
        "Version": "1.0.0",
        "Author": "MCP Host",
        "Environment": "Production",
    }


def analyze_code(code: str, language: str = "python") -> list[PromptMessage]:
    """Creates a prompt to analyze code for potential issues."""
    return [
        PromptMessage(
            role="user",
            content=TextContent(
                text=f"Please analyze the following {language} code for potential bugs, "
                     f"performance issues, and best practices:\n\n```{language}\n{code}\n```"
            )
        )
    ]


def generate_test(function_name: str, requirements: str) -> str:
    """Generates a prompt for writing unit tests."""
    return (
        f"Write unit tests for a function named '{function_name}' with the "
        f"following requirements:\n{requirements}\n\n"
        "Include tests for edge cases and error conditions."
    )


def register_utilities_domain(builder: ServerBuilder) -> None:
    """Register the utilities domain with the MCP server."""
    (
        builder
        .add_tool(add_numbers, title="Add Numbers")
        .add_tool(calculate)
        .add_tool(echo)
        .add_tool(whoami)
        .add_tool(count_down)
        .add_tool(start_job)
        .add_tool(start_failing_job)
        .add_tool(job_status)
        .add_tool(
            protected_tool,
            authorization=AuthorizationRequirement(require_mfa=True)
        )
        .add_resource(
            server_config,
            uri="resource://config",
            name="config",
            description="Returns the server configuration.",
            mime_type="application/json"
        )
        .add_prompt(
            analyze_code,
            parameters=[
                ParameterDescriptor(name="code", kind=ParameterKind.STRING, description="Code to analyze"),
                ParameterDescriptor(
                    name="language",
                    kind=ParameterKind.STRING,
                    description="Programming language",
                    required=False,
                    default="python"
                ),
            ]
        )
        .add_prompt(generate_test, name="generate_test")
    )

    logger.info("Utilities domain registered")
