"""Request Dispatcher for MCP Server.

Turns a request envelope into exactly one response envelope:
decode, resolve the capability, bind parameters, run the middleware
pipeline (authorization gate and handler at its core) and encode the
result. Every failure becomes an error response; nothing escapes to
the transport.
"""

import asyncio
import base64
import functools
import inspect
import json
from typing import Any, Awaitable, Callable, Optional, Union

from pydantic import ValidationError
from pydantic_core import to_jsonable_python

from shared.errors import (
    InternalError,
    InvalidParamsError,
    InvalidRequestError,
    McpError,
    MethodNotFoundError,
    ParseError,
)
from shared.logging import get_logger
from shared.models import AccessToken, CapabilityEntry, CapabilityKind
from shared.protocol import (
    CONTENT_TYPES,
    PROTOCOL_VERSION,
    GetPromptResult,
    JsonRpcRequest,
    JsonRpcResponse,
    PromptMessage,
    RequestId,
    ResourceContents,
    ServerInfo,
    TextContent,
    dump_content,
)
from mcp_server.background import BackgroundTaskQueue
from mcp_server.binder import InjectedValues, ParameterBinder
from mcp_server.context import CancellationToken, McpContext, Session
from mcp_server.gate import AuthorizationGate
from mcp_server.middleware import CallContext, Pipeline
from mcp_server.registry import CapabilityRegistry
from mcp_server.storage import InMemoryStorage, KeyValueStorage

logger = get_logger(__name__)

ControlHandler = Callable[..., Awaitable[Any]]


def _to_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(to_jsonable_python(value), default=str)


def tool_result(value: Any) -> dict[str, Any]:
    """Normalize a tool handler's return value into a call-tool result."""
    if isinstance(value, CONTENT_TYPES):
        items = [value]
    elif isinstance(value, list) and value and all(isinstance(v, CONTENT_TYPES) for v in value):
        items = value
    else:
        items = [TextContent(text=_to_text(value))]

    return {"content": [dump_content(item) for item in items], "isError": False}


def resource_result(entry: CapabilityEntry, uri: str, value: Any) -> dict[str, Any]:
    """Normalize a resource handler's return value into a read-resource result."""
    if isinstance(value, ResourceContents):
        contents = [value]
    elif isinstance(value, list) and value and all(isinstance(v, ResourceContents) for v in value):
        contents = value
    elif isinstance(value, bytes):
        contents = [ResourceContents(
            uri=uri,
            mime_type=entry.mime_type or "application/octet-stream",
            blob=base64.b64encode(value).decode("ascii"),
        )]
    else:
        contents = [ResourceContents(
            uri=uri,
            mime_type=entry.mime_type or ("text/plain" if isinstance(value, str) else "application/json"),
            text=_to_text(value),
        )]

    return {"contents": [dump_content(c) for c in contents]}


def prompt_result(entry: CapabilityEntry, value: Any) -> dict[str, Any]:
    """Normalize a prompt handler's return value into a get-prompt result."""
    if isinstance(value, GetPromptResult):
        result = value
    elif isinstance(value, PromptMessage):
        result = GetPromptResult(messages=[value])
    elif isinstance(value, list) and all(isinstance(v, PromptMessage) for v in value):
        result = GetPromptResult(messages=value)
    else:
        result = GetPromptResult(messages=[PromptMessage(content=TextContent(text=_to_text(value)))])

    if result.description is None:
        result.description = entry.description or None

    return result.model_dump(by_alias=True, exclude_none=True)


def _request_id(data: dict[str, Any]) -> RequestId:
    value = data.get("id")
    if isinstance(value, (str, int, float)) and not isinstance(value, bool):
        return value
    return None


class RequestDispatcher:
    """
    Routes request envelopes to control operations or capabilities.

    Reserved methods enumerate or delegate into the registry; any other
    method name is resolved directly against the capability tables.
    """

    def __init__(
        self,
        registry: CapabilityRegistry,
        pipeline: Optional[Pipeline] = None,
        gate: Optional[AuthorizationGate] = None,
        binder: Optional[ParameterBinder] = None,
        server_info: Optional[ServerInfo] = None,
        storage: Optional[KeyValueStorage] = None,
        background: Optional[BackgroundTaskQueue] = None,
    ) -> None:
        self.registry = registry
        self.pipeline = pipeline or Pipeline()
        self.gate = gate or AuthorizationGate()
        self.binder = binder or ParameterBinder()
        self.server_info = server_info or ServerInfo()
        self.storage = storage or InMemoryStorage()
        self.background = background or BackgroundTaskQueue()

        self._control: dict[str, ControlHandler] = {
            "initialize": self._initialize,
            "notifications/initialized": self._initialized,
            "ping": self._ping,
            "tools/list": self._list_tools,
            "tools/call": self._call_tool,
            "resources/list": self._list_resources,
            "resources/read": self._read_resource,
            "prompts/list": self._list_prompts,
            "prompts/get": self._get_prompt,
        }

    async def dispatch_raw(
        self,
        payload: Union[bytes, str, dict[str, Any]],
        identity: Optional[AccessToken] = None,
        cancellation: Optional[CancellationToken] = None,
        session: Optional[Session] = None,
    ) -> JsonRpcResponse:
        """
        Decode and dispatch a raw payload.

        Args:
            payload: JSON text or an already decoded mapping
            identity: Verified caller identity, if any
            cancellation: Request cancellation token
            session: Notification channel of a stream transport

        Returns:
            Response envelope
        """
        if isinstance(payload, (bytes, str)):
            try:
                data = json.loads(payload)
            except (ValueError, RecursionError) as e:
                logger.warning("Unparseable request", error=str(e))
                return JsonRpcResponse.failure(None, ParseError.code, ParseError.default_message)
        else:
            data = payload

        if not isinstance(data, dict):
            return JsonRpcResponse.failure(
                None, InvalidRequestError.code, InvalidRequestError.default_message
            )

        try:
            request = JsonRpcRequest.model_validate(data)
        except ValidationError as e:
            logger.warning("Invalid request envelope", errors=e.error_count())
            return JsonRpcResponse.failure(
                _request_id(data), InvalidRequestError.code, InvalidRequestError.default_message
            )

        return await self.dispatch(request, identity, cancellation, session)

    async def dispatch(
        self,
        request: JsonRpcRequest,
        identity: Optional[AccessToken] = None,
        cancellation: Optional[CancellationToken] = None,
        session: Optional[Session] = None,
    ) -> JsonRpcResponse:
        """
        Dispatch a decoded request.

        This is the main entry point for request handling. It always
        returns a response carrying the request's id.
        """
        cancellation = cancellation or CancellationToken()

        logger.debug("Dispatching request", method=request.method, request_id=request.id)

        try:
            result = await self._handle(request, identity, cancellation, session)
            return JsonRpcResponse.success(request.id, to_jsonable_python(result))
        except McpError as e:
            return JsonRpcResponse.failure(request.id, e.code, e.message, e.data)
        except Exception as e:
            logger.error(
                "Request failed",
                method=request.method,
                error=str(e),
                exc_info=True
            )
            return JsonRpcResponse.failure(request.id, InternalError.code, InternalError.default_message)

    async def _handle(
        self,
        request: JsonRpcRequest,
        identity: Optional[AccessToken],
        cancellation: CancellationToken,
        session: Optional[Session],
    ) -> Any:
        control = self._control.get(request.method.lower())
        if control is not None:
            return await control(request, identity, cancellation, session)

        entry = self.registry.find(request.method)
        if entry is None:
            raise MethodNotFoundError(f"Method '{request.method}' not found")

        return await self._invoke(entry, request, request.params, identity, cancellation, session)

    async def _invoke(
        self,
        entry: CapabilityEntry,
        request: JsonRpcRequest,
        params: Union[list[Any], dict[str, Any], None],
        identity: Optional[AccessToken],
        cancellation: CancellationToken,
        session: Optional[Session],
    ) -> Any:
        cancellation.raise_if_cancelled()

        context = McpContext(
            request_id=request.id,
            cancellation=cancellation,
            storage=self.storage,
            background=self.background,
            identity=identity,
            session=session,
            logger_name=entry.name,
        )
        arguments = self.binder.bind(
            entry.parameters,
            params,
            InjectedValues(cancellation=cancellation, identity=identity, context=context),
        )
        call = CallContext(
            request=request,
            entry=entry,
            arguments=arguments,
            identity=identity,
            cancellation=cancellation,
            context=context,
        )
        return await self.pipeline.run(call, self._execute)

    async def _execute(self, call: CallContext) -> Any:
        """Terminal link: authorization gate, then the handler."""
        await self.gate.check(call.entry.authorization, call.identity)
        call.cancellation.raise_if_cancelled()

        handler = call.entry.handler
        if asyncio.iscoroutinefunction(handler):
            result = await handler(**call.arguments)
        else:
            # Run sync handler in thread pool
            loop = asyncio.get_running_loop()
            result = await loop.run_in_executor(
                None, functools.partial(handler, **call.arguments)
            )

        if inspect.isawaitable(result):
            result = await result
        return result

    # Control operations

    async def _initialize(self, request: JsonRpcRequest, *_: Any) -> dict[str, Any]:
        server_info = self.server_info.model_dump(exclude_none=True)
        return {
            "protocolVersion": PROTOCOL_VERSION,
            "serverInfo": server_info,
            "capabilities": {
                "tools": {"listChanged": False},
                "resources": {"subscribe": False, "listChanged": False},
                "prompts": {"listChanged": False},
                "logging": {},
            },
        }

    async def _initialized(self, request: JsonRpcRequest, *_: Any) -> None:
        logger.info("Client initialized")
        return None

    async def _ping(self, request: JsonRpcRequest, *_: Any) -> str:
        return "pong"

    async def _list_tools(self, request: JsonRpcRequest, *_: Any) -> dict[str, Any]:
        tools = []
        for entry in self.registry.entries(CapabilityKind.TOOL):
            tool: dict[str, Any] = {
                "name": entry.name,
                "description": entry.description,
                "inputSchema": entry.input_schema,
            }
            if entry.title:
                tool["title"] = entry.title
            if entry.icon:
                tool["icon"] = entry.icon
            tools.append(tool)
        return {"tools": tools}

    async def _list_resources(self, request: JsonRpcRequest, *_: Any) -> dict[str, Any]:
        resources = []
        for entry in self.registry.entries(CapabilityKind.RESOURCE):
            resource: dict[str, Any] = {
                "uri": entry.uri or entry.name,
                "name": entry.name,
                "description": entry.description,
            }
            if entry.mime_type:
                resource["mimeType"] = entry.mime_type
            resources.append(resource)
        return {"resources": resources}

    async def _list_prompts(self, request: JsonRpcRequest, *_: Any) -> dict[str, Any]:
        prompts = []
        for entry in self.registry.entries(CapabilityKind.PROMPT):
            prompts.append({
                "name": entry.name,
                "description": entry.description,
                "arguments": [
                    {"name": p.name, "description": p.description, "required": p.required}
                    for p in entry.parameters
                    if not p.kind.injected
                ],
            })
        return {"prompts": prompts}

    def _named_params(self, request: JsonRpcRequest, required: str) -> dict[str, Any]:
        params = request.params
        if not isinstance(params, dict) or not isinstance(params.get(required), str):
            raise InvalidParamsError(f"Missing required parameter '{required}'")
        return params

    async def _call_tool(
        self,
        request: JsonRpcRequest,
        identity: Optional[AccessToken],
        cancellation: CancellationToken,
        session: Optional[Session],
    ) -> dict[str, Any]:
        params = self._named_params(request, "name")
        entry = self.registry.get(CapabilityKind.TOOL, params["name"])
        if entry is None:
            raise MethodNotFoundError(f"Tool '{params['name']}' not found")

        arguments = params.get("arguments")
        if arguments is not None and not isinstance(arguments, (dict, list)):
            raise InvalidParamsError("Tool arguments must be an array or an object")

        value = await self._invoke(entry, request, arguments, identity, cancellation, session)
        return tool_result(value)

    async def _read_resource(
        self,
        request: JsonRpcRequest,
        identity: Optional[AccessToken],
        cancellation: CancellationToken,
        session: Optional[Session],
    ) -> dict[str, Any]:
        params = self._named_params(request, "uri")
        uri = params["uri"]
        entry = self.registry.find_resource(uri)
        if entry is None:
            raise MethodNotFoundError(f"Resource '{uri}' not found")

        value = await self._invoke(entry, request, params, identity, cancellation, session)
        return resource_result(entry, entry.uri or uri, value)

    async def _get_prompt(
        self,
        request: JsonRpcRequest,
        identity: Optional[AccessToken],
        cancellation: CancellationToken,
        session: Optional[Session],
    ) -> dict[str, Any]:
        params = self._named_params(request, "name")
        entry = self.registry.get(CapabilityKind.PROMPT, params["name"])
        if entry is None:
            raise MethodNotFoundError(f"Prompt '{params['name']}' not found")

        arguments = params.get("arguments")
        if arguments is not None and not isinstance(arguments, dict):
            raise InvalidParamsError("Prompt arguments must be an object")

        value = await self._invoke(entry, request, arguments, identity, cancellation, session)
        return prompt_result(entry, value)
