"""JSON-RPC envelopes and MCP payload shapes.

Content payloads are a closed tagged union discriminated by ``type``.
"""

import base64
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

JSONRPC_VERSION = "2.0"
PROTOCOL_VERSION = "2024-11-05"

RequestId = Union[str, int, float, None]


class JsonRpcRequest(BaseModel):
    """A decoded request envelope."""
    model_config = ConfigDict(extra="ignore")

    jsonrpc: Literal["2.0"]
    method: str = Field(..., min_length=1)
    params: Optional[Union[list[Any], dict[str, Any]]] = None
    id: RequestId = None


class JsonRpcError(BaseModel):
    """Structured error member of a response envelope."""
    code: int
    message: str
    data: Any = None


class JsonRpcResponse(BaseModel):
    """
    A response envelope.

    Carries exactly one of ``result`` or ``error``. A ``None`` result is
    a valid result, so ``to_dict`` decides which member to emit from
    ``error`` alone.
    """
    jsonrpc: Literal["2.0"] = JSONRPC_VERSION
    id: RequestId = None
    result: Any = None
    error: Optional[JsonRpcError] = None

    @model_validator(mode="after")
    def _check_exclusive(self) -> "JsonRpcResponse":
        if self.error is not None and self.result is not None:
            raise ValueError("Response cannot carry both result and error")
        return self

    @classmethod
    def success(cls, request_id: RequestId, result: Any) -> "JsonRpcResponse":
        return cls(id=request_id, result=result)

    @classmethod
    def failure(
        cls,
        request_id: RequestId,
        code: int,
        message: str,
        data: Any = None
    ) -> "JsonRpcResponse":
        return cls(id=request_id, error=JsonRpcError(code=code, message=message, data=data))

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the wire shape."""
        payload: dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id}
        if self.error is not None:
            payload["error"] = self.error.model_dump(exclude_none=True)
        else:
            payload["result"] = self.result
        return payload


# Content variants

class TextContent(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ImageContent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["image"] = "image"
    data: str = Field(..., description="Base64-encoded image bytes")
    mime_type: str = Field(..., alias="mimeType")

    @classmethod
    def from_bytes(cls, data: bytes, mime_type: str) -> "ImageContent":
        return cls(data=base64.b64encode(data).decode("ascii"), mime_type=mime_type)


class ResourceContents(BaseModel):
    """Body of a resource, either text or base64 blob."""
    model_config = ConfigDict(populate_by_name=True)

    uri: str
    mime_type: Optional[str] = Field(default=None, alias="mimeType")
    text: Optional[str] = None
    blob: Optional[str] = None


class EmbeddedResource(BaseModel):
    type: Literal["resource"] = "resource"
    resource: ResourceContents


Content = Annotated[
    Union[TextContent, ImageContent, EmbeddedResource],
    Field(discriminator="type"),
]

CONTENT_TYPES = (TextContent, ImageContent, EmbeddedResource)


def dump_content(item: BaseModel) -> dict[str, Any]:
    """Serialize a content item with wire aliases."""
    return item.model_dump(by_alias=True, exclude_none=True)


class PromptMessage(BaseModel):
    role: Literal["user", "assistant"] = "user"
    content: Content


class GetPromptResult(BaseModel):
    description: Optional[str] = None
    messages: list[PromptMessage] = Field(default_factory=list)


class ServerInfo(BaseModel):
    """Name, version and icon advertised by ``initialize``."""
    name: str = "mcp-host"
    version: str = "0.1.0"
    icon: Optional[str] = None
