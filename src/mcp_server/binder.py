"""Parameter binding for capability handlers.

Maps a JSON-RPC ``params`` value (array, object or absent) onto a
handler's declared parameter descriptors. Binding either succeeds
completely or raises ``InvalidParamsError``; it never invokes anything.
"""

import inspect
import types
import typing
from enum import Enum
from typing import Any, Callable, Optional, Union

from pydantic import BaseModel, ConfigDict

from shared.errors import InvalidParamsError
from shared.models import AccessToken, ParameterDescriptor, ParameterKind
from shared.schema import parameter_schema, schema_errors
from mcp_server.context import CancellationToken, McpContext

_TRUE_STRINGS = {"true", "1", "yes"}
_FALSE_STRINGS = {"false", "0", "no"}

_ANNOTATION_KINDS: dict[Any, ParameterKind] = {
    str: ParameterKind.STRING,
    int: ParameterKind.INTEGER,
    float: ParameterKind.NUMBER,
    bool: ParameterKind.BOOLEAN,
    list: ParameterKind.ARRAY,
    tuple: ParameterKind.ARRAY,
    dict: ParameterKind.OBJECT,
    CancellationToken: ParameterKind.CANCELLATION,
    AccessToken: ParameterKind.IDENTITY,
    McpContext: ParameterKind.CONTEXT,
}


class InjectedValues(BaseModel):
    """Values the dispatcher supplies for injected parameter kinds."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    cancellation: Optional[CancellationToken] = None
    identity: Optional[AccessToken] = None
    context: Optional[McpContext] = None

    def for_kind(self, kind: ParameterKind) -> Any:
        if kind == ParameterKind.CANCELLATION:
            return self.cancellation
        if kind == ParameterKind.IDENTITY:
            return self.identity
        return self.context


def _unwrap_optional(annotation: Any) -> Any:
    if typing.get_origin(annotation) in (Union, types.UnionType):
        args = [a for a in typing.get_args(annotation) if a is not type(None)]
        if len(args) == 1:
            return args[0]
    return annotation


def describe_parameters(
    func: Callable[..., Any],
    descriptions: Optional[dict[str, str]] = None
) -> list[ParameterDescriptor]:
    """
    Build parameter descriptors from a function signature.

    Annotations decide the kind; parameters typed as ``CancellationToken``,
    ``AccessToken`` or ``McpContext`` become injected parameters.

    Args:
        func: Handler function
        descriptions: Optional per-parameter descriptions

    Returns:
        Descriptors in signature order
    """
    descriptions = descriptions or {}
    hints = typing.get_type_hints(func)
    descriptors = []

    for name, param in inspect.signature(func).parameters.items():
        if param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
            continue

        annotation = _unwrap_optional(hints.get(name, Any))
        origin = typing.get_origin(annotation) or annotation

        enum_type = None
        if isinstance(origin, type) and issubclass(origin, Enum):
            enum_type = origin
            kind = ParameterKind.ANY
        else:
            kind = _ANNOTATION_KINDS.get(origin, ParameterKind.ANY)

        has_default = param.default is not inspect.Parameter.empty
        descriptors.append(ParameterDescriptor(
            name=name,
            kind=kind,
            description=descriptions.get(name, ""),
            required=not has_default and not kind.injected,
            default=param.default if has_default else None,
            enum_type=enum_type,
        ))

    return descriptors


def _coerce_enum(param: ParameterDescriptor, value: Any) -> Enum:
    enum_type = param.enum_type
    try:
        return enum_type(value)
    except ValueError:
        pass

    if isinstance(value, str):
        for member in enum_type:
            if member.name.lower() == value.lower():
                return member
            if isinstance(member.value, str) and member.value.lower() == value.lower():
                return member
            if isinstance(member.value, int) and value.strip().lstrip("-").isdigit():
                if member.value == int(value):
                    return member

    allowed = ", ".join(str(m.value) for m in enum_type)
    raise InvalidParamsError(f"Parameter '{param.name}' must be one of: {allowed}")


def _coerce(param: ParameterDescriptor, value: Any) -> Any:
    """Attempt numeric and enum coercion before validation rejects a value."""
    if param.enum_type is not None:
        return _coerce_enum(param, value)

    if param.enum is not None:
        if value in param.enum:
            return value
        if isinstance(value, str):
            for allowed in param.enum:
                if isinstance(allowed, str) and allowed.lower() == value.lower():
                    return allowed
        raise InvalidParamsError(
            f"Parameter '{param.name}' must be one of: {', '.join(map(str, param.enum))}"
        )

    kind = param.kind

    if kind == ParameterKind.INTEGER and not isinstance(value, bool):
        if isinstance(value, int):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
        if isinstance(value, str):
            try:
                return int(value.strip())
            except ValueError:
                try:
                    number = float(value)
                except ValueError:
                    number = None
                if number is not None and number.is_integer():
                    return int(number)
        raise InvalidParamsError(f"Parameter '{param.name}' must be an integer")

    if kind == ParameterKind.NUMBER and not isinstance(value, bool):
        if isinstance(value, (int, float)):
            return value
        if isinstance(value, str):
            try:
                return float(value.strip())
            except ValueError:
                pass
        raise InvalidParamsError(f"Parameter '{param.name}' must be a number")

    if kind == ParameterKind.BOOLEAN:
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in _TRUE_STRINGS | _FALSE_STRINGS:
            return value.strip().lower() in _TRUE_STRINGS
        raise InvalidParamsError(f"Parameter '{param.name}' must be a boolean")

    if kind == ParameterKind.STRING and isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)

    return value


class ParameterBinder:
    """Binds caller arguments to a handler's parameter descriptors."""

    def bind(
        self,
        parameters: list[ParameterDescriptor],
        params: Union[list[Any], dict[str, Any], None],
        injected: Optional[InjectedValues] = None
    ) -> dict[str, Any]:
        """
        Bind ``params`` to ``parameters``.

        Arrays bind by position over the non-injected parameters, objects
        bind by case-insensitive name. Extra items or keys are ignored.

        Returns:
            Keyword arguments for the handler, in declaration order

        Raises:
            InvalidParamsError: If a required parameter is missing or a
                value cannot be coerced to its declared kind
        """
        injected = injected or InjectedValues()

        if params is None:
            positional, named = None, {}
        elif isinstance(params, list):
            positional, named = params, None
        elif isinstance(params, dict):
            positional, named = None, {str(k).lower(): v for k, v in params.items()}
        else:
            raise InvalidParamsError("Params must be an array or an object")

        bound: dict[str, Any] = {}
        supplied: dict[str, Any] = {}
        schema: dict[str, Any] = {"type": "object", "properties": {}}
        position = 0

        for param in parameters:
            if param.kind.injected:
                bound[param.name] = injected.for_kind(param.kind)
                continue

            value = None
            if positional is not None:
                if position < len(positional):
                    value = positional[position]
                position += 1
            else:
                value = named.get(param.name.lower())

            if value is None:
                if param.required:
                    raise InvalidParamsError(f"Missing required parameter '{param.name}'")
                bound[param.name] = param.default
                continue

            value = _coerce(param, value)
            bound[param.name] = value
            supplied[param.name] = value.value if isinstance(value, Enum) else value
            schema["properties"][param.name] = parameter_schema(param)

        errors = schema_errors(supplied, schema)
        if errors:
            raise InvalidParamsError(f"Invalid params: {'; '.join(errors)}")

        return bound
