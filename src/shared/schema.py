"""JSON Schema generation and validation for capability parameters."""

from typing import Any

from jsonschema import Draft7Validator

from shared.models import ParameterDescriptor, ParameterKind


def schema_errors(data: Any, schema: dict[str, Any]) -> list[str]:
    """
    Validate data against a Draft 7 JSON Schema.

    Returns:
        One message per violation, ordered by field path; empty when valid
    """
    if not schema:
        return []

    errors = sorted(Draft7Validator(schema).iter_errors(data), key=lambda e: list(map(str, e.path)))
    return [
        f"{'.'.join(str(p) for p in e.path)}: {e.message}" if e.path else e.message
        for e in errors
    ]


def parameter_schema(param: ParameterDescriptor) -> dict[str, Any]:
    param_schema: dict[str, Any] = {}

    if param.kind != ParameterKind.ANY:
        param_schema["type"] = param.kind.value

    if param.description:
        param_schema["description"] = param.description

    if param.enum_type is not None:
        param_schema["enum"] = [member.value for member in param.enum_type]
        param_schema.pop("type", None)
    elif param.enum is not None:
        param_schema["enum"] = list(param.enum)

    if not param.required and param.default is not None:
        param_schema["default"] = param.default

    if param.kind == ParameterKind.ARRAY and param.items:
        param_schema["items"] = param.items

    return param_schema


def create_input_schema(parameters: list[ParameterDescriptor]) -> dict[str, Any]:
    """
    Create a JSON Schema from a list of parameter descriptors.

    Injected parameters are left out; the caller never supplies them.

    Args:
        parameters: Declared handler parameters

    Returns:
        JSON Schema dictionary
    """
    properties = {}
    required = []

    for param in parameters:
        if param.kind.injected:
            continue
        properties[param.name] = parameter_schema(param)
        if param.required:
            required.append(param.name)

    schema: dict[str, Any] = {
        "type": "object",
        "properties": properties,
    }
    if required:
        schema["required"] = required

    return schema
