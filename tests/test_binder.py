"""Tests for parameter binding."""

from enum import Enum
from typing import Optional

import pytest

from shared.errors import InvalidParamsError
from shared.models import AccessToken, ParameterDescriptor, ParameterKind


class Color(Enum):
    RED = "red"
    GREEN = "green"


class Priority(Enum):
    LOW = 1
    HIGH = 2


def _descriptors(func):
    from mcp_server.binder import describe_parameters
    return describe_parameters(func)


class TestDescribeParameters:
    """Tests for building descriptors from signatures."""

    def test_kinds_from_annotations(self):
        def handler(a: int, b: float, c: str, d: bool, e: list, f: dict, g=None):
            pass

        kinds = [p.kind for p in _descriptors(handler)]

        assert kinds == [
            ParameterKind.INTEGER,
            ParameterKind.NUMBER,
            ParameterKind.STRING,
            ParameterKind.BOOLEAN,
            ParameterKind.ARRAY,
            ParameterKind.OBJECT,
            ParameterKind.ANY,
        ]

    def test_optional_and_defaults(self):
        def handler(name: Optional[str] = None, limit: int = 10):
            pass

        name, limit = _descriptors(handler)

        assert name.kind == ParameterKind.STRING
        assert not name.required
        assert limit.default == 10

    def test_injected_kinds(self):
        """Framework types become injected, never-required parameters."""
        from mcp_server.context import CancellationToken, McpContext

        def handler(token: CancellationToken, who: AccessToken, ctx: McpContext):
            pass

        descriptors = _descriptors(handler)

        assert [p.kind for p in descriptors] == [
            ParameterKind.CANCELLATION,
            ParameterKind.IDENTITY,
            ParameterKind.CONTEXT,
        ]
        assert not any(p.required for p in descriptors)

    def test_enum_annotation(self):
        def handler(color: Color):
            pass

        (color,) = _descriptors(handler)

        assert color.enum_type is Color


class TestParameterBinder:
    """Tests for the ParameterBinder."""

    def test_positional_binding(self):
        from mcp_server.binder import ParameterBinder

        def add(a: int, b: int):
            pass

        bound = ParameterBinder().bind(_descriptors(add), [3, 4])

        assert bound == {"a": 3, "b": 4}

    def test_named_binding_case_insensitive(self):
        from mcp_server.binder import ParameterBinder

        def add(firstValue: int, second: int):
            pass

        bound = ParameterBinder().bind(_descriptors(add), {"FIRSTVALUE": 1, "Second": 2})

        assert bound == {"firstValue": 1, "second": 2}

    def test_extra_keys_ignored(self):
        from mcp_server.binder import ParameterBinder

        def one(a: int):
            pass

        assert ParameterBinder().bind(_descriptors(one), {"a": 1, "zzz": 2}) == {"a": 1}
        assert ParameterBinder().bind(_descriptors(one), [1, 2, 3]) == {"a": 1}

    def test_missing_required_raises(self):
        from mcp_server.binder import ParameterBinder

        def add(a: int, b: int):
            pass

        with pytest.raises(InvalidParamsError, match="Missing required parameter 'b'"):
            ParameterBinder().bind(_descriptors(add), {"a": 1})

    def test_absent_params_use_defaults(self):
        from mcp_server.binder import ParameterBinder

        def search(query: str = "", limit: int = 10):
            pass

        assert ParameterBinder().bind(_descriptors(search), None) == {"query": "", "limit": 10}

    def test_explicit_null_is_absent(self):
        from mcp_server.binder import ParameterBinder

        def search(limit: int = 10):
            pass

        assert ParameterBinder().bind(_descriptors(search), {"limit": None}) == {"limit": 10}

    def test_numeric_coercion(self):
        """Numeric strings and integral floats are coerced."""
        from mcp_server.binder import ParameterBinder

        def handler(count: int, ratio: float, flag: bool):
            pass

        bound = ParameterBinder().bind(_descriptors(handler), ["5", "0.5", "true"])
        assert bound == {"count": 5, "ratio": 0.5, "flag": True}

        bound = ParameterBinder().bind(_descriptors(handler), [5.0, 1, False])
        assert bound["count"] == 5
        assert isinstance(bound["count"], int)

    def test_coercion_failure_raises(self):
        from mcp_server.binder import ParameterBinder

        def handler(count: int):
            pass

        with pytest.raises(InvalidParamsError, match="must be an integer"):
            ParameterBinder().bind(_descriptors(handler), ["five"])

        with pytest.raises(InvalidParamsError):
            ParameterBinder().bind(_descriptors(handler), [2.5])

    def test_enum_coercion(self):
        """Enum members match by value or case-insensitive name."""
        from mcp_server.binder import ParameterBinder

        def handler(color: Color, priority: Priority):
            pass

        descriptors = _descriptors(handler)

        assert ParameterBinder().bind(descriptors, ["red", 2]) == {
            "color": Color.RED, "priority": Priority.HIGH
        }
        assert ParameterBinder().bind(descriptors, ["GREEN", "low"]) == {
            "color": Color.GREEN, "priority": Priority.LOW
        }
        assert ParameterBinder().bind(descriptors, ["red", "1"])["priority"] == Priority.LOW

        with pytest.raises(InvalidParamsError, match="must be one of"):
            ParameterBinder().bind(descriptors, ["blue", 1])

    def test_enum_list_descriptor(self):
        from mcp_server.binder import ParameterBinder

        descriptors = [ParameterDescriptor(name="mode", kind=ParameterKind.STRING, enum=["fast", "slow"])]

        assert ParameterBinder().bind(descriptors, {"mode": "FAST"}) == {"mode": "fast"}
        with pytest.raises(InvalidParamsError):
            ParameterBinder().bind(descriptors, {"mode": "medium"})

    def test_type_mismatch_rejected_by_schema(self):
        from mcp_server.binder import ParameterBinder

        def handler(items: list):
            pass

        with pytest.raises(InvalidParamsError, match="Invalid params"):
            ParameterBinder().bind(_descriptors(handler), {"items": "not-a-list"})

    def test_injected_values_never_from_caller(self):
        """Caller-supplied values for injected parameters are ignored."""
        from mcp_server.binder import InjectedValues, ParameterBinder
        from mcp_server.context import CancellationToken

        def handler(a: int, identity: AccessToken, token: CancellationToken):
            pass

        identity = AccessToken(token="t", client_id="c")
        cancellation = CancellationToken()
        bound = ParameterBinder().bind(
            _descriptors(handler),
            {"a": 1, "identity": {"client_id": "forged"}, "token": "x"},
            InjectedValues(identity=identity, cancellation=cancellation),
        )

        assert bound["identity"] is identity
        assert bound["token"] is cancellation

    def test_positional_skips_injected(self):
        """Array params bind over non-injected parameters only."""
        from mcp_server.binder import ParameterBinder
        from mcp_server.context import McpContext

        def handler(name: str, context: McpContext, count: int = 1):
            pass

        bound = ParameterBinder().bind(_descriptors(handler), ["job", 3])

        assert bound == {"name": "job", "context": None, "count": 3}

    def test_scalar_params_rejected(self):
        from mcp_server.binder import ParameterBinder

        with pytest.raises(InvalidParamsError, match="array or an object"):
            ParameterBinder().bind([], "scalar")
