"""Capability Registry for MCP Server.

Authoritative name to handler tables for tools, resources and prompts.
Entries are registered once by the server builder at startup and are
read without locking afterwards.
"""

from typing import Optional

from shared.logging import get_logger
from shared.models import CapabilityEntry, CapabilityKind

logger = get_logger(__name__)


class CapabilityRegistry:
    """
    Central registry for all MCP capabilities.

    Responsibilities:
    - Register tools, resources and prompts
    - Lookup by case-insensitive name (and by URI for resources)
    - Merge another registry under a name prefix
    """

    def __init__(self) -> None:
        self._tables: dict[CapabilityKind, dict[str, CapabilityEntry]] = {
            kind: {} for kind in CapabilityKind
        }

    def register(self, entry: CapabilityEntry) -> None:
        """
        Register a capability.

        Args:
            entry: Capability to register

        Raises:
            ValueError: If a capability of the same kind and name exists,
                or a resource with the same URI
        """
        table = self._tables[entry.kind]

        if entry.key in table:
            raise ValueError(
                f"{entry.kind.value.capitalize()} '{entry.name}' is already registered"
            )
        if entry.kind == CapabilityKind.RESOURCE and self._resource_by_uri(entry.uri) is not None:
            raise ValueError(f"Resource URI '{entry.uri}' is already registered")

        table[entry.key] = entry

        logger.info(
            "Capability registered",
            kind=entry.kind.value,
            name=entry.name,
            protected=entry.authorization is not None
        )

    def get(self, kind: CapabilityKind, name: str) -> Optional[CapabilityEntry]:
        """Get a capability by kind and case-insensitive name."""
        return self._tables[kind].get(name.lower())

    def find(self, name: str) -> Optional[CapabilityEntry]:
        """
        Resolve a bare method name against every table.

        Tools take precedence over resources, resources over prompts.
        """
        for kind in (CapabilityKind.TOOL, CapabilityKind.RESOURCE, CapabilityKind.PROMPT):
            entry = self.get(kind, name)
            if entry is not None:
                return entry
        return None

    def find_resource(self, uri_or_name: str) -> Optional[CapabilityEntry]:
        """Resolve a resource by URI first, then by name."""
        return self._resource_by_uri(uri_or_name) or self.get(CapabilityKind.RESOURCE, uri_or_name)

    def _resource_by_uri(self, uri: Optional[str]) -> Optional[CapabilityEntry]:
        if not uri:
            return None
        wanted = uri.lower()
        for entry in self._tables[CapabilityKind.RESOURCE].values():
            if entry.uri and entry.uri.lower() == wanted:
                return entry
        return None

    def entries(self, kind: CapabilityKind) -> list[CapabilityEntry]:
        """List capabilities of a kind in registration order."""
        return list(self._tables[kind].values())

    def import_registry(self, other: "CapabilityRegistry", prefix: str) -> int:
        """
        Merge another registry's capabilities under ``{prefix}_{name}``.

        The merge is all-or-nothing: if any prefixed name collides with an
        existing capability of the same kind, or an imported resource URI
        is already registered, nothing is imported.

        Args:
            other: Registry to import
            prefix: Name prefix for imported capabilities

        Returns:
            Number of capabilities imported

        Raises:
            ValueError: If a prefixed name or a resource URI is already registered
        """
        renamed: list[CapabilityEntry] = []
        for kind in CapabilityKind:
            for entry in other.entries(kind):
                new_entry = entry.model_copy(update={"name": f"{prefix}_{entry.name}"})
                if new_entry.key in self._tables[kind]:
                    raise ValueError(
                        f"{kind.value.capitalize()} '{new_entry.name}' is already registered"
                    )
                if kind == CapabilityKind.RESOURCE and self._resource_by_uri(new_entry.uri) is not None:
                    raise ValueError(f"Resource URI '{new_entry.uri}' is already registered")
                renamed.append(new_entry)

        for entry in renamed:
            self.register(entry)

        logger.info("Registry imported", prefix=prefix, count=len(renamed))
        return len(renamed)

    def counts(self) -> dict[str, int]:
        """Get count of capabilities per kind."""
        return {kind.value: len(table) for kind, table in self._tables.items()}

    def __len__(self) -> int:
        return sum(len(table) for table in self._tables.values())
