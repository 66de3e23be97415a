"""Application Domains.

Each domain registers its capabilities on a ``ServerBuilder``:
- Tools, resources and prompts
- Authorization requirements
- Named policies it relies on

Domains are isolated with no cross-domain calls or shared state.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from mcp_server.builder import ServerBuilder


def load_all_domains(builder: "ServerBuilder") -> None:
    """
    Load and register all application domains.

    This is called at MCP Server startup, before the server is built.
    """
    from domains.hr import register_hr_domain
    from domains.utilities import register_utilities_domain

    register_utilities_domain(builder)
    register_hr_domain(builder)


__all__ = ["load_all_domains"]
