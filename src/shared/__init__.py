"""Shared models, configuration and utilities for the MCP host."""

from shared.models import (
    AccessToken,
    AuthorizationRequirement,
    CapabilityEntry,
    CapabilityKind,
    ClientRegistration,
    ParameterDescriptor,
    ParameterKind,
)
from shared.config import Settings, get_settings
from shared.logging import get_logger, setup_logging

__all__ = [
    "AccessToken",
    "AuthorizationRequirement",
    "CapabilityEntry",
    "CapabilityKind",
    "ClientRegistration",
    "ParameterDescriptor",
    "ParameterKind",
    "Settings",
    "get_settings",
    "get_logger",
    "setup_logging",
]
