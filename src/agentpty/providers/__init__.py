"""Coding-agent CLI providers: registry and invocation building."""

from agentpty.providers.registry import (
    PROVIDER_IDS,
    ProviderDefinition,
    get_provider,
    get_provider_by_cli,
)
from agentpty.providers.invocation import (
    Invocation,
    InvocationFlags,
    ProviderOverrides,
    build_invocation,
    build_provider_cli_args,
    resolve_provider_command_config,
)

__all__ = [
    "PROVIDER_IDS",
    "ProviderDefinition",
    "get_provider",
    "get_provider_by_cli",
    "Invocation",
    "InvocationFlags",
    "ProviderOverrides",
    "build_invocation",
    "build_provider_cli_args",
    "resolve_provider_command_config",
]
