"""SSH-backed sessions: route resolution, ssh config and remote bootstrap."""

from agentpty.ssh.route import (
    SshConnectionConfig,
    SshConnectionStore,
    SshRoute,
    build_scp_args,
    resolve_ssh_route,
)
from agentpty.ssh.remote import build_remote_init, build_remote_provider_invocation

__all__ = [
    "SshConnectionConfig",
    "SshConnectionStore",
    "SshRoute",
    "build_scp_args",
    "resolve_ssh_route",
    "build_remote_init",
    "build_remote_provider_invocation",
]
