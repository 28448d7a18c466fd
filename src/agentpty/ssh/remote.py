"""Bootstrap script written into a freshly started SSH session.

The script is typed into the remote interactive login shell rather than
passed on the ssh command line, so ``PATH`` lookup of the provider CLI
happens with the remote user's environment.
"""

from __future__ import annotations

from dataclasses import dataclass

from agentpty.providers.invocation import (
    InvocationFlags,
    ProviderOverrides,
    build_invocation,
)
from agentpty.shell import join_command, quote_shell_arg


@dataclass(frozen=True)
class RemoteProviderInvocation:
    cli: str  # bare command checked with ``command -v``
    cmd: str  # fully quoted command line
    install_command: str | None = None


def build_remote_provider_invocation(
    provider_id: str,
    flags: InvocationFlags | None = None,
    overrides: ProviderOverrides | None = None,
) -> RemoteProviderInvocation:
    invocation = build_invocation(provider_id, flags, overrides)
    argv = invocation.argv
    return RemoteProviderInvocation(
        cli=argv[0],
        cmd=join_command(argv),
        install_command=invocation.install_command,
    )


def build_remote_init(
    cwd: str | None = None,
    provider: RemoteProviderInvocation | None = None,
) -> str:
    """Keystrokes that ``cd`` into ``cwd`` and start the provider CLI.

    The ``cd`` line stays shell-agnostic (no ``||``) so it works under fish
    too; the provider check runs inside ``sh -c`` for the same reason.
    """
    lines: list[str] = []
    if cwd:
        lines.append(f"cd {quote_shell_arg(cwd)}")
    if provider is not None:
        install = f" Install: {provider.install_command}" if provider.install_command else ""
        msg = f"agentpty: {provider.cli} not found on remote.{install}"
        script = (
            f"if command -v {quote_shell_arg(provider.cli)} >/dev/null 2>&1; "
            f"then exec {provider.cmd}; "
            f"else printf '%s\\n' {quote_shell_arg(msg)}; fi"
        )
        lines.append(f"sh -c {quote_shell_arg(script)}")
    return "\n".join(lines) + "\n" if lines else ""
