"""Spawn configuration resolver.

Produces the executable, arguments, working directory and environment
overlay for a pty spawn. Three shapes come out of here:

* local login shell, optionally running a provider CLI first and then
  chaining back into an interactive shell;
* ``wsl.exe`` wrapper for projects on the WSL filesystem, with the CLI
  looked up inside the guest;
* direct CLI exec (no shell wrapper), which is refused for targets that
  need a wrapper.
"""

from __future__ import annotations

import os
import shutil
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field

from agentpty.errors import DirectSpawnUnsupported
from agentpty.providers.invocation import (
    Invocation,
    InvocationFlags,
    ProviderOverrides,
    build_invocation,
)
from agentpty.providers.registry import get_provider, get_provider_by_cli
from agentpty.pty.wsl import WSL_LAUNCHER, host_home, wsl_target
from agentpty.shell import (
    bare_command_name,
    check_cmd_args,
    command_line,
    is_batch_file,
    is_cmd_safe_arg,
    quote_shell_arg,
)

WSL_GUEST_SHELL = "bash"

BASE_ENV: dict[str, str] = {
    "TERM": "xterm-256color",
    "COLORTERM": "truecolor",
}


@dataclass(frozen=True)
class SpawnConfig:
    """Everything needed to start one pty process. Never mutated."""

    command: str
    args: tuple[str, ...]
    cwd: str
    env: dict[str, str] = field(default_factory=dict)
    shell: str | None = None
    use_shell_wrapper: bool = True
    provider_id: str | None = None
    wsl_distro: str | None = None

    @property
    def argv(self) -> list[str]:
        return [self.command, *self.args]


def default_login_shell(platform: str = sys.platform) -> str:
    if platform == "win32":
        return os.environ.get("COMSPEC", "cmd.exe")
    fallback = "/bin/zsh" if platform == "darwin" else "/bin/bash"
    return os.environ.get("SHELL") or fallback


def build_env_overlay(*overlays: dict[str, str] | None) -> dict[str, str]:
    """Merge env overlays on top of the terminal defaults; later wins."""
    env = dict(BASE_ENV)
    for overlay in overlays:
        if overlay:
            env.update(overlay)
    return env


def _chain(command: str | None, shell: str, shell_setup: str | None) -> str:
    """``<setup>; <command>; exec '<shell>' -il`` with empty parts dropped.

    The trailing exec keeps the terminal alive as an interactive shell after
    the CLI exits.
    """
    parts = [p for p in (shell_setup, command) if p]
    parts.append(f"exec {quote_shell_arg(shell)} -il")
    return "; ".join(parts)


def _resolve_invocation(
    shell: str | None,
    provider_hint: str | None,
    flags: InvocationFlags | None,
    overrides: Mapping[str, ProviderOverrides] | None,
) -> tuple[str | None, Invocation | None]:
    provider = get_provider(provider_hint) if provider_hint else get_provider_by_cli(shell)
    if provider is None:
        return None, None
    return provider.id, build_invocation(provider.id, flags, (overrides or {}).get(provider.id))


def resolve_spawn_config(
    cwd: str | None,
    *,
    shell: str | None = None,
    provider_hint: str | None = None,
    flags: InvocationFlags | None = None,
    overrides: Mapping[str, ProviderOverrides] | None = None,
    env: dict[str, str] | None = None,
    shell_setup: str | None = None,
    default_shell: str | None = None,
    platform: str = sys.platform,
) -> SpawnConfig:
    """Resolve a shell-wrapped spawn for ``cwd``.

    ``shell`` may name a plain shell or a provider CLI; in the latter case
    the CLI runs inside the user's login shell. ``provider_hint`` forces the
    provider regardless of ``shell``.
    """
    provider_id, invocation = _resolve_invocation(shell, provider_hint, flags, overrides)
    env_overlay = build_env_overlay(invocation.env if invocation else None, env)

    target = wsl_target(cwd) if cwd else None
    if target is not None:
        args = [*target.launcher_args(), "--", WSL_GUEST_SHELL]
        if invocation is not None:
            argv = invocation.argv
            guest_argv = [bare_command_name(argv[0]), *argv[1:]]
            args += ["-lic", _chain(command_line(guest_argv), WSL_GUEST_SHELL, shell_setup)]
        elif shell_setup:
            args += ["-lic", _chain(None, WSL_GUEST_SHELL, shell_setup)]
        else:
            args.append("-il")
        return SpawnConfig(
            command=WSL_LAUNCHER,
            args=tuple(args),
            cwd=host_home(),
            env=env_overlay,
            shell=WSL_GUEST_SHELL,
            provider_id=provider_id,
            wsl_distro=target.distro,
        )

    work_dir = cwd or host_home()
    if platform == "win32":
        comspec = default_shell or default_login_shell(platform)
        if invocation is not None:
            # Each token stays a separate argument so the command line is
            # rendered once, by the pty backend.
            check_cmd_args(invocation.argv)
            win_args: list[str] = ["/d", "/k", *invocation.argv]
        else:
            win_args = []
        return SpawnConfig(
            command=comspec,
            args=tuple(win_args),
            cwd=work_dir,
            env=env_overlay,
            shell=comspec,
            provider_id=provider_id,
        )

    if shell and invocation is None:
        login_shell = shell
    else:
        login_shell = default_shell or default_login_shell(platform)

    if invocation is not None:
        posix_args = ["-lic", _chain(command_line(invocation.argv), login_shell, shell_setup)]
    elif shell_setup:
        posix_args = ["-lic", _chain(None, login_shell, shell_setup)]
    else:
        posix_args = ["-il"]
    return SpawnConfig(
        command=login_shell,
        args=tuple(posix_args),
        cwd=work_dir,
        env=env_overlay,
        shell=login_shell,
        provider_id=provider_id,
    )


def resolve_direct_spawn_config(
    cwd: str,
    provider_id: str,
    *,
    flags: InvocationFlags | None = None,
    overrides: ProviderOverrides | None = None,
    env: dict[str, str] | None = None,
    shell_setup: str | None = None,
) -> SpawnConfig:
    """Resolve a direct CLI exec with no shell wrapper.

    Raises :class:`DirectSpawnUnsupported` when the target needs a wrapper:
    WSL paths (lookup must happen in the guest), a configured shell-setup
    script (it only runs inside a shell), a CLI not found on ``PATH``, or a
    ``.cmd``/``.bat`` CLI whose arguments cmd.exe would reinterpret.
    """
    if wsl_target(cwd) is not None:
        raise DirectSpawnUnsupported(f"Direct spawn unsupported for WSL path: {cwd}")
    if shell_setup:
        raise DirectSpawnUnsupported("Shell setup requires a shell wrapper")
    if get_provider(provider_id) is None and overrides is None:
        raise DirectSpawnUnsupported(f"Unknown provider: {provider_id}")

    invocation = build_invocation(provider_id, flags, overrides)
    argv = invocation.argv
    executable = shutil.which(argv[0])
    if executable is None:
        raise DirectSpawnUnsupported(f"CLI not found on PATH: {argv[0]}")
    if is_batch_file(executable) and not all(is_cmd_safe_arg(a) for a in argv[1:]):
        raise DirectSpawnUnsupported(f"Arguments are not safe for batch file {executable}")

    return SpawnConfig(
        command=executable,
        args=tuple(argv[1:]),
        cwd=cwd,
        env=build_env_overlay(invocation.env, env),
        shell=None,
        use_shell_wrapper=False,
        provider_id=provider_id,
    )
