"""CLI entry point for agentpty."""

from __future__ import annotations

import asyncio
import codecs
import json
import logging
import os
import shutil
import signal
import sys
import uuid
from dataclasses import asdict
from typing import Any, Callable

import typer
from rich.console import Console
from rich.table import Table

from agentpty.config import AgentPtyConfig, load_shell_setup
from agentpty.errors import AgentPtyError
from agentpty.providers.invocation import InvocationFlags, build_invocation
from agentpty.providers.registry import PROVIDERS, get_provider
from agentpty.pty.spawn_config import resolve_spawn_config
from agentpty.ssh.config_parser import resolve_identity_agent
from agentpty.ssh.route import SSH_CONFIG_PREFIX, SshConnectionStore, resolve_ssh_route

app = typer.Typer(
    name="agentpty",
    help="Supervise terminal sessions for AI coding-agent CLIs.",
    no_args_is_help=True,
)

console = Console()
logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _echo_json(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2))


@app.command()
def providers() -> None:
    """List the built-in agent providers and whether their CLI is installed."""
    table = Table(title="Providers")
    table.add_column("id")
    table.add_column("name")
    table.add_column("cli")
    table.add_column("resume")
    table.add_column("auto-approve")
    table.add_column("installed")
    for provider in PROVIDERS.values():
        installed = shutil.which(provider.cli) is not None
        table.add_row(
            provider.id,
            provider.name,
            provider.cli,
            provider.resume_flag or "-",
            provider.auto_approve_flag or "-",
            "[green]yes[/green]" if installed else "[red]no[/red]",
        )
    console.print(table)


@app.command("spawn-config")
def spawn_config(
    cwd: str = typer.Argument(help="Working directory (POSIX, Windows or WSL UNC path)."),
    provider: str | None = typer.Option(None, "--provider", "-p", help="Provider to run."),
    resume: bool = typer.Option(False, "--resume", help="Resume the previous session."),
    config_file: str | None = typer.Option(None, "--config", "-c", help="Config file path."),
) -> None:
    """Print the resolved spawn configuration as JSON."""
    config = AgentPtyConfig.load(config_file)
    spawn = resolve_spawn_config(
        cwd,
        provider_hint=provider,
        flags=InvocationFlags(resume=resume),
        overrides=config.providers,
        shell_setup=load_shell_setup(cwd),
        default_shell=config.pty.default_shell,
    )
    data = asdict(spawn)
    data["args"] = list(spawn.args)
    _echo_json(data)


@app.command()
def invocation(
    provider: str = typer.Argument(help="Provider id (e.g. claude, codex)."),
    resume: bool = typer.Option(False, "--resume", help="Add the resume flag."),
    auto_approve: bool = typer.Option(False, "--auto-approve", help="Add the auto-approve flag."),
    prompt: str | None = typer.Option(None, "--prompt", help="Initial prompt."),
    config_file: str | None = typer.Option(None, "--config", "-c", help="Config file path."),
) -> None:
    """Print the CLI invocation for a provider."""
    config = AgentPtyConfig.load(config_file)
    inv = build_invocation(
        provider,
        InvocationFlags(resume=resume, auto_approve=auto_approve, initial_prompt=prompt),
        config.provider_overrides(provider),
    )
    typer.echo(inv.command_line())


@app.command("ssh-route")
def ssh_route(
    connection_id: str = typer.Argument(help="Saved connection id or ssh-config:<alias>."),
    config_file: str | None = typer.Option(None, "--config", "-c", help="Config file path."),
) -> None:
    """Resolve an SSH connection id to the ssh target and arguments."""
    config = AgentPtyConfig.load(config_file)
    try:
        route = resolve_ssh_route(connection_id, SshConnectionStore(config.ssh_connections))
    except AgentPtyError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    data: dict[str, Any] = {"target": route.target, "args": route.args}
    if connection_id.startswith(SSH_CONFIG_PREFIX):
        data["identity_agent"] = asyncio.run(resolve_identity_agent(route.target))
    _echo_json(data)


@app.command()
def run(
    provider: str | None = typer.Option(None, "--provider", "-p", help="Agent provider to start."),
    cwd: str | None = typer.Option(None, "--cwd", help="Working directory."),
    direct: bool = typer.Option(False, "--direct", help="Exec the CLI without a shell wrapper."),
    remote: str | None = typer.Option(None, "--remote", help="SSH connection id."),
    resume: bool = typer.Option(False, "--resume", help="Resume the previous session."),
    auto_approve: bool = typer.Option(False, "--auto-approve", help="Skip permission prompts."),
    prompt: str | None = typer.Option(None, "--prompt", help="Initial prompt."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
    config_file: str | None = typer.Option(None, "--config", "-c", help="Config file path."),
) -> None:
    """Attach this terminal to a supervised session."""
    setup_logging(verbose)
    if sys.platform == "win32":
        typer.echo("Error: 'run' needs a POSIX terminal", err=True)
        raise typer.Exit(1)
    if direct and not provider:
        typer.echo("Error: --direct needs --provider", err=True)
        raise typer.Exit(1)
    if provider and get_provider(provider) is None:
        typer.echo(f"Error: Unknown provider: {provider}", err=True)
        raise typer.Exit(1)

    config = AgentPtyConfig.load(config_file)
    exit_code = asyncio.run(
        _run_attached(
            config,
            provider=provider,
            cwd=os.path.abspath(cwd or os.getcwd()),
            direct=direct,
            remote=remote,
            resume=resume,
            auto_approve=auto_approve,
            prompt=prompt,
        )
    )
    raise typer.Exit(exit_code)


class StdinForwarder:
    """Reader callback that forwards keyboard input to a session.

    Decodes incrementally so a multi-byte character split across reads
    arrives whole. Calls ``on_eof`` once when the input side closes.
    """

    def __init__(
        self, fd: int, write: Callable[[str], None], on_eof: Callable[[], None]
    ) -> None:
        self.fd = fd
        self._write = write
        self._on_eof = on_eof
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self.closed = False

    def __call__(self) -> None:
        if self.closed:
            return
        data = os.read(self.fd, 4096)
        text = self._decoder.decode(data, final=not data)
        if text:
            self._write(text)
        if not data:
            self.closed = True
            logger.debug("stdin closed")
            self._on_eof()


async def _run_attached(
    config: AgentPtyConfig,
    *,
    provider: str | None,
    cwd: str,
    direct: bool,
    remote: str | None,
    resume: bool,
    auto_approve: bool,
    prompt: str | None,
) -> int:
    """Bridge stdin/stdout to one session until it exits."""
    import termios
    import tty

    from agentpty.session.ids import make_pty_id
    from agentpty.session.owner import CallbackOwner
    from agentpty.supervisor import (
        PtySupervisor,
        RemoteTarget,
        StartDirectRequest,
        StartLocalRequest,
    )

    supervisor = PtySupervisor(config)
    loop = asyncio.get_running_loop()
    done: asyncio.Future[int] = loop.create_future()
    out = sys.stdout.buffer

    def on_push(channel: str, payload: Any) -> None:
        if channel.startswith("pty:data:"):
            out.write(payload.encode("utf-8"))
            out.flush()
        elif channel.startswith("pty:exit:") and not done.done():
            code = payload.get("exitCode")
            done.set_result(code if code is not None else 1)

    owner = CallbackOwner(on_push, name="terminal")
    size = shutil.get_terminal_size()
    suffix = uuid.uuid4().hex[:8]
    session_id = make_pty_id(provider, "main", suffix) if provider else f"shell:{suffix}"
    target = RemoteTarget(connection_id=remote) if remote else None

    if provider and (direct or remote):
        request: StartLocalRequest | StartDirectRequest = StartDirectRequest(
            id=session_id,
            provider_id=provider,
            cwd=cwd,
            remote=target,
            cols=size.columns,
            rows=size.lines,
            auto_approve=auto_approve,
            initial_prompt=prompt,
            resume=resume,
        )
        result = await supervisor.start_direct(owner, request)
    else:
        provider_def = get_provider(provider) if provider else None
        request = StartLocalRequest(
            id=session_id,
            cwd=cwd,
            remote=target,
            shell=provider_def.cli if provider_def else None,
            cols=size.columns,
            rows=size.lines,
            auto_approve=auto_approve,
            initial_prompt=prompt,
            skip_resume=not resume,
        )
        result = await supervisor.start_local(owner, request)

    if not result.ok:
        typer.echo(f"Error: {result.error}", err=True)
        return 1

    stdin_fd = sys.stdin.fileno()
    saved = termios.tcgetattr(stdin_fd) if os.isatty(stdin_fd) else None

    on_stdin = StdinForwarder(
        stdin_fd,
        lambda text: supervisor.write_input(session_id, text),
        on_eof=lambda: loop.remove_reader(stdin_fd),
    )

    def on_winch() -> None:
        cols, rows = shutil.get_terminal_size()
        supervisor.resize(session_id, cols, rows)

    try:
        if saved is not None:
            tty.setraw(stdin_fd)
        loop.add_reader(stdin_fd, on_stdin)
        loop.add_signal_handler(signal.SIGWINCH, on_winch)
        return await done
    finally:
        loop.remove_reader(stdin_fd)
        loop.remove_signal_handler(signal.SIGWINCH)
        if saved is not None:
            termios.tcsetattr(stdin_fd, termios.TCSADRAIN, saved)
        supervisor.shutdown()
        owner.destroy()


def main() -> None:
    app()


if __name__ == "__main__":
    main()
