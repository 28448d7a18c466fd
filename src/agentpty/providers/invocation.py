"""Provider invocation builder.

Turns a provider id plus per-start flags (resume, auto-approve, initial
prompt) into the CLI token and argument list, honouring user overrides.

Token order is fixed::

    <resume flag> <default args> <extra args> <auto-approve flag> [<prompt flag>] <prompt>
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from pydantic import BaseModel, Field, field_validator

from agentpty.providers.registry import ProviderDefinition, get_provider
from agentpty.shell import join_command, parse_shell_args

logger = logging.getLogger(__name__)

_ENV_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class ProviderOverrides(BaseModel):
    """User-level overrides for a provider.

    ``None`` means "use the provider default". An empty string disables a
    flag. ``cli`` never resolves to empty.
    """

    cli: str | None = None
    resume_flag: str | None = None
    default_args: str | None = None
    auto_approve_flag: str | None = None
    initial_prompt_flag: str | None = None
    extra_args: str | None = None
    env: dict[str, str] | None = Field(default=None)

    @field_validator("env")
    @classmethod
    def _drop_invalid_env_keys(cls, value: dict[str, str] | None) -> dict[str, str] | None:
        if not value:
            return None
        cleaned = {k: v for k, v in value.items() if _ENV_KEY_RE.match(k)}
        return cleaned or None


@dataclass(frozen=True)
class ResolvedProviderConfig:
    """Provider defaults merged with overrides, field by field."""

    provider: ProviderDefinition | None
    cli: str
    resume_flag: str | None
    default_args: tuple[str, ...]
    extra_args: tuple[str, ...]
    auto_approve_flag: str | None
    initial_prompt_flag: str | None
    use_keystroke_injection: bool
    env: dict[str, str] = field(default_factory=dict)

    @property
    def cli_parts(self) -> list[str]:
        """The CLI token split into words (a custom CLI may carry arguments)."""
        parts = parse_shell_args(self.cli)
        return parts or [self.cli]


@dataclass(frozen=True)
class InvocationFlags:
    resume: bool = False
    auto_approve: bool = False
    initial_prompt: str | None = None


@dataclass(frozen=True)
class Invocation:
    """A resolved CLI invocation: ``cli`` plus unquoted ``args``."""

    cli: str
    args: list[str]
    env: dict[str, str] = field(default_factory=dict)
    install_command: str | None = None

    @property
    def argv(self) -> list[str]:
        return [*(parse_shell_args(self.cli) or [self.cli]), *self.args]

    def command_line(self) -> str:
        """Every token single-quoted, safe to paste into a POSIX shell."""
        return join_command(self.argv)


def resolve_provider_command_config(
    provider_id: str,
    overrides: ProviderOverrides | None = None,
) -> ResolvedProviderConfig:
    """Merge provider defaults with ``overrides``."""
    provider = get_provider(provider_id)
    o = overrides or ProviderOverrides()

    def pick(override: str | None, default: str | None) -> str | None:
        return default if override is None else override

    cli = (o.cli or "").strip() or (provider.cli if provider else "") or provider_id.lower()
    if o.default_args is not None:
        default_args = tuple(parse_shell_args(o.default_args))
    else:
        default_args = provider.default_args if provider else ()

    return ResolvedProviderConfig(
        provider=provider,
        cli=cli.strip(),
        resume_flag=pick(o.resume_flag, provider.resume_flag if provider else None),
        default_args=default_args,
        extra_args=tuple(parse_shell_args(o.extra_args)),
        auto_approve_flag=pick(
            o.auto_approve_flag, provider.auto_approve_flag if provider else None
        ),
        initial_prompt_flag=pick(
            o.initial_prompt_flag, provider.initial_prompt_flag if provider else None
        ),
        use_keystroke_injection=bool(provider and provider.use_keystroke_injection),
        env=dict(o.env or {}),
    )


def build_provider_cli_args(
    *,
    resume: bool = False,
    resume_flag: str | None = None,
    default_args: tuple[str, ...] | list[str] = (),
    extra_args: tuple[str, ...] | list[str] = (),
    auto_approve: bool = False,
    auto_approve_flag: str | None = None,
    initial_prompt: str | None = None,
    initial_prompt_flag: str | None = None,
    use_keystroke_injection: bool = False,
) -> list[str]:
    """Build the argument list in the fixed token order.

    The prompt is appended raw; quoting happens when the list is rendered
    into a command line.
    """
    args: list[str] = []
    if resume and resume_flag:
        args.extend(parse_shell_args(resume_flag))
    args.extend(default_args)
    args.extend(extra_args)
    if auto_approve and auto_approve_flag:
        args.extend(parse_shell_args(auto_approve_flag))
    prompt = (initial_prompt or "").strip()
    if initial_prompt_flag is not None and not use_keystroke_injection and prompt:
        if initial_prompt_flag:
            args.extend(parse_shell_args(initial_prompt_flag))
        args.append(prompt)
    return args


def build_invocation(
    provider_id: str,
    flags: InvocationFlags | None = None,
    overrides: ProviderOverrides | None = None,
) -> Invocation:
    """Resolve ``provider_id`` + ``flags`` into an :class:`Invocation`."""
    flags = flags or InvocationFlags()
    resolved = resolve_provider_command_config(provider_id, overrides)
    args = build_provider_cli_args(
        resume=flags.resume,
        resume_flag=resolved.resume_flag,
        default_args=resolved.default_args,
        extra_args=resolved.extra_args,
        auto_approve=flags.auto_approve,
        auto_approve_flag=resolved.auto_approve_flag,
        initial_prompt=flags.initial_prompt,
        initial_prompt_flag=resolved.initial_prompt_flag,
        use_keystroke_injection=resolved.use_keystroke_injection,
    )
    logger.debug("Invocation for %s: cli=%s args=%d", provider_id, resolved.cli, len(args))
    return Invocation(
        cli=resolved.cli,
        args=args,
        env=resolved.env,
        install_command=resolved.provider.install_command if resolved.provider else None,
    )
