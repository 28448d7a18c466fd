"""Built-in coding-agent CLI providers.

Each entry describes how a provider's CLI is invoked. User overrides are
layered on top by ``agentpty.providers.invocation``.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from agentpty.shell import bare_command_name


@dataclass(frozen=True)
class ProviderDefinition:
    """Static description of a coding-agent CLI."""

    id: str
    name: str
    cli: str
    install_command: str | None = None
    resume_flag: str | None = None
    default_args: tuple[str, ...] = field(default_factory=tuple)
    auto_approve_flag: str | None = None
    # None: prompts are never passed on argv. "": prompt is positional.
    initial_prompt_flag: str | None = None
    use_keystroke_injection: bool = False
    session_id_flag: str | None = None


_PROVIDERS: tuple[ProviderDefinition, ...] = (
    ProviderDefinition(
        id="claude",
        name="Claude Code",
        cli="claude",
        install_command="npm install -g @anthropic-ai/claude-code",
        resume_flag="-c -r",
        auto_approve_flag="--dangerously-skip-permissions",
        initial_prompt_flag="",
        session_id_flag="--session-id",
    ),
    ProviderDefinition(
        id="codex",
        name="Codex",
        cli="codex",
        install_command="npm install -g @openai/codex",
        resume_flag="resume --last",
        auto_approve_flag="--dangerously-bypass-approvals-and-sandbox",
        initial_prompt_flag="",
    ),
    ProviderDefinition(
        id="gemini",
        name="Gemini",
        cli="gemini",
        install_command="npm install -g @google/gemini-cli",
        resume_flag="--resume",
        auto_approve_flag="--yolo",
        initial_prompt_flag="-i",
    ),
    ProviderDefinition(
        id="qwen",
        name="Qwen Code",
        cli="qwen",
        install_command="npm install -g @qwen-code/qwen-code",
        auto_approve_flag="--yolo",
        initial_prompt_flag="-i",
    ),
    ProviderDefinition(
        id="amp",
        name="Amp",
        cli="amp",
        install_command="npm install -g @sourcegraph/amp",
        auto_approve_flag="--dangerously-allow-all",
        use_keystroke_injection=True,
    ),
    ProviderDefinition(
        id="opencode",
        name="OpenCode",
        cli="opencode",
        install_command="npm install -g opencode-ai",
        resume_flag="--continue",
        initial_prompt_flag="--prompt",
    ),
    ProviderDefinition(
        id="aider",
        name="Aider",
        cli="aider",
        install_command="python -m pip install aider-install && aider-install",
        auto_approve_flag="--yes-always",
        initial_prompt_flag="--message",
    ),
    ProviderDefinition(
        id="cursor",
        name="Cursor CLI",
        cli="cursor-agent",
        install_command="curl https://cursor.com/install -fsS | bash",
        resume_flag="resume",
        auto_approve_flag="-f",
        initial_prompt_flag="",
    ),
    ProviderDefinition(
        id="copilot",
        name="GitHub Copilot",
        cli="copilot",
        install_command="npm install -g @github/copilot",
        resume_flag="--continue",
        auto_approve_flag="--allow-all-tools",
        use_keystroke_injection=True,
    ),
)

PROVIDERS: dict[str, ProviderDefinition] = {p.id: p for p in _PROVIDERS}
PROVIDER_IDS: tuple[str, ...] = tuple(PROVIDERS)


def get_provider(provider_id: str | None) -> ProviderDefinition | None:
    """Look up a provider by id."""
    if not provider_id:
        return None
    return PROVIDERS.get(provider_id)


def get_provider_by_cli(command: str | None) -> ProviderDefinition | None:
    """Look up a provider whose CLI token matches ``command``.

    Matches on the executable's base name so ``/usr/local/bin/claude`` and
    ``codex.cmd`` both resolve.
    """
    if not command:
        return None
    first = command.strip().split()[0] if command.strip() else ""
    name = bare_command_name(first)
    for provider in _PROVIDERS:
        if provider.cli == name:
            return provider
    return None


def is_valid_provider_id(provider_id: str | None) -> bool:
    return provider_id in PROVIDERS
