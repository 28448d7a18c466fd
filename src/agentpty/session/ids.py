"""Session ids: ``<provider>:<context>:<suffix>``.

``context`` is ``main`` for a task's primary agent terminal and ``chat``
for any additional chat terminal opened on the same task.
"""

from __future__ import annotations

from dataclasses import dataclass

from agentpty.providers.registry import is_valid_provider_id

MAIN_CONTEXT = "main"
CHAT_CONTEXT = "chat"
PTY_CONTEXTS = (MAIN_CONTEXT, CHAT_CONTEXT)


@dataclass(frozen=True)
class PtyId:
    provider_id: str
    context: str
    suffix: str

    def __str__(self) -> str:
        return f"{self.provider_id}:{self.context}:{self.suffix}"


def make_pty_id(provider_id: str, context: str, suffix: str) -> str:
    if not is_valid_provider_id(provider_id):
        raise ValueError(f"Unknown provider: {provider_id}")
    if context not in PTY_CONTEXTS:
        raise ValueError(f"Unknown pty context: {context}")
    if not suffix:
        raise ValueError("Session id suffix must not be empty")
    return str(PtyId(provider_id, context, suffix))


def parse_pty_id(pty_id: str) -> PtyId | None:
    """Parse a session id. Returns ``None`` for plain shells and malformed ids."""
    parts = pty_id.split(":", 2)
    if len(parts) != 3:
        return None
    provider_id, context, suffix = parts
    if not is_valid_provider_id(provider_id) or context not in PTY_CONTEXTS or not suffix:
        return None
    return PtyId(provider_id, context, suffix)


def is_chat_pty(pty_id: str) -> bool:
    parsed = parse_pty_id(pty_id)
    return parsed is not None and parsed.context == CHAT_CONTEXT
