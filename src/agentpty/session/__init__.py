"""Session bookkeeping: ids, registry, owners, run tracking and events."""

from agentpty.session.ids import is_chat_pty, make_pty_id, parse_pty_id
from agentpty.session.lifecycle import FinishCause, RunTracker
from agentpty.session.owner import OwnerChannel, QueueOwner
from agentpty.session.registry import SessionRegistry, SpawnKind
from agentpty.session.wire import EventType, Wire, WireEvent

__all__ = [
    "is_chat_pty",
    "make_pty_id",
    "parse_pty_id",
    "FinishCause",
    "RunTracker",
    "OwnerChannel",
    "QueueOwner",
    "SessionRegistry",
    "SpawnKind",
    "EventType",
    "Wire",
    "WireEvent",
]
