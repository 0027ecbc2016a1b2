"""
Stream events - what a reader of a generation session receives.

Sequence numbers are strictly increasing per session and survive restarts
(the highest delivered number is stored on the session), so a client can
resume from the last `seq` it saw.

Event types:
- pass_started   {"passes_total"}
- chunk          {"text"}                 incremental HTML of the running pass
- pass_complete  {"passes_completed"}     marker only, the HTML was in the chunks;
                                         edits add {"html", "blocks_applied"}
- snapshot       {"html"}                 full pass result, sent on resume only
- complete       terminal
- failed         terminal, {"error": {code, message}}
- interrupted    terminal (explicit cancel or expired resume window)
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class EventType(str, Enum):
    PASS_STARTED = "pass_started"
    CHUNK = "chunk"
    PASS_COMPLETE = "pass_complete"
    SNAPSHOT = "snapshot"
    COMPLETE = "complete"
    FAILED = "failed"
    INTERRUPTED = "interrupted"


TERMINAL_EVENTS = {EventType.COMPLETE, EventType.FAILED, EventType.INTERRUPTED}


@dataclass(frozen=True)
class StreamEvent:
    seq: int
    type: EventType
    pass_number: Optional[int] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_EVENTS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "seq": self.seq,
            "type": self.type.value,
            "pass": self.pass_number,
            **self.data,
        }

    def to_sse(self) -> str:
        """Server-Sent Events frame."""
        return (
            f"id: {self.seq}\n"
            f"event: {self.type.value}\n"
            f"data: {json.dumps(self.to_dict())}\n\n"
        )


class Sequencer:
    """Hands out the next sequence number and remembers the last one delivered."""

    def __init__(self, start: int):
        self._next = start
        self.delivered = start - 1

    def next(self) -> int:
        seq = self._next
        self._next += 1
        return seq

    def event(
        self,
        type: EventType,
        pass_number: Optional[int] = None,
        seq: Optional[int] = None,
        **data: Any,
    ) -> StreamEvent:
        return StreamEvent(
            seq=self.next() if seq is None else seq,
            type=type,
            pass_number=pass_number,
            data=data,
        )
