# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

"""Session record and its state machine."""

import asyncio
import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from coreason_terminal.exceptions import InvalidTransitionError

if TYPE_CHECKING:
    from coreason_terminal.runtime import SandboxChannel, SandboxHandle


class SessionState(StrEnum):
    """
    Lifecycle states of an interactive session.

        CREATING
           │
           ▼
        AWAITING_OUTPUT ──► PROCESSING ◄──► AWAITING_INPUT
           │                    │                 │
           └──────────┬─────────┴─────────────────┘
                      ▼
             COMPLETED | FAILED

    EXPIRED and CANCELLED are reachable from every non-terminal state.
    """

    CREATING = "creating"
    AWAITING_OUTPUT = "awaiting_output"
    AWAITING_INPUT = "awaiting_input"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset(
    {SessionState.COMPLETED, SessionState.FAILED, SessionState.EXPIRED, SessionState.CANCELLED}
)

_RUNNING_STATES = (
    SessionState.AWAITING_OUTPUT,
    SessionState.AWAITING_INPUT,
    SessionState.PROCESSING,
)

VALID_TRANSITIONS: frozenset[tuple[SessionState, SessionState]] = frozenset(
    {
        (SessionState.CREATING, SessionState.AWAITING_OUTPUT),
        (SessionState.CREATING, SessionState.FAILED),
        (SessionState.AWAITING_OUTPUT, SessionState.AWAITING_INPUT),
        (SessionState.AWAITING_OUTPUT, SessionState.PROCESSING),
        (SessionState.AWAITING_INPUT, SessionState.PROCESSING),
        (SessionState.AWAITING_INPUT, SessionState.AWAITING_OUTPUT),
        (SessionState.PROCESSING, SessionState.AWAITING_INPUT),
        (SessionState.PROCESSING, SessionState.AWAITING_OUTPUT),
    }
    | {(state, end) for state in _RUNNING_STATES for end in (SessionState.COMPLETED, SessionState.FAILED)}
    | {
        (state, end)
        for state in (SessionState.CREATING, *_RUNNING_STATES)
        for end in (SessionState.EXPIRED, SessionState.CANCELLED)
    }
)


def is_valid_transition(from_state: SessionState, to_state: SessionState) -> bool:
    """Self-transitions of non-terminal states are no-ops and always valid."""
    if from_state == to_state:
        return not from_state.is_terminal
    return (from_state, to_state) in VALID_TRANSITIONS


@dataclass
class Session:
    """One running program and everything it owns."""

    id: str
    handle: "SandboxHandle"
    created_at: float
    last_activity_at: float
    state: SessionState = SessionState.CREATING
    output_history: list[str] = field(default_factory=list)
    exit_code: int | None = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    expiry_timer: asyncio.TimerHandle | None = None
    torn_down: bool = False

    @property
    def channel(self) -> "SandboxChannel":
        if self.handle.channel is None:
            raise RuntimeError(f"Session {self.id} has no attached channel")
        return self.handle.channel

    @property
    def output(self) -> str:
        return "".join(self.output_history)

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def append_output(self, text: str) -> None:
        if not text:
            return
        self.output_history.append(text)
        self.last_activity_at = time.time()

    def transition(self, new_state: SessionState) -> None:
        if not is_valid_transition(self.state, new_state):
            raise InvalidTransitionError(self.state, new_state)
        self.state = new_state
