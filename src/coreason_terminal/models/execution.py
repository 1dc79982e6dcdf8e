# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

"""Request, response and value models for interactive execution."""

from enum import StrEnum

from pydantic import BaseModel, Field

from coreason_terminal.models.session import SessionState


class RunRequest(BaseModel):
    """A new submission to execute."""

    code: str = Field(..., min_length=1, description="The program source text.")
    language: str = Field("python", description="The runtime the program targets.")


class InputRequest(BaseModel):
    """A line of stdin for an existing session."""

    session_id: str = Field(..., min_length=1)
    input: str = Field(..., description="Text to send; a newline terminator is appended.")


class SessionRequest(BaseModel):
    """A request that only references an existing session (poll, cancel)."""

    session_id: str = Field(..., min_length=1)


class TerminalResponse(BaseModel):
    """
    The payload returned to the caller after each turn.

    ``session_id`` is only set while the session is still live, so callers can use
    its presence to decide whether to keep the terminal open.
    """

    output: str = Field("", description="Text observed during this turn.")
    session_id: str | None = None
    waiting_for_input: bool = False
    input_prompt: str | None = None
    state: SessionState
    exit_code: int | None = None
    execution_duration: float = Field(0.0, description="Seconds spent serving this turn.")


class SandboxStatus(BaseModel):
    """Liveness of a sandbox as reported by the runtime."""

    running: bool
    exit_code: int | None = None


class WaitStatus(StrEnum):
    INPUT_REQUESTED = "input_requested"
    QUIESCENT = "quiescent"
    PARTIAL = "partial"
    EXITED = "exited"
    STILL_RUNNING = "still_running"


class WaitResult(BaseModel):
    """Outcome of one quiescence wait."""

    text: str
    status: WaitStatus
    waiting_for_input: bool = False
    input_prompt: str | None = None
    exit_code: int | None = None
    # Text is the session history resent, not output produced during this wait.
    replayed: bool = False
