# src/coreason_terminal/models/__init__.py

"""
Data models for interactive sandbox sessions.
"""

from .execution import (
    InputRequest,
    RunRequest,
    SandboxStatus,
    SessionRequest,
    TerminalResponse,
    WaitResult,
    WaitStatus,
)
from .session import Session, SessionState

__all__ = [
    "InputRequest",
    "RunRequest",
    "SandboxStatus",
    "Session",
    "SessionRequest",
    "SessionState",
    "TerminalResponse",
    "WaitResult",
    "WaitStatus",
]
