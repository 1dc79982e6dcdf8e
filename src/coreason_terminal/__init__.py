# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

"""
coreason-terminal
"""

__version__ = "0.1.0"
__author__ = "Gowtham A Rao"
__email__ = "gowtham.rao@coreason.ai"

from .config import TerminalConfig
from .exceptions import (
    AttachError,
    CallerTimeoutError,
    CreationError,
    ExecutionError,
    InvalidRequestError,
    SessionExpiredError,
    SessionNotFoundError,
    StreamError,
    TerminalError,
    UnsupportedLanguageError,
    WaitTimeoutError,
)
from .models import Session, SessionState, TerminalResponse
from .orchestrator import TerminalService
from .runtime import SandboxChannel, SandboxController, SandboxHandle
from .runtimes.docker import DockerController
from .session_manager import SessionManager

__all__ = [
    "AttachError",
    "CallerTimeoutError",
    "CreationError",
    "DockerController",
    "ExecutionError",
    "InvalidRequestError",
    "SandboxChannel",
    "SandboxController",
    "SandboxHandle",
    "Session",
    "SessionExpiredError",
    "SessionManager",
    "SessionNotFoundError",
    "SessionState",
    "StreamError",
    "TerminalConfig",
    "TerminalError",
    "TerminalResponse",
    "TerminalService",
    "UnsupportedLanguageError",
    "WaitTimeoutError",
]
