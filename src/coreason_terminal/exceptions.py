# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

"""Error taxonomy for interactive sandbox sessions.

Every error raised across the package boundary derives from ``TerminalError`` and
carries a ``retryable`` hint so callers can decide between retrying the same
session and starting a new run.
"""


class TerminalError(Exception):
    """Base class for all interactive sandbox errors."""

    retryable: bool = False


class CreationError(TerminalError):
    """The sandbox could not be created or started. No session was registered."""


class AttachError(TerminalError):
    """The sandbox started but its I/O channel could not be attached."""


class StreamError(TerminalError):
    """The sandbox channel failed mid-session. The session has been torn down."""

    def __init__(self, message: str = "Lost connection to the running program. Please run your code again."):
        super().__init__(message)


class SessionNotFoundError(TerminalError):
    """The referenced session does not exist or has already been reclaimed."""

    def __init__(self, session_id: str, message: str | None = None):
        self.session_id = session_id
        super().__init__(message or f"Session {session_id} not found or expired. Please run your code again.")


class SessionExpiredError(SessionNotFoundError):
    """The referenced session was reclaimed by the fixed-lifetime expiry."""

    def __init__(self, session_id: str):
        super().__init__(session_id, f"Session {session_id} expired. Please run your code again.")


class WaitTimeoutError(TerminalError, TimeoutError):
    """A server-side read on the sandbox channel timed out. The session stays alive."""

    retryable = True


class CallerTimeoutError(TerminalError):
    """The orchestrator's own call budget elapsed before the turn completed.

    The session is left running so a later ``poll`` can collect its output. ``output``
    holds what the turn had already read, since the next poll only returns newer text.
    """

    retryable = True

    def __init__(self, session_id: str, timeout: float, output: str = ""):
        self.session_id = session_id
        self.timeout = timeout
        self.output = output
        super().__init__(f"Request for session {session_id} exceeded {timeout}s. The program is still running.")


class ExecutionError(TerminalError):
    """The sandboxed program exited with a nonzero status."""

    def __init__(self, exit_code: int):
        self.exit_code = exit_code
        super().__init__(f"Program exited with code {exit_code}")


class UnsupportedLanguageError(TerminalError):
    """The requested language does not match the sandbox runtime."""

    def __init__(self, language: str, supported: str):
        self.language = language
        self.supported = supported
        super().__init__(f"Unsupported language: {language}. Currently only {supported} is supported.")


class InvalidRequestError(TerminalError):
    """The request payload is malformed."""


class InvalidTransitionError(TerminalError):
    """A session state change outside the allowed transition table was attempted."""

    def __init__(self, from_state: object, to_state: object):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition from {from_state} to {to_state}")
