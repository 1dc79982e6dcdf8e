# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

import asyncio
import hashlib
import time
from typing import TypeVar

from loguru import logger
from pydantic import BaseModel, ValidationError

from coreason_terminal.config import TerminalConfig
from coreason_terminal.exceptions import (
    CallerTimeoutError,
    ExecutionError,
    InvalidRequestError,
    SessionNotFoundError,
    StreamError,
    UnsupportedLanguageError,
)
from coreason_terminal.heuristic import classify
from coreason_terminal.models import (
    InputRequest,
    RunRequest,
    Session,
    SessionRequest,
    SessionState,
    TerminalResponse,
    WaitResult,
    WaitStatus,
)
from coreason_terminal.session_manager import SessionManager
from coreason_terminal.waiter import QuiescenceWaiter

RequestT = TypeVar("RequestT", bound=BaseModel)


class TerminalService:
    """
    Entry point for interactive runs.
    Routes "new run", "send input", "poll" and "cancel" requests onto sessions.
    """

    def __init__(self, config: TerminalConfig | None = None, sessions: SessionManager | None = None):
        self.config = config or TerminalConfig()
        self.sessions = sessions or SessionManager(self.config)
        self.waiter = QuiescenceWaiter(
            self.sessions.controller,
            silence_window=self.config.silence_window,
            exit_grace=self.config.exit_grace,
        )

    async def start(self) -> None:
        await self.sessions.start()

    async def shutdown(self) -> None:
        await self.sessions.shutdown()

    async def run(self, code: str, language: str = "python") -> TerminalResponse:
        """Start a new program and return its first batch of output.

        Raises:
            InvalidRequestError: If ``code`` is empty.
            UnsupportedLanguageError: If ``language`` is not the sandbox runtime.
            CreationError: If the sandbox could not be started.
            AttachError: If the sandbox could not be attached.
        """
        request = _validate(RunRequest, code=code, language=language)
        if request.language.strip().lower() != self.config.language:
            raise UnsupportedLanguageError(request.language, self.config.language)

        started = time.monotonic()
        logger.info(
            "Starting new run",
            language=request.language,
            code_hash=hashlib.sha256(request.code.encode("utf-8")).hexdigest(),
            code_length=len(request.code),
        )
        session = await self.sessions.create(request.code)
        async with session.lock:
            return await self._serve_turn(session, self.config.initial_wait_timeout, started)

    async def send_input(self, session_id: str, text: str) -> TerminalResponse:
        """Write one line to the program's stdin and return what it prints next.

        The line is echoed into the session history, as a terminal would show it.

        Raises:
            SessionNotFoundError: If the session is unknown, finished or expired.
            StreamError: If the write failed. The session is torn down.
        """
        request = _validate(InputRequest, session_id=session_id, input=text)
        session = self.sessions.get(request.session_id)
        async with session.lock:
            # The session may have ended while this request waited for the lock.
            session = self.sessions.get(request.session_id)
            started = time.monotonic()
            session.transition(SessionState.PROCESSING)
            logger.debug("Sending input", session_id=session.id, input_length=len(request.input))
            try:
                await self.sessions.controller.write_input(session.handle, request.input)
            except StreamError:
                await self._abandon(session)
                raise
            echo = f"{request.input}\n"
            session.append_output(echo)
            return await self._serve_turn(session, self.config.input_wait_timeout, started, echo)

    async def poll(self, session_id: str) -> TerminalResponse:
        """Collect more output without sending input."""
        request = _validate(SessionRequest, session_id=session_id)
        session = self.sessions.get(request.session_id)
        async with session.lock:
            session = self.sessions.get(request.session_id)
            return await self._serve_turn(session, self.config.poll_wait_timeout, time.monotonic())

    async def cancel(self, session_id: str) -> bool:
        """Tear the session down immediately, whatever it is doing.

        Raises:
            SessionNotFoundError: If the session is unknown or already gone.
        """
        request = _validate(SessionRequest, session_id=session_id)
        self.sessions.get(request.session_id)
        logger.info("Cancelling session", session_id=request.session_id)
        removed = await self.sessions.remove(request.session_id, SessionState.CANCELLED)
        if not removed:
            raise SessionNotFoundError(request.session_id)
        return True

    async def _serve_turn(self, session: Session, timeout: float, started: float, echo: str = "") -> TerminalResponse:
        mark = len(session.output_history)
        try:
            result = await asyncio.wait_for(self.waiter.wait_for_output(session, timeout), self.config.request_timeout)
        except TimeoutError as e:
            self._ensure_live(session)
            logger.warning(f"Turn exceeded request budget of {self.config.request_timeout}s", session_id=session.id)
            # Chunks read so far are already in the history and would not be returned by the next poll.
            output = echo + "".join(session.output_history[mark:])
            raise CallerTimeoutError(session.id, self.config.request_timeout, output=output) from e
        except ExecutionError as e:
            self._ensure_live(session)
            session.exit_code = e.exit_code
            session.transition(SessionState.FAILED)
            await self.sessions.remove(session.id)
            raise
        except StreamError:
            self._ensure_live(session)
            await self._abandon(session)
            raise

        self._ensure_live(session)
        exit_code = result.exit_code
        exited = result.status == WaitStatus.EXITED
        if result.status in (WaitStatus.QUIESCENT, WaitStatus.PARTIAL):
            try:
                status = await self.sessions.controller.inspect(session.handle)
                if not status.running:
                    result.text += await self.waiter.drain_output(session, self.config.drain_timeout)
                    exited, exit_code = True, status.exit_code
            except StreamError:
                self._ensure_live(session)
                await self._abandon(session)
                raise

        output = result.text if result.replayed else echo + result.text
        if exited:
            session.exit_code = exit_code
            session.transition(SessionState.FAILED if exit_code else SessionState.COMPLETED)
            await self.sessions.remove(session.id)
            return self._respond(session, output, started)

        waiting, prompt = self._settle(session, result)
        return self._respond(session, output, started, waiting, prompt)

    def _settle(self, session: Session, result: WaitResult) -> tuple[bool, str | None]:
        if result.waiting_for_input:
            session.transition(SessionState.AWAITING_INPUT)
            return True, result.input_prompt
        if result.status == WaitStatus.STILL_RUNNING and session.state == SessionState.AWAITING_INPUT:
            # Nothing new arrived; the earlier prompt is still outstanding.
            verdict = classify(session.output)
            return verdict.waiting_for_input, verdict.input_prompt
        session.transition(SessionState.AWAITING_OUTPUT)
        return False, None

    def _respond(
        self,
        session: Session,
        output: str,
        started: float,
        waiting_for_input: bool = False,
        input_prompt: str | None = None,
    ) -> TerminalResponse:
        live = not session.is_terminal
        logger.debug(
            "Turn complete",
            session_id=session.id,
            state=str(session.state),
            output_length=len(output),
            waiting_for_input=waiting_for_input,
        )
        return TerminalResponse(
            output=output,
            session_id=session.id if live else None,
            waiting_for_input=waiting_for_input,
            input_prompt=input_prompt,
            state=session.state,
            exit_code=session.exit_code,
            execution_duration=time.monotonic() - started,
        )

    def _ensure_live(self, session: Session) -> None:
        """Raise not-found if the session was cancelled or expired during the turn."""
        if session.torn_down:
            self.sessions.get(session.id)

    async def _abandon(self, session: Session) -> None:
        if not session.is_terminal:
            session.transition(SessionState.FAILED)
        await self.sessions.remove(session.id)


def _validate(model: type[RequestT], **data: object) -> RequestT:
    try:
        return model(**data)
    except ValidationError as e:
        details = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())
        raise InvalidRequestError(f"Invalid request: {details}") from e
