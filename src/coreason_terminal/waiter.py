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

from loguru import logger

from coreason_terminal.exceptions import ExecutionError, StreamError, WaitTimeoutError
from coreason_terminal.heuristic import classify
from coreason_terminal.models import Session, WaitResult, WaitStatus
from coreason_terminal.runtime import SandboxController
from coreason_terminal.sanitizer import sanitize

NO_OUTPUT_RUNNING = (
    "Program is running but not producing output yet. "
    "It may be performing a long calculation or waiting for more input."
)
NO_OUTPUT_COMPLETED = "Program completed successfully but produced no output."


class QuiescenceWaiter:
    """Decides when a turn has seen enough output to answer the caller.

    A wait ends on the first of: the input-wait heuristic firing, a silence window
    after some output, the end of the stream, or the absolute timeout. On a timeout
    with nothing received the sandbox is inspected to tell "still computing" apart
    from "exited".
    """

    def __init__(self, controller: SandboxController, silence_window: float = 0.5, exit_grace: float = 2.0):
        self.controller = controller
        self.silence_window = silence_window
        self.exit_grace = exit_grace

    async def wait_for_output(self, session: Session, timeout: float) -> WaitResult:
        """Collect output produced from now until the program pauses.

        Every chunk is appended to the session history as soon as it is read, so a
        cancelled wait never loses output.

        Args:
            session: The session to read from.
            timeout: Absolute budget in seconds.

        Returns:
            WaitResult: The text observed during this wait and why the wait ended.

        Raises:
            ExecutionError: If the program exited nonzero without printing anything.
            StreamError: If the channel failed.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        channel = session.channel
        accumulated: list[str] = []
        received = False

        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            # Only a full silence window counts as quiet; a shorter read is the budget running out.
            wait = min(remaining, self.silence_window) if received else remaining
            try:
                chunk = await channel.read(wait)
            except WaitTimeoutError:
                if received and wait >= self.silence_window:
                    logger.debug("Output went quiet", session_id=session.id)
                    return WaitResult(text="".join(accumulated), status=WaitStatus.QUIESCENT)
                continue

            if chunk is None:
                return await self._on_end_of_stream(session, accumulated)

            received = received or bool(chunk.data)
            text = sanitize(chunk.data, channel.demultiplexed)
            if not text:
                continue
            accumulated.append(text)
            session.append_output(text)

            verdict = classify("".join(accumulated))
            if verdict.waiting_for_input:
                logger.debug("Output looks like an input prompt", session_id=session.id, prompt=verdict.input_prompt)
                return WaitResult(
                    text="".join(accumulated),
                    status=WaitStatus.INPUT_REQUESTED,
                    waiting_for_input=True,
                    input_prompt=verdict.input_prompt,
                )

        if received:
            logger.info(f"Wait budget of {timeout}s spent; returning partial output", session_id=session.id)
            return WaitResult(text="".join(accumulated), status=WaitStatus.PARTIAL)
        return await self._on_silent_timeout(session, timeout)

    async def drain_output(self, session: Session, timeout: float) -> str:
        """Read whatever output is still buffered after the program exited."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        channel = session.channel
        parts: list[str] = []
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            try:
                chunk = await channel.read(remaining)
            except WaitTimeoutError:
                break
            except StreamError as e:
                logger.debug("Stream closed while draining: {}", e, session_id=session.id)
                break
            if chunk is None:
                break
            text = sanitize(chunk.data, channel.demultiplexed)
            if text:
                parts.append(text)
                session.append_output(text)
        return "".join(parts)

    async def _on_silent_timeout(self, session: Session, timeout: float) -> WaitResult:
        status = await self.controller.inspect(session.handle)
        if status.running:
            logger.info(f"No output after {timeout}s but program is still running", session_id=session.id)
            return WaitResult(text=NO_OUTPUT_RUNNING, status=WaitStatus.STILL_RUNNING)
        logger.info(f"Program exited with code {status.exit_code} and no new output", session_id=session.id)
        if not status.exit_code and session.output_history:
            # Nothing new to show; hand back the transcript so the caller sees the program's final output.
            return WaitResult(text=session.output, status=WaitStatus.EXITED, exit_code=status.exit_code, replayed=True)
        return self._exited(session, [], status.exit_code)

    async def _on_end_of_stream(self, session: Session, accumulated: list[str]) -> WaitResult:
        status = await self.controller.wait_for_exit(session.handle, self.exit_grace)
        if status.running:
            logger.warning("Output stream ended while the program is still running", session_id=session.id)
            raise StreamError()
        logger.debug(f"Output stream ended, exit code {status.exit_code}", session_id=session.id)
        return self._exited(session, accumulated, status.exit_code)

    def _exited(self, session: Session, accumulated: list[str], exit_code: int | None) -> WaitResult:
        text = "".join(accumulated)
        if exit_code and not text:
            raise ExecutionError(exit_code)
        if not text and not session.output_history:
            text = NO_OUTPUT_COMPLETED
        return WaitResult(text=text, status=WaitStatus.EXITED, exit_code=exit_code)
