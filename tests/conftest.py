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
from collections.abc import Callable
from typing import Any

import pytest
from coreason_terminal.config import TerminalConfig
from coreason_terminal.exceptions import StreamError, WaitTimeoutError
from coreason_terminal.models import SandboxStatus
from coreason_terminal.runtime import OutputChunk, SandboxChannel, SandboxController, SandboxHandle, StreamKind


class FakeChannel(SandboxChannel):
    """In-memory channel: tests push chunks, the code under test reads them."""

    def __init__(self, demultiplexed: bool = True):
        self.demultiplexed = demultiplexed
        self.queue: asyncio.Queue[OutputChunk | BaseException | None] = asyncio.Queue()
        self.written: list[bytes] = []
        self.closed = False
        self._eof = False

    def emit(self, data: bytes | str, stream: StreamKind = StreamKind.STDOUT) -> None:
        if isinstance(data, str):
            data = data.encode("utf-8")
        self.queue.put_nowait(OutputChunk(stream, data))

    def end(self) -> None:
        self.queue.put_nowait(None)

    def fail(self, error: BaseException | None = None) -> None:
        self.queue.put_nowait(error or StreamError())

    async def read(self, timeout: float | None = None) -> OutputChunk | None:
        if self._eof:
            return None
        try:
            item = await asyncio.wait_for(self.queue.get(), timeout)
        except TimeoutError as e:
            raise WaitTimeoutError(f"No output within {timeout}s") from e
        if item is None:
            self._eof = True
            return None
        if isinstance(item, BaseException):
            raise item
        return item

    async def write(self, data: bytes) -> None:
        if self.closed:
            raise StreamError("Input channel is closed. Please run your code again.")
        self.written.append(data)

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.end()


class FakeController(SandboxController):
    """Scriptable controller standing in for a container runtime.

    ``script`` sets what the next program prints right after it is attached and
    whether it exits; ``on_input`` reacts to each line written to stdin.
    """

    def __init__(self) -> None:
        self.sources: list[str] = []
        self.handles: list[SandboxHandle] = []
        self.statuses: dict[str, SandboxStatus] = {}
        self.inputs: list[str] = []
        self.destroy_calls = 0
        self.create_error: Exception | None = None
        self.attach_error: Exception | None = None
        self.write_error: Exception | None = None
        self.inspect_error: Exception | None = None
        self.destroy_error: Exception | None = None
        self.cleanup_error: Exception | None = None
        self.orphans: list[str] = []
        self.on_input: Callable[[SandboxHandle, str], None] | None = None
        self._script: tuple[tuple[bytes | str, ...], int | None] = ((), None)

    def script(self, *outputs: bytes | str, exit_code: int | None = None) -> None:
        self._script = (outputs, exit_code)

    def channel(self, handle: SandboxHandle) -> FakeChannel:
        assert isinstance(handle.channel, FakeChannel)
        return handle.channel

    def emit(self, handle: SandboxHandle, data: bytes | str) -> None:
        self.channel(handle).emit(data)

    def exit(self, handle: SandboxHandle, exit_code: int = 0, close_stream: bool = True) -> None:
        self.statuses[handle.sandbox_id] = SandboxStatus(running=False, exit_code=exit_code)
        if close_stream:
            self.channel(handle).end()

    async def create(self, source_text: str) -> SandboxHandle:
        if self.create_error is not None:
            raise self.create_error
        self.sources.append(source_text)
        handle = SandboxHandle(sandbox_id=f"sbx-{len(self.handles) + 1}")
        self.handles.append(handle)
        self.statuses[handle.sandbox_id] = SandboxStatus(running=True)
        return handle

    async def attach(self, handle: SandboxHandle) -> FakeChannel:
        if self.attach_error is not None:
            raise self.attach_error
        channel = FakeChannel()
        handle.channel = channel
        outputs, exit_code = self._script
        for output in outputs:
            channel.emit(output)
        if exit_code is not None:
            self.exit(handle, exit_code)
        self._script = ((), None)
        return channel

    async def write_input(self, handle: SandboxHandle, text: str) -> None:
        if self.write_error is not None:
            raise self.write_error
        if handle.channel is None:
            raise StreamError("Sandbox is not attached. Please run your code again.")
        await handle.channel.write(f"{text}\n".encode("utf-8"))
        self.inputs.append(text)
        if self.on_input is not None:
            self.on_input(handle, text)

    async def inspect(self, handle: SandboxHandle) -> SandboxStatus:
        if self.inspect_error is not None:
            raise self.inspect_error
        return self.statuses[handle.sandbox_id]

    async def destroy(self, handle: SandboxHandle) -> None:
        self.destroy_calls += 1
        if self.destroy_error is not None:
            raise self.destroy_error
        handle.destroyed = True
        self.statuses[handle.sandbox_id] = SandboxStatus(running=False, exit_code=137)
        if handle.channel is not None:
            await handle.channel.close()

    async def cleanup_orphans(self) -> list[str]:
        if self.cleanup_error is not None:
            raise self.cleanup_error
        return list(self.orphans)


@pytest.fixture
def fake_controller() -> FakeController:
    return FakeController()


@pytest.fixture
def make_config() -> Callable[..., TerminalConfig]:
    def _make(**overrides: Any) -> TerminalConfig:
        values: dict[str, Any] = {
            "initial_wait_timeout": 0.5,
            "input_wait_timeout": 0.5,
            "poll_wait_timeout": 0.5,
            "silence_window": 0.05,
            "exit_grace": 0.1,
            "drain_timeout": 0.05,
            "request_timeout": 5.0,
        }
        values.update(overrides)
        return TerminalConfig(**values)

    return _make
