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
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import IntEnum

from coreason_terminal.models import SandboxStatus


class StreamKind(IntEnum):
    """Stream tags used by multiplexed attach streams."""

    STDIN = 0
    STDOUT = 1
    STDERR = 2
    RAW = 255  # Not demultiplexed; may still carry frame headers


@dataclass(frozen=True)
class OutputChunk:
    stream: StreamKind
    data: bytes


class SandboxChannel(ABC):
    """
    Duplex byte channel to a running sandbox.

    Output is consumed through an explicit awaitable ``read``; there is exactly one
    reader at a time (the session lock guarantees it), so chunks are observed in the
    order the sandbox delivered them.
    """

    demultiplexed: bool = True

    @abstractmethod
    async def read(self, timeout: float | None = None) -> OutputChunk | None:
        """Wait for the next chunk of output.

        Args:
            timeout: Seconds to wait. ``None`` waits indefinitely.

        Returns:
            OutputChunk | None: The next chunk, or ``None`` once the stream has ended.

        Raises:
            WaitTimeoutError: If no chunk arrived within ``timeout``.
            StreamError: If the underlying connection failed.
        """
        pass  # pragma: no cover

    @abstractmethod
    async def write(self, data: bytes) -> None:
        """Write raw bytes to the sandbox's stdin.

        Raises:
            StreamError: If the channel is closed or the write failed.
        """
        pass  # pragma: no cover

    @abstractmethod
    async def close(self) -> None:
        """Close the channel. Safe to call more than once."""
        pass  # pragma: no cover


@dataclass
class SandboxHandle:
    """Exclusive ownership token for one sandbox instance."""

    sandbox_id: str
    channel: SandboxChannel | None = None
    destroyed: bool = False


class SandboxController(ABC):
    """
    Abstract base class for sandbox runtimes.
    Follows the Strategy Pattern.
    """

    @abstractmethod
    async def create(self, source_text: str) -> SandboxHandle:
        """Create and start an isolated environment running ``source_text``.

        The environment has no network access, hard memory/swap ceilings, a CPU
        quota, a process-count ceiling, and sees the program read-only.

        Raises:
            CreationError: If the sandbox could not be created or started. No
                sandbox is left behind.
        """
        pass  # pragma: no cover

    @abstractmethod
    async def attach(self, handle: SandboxHandle) -> SandboxChannel:
        """Attach to the sandbox's stdin/stdout/stderr.

        Raises:
            AttachError: If the channel could not be opened. The caller is
                responsible for destroying the sandbox.
        """
        pass  # pragma: no cover

    @abstractmethod
    async def write_input(self, handle: SandboxHandle, text: str) -> None:
        """Send one line of input; a newline terminator is appended.

        Raises:
            StreamError: If the channel is missing or the write failed.
        """
        pass  # pragma: no cover

    @abstractmethod
    async def inspect(self, handle: SandboxHandle) -> SandboxStatus:
        """Report whether the sandbox is still running and its exit code if not."""
        pass  # pragma: no cover

    @abstractmethod
    async def destroy(self, handle: SandboxHandle) -> None:
        """Stop and remove the sandbox. Safe on an already stopped sandbox."""
        pass  # pragma: no cover

    async def wait_for_exit(self, handle: SandboxHandle, timeout: float, interval: float = 0.1) -> SandboxStatus:
        """Poll ``inspect`` until the sandbox stops or ``timeout`` elapses.

        Returns:
            SandboxStatus: The last observed status, which may still be running.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        status = await self.inspect(handle)
        while status.running and loop.time() < deadline:
            await asyncio.sleep(interval)
            status = await self.inspect(handle)
        return status

    async def cleanup_orphans(self) -> list[str]:
        """Remove sandboxes left behind by a previous process. Returns their ids."""
        return []
