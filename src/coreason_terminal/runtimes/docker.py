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
import shutil
import socket
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import docker
from docker.errors import DockerException, NotFound
from docker.models.containers import Container
from docker.utils.socket import SocketError, frames_iter, next_frame_header, read_exactly
from loguru import logger

from coreason_terminal.exceptions import AttachError, CreationError, StreamError, WaitTimeoutError
from coreason_terminal.models import SandboxStatus
from coreason_terminal.runtime import OutputChunk, SandboxChannel, SandboxController, SandboxHandle, StreamKind
from coreason_terminal.sanitizer import FRAME_HEADER

SANDBOX_LABEL = "coreason-terminal.sandbox"


@dataclass
class DockerHandle(SandboxHandle):
    container: Container | None = None
    source_dir: Path | None = None


class DockerChannel(SandboxChannel):
    """
    Attach socket of a container, exposed as an awaitable chunk queue.

    A worker thread blocks on the socket and hands chunks to the event loop; the
    queue preserves delivery order. Closing the socket unblocks the thread.
    """

    def __init__(self, sock: Any, demultiplexed: bool = True):
        self._sock = sock
        self._raw = getattr(sock, "_sock", sock)
        self.demultiplexed = demultiplexed
        self._queue: asyncio.Queue[OutputChunk | BaseException | None] = asyncio.Queue()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._pump_task: asyncio.Future[None] | None = None
        self._closed = False
        self._eof = False

    def start(self) -> None:
        # The client's request timeout would otherwise turn a quiet program into a read error.
        try:
            self._raw.settimeout(None)
        except (AttributeError, OSError):
            pass
        self._loop = asyncio.get_running_loop()
        self._pump_task = asyncio.ensure_future(asyncio.to_thread(self._pump))

    def _publish(self, item: OutputChunk | BaseException | None) -> None:
        if self._loop is None:
            return
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, item)
        except RuntimeError:
            # Event loop already closed during shutdown
            pass

    def _pump(self) -> None:
        try:
            if self.demultiplexed:
                for stream, data in frames_iter(self._sock, tty=False):
                    self._publish(OutputChunk(StreamKind(stream), data))
            else:
                # Whole frames, header included, so every chunk starts on a frame boundary.
                while True:
                    stream, length = next_frame_header(self._sock)
                    if length < 0:
                        break
                    payload = read_exactly(self._sock, length) if length else b""
                    self._publish(OutputChunk(StreamKind.RAW, FRAME_HEADER.pack(stream, length) + payload))
        except (OSError, ValueError, SocketError) as e:
            if not self._closed:
                self._publish(e)
        finally:
            self._publish(None)

    async def read(self, timeout: float | None = None) -> OutputChunk | None:
        if self._eof:
            return None
        try:
            item = await asyncio.wait_for(self._queue.get(), timeout)
        except TimeoutError as e:
            raise WaitTimeoutError(f"No output within {timeout}s") from e
        if item is None:
            self._eof = True
            return None
        if isinstance(item, BaseException):
            raise StreamError() from item
        return item

    async def write(self, data: bytes) -> None:
        if self._closed:
            raise StreamError("Input channel is closed. Please run your code again.")
        try:
            await asyncio.to_thread(self._raw.sendall, data)
        except OSError as e:
            logger.error(f"Failed to write to sandbox stdin: {e}")
            raise StreamError() from e

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._raw.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        for sock in (self._sock, self._raw):
            try:
                sock.close()
            except OSError as e:
                logger.debug(f"Error closing attach socket: {e}")
        if self._pump_task is not None:
            _, pending = await asyncio.wait({self._pump_task}, timeout=1.0)
            if pending:
                logger.warning("Attach reader thread did not exit after close")


class DockerController(SandboxController):
    """
    Docker-based implementation of the SandboxController.

    One container per session, running the submitted program as its main process
    with stdin held open.
    """

    def __init__(
        self,
        image: str = "python:3.12-slim",
        interpreter: list[str] | None = None,
        container_source_path: str = "/code/script.py",
        network_mode: str = "none",
        mem_limit: str = "100m",
        memswap_limit: str = "100m",
        cpu_period: int = 100_000,
        cpu_quota: int = 50_000,
        pids_limit: int = 50,
        demux_stream: bool = True,
        source_dir: Path | None = None,
    ):
        self._client: docker.DockerClient | None = None
        self.image = image
        self.interpreter = interpreter or ["python", "-u"]
        self.container_source_path = container_source_path
        self.network_mode = network_mode
        self.mem_limit = mem_limit
        self.memswap_limit = memswap_limit
        self.cpu_period = cpu_period
        self.cpu_quota = cpu_quota
        self.pids_limit = pids_limit
        self.demux_stream = demux_stream
        self.source_dir = source_dir

    @property
    def client(self) -> docker.DockerClient:
        # Connect on first use so the service can be constructed without a daemon.
        if self._client is None:
            self._client = docker.from_env()
        return self._client

    async def create(self, source_text: str) -> DockerHandle:
        """
        Write the program to a private host directory and boot a container on it.
        """
        if self.source_dir is not None:
            self.source_dir.mkdir(parents=True, exist_ok=True)
        source_dir = Path(tempfile.mkdtemp(prefix="coreason-terminal-", dir=self.source_dir))
        script_path = source_dir / Path(self.container_source_path).name
        container: Container | None = None

        logger.info(f"Starting Docker sandbox with image {self.image}")
        try:
            script_path.write_text(source_text, encoding="utf-8")
            container = await asyncio.to_thread(
                self.client.containers.create,
                self.image,
                command=[*self.interpreter, self.container_source_path],
                stdin_open=True,
                tty=False,
                network_mode=self.network_mode,
                mem_limit=self.mem_limit,
                memswap_limit=self.memswap_limit,
                cpu_period=self.cpu_period,
                cpu_quota=self.cpu_quota,
                pids_limit=self.pids_limit,
                volumes={str(script_path): {"bind": self.container_source_path, "mode": "ro"}},
                labels={SANDBOX_LABEL: "true"},
            )
            await asyncio.to_thread(container.start)
        except (DockerException, OSError) as e:
            logger.error(f"Failed to start Docker sandbox: {e}")
            if container is not None:
                try:
                    await asyncio.to_thread(container.remove, force=True)
                except DockerException as cleanup_error:
                    logger.error(f"Failed to remove half-created sandbox {container.short_id}: {cleanup_error}")
            shutil.rmtree(source_dir, ignore_errors=True)
            raise CreationError(f"Failed to start sandbox: {e}") from e

        logger.info(f"Docker sandbox started: {container.short_id}")
        return DockerHandle(sandbox_id=container.id, container=container, source_dir=source_dir)

    async def attach(self, handle: SandboxHandle) -> DockerChannel:
        container = self._container(handle)
        try:
            sock = await asyncio.to_thread(
                container.attach_socket,
                params={"stdin": 1, "stdout": 1, "stderr": 1, "stream": 1, "logs": 1},
            )
        except (DockerException, OSError) as e:
            logger.error(f"Failed to attach to Docker sandbox {container.short_id}: {e}")
            raise AttachError(f"Failed to attach to sandbox: {e}") from e

        channel = DockerChannel(sock, demultiplexed=self.demux_stream)
        channel.start()
        handle.channel = channel
        logger.debug(f"Attached to Docker sandbox {container.short_id}")
        return channel

    async def write_input(self, handle: SandboxHandle, text: str) -> None:
        if handle.channel is None:
            raise StreamError("Sandbox is not attached. Please run your code again.")
        await handle.channel.write(f"{text}\n".encode("utf-8"))

    async def inspect(self, handle: SandboxHandle) -> SandboxStatus:
        container = self._container(handle)
        try:
            await asyncio.to_thread(container.reload)
        except NotFound:
            return SandboxStatus(running=False)
        except (DockerException, OSError) as e:
            logger.error(f"Failed to inspect Docker sandbox {container.short_id}: {e}")
            raise StreamError("Unable to determine program status.") from e

        state = container.attrs.get("State", {})
        running = bool(state.get("Running"))
        return SandboxStatus(running=running, exit_code=None if running else state.get("ExitCode"))

    async def destroy(self, handle: SandboxHandle) -> None:
        """
        Kill and remove the container, then delete the program's host copy.
        """
        if handle.destroyed:
            return
        handle.destroyed = True

        if handle.channel is not None:
            await handle.channel.close()

        container = self._container(handle)
        logger.info(f"Terminating Docker sandbox: {container.short_id}")
        try:
            await asyncio.to_thread(container.remove, force=True)
        except NotFound:
            logger.debug(f"Docker sandbox {container.short_id} already removed")
        finally:
            if isinstance(handle, DockerHandle) and handle.source_dir is not None:
                shutil.rmtree(handle.source_dir, ignore_errors=True)

    async def cleanup_orphans(self) -> list[str]:
        """
        Remove containers left behind by a previous process.
        """
        containers = await asyncio.to_thread(self.client.containers.list, all=True, filters={"label": SANDBOX_LABEL})
        removed: list[str] = []
        for container in containers:
            try:
                await asyncio.to_thread(container.remove, force=True)
                removed.append(container.short_id)
            except DockerException as e:
                logger.warning(f"Could not remove orphaned sandbox {container.short_id}: {e}")
        if removed:
            logger.info(f"Removed {len(removed)} orphaned sandboxes")
        return removed

    @staticmethod
    def _container(handle: SandboxHandle) -> Container:
        container = getattr(handle, "container", None)
        if container is None:
            raise RuntimeError("Sandbox not started")
        return container
