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
import time
from collections import OrderedDict
from uuid import uuid4

from loguru import logger

from coreason_terminal.config import TerminalConfig
from coreason_terminal.exceptions import SessionExpiredError, SessionNotFoundError
from coreason_terminal.factory import SandboxFactory
from coreason_terminal.models import Session, SessionState
from coreason_terminal.runtime import SandboxController


class SessionManager:
    """Owns the mapping from session id to live session.

    Each session gets a fixed lifetime from creation. An expiry timer reclaims it
    on time, and a background reaper sweeps anything the timer missed. Teardown
    always destroys the sandbox before the registry entry is dropped, and is
    idempotent per session.
    """

    def __init__(self, config: TerminalConfig | None = None, controller: SandboxController | None = None):
        """Initializes the SessionManager.

        Args:
            config: Optional configuration object. If not provided, defaults are used.
            controller: Optional sandbox controller. Built from ``config`` if omitted.
        """
        self.config = config or TerminalConfig()
        self.controller = controller or SandboxFactory.get_controller(self.config)
        self.sessions: dict[str, Session] = {}
        self._tombstones: OrderedDict[str, SessionState] = OrderedDict()
        self._reaper_task: asyncio.Task[None] | None = None
        self._pending_teardowns: set[asyncio.Task[bool]] = set()

    async def start(self) -> None:
        """Start the reaper and clear sandboxes orphaned by a previous process."""
        await self._start_reaper_if_needed()
        try:
            await self.controller.cleanup_orphans()
        except Exception as e:
            logger.warning(f"Could not clean up orphaned sandboxes: {e}")

    async def create(self, source_text: str) -> Session:
        """Create a sandbox for ``source_text``, attach to it and register a session.

        Raises:
            CreationError: If the sandbox could not be started. Nothing is registered.
            AttachError: If attaching failed. The sandbox is destroyed first.
        """
        await self._start_reaper_if_needed()

        handle = await self.controller.create(source_text)
        try:
            await self.controller.attach(handle)
        except Exception:
            try:
                await self.controller.destroy(handle)
            except Exception as e:
                logger.error(f"Error destroying sandbox {handle.sandbox_id} after failed attach: {e}")
            raise

        now = time.time()
        session = Session(id=uuid4().hex, handle=handle, created_at=now, last_activity_at=now)
        session.transition(SessionState.AWAITING_OUTPUT)
        session.expiry_timer = asyncio.get_running_loop().call_later(
            self.config.session_lifetime, self._on_expiry_timer, session.id
        )
        self.sessions[session.id] = session
        logger.info("Allocated sandbox session", session_id=session.id, sandbox_id=handle.sandbox_id)
        return session

    def get(self, session_id: str) -> Session:
        """Return the live session for ``session_id``.

        Raises:
            SessionExpiredError: If the session was reclaimed by the expiry.
            SessionNotFoundError: If the id is unknown or the session has ended.
        """
        session = self.sessions.get(session_id)
        if session is not None and not session.is_terminal:
            return session

        state = session.state if session is not None else self._tombstones.get(session_id)
        if state == SessionState.EXPIRED:
            raise SessionExpiredError(session_id)
        raise SessionNotFoundError(session_id)

    async def remove(self, session_id: str, final_state: SessionState = SessionState.CANCELLED) -> bool:
        """Tear down a session and drop it from the registry.

        Args:
            session_id: The session to remove.
            final_state: Terminal state recorded if the session has not already
                reached one.

        Returns:
            bool: ``True`` if this call performed the teardown, ``False`` if the
            session was unknown or already being torn down.
        """
        session = self.sessions.get(session_id)
        if session is None or session.torn_down:
            return False

        session.torn_down = True
        if not session.is_terminal:
            session.transition(final_state)
        if session.expiry_timer is not None:
            session.expiry_timer.cancel()

        try:
            await self.controller.destroy(session.handle)
        except Exception as e:
            logger.error(f"Error terminating sandbox for session {session_id}: {e}")
        finally:
            self.sessions.pop(session_id, None)
            self._remember(session_id, session.state)

        logger.info(f"Session {session_id} removed ({session.state})")
        return True

    async def sweep(self) -> list[str]:
        """Remove every session older than the configured lifetime."""
        now = time.time()
        # Create a list of sessions to terminate to avoid modifying dict while iterating
        expired_ids = [
            sid for sid, session in self.sessions.items() if now - session.created_at > self.config.session_lifetime
        ]
        for sid in expired_ids:
            logger.info(f"Session {sid} expired. Terminating.")
            await self.remove(sid, SessionState.EXPIRED)
        return expired_ids

    def _on_expiry_timer(self, session_id: str) -> None:
        task = asyncio.create_task(self.remove(session_id, SessionState.EXPIRED))
        self._pending_teardowns.add(task)
        task.add_done_callback(self._pending_teardowns.discard)

    def _remember(self, session_id: str, state: SessionState) -> None:
        self._tombstones[session_id] = state
        while len(self._tombstones) > self.config.tombstone_limit:
            self._tombstones.popitem(last=False)

    async def _start_reaper_if_needed(self) -> None:
        """Start the background reaper task if it is not already running."""
        if self._reaper_task is None or self._reaper_task.done():
            self._reaper_task = asyncio.create_task(self._reaper_loop())

    async def _reaper_loop(self) -> None:
        """Background task to cleanup expired sessions."""
        logger.info("Session reaper started")
        try:
            while True:
                await asyncio.sleep(self.config.reaper_interval)
                await self.sweep()
        except asyncio.CancelledError:
            logger.info("Session reaper cancelled")
        except Exception as e:
            logger.error(f"Session reaper crashed: {e}")

    async def shutdown(self) -> None:
        """Terminate all sessions and stop the reaper."""
        if self._reaper_task and not self._reaper_task.done():
            self._reaper_task.cancel()
            try:
                await self._reaper_task
            except asyncio.CancelledError:
                pass
            self._reaper_task = None

        logger.info(f"Shutting down SessionManager. Terminating {len(self.sessions)} sessions.")

        for session_id in list(self.sessions):
            await self.remove(session_id, SessionState.CANCELLED)
        if self._pending_teardowns:
            await asyncio.gather(*self._pending_teardowns, return_exceptions=True)
