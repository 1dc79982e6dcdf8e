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
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
from coreason_terminal.exceptions import AttachError, CreationError, SessionExpiredError, SessionNotFoundError
from coreason_terminal.models import SessionState
from coreason_terminal.session_manager import SessionManager


@pytest.fixture
def manager(make_config: Any, fake_controller: Any) -> SessionManager:
    return SessionManager(make_config(), fake_controller)


@pytest.mark.asyncio
async def test_session_creation(manager: SessionManager, fake_controller: Any) -> None:
    session = await manager.create("print('hi')")

    assert session.id in manager.sessions
    assert session.state == SessionState.AWAITING_OUTPUT
    assert session.handle.channel is not None
    assert session.expiry_timer is not None
    assert fake_controller.sources == ["print('hi')"]
    assert manager.get(session.id) is session

    await manager.shutdown()


@pytest.mark.asyncio
async def test_session_ids_are_unique(manager: SessionManager) -> None:
    first = await manager.create("a")
    second = await manager.create("b")

    assert first.id != second.id
    assert first.handle is not second.handle

    await manager.shutdown()


@pytest.mark.asyncio
async def test_creation_failure_registers_nothing(manager: SessionManager, fake_controller: Any) -> None:
    fake_controller.create_error = CreationError("no daemon")

    with pytest.raises(CreationError):
        await manager.create("print(1)")

    assert manager.sessions == {}
    assert fake_controller.destroy_calls == 0

    await manager.shutdown()


@pytest.mark.asyncio
async def test_attach_failure_destroys_sandbox(manager: SessionManager, fake_controller: Any) -> None:
    fake_controller.attach_error = AttachError("socket refused")

    with pytest.raises(AttachError):
        await manager.create("print(1)")

    assert manager.sessions == {}
    assert fake_controller.destroy_calls == 1

    await manager.shutdown()


@pytest.mark.asyncio
async def test_attach_failure_with_destroy_error_still_raises_attach(
    manager: SessionManager, fake_controller: Any
) -> None:
    fake_controller.attach_error = AttachError("socket refused")
    fake_controller.destroy_error = RuntimeError("docker gone")

    with pytest.raises(AttachError):
        await manager.create("print(1)")

    await manager.shutdown()


@pytest.mark.asyncio
async def test_remove_is_idempotent(manager: SessionManager, fake_controller: Any) -> None:
    session = await manager.create("x")

    assert await manager.remove(session.id) is True
    assert await manager.remove(session.id) is False
    assert await manager.remove(session.id) is False

    assert fake_controller.destroy_calls == 1
    assert session.state == SessionState.CANCELLED
    assert session.handle.destroyed is True


@pytest.mark.asyncio
async def test_concurrent_removals_destroy_once(manager: SessionManager, fake_controller: Any) -> None:
    session = await manager.create("x")

    results = await asyncio.gather(
        manager.remove(session.id),
        manager.remove(session.id, SessionState.EXPIRED),
        manager.remove(session.id),
    )

    assert sorted(results) == [False, False, True]
    assert fake_controller.destroy_calls == 1


@pytest.mark.asyncio
async def test_remove_keeps_existing_terminal_state(manager: SessionManager) -> None:
    session = await manager.create("x")
    session.transition(SessionState.COMPLETED)

    await manager.remove(session.id)

    assert session.state == SessionState.COMPLETED


@pytest.mark.asyncio
async def test_destroy_failure_is_absorbed(manager: SessionManager, fake_controller: Any) -> None:
    session = await manager.create("x")
    fake_controller.destroy_error = RuntimeError("docker gone")

    assert await manager.remove(session.id) is True
    assert session.id not in manager.sessions


@pytest.mark.asyncio
async def test_get_unknown_session(manager: SessionManager) -> None:
    with pytest.raises(SessionNotFoundError) as exc_info:
        manager.get("missing")
    assert not isinstance(exc_info.value, SessionExpiredError)


@pytest.mark.asyncio
async def test_get_cancelled_session_is_not_found(manager: SessionManager) -> None:
    session = await manager.create("x")
    await manager.remove(session.id)

    with pytest.raises(SessionNotFoundError) as exc_info:
        manager.get(session.id)
    assert not isinstance(exc_info.value, SessionExpiredError)


@pytest.mark.asyncio
async def test_get_terminal_session_still_registered(manager: SessionManager) -> None:
    session = await manager.create("x")
    session.transition(SessionState.COMPLETED)

    with pytest.raises(SessionNotFoundError):
        manager.get(session.id)

    await manager.shutdown()


@pytest.mark.asyncio
async def test_sweep_removes_old_sessions(manager: SessionManager, fake_controller: Any) -> None:
    old = await manager.create("old")
    fresh = await manager.create("fresh")
    old.created_at = time.time() - manager.config.session_lifetime - 1

    expired = await manager.sweep()

    assert expired == [old.id]
    assert old.id not in manager.sessions
    assert fresh.id in manager.sessions
    assert old.handle.destroyed is True
    with pytest.raises(SessionExpiredError):
        manager.get(old.id)

    await manager.shutdown()


@pytest.mark.asyncio
async def test_sweep_with_patched_clock(manager: SessionManager) -> None:
    session = await manager.create("x")

    with patch("coreason_terminal.session_manager.time.time", return_value=session.created_at + 10_000):
        await manager.sweep()

    assert manager.sessions == {}
    assert session.state == SessionState.EXPIRED


@pytest.mark.asyncio
async def test_expiry_timer_reclaims_session(make_config: Any, fake_controller: Any) -> None:
    manager = SessionManager(make_config(session_lifetime=0.05), fake_controller)
    session = await manager.create("while True: pass")

    await asyncio.sleep(0.2)

    assert session.id not in manager.sessions
    assert session.state == SessionState.EXPIRED
    assert fake_controller.destroy_calls == 1
    with pytest.raises(SessionExpiredError):
        manager.get(session.id)

    await manager.shutdown()


@pytest.mark.asyncio
async def test_tombstones_are_bounded(make_config: Any, fake_controller: Any) -> None:
    manager = SessionManager(make_config(tombstone_limit=2), fake_controller)
    ids = []
    for _ in range(3):
        session = await manager.create("x")
        ids.append(session.id)
        await manager.remove(session.id, SessionState.EXPIRED)

    assert list(manager._tombstones) == ids[1:]
    # The oldest record is forgotten and reads as plain not-found
    with pytest.raises(SessionNotFoundError) as exc_info:
        manager.get(ids[0])
    assert not isinstance(exc_info.value, SessionExpiredError)

    await manager.shutdown()


@pytest.mark.asyncio
async def test_reaper_runs_sweep(make_config: Any, fake_controller: Any) -> None:
    manager = SessionManager(make_config(reaper_interval=0.01), fake_controller)

    with patch.object(manager, "sweep", wraps=manager.sweep) as sweep:
        await manager.start()
        await asyncio.sleep(0.05)
        assert sweep.call_count >= 1

    await manager.shutdown()
    assert manager._reaper_task is None


@pytest.mark.asyncio
async def test_reaper_survives_sweep_errors(make_config: Any, fake_controller: Any) -> None:
    manager = SessionManager(make_config(reaper_interval=0.01), fake_controller)

    with patch.object(manager, "sweep", MagicMock(side_effect=RuntimeError("boom"))):
        await manager.start()
        await asyncio.sleep(0.05)

    # The loop logs and stops instead of raising out of the task
    assert manager._reaper_task is not None
    assert manager._reaper_task.done()
    await manager.shutdown()


@pytest.mark.asyncio
async def test_start_cleans_orphans(manager: SessionManager, fake_controller: Any) -> None:
    fake_controller.orphans = ["abc123"]
    with patch.object(fake_controller, "cleanup_orphans", wraps=fake_controller.cleanup_orphans) as cleanup:
        await manager.start()
        cleanup.assert_awaited_once()

    await manager.shutdown()


@pytest.mark.asyncio
async def test_start_absorbs_orphan_cleanup_errors(manager: SessionManager, fake_controller: Any) -> None:
    fake_controller.cleanup_error = RuntimeError("daemon unavailable")

    await manager.start()

    assert manager._reaper_task is not None
    await manager.shutdown()


@pytest.mark.asyncio
async def test_shutdown_terminates_all(manager: SessionManager, fake_controller: Any) -> None:
    sessions = [await manager.create("x") for _ in range(3)]

    await manager.shutdown()

    assert manager.sessions == {}
    assert fake_controller.destroy_calls == 3
    assert all(s.state == SessionState.CANCELLED for s in sessions)
    assert all(s.expiry_timer is not None and s.expiry_timer.cancelled() for s in sessions)
