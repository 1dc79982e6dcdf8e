# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from mcp.server.fastmcp import FastMCP

from coreason_terminal.exceptions import TerminalError
from coreason_terminal.orchestrator import TerminalService
from coreason_terminal.utils.logger import logger

# Initialize Terminal Logic
service = TerminalService()


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncIterator[None]:
    """Start the session registry with the server and drain it on shutdown."""
    await service.start()
    try:
        yield
    finally:
        await service.shutdown()


# Initialize MCP Server
mcp = FastMCP("coreason-terminal", lifespan=lifespan)


def _error(e: TerminalError) -> dict[str, Any]:
    logger.warning("{}: {}", type(e).__name__, e)
    payload: dict[str, Any] = {"error": str(e), "error_type": type(e).__name__, "retryable": e.retryable}
    session_id = getattr(e, "session_id", None)
    if session_id:
        payload["session_id"] = session_id
    output = getattr(e, "output", "")
    if output:
        payload["output"] = output
    return payload


@mcp.tool()  # type: ignore[misc]
async def run_code(code: str, language: str = "python") -> dict[str, Any]:
    """
    Run a program in a fresh sandbox.
    Returns its first output and whether it is waiting for input.
    """
    try:
        response = await service.run(code, language)
    except TerminalError as e:
        return _error(e)
    return response.model_dump(mode="json", exclude_none=True)


@mcp.tool()  # type: ignore[misc]
async def send_input(session_id: str, input: str) -> dict[str, Any]:
    """
    Send one line of input to a running program.
    """
    try:
        response = await service.send_input(session_id, input)
    except TerminalError as e:
        return _error(e)
    return response.model_dump(mode="json", exclude_none=True)


@mcp.tool()  # type: ignore[misc]
async def poll_output(session_id: str) -> dict[str, Any]:
    """
    Fetch more output from a running program without sending input.
    """
    try:
        response = await service.poll(session_id)
    except TerminalError as e:
        return _error(e)
    return response.model_dump(mode="json", exclude_none=True)


@mcp.tool()  # type: ignore[misc]
async def cancel_session(session_id: str) -> dict[str, Any]:
    """
    Stop a running program and discard its session.
    """
    try:
        cancelled = await service.cancel(session_id)
    except TerminalError as e:
        return _error(e)
    return {"session_id": session_id, "cancelled": cancelled}


def main() -> None:
    """Entry point for the MCP server."""
    mcp.run()


if __name__ == "__main__":  # pragma: no cover
    main()
