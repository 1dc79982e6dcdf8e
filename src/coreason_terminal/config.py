# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class TerminalConfig(BaseSettings):
    """
    Configuration for interactive sandbox sessions.
    """

    runtime: Literal["docker"] = "docker"
    language: str = "python"

    # Sandbox image and entrypoint
    docker_image: str = "python:3.12-slim"
    interpreter: list[str] = ["python", "-u"]
    container_source_path: str = "/code/script.py"
    source_dir: Path | None = None  # Host directory for submitted programs; system temp if unset

    # Resource ceilings
    network_mode: str = "none"
    mem_limit: str = "100m"
    memswap_limit: str = "100m"
    cpu_period: int = 100_000
    cpu_quota: int = 50_000  # 50% of one CPU
    pids_limit: int = 50
    demux_stream: bool = True

    # Wait budgets (seconds)
    initial_wait_timeout: float = 15.0
    input_wait_timeout: float = 20.0
    poll_wait_timeout: float = 15.0
    silence_window: float = 0.5
    exit_grace: float = 2.0
    drain_timeout: float = 1.0
    request_timeout: float = 60.0

    # Session lifecycle
    session_lifetime: float = 300.0  # 5 minutes, fixed from creation
    reaper_interval: float = 60.0
    tombstone_limit: int = 1024

    model_config = SettingsConfigDict(
        env_prefix="COREASON_TERMINAL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
