# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

import os
import sys
from pathlib import Path

from loguru import logger

__all__ = ["logger"]

LOG_DIR = Path("logs")
LOG_LEVEL = os.environ.get("COREASON_TERMINAL_LOG_LEVEL", "INFO").upper()

# Remove default handler
logger.remove()

# Sink 1: Stdout (Human-readable)
logger.add(
    sys.stderr,
    level=LOG_LEVEL,
    format=(
        "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level> | {extra}"
    ),
)

# Ensure logs directory exists
LOG_DIR.mkdir(parents=True, exist_ok=True)

# Sink 2: File (JSON, Rotation, Retention)
logger.add(
    LOG_DIR / "app.log",
    rotation="500 MB",
    retention="10 days",
    serialize=True,
    enqueue=True,
    level=LOG_LEVEL,
)
