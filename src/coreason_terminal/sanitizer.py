# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

"""
Turns raw sandbox output into clean terminal text.

Each stage is a pure function; ``sanitize`` composes them in a fixed order so the
whole pipeline is deterministic and idempotent on already-clean text.
"""

import re
import struct
from collections.abc import Callable

# Attach streams without a TTY prefix each frame with: stream tag (1 byte),
# 3 zero bytes, payload length (big-endian uint32).
FRAME_HEADER = struct.Struct(">BxxxL")
FRAME_HEADER_SIZE = FRAME_HEADER.size
_FRAME_STREAM_TAGS = (0, 1, 2)

# Attach negotiation options that can bleed into program output as JSON.
CAPABILITY_FLAGS: tuple[str, ...] = ("stream", "stdin", "stdout", "stderr", "hijack", "demux", "logs")

# Everything below 0x20 except tab, newline and carriage return, plus DEL.
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

_FLAG_KEY = r'"(?:{})"\s*:\s*(?:true|false)'.format("|".join(CAPABILITY_FLAGS))
_CONFIG_ECHO = re.compile(r"\{\s*" + _FLAG_KEY + r"(?:\s*,\s*" + _FLAG_KEY + r")*\s*\}")


def strip_frame_headers(data: bytes) -> bytes:
    """Remove multiplexing headers from a raw attach stream chunk.

    Frames are consumed while the bytes at the cursor look like a valid header.
    Anything after the first position that does not is passed through untouched.
    """
    out = bytearray()
    pos = 0
    size = len(data)
    while pos < size:
        if (
            size - pos >= FRAME_HEADER_SIZE
            and data[pos] in _FRAME_STREAM_TAGS
            and data[pos + 1 : pos + 4] == b"\x00\x00\x00"
        ):
            _, length = FRAME_HEADER.unpack_from(data, pos)
            start = pos + FRAME_HEADER_SIZE
            out += data[start : start + length]
            pos = start + length
        else:
            out += data[pos:]
            break
    return bytes(out)


def strip_control_characters(text: str) -> str:
    return _CONTROL_CHARS.sub("", text)


def normalize_line_endings(text: str) -> str:
    """CRLF becomes LF; a lone CR is a control byte and is dropped."""
    return text.replace("\r\n", "\n").replace("\r", "")


def strip_config_echo(text: str) -> str:
    # Removing one fragment can splice two halves into a new one, so run to a fixed point.
    while True:
        text, count = _CONFIG_ECHO.subn("", text)
        if not count:
            return text


TEXT_STAGES: tuple[Callable[[str], str], ...] = (
    strip_control_characters,
    normalize_line_endings,
    strip_config_echo,
)


def sanitize(chunk: bytes | str, demultiplexed: bool = True) -> str:
    """Produce clean text from a raw output chunk.

    Args:
        chunk: Raw bytes from the sandbox channel, or text that has already been
            decoded.
        demultiplexed: Whether the channel already split stdout/stderr frames. When
            ``False`` the binary frame headers are stripped first.

    Returns:
        str: Clean text with LF line endings.
    """
    if isinstance(chunk, bytes):
        if not demultiplexed:
            chunk = strip_frame_headers(chunk)
        text = chunk.decode("utf-8", errors="replace")
    else:
        text = chunk

    for stage in TEXT_STAGES:
        text = stage(text)
    return text
