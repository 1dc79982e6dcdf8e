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
Best-effort detection of a program blocked on a read.

The sandboxed program sends no explicit signal when it calls ``input()``, so this
module guesses from the shape of the trailing output. It is probabilistic: a line
that merely ends in ``:`` reads as a prompt (false positive), and a prompt without
punctuation or a known keyword goes unnoticed (false negative). Both are accepted.
The classifier is a pure function of its input text so its hit rate can be
measured on recorded transcripts.
"""

import re

from pydantic import BaseModel, ConfigDict

PROMPT_MAX_LENGTH = 50
SHORT_OUTPUT_CHARS = 100
SHORT_OUTPUT_LINES = 3

INPUT_KEYWORDS: tuple[str, ...] = (
    "enter",
    "input",
    "type",
    "name",
    "id",
    "age",
    "number",
    "value",
    "choice",
    "select",
    "provide",
    "password",
    "username",
    "email",
    "address",
    "phone",
    "continue",
    "proceed",
    "option",
    "answer",
    "response",
)

_QUESTION_OR_COLON = re.compile(r"[?:]\s*$")
_PROMPT_GLYPH = re.compile(r"(?:>|\$|»)\s?$")
_KEYWORD = re.compile(r"\b(?:{})\b".format("|".join(INPUT_KEYWORDS)), re.IGNORECASE)
_TRAILING_CLAUSE = re.compile(r"([^.!?:]+[?:])\s*$")


class InputWaitVerdict(BaseModel):
    """Classification of trailing output, with the signals that produced it."""

    model_config = ConfigDict(frozen=True)

    waiting_for_input: bool
    input_prompt: str | None = None
    question_or_colon: bool = False
    prompt_glyph: bool = False
    keyword: bool = False
    short_output: bool = False
    stalled: bool = False


def last_non_empty_line(output: str) -> str:
    for line in reversed(output.split("\n")):
        if line.strip():
            return line
    return ""


def extract_prompt(output: str) -> str:
    """Pick the prompt text a user should see next to the input box.

    Long lines are trimmed to their trailing question or colon clause when one
    exists; otherwise the whole last line is used.
    """
    line = last_non_empty_line(output).strip()
    if len(line) > PROMPT_MAX_LENGTH:
        match = _TRAILING_CLAUSE.search(line)
        if match:
            return match.group(1).strip()
    return line


def classify(output: str) -> InputWaitVerdict:
    """Guess whether ``output`` ends at a point where the program awaits input."""
    line = last_non_empty_line(output)
    if not line:
        return InputWaitVerdict(waiting_for_input=False)

    question_or_colon = bool(_QUESTION_OR_COLON.search(line))
    prompt_glyph = bool(_PROMPT_GLYPH.search(line))
    short_output = len(output) < SHORT_OUTPUT_CHARS and len(output.split("\n")) <= SHORT_OUTPUT_LINES
    stalled = not output.endswith("\n\n")
    keyword = bool(_KEYWORD.search(line))
    # Short and stalled only corroborate a keyword hit; they never fire on their own.

    waiting = question_or_colon or prompt_glyph or keyword
    return InputWaitVerdict(
        waiting_for_input=waiting,
        input_prompt=extract_prompt(output) if waiting else None,
        question_or_colon=question_or_colon,
        prompt_glyph=prompt_glyph,
        keyword=keyword,
        short_output=short_output,
        stalled=stalled,
    )


def is_waiting_for_input(output: str) -> bool:
    return classify(output).waiting_for_input
