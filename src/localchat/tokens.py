"""Rough token estimates for the context usage meter.

These are heuristics, not a tokenizer: on average 100 tokens are about 75
English words, punctuation and digits are often split out, and non-ASCII
characters tend to cost more.
"""

from __future__ import annotations

import json
import math
import re
from typing import Any

from localchat.sessions.schema import ChatSession

_WHITESPACE = re.compile(r"\s+")
_SPECIAL = re.compile(r"[.,!?;:()\[\]{}'\"]")
_NON_ASCII = re.compile(r"[^\x00-\x7F]")
_DIGIT_RUNS = re.compile(r"\d+")

WORD_WEIGHT = 1.33
SPECIAL_WEIGHT = 0.7
NON_ASCII_WEIGHT = 1.5
DIGIT_WEIGHT = 0.5


def estimate_token_count(text: str) -> int:
    if not text:
        return 0

    cleaned = _WHITESPACE.sub(" ", text.strip())
    if not cleaned:
        return 0

    words = len(cleaned.split(" "))
    special = len(_SPECIAL.findall(cleaned))
    non_ascii = len(_NON_ASCII.findall(cleaned))
    digits = sum(len(run) for run in _DIGIT_RUNS.findall(cleaned))

    return math.ceil(
        words * WORD_WEIGHT
        + special * SPECIAL_WEIGHT
        + non_ascii * NON_ASCII_WEIGHT
        + digits * DIGIT_WEIGHT
    )


def estimate_json_token_count(obj: Any) -> int:
    if not obj:
        return 0
    return estimate_token_count(json.dumps(obj, ensure_ascii=False, default=str))


def format_context_size(tokens: int) -> str:
    if tokens < 1000:
        return f"{tokens} tokens"
    if tokens < 10000:
        return f"{tokens / 1000:.1f}K tokens"
    return f"{round(tokens / 1000)}K tokens"


def calculate_context_usage(tokens: int, max_context: int) -> int:
    if max_context <= 0:
        return 100
    return min(100, round(tokens / max_context * 100))


def conversation_token_usage(
    session: ChatSession | None, input_text: str = "", extra_tokens: int = 0
) -> int:
    total = estimate_token_count(input_text) + max(0, extra_tokens)
    if session is not None:
        total += sum(estimate_token_count(m.content) for m in session.messages)
    return total
