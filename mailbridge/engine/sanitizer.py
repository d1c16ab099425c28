"""
Prompt-injection defences for user-supplied drafting input and for the
model's output.
"""

import logging
import re
import unicodedata
from typing import Optional

from .prompts import ALLOWED_CATEGORIES, END_DELIMITER, SYSTEM_DELIMITER, USER_DELIMITER

logger = logging.getLogger(__name__)

MAX_ADDITIONAL_CONTEXT_LENGTH = 500
MAX_EXAMPLE_REPLY_LENGTH = 2000
REJECT_THRESHOLD = 3

PROMPT_INJECTION_PATTERNS = [
    re.compile(r"ignore\s+(all\s+)?(previous|above|prior)\s+(instructions?|prompts?|rules?)", re.I),
    re.compile(r"disregard\s+(all\s+)?(previous|above|prior)", re.I),
    re.compile(r"forget\s+(all\s+)?(previous|above|prior)", re.I),
    re.compile(r"new\s+instructions?:", re.I),
    re.compile(r"system\s*:", re.I),
    re.compile(r"\[system\]", re.I),
    re.compile(r"\[assistant\]", re.I),
    re.compile(r"you\s+are\s+now\s+a", re.I),
    re.compile(r"act\s+as\s+(a\s+)?different", re.I),
    re.compile(r"pretend\s+(to\s+be|you\s+are)", re.I),
    re.compile(r"override\s+(your\s+)?instructions?", re.I),
    re.compile(r"bypass\s+(your\s+)?rules?", re.I),
    re.compile(r"do\s+the\s+opposite", re.I),
    re.compile(r"reveal\s+(your\s+)?(system|prompt|instructions?)", re.I),
    re.compile(r"what\s+(are|were)\s+your\s+instructions?", re.I),
    re.compile(r"print\s+(your\s+)?prompt", re.I),
    re.compile(r"output\s+(your\s+)?instructions?", re.I),
    re.compile(r"repeat\s+the\s+(above|system)", re.I),
    re.compile(r"jailbreak", re.I),
    re.compile(r"DAN\s+mode", re.I),
    # encoded payloads
    re.compile(r"[A-Za-z0-9+/]{20,}={0,2}"),
]

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_CODE_BLOCKS = re.compile(r"```[\s\S]*?```")
_LABEL_PREFIX = re.compile(r"^\d+:\s*")

_GREETING = re.compile(r"^(dear|hi|hello|good\s+(morning|afternoon|evening))", re.I)
_SIGN_OFF = re.compile(r"(best|regards|sincerely|thanks|thank\s+you|cheers)", re.I)
_LEAKED_INSTRUCTIONS = re.compile(r"\[system\]|\[assistant\]|###SYSTEM", re.I)


def sanitize_input(value, max_length: int) -> str:
    """
    Clean one free-text field before it is placed in a prompt.

    NFKC-normalises (folds homoglyphs), trims, caps the length, removes
    every injection pattern found and drops the whole input once
    REJECT_THRESHOLD distinct patterns matched. Control characters and
    fenced code blocks are stripped last.
    """
    if not value or not isinstance(value, str):
        return ""

    sanitized = unicodedata.normalize("NFKC", value).strip()[:max_length]

    hits = 0
    for pattern in PROMPT_INJECTION_PATTERNS:
        if pattern.search(sanitized):
            logger.warning(f"[DRAFT] Potential prompt injection detected: {pattern.pattern}")
            hits += 1
            sanitized = pattern.sub("", sanitized, count=1)

    if hits >= REJECT_THRESHOLD:
        logger.error("[DRAFT] Multiple injection attempts detected, rejecting input")
        return ""

    sanitized = _CONTROL_CHARS.sub("", sanitized)
    sanitized = _CODE_BLOCKS.sub("", sanitized)
    return sanitized


def is_valid_output(output: str) -> bool:
    """Looks like an email (greeting or sign-off), sane length, no leaked instructions."""
    has_greeting = bool(_GREETING.match(output.strip()))
    has_sign_off = bool(_SIGN_OFF.search(output))
    reasonable_length = 50 <= len(output) <= 5000
    leaked = bool(_LEAKED_INSTRUCTIONS.search(output))
    return reasonable_length and not leaked and (has_greeting or has_sign_off)


def strip_delimiters(output: str) -> str:
    for delimiter in (SYSTEM_DELIMITER, USER_DELIMITER, END_DELIMITER):
        output = output.replace(delimiter, "")
    return output


def validate_category_name(category_name: Optional[str]) -> str:
    """Strip the "N: " label prefix; unknown categories fall back to General."""
    cleaned = _LABEL_PREFIX.sub("", category_name or "").strip() or "General"
    return cleaned if cleaned in ALLOWED_CATEGORIES else "General"
