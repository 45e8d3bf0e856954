"""Extraction of structured data from free-form model output.

Language models are asked to answer with a fenced JSON block, but they
routinely drift: single-quoted strings, bareword keys, unquoted values,
prose around the block.  :func:`parse_structured_response` recovers what it
can and returns ``None`` otherwise.  Every function here is pure and never
raises on malformed input.

Repair rules applied by :func:`normalize_json_string` (in order):

1. Adjacent mixed quote pairs (``"'`` / ``'"``) collapse to ``"``.
2. Whitespace right inside the outermost ``{`` / ``}`` is removed.
3. Single-quoted strings become double-quoted strings.
4. Bareword keys become double-quoted keys.
5. Unquoted values other than numbers, ``true``, ``false`` and ``null``
   become double-quoted strings (up to the next ``,``, ``}``, ``]`` or
   newline).

The rules are applied until the text stops changing, so the function is
idempotent: ``normalize_json_string(normalize_json_string(s)) ==
normalize_json_string(s)``.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

log = logging.getLogger(__name__)

JSON_BLOCK_PATTERN = re.compile(r"```json[ \t]*\r?\n?(.*?)```", re.DOTALL | re.IGNORECASE)

_MIXED_QUOTES = re.compile(r"\"'|'\"")
_NUMBER = re.compile(r"-?(?:0|[1-9]\d*)(?:\.\d+)?(?:[eE][+-]?\d+)?")
_LITERALS = frozenset({"true", "false", "null"})
_VALUE_DELIMITERS = ",}]\n"

# Cap on how many brace-shaped substrings are tried before giving up.
_MAX_CANDIDATES = 8

_AFFIRMATIVE = frozenset({"YES", "Y", "TRUE", "T", "1", "ON", "ENABLE"})
_NEGATIVE = frozenset({"NO", "N", "FALSE", "F", "0", "OFF", "DISABLE"})


# ---------------------------------------------------------------------------
# Normalisation
# ---------------------------------------------------------------------------


def _scan_double_quoted(text: str, start: int) -> int:
    """Return the index just past the string opened at *start*."""
    i = start + 1
    while i < len(text):
        ch = text[i]
        if ch == "\\":
            i += 2
            continue
        if ch == '"':
            return i + 1
        i += 1
    return len(text)


def _scan_single_quoted(text: str, start: int) -> int | None:
    """Return the index of the closing quote, or ``None`` if unterminated."""
    i = start + 1
    while i < len(text):
        ch = text[i]
        if ch == "\\":
            i += 2
            continue
        if ch == "'":
            return i
        if ch == "\n":
            return None
        i += 1
    return None


def _read_until(text: str, start: int, stops: str) -> int:
    i = start
    while i < len(text) and text[i] not in stops:
        i += 1
    return i


def _repair_tokens(text: str) -> str:
    """One pass of quote repair over *text*, tracking JSON structure."""
    out: list[str] = []
    stack: list[str] = []
    expect = "value"  # one of: key, colon, value, end
    i = 0
    n = len(text)

    while i < n:
        ch = text[i]

        if ch.isspace():
            out.append(ch)
            i += 1
            continue

        if ch in "{[":
            stack.append(ch)
            expect = "key" if ch == "{" else "value"
            out.append(ch)
            i += 1
            continue

        if ch in "}]":
            if stack:
                stack.pop()
            expect = "end"
            out.append(ch)
            i += 1
            continue

        if ch == ",":
            expect = "key" if stack and stack[-1] == "{" else "value"
            out.append(ch)
            i += 1
            continue

        if ch == ":":
            expect = "value"
            out.append(ch)
            i += 1
            continue

        if ch == '"':
            end = _scan_double_quoted(text, i)
            out.append(text[i:end])
            expect = "colon" if expect == "key" else "end"
            i = end
            continue

        if ch == "'":
            end = _scan_single_quoted(text, i)
            if end is not None:
                inner = text[i + 1 : end].replace("\\'", "'")
                out.append(json.dumps(inner, ensure_ascii=False))
                expect = "colon" if expect == "key" else "end"
                i = end + 1
                continue

        if expect == "key":
            end = _read_until(text, i, ":,}\n")
            key = text[i:end].strip().strip("'\"")
            if key:
                out.append(json.dumps(key, ensure_ascii=False))
                expect = "colon"
                i = end
                continue

        if expect == "value":
            end = _read_until(text, i, _VALUE_DELIMITERS)
            raw = text[i:end]
            token = raw.rstrip()
            if token:
                if token in _LITERALS or _NUMBER.fullmatch(token):
                    out.append(token)
                else:
                    out.append(json.dumps(token, ensure_ascii=False))
                out.append(raw[len(token) :])
                expect = "end"
                i = end
                continue

        out.append(ch)
        i += 1

    return "".join(out)


def _trim_braces(text: str) -> str:
    text = text.strip()
    if text.startswith("{"):
        text = "{" + text[1:].lstrip()
    if text.endswith("}"):
        text = text[:-1].rstrip() + "}"
    return text


def normalize_json_string(text: str) -> str:
    """Repair common model formatting mistakes in a JSON-like string.

    See the module docstring for the exact rules.  Valid JSON passes through
    unchanged apart from whitespace trimmed inside the outer braces.
    """
    if not isinstance(text, str):
        return ""
    current = text
    # Every changing pass either removes a single quote or quotes a token,
    # so this converges; the bound is a backstop.
    for _ in range(len(text) + 2):
        collapsed = current
        while True:
            reduced = _MIXED_QUOTES.sub('"', collapsed)
            if reduced == collapsed:
                break
            collapsed = reduced
        repaired = _repair_tokens(_trim_braces(collapsed))
        if repaired == current:
            return repaired
        current = repaired
    return current


# ---------------------------------------------------------------------------
# Candidate extraction
# ---------------------------------------------------------------------------


def _balanced_end(text: str, start: int) -> int | None:
    """Index just past the container opened at *start*, or ``None``."""
    closers = {"{": "}", "[": "]"}
    stack: list[str] = []
    i = start
    while i < len(text):
        ch = text[i]
        if ch == '"':
            i = _scan_double_quoted(text, i)
            continue
        if ch in closers:
            stack.append(closers[ch])
        elif ch in "}]":
            if not stack or stack[-1] != ch:
                return None
            stack.pop()
            if not stack:
                return i + 1
        i += 1
    return None


def _structured_substrings(text: str) -> list[str]:
    """Brace/bracket-shaped substrings of *text*, in order of appearance."""
    found: list[str] = []
    i = 0
    while i < len(text) and len(found) < _MAX_CANDIDATES:
        if text[i] in "{[":
            end = _balanced_end(text, i)
            if end is not None:
                found.append(text[i:end])
                i = end
                continue
        i += 1
    if not found:
        # Unbalanced output (often truncated by max_tokens): fall back to
        # the widest span between the first opener and the last closer.
        first = min((p for p in (text.find("{"), text.find("[")) if p >= 0), default=-1)
        last = max(text.rfind("}"), text.rfind("]"))
        if 0 <= first < last:
            found.append(text[first : last + 1])
    return found


def _candidates(text: str) -> list[str]:
    candidates: list[str] = []
    block = JSON_BLOCK_PATTERN.search(text)
    if block:
        candidates.append(block.group(1).strip())
    candidates.extend(_structured_substrings(text))
    return candidates


def _loads(candidate: str) -> Any:
    """Parse *candidate* as-is, then repaired; ``None`` if both fail."""
    for attempt in (candidate, normalize_json_string(candidate)):
        try:
            return json.loads(attempt, strict=False)
        except (ValueError, RecursionError):
            continue
    return None


# ---------------------------------------------------------------------------
# Public parsers
# ---------------------------------------------------------------------------


def parse_structured_response(text: str) -> dict[str, Any] | list[Any] | None:
    """Extract the first JSON object or array from model output.

    Priority: the first ```` ```json ```` fenced block, then the first
    brace/bracket-shaped substring that parses.  Each candidate is tried
    raw and after :func:`normalize_json_string`.

    Returns:
        A ``dict`` or ``list``, or ``None`` when nothing usable is found.
    """
    if not isinstance(text, str) or not text.strip():
        return None

    for candidate in _candidates(text):
        parsed = _loads(candidate)
        if isinstance(parsed, (dict, list)):
            return parsed

    log.debug("No structured data found in model output: %.200s", text)
    return None


def parse_json_object_from_text(text: str) -> dict[str, Any] | None:
    """Like :func:`parse_structured_response` but only accepts objects."""
    parsed = parse_structured_response(text)
    return parsed if isinstance(parsed, dict) else None


def parse_json_array_from_text(text: str) -> list[Any] | None:
    """Return the first JSON array found in *text*, or ``None``."""
    if not isinstance(text, str) or not text.strip():
        return None
    for candidate in _candidates(text):
        parsed = _loads(candidate)
        if isinstance(parsed, list):
            return parsed
    return None


def parse_boolean_from_text(value: str | None) -> bool:
    """Interpret YES/NO style answers; unrecognised text is ``False``."""
    if not value:
        return False
    normalized = value.strip().upper()
    if normalized in _AFFIRMATIVE:
        return True
    if normalized in _NEGATIVE:
        return False
    return False


def extract_attributes(response: str, attributes: list[str] | None = None) -> dict[str, str]:
    """Pull ``"key": "value"`` pairs out of JSON-ish text with regexes.

    Used as a last resort when the response cannot be parsed at all.
    """
    found: dict[str, str] = {}
    if not isinstance(response, str):
        return found
    if not attributes:
        for match in re.finditer(r'"([^"]+)"\s*:\s*"([^"]*)"', response):
            found[match.group(1)] = match.group(2)
        return found
    for attribute in attributes:
        match = re.search(rf'"{re.escape(attribute)}"\s*:\s*"([^"]*)"', response, re.IGNORECASE)
        if match:
            found[attribute] = match.group(1)
    return found


def clean_json_response(response: str) -> str:
    """Strip code fences and line breaks from a JSON-like response."""
    cleaned = re.sub(r"```json\s*", "", response)
    cleaned = re.sub(r"```\s*", "", cleaned)
    cleaned = re.sub(r"(\r\n|\n|\r)", "", cleaned)
    return cleaned.strip()


def truncate_to_complete_sentence(text: str, max_length: int) -> str:
    """Shorten *text* to at most *max_length* characters at a sentence end.

    Falls back to the last word boundary plus ``...``, then a hard cut.
    """
    if len(text) <= max_length:
        return text

    last_period = text.rfind(".", 0, max_length)
    if last_period != -1:
        truncated = text[: last_period + 1].strip()
        if truncated:
            return truncated

    last_space = text.rfind(" ", 0, max_length - 2)
    if last_space != -1:
        truncated = text[:last_space].strip()
        if truncated:
            return f"{truncated}..."

    return f"{text[: max_length - 3].strip()}..."
