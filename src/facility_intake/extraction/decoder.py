"""Resilient decoding of model responses that should be JSON objects.

Model output is often wrapped in prose or code fences, uses single quotes or
bare keys, carries trailing commas or raw control characters, or stops
mid-structure when the token budget runs out. :func:`decode_response` tries,
in order and stopping at the first success:

1. a direct parse of the JSON-looking substring;
2. a parse after mechanical repairs done in one string-aware pass
   (quote normalization, bare keys, trailing commas, missing commas between
   adjacent values, control characters, Python/JS literals);
3. a parse after closing an unterminated string and any open brackets,
   backing off to the last complete element when that is not enough.

It never raises. Callers branch on the returned variant.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import re
from typing import Any

log = logging.getLogger(__name__)

_FENCE = re.compile(r"```(?:json|JSON)?[ \t]*\r?\n?(.*?)```", re.DOTALL)
_OPEN_FENCE = re.compile(r"```(?:json|JSON)?[ \t]*\r?\n?")
_HEX4 = re.compile(r"[0-9a-fA-F]{4}")
_NUMBER_CHARS = frozenset("0123456789+-.eE")
_LITERALS = {
    "true": "true",
    "false": "false",
    "null": "null",
    "True": "true",
    "False": "false",
    "None": "null",
    "NaN": "null",
    "Infinity": "null",
    "undefined": "null",
}
_MAX_BACKOFF = 64

PARSE_FAILED = "parse failed"


@dataclasses.dataclass(frozen=True, slots=True)
class WellFormed:
    """The response parsed as-is."""

    payload: dict[str, Any]
    warnings: tuple[str, ...] = ()


@dataclasses.dataclass(frozen=True, slots=True)
class Repaired:
    """The response parsed only after repair."""

    payload: dict[str, Any]
    stage: str  # "mechanical" or "balanced"
    warnings: tuple[str, ...] = ()


@dataclasses.dataclass(frozen=True, slots=True)
class Unrecoverable:
    """Nothing parseable could be recovered."""

    reason: str
    warnings: tuple[str, ...] = ()

    @property
    def payload(self) -> dict[str, Any]:
        return {}


Decoded = WellFormed | Repaired | Unrecoverable


def decode_response(text: str) -> Decoded:
    """Decode a model response into a JSON object.

    Args:
        text: Raw response text.

    Returns:
        ``WellFormed`` or ``Repaired`` with the parsed object, or
        ``Unrecoverable`` with an empty payload and a "parse failed" warning.
    """
    try:
        return _decode(text if isinstance(text, str) else str(text))
    except RecursionError:
        return _unrecoverable("nesting too deep")


def _unrecoverable(reason: str) -> Unrecoverable:
    return Unrecoverable(reason=reason, warnings=(f"{PARSE_FAILED}: {reason}",))


def _decode(text: str) -> Decoded:
    candidate = extract_json_candidate(text)
    if candidate is None:
        return _unrecoverable("no JSON object found in response")

    parsed = _try_parse(candidate)
    if parsed is not None:
        return WellFormed(*_as_object(parsed))

    repaired = mechanical_repairs(candidate)
    parsed = _try_parse(repaired)
    if parsed is not None:
        payload, notes = _as_object(parsed)
        log.debug("Response decoded after mechanical repairs")
        return Repaired(payload, "mechanical", ("response JSON repaired", *notes))

    parsed = _parse_balanced(repaired)
    if parsed is not None:
        payload, notes = _as_object(parsed)
        log.debug("Response decoded after closing unterminated structures")
        return Repaired(
            payload,
            "balanced",
            ("response JSON was truncated and has been closed", *notes),
        )

    return _unrecoverable("response is not valid JSON")


def _try_parse(text: str) -> dict[str, Any] | list[Any] | None:
    try:
        value = json.loads(text)
    except ValueError:
        return None
    if isinstance(value, dict | list):
        return value
    return None


def _as_object(value: dict[str, Any] | list[Any]) -> tuple[dict[str, Any], tuple[str, ...]]:
    if isinstance(value, dict):
        return value, ()
    return {"facilities": [v for v in value if isinstance(v, dict)]}, (
        "top-level array treated as facility list",
    )


# --- Candidate extraction ---


def extract_json_candidate(text: str) -> str | None:
    """Return the substring most likely to hold the JSON object.

    Prefers a fenced block, then the first balanced ``{...}``; when the
    object never closes, everything from its opening brace onward. A region
    that opens with ``[`` is taken whole as a top-level array.
    """
    region = text
    fence = _FENCE.search(text)
    if fence and "{" in fence.group(1):
        region = fence.group(1)
    else:
        opening = _OPEN_FENCE.search(text)
        if opening and "{" in text[opening.end() :]:
            region = text[opening.end() :]

    start = region.find("{")
    stripped = region.lstrip()
    if stripped.startswith("["):
        start = len(region) - len(stripped)
    elif start == -1:
        return None

    end = _matching_close(region, start)
    if end is not None:
        return region[start : end + 1]
    tail = region[start:].rstrip()
    if tail.endswith("```"):
        tail = tail[:-3].rstrip()
    return tail


def _matching_close(text: str, start: int) -> int | None:
    depth = 0
    in_string = False
    escape = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "{[":
            depth += 1
        elif ch in "}]":
            depth -= 1
            if depth == 0:
                return i
    return None


# --- Stage b: mechanical repairs ---


def mechanical_repairs(text: str) -> str:
    """Apply token-level repairs outside string literals in a single pass."""
    out: list[str] = []
    i, n = 0, len(text)
    after_value = False

    while i < n:
        ch = text[i]
        if ch in "\"'“”‘’":
            if after_value:
                out.append(",")
            i = _copy_string(text, i, out)
            after_value = True
        elif ch in "{[":
            if after_value:
                out.append(",")
            out.append(ch)
            after_value = False
            i += 1
        elif ch in "}]":
            _drop_trailing_comma(out)
            out.append(ch)
            after_value = True
            i += 1
        elif ch in ",:":
            out.append(ch)
            after_value = False
            i += 1
        elif ch in " \t\r\n":
            out.append(ch)
            i += 1
        elif ch in "0123456789+-.":
            j = i
            while j < n and text[j] in _NUMBER_CHARS:
                j += 1
            if after_value:
                out.append(",")
            out.append(text[i:j].lstrip("+") or "0")
            after_value = True
            i = j
        elif ch.isalpha() or ch in "_$":
            j = i
            while j < n and (text[j].isalnum() or text[j] in "_$"):
                j += 1
            word = text[i:j]
            k = j
            while k < n and text[k] in " \t\r\n":
                k += 1
            if after_value:
                out.append(",")
            if k < n and text[k] == ":":
                out.append(json.dumps(word))
            else:
                out.append(_LITERALS.get(word, word))
            after_value = True
            i = j
        elif ord(ch) < 0x20:
            i += 1
        else:
            out.append(ch)
            i += 1
    return "".join(out)


def _closers_for(opener: str) -> str:
    if opener == '"':
        return '"'
    if opener == "'":
        return "'"
    if opener in "“”":
        return '"“”'
    return "'‘’"


def _copy_string(text: str, i: int, out: list[str]) -> int:
    """Copy a string literal starting at ``i`` as a valid JSON string.

    Returns the index after the closing quote. An unterminated string is
    left open for the balancing stage.
    """
    closers = _closers_for(text[i])
    out.append('"')
    j, n = i + 1, len(text)
    while j < n:
        c = text[j]
        if c == "\\":
            if j + 1 >= n:
                return n
            nxt = text[j + 1]
            if nxt == "u" and _HEX4.fullmatch(text, j + 2, j + 6):
                out.append(text[j : j + 6])
                j += 6
            elif nxt in '"\\/bfnrt':
                out.append(c + nxt)
                j += 2
            elif nxt == "'":
                out.append("'")
                j += 2
            else:
                out.append("\\\\")
                j += 1
            continue
        if c in closers:
            out.append('"')
            return j + 1
        if c == '"':
            out.append('\\"')
        elif c == "\n":
            out.append("\\n")
        elif c == "\r":
            out.append("\\r")
        elif c == "\t":
            out.append("\\t")
        elif ord(c) >= 0x20:
            out.append(c)
        j += 1
    return n


def _drop_trailing_comma(out: list[str]) -> None:
    k = len(out) - 1
    while k >= 0 and out[k] in (" ", "\t", "\r", "\n"):
        k -= 1
    if k >= 0 and out[k] == ",":
        del out[k]


# --- Stage c: balancing ---


def _parse_balanced(text: str) -> dict[str, Any] | list[Any] | None:
    closed, cuts = close_structures(text)
    if closed is not None:
        parsed = _try_parse(closed)
        if parsed is not None:
            return parsed
    # Back off to the last complete element and close again.
    for cut in list(reversed(cuts))[:_MAX_BACKOFF]:
        closed, _ = close_structures(text[:cut])
        if closed is None:
            continue
        parsed = _try_parse(closed)
        if parsed is not None:
            return parsed
    return None


def close_structures(text: str) -> tuple[str | None, list[int]]:
    """Append the minimal closing sequence for ``text``.

    Returns the closed text (or None when the text has mismatched closers)
    and candidate cut offsets for backing off: positions of commas and the
    positions just after opening brackets, outside strings.
    """
    stack: list[str] = []
    cuts: list[int] = []
    in_string = False
    escape = False
    last_sig = ""
    string_prev_sig = ""
    prev_sig_at_string = ""

    for i, ch in enumerate(text):
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
                prev_sig_at_string = string_prev_sig
                last_sig = '"'
            continue
        if ch in " \t\r\n":
            continue
        if ch == '"':
            in_string = True
            string_prev_sig = last_sig
        elif ch in "{[":
            stack.append(ch)
            cuts.append(i + 1)
        elif ch in "}]":
            if not stack or (stack[-1] == "{") != (ch == "}"):
                return None, cuts
            stack.pop()
        elif ch == ",":
            cuts.append(i)
        last_sig = ch if ch != '"' else last_sig

    result = text
    if in_string:
        if escape:
            result = result[:-1]
        result += '"'
        prev_sig_at_string = string_prev_sig
        last_sig = '"'
    result = result.rstrip()
    while result.endswith(","):
        result = result[:-1].rstrip()
        last_sig = result[-1:] if result else ""
    if result.endswith(":"):
        result += " null"
    elif (
        stack
        and stack[-1] == "{"
        and last_sig == '"'
        and prev_sig_at_string in ("{", ",")
    ):
        # A key with no value
        result += ": null"
    result += "".join("}" if c == "{" else "]" for c in reversed(stack))
    return result, cuts
