"""Lenient JSON helpers for fragments embedded in model output."""

import json
import re
from typing import Any, List, Optional, Tuple

_TRAILING_COMMA_RE = re.compile(r",\s*([\]}])")
_BARE_KEY_RE = re.compile(r"([{,]\s*)([A-Za-z_$][\w$-]*)(\s*:)")
_PY_LITERALS = {"True": "true", "False": "false", "None": "null"}
_PY_LITERAL_RE = re.compile(r"\b(True|False|None)\b")


class JSONRepairError(ValueError):
    """A fragment could not be parsed even after repair."""

    def __init__(self, fragment: str, reason: str):
        self.fragment = fragment
        self.reason = reason
        super().__init__(f"JSON parsing failed: {reason}")


def find_balanced_object(text: str, start: int = 0) -> Optional[Tuple[int, int]]:
    """Span ``(begin, end)`` of the first balanced ``{...}`` at or after ``start``.

    Braces inside single- or double-quoted strings are ignored. Returns None
    when there is no opening brace or it is never closed.
    """
    begin = text.find("{", start)
    if begin == -1:
        return None

    depth = 0
    quote: Optional[str] = None
    escaped = False
    for i in range(begin, len(text)):
        ch = text[i]
        if quote:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == quote:
                quote = None
            continue
        if ch in ('"', "'"):
            quote = ch
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return begin, i + 1
    return None


def _split_strings(text: str) -> List[Tuple[bool, str]]:
    """Split into ``(is_string, piece)`` segments; single-quoted strings become JSON strings."""
    segments: List[Tuple[bool, str]] = []
    buf: List[str] = []
    i = 0
    while i < len(text):
        ch = text[i]
        if ch not in ('"', "'"):
            buf.append(ch)
            i += 1
            continue

        if buf:
            segments.append((False, "".join(buf)))
            buf = []
        quote = ch
        j = i + 1
        chars: List[str] = []
        while j < len(text):
            c = text[j]
            if c == "\\" and j + 1 < len(text):
                nxt = text[j + 1]
                if quote == "'" and nxt == "'":
                    chars.append("'")
                else:
                    chars.append(c + nxt)
                j += 2
                continue
            if c == quote:
                break
            if quote == "'" and c == '"':
                chars.append('\\"')
            else:
                chars.append(c)
            j += 1
        segments.append((True, '"' + "".join(chars) + '"'))
        i = j + 1
    if buf:
        segments.append((False, "".join(buf)))
    return segments


def repair_json(fragment: str) -> str:
    """Apply the bounded repair sequence to a JSON-ish fragment.

    Clips to the outermost ``{...}`` span, converts single-quoted strings,
    quotes bare object keys, maps Python literals and strips trailing commas.
    Rewrites only happen outside string literals.
    """
    text = fragment.strip()
    first, last = text.find("{"), text.rfind("}")
    if first != -1 and last > first:
        text = text[first:last + 1]

    out: List[str] = []
    for is_string, piece in _split_strings(text):
        if not is_string:
            piece = _BARE_KEY_RE.sub(r'\1"\2"\3', piece)
            piece = _PY_LITERAL_RE.sub(lambda m: _PY_LITERALS[m.group(1)], piece)
            piece = _TRAILING_COMMA_RE.sub(r"\1", piece)
        out.append(piece)
    return "".join(out)


def loads_lenient(fragment: str) -> Tuple[Any, bool]:
    """Parse ``fragment``, repairing it once on failure.

    Returns ``(value, repaired)``. Raises ``JSONRepairError`` when the
    repaired text still does not parse.
    """
    try:
        return json.loads(fragment), False
    except json.JSONDecodeError:
        pass

    repaired = repair_json(fragment)
    try:
        return json.loads(repaired), True
    except json.JSONDecodeError as e:
        raise JSONRepairError(fragment, e.msg) from e
