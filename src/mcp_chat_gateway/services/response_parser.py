"""Recover tool invocations from free-form model output.

Four matchers run in priority order over the raw text:

1. canonical call blocks, ``Tool call: <name> Arguments: {...} Result: {...}``
2. bracketed shorthand, ``[Calling tool <name> with args {...}]``
3. narrative mentions such as "I'll use the calculator tool"
4. fenced code blocks

Every accepted match claims its character span; later matchers skip any
candidate overlapping a claimed span. Matched spans are removed from (or
replaced in) the cleaned text.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, List, Optional, Tuple

from ..models.tool import ToolCall, ToolCallSource, ToolCallStatus
from .json_repair import JSONRepairError, find_balanced_object, loads_lenient

logger = logging.getLogger(__name__)

JSON_FAILURE_RESULT = {"success": False, "error": "JSON parsing failed"}
HEURISTIC_RESULT = {"success": True, "heuristic": True}
CODE_BLOCK_TOOL = "code_block"

_CALL_MARKER_RE = re.compile(r"Tool call:\s*([\w.-]+)\s+Arguments:\s*")
_RESULT_LABEL_RE = re.compile(r"\s*Result:\s*")
_SHORTHAND_RE = re.compile(r"\[(?:Calling|Invoking) tool ([\w.-]+) with (?:args|arguments) (\{[^\n]*?\})\]")
_NARRATIVE_RE = re.compile(
    r"\b(?:I['’]ll|I will|Let me|I['’]m going to|I am going to) use (?:(?:the|a|an|this|that|my) )?"
    r"[`\"']?(?!(?:the|a|an|this|that|my|right|same|appropriate|correct)\b)([\w.-]+)[`\"']? tool\b",
    re.IGNORECASE,
)
_CODE_BLOCK_RE = re.compile(r"```([\w+#.-]*)[^\S\n]*\n(.*?)```", re.DOTALL)
_EXCESS_NEWLINES_RE = re.compile(r"\n{3,}")


@dataclass
class _Match:
    start: int
    end: int
    call: ToolCall
    replacement: str = ""


@dataclass
class ParsedResponse:
    """Cleaned text plus the tool calls found in it, in text order."""

    cleaned_text: str
    tool_calls: List[ToolCall] = field(default_factory=list)


class ResponseParser:
    """Extracts tool calls and cleans model text for display."""

    def __init__(self, narrative_mentions: bool = True, narrative_known_tools_only: bool = False):
        self.narrative_mentions = narrative_mentions
        self.narrative_known_tools_only = narrative_known_tools_only

    def extract(self, raw_text: str, known_tools: Optional[Iterable[str]] = None) -> ParsedResponse:
        if not raw_text:
            return ParsedResponse(cleaned_text=raw_text or "")

        claimed: List[Tuple[int, int]] = []
        accepted: List[_Match] = []
        matchers: List[Callable[[str], List[_Match]]] = [self._call_blocks, self._shorthand]
        if self.narrative_mentions:
            known = set(known_tools) if known_tools is not None else None
            matchers.append(lambda text: self._narrative(text, known))
        matchers.append(self._code_blocks)

        for matcher in matchers:
            for match in matcher(raw_text):
                if any(match.start < end and start < match.end for start, end in claimed):
                    continue
                claimed.append((match.start, match.end))
                accepted.append(match)

        if not accepted:
            return ParsedResponse(cleaned_text=raw_text)

        accepted.sort(key=lambda m: m.start)
        code_index = 0
        pieces: List[str] = []
        cursor = 0
        for match in accepted:
            replacement = match.replacement
            if match.call.source is ToolCallSource.CODE_BLOCK:
                code_index += 1
                replacement = f"[Code block {code_index}]"
            pieces.append(raw_text[cursor:match.start])
            pieces.append(replacement)
            cursor = match.end
        pieces.append(raw_text[cursor:])

        cleaned = _EXCESS_NEWLINES_RE.sub("\n\n", "".join(pieces)).strip()
        calls = [m.call for m in accepted]
        logger.debug(f"Extracted {len(calls)} tool calls: {[c.name for c in calls]}")
        return ParsedResponse(cleaned_text=cleaned, tool_calls=calls)

    # Matchers

    def _call_blocks(self, text: str) -> List[_Match]:
        markers = list(_CALL_MARKER_RE.finditer(text))
        matches: List[_Match] = []
        for i, marker in enumerate(markers):
            limit = markers[i + 1].start() if i + 1 < len(markers) else len(text)

            args_text, after_args = self._fragment(text, marker.end(), limit)
            if args_text is None:
                # Unbalanced arguments: take everything up to the Result label
                label = text.find("Result:", marker.end(), limit)
                if label == -1:
                    continue
                args_text, after_args = text[marker.end():label], label

            label = _RESULT_LABEL_RE.match(text, after_args)
            if label is None or label.end() > limit:
                continue

            result_text, end = self._fragment(text, label.end(), limit)
            if result_text is None:
                result_text, end = text[label.end():limit].rstrip(), limit

            matches.append(_Match(marker.start(), end, self._recorded_call(marker.group(1), args_text, result_text)))
        return matches

    def _fragment(self, text: str, start: int, limit: int) -> Tuple[Optional[str], int]:
        """Balanced object starting right at ``start`` and ending within ``limit``."""
        if start >= limit or text[start] != "{":
            return None, start
        span = find_balanced_object(text, start)
        if span is None or span[1] > limit:
            return None, start
        return text[span[0]:span[1]], span[1]

    def _recorded_call(self, name: str, args_text: str, result_text: str) -> ToolCall:
        try:
            arguments, _ = loads_lenient(args_text)
            if not isinstance(arguments, dict):
                raise JSONRepairError(args_text, "arguments are not an object")
            result, _ = loads_lenient(result_text)
        except JSONRepairError as e:
            logger.warning(f"Tool call block for {name}: {e}")
            return ToolCall(
                name=name,
                arguments={},
                status=ToolCallStatus.ERROR,
                result=dict(JSON_FAILURE_RESULT),
                error=JSON_FAILURE_RESULT["error"],
                source=ToolCallSource.CALL_BLOCK,
            )

        status = _status_from_result(result)
        return ToolCall(
            name=name,
            arguments=arguments,
            status=status,
            result=result,
            error=_error_text(result) if status is ToolCallStatus.ERROR else None,
            source=ToolCallSource.CALL_BLOCK,
        )

    def _shorthand(self, text: str) -> List[_Match]:
        matches: List[_Match] = []
        for m in _SHORTHAND_RE.finditer(text):
            name = m.group(1)
            try:
                arguments, _ = loads_lenient(m.group(2))
                if not isinstance(arguments, dict):
                    raise JSONRepairError(m.group(2), "arguments are not an object")
                call = ToolCall(name=name, arguments=arguments, source=ToolCallSource.SHORTHAND)
            except JSONRepairError as e:
                logger.warning(f"Tool call shorthand for {name}: {e}")
                call = ToolCall(
                    name=name,
                    status=ToolCallStatus.ERROR,
                    result=dict(JSON_FAILURE_RESULT),
                    error=JSON_FAILURE_RESULT["error"],
                    source=ToolCallSource.SHORTHAND,
                )
            matches.append(_Match(m.start(), m.end(), call, f"[Tool call: {name}]"))
        return matches

    def _narrative(self, text: str, known: Optional[set]) -> List[_Match]:
        matches: List[_Match] = []
        for m in _NARRATIVE_RE.finditer(text):
            name = m.group(1)
            if self.narrative_known_tools_only and known is not None and name not in known:
                continue
            call = ToolCall(
                name=name,
                status=ToolCallStatus.SUCCESS,
                result=dict(HEURISTIC_RESULT),
                source=ToolCallSource.NARRATIVE,
            )
            matches.append(_Match(m.start(), m.end(), call, f"[Tool mention: {name}]"))
        return matches

    def _code_blocks(self, text: str) -> List[_Match]:
        matches: List[_Match] = []
        for m in _CODE_BLOCK_RE.finditer(text):
            language = m.group(1) or "text"
            content = m.group(2).strip()
            call = ToolCall(
                name=CODE_BLOCK_TOOL,
                arguments={"language": language},
                status=ToolCallStatus.SUCCESS,
                result={
                    "success": True,
                    "data": "Code block rendered",
                    "codeBlock": {"language": language, "content": content},
                },
                source=ToolCallSource.CODE_BLOCK,
            )
            matches.append(_Match(m.start(), m.end(), call))
        return matches


def _status_from_result(result: Any) -> ToolCallStatus:
    if isinstance(result, dict):
        if "success" in result:
            return ToolCallStatus.SUCCESS if result["success"] else ToolCallStatus.ERROR
        if result.get("error"):
            return ToolCallStatus.ERROR
    return ToolCallStatus.SUCCESS


def _error_text(result: Any) -> Optional[str]:
    if isinstance(result, dict) and result.get("error"):
        return str(result["error"])
    return "Tool reported failure"
