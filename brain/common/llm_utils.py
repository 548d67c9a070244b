"""Shared utilities for parsing LLM responses.

Model output is not a trustworthy structured channel. Parsing runs an ordered
list of strategies, each a pure function ``text -> Optional[value]``; the
first one that yields a value wins, otherwise the caller's default is
returned unchanged.
"""

from __future__ import annotations

import json
import re
from typing import Any, Callable, Iterator, List, Optional, Tuple

_FENCED_JSON_RE = re.compile(r"```(?:json|JSON)?\s*\n?(.*?)```", re.DOTALL)

# Wrapper so that a parsed JSON ``null`` is distinguishable from "no match"
_Found = Tuple[Any]
Strategy = Callable[[str], Optional[_Found]]


def _loads(candidate: str) -> Optional[_Found]:
    try:
        return (json.loads(candidate),)
    except (json.JSONDecodeError, ValueError):
        return None


def _balanced_regions(text: str, open_ch: str, close_ch: str) -> Iterator[str]:
    """Yield every balanced open_ch...close_ch region, outermost first.

    String literals are skipped so braces inside quoted values do not
    affect nesting.
    """
    start = text.find(open_ch)
    while start >= 0:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == open_ch:
                depth += 1
            elif ch == close_ch:
                depth -= 1
                if depth == 0:
                    yield text[start:i + 1]
                    break
        start = text.find(open_ch, start + 1)


def fenced_json_block(text: str) -> Optional[_Found]:
    """A ```json fenced block (or a bare ``` fence)"""
    for match in _FENCED_JSON_RE.finditer(text):
        found = _loads(match.group(1).strip())
        if found is not None:
            return found
    return None


def brace_region(text: str) -> Optional[_Found]:
    """The first balanced {...} region that parses as JSON"""
    for region in _balanced_regions(text, "{", "}"):
        found = _loads(region)
        if found is not None:
            return found
    return None


def bracket_region(text: str) -> Optional[_Found]:
    """The first balanced [...] region that parses as JSON"""
    for region in _balanced_regions(text, "[", "]"):
        found = _loads(region)
        if found is not None:
            return found
    return None


OBJECT_STRATEGIES: List[Strategy] = [fenced_json_block, brace_region]
ARRAY_STRATEGIES: List[Strategy] = [fenced_json_block, brace_region, bracket_region]


def parse_llm_json(raw: Optional[str], default: Any = None) -> Any:
    """Parse JSON from an LLM response, handling code fences and preamble text.

    Tries in order:
    1. A fenced ```json block
    2. The first balanced {...} region
    3. The first balanced [...] region (only when ``default`` is a list)
    4. Return ``default`` unchanged (``{}`` when no default is given)

    When ``default`` is a dict or a list, a strategy only succeeds if its
    value has the same shape.
    """
    if default is None:
        default = {}
    if not raw:
        return default

    expected = type(default) if isinstance(default, (dict, list)) else None
    strategies = ARRAY_STRATEGIES if isinstance(default, list) else OBJECT_STRATEGIES
    for strategy in strategies:
        found = strategy(raw)
        if found is None:
            continue
        if expected is None or isinstance(found[0], expected):
            return found[0]

    return default


def coerce_str_list(value: Any, limit: Optional[int] = None) -> List[str]:
    """Best-effort conversion of model output to a list of non-empty strings"""
    if isinstance(value, dict):
        # {"questions": [...]} style wrappers
        for v in value.values():
            if isinstance(v, list):
                value = v
                break
    if not isinstance(value, list):
        return []
    items = [str(v).strip() for v in value if isinstance(v, (str, int, float)) and str(v).strip()]
    return items[:limit] if limit is not None else items
