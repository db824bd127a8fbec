"""Sufficiency predicates: decide whether tool results already answer the query.

A predicate takes the outcomes collected so far in the turn and the original
user query. Returning True makes the loop request a conclusion with the tool
catalog omitted instead of allowing another tool round.
"""

from __future__ import annotations

import json
from collections.abc import Callable

from mcp_copilot.ai.tools.base import ToolOutcome

SufficiencyPredicate = Callable[[list[ToolOutcome], str], bool]

_EMPTY_MARKERS = ("null", "[]", "{}", "not found", "error")
_OWNER_TERMS = ("owner", "organization", "company")


def _serialized(outcome: ToolOutcome) -> str:
    if isinstance(outcome.result, str):
        return outcome.result
    return json.dumps(outcome.result, ensure_ascii=False)


def _has_data(outcome: ToolOutcome) -> bool:
    if not outcome.ok or outcome.result is None:
        return False
    text = _serialized(outcome).lower()
    return len(text) > 10 and not any(marker in text for marker in _EMPTY_MARKERS)


def results_look_sufficient(results: list[ToolOutcome], query: str) -> bool:
    """Heuristic: a short query with real data, or several successful results.

    Ownership questions are satisfied by any successful result that mentions
    an owner-like field.
    """
    if not results:
        return False
    query = (query or "").lower()

    if "owner" in query:
        for outcome in results:
            if outcome.ok and any(t in _serialized(outcome).lower() for t in _OWNER_TERMS):
                return True

    if not any(_has_data(o) for o in results):
        return False
    if len(query) < 50:
        return True
    return sum(1 for o in results if o.ok and o.result) >= 2


def never_sufficient(results: list[ToolOutcome], query: str) -> bool:
    return False
