"""
Fuzzy title matching used while a task is being typed, to suggest existing tasks the user may
mean instead of creating a duplicate. Not applied on import.
"""
from __future__ import annotations

import re
from difflib import SequenceMatcher
from typing import Iterable

from models import Task

MIN_QUERY_LENGTH = 3
MAX_SUGGESTIONS = 3


def _normalize(text: str) -> str:
    return re.sub(r"\s+", " ", (text or "").strip().lower())


def _fuzzy_score(query: str, title: str) -> float:
    """Best of whole-string ratio and best same-length window, so short queries match inside long titles."""
    if not query or not title:
        return 0.0
    best = SequenceMatcher(None, query, title).ratio()
    if len(title) > len(query):
        width = len(query)
        for start in range(len(title) - width + 1):
            window = title[start:start + width]
            best = max(best, SequenceMatcher(None, query, window).ratio())
            if best == 1.0:
                break
    return best


def find_similar_items(
    new_title: str,
    existing: Iterable[Task],
    threshold: float = 0.4,
) -> list[tuple[Task, float]]:
    """
    Return up to three (task, similarity) pairs, best first. `threshold` is the allowed
    distance: 0.4 keeps matches with similarity above 0.6.
    """
    query = _normalize(new_title)
    tasks = list(existing)
    if len(query) < MIN_QUERY_LENGTH or not tasks:
        return []
    scored = []
    for task in tasks:
        score = _fuzzy_score(query, _normalize(task.title))
        if 1.0 - score < threshold:
            scored.append((task, round(score, 3)))
    scored.sort(key=lambda pair: pair[1], reverse=True)
    return scored[:MAX_SUGGESTIONS]
