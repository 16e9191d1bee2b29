"""Tests for fuzzy title suggestions."""

from __future__ import annotations

from models import Task
from similarity import find_similar_items


def _tasks(*titles):
    return [Task(title=t, date="2024-01-01") for t in titles]


def test_finds_close_titles_best_first():
    tasks = _tasks("Call mom", "Buy milk today", "Buy mlk")
    matches = find_similar_items("buy milk", tasks)
    assert [t.title for t, _ in matches][0] == "Buy milk today"
    assert all(score > 0.6 for _, score in matches)
    assert "Call mom" not in [t.title for t, _ in matches]


def test_short_queries_and_empty_lists():
    assert find_similar_items("bu", _tasks("Buy milk")) == []
    assert find_similar_items("buy milk", []) == []


def test_at_most_three_suggestions():
    tasks = _tasks(*[f"Water plants {i}" for i in range(6)])
    assert len(find_similar_items("water plants", tasks)) == 3
