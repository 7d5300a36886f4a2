from __future__ import annotations

import pytest

from newsbot.categories import CATEGORY_RULES, DEFAULT_CATEGORY, map_category


@pytest.mark.parametrize(
    ("tags", "question", "expected"),
    [
        ([], "Will the Federal Reserve cut interest rates in March?", "Economics"),
        (["NFL"], "Who wins the game?", "Sports"),
        ([], "Will Trump win the 2028 election?", "Politics"),
        ([], "Will OpenAI release GPT-5 this year?", "Technology"),
        ([], "Will Russia and Ukraine sign a peace treaty?", "World Events"),
        ([], "Will the film win the Oscar for best picture?", "Entertainment"),
        ([], "Will the FDA approve the vaccine?", "Health & Science"),
        ([], "Will the company announce a merger?", "Business"),
        ([], "Will the jury reach a verdict?", "Legal"),
    ],
)
def test_map_category(tags: list[str], question: str, expected: str) -> None:
    assert map_category(tags, question) == expected


def test_first_matching_row_wins() -> None:
    # "election" (Politics) and "bitcoin" (Economics) both match; Politics comes first
    assert map_category([], "Will bitcoin be mentioned in the election debate?") == "Politics"


def test_keywords_match_whole_words_only() -> None:
    # "un" must not match inside "under", "fed" must not match inside "federer"
    assert map_category([], "Is it under control?") == DEFAULT_CATEGORY
    assert map_category(["Federer"], "") == DEFAULT_CATEGORY


def test_unmatched_falls_back_to_other() -> None:
    assert map_category(None, "Will it snow in Paris on New Year's Day?") == DEFAULT_CATEGORY


def test_rule_order() -> None:
    assert [category for category, _ in CATEGORY_RULES] == [
        "Politics",
        "Economics",
        "Technology",
        "Sports",
        "World Events",
        "Entertainment",
        "Health & Science",
        "Business",
        "Legal",
    ]
