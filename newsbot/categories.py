"""
Keyword taxonomy for assigning markets to news categories.

The taxonomy is an ordered table of (category, keywords). A market's tags and
question text are matched against each row in order and the first row with a
whole-word keyword hit wins. Markets matching no row fall into "Other".
"""

import re
from typing import Iterable, Optional

DEFAULT_CATEGORY = "Other"

CATEGORY_RULES: list[tuple[str, tuple[str, ...]]] = [
    ("Politics", (
        "politics", "political", "election", "president", "senate", "congress",
        "congressional", "governor", "mayor", "trump", "biden", "democrat",
        "republican", "vote", "voting", "ballot", "campaign", "primary",
        "caucus", "impeachment", "supreme court", "scotus",
    )),
    ("Economics", (
        "economics", "economy", "economic", "inflation", "gdp", "recession",
        "unemployment", "fed", "federal reserve", "interest rate",
        "stock market", "dow", "s&p", "nasdaq", "bitcoin", "btc", "ethereum",
        "eth", "crypto", "cryptocurrency", "defi", "nft", "dollar", "currency",
        "yuan", "euro", "trading", "market cap",
    )),
    ("Technology", (
        "technology", "tech", "ai", "artificial intelligence",
        "machine learning", "ml", "llm", "gpt", "chatgpt", "openai",
        "anthropic", "claude", "google", "apple", "microsoft", "meta",
        "facebook", "twitter", "x", "tesla", "spacex", "neuralink", "quantum",
        "blockchain", "web3", "software", "hardware", "chip", "semiconductor",
        "nvidia", "amd", "intel",
    )),
    ("Sports", (
        "sports", "sport", "football", "nfl", "nba", "mlb", "nhl", "soccer",
        "basketball", "baseball", "hockey", "tennis", "golf", "olympics",
        "super bowl", "world cup", "championship", "playoff", "mvp",
        "heisman", "draft", "trade", "player", "team", "coach",
    )),
    ("World Events", (
        "world", "international", "war", "conflict", "russia", "ukraine",
        "china", "iran", "israel", "palestine", "middle east", "nato", "un",
        "united nations", "sanctions", "embargo", "trade war", "military",
        "defense", "nuclear", "missile", "attack", "invasion", "peace",
        "treaty", "summit", "g7", "g20",
    )),
    ("Entertainment", (
        "entertainment", "movie", "film", "oscar", "emmy", "grammy", "award",
        "netflix", "disney", "hbo", "streaming", "music", "album", "song",
        "artist", "actor", "actress", "director", "celebrity", "hollywood",
        "box office",
    )),
    ("Health & Science", (
        "health", "medical", "medicine", "disease", "virus", "pandemic",
        "epidemic", "covid", "vaccine", "fda", "clinical trial", "drug",
        "pharmaceutical", "biotech", "research", "study", "scientific", "nasa",
        "space", "mars", "moon", "climate", "global warming", "environment",
        "green", "renewable", "energy",
    )),
    ("Business", (
        "business", "company", "corporate", "merger", "acquisition", "ipo",
        "bankruptcy", "layoff", "hiring", "ceo", "executive", "startup",
        "unicorn", "venture capital", "vc", "earnings", "revenue", "profit",
        "loss", "quarterly", "annual report",
    )),
    ("Legal", (
        "legal", "law", "court", "lawsuit", "trial", "verdict", "judge", "jury",
        "attorney", "lawyer", "crime", "criminal", "arrest", "charges",
        "indictment", "conviction", "prison", "jail", "sentencing",
    )),
]


def _compile(keywords: Iterable[str]) -> re.Pattern:
    alternation = "|".join(re.escape(keyword) for keyword in keywords)
    return re.compile(rf"\b(?:{alternation})\b")


_COMPILED_RULES: list[tuple[str, re.Pattern]] = [
    (category, _compile(keywords)) for category, keywords in CATEGORY_RULES
]


def map_category(tags: Optional[Iterable[str]] = None, question: str = "") -> str:
    """
    Map upstream tags and question text to a category.

    Args:
        tags: Upstream tag labels (may be empty)
        question: Market question text

    Returns:
        The first matching category name, or "Other"
    """
    tag_text = " ".join(str(tag) for tag in (tags or []))
    text = f"{tag_text} {question or ''}".lower()

    for category, pattern in _COMPILED_RULES:
        if pattern.search(text):
            return category

    return DEFAULT_CATEGORY
