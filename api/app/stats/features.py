"""Structural content features of a post.

``extract_features`` turns free text into a set of human-readable tags
(emoji and hashtag counts, questions, calls to action, links, mentions,
length bucket, formatting, statistics).  The tags are what the history
aggregator counts when it compares winning and losing variants, so the
wording of each tag is part of the output contract.
"""

from __future__ import annotations

import re
from typing import Optional

EMOJI_RE = re.compile(
    "["
    "\U0001F000-\U0001F2FF"  # mahjong, cards, enclosed alphanumerics, flags
    "\U0001F300-\U0001F5FF"  # symbols & pictographs
    "\U0001F600-\U0001F64F"  # emoticons
    "\U0001F680-\U0001F6FF"  # transport & map
    "\U0001F700-\U0001F7FF"
    "\U0001F900-\U0001FAFF"  # supplemental symbols & pictographs
    "\u2600-\u27BF"  # misc symbols, dingbats
    "]"
)
HASHTAG_RE = re.compile(r"#\w+")
CTA_RE = re.compile(
    r"\b(click|learn|read|check|discover|try|get|join|sign|subscribe|follow|share|comment|like)\b",
    re.IGNORECASE,
)
LINK_RE = re.compile(r"https?://\S+", re.IGNORECASE)
MENTION_RE = re.compile(r"(?<![\w@])@\w+")
BULLET_RE = re.compile(r"^[ \t]*[-•*][ \t]+\S", re.MULTILINE)
STATISTIC_RE = re.compile(
    r"\d+(?:\.\d+)?\s*%|\d+(?:\.\d+)?\s*(?:million|billion|thousand|k|m|b)\b",
    re.IGNORECASE,
)

SHORT_LIMIT = 100
LONG_LIMIT = 280

SHORT = "Short (< 100 chars)"
MEDIUM = "Medium (100-280 chars)"
LONG = "Long (> 280 chars)"


def length_bucket(text: str) -> str:
    """Exactly one of the three length tags."""
    if len(text) < SHORT_LIMIT:
        return SHORT
    if len(text) < LONG_LIMIT:
        return MEDIUM
    return LONG


def extract_features(text: Optional[str]) -> list[str]:
    """Feature tags for one piece of content, sorted and de-duplicated.

    Never raises; ``None`` is treated as empty text.
    """
    text = text or ""
    features = {length_bucket(text)}

    emojis = len(EMOJI_RE.findall(text))
    if emojis:
        features.add(f"Emojis ({emojis})")

    hashtags = len(HASHTAG_RE.findall(text))
    if hashtags:
        features.add(f"Hashtags ({hashtags})")

    if "?" in text:
        features.add("Questions")
    if CTA_RE.search(text):
        features.add("Call to Action")
    if LINK_RE.search(text):
        features.add("Links")
    if MENTION_RE.search(text):
        features.add("Mentions")
    if text.count("\n") > 2:
        features.add("Multi-paragraph")
    if BULLET_RE.search(text):
        features.add("Bullet Points")
    if STATISTIC_RE.search(text):
        features.add("Statistics")

    return sorted(features)


def compare_content(winner_text: Optional[str], loser_text: Optional[str]) -> dict:
    """Tags unique to each side of a winner/loser pair.

    Returns
    -------
    dict
        winner_only: tags present in the winner but not the loser
        loser_only: tags present in the loser but not the winner
        shared: tags present in both
    """
    winner = set(extract_features(winner_text))
    loser = set(extract_features(loser_text))
    return {
        "winner_only": sorted(winner - loser),
        "loser_only": sorted(loser - winner),
        "shared": sorted(winner & loser),
    }
