"""
HUMANIZER - Informal texting register and typing-speed pacing

All randomness comes from the injected random.Random so a fixed seed
gives a fixed output.
"""

import re
import random
from typing import List, Optional, Tuple

# Hindi / Hinglish: Devanagari script or common romanized words
DEVANAGARI = re.compile(r"[\u0900-\u097F]")
HINGLISH_WORDS = re.compile(
    r"\b(?:hai|hain|mein|ho|rha|rhi|raha|rahi|tha|thi|kya|kyu|kyun|kaun|nahi|mujhe|aap|karo|bhejo)\b",
    re.IGNORECASE
)

# Common texting abbreviations
REPLACEMENTS: List[Tuple[re.Pattern, str]] = [
    (re.compile(r"\babout\b", re.IGNORECASE), "abt"),
    (re.compile(r"\byou\b", re.IGNORECASE), "u"),
    (re.compile(r"\byour\b", re.IGNORECASE), "ur"),
    (re.compile(r"\bare\b", re.IGNORECASE), "r"),
    (re.compile(r"\bplease\b", re.IGNORECASE), "pls"),
    (re.compile(r"\bthanks\b", re.IGNORECASE), "thx"),
    (re.compile(r"\bwhat\b", re.IGNORECASE), "wat"),
    (re.compile(r"\bshould\b", re.IGNORECASE), "shud"),
    (re.compile(r"\bwhen\b", re.IGNORECASE), "wen"),
    (re.compile(r"\bwould\b", re.IGNORECASE), "wud"),
    (re.compile(r"\bcould\b", re.IGNORECASE), "cud"),
    (re.compile(r"\bgoing to\b", re.IGNORECASE), "gonna"),
    (re.compile(r"\bwant to\b", re.IGNORECASE), "wanna"),
    (re.compile(r"\bI am\b", re.IGNORECASE), "im"),
    (re.compile(r"\bI'm\b", re.IGNORECASE), "im"),
]

# Safe on Hinglish text
SAFE_REPLACEMENTS = frozenset({"u", "ur", "pls"})

TYPOS = [("the", "teh"), ("and", "adn"), ("have", "ahve")]

# Pacing (seconds)
BASE_SECONDS_PER_CHAR = 0.15
PERSONA_SPEED = {
    "Elderly Person": 2.0,
    "Naive User": 1.2,
    "Interested Buyer": 0.8,
}
THINKING_TIME = 2.0
MIN_DELAY = 1.5
MAX_DELAY = 10.0


def is_transliterated(text: str) -> bool:
    """Predominantly Hindi: Devanagari script or romanized Hindi words"""
    return bool(DEVANAGARI.search(text) or HINGLISH_WORDS.search(text))


class Humanizer:
    """Probabilistic informal post-processing for generated replies"""

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def humanize(self, text: str) -> str:
        if not text:
            return text

        hindi = is_transliterated(text)
        result = text

        for pattern, replacement in REPLACEMENTS:
            if hindi and replacement not in SAFE_REPLACEMENTS:
                continue
            if self.rng.random() > 0.4:
                result = pattern.sub(replacement, result)

        if hindi:
            return result

        # lowercase "I" sometimes
        if self.rng.random() > 0.5:
            result = re.sub(r"\bI\b", "i", result)

        if self.rng.random() > 0.6 and result.endswith("."):
            result = result[:-1]

        if self.rng.random() > 0.7:
            result = re.sub(r"\?$", "??", result)
            result = re.sub(r"!$", "!!", result)

        # Rare typo on longer texts
        if len(result) > 20 and self.rng.random() > 0.8:
            original, typo = self.rng.choice(TYPOS)
            if original in result and self.rng.random() > 0.5:
                result = result.replace(original, typo, 1)

        return result


def calculate_typing_delay(
    text: str,
    persona_name: Optional[str],
    rng: Optional[random.Random] = None
) -> float:
    """
    Seconds a human would take to type this reply.
    length x base rate x persona factor x uniform(0.7, 1.3) + thinking time,
    clamped to [1.5, 10].
    """
    if not text:
        return MIN_DELAY
    rng = rng or random.Random()

    delay = len(text) * BASE_SECONDS_PER_CHAR
    delay *= PERSONA_SPEED.get(persona_name, 1.0)
    delay *= rng.uniform(0.7, 1.3)
    delay += THINKING_TIME

    return min(max(delay, MIN_DELAY), MAX_DELAY)
