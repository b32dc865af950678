"""
Answer scoring: text normalization, Levenshtein similarity and word diff.

Two scores come out of every attempt:

- core score: accent-insensitive similarity, decides pass/fail
- accent score: accent-sensitive similarity, shown as extra feedback
"""

import math
import random
import re
import unicodedata
from typing import List, Optional, Sequence, Tuple, TypeVar

T = TypeVar("T")

# Punctuation removed before comparing sentences.
_PUNCT_RE = re.compile(r"[.,!?;:]")
_SPACE_RE = re.compile(r"\s+")

# Word diff statuses
CORRECT = "correct"
ACCENT_ERROR = "accent-error"
MISSING = "missing"


def normalize(text: str, strip_accents: bool = False) -> str:
    """
    Normalize a sentence for comparison.

    - make lowercase,
    - drop the punctuation marks . , ! ? ; :
    - collapse whitespace and trim,
    - optionally remove accents (NFD, then drop U+0300..U+036F marks).

    param text: Raw sentence or transcript.
    param strip_accents: Remove diacritics when True.
    return: Normalized string.
    """
    res = _PUNCT_RE.sub("", text.lower())
    res = _SPACE_RE.sub(" ", res).strip()
    if strip_accents:
        res = "".join(
            c for c in unicodedata.normalize("NFD", res)
            if not "\u0300" <= c <= "\u036f"
        )
    return res


def edit_distance(a: str, b: str) -> int:
    """
    Levenshtein distance between a and b (insert, delete, substitute, cost 1).
    """
    if not a:
        return len(b)
    if not b:
        return len(a)
    # Single-row dynamic programming table.
    row = list(range(len(b) + 1))
    for i in range(1, len(a) + 1):
        prev = row[0]
        row[0] = i
        for j in range(1, len(b) + 1):
            cur = row[j]
            cost = 0 if a[i - 1] == b[j - 1] else 1
            row[j] = min(row[j] + 1, row[j - 1] + 1, prev + cost)
            prev = cur
    return row[len(b)]


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def calculate_similarity(s1: str, s2: str, strip_accents: bool = False) -> int:
    """
    Percentage similarity (0-100) of two sentences after normalization.

    param s1: First sentence.
    param s2: Second sentence.
    param strip_accents: Ignore accents when True (the "core" score).
    return: Integer percentage, 100 for identical normalized strings.
    """
    n1 = normalize(s1, strip_accents)
    n2 = normalize(s2, strip_accents)
    if n1 == n2:
        return 100
    length = max(len(n1), len(n2))
    if length == 0:
        return 100
    dist = edit_distance(n1, n2)
    return _round_half_up((length - dist) / length * 100)


def get_diff(target: str, transcript: str) -> List[dict]:
    """
    Word-level feedback for the model answer.

    Each target word is looked up anywhere in the transcript, ignoring
    accents. A hit with matching accents is "correct", a hit that only
    matches without accents is "accent-error", no hit is "missing".

    return: List of {"word": str, "status": str} in target order.
    """
    t_words = target.split(" ")
    r_words = transcript.split(" ")
    out = []
    for word in t_words:
        key = normalize(word, True)
        matched = next((rw for rw in r_words if normalize(rw, True) == key), None)
        if matched is None:
            status = MISSING
        elif normalize(matched) == normalize(word):
            status = CORRECT
        else:
            status = ACCENT_ERROR
        out.append({"word": word, "status": status})
    return out


def best_match(sentences: Sequence[str], transcript: str) -> Tuple[Optional[str], int, int]:
    """
    Pick the accepted sentence closest to what was said.

    The first sentence with the highest core score wins; its accent score is
    reported alongside.

    return: (best sentence, core score, accent score). (None, -1, -1) when
        there are no sentences.
    """
    best = sentences[0] if sentences else None
    max_core = -1
    max_accent = -1
    for sentence in sentences:
        core = calculate_similarity(sentence, transcript, True)
        accent = calculate_similarity(sentence, transcript, False)
        if core > max_core:
            max_core = core
            max_accent = accent
            best = sentence
    return best, max_core, max_accent


def format_time(ms: int) -> str:
    """
    Convert a duration in milliseconds to "1h 5m", "3m 20s" or "42s".
    """
    sec = int(ms) // 1000
    minutes = sec // 60
    hrs = minutes // 60
    if hrs > 0:
        return f"{hrs}h {minutes % 60}m"
    if minutes > 0:
        return f"{minutes}m {sec % 60}s"
    return f"{sec}s"


def shuffle_cards(items: Sequence[T], rng: Optional[random.Random] = None) -> List[T]:
    """
    Fisher-Yates shuffle into a new list; the input is left untouched.
    """
    rng = rng or random
    out = list(items)
    for i in range(len(out) - 1, 0, -1):
        j = rng.randint(0, i)
        out[i], out[j] = out[j], out[i]
    return out
