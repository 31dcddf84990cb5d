from __future__ import annotations

import unicodedata
from typing import List, Optional, Sequence, Tuple

import regex
from jiwer import cer as jiwer_cer

MATCH_THRESHOLD = 70

# (lowest score, advice); checked top-down
FEEDBACK_TIERS: List[Tuple[int, str]] = [
    (92, "very close, try faster and smoother"),
    (78, "fine, fix endings and tone"),
    (60, "audible but has errors, compare syllable by syllable"),
    (0, "off target, use the reference and repeat 1-2 syllables at a time"),
]


def normalize(text: str) -> str:
    """
    Drop whitespace, punctuation and symbol code points, then lowercase.
    Letters, marks and digits of any script are kept, so Thai vowel and
    tone marks survive.
    """
    kept = []
    for ch in text or "":
        cat = unicodedata.category(ch)
        if ch.isspace() or cat[0] in ("P", "S", "Z", "C"):
            continue
        kept.append(ch)
    return "".join(kept).lower()


def graphemes(text: str) -> List[str]:
    """Split into extended grapheme clusters; a Thai consonant and its marks count as one."""
    return regex.findall(r"\X", text or "")


def levenshtein(a: Sequence[str], b: Sequence[str]) -> int:
    if not a:
        return len(b)
    if not b:
        return len(a)

    prev = list(range(len(b) + 1))
    cur = [0] * (len(b) + 1)
    for i in range(1, len(a) + 1):
        cur[0] = i
        ai = a[i - 1]
        for j in range(1, len(b) + 1):
            cost = 0 if ai == b[j - 1] else 1
            cur[j] = min(
                prev[j] + 1,  # delete
                cur[j - 1] + 1,  # insert
                prev[j - 1] + cost,  # substitute
            )
        prev, cur = cur, prev
    return prev[len(b)]


def similarity(heard: str, reference: str) -> float:
    x = graphemes(normalize(heard))
    y = graphemes(normalize(reference))
    if not x and not y:
        return 1.0
    if not x or not y:
        return 0.0
    d = levenshtein(x, y)
    return max(0.0, 1.0 - d / max(len(x), len(y)))


def score(heard: str, reference: str) -> int:
    """Similarity of two strings as an integer in [0, 100]."""
    # round half up; Python's round() is banker's rounding
    return int(similarity(heard, reference) * 100 + 0.5)


def feedback_hint(value: int, tiers: List[Tuple[int, str]] = FEEDBACK_TIERS) -> str:
    for floor, advice in tiers:
        if value >= floor:
            return advice
    return tiers[-1][1]


def is_match(value: int, threshold: int = MATCH_THRESHOLD) -> bool:
    return value >= threshold


def character_error_rate(heard: str, reference: str) -> Optional[float]:
    ref = normalize(reference)
    hyp = normalize(heard)
    if not ref:
        return None
    try:
        return float(jiwer_cer(ref, hyp))
    except ValueError:
        return None
