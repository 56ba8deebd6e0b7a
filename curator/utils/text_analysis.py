"""
Small text helpers shared by scoring and validation.
"""

import unicodedata
from typing import List, Set


STOPWORDS: Set[str] = {
    "about", "after", "again", "against", "also", "among", "been", "before", "being", "between",
    "both", "could", "does", "doing", "down", "during", "each", "even", "from", "further", "have",
    "having", "here", "into", "just", "like", "made", "make", "many", "more", "most", "much", "must",
    "only", "other", "over", "said", "says", "same", "should", "some", "such", "than", "that", "their",
    "them", "then", "there", "these", "they", "this", "those", "through", "under", "until", "very",
    "were", "what", "when", "where", "which", "while", "will", "with", "would", "your", "year",
    "years", "today", "week", "new", "news", "update", "report", "reports", "according", "first",
}

# Characters allowed inside a token when flanked by word characters
_JOINERS = "-'"


def is_word_char(char: str) -> bool:
    """True for letters, combining marks and digits in any script.

    ``str.isalnum`` and the regex ``\\w`` class are both False for the vowel
    signs of Indic scripts, which breaks word-boundary checks on Devanagari
    or Bengali text.
    """
    if not char:
        return False
    return unicodedata.category(char)[0] in ("L", "M", "N")


def tokenize(text: str) -> List[str]:
    """Runs of word characters, keeping inner hyphens and apostrophes."""
    text = text or ""
    tokens: List[str] = []
    current: List[str] = []
    for i, char in enumerate(text):
        if is_word_char(char):
            current.append(char)
        elif (char in _JOINERS and current
              and i + 1 < len(text) and is_word_char(text[i + 1])):
            current.append(char)
        elif current:
            tokens.append("".join(current).lower())
            current = []
    if current:
        tokens.append("".join(current).lower())
    return tokens


def extract_keywords(text: str, min_length: int = 4) -> List[str]:
    """Lower-cased tokens longer than three characters, stopwords removed, order kept."""
    seen: Set[str] = set()
    keywords: List[str] = []
    for token in tokenize(text):
        if len(token) < min_length or token in STOPWORDS or token.isdigit():
            continue
        if token not in seen:
            seen.add(token)
            keywords.append(token)
    return keywords


def word_overlap(left: str, right: str) -> float:
    """Share of ``left``'s keywords that also appear in ``right``."""
    left_words = set(extract_keywords(left))
    if not left_words:
        return 0.0
    right_words = set(extract_keywords(right))
    return len(left_words & right_words) / len(left_words)


def contains_phrase(text: str, phrase: str) -> bool:
    """Whole-word, case-insensitive phrase match."""
    haystack = (text or "").lower()
    needle = phrase.lower()
    if not needle:
        return False
    start = haystack.find(needle)
    while start != -1:
        end = start + len(needle)
        before = haystack[start - 1] if start > 0 else ""
        after = haystack[end] if end < len(haystack) else ""
        if not is_word_char(before) and not is_word_char(after):
            return True
        start = haystack.find(needle, start + 1)
    return False
