"""Query tokenization shared by the lexical index and the natural-language entry point."""

from __future__ import annotations

import re
import unicodedata
from typing import Iterable, Sequence

TOKEN_RE = re.compile(r"[^\W_]+", re.UNICODE)
PREFIX_MIN_LENGTH = 3

STOP_WORDS = frozenset(
    {
        "i", "me", "my", "myself", "we", "our", "ours", "ourselves", "you",
        "your", "yours", "yourself", "yourselves", "he", "him", "his",
        "himself", "she", "her", "hers", "herself", "it", "its", "itself",
        "they", "them", "their", "theirs", "themselves", "what", "which",
        "who", "whom", "this", "that", "these", "those", "am", "is", "are",
        "was", "were", "be", "been", "being", "have", "has", "had", "having",
        "do", "does", "did", "doing", "a", "an", "the", "and", "but", "if",
        "or", "because", "as", "until", "while", "of", "at", "by", "for",
        "with", "about", "against", "between", "into", "through", "during",
        "before", "after", "above", "below", "to", "from", "up", "down", "in",
        "out", "on", "off", "over", "under", "again", "further", "then",
        "once", "here", "there", "when", "where", "why", "how", "all", "any",
        "both", "each", "few", "more", "most", "other", "some", "such", "no",
        "nor", "not", "only", "own", "same", "so", "than", "too", "very", "s",
        "t", "can", "will", "just", "don", "should", "now", "note", "notes",
    }
)


def tokenize_query(text: str) -> list[str]:
    """Split on non-alphanumeric characters and lowercase.

    Only lowercasing is applied, matching the FTS tokenizer: `casefold` would
    turn `ß` into `ss` and never match the indexed row.
    """
    return TOKEN_RE.findall(text.lower())


def fold_diacritics(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(char for char in decomposed if not unicodedata.combining(char))


def natural_terms(text: str, stop_words: Iterable[str] = STOP_WORDS) -> list[str]:
    """Turn free text into search terms.

    Apostrophes are normalized and possessives stripped before tokenizing,
    diacritics are folded away and stop words dropped.
    """

    cleaned = fold_diacritics(text.replace("’", "'"))
    cleaned = re.sub(r"'s\b", "", cleaned, flags=re.IGNORECASE).replace("'", "")
    stop = frozenset(stop_words)
    return [token for token in tokenize_query(cleaned) if token not in stop]


def build_match_expression(tokens: Sequence[str]) -> str:
    """OR-combine tokens into an FTS5 match expression with prefix wildcards.

    Tokens are quoted so that words such as `NEAR` or `AND` stay literal.
    """

    terms: list[str] = []
    for token in tokens:
        if not token:
            continue
        quoted = '"' + token.replace('"', '""') + '"'
        terms.append(f"{quoted}*" if len(token) >= PREFIX_MIN_LENGTH else quoted)
    return " OR ".join(terms)
