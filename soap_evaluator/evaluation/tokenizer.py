"""
Tokenizer - Text Normalization for Lexical Metrics

Lower-cases text, blanks out everything that is not [a-z0-9] or whitespace,
and splits on whitespace runs. Deterministic and locale-independent.
"""

import re
from typing import List, Optional

_NON_ALPHANUMERIC = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")


def tokenize(text: Optional[str]) -> List[str]:
    """
    Normalize free text into comparable tokens.

    Empty, whitespace-only or None input yields an empty list.

    Example:
        >>> tokenize("Patient reports headache, nausea.")
        ['patient', 'reports', 'headache', 'nausea']
    """
    if not text:
        return []
    cleaned = _NON_ALPHANUMERIC.sub(" ", text.lower())
    return [token for token in _WHITESPACE.split(cleaned) if token]
