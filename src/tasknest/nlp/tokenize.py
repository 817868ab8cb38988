"""
Tokenization helpers.

All three functions share one normalization rule: lowercase, then replace
every character that is neither a word character nor whitespace with a space.
"""
import re
from typing import List, Set

_NON_WORD = re.compile(r'[^\w\s]')
_WHITESPACE = re.compile(r'\s+')

# Tokens of this length or shorter carry too little signal for set similarity
MIN_TOKEN_LENGTH = 3

def _clean(text: str) -> str:
    return _NON_WORD.sub(' ', text.lower())

def tokenize(text) -> List[str]:
    """Split text into lowercase tokens, keeping short tokens and repeats in order."""
    if not isinstance(text, str):
        return []
    return [token for token in _WHITESPACE.split(_clean(text)) if token]

def ordered_tokens(text) -> List[str]:
    """Significant tokens (length >= 3) in first-appearance order, without repeats."""
    seen = set()
    result = []
    for token in tokenize(text):
        if len(token) >= MIN_TOKEN_LENGTH and token not in seen:
            seen.add(token)
            result.append(token)
    return result

def tokenize_and_normalize(text) -> Set[str]:
    """
    Tokenize text for set-based comparison.

    Args:
        text: Input text; anything that is not a string yields an empty set

    Returns:
        The set of lowercase tokens longer than two characters
    """
    return set(ordered_tokens(text))

def normalize_text(text) -> str:
    """Lowercase, strip punctuation and collapse whitespace into single spaces."""
    if text is None:
        return ''
    if not isinstance(text, str):
        text = str(text)
    return _WHITESPACE.sub(' ', _clean(text)).strip()
