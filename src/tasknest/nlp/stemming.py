"""
Rule-based suffix stripping.

Handles plurals (-ies, -es, -s), verb forms (-ing, -ed) and -ly adverbs.
The first matching rule wins, so "stories" -> "story" and "running" -> "run".
"""
from typing import Iterable, List

VOWELS = 'aeiou'

def is_consonant(char: str) -> bool:
    return char.lower() not in VOWELS

def _has_doubled_consonant(stem: str) -> bool:
    return len(stem) >= 2 and stem[-1] == stem[-2] and is_consonant(stem[-1])

def stem_word(word) -> str:
    """Reduce a word to its root form using character rules only."""
    if word is None:
        return ''
    if not isinstance(word, str):
        return str(word)

    word = word.lower()

    # Plurals
    if word.endswith('ies'):
        return word[:-3] + 'y'
    if word.endswith('es'):
        return word[:-2]
    if word.endswith('s') and not word.endswith('ss'):
        return word[:-1]

    # Verb forms, collapsing a doubled consonant ("running" -> "run")
    if word.endswith('ing'):
        stem = word[:-3]
        if len(word) > 4 and _has_doubled_consonant(stem):
            return stem[:-1]
        return stem
    if word.endswith('ed'):
        stem = word[:-2]
        if len(word) > 3 and _has_doubled_consonant(stem):
            return stem[:-1]
        return stem

    if word.endswith('ly'):
        return word[:-2]

    return word

def stem_tokens(tokens: Iterable[str]) -> List[str]:
    if tokens is None:
        return []
    return [stem_word(token) for token in tokens]
