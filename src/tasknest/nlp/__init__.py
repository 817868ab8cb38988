"""
Text normalization and similarity scoring used by search and duplicate detection.
"""

from .tokenize import tokenize, tokenize_and_normalize, normalize_text, ordered_tokens
from .stemming import stem_word, stem_tokens
from .synonyms import SYNONYM_MAP, get_synonyms, expand_with_synonyms, extract_search_filters
from .similarity import (
    levenshtein_distance,
    fuzzy_score,
    jaccard_similarity,
    get_similarity,
    token_search,
    fuzzy_search,
    combine_search_results,
)

__all__ = [
    'tokenize',
    'tokenize_and_normalize',
    'normalize_text',
    'ordered_tokens',
    'stem_word',
    'stem_tokens',
    'SYNONYM_MAP',
    'get_synonyms',
    'expand_with_synonyms',
    'extract_search_filters',
    'levenshtein_distance',
    'fuzzy_score',
    'jaccard_similarity',
    'get_similarity',
    'token_search',
    'fuzzy_search',
    'combine_search_results',
]
