"""
Synonym expansion for task-domain vocabulary.

The table maps a canonical term to its synonyms. Lookups work in both
directions: a synonym resolves to its canonical term and the other synonyms.
"""
from typing import Dict, List, Optional

from ..models import SearchFilters, TaskReadiness, TaskStatus
from .tokenize import normalize_text, ordered_tokens, tokenize

SYNONYM_MAP: Dict[str, List[str]] = {
    # Status
    'todo': ['pending', 'new', 'backlog', 'later', 'upcoming'],
    'in-progress': ['doing', 'working', 'ongoing', 'active', 'current', 'wip'],
    'done': ['completed', 'finished', 'resolved', 'closed'],

    # Readiness
    'draft': ['planning', 'idea', 'concept', 'proposed'],
    'ready': ['actionable', 'prepared', 'available', 'good-to-go'],
    'blocked': ['stuck', 'waiting', 'dependent', 'halted'],

    # Action verbs
    'create': ['make', 'build', 'develop', 'implement', 'add'],
    'update': ['modify', 'change', 'edit', 'revise', 'improve'],
    'remove': ['delete', 'eliminate', 'destroy', 'drop', 'uninstall'],
    'fix': ['repair', 'resolve', 'correct', 'debug'],
    'review': ['examine', 'analyze', 'check', 'inspect', 'audit'],
}

STATUS_TERMS = {
    TaskStatus.TODO: 'todo',
    TaskStatus.IN_PROGRESS: 'in-progress',
    TaskStatus.DONE: 'done',
}

READINESS_TERMS = {
    TaskReadiness.DRAFT: 'draft',
    TaskReadiness.READY: 'ready',
    TaskReadiness.BLOCKED: 'blocked',
}

def get_synonyms(word) -> List[str]:
    """
    Look up synonyms for a word.

    Returns:
        The synonyms of a canonical term, or the canonical term followed by the
        remaining synonyms when ``word`` is itself a synonym; empty if unknown.
    """
    if not isinstance(word, str):
        return []

    word = word.lower()
    if word in SYNONYM_MAP:
        return list(SYNONYM_MAP[word])

    for key, synonyms in SYNONYM_MAP.items():
        if word in synonyms:
            return [key] + [s for s in synonyms if s != word]

    return []

def canonical_term(word: str) -> Optional[str]:
    """The canonical key a word belongs to, if any."""
    word = word.lower()
    if word in SYNONYM_MAP:
        return word
    for key, synonyms in SYNONYM_MAP.items():
        if word in synonyms:
            return key
    return None

def expand_with_synonyms(query) -> List[str]:
    """Query tokens plus, for each known term, its canonical key and all synonyms."""
    if not isinstance(query, str):
        return []

    tokens = ordered_tokens(query)
    expanded = list(tokens)
    for token in tokens:
        for key, synonyms in SYNONYM_MAP.items():
            if token == key or token in synonyms:
                expanded.append(key)
                expanded.extend(synonyms)

    seen = set()
    result = []
    for term in expanded:
        if term not in seen:
            seen.add(term)
            result.append(term)
    return result

def extract_search_filters(query) -> SearchFilters:
    """
    Pull status and readiness keywords out of a free-text query.

    Only the status and readiness groups of the synonym table are consulted;
    "in progress" is recognised as a two-word phrase. Matched words are removed
    from the query text that is returned for similarity ranking.
    """
    if not isinstance(query, str):
        return SearchFilters()

    text = normalize_text(query)
    filters = SearchFilters()
    if ' in progress ' in f' {text} ':
        filters.status = TaskStatus.IN_PROGRESS
        text = f' {text} '.replace(' in progress ', ' ').strip()

    remaining = []
    for token in tokenize(text):
        term = canonical_term(token)
        status = next((s for s, t in STATUS_TERMS.items() if t == term), None)
        readiness = next((r for r, t in READINESS_TERMS.items() if t == term), None)
        if status is not None and filters.status is None:
            filters.status = status
        elif readiness is not None and filters.readiness is None:
            filters.readiness = readiness
        else:
            remaining.append(token)

    filters.query = ' '.join(remaining)
    return filters
