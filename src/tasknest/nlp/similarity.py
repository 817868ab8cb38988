"""
String distance and similarity scoring.

Two families of scores are combined for duplicate detection: token-set
(Jaccard) similarity over normalized tokens, and edit-distance similarity over
whole normalized strings.
"""
from typing import Iterable, List, Optional, Set

from ..models import SimilarityResult
from .tokenize import normalize_text, tokenize_and_normalize

# Float noise from weighted sums is rounded away so exact matches score 1.0
SCORE_PRECISION = 12

def levenshtein_distance(a, b) -> int:
    """Edit distance between two strings; insert, delete and substitute each cost 1."""
    a = a or ''
    b = b or ''
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(min(
                current[j - 1] + 1,       # insertion
                previous[j] + 1,          # deletion
                previous[j - 1] + cost,   # substitution
            ))
        previous = current
    return previous[-1]

def fuzzy_score(a, b) -> float:
    """Normalized edit similarity, ``1 - distance / max(len(a), len(b))``."""
    a = a or ''
    b = b or ''
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein_distance(a, b) / longest

def jaccard_similarity(tokens_a: Optional[Iterable[str]], tokens_b: Optional[Iterable[str]]) -> float:
    """
    Jaccard index of two token collections.

    Two empty collections score 0 rather than 1 so that empty text never
    matches anything.
    """
    set_a: Set[str] = set(tokens_a or ())
    set_b: Set[str] = set(tokens_b or ())
    union = set_a | set_b
    if not union:
        return 0.0
    return len(set_a & set_b) / len(union)

def get_similarity(text_a, text_b) -> float:
    """Token-set similarity of two texts; the primary cross-text score."""
    return jaccard_similarity(tokenize_and_normalize(text_a), tokenize_and_normalize(text_b))

def _clamp(score: float) -> float:
    return round(min(1.0, max(0.0, score)), SCORE_PRECISION)

def _sorted(results: List[SimilarityResult]) -> List[SimilarityResult]:
    # sorted() is stable, so equal scores keep the order of the input tasks
    return sorted(results, key=lambda r: r.score, reverse=True)

def token_search(tasks, query: str, threshold: float) -> List[SimilarityResult]:
    """
    Score every task by token similarity to the query.

    A task's score is the best of its title and description scores. Tasks
    below ``threshold`` are dropped; the rest are ranked descending, ties in
    input order.
    """
    results = []
    for task in tasks:
        score = get_similarity(query, task.title)
        description = getattr(task, 'description', None)
        if description:
            score = max(score, get_similarity(query, description))
        if score >= threshold:
            results.append(SimilarityResult(id=task.id, title=task.title, score=_clamp(score)))
    return _sorted(results)

def fuzzy_search(tasks, query: str, threshold: float = 0.4) -> List[SimilarityResult]:
    """Edit-distance counterpart of token_search over normalized title and description."""
    normalized_query = normalize_text(query)
    results = []
    for task in tasks:
        score = fuzzy_score(normalized_query, normalize_text(task.title))
        description = getattr(task, 'description', None)
        if description:
            score = max(score, fuzzy_score(normalized_query, normalize_text(description)))
        if score >= threshold:
            results.append(SimilarityResult(id=task.id, title=task.title, score=_clamp(score)))
    return _sorted(results)

def combine_search_results(primary_results: List[SimilarityResult],
                           fuzzy_results: List[SimilarityResult],
                           primary_weight: float = 0.7) -> List[SimilarityResult]:
    """
    Merge two ranked result lists keyed by task id.

    Ids found in both lists get ``primary_weight * primary + (1 - primary_weight) * fuzzy``;
    ids found in only one list keep that list's score unweighted.
    """
    primary = {}
    for result in primary_results:
        primary.setdefault(result.id, result)
    fuzzy = {}
    for result in fuzzy_results:
        fuzzy.setdefault(result.id, result)

    combined = []
    for task_id in list(primary) + [i for i in fuzzy if i not in primary]:
        if task_id in primary and task_id in fuzzy:
            score = (primary_weight * primary[task_id].score
                     + (1 - primary_weight) * fuzzy[task_id].score)
            title = primary[task_id].title
        else:
            source = primary.get(task_id) or fuzzy[task_id]
            score = source.score
            title = source.title
        combined.append(SimilarityResult(id=task_id, title=title, score=_clamp(score)))
    return _sorted(combined)
