"""
Duplicate detection for new and existing tasks.
"""
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from .config import Settings
from .logs import get_logger
from .models import SimilarityResult, Task
from .nlp.similarity import combine_search_results, fuzzy_search, token_search
from .nlp.tokenize import normalize_text

log = get_logger("dedup")


class Decision(Enum):
    CREATE = "create"
    SKIP = "skip"
    MERGE = "merge"
    PROMPT = "prompt"


class Resolution(BaseModel):
    """Outcome of running a create request through the resolver."""

    decision: Decision
    candidates: List[SimilarityResult] = Field(default_factory=list, description="Ranked duplicate candidates")
    target: Optional[SimilarityResult] = Field(default=None, description="Merge target when decision is merge")
    warnings: List[str] = Field(default_factory=list)

    @property
    def best(self) -> Optional[SimilarityResult]:
        return self.candidates[0] if self.candidates else None


class DuplicateGroup(BaseModel):
    """An existing task and the other tasks that look like duplicates of it."""

    anchor: Task
    duplicates: List[SimilarityResult] = Field(default_factory=list)

    @property
    def max_similarity(self) -> float:
        return max((d.score for d in self.duplicates), default=0.0)


class DuplicateResolver:
    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or Settings()

    def find_candidates(self, title: str, tasks: List[Task],
                        threshold: Optional[float] = None) -> List[SimilarityResult]:
        """
        Rank existing tasks by similarity to a title.

        Token similarity against title and description is the primary score.
        When fuzzy matching is enabled an edit-distance pass with a stricter
        threshold is blended in, and anything that ends up below the threshold
        is dropped. Equal scores keep the order of ``tasks``.

        A threshold of 1.0 asks for exact duplicates: only tasks whose
        normalized title equals the normalized query are returned, so a
        reordered title with the same words does not count.
        """
        if threshold is None:
            threshold = self.settings.dedup_threshold
        if threshold >= 1.0:
            wanted = normalize_text(title)
            return [SimilarityResult(id=t.id, title=t.title, score=1.0)
                    for t in tasks if wanted and normalize_text(t.title) == wanted]

        primary = token_search(tasks, title, threshold)
        if not self.settings.use_fuzzy:
            return primary

        fuzzy = fuzzy_search(tasks, title, self.settings.fuzzy_threshold(threshold))
        combined = combine_search_results(primary, fuzzy, self.settings.primary_weight)
        return [r for r in combined if r.score >= threshold]

    def resolve(self, title: str, tasks: List[Task], force: bool = False, auto_merge: bool = False,
                interactive: bool = False, threshold: Optional[float] = None) -> Resolution:
        """
        Decide what to do with a new task titled ``title``.

        Order of precedence: no candidates -> create; force -> create with a
        warning; auto_merge -> merge when the best candidate reaches the
        auto-merge threshold, create otherwise; else skip (prompt when
        interactive).
        """
        candidates = self.find_candidates(title, tasks, threshold)
        if not candidates:
            return Resolution(decision=Decision.CREATE)

        best = candidates[0]
        if force:
            warning = f"Created despite {len(candidates)} similar task(s); best match {best.id} ({best.score:.2f})"
            log.warning(warning)
            return Resolution(decision=Decision.CREATE, candidates=candidates, warnings=[warning])

        if auto_merge:
            if best.score >= self.settings.auto_merge_threshold:
                log.info(f"Auto-merging '{title}' into {best.id} (similarity {best.score:.2f})")
                return Resolution(decision=Decision.MERGE, candidates=candidates, target=best)
            log.info(f"Best match {best.id} ({best.score:.2f}) is below the auto-merge threshold; creating")
            return Resolution(decision=Decision.CREATE, candidates=candidates)

        decision = Decision.PROMPT if interactive else Decision.SKIP
        log.info(f"'{title}' resembles {len(candidates)} existing task(s); decision {decision.value}")
        return Resolution(decision=decision, candidates=candidates)

    def find_duplicate_groups(self, tasks: List[Task], min_similarity: Optional[float] = None) -> List[DuplicateGroup]:
        """
        Group existing tasks that look like duplicates of each other.

        Each group is anchored on its earliest member; a task belongs to at
        most one group. Groups are returned strongest first.
        """
        if min_similarity is None:
            min_similarity = self.settings.dedup_threshold

        grouped = set()
        groups = []
        for index, anchor in enumerate(tasks):
            if anchor.id in grouped:
                continue
            others = [t for t in tasks[index + 1:] if t.id not in grouped]
            matches = self.find_candidates(anchor.title, others, min_similarity)
            if not matches:
                continue
            grouped.add(anchor.id)
            grouped.update(m.id for m in matches)
            groups.append(DuplicateGroup(anchor=anchor, duplicates=matches))

        groups.sort(key=lambda g: g.max_similarity, reverse=True)
        log.debug(f"Found {len(groups)} duplicate groups at {min_similarity:.2f}")
        return groups
