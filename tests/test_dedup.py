"""Tests for duplicate detection and resolution decisions."""

import pytest

from tasknest.config import Settings
from tasknest.dedup import Decision, DuplicateResolver
from conftest import make_task


@pytest.fixture
def resolver():
    return DuplicateResolver(Settings())


@pytest.fixture
def tasks():
    return [
        make_task("1", "Fix login bug"),
        make_task("2", "Write documentation"),
    ]


class TestFindCandidates:
    """Test candidate scoring."""

    def test_near_duplicate_reported_above_threshold(self, resolver, tasks):
        """Test "Fix login issue" is flagged against "Fix login bug" at 0.5."""
        candidates = resolver.find_candidates("Fix login issue", tasks, 0.5)
        assert [c.id for c in candidates] == ["1"]
        assert candidates[0].score > 0.5
        assert candidates[0].score == pytest.approx(0.7 * 0.5 + 0.3 * (1 - 4 / 15))

    def test_threshold_one_needs_identical_title(self, resolver):
        """Test threshold 1.0 only keeps tasks whose normalized title matches exactly."""
        tasks = [
            make_task("1", "Fix login bug"),
            make_task("2", "Fix login issue"),
            make_task("3", "fix: LOGIN bug"),
        ]
        assert [c.id for c in resolver.find_candidates("Fix login bug", tasks, 1.0)] == ["1", "3"]

    def test_threshold_one_rejects_reordered_words(self, resolver):
        """Test the same words in another order are not an exact duplicate."""
        tasks = [make_task("1", "Fix login bug"), make_task("2", "Login", description="bug login fix")]
        assert resolver.find_candidates("bug login fix", tasks, 1.0) == []
        assert [c.id for c in resolver.find_candidates("bug login fix", tasks, 0.9)] == ["1", "2"]

    def test_without_fuzzy(self, tasks):
        """Test token-only scoring when fuzzy matching is off."""
        resolver = DuplicateResolver(Settings(use_fuzzy=False))
        candidates = resolver.find_candidates("Fix login issue", tasks, 0.5)
        assert candidates[0].score == pytest.approx(0.5)

    def test_defaults_to_dedup_threshold(self, resolver, tasks):
        """Test a 0.5 token match passes the default threshold."""
        assert [c.id for c in resolver.find_candidates("Documentation", tasks)] == ["2"]
        assert resolver.find_candidates("Deploy release pipeline", tasks) == []

    def test_ties_keep_task_order(self, resolver):
        """Test equal scores are ranked in the order tasks were given."""
        tasks = [make_task("1", "Update readme"), make_task("2", "Update readme")]
        assert [c.id for c in resolver.find_candidates("Update readme", tasks)] == ["1", "2"]


class TestResolve:
    """Test the decision order."""

    def test_no_candidates_creates(self, resolver, tasks):
        resolution = resolver.resolve("Plan holiday party", tasks)
        assert resolution.decision == Decision.CREATE
        assert resolution.candidates == []

    def test_similar_task_skips(self, resolver, tasks):
        resolution = resolver.resolve("Fix login issue", tasks)
        assert resolution.decision == Decision.SKIP
        assert resolution.best.id == "1"

    def test_interactive_prompts(self, resolver, tasks):
        assert resolver.resolve("Fix login issue", tasks, interactive=True).decision == Decision.PROMPT

    def test_force_creates_with_warning(self, resolver, tasks):
        resolution = resolver.resolve("Fix login issue", tasks, force=True)
        assert resolution.decision == Decision.CREATE
        assert len(resolution.warnings) == 1
        assert resolution.candidates[0].id == "1"

    def test_force_wins_over_auto_merge(self, resolver, tasks):
        assert resolver.resolve("Fix login bug", tasks, force=True, auto_merge=True).decision == Decision.CREATE

    def test_auto_merge_high_confidence(self, resolver, tasks):
        resolution = resolver.resolve("Fix login bug", tasks, auto_merge=True)
        assert resolution.decision == Decision.MERGE
        assert resolution.target.id == "1"

    def test_auto_merge_below_threshold_creates(self, resolver, tasks):
        """Test a weak match is reported but does not block creation."""
        resolution = resolver.resolve("Fix login issue", tasks, auto_merge=True)
        assert resolution.decision == Decision.CREATE
        assert [c.id for c in resolution.candidates] == ["1"]

    def test_auto_merge_threshold_is_configurable(self, tasks):
        resolver = DuplicateResolver(Settings(auto_merge_threshold=0.5))
        resolution = resolver.resolve("Fix login issue", tasks, auto_merge=True)
        assert resolution.decision == Decision.MERGE


class TestDuplicateGroups:
    """Test grouping of existing duplicates."""

    def test_groups(self, resolver):
        tasks = [
            make_task("1", "Fix login bug"),
            make_task("2", "Write documentation"),
            make_task("3", "Fix login issue"),
            make_task("4", "Write the documentation"),
        ]
        groups = resolver.find_duplicate_groups(tasks, 0.5)
        assert [(g.anchor.id, [d.id for d in g.duplicates]) for g in groups] == [
            ("2", ["4"]),
            ("1", ["3"]),
        ]
        assert groups[0].max_similarity >= groups[1].max_similarity

    def test_no_groups(self, resolver):
        tasks = [make_task("1", "Fix login bug"), make_task("2", "Write documentation")]
        assert resolver.find_duplicate_groups(tasks) == []
