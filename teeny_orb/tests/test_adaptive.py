"""
Tests for the Adaptive Context Manager.

Profiles are driven with synthetic feedback; the optimizer underneath uses a
fixed scorer so selections are predictable.
"""

from __future__ import annotations

from datetime import timedelta
from typing import List

import pytest

from teeny_orb.modules.context_engine.adaptive import AdaptiveContextManager
from teeny_orb.modules.context_engine.config import AdaptiveConfig
from teeny_orb.modules.context_engine.optimizer import ContextOptimizer
from teeny_orb.modules.schemas import (
    ContextConstraints,
    ContextFeedback,
    ContextFile,
    FileInfo,
    ProjectContext,
    SelectedContext,
    SelectionStrategy,
    Task,
    TaskProfile,
    TaskType,
)


class FlatScorer:
    def score_file(self, file, task):
        return 0.8


DEBUG_TASK = Task(type=TaskType.DEBUG, description="fix crash in loader")


def make_selection(
    n_files: int,
    strategy: SelectionStrategy = SelectionStrategy.DEPENDENCY,
    file_type: str = "source",
    tokens_each: int = 100,
) -> SelectedContext:
    files = [
        ContextFile(
            file_info=FileInfo(path=f"f{i}.py", file_type=file_type, token_count=tokens_each),
            relevance_score=0.8,
        )
        for i in range(n_files)
    ]
    return SelectedContext(
        task=DEBUG_TASK,
        files=files,
        total_tokens=n_files * tokens_each,
        total_files=n_files,
        strategy=strategy,
    )


def make_feedback(clock, quality: float, success: bool = True, tokens: int = 6000, selection=None, task=DEBUG_TASK):
    return ContextFeedback(
        task_id="t",
        task=task,
        selected_context=selection if selection is not None else make_selection(5),
        task_success=success,
        quality_score=quality,
        tokens_used=tokens,
        timestamp=clock(),
    )


def make_project(total_tokens: int = 100_000) -> ProjectContext:
    files = [FileInfo(path=f"src/m{i}.py", language="python", file_type="source", token_count=100) for i in range(3)]
    project = ProjectContext.from_files("/repo", files)
    return project.model_copy(update={"total_tokens": total_tokens})


@pytest.fixture
def manager(clock):
    optimizer = ContextOptimizer(scorer=FlatScorer(), clock=clock)
    return AdaptiveContextManager(optimizer, AdaptiveConfig(), clock=clock)


def train(manager, clock, qualities: List[float]):
    for q in qualities:
        manager.learn_from_feedback(make_feedback(clock, q))
        clock.advance(minutes=1)


class TestLearning:
    def test_first_sample_seeds_averages(self, manager, clock):
        manager.learn_from_feedback(make_feedback(clock, 0.9))

        profile = manager.get_profile_statistics()[TaskType.DEBUG]
        assert profile.sample_count == 1
        assert profile.avg_quality_score == pytest.approx(0.9)
        assert profile.success_rate == pytest.approx(1.0)
        assert profile.optimal_token_budget == 6000
        assert profile.typical_file_count == 5

    def test_ema_converges_toward_new_quality(self, manager, clock):
        train(manager, clock, [1.0] + [0.5] * 49)

        profile = manager.get_profile_statistics()[TaskType.DEBUG]
        assert abs(profile.avg_quality_score - 0.5) < 0.01

    def test_optimal_budget_only_moves_on_good_outcomes(self, manager, clock):
        manager.learn_from_feedback(make_feedback(clock, 0.9, tokens=6000))
        manager.learn_from_feedback(make_feedback(clock, 0.3, success=False, tokens=1000))

        profile = manager.get_profile_statistics()[TaskType.DEBUG]
        assert profile.optimal_token_budget == 6000
        assert profile.success_rate == pytest.approx(0.9)

    def test_preferred_strategy_follows_above_average_successes(self, manager, clock):
        manager.learn_from_feedback(make_feedback(clock, 0.75, selection=make_selection(5, SelectionStrategy.BALANCED)))
        assert manager.get_profile_statistics()[TaskType.DEBUG].preferred_strategy is None

        manager.learn_from_feedback(make_feedback(clock, 0.95, selection=make_selection(5, SelectionStrategy.RELEVANCE)))
        assert manager.get_profile_statistics()[TaskType.DEBUG].preferred_strategy == SelectionStrategy.RELEVANCE

    def test_important_file_types_ordered_by_frequency(self, manager, clock):
        manager.learn_from_feedback(make_feedback(clock, 0.9, selection=make_selection(3, file_type="source")))
        manager.learn_from_feedback(make_feedback(clock, 0.9, selection=make_selection(1, file_type="test")))

        profile = manager.get_profile_statistics()[TaskType.DEBUG]
        assert profile.important_file_types == ["source", "test"]

    def test_feedback_without_task_leaves_profiles_untouched(self, manager, clock):
        manager.learn_from_feedback(make_feedback(clock, 0.9, task=None))

        assert manager.get_profile_statistics() == {}
        assert len(manager.get_feedback_history()) == 1

    def test_feedback_log_is_pruned_to_retention(self, manager, clock):
        manager.learn_from_feedback(make_feedback(clock, 0.9))
        clock.advance(days=31)
        manager.learn_from_feedback(make_feedback(clock, 0.9))

        history = manager.get_feedback_history()
        assert len(history) == 1
        assert history[0].timestamp == clock()

    def test_profile_statistics_are_copies(self, manager, clock):
        manager.learn_from_feedback(make_feedback(clock, 0.9))

        snapshot = manager.get_profile_statistics()
        snapshot[TaskType.DEBUG].sample_count = 99

        assert manager.get_profile_statistics()[TaskType.DEBUG].sample_count == 1


class TestConstraints:
    def test_debug_defaults(self, manager):
        constraints = manager.get_adaptive_constraints(DEBUG_TASK, 8000)

        assert constraints.strategy == SelectionStrategy.DEPENDENCY
        assert constraints.include_tests is True
        assert constraints.dependency_depth == 3
        assert constraints.freshness_bias == pytest.approx(0.4)
        assert constraints.max_tokens == 8000

    @pytest.mark.parametrize("task_type,strategy,types", [
        (TaskType.FEATURE, SelectionStrategy.RELEVANCE, ["source", "configuration"]),
        (TaskType.REFACTOR, SelectionStrategy.DEPENDENCY, ["source"]),
        (TaskType.TEST, SelectionStrategy.RELEVANCE, ["source", "test"]),
        (TaskType.DOCUMENTATION, SelectionStrategy.RELEVANCE, ["source", "documentation"]),
        (TaskType.GENERAL, SelectionStrategy.BALANCED, ["source"]),
    ])
    def test_task_type_defaults(self, manager, task_type, strategy, types):
        constraints = manager.get_adaptive_constraints(Task(type=task_type), 4000)

        assert constraints.strategy == strategy
        assert constraints.preferred_types == types

    def test_mature_profile_overrides_types_and_strategy(self, manager, clock):
        selection = make_selection(4, SelectionStrategy.COMPACTNESS, file_type="test")
        for q in [0.75, 0.8, 0.85, 0.9, 0.95]:
            manager.learn_from_feedback(make_feedback(clock, q, selection=selection))

        constraints = manager.get_adaptive_constraints(DEBUG_TASK, 8000)

        assert constraints.preferred_types == ["test"]
        assert constraints.strategy == SelectionStrategy.COMPACTNESS


class TestAdaptation:
    def test_immature_profile_uses_defaults(self, manager):
        adapted = manager.adapt_optimal_context(make_project(), DEBUG_TASK, 8000)

        assert adapted.budget_adjustment == 0
        assert adapted.strategy_override is None
        assert adapted.quality_prediction == pytest.approx(0.75)
        assert adapted.adaptation_reasons == []
        assert adapted.adaptive_metadata == {}
        assert adapted.selection.constraints.max_tokens == 8000

    def test_mature_profile_adjusts_budget_and_strategy(self, manager, clock):
        train(manager, clock, [0.75, 0.8, 0.85, 0.9, 0.95])

        adapted = manager.adapt_optimal_context(make_project(), DEBUG_TASK, 10000)

        # (6000 - 10000) * 0.5
        assert adapted.budget_adjustment == -2000
        assert adapted.selection.constraints.max_tokens == 8000
        assert adapted.strategy_override == SelectionStrategy.DEPENDENCY
        # typical 5 files * 1.2, clamped up to the floor of 10
        assert adapted.selection.constraints.max_files == 10
        assert adapted.selection.constraints.min_relevance_score == pytest.approx(0.1)
        assert set(adapted.adaptive_metadata) == {
            "profile_samples", "profile_success", "optimal_budget", "preferred_strategy",
        }
        assert adapted.adaptive_metadata["profile_samples"] == 5
        assert adapted.adaptation_reasons

    def test_budget_adjustment_is_capped(self, clock):
        optimizer = ContextOptimizer(scorer=FlatScorer(), clock=clock)
        manager = AdaptiveContextManager(optimizer, AdaptiveConfig(max_budget_adjustment=500), clock=clock)
        train(manager, clock, [0.9] * 5)

        adapted = manager.adapt_optimal_context(make_project(), DEBUG_TASK, 20000)

        assert adapted.budget_adjustment == -500

    def test_low_quality_profile_lowers_relevance_threshold(self, manager, clock):
        for _ in range(5):
            manager.learn_from_feedback(make_feedback(clock, 0.4, success=False))

        adapted = manager.adapt_optimal_context(make_project(), DEBUG_TASK, 8000)

        assert adapted.selection.constraints.min_relevance_score == pytest.approx(0.08)
        assert adapted.strategy_override is None

    def test_learned_strategy_ignored_when_success_rate_drops(self, manager, clock):
        selection = make_selection(4, SelectionStrategy.COMPACTNESS)
        for q in [0.75, 0.8, 0.85, 0.9, 0.95]:
            manager.learn_from_feedback(make_feedback(clock, q, selection=selection))
        for _ in range(4):
            manager.learn_from_feedback(make_feedback(clock, 0.3, success=False))

        profile = manager.get_profile_statistics()[TaskType.DEBUG]
        assert profile.preferred_strategy == SelectionStrategy.COMPACTNESS
        assert profile.success_rate == pytest.approx(0.6561)

        adapted = manager.adapt_optimal_context(make_project(), DEBUG_TASK, 8000)

        assert adapted.strategy_override is None
        assert adapted.selection.strategy == SelectionStrategy.DEPENDENCY
        assert manager.get_adaptive_constraints(DEBUG_TASK, 8000).strategy == SelectionStrategy.DEPENDENCY


class TestPrediction:
    @pytest.mark.parametrize("total_tokens,expected", [
        (10_000, 4000),
        (50_000, 8000),
        (100_000, 8000),
        (200_000, 12000),
        (300_000, 12000),
    ])
    def test_budget_tiers_without_history(self, manager, total_tokens, expected):
        assert manager.predict_optimal_budget(DEBUG_TASK, make_project(total_tokens)) == expected

    def test_budget_blends_with_learned_optimum(self, manager, clock):
        train(manager, clock, [0.9] * 5)

        # weight 5/20: 8000 * 0.75 + 6000 * 0.25
        assert manager.predict_optimal_budget(DEBUG_TASK, make_project(100_000)) == 7500

    def test_quality_prediction_adjustments(self, manager):
        profile = TaskProfile(task_type=TaskType.DEBUG, avg_quality_score=0.7, sample_count=10)
        selection = make_selection(3, tokens_each=2666).model_copy(update={
            "total_tokens": 8000,
            "selection_score": 0.9,
            "constraints": ContextConstraints(max_tokens=10000, max_files=10),
        })

        # +0.05 token usage 0.8, +0.05 file fill 0.3, +0.1 selection score
        assert manager.predict_quality(selection, profile) == pytest.approx(0.9)

    def test_quality_prediction_penalizes_sparse_selection(self, manager):
        profile = TaskProfile(task_type=TaskType.DEBUG, avg_quality_score=0.7, sample_count=10)
        selection = make_selection(1).model_copy(update={
            "total_tokens": 100,
            "selection_score": 0.3,
            "constraints": ContextConstraints(max_tokens=10000, max_files=50),
        })

        assert manager.predict_quality(selection, profile) == pytest.approx(0.7 - 0.1 - 0.15)
