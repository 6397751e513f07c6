"""
Feedback collection.

Turns task execution traces and user ratings into ContextFeedback records,
persists every event as its own JSON document, forwards outcomes to the
adaptive manager, and summarizes stored feedback into trends and
recommendations.

Store layout: one ``feedback_<YYYYMMDD_HHMMSS>_<nanoseconds>.json`` file per
event, each an envelope ``{"schema_version", "kind", "record"}`` where kind
is ``implicit`` or ``explicit``.
"""

from __future__ import annotations

import json
import threading
import time
from collections import Counter, defaultdict
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

from loguru import logger
from pydantic import ValidationError

from ..schemas import (
    FEEDBACK_SCHEMA_VERSION,
    CompletionStatus,
    ContextFeedback,
    ExplicitFeedback,
    FeedbackAnalysis,
    FeedbackSummary,
    FileMention,
    QualityDataPoint,
    SelectedContext,
    Task,
    TaskExecutionData,
    TaskTypeInsight,
)
from .config import FeedbackConfig
from .errors import FeedbackStorageError

FeedbackRecord = Union[ContextFeedback, ExplicitFeedback]

KIND_IMPLICIT = "implicit"
KIND_EXPLICIT = "explicit"

BASE_QUALITY = {
    CompletionStatus.SUCCESS.value: 0.8,
    CompletionStatus.PARTIAL.value: 0.5,
    CompletionStatus.FAILED.value: 0.2,
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _mean(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def record_kind(record: FeedbackRecord) -> str:
    return KIND_EXPLICIT if isinstance(record, ExplicitFeedback) else KIND_IMPLICIT


# =============================================================================
# STORE
# =============================================================================


class FeedbackStore:
    """
    File-backed, append-only feedback store.

    Usage:
        store = FeedbackStore("./feedback_data")
        store.store_feedback(feedback)
        recent = store.get_feedback(timedelta(days=7))
    """

    def __init__(self, store_path: Union[str, Path], clock: Optional[Callable[[], datetime]] = None):
        self.store_path = Path(store_path)
        self.clock = clock or _utc_now
        self._lock = threading.Lock()

    def store_feedback(self, record: FeedbackRecord) -> Path:
        now = self.clock()
        filename = f"feedback_{now.strftime('%Y%m%d_%H%M%S')}_{time.time_ns()}.json"
        path = self.store_path / filename
        envelope = {
            "schema_version": FEEDBACK_SCHEMA_VERSION,
            "kind": record_kind(record),
            "record": record.model_dump(mode="json"),
        }

        with self._lock:
            try:
                self.store_path.mkdir(parents=True, exist_ok=True)
                path.write_text(json.dumps(envelope, indent=2, ensure_ascii=False), encoding="utf-8")
            except OSError as e:
                raise FeedbackStorageError(f"Failed to write feedback: {e}", path=str(path)) from e

        logger.debug(f"Stored {envelope['kind']} feedback: {path.name}")
        return path

    def get_feedback(self, window: timedelta) -> List[FeedbackRecord]:
        """Records whose own timestamp falls inside ``window``, oldest first."""
        cutoff = self.clock() - window
        records = [record for _, record in self._load_all() if record.timestamp >= cutoff]
        records.sort(key=lambda r: r.timestamp)
        return records

    def get_feedback_by_type(self, kind: str, window: timedelta) -> List[FeedbackRecord]:
        return [r for r in self.get_feedback(window) if record_kind(r) == kind]

    def clean_old_feedback(self, retention_days: int) -> int:
        cutoff = self.clock() - timedelta(days=retention_days)
        removed = 0
        with self._lock:
            for path, record in self._load_all():
                if record.timestamp < cutoff:
                    try:
                        path.unlink()
                        removed += 1
                    except OSError as e:
                        logger.warning(f"Could not remove old feedback {path.name}: {e}")
        if removed:
            logger.info(f"Removed {removed} feedback records older than {retention_days} days")
        return removed

    def _load_all(self) -> List[Tuple[Path, FeedbackRecord]]:
        if not self.store_path.is_dir():
            return []

        loaded: List[Tuple[Path, FeedbackRecord]] = []
        for path in sorted(self.store_path.glob("feedback_*.json")):
            try:
                envelope = json.loads(path.read_text(encoding="utf-8"))
                kind = envelope.get("kind", KIND_IMPLICIT)
                model = ExplicitFeedback if kind == KIND_EXPLICIT else ContextFeedback
                loaded.append((path, model.model_validate(envelope["record"])))
            except (OSError, ValueError, KeyError, ValidationError) as e:
                logger.warning(f"Skipping unreadable feedback file {path.name}: {e}")
        return loaded


# =============================================================================
# COLLECTOR
# =============================================================================


class FeedbackCollector:
    """
    Collects implicit and explicit feedback and analyzes it.

    Usage:
        collector = FeedbackCollector(FeedbackStore(path), adaptive_manager)
        collector.collect_implicit_feedback(task, selection, execution)
        summary = collector.get_feedback_summary()
    """

    def __init__(
        self,
        store: FeedbackStore,
        adaptive_manager=None,
        config: Optional[FeedbackConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.adaptive_manager = adaptive_manager
        self.config = config or FeedbackConfig()
        self.clock = clock or store.clock
        self._analysis_cache: Dict[float, Tuple[datetime, FeedbackAnalysis]] = {}
        self._cache_lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Collection
    # -------------------------------------------------------------------------

    def collect_implicit_feedback(
        self,
        task: Task,
        selection: SelectedContext,
        execution: TaskExecutionData,
    ) -> ContextFeedback:
        accessed = set(execution.files_accessed)
        selected = set(selection.paths)

        feedback = ContextFeedback(
            task_id=execution.task_id,
            task=task,
            selected_context=selection,
            task_success=execution.completion_status == CompletionStatus.SUCCESS.value,
            quality_score=self.infer_quality_score(execution),
            completion_time=execution.duration,
            tokens_used=execution.tokens_consumed,
            missing_files=sorted(accessed - selected),
            unnecessary_files=sorted(selected - accessed),
            timestamp=self.clock(),
        )

        if not self.config.enable_implicit_collection:
            logger.debug("Implicit feedback collection disabled; not recording")
            return feedback

        self._store_then_learn(feedback, feedback)
        return feedback

    def collect_explicit_feedback(self, explicit: ExplicitFeedback) -> ContextFeedback:
        feedback = self.explicit_to_context_feedback(explicit)

        if not self.config.enable_explicit_collection:
            logger.debug("Explicit feedback collection disabled; not recording")
            return feedback

        self._store_then_learn(explicit, feedback if explicit.task is not None else None)
        return feedback

    def _store_then_learn(self, record: FeedbackRecord, learnable: Optional[ContextFeedback]) -> None:
        storage_error: Optional[FeedbackStorageError] = None
        try:
            self.store.store_feedback(record)
        except FeedbackStorageError as e:
            logger.warning(f"Feedback storage failed, learning in memory only: {e}")
            storage_error = e

        if learnable is None:
            logger.debug(f"Feedback {record.task_id or '<anonymous>'} carries no task; skipping learning")
        elif self.config.auto_learning_enabled and self.adaptive_manager is not None:
            self.adaptive_manager.learn_from_feedback(learnable)

        if storage_error is not None:
            raise storage_error

    @staticmethod
    def infer_quality_score(execution: TaskExecutionData) -> float:
        status = execution.completion_status
        score = BASE_QUALITY.get(status, 0.5)

        if execution.duration > 0:
            if execution.duration < 5 * 60:
                score += 0.1
            elif execution.duration > 30 * 60:
                score -= 0.2

        errors = len(execution.errors_encountered)
        score -= 0.05 * errors
        if errors == 0 and status != CompletionStatus.FAILED.value:
            score += 0.1

        if execution.iteration_count > 5:
            score -= 0.1
        if execution.user_interventions > 3:
            score -= 0.15

        return max(0.0, min(1.0, score))

    @staticmethod
    def explicit_to_context_feedback(explicit: ExplicitFeedback) -> ContextFeedback:
        selection = explicit.selected_context
        return ContextFeedback(
            task_id=explicit.task_id,
            task=explicit.task,
            selected_context=selection,
            task_success=explicit.context_quality >= 3,
            quality_score=(explicit.context_quality - 1) / 4.0,
            tokens_used=selection.total_tokens if selection else 0,
            missing_files=list(explicit.missing_files),
            unnecessary_files=list(explicit.irrelevant_files),
            user_rating=float(explicit.context_quality),
            timestamp=explicit.timestamp,
        )

    # -------------------------------------------------------------------------
    # Analysis
    # -------------------------------------------------------------------------

    def analyze_feedback_trends(self, window: timedelta = timedelta(days=7)) -> FeedbackAnalysis:
        key = window.total_seconds()
        now = self.clock()
        ttl = timedelta(minutes=self.config.analysis_cache_minutes)

        with self._cache_lock:
            cached = self._analysis_cache.get(key)
            if cached is not None and now - cached[0] < ttl:
                return cached[1]

        records = self.store.get_feedback(window)
        analysis = self._analyze(self._normalize(records), key)

        with self._cache_lock:
            self._analysis_cache[key] = (now, analysis)
        return analysis

    def _normalize(self, records: List[FeedbackRecord]) -> List[ContextFeedback]:
        return [
            self.explicit_to_context_feedback(r) if isinstance(r, ExplicitFeedback) else r
            for r in records
        ]

    def _analyze(self, feedback: List[ContextFeedback], window_seconds: float) -> FeedbackAnalysis:
        cfg = self.config
        analysis = FeedbackAnalysis(time_window_seconds=window_seconds, total_samples=len(feedback))

        if feedback:
            analysis.avg_context_quality = _mean([f.quality_score for f in feedback])
            analysis.avg_task_duration = _mean([f.completion_time for f in feedback if f.completion_time > 0])
            analysis.success_rate = _mean([1.0 if f.task_success else 0.0 for f in feedback])

        by_strategy: Dict[str, List[float]] = defaultdict(list)
        by_type: Dict[str, List[ContextFeedback]] = defaultdict(list)
        missing: Counter = Counter()
        irrelevant: Counter = Counter()

        for f in feedback:
            strategy = f.selected_context.strategy.value if f.selected_context else None
            task_type = f.task.type.value if f.task else None
            if strategy:
                by_strategy[strategy].append(f.quality_score)
            if task_type:
                by_type[task_type].append(f)
            missing.update(f.missing_files)
            irrelevant.update(f.unnecessary_files)
            analysis.quality_trends.append(
                QualityDataPoint(timestamp=f.timestamp, quality=f.quality_score, strategy=strategy, task_type=task_type)
            )

        analysis.strategy_effectiveness = {s: _mean(q) for s, q in sorted(by_strategy.items())}

        for task_type, items in sorted(by_type.items()):
            type_missing: Counter = Counter()
            for f in items:
                type_missing.update(f.missing_files)
            analysis.task_type_insights[task_type] = TaskTypeInsight(
                task_type=task_type,
                sample_count=len(items),
                avg_quality=_mean([f.quality_score for f in items]),
                avg_duration=_mean([f.completion_time for f in items if f.completion_time > 0]),
                success_rate=_mean([1.0 if f.task_success else 0.0 for f in items]),
                avg_tokens_used=int(_mean([float(f.tokens_used) for f in items])),
                common_missing_files=[p for p, _ in type_missing.most_common(5)],
            )

        analysis.top_missing_files = [
            FileMention(file_path=p, mention_count=n) for p, n in missing.most_common(cfg.top_files_limit)
        ]
        analysis.top_irrelevant_files = [
            FileMention(file_path=p, mention_count=n) for p, n in irrelevant.most_common(cfg.top_files_limit)
        ]
        analysis.recommendations = self._recommendations(analysis)
        return analysis

    def _recommendations(self, analysis: FeedbackAnalysis) -> List[str]:
        cfg = self.config
        recs: List[str] = []
        if analysis.total_samples == 0:
            return [f"No feedback collected yet; at least {cfg.min_samples_for_insights} samples are needed for insights"]

        if analysis.avg_context_quality < cfg.thresholds.to_unit(cfg.thresholds.fair):
            recs.append("Context quality is low; consider raising token budgets or lowering relevance thresholds")
        if analysis.success_rate < cfg.min_success_rate:
            recs.append(
                f"Task success rate is {analysis.success_rate:.0%}; review frequently missing files"
            )
        if analysis.total_samples < cfg.min_samples_for_insights:
            recs.append(
                f"Only {analysis.total_samples} feedback samples; collect at least "
                f"{cfg.min_samples_for_insights} for reliable insights"
            )
        if analysis.top_missing_files:
            top = analysis.top_missing_files[0]
            recs.append(f"Most frequently missing file: {top.file_path} ({top.mention_count} times)")
        return recs

    def get_feedback_summary(self) -> FeedbackSummary:
        window = timedelta(days=self.config.summary_window_days)
        records = self.store.get_feedback(window)
        analysis = self._analyze(self._normalize(records), window.total_seconds())

        explicit = [r for r in records if isinstance(r, ExplicitFeedback)]
        satisfaction = _mean([float(r.context_quality) for r in explicit])

        if analysis.avg_context_quality >= 0.8:
            trend = "Improving"
        elif analysis.avg_context_quality >= 0.6:
            trend = "Stable"
        else:
            trend = "Declining"

        effectiveness = analysis.strategy_effectiveness
        best = max(effectiveness, key=lambda s: (effectiveness[s], s)) if effectiveness else None
        worst = min(effectiveness, key=lambda s: (effectiveness[s], s)) if effectiveness else None

        issues = [f"Missing file: {m.file_path}" for m in analysis.top_missing_files[:3]]
        issues += [f"Irrelevant file: {m.file_path}" for m in analysis.top_irrelevant_files[:3]]

        return FeedbackSummary(
            total_feedback_count=len(records),
            implicit_feedback_count=len(records) - len(explicit),
            explicit_feedback_count=len(explicit),
            avg_user_satisfaction=satisfaction,
            most_common_issues=issues,
            best_performing_strategy=best,
            worst_performing_strategy=worst,
            recent_trends=trend,
            last_updated=self.clock(),
        )

    def export_feedback_data(self, output_path: Union[str, Path]) -> int:
        """Write the last year of feedback as one JSON array; returns the record count."""
        records = self.store.get_feedback(timedelta(days=self.config.export_lookback_days))
        payload = [
            {"kind": record_kind(r), "schema_version": FEEDBACK_SCHEMA_VERSION, **r.model_dump(mode="json")}
            for r in records
        ]
        output = Path(output_path)
        try:
            output.parent.mkdir(parents=True, exist_ok=True)
            output.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
        except OSError as e:
            raise FeedbackStorageError(f"Failed to export feedback: {e}", path=str(output)) from e

        logger.info(f"Exported {len(payload)} feedback records to {output}")
        return len(payload)
