"""
Relevance Scorer for context selection.

Scores a project file against a task with a weighted blend of cheap
heuristics: keyword overlap with the task description, path structure,
file type, recency, size, task-type patterns and language.

This layer determines HOW RELEVANT a file is. The optimizer decides what
to do with the score.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import Callable, Dict, List, Optional, Sequence

from loguru import logger

from ..schemas import FileInfo, Task, TaskType
from .config import RelevanceConfig


# Checked in order; first match wins
CORE_PATH_SCORES = [
    ("/internal/", 0.8),
    ("/pkg/", 0.7),
    ("/cmd/", 0.9),
    ("/api/", 0.8),
    ("/core/", 0.9),
    ("/lib/", 0.7),
    ("/src/", 0.8),
]

VENDOR_PATH_MARKERS = ("/vendor/", "/node_modules/")

FILE_TYPE_PREFERENCES: Dict[TaskType, Dict[str, float]] = {
    TaskType.FEATURE: {"source": 0.9, "test": 0.3, "configuration": 0.5, "documentation": 0.2},
    TaskType.DEBUG: {"source": 1.0, "test": 0.7, "configuration": 0.4, "documentation": 0.1},
    TaskType.REFACTOR: {"source": 1.0, "test": 0.8, "configuration": 0.3, "documentation": 0.2},
    TaskType.TEST: {"source": 0.8, "test": 1.0, "configuration": 0.3, "documentation": 0.2},
    TaskType.DOCUMENTATION: {"source": 0.5, "test": 0.2, "configuration": 0.4, "documentation": 1.0},
}

LANGUAGE_RELEVANCE: Dict[str, Dict[TaskType, float]] = {
    "go": {
        TaskType.FEATURE: 0.9, TaskType.DEBUG: 0.9, TaskType.REFACTOR: 0.9,
        TaskType.TEST: 0.9, TaskType.DOCUMENTATION: 0.6,
    },
    "python": {
        TaskType.FEATURE: 0.9, TaskType.DEBUG: 0.9, TaskType.REFACTOR: 0.9,
        TaskType.TEST: 0.9, TaskType.DOCUMENTATION: 0.6,
    },
    "markdown": {
        TaskType.FEATURE: 0.3, TaskType.DEBUG: 0.2, TaskType.REFACTOR: 0.2,
        TaskType.TEST: 0.3, TaskType.DOCUMENTATION: 1.0,
    },
    "yaml": {
        TaskType.FEATURE: 0.5, TaskType.DEBUG: 0.4, TaskType.REFACTOR: 0.3,
        TaskType.TEST: 0.4, TaskType.DOCUMENTATION: 0.6,
    },
}

NEUTRAL = 0.5
_PUNCTUATION = ".,!?;:\"'"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ScoringFactors:
    """Breakdown of a relevance score, each factor in [0, 1]."""
    keyword_match: float = NEUTRAL
    path_relevance: float = NEUTRAL
    file_type: float = NEUTRAL
    recency: float = NEUTRAL
    size: float = NEUTRAL
    dependency: float = NEUTRAL
    task_type: float = NEUTRAL
    language: float = NEUTRAL

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass
class ScoredFile:
    file: FileInfo
    score: float
    factors: ScoringFactors = field(default_factory=ScoringFactors)


class RelevanceScorer:
    """
    Heuristic file relevance for a task.

    Deterministic: the clock is injected, so the same file, task and clock
    always give the same score.

    Usage:
        scorer = RelevanceScorer()
        score = scorer.score(file_info, TaskType.DEBUG, "fix cache eviction bug")
    """

    def __init__(
        self,
        config: Optional[RelevanceConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config or RelevanceConfig()
        self.clock = clock or _utc_now
        self._stop_words = frozenset(w.lower() for w in self.config.stop_words)

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def score(self, file: FileInfo, task_type: TaskType, description: str) -> float:
        return self.score_file(file, Task(type=task_type, description=description))

    def score_file(self, file: FileInfo, task: Task) -> float:
        factors = self.get_scoring_factors(file, task)
        w = self.config.weights
        total = (
            factors.keyword_match * w.keyword_match
            + factors.path_relevance * w.path_relevance
            + factors.file_type * w.file_type
            + factors.recency * w.recency
            + factors.size * w.size
            + factors.dependency * w.dependency
            + factors.task_type * w.task_type
            + factors.language * w.language
        )
        return max(0.0, min(1.0, total))

    def score_files(self, files: Sequence[FileInfo], task: Task) -> List[ScoredFile]:
        scored = [
            ScoredFile(file=f, score=self.score_file(f, task), factors=self.get_scoring_factors(f, task))
            for f in files
        ]
        scored.sort(key=lambda s: (-s.score, s.file.path))
        if scored:
            logger.debug(f"Scored {len(scored)} files, top={scored[0].file.path} ({scored[0].score:.3f})")
        return scored

    def get_scoring_factors(self, file: FileInfo, task: Task) -> ScoringFactors:
        return ScoringFactors(
            keyword_match=self._keyword_match(file, task),
            path_relevance=self._path_relevance(file, task),
            file_type=self._file_type_score(file, task),
            recency=self._recency_score(file),
            size=self._size_score(file),
            dependency=self.config.neutral_dependency_score,
            task_type=self._task_type_score(file, task),
            language=self._language_score(file, task),
        )

    def extract_keywords(self, description: str) -> List[str]:
        keywords: List[str] = []
        for word in description.lower().split():
            word = word.strip(_PUNCTUATION)
            if len(word) >= self.config.min_keyword_length and word not in self._stop_words:
                keywords.append(word)
        return keywords

    # -------------------------------------------------------------------------
    # Factors
    # -------------------------------------------------------------------------

    def _keyword_match(self, file: FileInfo, task: Task) -> float:
        if not task.keywords and not task.description:
            return NEUTRAL

        for mentioned in task.files:
            if mentioned and mentioned in file.path:
                return 1.0

        keywords = [k.lower() for k in task.keywords] or self.extract_keywords(task.description)
        if not keywords:
            return NEUTRAL

        name = PurePosixPath(file.path.replace("\\", "/")).name.lower()
        path = file.path.lower()
        matches = 0
        for keyword in keywords:
            if keyword in name:
                matches += 2
            if keyword in path:
                matches += 1
        return min(1.0, matches / (len(keywords) * 2))

    def _path_relevance(self, file: FileInfo, task: Task) -> float:
        path = "/" + file.path.replace("\\", "/").lower().lstrip("/")

        if task.type != TaskType.TEST and "/test" in path:
            return 0.2
        if task.type != TaskType.DOCUMENTATION and "/doc" in path:
            return 0.3

        for pattern, score in CORE_PATH_SCORES:
            if pattern in path:
                return score

        if any(marker in path for marker in VENDOR_PATH_MARKERS):
            return 0.1
        return NEUTRAL

    def _file_type_score(self, file: FileInfo, task: Task) -> float:
        return FILE_TYPE_PREFERENCES.get(task.type, {}).get(file.file_type, NEUTRAL)

    def _recency_score(self, file: FileInfo) -> float:
        modified = file.last_modified
        if modified.tzinfo is None:
            modified = modified.replace(tzinfo=timezone.utc)
        age_hours = max(0.0, (self.clock() - modified).total_seconds() / 3600.0)
        return math.exp(-math.log(2) * age_hours / self.config.recency_half_life_hours)

    def _size_score(self, file: FileInfo) -> float:
        optimal = float(self.config.optimal_file_tokens)
        actual = float(file.token_count)
        if actual <= optimal:
            return actual / optimal
        oversize = actual - optimal
        return max(self.config.min_size_score, 1.0 - (oversize / optimal) * self.config.size_penalty)

    def _task_type_score(self, file: FileInfo, task: Task) -> float:
        path = file.path.lower()
        if task.type == TaskType.DEBUG:
            if "error" in path or "log" in path:
                return 0.8
        elif task.type == TaskType.TEST:
            if "_test" in path or "test_" in path:
                return 1.0
        elif task.type == TaskType.REFACTOR:
            if "interface" in path or "abstract" in path:
                return 0.8
        return NEUTRAL

    def _language_score(self, file: FileInfo, task: Task) -> float:
        return LANGUAGE_RELEVANCE.get(file.language, {}).get(task.type, NEUTRAL)
