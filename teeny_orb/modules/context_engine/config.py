"""
Engine configuration.

Every heuristic constant used by ranking, caching, compression and learning
lives here with its default. Values load from the ``context_engine`` section
of ``config.yaml`` and can be overridden with ``TEENY_ORB_*`` environment
variables.
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from loguru import logger


DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[2] / "config.yaml"


def _apply(target: Any, data: Optional[Dict[str, Any]]) -> Any:
    """Copy known keys from a config.yaml section onto a dataclass instance."""
    if not data:
        return target
    known = {f.name for f in fields(target)}
    for key, value in data.items():
        if key in known:
            setattr(target, key, value)
        else:
            logger.warning(f"Ignoring unknown config key: {type(target).__name__}.{key}")
    return target


# =============================================================================
# SCORING
# =============================================================================


@dataclass
class ScoringWeights:
    """Relevance factor weights (sum to 1.0)."""
    keyword_match: float = 0.25
    path_relevance: float = 0.15
    file_type: float = 0.20
    recency: float = 0.10
    size: float = 0.05
    dependency: float = 0.10
    task_type: float = 0.10
    language: float = 0.05


@dataclass
class RelevanceConfig:
    weights: ScoringWeights = field(default_factory=ScoringWeights)
    recency_half_life_hours: float = 7 * 24
    optimal_file_tokens: int = 500
    size_penalty: float = 0.5
    min_size_score: float = 0.3
    neutral_dependency_score: float = 0.5
    min_keyword_length: int = 3
    stop_words: List[str] = field(default_factory=lambda: [
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
        "of", "with", "by", "from", "as", "is", "was", "are", "were", "been",
        "be", "have", "has", "had", "do", "does", "did", "will", "would",
        "should", "could", "may", "might", "must", "can", "this", "that",
        "these", "those", "i", "you", "he", "she", "it", "we", "they",
    ])


@dataclass
class StrategyWeights:
    """Per-strategy blend coefficients used by the optimizer."""
    dependency_relevance: float = 0.7
    dependency_centrality: float = 0.3
    balanced_relevance: float = 0.5
    balanced_centrality: float = 0.2
    balanced_freshness: float = 0.15
    balanced_size: float = 0.15
    balanced_size_reference_tokens: int = 2000
    compactness_scale: float = 1000.0
    fresh_window_hours: float = 24.0
    freshness_half_life_hours: float = 7 * 24


# =============================================================================
# OPTIMIZER
# =============================================================================


@dataclass
class OptimizerConfig:
    enable_caching: bool = True
    cache_expiry_minutes: int = 30
    default_token_budget: int = 8000
    default_strategy: str = "balanced"

    # Default constraints when a caller supplies none
    default_max_files: int = 50
    default_min_relevance: float = 0.2
    default_preferred_types: List[str] = field(default_factory=lambda: ["source", "configuration"])
    default_freshness_bias: float = 0.2
    default_dependency_depth: int = 3

    # Budget ladder used by optimize_for_token_budget
    budget_max_files: int = 100
    budget_min_relevance: float = 0.1
    budget_freshness_bias: float = 0.3
    budget_dependency_depth: int = 2
    ladder_min_relevance: float = 0.3
    ladder_dependency_depth: int = 1
    ladder_compression: str = "snippet"


# =============================================================================
# CACHE
# =============================================================================


@dataclass
class CacheConfig:
    max_entries: int = 1000
    default_ttl_seconds: float = 30 * 60
    cleanup_interval_seconds: float = 5 * 60
    enable_invalidation: bool = True
    enable_stats: bool = True


@dataclass
class ReuseConfig:
    min_similarity: float = 0.7
    reuse_ttl_seconds: float = 30 * 60
    min_word_length: int = 3


# =============================================================================
# COMPRESSION
# =============================================================================


@dataclass
class CompressionConfig:
    preserve_imports: bool = True
    preserve_comments: bool = False
    min_function_lines: int = 3
    snippet_context_lines: int = 2
    generic_summary_lines: int = 3
    estimates: Dict[str, float] = field(default_factory=lambda: {
        "none": 1.0,
        "summary": 0.3,
        "snippet": 0.4,
        "minify": 0.8,
        "semantic": 0.5,
    })
    unknown_estimate: float = 0.7
    quality_base: Dict[str, float] = field(default_factory=lambda: {
        "minify": 0.95,
        "summary": 0.6,
        "snippet": 0.8,
        "semantic": 0.75,
    })
    quality_sensitivity: Dict[str, float] = field(default_factory=lambda: {
        "minify": 0.05,
        "summary": 0.2,
        "snippet": 0.3,
        "semantic": 0.25,
    })


# =============================================================================
# ADAPTIVE LEARNING
# =============================================================================


@dataclass
class AdaptiveConfig:
    learning_rate: float = 0.1
    min_samples_for_adaptation: int = 5
    feedback_retention_days: int = 30
    enable_budget_adaptation: bool = True
    enable_strategy_adaptation: bool = True
    quality_threshold: float = 0.7
    max_budget_adjustment: int = 4000
    adaptation_aggressiveness: float = 0.5

    default_prediction: float = 0.75
    file_count_buffer: float = 1.2
    min_max_files: int = 10
    max_max_files: int = 100
    low_quality_relevance_factor: float = 0.8
    high_quality_relevance_factor: float = 1.2
    high_quality_mark: float = 0.9

    small_project_tokens: int = 50_000
    large_project_tokens: int = 200_000
    small_project_budget: int = 4000
    medium_project_budget: int = 8000
    large_project_budget: int = 12000
    full_confidence_samples: int = 20


# =============================================================================
# FEEDBACK
# =============================================================================


@dataclass
class QualityThresholds:
    """Rating thresholds on the 1-5 user scale."""
    excellent: float = 4.5
    good: float = 3.5
    fair: float = 2.5

    @staticmethod
    def to_unit(rating: float) -> float:
        return (rating - 1.0) / 4.0


@dataclass
class FeedbackConfig:
    enable_implicit_collection: bool = True
    enable_explicit_collection: bool = True
    retention_days: int = 90
    analysis_cache_minutes: int = 15
    auto_learning_enabled: bool = True
    store_path: str = "./feedback_data"
    min_samples_for_insights: int = 10
    min_success_rate: float = 0.7
    summary_window_days: int = 7
    export_lookback_days: int = 365
    top_files_limit: int = 10
    thresholds: QualityThresholds = field(default_factory=QualityThresholds)


@dataclass
class AnalyzerConfig:
    max_file_size: int = 1024 * 1024
    ignore_patterns: List[str] = field(default_factory=lambda: [
        ".git/*", "node_modules/*", "vendor/*", "__pycache__/*", ".venv/*",
        "*.log", "*.tmp", "*.cache", "build/*", "dist/*",
    ])


# =============================================================================
# ROOT
# =============================================================================


@dataclass
class EngineConfig:
    """Complete engine configuration."""
    relevance: RelevanceConfig = field(default_factory=RelevanceConfig)
    strategy_weights: StrategyWeights = field(default_factory=StrategyWeights)
    optimizer: OptimizerConfig = field(default_factory=OptimizerConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    reuse: ReuseConfig = field(default_factory=ReuseConfig)
    compression: CompressionConfig = field(default_factory=CompressionConfig)
    adaptive: AdaptiveConfig = field(default_factory=AdaptiveConfig)
    feedback: FeedbackConfig = field(default_factory=FeedbackConfig)
    analyzer: AnalyzerConfig = field(default_factory=AnalyzerConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineConfig":
        """Create from dictionary (the ``context_engine`` section of config.yaml)."""
        config = cls()
        data = data or {}

        if "relevance" in data:
            rel = dict(data["relevance"] or {})
            weights = rel.pop("weights", None)
            _apply(config.relevance, rel)
            _apply(config.relevance.weights, weights)

        if "feedback" in data:
            fb = dict(data["feedback"] or {})
            thresholds = fb.pop("thresholds", None)
            _apply(config.feedback, fb)
            _apply(config.feedback.thresholds, thresholds)

        for name in ("strategy_weights", "optimizer", "cache", "reuse", "compression", "adaptive", "analyzer"):
            if name in data:
                _apply(getattr(config, name), data[name])

        return config

    @classmethod
    def from_env(cls, base: Optional["EngineConfig"] = None) -> "EngineConfig":
        """Overlay environment variables on ``base`` (or defaults)."""
        config = base or cls()

        if os.getenv("TEENY_ORB_CACHE_ENABLED") == "false":
            config.optimizer.enable_caching = False

        if val := os.getenv("TEENY_ORB_DEFAULT_BUDGET"):
            config.optimizer.default_token_budget = int(val)

        if val := os.getenv("TEENY_ORB_DEFAULT_STRATEGY"):
            config.optimizer.default_strategy = val

        if val := os.getenv("TEENY_ORB_CACHE_MAX_ENTRIES"):
            config.cache.max_entries = int(val)

        if val := os.getenv("TEENY_ORB_CACHE_TTL_SECONDS"):
            config.cache.default_ttl_seconds = float(val)

        if val := os.getenv("TEENY_ORB_LEARNING_RATE"):
            config.adaptive.learning_rate = float(val)

        if val := os.getenv("TEENY_ORB_FEEDBACK_DIR"):
            config.feedback.store_path = val

        if os.getenv("TEENY_ORB_AUTO_LEARNING") == "false":
            config.feedback.auto_learning_enabled = False

        return config


def load_config(config_path: str | Path = DEFAULT_CONFIG_PATH) -> Dict[str, Any]:
    """Load configuration from YAML file."""
    config_file = Path(config_path)

    if not config_file.exists():
        logger.warning(f"Config file not found: {config_path}. Using defaults.")
        return {}

    try:
        with open(config_file, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}
        logger.info(f"Loaded configuration from: {config_path}")
        return config
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Error loading config: {e}")
        return {}


def load_engine_config(config_path: str | Path = DEFAULT_CONFIG_PATH, use_env: bool = True) -> EngineConfig:
    raw = load_config(config_path)
    config = EngineConfig.from_dict(raw.get("context_engine") or {})
    if use_env:
        config = EngineConfig.from_env(config)
    return config


def setup_logging(verbose: bool = False, log_file: Optional[str] = None) -> None:
    """Configure logging with loguru."""
    logger.remove()

    level = "DEBUG" if verbose else "INFO"
    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
        level=level,
        colorize=True,
    )

    if log_file:
        logger.add(
            log_file,
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
            level="DEBUG",
            rotation="10 MB",
            retention="7 days",
        )
