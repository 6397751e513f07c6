"""
Context cache.

TTL + LRU store of prior selections with fingerprint-based invalidation.
Entries expire once ``now - created_at`` exceeds their TTL; a full cache
evicts the least recently accessed entry before inserting. A background
sweep removes expired entries independently of lookups.

Also hosts the reuse manager, which serves a cached selection to a new task
whose description is close enough to the one it was selected for.
"""

from __future__ import annotations

import hashlib
import re
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from loguru import logger

from ..schemas import CacheEntry, CacheStatistics, FileInfo, ProjectContext, SelectedContext, Task
from .config import CacheConfig, ReuseConfig


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def fingerprint_files(files: Sequence[Tuple[str, datetime]]) -> str:
    """md5 over ``path:mtime:`` pairs, mtime in whole unix seconds."""
    raw = "".join(f"{path}:{int(modified.timestamp())}:" for path, modified in files)
    return hashlib.md5(raw.encode("utf-8")).hexdigest()


def fingerprint_selection(selection: SelectedContext) -> str:
    return fingerprint_files([(f.file_info.path, f.file_info.last_modified) for f in selection.files])


class ReadWriteLock:
    """Many concurrent readers or one writer."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writing = False

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writing:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            while self._writing or self._readers:
                self._cond.wait()
            self._writing = True
        try:
            yield
        finally:
            with self._cond:
                self._writing = False
                self._cond.notify_all()


class ContextCache:
    """
    In-memory cache of SelectedContext values.

    Usage:
        cache = ContextCache(CacheConfig(max_entries=100))
        cache.start_cleanup()
        cache.set("ctx_key", selection)
        hit = cache.get("ctx_key")  # SelectedContext or None
        cache.stop_cleanup()
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config or CacheConfig()
        self.clock = clock or _utc_now
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = ReadWriteLock()
        self._stats = CacheStatistics(last_cleanup=self.clock())

        self._cleanup_thread: Optional[threading.Thread] = None
        self._stop_cleanup = threading.Event()

    # -------------------------------------------------------------------------
    # Core operations
    # -------------------------------------------------------------------------

    def set(self, key: str, selection: SelectedContext, ttl_seconds: Optional[float] = None) -> None:
        if not ttl_seconds:
            ttl_seconds = self.config.default_ttl_seconds
        now = self.clock()
        entry = CacheEntry(
            key=key,
            selected_context=selection.model_copy(deep=True),
            project_fingerprint=fingerprint_selection(selection),
            created_at=now,
            last_accessed=now,
            access_count=0,
            ttl_seconds=ttl_seconds,
        )

        with self._lock.write():
            if key not in self._entries and len(self._entries) >= self.config.max_entries:
                self._evict_lru()
            self._entries[key] = entry
            self._stats.entry_count = len(self._entries)

    def get(self, key: str) -> Optional[SelectedContext]:
        started = time.perf_counter()

        # Write side: a hit mutates access metadata, a stale hit removes the entry
        with self._lock.write():
            try:
                entry = self._entries.get(key)
                now = self.clock()

                if entry is None:
                    self._record(hit=False)
                    return None

                if entry.is_expired(now):
                    del self._entries[key]
                    self._record(hit=False)
                    if self.config.enable_stats:
                        self._stats.evictions += 1
                    self._stats.entry_count = len(self._entries)
                    logger.debug(f"Cache entry expired: {key}")
                    return None

                entry.last_accessed = now
                entry.access_count += 1
                self._record(hit=True)
                return entry.selected_context.model_copy(deep=True)
            finally:
                self._record_latency((time.perf_counter() - started) * 1000.0)

    def delete(self, key: str) -> bool:
        with self._lock.write():
            if self._entries.pop(key, None) is None:
                return False
            if self.config.enable_stats:
                self._stats.invalidations += 1
            self._stats.entry_count = len(self._entries)
            return True

    def clear(self) -> int:
        with self._lock.write():
            removed = len(self._entries)
            self._entries.clear()
            if self.config.enable_stats:
                self._stats.invalidations += removed
            self._stats.entry_count = 0
            return removed

    def invalidate_by_project_change(self, project: ProjectContext) -> int:
        """Drop entries whose selected files changed (or vanished) in ``project``."""
        if not self.config.enable_invalidation:
            return 0

        current: Dict[str, FileInfo] = {f.path: f for f in project.files}

        with self._lock.write():
            stale: List[str] = []
            for key, entry in self._entries.items():
                pairs: List[Tuple[str, datetime]] = []
                for cf in entry.selected_context.files:
                    info = current.get(cf.file_info.path)
                    if info is None:
                        break
                    pairs.append((info.path, info.last_modified))
                else:
                    if fingerprint_files(pairs) == entry.project_fingerprint:
                        continue
                stale.append(key)

            for key in stale:
                del self._entries[key]
            if self.config.enable_stats:
                self._stats.invalidations += len(stale)
            self._stats.entry_count = len(self._entries)

        if stale:
            logger.info(f"Invalidated {len(stale)} cached selections after project change")
        return len(stale)

    def cleanup_expired(self) -> int:
        now = self.clock()
        with self._lock.write():
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for key in expired:
                del self._entries[key]
            if self.config.enable_stats:
                self._stats.evictions += len(expired)
            self._stats.last_cleanup = now
            self._stats.entry_count = len(self._entries)
        if expired:
            logger.debug(f"Cache sweep removed {len(expired)} expired entries")
        return len(expired)

    def get_statistics(self) -> CacheStatistics:
        with self._lock.read():
            return self._stats.model_copy()

    def live_entries(self) -> List[CacheEntry]:
        """Snapshot of non-expired entries. Does not touch access metadata."""
        now = self.clock()
        with self._lock.read():
            return [e for e in self._entries.values() if not e.is_expired(now)]

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock.read():
            return key in self._entries

    # -------------------------------------------------------------------------
    # Background sweep
    # -------------------------------------------------------------------------

    def start_cleanup(self) -> None:
        """Start the periodic expired-entry sweep."""
        interval = self.config.cleanup_interval_seconds
        if interval <= 0:
            logger.debug("Cache cleanup disabled (interval <= 0)")
            return
        if self._cleanup_thread and self._cleanup_thread.is_alive():
            return

        self._stop_cleanup.clear()

        def cleanup_loop():
            while not self._stop_cleanup.wait(interval):
                self.cleanup_expired()

        self._cleanup_thread = threading.Thread(target=cleanup_loop, name="context-cache-cleanup", daemon=True)
        self._cleanup_thread.start()
        logger.info(f"Started cache cleanup (interval: {interval}s)")

    def stop_cleanup(self) -> None:
        if self._cleanup_thread:
            self._stop_cleanup.set()
            self._cleanup_thread.join(timeout=5)
            self._cleanup_thread = None
            logger.info("Stopped cache cleanup")

    # -------------------------------------------------------------------------
    # Internals (caller holds the write lock)
    # -------------------------------------------------------------------------

    def _evict_lru(self) -> None:
        if not self._entries:
            return
        oldest_key = min(self._entries, key=lambda k: self._entries[k].last_accessed)
        del self._entries[oldest_key]
        if self.config.enable_stats:
            self._stats.evictions += 1
        logger.debug(f"Evicted least recently used cache entry: {oldest_key}")

    def _record(self, hit: bool) -> None:
        if not self.config.enable_stats:
            return
        self._stats.total_requests += 1
        if hit:
            self._stats.hits += 1
        else:
            self._stats.misses += 1
        answered = self._stats.hits + self._stats.misses
        self._stats.hit_ratio = self._stats.hits / answered if answered else 0.0

    def _record_latency(self, elapsed_ms: float) -> None:
        if not self.config.enable_stats or self._stats.total_requests == 0:
            return
        n = self._stats.total_requests
        self._stats.avg_lookup_time_ms = (self._stats.avg_lookup_time_ms * (n - 1) + elapsed_ms) / n


# =============================================================================
# REUSE
# =============================================================================


_WORD = re.compile(r"[A-Za-z0-9]+")


class ContextReuseManager:
    """Finds cached selections made for similar tasks on the same project."""

    def __init__(
        self,
        cache: ContextCache,
        config: Optional[ReuseConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.cache = cache
        self.config = config or ReuseConfig()
        self.clock = clock or cache.clock
        self._index: Dict[str, Tuple[Task, str, int]] = {}
        self._lock = threading.Lock()

    def _words(self, text: str) -> set:
        return {w.lower() for w in _WORD.findall(text) if len(w) >= self.config.min_word_length}

    def calculate_task_similarity(self, first: Task, second: Task) -> float:
        """Jaccard similarity of description words. Different task types never match."""
        if first.type != second.type:
            return 0.0
        a = self._words(first.description)
        b = self._words(second.description)
        if not a or not b:
            return 0.0
        return len(a & b) / len(a | b)

    @staticmethod
    def reuse_key(task: Task, budget: int, project: ProjectContext) -> str:
        task_hash = hashlib.md5(f"{task.type.value}:{task.description}".encode("utf-8")).hexdigest()
        project_hash = hashlib.md5(project.root_path.encode("utf-8")).hexdigest()
        return f"reuse:{task_hash}:{project_hash}:{budget}"

    def store_context_for_reuse(self, selection: SelectedContext, task: Task, project: ProjectContext) -> str:
        budget = selection.constraints.max_tokens
        key = self.reuse_key(task, budget, project)
        self.cache.set(key, selection, self.config.reuse_ttl_seconds)
        with self._lock:
            self._index[key] = (task, project.root_path, budget)
        return key

    def find_reusable_context(
        self, task: Task, project: ProjectContext, budget: int
    ) -> Tuple[Optional[SelectedContext], float]:
        """Best cached selection for a similar task that fits ``budget``, with its similarity."""
        with self._lock:
            candidates = list(self._index.items())

        ranked: List[Tuple[float, str]] = []
        for key, (stored_task, root, stored_budget) in candidates:
            if root != project.root_path or stored_budget > budget:
                continue
            similarity = self.calculate_task_similarity(task, stored_task)
            if similarity >= self.config.min_similarity:
                ranked.append((similarity, key))
        ranked.sort(key=lambda item: (-item[0], item[1]))

        for similarity, key in ranked:
            selection = self.cache.get(key)
            if selection is None:
                with self._lock:
                    self._index.pop(key, None)
                continue
            logger.debug(f"Reusing cached context {key} (similarity {similarity:.2f})")
            return selection, similarity
        return None, 0.0

    def adapt_reused_context(self, reused: SelectedContext, new_task: Task, similarity: float) -> SelectedContext:
        metadata = {
            "reused_from": reused.task.description,
            "similarity_score": similarity,
            "adaptation_applied": True,
        }
        return reused.model_copy(update={
            "task": new_task,
            "files": [f.model_copy() for f in reused.files],
            "selection_score": reused.selection_score * similarity,
            "metadata": metadata,
            "created_at": self.clock(),
            "selection_time": 0.0,
        })
