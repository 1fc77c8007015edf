"""Bounded, persisted append logs for quality, performance and usage metrics.

Each stream is keyed (by sub-agent for quality and usage, by operation for
performance) and each key holds a fixed-capacity ring buffer: once full,
appending evicts the oldest record. Independently, ``sweep()`` prunes
records older than the retention window.

Persistence writes one JSON document per stream. Every write goes to a
temporary file in the same directory which is fsynced and then atomically
moved over the previous file, so an unclean shutdown leaves either the old
or the new document on disk, never a truncated one.

Recording only marks a stream dirty. Dirty streams are written by
``flush()``, either inline once ``flush_every`` records are pending or from
the service's background flusher, so N records cost far fewer than N file
writes.

Writes are single-writer; readers get snapshot copies and may observe a
recent-but-not-latest state.
"""

from __future__ import annotations

import json
import os
import tempfile
import threading
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Generic, TypeVar

from arbiter.analytics.metrics import (
    PerformanceMetric,
    QualityMetric,
    UsageMetric,
    utc_now,
)
from arbiter.core.config import AnalyticsConfig
from arbiter.core.errors import StorageFailure
from arbiter.core.logging import get_logger

_logger = get_logger("analytics.store")

QUALITY_FILE = "quality-metrics.json"
PERFORMANCE_FILE = "performance-metrics.json"
USAGE_FILE = "usage-metrics.json"

STORE_FORMAT_VERSION = 1

M = TypeVar("M", QualityMetric, PerformanceMetric, UsageMetric)


class _KeyedLog(Generic[M]):
    """Per-key ring buffers for one metric stream."""

    def __init__(self, capacity: int, loader: Callable[[dict[str, Any]], M]) -> None:
        self._capacity = capacity
        self._loader = loader
        self._buffers: dict[str, deque[M]] = {}

    def append(self, key: str, metric: M) -> None:
        buffer = self._buffers.get(key)
        if buffer is None:
            buffer = deque(maxlen=self._capacity)
            self._buffers[key] = buffer
        buffer.append(metric)

    def keys(self) -> list[str]:
        return list(self._buffers)

    def get(self, key: str) -> list[M]:
        return list(self._buffers.get(key, ()))

    def all(self) -> list[M]:
        merged = [m for buffer in self._buffers.values() for m in buffer]
        merged.sort(key=lambda m: m.timestamp)
        return merged

    def count(self) -> int:
        return sum(len(b) for b in self._buffers.values())

    def prune_before(self, cutoff: datetime) -> int:
        removed = 0
        for key in list(self._buffers):
            buffer = self._buffers[key]
            kept = [m for m in buffer if m.timestamp >= cutoff]
            removed += len(buffer) - len(kept)
            if kept:
                self._buffers[key] = deque(kept, maxlen=self._capacity)
            else:
                del self._buffers[key]
        return removed

    def to_dict(self) -> dict[str, list[dict[str, Any]]]:
        return {key: [m.to_dict() for m in buffer] for key, buffer in self._buffers.items()}

    def load_dict(self, data: dict[str, list[dict[str, Any]]]) -> None:
        self._buffers = {}
        for key, records in data.items():
            for record in records:
                self.append(key, self._loader(record))


@dataclass
class StorageHealth:
    """Summary of store size and maintenance state."""

    status: str
    total_records: int
    quality_records: int
    performance_records: int
    usage_records: int
    last_sweep: datetime | None
    last_persist: datetime | None
    storage_location: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "total_records": self.total_records,
            "quality_records": self.quality_records,
            "performance_records": self.performance_records,
            "usage_records": self.usage_records,
            "last_sweep": self.last_sweep.isoformat() if self.last_sweep else None,
            "last_persist": self.last_persist.isoformat() if self.last_persist else None,
            "storage_location": self.storage_location,
        }


class AnalyticsStore:
    """Append-only, bounded, persisted metric store."""

    def __init__(self, config: AnalyticsConfig | None = None) -> None:
        self.config = config or AnalyticsConfig()
        self.storage_path = Path(self.config.storage_path)
        capacity = self.config.max_entries_per_key
        self._quality: _KeyedLog[QualityMetric] = _KeyedLog(capacity, QualityMetric.from_dict)
        self._performance: _KeyedLog[PerformanceMetric] = _KeyedLog(
            capacity, PerformanceMetric.from_dict
        )
        self._usage: _KeyedLog[UsageMetric] = _KeyedLog(capacity, UsageMetric.from_dict)
        self._lock = threading.RLock()
        self._last_sweep: datetime | None = None
        self._last_persist: datetime | None = None
        self._dirty: set[str] = set()
        self._pending = 0

    # ─── Recording ─────────────────────────────────────────────────

    def record_quality(self, metric: QualityMetric) -> None:
        """Append a quality metric, flushing when a batch is due.

        Raises:
            StorageFailure: If an inline flush fails. The metric stays
                recorded in memory and its stream stays dirty.
        """
        if not self.config.enabled:
            return
        with self._lock:
            self._quality.append(metric.subagent_id, metric)
        self._after_record(QUALITY_FILE)

    def record_performance(self, metric: PerformanceMetric) -> None:
        if not self.config.enabled:
            return
        with self._lock:
            self._performance.append(metric.operation, metric)
        self._after_record(PERFORMANCE_FILE)

    def record_usage(self, metric: UsageMetric) -> None:
        if not self.config.enabled:
            return
        with self._lock:
            self._usage.append(metric.subagent_id, metric)
        self._after_record(USAGE_FILE)

    def _after_record(self, filename: str) -> None:
        with self._lock:
            self._dirty.add(filename)
            self._pending += 1
            due = self.config.persist_on_record and self._pending >= self.config.flush_every
        if due:
            self.flush()

    @property
    def pending_records(self) -> int:
        """Records appended since the last flush."""
        with self._lock:
            return self._pending

    # ─── Queries ───────────────────────────────────────────────────

    def quality_metrics(
        self,
        subagent_id: str | None = None,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[QualityMetric]:
        """Chronological quality metrics, optionally filtered.

        Args:
            subagent_id: Restrict to one sub-agent. None merges all.
            since: Only records at or after this time.
            limit: Keep only the most recent ``limit`` records.
        """
        with self._lock:
            metrics = self._quality.get(subagent_id) if subagent_id else self._quality.all()
        return _filter(metrics, since, limit)

    def performance_metrics(
        self,
        operation: str | None = None,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[PerformanceMetric]:
        with self._lock:
            metrics = self._performance.get(operation) if operation else self._performance.all()
        return _filter(metrics, since, limit)

    def usage_metrics(
        self,
        subagent_id: str | None = None,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[UsageMetric]:
        with self._lock:
            metrics = self._usage.get(subagent_id) if subagent_id else self._usage.all()
        return _filter(metrics, since, limit)

    def subagents(self) -> list[str]:
        """Sub-agents with at least one quality metric."""
        with self._lock:
            return self._quality.keys()

    def operations(self) -> list[str]:
        with self._lock:
            return self._performance.keys()

    @property
    def total_records(self) -> int:
        with self._lock:
            return self._quality.count() + self._performance.count() + self._usage.count()

    def health(self) -> StorageHealth:
        with self._lock:
            quality = self._quality.count()
            performance = self._performance.count()
            usage = self._usage.count()
        total = quality + performance + usage
        return StorageHealth(
            status="healthy" if total < self.config.max_entries_per_key * 3 else "warning",
            total_records=total,
            quality_records=quality,
            performance_records=performance,
            usage_records=usage,
            last_sweep=self._last_sweep,
            last_persist=self._last_persist,
            storage_location=str(self.storage_path),
        )

    def export(self) -> dict[str, Any]:
        """Raw datasets as JSON-compatible dicts."""
        with self._lock:
            return {
                "quality_metrics": self._quality.to_dict(),
                "performance_metrics": self._performance.to_dict(),
                "usage_metrics": self._usage.to_dict(),
                "exported_at": utc_now().isoformat(),
            }

    # ─── Retention ─────────────────────────────────────────────────

    def sweep(self, now: datetime | None = None) -> int:
        """Prune records older than the retention window.

        Returns:
            Number of records removed.
        """
        now = now or utc_now()
        cutoff = now - timedelta(days=self.config.retention_days)
        with self._lock:
            removed = (
                self._quality.prune_before(cutoff)
                + self._performance.prune_before(cutoff)
                + self._usage.prune_before(cutoff)
            )
            self._last_sweep = now
        if removed:
            _logger.info("analytics.swept", removed=removed, cutoff=cutoff.isoformat())
            with self._lock:
                self._dirty.update((QUALITY_FILE, PERFORMANCE_FILE, USAGE_FILE))
            if self.config.persist_on_record:
                self.flush()
        return removed

    # ─── Persistence ───────────────────────────────────────────────

    def persist(self) -> None:
        """Write all three streams to disk.

        Raises:
            StorageFailure: If any stream cannot be written.
        """
        self._write_streams({QUALITY_FILE, PERFORMANCE_FILE, USAGE_FILE})

    def flush(self) -> int:
        """Write only the streams changed since the last write.

        Returns:
            Number of files written.

        Raises:
            StorageFailure: If a stream cannot be written. Unwritten streams
                stay dirty for the next flush.
        """
        with self._lock:
            dirty = set(self._dirty)
        if dirty:
            self._write_streams(dirty)
        return len(dirty)

    def _write_streams(self, filenames: set[str]) -> None:
        with self._lock:
            self._dirty -= filenames
            self._pending = 0
        remaining = [f for f in (QUALITY_FILE, PERFORMANCE_FILE, USAGE_FILE) if f in filenames]
        try:
            while remaining:
                self._persist_stream(remaining[0])
                remaining.pop(0)
        except StorageFailure:
            with self._lock:
                self._dirty.update(remaining)
            raise

    def _persist_stream(self, filename: str) -> None:
        with self._lock:
            payload = {
                "version": STORE_FORMAT_VERSION,
                "metrics": self._log_for(filename).to_dict(),
            }
        _atomic_write_json(self.storage_path / filename, payload)
        self._last_persist = utc_now()

    def load(self) -> int:
        """Replace in-memory state with the persisted logs.

        Missing files are treated as empty streams.

        Returns:
            Number of records loaded.

        Raises:
            StorageFailure: If a log exists but cannot be read or parsed.
        """
        loaded = 0
        for filename in (QUALITY_FILE, PERFORMANCE_FILE, USAGE_FILE):
            path = self.storage_path / filename
            if not path.exists():
                continue
            try:
                with open(path, encoding="utf-8") as f:
                    data = json.load(f)
                metrics = data.get("metrics", {})
                with self._lock:
                    log = self._log_for(filename)
                    log.load_dict(metrics)
                    self._dirty.discard(filename)
                    loaded += log.count()
            except (OSError, ValueError, KeyError, TypeError) as e:
                raise StorageFailure(str(path), str(e)) from e
        _logger.info("analytics.loaded", records=loaded, path=str(self.storage_path))
        return loaded

    def _log_for(self, filename: str) -> _KeyedLog[Any]:
        if filename == QUALITY_FILE:
            return self._quality
        if filename == PERFORMANCE_FILE:
            return self._performance
        return self._usage


def _filter(metrics: list[M], since: datetime | None, limit: int | None) -> list[M]:
    if since is not None:
        metrics = [m for m in metrics if m.timestamp >= since]
    if limit is not None:
        metrics = metrics[-limit:] if limit > 0 else []
    return metrics


def _atomic_write_json(path: Path, payload: dict[str, Any]) -> None:
    """Write JSON via temp file + fsync + atomic replace."""
    temp_path: Path | None = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        ) as f:
            temp_path = Path(f.name)
            json.dump(payload, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        temp_path.replace(path)
    except OSError as e:
        if temp_path is not None and temp_path.exists():
            temp_path.unlink(missing_ok=True)
        raise StorageFailure(str(path), str(e)) from e
