"""Tests for arbiter.analytics.store."""

from __future__ import annotations

import json
from datetime import timedelta
from pathlib import Path

import pytest

from arbiter.analytics import store as store_module
from arbiter.analytics.metrics import PerformanceMetric, TaskComplexity, UsageMetric, utc_now
from arbiter.analytics.store import PERFORMANCE_FILE, QUALITY_FILE, USAGE_FILE, AnalyticsStore
from arbiter.core.config import AnalyticsConfig
from arbiter.core.errors import StorageFailure
from tests.helpers import quality_metric, seed_scores


# ─── Recording and queries ───────────────────────────────────────────


class TestRecording:
    def test_quality_metrics_by_subagent(self, store: AnalyticsStore):
        seed_scores(store, [0.8, 0.6], subagent_id="a")
        seed_scores(store, [0.9], subagent_id="b")

        assert [m.quality_score for m in store.quality_metrics("a")] == [0.8, 0.6]
        assert len(store.quality_metrics()) == 3
        assert sorted(store.subagents()) == ["a", "b"]

    def test_merged_view_is_chronological(self, store: AnalyticsStore):
        store.record_quality(quality_metric(0.5, "a", minutes_ago=1))
        store.record_quality(quality_metric(0.9, "b", minutes_ago=3))
        store.record_quality(quality_metric(0.7, "a", minutes_ago=2))

        merged = store.quality_metrics()
        assert [m.quality_score for m in merged] == [0.9, 0.7, 0.5]

    def test_limit_keeps_most_recent(self, store: AnalyticsStore):
        seed_scores(store, [0.1, 0.2, 0.3, 0.4])
        assert [m.quality_score for m in store.quality_metrics("analyst", limit=2)] == [0.3, 0.4]

    def test_since_filter(self, store: AnalyticsStore):
        store.record_quality(quality_metric(0.5, minutes_ago=120))
        store.record_quality(quality_metric(0.9, minutes_ago=1))
        recent = store.quality_metrics(since=utc_now() - timedelta(minutes=30))
        assert [m.quality_score for m in recent] == [0.9]

    def test_disabled_store_records_nothing(self, storage_path: Path):
        store = AnalyticsStore(AnalyticsConfig(storage_path=storage_path, enabled=False))
        seed_scores(store, [0.8])
        assert store.total_records == 0
        assert not storage_path.exists()


class TestRingBuffer:
    def test_oldest_evicted_at_capacity(self, storage_path: Path):
        store = AnalyticsStore(
            AnalyticsConfig(storage_path=storage_path, max_entries_per_key=3)
        )
        seed_scores(store, [0.1, 0.2, 0.3, 0.4, 0.5])
        assert [m.quality_score for m in store.quality_metrics("analyst")] == [0.3, 0.4, 0.5]

    def test_capacity_is_per_key(self, storage_path: Path):
        store = AnalyticsStore(
            AnalyticsConfig(storage_path=storage_path, max_entries_per_key=2)
        )
        seed_scores(store, [0.1, 0.2, 0.3], subagent_id="a")
        seed_scores(store, [0.9], subagent_id="b")
        assert len(store.quality_metrics("a")) == 2
        assert len(store.quality_metrics("b")) == 1


# ─── Persistence ─────────────────────────────────────────────────────


class TestPersistence:
    def test_round_trip_preserves_order_and_fields(self, analytics_config: AnalyticsConfig):
        store = AnalyticsStore(analytics_config)
        original = seed_scores(
            store,
            [0.9, 0.4, 0.75],
            category_scores={"format": 1.0, "completeness": 0.5},
            task_type="review",
            task_complexity=TaskComplexity.HIGH,
        )
        store.record_performance(PerformanceMetric(
            timestamp=utc_now(), operation="quality.assess", duration_ms=12.5, success=True
        ))
        store.record_usage(UsageMetric(
            timestamp=utc_now(),
            subagent_id="analyst",
            session_id="s1",
            operation="run_task",
            success=True,
            task_complexity=TaskComplexity.LOW,
        ))
        store.flush()

        reloaded = AnalyticsStore(analytics_config)
        assert reloaded.load() == 5
        assert reloaded.quality_metrics("analyst") == original
        assert reloaded.performance_metrics("quality.assess")[0].duration_ms == 12.5
        assert reloaded.usage_metrics("analyst")[0].task_complexity == TaskComplexity.LOW

    def test_files_are_versioned_json(self, store: AnalyticsStore, storage_path: Path):
        seed_scores(store, [0.8])
        store.flush()
        data = json.loads((storage_path / QUALITY_FILE).read_text())
        assert data["version"] == 1
        assert data["metrics"]["analyst"][0]["quality_score"] == 0.8

    def test_no_temp_files_left_behind(self, store: AnalyticsStore, storage_path: Path):
        seed_scores(store, [0.8, 0.7])
        store.flush()
        assert not [p for p in storage_path.iterdir() if p.name.endswith(".tmp")]

    def test_missing_files_load_empty(self, store: AnalyticsStore):
        assert store.load() == 0
        assert store.total_records == 0

    def test_corrupt_file_raises_storage_failure(self, store: AnalyticsStore, storage_path: Path):
        storage_path.mkdir(parents=True)
        (storage_path / QUALITY_FILE).write_text("{not json")
        with pytest.raises(StorageFailure):
            store.load()

    def test_unwritable_location_raises_but_keeps_record(self, tmp_path: Path):
        blocker = tmp_path / "blocker"
        blocker.write_text("a file, not a directory")
        store = AnalyticsStore(AnalyticsConfig(storage_path=blocker / "analytics", flush_every=1))

        with pytest.raises(StorageFailure):
            store.record_quality(quality_metric(0.8))
        assert len(store.quality_metrics()) == 1

    def test_deferred_persistence(self, storage_path: Path):
        config = AnalyticsConfig(storage_path=storage_path, persist_on_record=False)
        store = AnalyticsStore(config)
        seed_scores(store, [0.8])
        assert not (storage_path / QUALITY_FILE).exists()

        store.persist()
        assert AnalyticsStore(config).load() == 1


class TestBatchedFlush:
    def test_records_are_written_in_batches(self, monkeypatch, storage_path: Path):
        writes: list[int] = []
        original = store_module._atomic_write_json

        def counting_write(path: Path, payload: dict) -> None:
            writes.append(sum(len(v) for v in payload["metrics"].values()))
            original(path, payload)

        monkeypatch.setattr(store_module, "_atomic_write_json", counting_write)
        store = AnalyticsStore(AnalyticsConfig(storage_path=storage_path, flush_every=100))
        seed_scores(store, [0.8] * 200)

        assert writes == [100, 200]
        assert store.pending_records == 0
        assert AnalyticsStore(store.config).load() == 200

    def test_flush_writes_only_dirty_streams(self, store: AnalyticsStore, storage_path: Path):
        seed_scores(store, [0.8])
        store.record_usage(UsageMetric(
            timestamp=utc_now(),
            subagent_id="analyst",
            session_id="s1",
            operation="run_task",
            success=True,
            task_complexity=TaskComplexity.LOW,
        ))
        assert not storage_path.exists()

        assert store.flush() == 2
        assert (storage_path / QUALITY_FILE).exists()
        assert (storage_path / USAGE_FILE).exists()
        assert not (storage_path / PERFORMANCE_FILE).exists()
        assert store.flush() == 0

    def test_failed_flush_keeps_stream_dirty(self, tmp_path: Path):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        store = AnalyticsStore(AnalyticsConfig(storage_path=blocker / "analytics"))
        seed_scores(store, [0.8])

        with pytest.raises(StorageFailure):
            store.flush()
        with pytest.raises(StorageFailure):
            store.flush()


# ─── Retention ───────────────────────────────────────────────────────


class TestSweep:
    def test_prunes_entries_older_than_retention(self, storage_path: Path):
        store = AnalyticsStore(AnalyticsConfig(storage_path=storage_path, retention_days=1))
        store.record_quality(quality_metric(0.5, minutes_ago=2 * 24 * 60))
        store.record_quality(quality_metric(0.9, minutes_ago=5))

        assert store.sweep() == 1
        assert [m.quality_score for m in store.quality_metrics()] == [0.9]
        assert store.health().last_sweep is not None

    def test_sweep_persists_removal(self, analytics_config: AnalyticsConfig):
        store = AnalyticsStore(analytics_config)
        store.record_quality(quality_metric(0.5, minutes_ago=40 * 24 * 60))
        store.sweep()
        assert AnalyticsStore(analytics_config).load() == 0


class TestHealthAndExport:
    def test_health_counts(self, store: AnalyticsStore, storage_path: Path):
        seed_scores(store, [0.8, 0.7])
        health = store.health()
        assert health.quality_records == 2
        assert health.total_records == 2
        assert health.status == "healthy"
        assert health.storage_location == str(storage_path)

    def test_export_contains_every_stream(self, store: AnalyticsStore):
        seed_scores(store, [0.8])
        data = store.export()
        assert set(data) == {
            "quality_metrics", "performance_metrics", "usage_metrics", "exported_at"
        }
        assert data["quality_metrics"]["analyst"][0]["quality_score"] == 0.8
