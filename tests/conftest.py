"""Pytest fixtures for Arbiter tests."""

from __future__ import annotations

import logging
from collections.abc import Generator
from pathlib import Path

import pytest
import structlog

from arbiter.analytics.store import AnalyticsStore
from arbiter.core.config import AnalyticsConfig, ArbiterConfig
from arbiter.service import ArbiterService


@pytest.fixture(autouse=True)
def reset_logging_state() -> Generator[None, None, None]:
    """Reset structlog, root handlers and CLI state around each test."""
    from arbiter.cli import helpers

    helpers.reset_state()
    structlog.reset_defaults()

    root_logger = logging.getLogger()
    original_handlers = root_logger.handlers[:]
    for handler in original_handlers:
        root_logger.removeHandler(handler)

    yield

    helpers.reset_state()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in original_handlers:
        root_logger.addHandler(handler)


@pytest.fixture
def storage_path(tmp_path: Path) -> Path:
    return tmp_path / "analytics"


@pytest.fixture
def analytics_config(storage_path: Path) -> AnalyticsConfig:
    return AnalyticsConfig(storage_path=storage_path)


@pytest.fixture
def store(analytics_config: AnalyticsConfig) -> AnalyticsStore:
    """Empty store persisting under tmp_path."""
    return AnalyticsStore(analytics_config)


@pytest.fixture
def arbiter_config(analytics_config: AnalyticsConfig) -> ArbiterConfig:
    return ArbiterConfig(analytics=analytics_config)


@pytest.fixture
def service(arbiter_config: ArbiterConfig) -> ArbiterService:
    """Service without a backend, persisting under tmp_path."""
    return ArbiterService(arbiter_config)
