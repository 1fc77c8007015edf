"""Live tunable parameters and their single publish point.

Background optimization never edits parameters in place. It builds a new
immutable ``ParameterSet`` and hands it to ``ParameterBoard.publish``,
which validates the whole set and swaps it in as one reference assignment.
Readers take a ``snapshot()`` once per assessment, so a publish that lands
mid-assessment is only seen on the next one.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any

from arbiter.analytics.metrics import utc_now
from arbiter.core.logging import get_logger

_logger = get_logger("intelligence.params")

WEIGHT_PREFIX = "weight."
SCALAR_PARAMETERS = ("default_threshold", "hard_floor")


@dataclass(frozen=True)
class ParameterSet:
    """Immutable set of tunable quality parameters.

    Attributes:
        category_weights: Weight per quality category (missing means 1.0).
        default_threshold: Overrides the configured fallback threshold when set.
        hard_floor: Minimum score every category must reach.
        version: Incremented on every publish.
        source: Who published this set.
    """

    category_weights: Mapping[str, float] = field(default_factory=dict)
    default_threshold: float | None = None
    hard_floor: float = 0.50
    version: int = 0
    source: str = "config"
    published_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        for name, weight in self.category_weights.items():
            if weight < 0:
                raise ValueError(f"weight for {name!r} must be non-negative, got {weight}")
        if self.category_weights and sum(self.category_weights.values()) <= 0:
            raise ValueError("at least one category weight must be positive")
        if self.default_threshold is not None and not 0.0 <= self.default_threshold <= 1.0:
            raise ValueError(f"default_threshold must be within [0, 1], got {self.default_threshold}")
        if not 0.0 <= self.hard_floor <= 1.0:
            raise ValueError(f"hard_floor must be within [0, 1], got {self.hard_floor}")
        object.__setattr__(
            self, "category_weights", MappingProxyType(dict(self.category_weights))
        )

    def weight_for(self, category: str) -> float:
        return self.category_weights.get(category, 1.0)

    def to_flat(self) -> dict[str, float]:
        """Flat ``name -> value`` view used by the optimizer."""
        flat = {f"{WEIGHT_PREFIX}{c}": w for c, w in self.category_weights.items()}
        if self.default_threshold is not None:
            flat["default_threshold"] = self.default_threshold
        flat["hard_floor"] = self.hard_floor
        return flat

    def with_updates(self, updates: Mapping[str, float], source: str) -> ParameterSet:
        """New set with flat-named updates applied.

        Raises:
            ValueError: For an unknown parameter name or an invalid value.
        """
        weights = dict(self.category_weights)
        default_threshold = self.default_threshold
        hard_floor = self.hard_floor
        for name, value in updates.items():
            if name.startswith(WEIGHT_PREFIX):
                weights[name[len(WEIGHT_PREFIX):]] = float(value)
            elif name == "default_threshold":
                default_threshold = float(value)
            elif name == "hard_floor":
                hard_floor = float(value)
            else:
                raise ValueError(f"Unknown parameter {name!r}")
        return ParameterSet(
            category_weights=weights,
            default_threshold=default_threshold,
            hard_floor=hard_floor,
            version=self.version + 1,
            source=source,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "category_weights": dict(self.category_weights),
            "default_threshold": self.default_threshold,
            "hard_floor": self.hard_floor,
            "version": self.version,
            "source": self.source,
            "published_at": self.published_at.isoformat(),
        }


class ParameterBoard:
    """Holds the live ParameterSet; the only place it changes."""

    def __init__(self, initial: ParameterSet | None = None) -> None:
        self._current = initial or ParameterSet()
        self._history: list[ParameterSet] = [self._current]
        self._lock = threading.Lock()

    def snapshot(self) -> ParameterSet:
        return self._current

    def publish(self, updates: Mapping[str, float], source: str) -> ParameterSet:
        """Validate and atomically adopt a set of parameter updates.

        Either every update is applied or none is.

        Raises:
            ValueError: If any update is invalid. The live set is unchanged.
        """
        with self._lock:
            candidate = self._current.with_updates(updates, source)
            self._current = candidate
            self._history.append(candidate)
        _logger.info(
            "params.published",
            version=candidate.version,
            source=source,
            parameters=candidate.to_flat(),
        )
        return candidate

    def rollback(self) -> ParameterSet:
        """Restore the previously published set, if any."""
        with self._lock:
            if len(self._history) > 1:
                self._history.pop()
                self._current = self._history[-1]
            current = self._current
        _logger.info("params.rolled_back", version=current.version)
        return current

    @property
    def history(self) -> list[ParameterSet]:
        with self._lock:
            return list(self._history)
