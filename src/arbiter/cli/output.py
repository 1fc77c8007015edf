"""Rich output formatting for the Arbiter CLI.

Color schemes, score formatting and table factories shared by the command
modules. Scores are stored on [0, 1] and always rendered on the 0-100
display scale.
"""

from __future__ import annotations

import json
from typing import Any, Literal

from rich.console import Console
from rich.table import Table

from arbiter.analytics.trends import InsightSeverity, to_display_scale

console = Console()


# ─── Color schemes ─────────────────────────────────────────────────


class StatusColors:
    """Color mappings for status values used across commands."""

    HEALTH: dict[str, str] = {
        "healthy": "green",
        "warning": "yellow",
        "critical": "red",
    }

    TREND: dict[str, str] = {
        "improving": "green",
        "stable": "blue",
        "declining": "red",
    }

    SEVERITY: dict[str, str] = {
        InsightSeverity.INFO.value: "cyan",
        InsightSeverity.WARNING.value: "yellow",
        InsightSeverity.CRITICAL.value: "red",
        "low": "cyan",
        "medium": "yellow",
        "high": "red",
    }

    @classmethod
    def get_health_color(cls, status: str) -> str:
        return cls.HEALTH.get(status, "white")

    @classmethod
    def get_trend_color(cls, trend: str) -> str:
        return cls.TREND.get(trend, "white")

    @classmethod
    def get_severity_color(cls, severity: str) -> str:
        return cls.SEVERITY.get(severity, "white")


# ─── Formatters ────────────────────────────────────────────────────


def format_score(score: float, threshold: float | None = None) -> str:
    """Render a [0, 1] score on the display scale, colored against ``threshold``."""
    text = f"{to_display_scale(score):.1f}"
    if threshold is None:
        return text
    color = "green" if score >= threshold else "red"
    return f"[{color}]{text}[/{color}]"


def format_rate(rate: float) -> str:
    """Render a [0, 1] rate as a percentage."""
    return f"{to_display_scale(rate):.1f}%"


def format_trend(trend: str) -> str:
    color = StatusColors.get_trend_color(trend)
    return f"[{color}]{trend}[/{color}]"


def format_duration_ms(ms: float) -> str:
    if ms < 1000:
        return f"{ms:.0f}ms"
    return f"{ms / 1000:.2f}s"


def format_bytes(num_bytes: int) -> str:
    if num_bytes < 1024:
        return f"{num_bytes}B"
    if num_bytes < 1024 * 1024:
        return f"{num_bytes / 1024:.1f}KB"
    if num_bytes < 1024 * 1024 * 1024:
        return f"{num_bytes / (1024 * 1024):.1f}MB"
    return f"{num_bytes / (1024 * 1024 * 1024):.2f}GB"


# ─── Table factories ───────────────────────────────────────────────


def create_trends_table(title: str = "Quality Trends") -> Table:
    table = Table(title=title)
    table.add_column("Sub-agent", style="cyan")
    table.add_column("Validations", justify="right")
    table.add_column("Avg Score", justify="right")
    table.add_column("Trend")
    table.add_column("Success", justify="right")
    table.add_column("Refined", justify="right")
    table.add_column("Weak Categories", style="yellow")
    return table


def create_insights_table(title: str = "Quality Insights") -> Table:
    table = Table(title=title)
    table.add_column("Severity", width=10)
    table.add_column("Title", style="bold")
    table.add_column("Sub-agent", style="cyan")
    table.add_column("Description")
    table.add_column("Recommendation", style="dim")
    return table


def create_anomalies_table(title: str = "Anomalies") -> Table:
    table = Table(title=title)
    table.add_column("Severity", width=8)
    table.add_column("Stream")
    table.add_column("Key", style="cyan")
    table.add_column("Index", justify="right")
    table.add_column("Value", justify="right")
    table.add_column("Expected", justify="right")
    table.add_column("Z", justify="right")
    return table


def create_simple_table(show_header: bool = False) -> Table:
    """Key/value table without borders."""
    table = Table(show_header=show_header, box=None, padding=(0, 2))
    table.add_column("Key", style="dim")
    table.add_column("Value")
    return table


# ─── Structured output ─────────────────────────────────────────────


def output_json(data: Any) -> None:
    """Print ``data`` as JSON without Rich markup or wrapping."""
    console.print(
        json.dumps(data, indent=2, default=str),
        markup=False,
        highlight=False,
        soft_wrap=True,
    )


def output_error(
    message: str,
    *,
    hints: list[str] | None = None,
    severity: Literal["error", "warning"] = "error",
    json_output: bool = False,
) -> None:
    """Print an error or warning with optional hints, or its JSON form."""
    if json_output:
        result: dict[str, Any] = {"success": False, "message": message}
        if hints:
            result["hints"] = hints
        output_json(result)
        return

    color = "red" if severity == "error" else "yellow"
    label = "Error" if severity == "error" else "Warning"
    console.print(f"[{color}]{label}:[/{color}] {message}")
    if hints:
        console.print()
        for hint in hints:
            console.print(f"  [dim]{hint}[/dim]")
