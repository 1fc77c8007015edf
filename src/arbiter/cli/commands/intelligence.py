"""Predictive intelligence commands.

Commands:
- threshold: Adaptive pass threshold for a sub-agent
- anomalies: Z-score anomalies in quality and performance streams
- forecast: Linear quality forecast for a sub-agent
"""

from __future__ import annotations

from typing import Annotated

import typer

from arbiter.core.errors import PredictionUnavailable

from ..helpers import get_service
from ..output import (
    StatusColors,
    console,
    create_anomalies_table,
    create_simple_table,
    format_score,
    format_trend,
    output_error,
    output_json,
)


def threshold(
    subagent: Annotated[str, typer.Argument(help="Sub-agent identifier")],
    json_output: Annotated[
        bool, typer.Option("--json", "-j", help="Output as JSON for machine parsing")
    ] = False,
) -> None:
    """Show the adaptive pass threshold learned for a sub-agent."""
    service = get_service()
    configured = service.config.quality.threshold_for(subagent)
    adaptive = service.engine.adaptive_threshold(subagent)
    passing = sum(1 for m in service.store.quality_metrics(subagent) if m.passed)
    band = service.config.intelligence

    if json_output:
        output_json({
            "subagent_id": subagent,
            "adaptive_threshold": adaptive,
            "configured_threshold": configured,
            "passing_samples": passing,
            "band": [band.threshold_band_min, band.threshold_band_max],
        })
        return

    table = create_simple_table()
    table.add_row("Sub-agent", f"[cyan]{subagent}[/cyan]")
    table.add_row("Adaptive threshold", f"[bold]{format_score(adaptive)}[/bold]")
    table.add_row("Configured threshold", format_score(configured))
    table.add_row("Passing samples", str(passing))
    low, high = band.threshold_band_min, band.threshold_band_max
    table.add_row("Band", f"{format_score(low)} - {format_score(high)}")
    console.print(table)
    if passing < band.min_threshold_samples:
        console.print(
            f"\n[dim]Fewer than {band.min_threshold_samples} passing samples; "
            "using the configured threshold.[/dim]"
        )


def anomalies(
    subagent: Annotated[
        str | None, typer.Option("--subagent", "-s", help="Limit to one sub-agent")
    ] = None,
    json_output: Annotated[
        bool, typer.Option("--json", "-j", help="Output as JSON for machine parsing")
    ] = False,
) -> None:
    """Detect anomalous scores and durations."""
    found = get_service().engine.detect_anomalies(subagent)

    if json_output:
        output_json([a.to_dict() for a in found])
        return

    if not found:
        console.print("[green]No anomalies detected.[/green]")
        return

    table = create_anomalies_table(title=f"Anomalies ({len(found)})")
    for anomaly in sorted(found, key=lambda a: abs(a.z_score), reverse=True):
        color = StatusColors.get_severity_color(anomaly.severity)
        is_score = anomaly.stream == "quality_score"
        table.add_row(
            f"[{color}]{anomaly.severity}[/{color}]",
            anomaly.stream,
            anomaly.key,
            str(anomaly.index),
            format_score(anomaly.value) if is_score else f"{anomaly.value:.1f}",
            format_score(anomaly.expected) if is_score else f"{anomaly.expected:.1f}",
            f"{anomaly.z_score:+.2f}",
        )
    console.print(table)


def forecast(
    subagent: Annotated[str, typer.Argument(help="Sub-agent identifier")],
    horizon: Annotated[
        int, typer.Option("--horizon", min=1, help="Samples ahead to project")
    ] = 1,
    json_output: Annotated[
        bool, typer.Option("--json", "-j", help="Output as JSON for machine parsing")
    ] = False,
) -> None:
    """Forecast a sub-agent's quality score."""
    try:
        result = get_service().engine.forecast(subagent, horizon)
    except PredictionUnavailable as e:
        output_error(str(e), hints=["Record more validations for this sub-agent"],
                     json_output=json_output)
        raise typer.Exit(1) from None

    if json_output:
        output_json(result.to_dict())
        return

    low, high = result.confidence_interval
    table = create_simple_table()
    table.add_row("Sub-agent", f"[cyan]{subagent}[/cyan]")
    table.add_row("Horizon", str(result.horizon))
    table.add_row("Predicted score", f"[bold]{format_score(result.predicted_score)}[/bold]")
    table.add_row("95% interval", f"{format_score(low)} - {format_score(high)}")
    table.add_row("Trend", format_trend(result.trend))
    table.add_row("Samples", str(result.samples))
    console.print(table)
