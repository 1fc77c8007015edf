"""Analytics reporting commands.

Commands:
- trends: Quality trend for one sub-agent or across all of them
- compare: Side-by-side trends for every sub-agent
- insights: Severity-ranked findings with recommendations
- health: System health from recent performance metrics
- report: Full analytics report with executive summary
- export: Dump the raw metric datasets as JSON
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from arbiter.analytics.trends import QualityTrend

from ..helpers import get_service
from ..output import (
    StatusColors,
    console,
    create_insights_table,
    create_simple_table,
    create_trends_table,
    format_bytes,
    format_duration_ms,
    format_rate,
    format_score,
    format_trend,
    output_error,
    output_json,
)


def _add_trend_row(table: Table, trend: QualityTrend) -> None:
    table.add_row(
        trend.subagent_id,
        str(trend.total_validations),
        format_score(trend.score_average),
        format_trend(trend.score_trend),
        format_rate(trend.success_rate),
        format_rate(trend.refinement_rate),
        ", ".join(trend.weak_categories) or "-",
    )


def trends(
    subagent: Annotated[
        str | None, typer.Option("--subagent", "-s", help="Sub-agent to analyze")
    ] = None,
    days: Annotated[int, typer.Option("--days", "-d", min=1, help="Window in days")] = 7,
    json_output: Annotated[
        bool, typer.Option("--json", "-j", help="Output as JSON for machine parsing")
    ] = False,
) -> None:
    """Show the quality trend for a sub-agent, or overall.

    Examples:
        arbiter trends
        arbiter trends --subagent security_engineer --days 30
        arbiter trends --json
    """
    trend = get_service().trends(subagent, days)

    if json_output:
        output_json(trend.to_dict())
        return

    table = create_trends_table(title=f"Quality Trend ({days} days)")
    _add_trend_row(table, trend)
    console.print(table)

    if trend.insights:
        console.print("\n[bold cyan]Insights[/bold cyan]")
        for line in trend.insights:
            console.print(f"  • {line}")
    if trend.recommendations:
        console.print("\n[bold cyan]Recommendations[/bold cyan]")
        for line in trend.recommendations:
            console.print(f"  • {line}")


def compare(
    days: Annotated[int, typer.Option("--days", "-d", min=1, help="Window in days")] = 7,
    json_output: Annotated[
        bool, typer.Option("--json", "-j", help="Output as JSON for machine parsing")
    ] = False,
) -> None:
    """Compare quality trends across all sub-agents."""
    by_subagent = get_service().trend_analyzer.compare_subagents(days)

    if json_output:
        output_json({name: t.to_dict() for name, t in by_subagent.items()})
        return

    if not by_subagent:
        console.print("[dim]No quality data recorded yet.[/dim]")
        return

    table = create_trends_table(title=f"Sub-agent Comparison ({days} days)")
    ranked = sorted(by_subagent.values(), key=lambda t: t.score_average, reverse=True)
    for trend in ranked:
        _add_trend_row(table, trend)
    console.print(table)


def insights(
    subagent: Annotated[
        str | None, typer.Option("--subagent", "-s", help="Sub-agent to analyze")
    ] = None,
    days: Annotated[int, typer.Option("--days", "-d", min=1, help="Window in days")] = 7,
    json_output: Annotated[
        bool, typer.Option("--json", "-j", help="Output as JSON for machine parsing")
    ] = False,
) -> None:
    """Show actionable quality insights."""
    found = get_service().insights(subagent, days)

    if json_output:
        output_json([i.to_dict() for i in found])
        return

    if not found:
        console.print("[dim]No insights yet. Record more validations first.[/dim]")
        return

    table = create_insights_table()
    for insight in found:
        color = StatusColors.get_severity_color(insight.severity.value)
        table.add_row(
            f"[{color}]{insight.severity.value}[/{color}]",
            insight.title,
            insight.subagent_id or "-",
            insight.description,
            insight.recommendation or "",
        )
    console.print(table)


def health(
    json_output: Annotated[
        bool, typer.Option("--json", "-j", help="Output as JSON for machine parsing")
    ] = False,
) -> None:
    """Show system health."""
    status = get_service().system_health()

    if json_output:
        output_json(status.to_dict())
        return

    color = StatusColors.get_health_color(status.status)
    console.print(f"[bold]System Health:[/bold] [{color}]{status.status.upper()}[/{color}]\n")
    table = create_simple_table()
    table.add_row("Records", str(status.total_records))
    table.add_row("Error rate", format_rate(status.error_rate))
    table.add_row("Avg response", format_duration_ms(status.avg_response_time_ms))
    table.add_row("Memory", format_bytes(status.memory_bytes))
    table.add_row(
        "Last sweep",
        status.last_sweep.strftime("%Y-%m-%d %H:%M:%S UTC") if status.last_sweep else "never",
    )
    table.add_row("Storage", status.storage_location)
    console.print(table)


def report(
    days: Annotated[int, typer.Option("--days", "-d", min=1, help="Window in days")] = 30,
    json_output: Annotated[
        bool, typer.Option("--json", "-j", help="Output as JSON for machine parsing")
    ] = False,
) -> None:
    """Generate a full analytics report."""
    data = get_service().analytics_report(days)

    if json_output:
        output_json(data)
        return

    summary = data["executive_summary"]
    health_color = StatusColors.get_health_color(summary["system_status"])
    console.print(f"[bold]Analytics Report[/bold] [dim]({days} days)[/dim]\n")

    table = create_simple_table()
    table.add_row("Validations", str(summary["total_validations"]))
    table.add_row("Average score", format_score(summary["average_quality_score"]))
    table.add_row("Success rate", format_rate(summary["success_rate"]))
    table.add_row(
        "System status", f"[{health_color}]{summary['system_status']}[/{health_color}]"
    )
    console.print(table)

    if summary["key_insights"]:
        console.print("\n[bold cyan]Key Insights[/bold cyan]")
        for title in summary["key_insights"]:
            console.print(f"  • {title}")

    recommendations = data["quality"]["recommendations"]
    if recommendations:
        console.print("\n[bold cyan]Recommendations[/bold cyan]")
        for line in recommendations:
            console.print(f"  • {line}")

    suggestions = data["optimization_suggestions"]
    if suggestions:
        console.print("\n[bold cyan]Optimization Suggestions[/bold cyan]")
        for s in suggestions:
            console.print(
                f"  • [yellow]{s['target']}[/yellow]: {s['current_value']:.2f} → "
                f"{s['suggested_value']:.2f} [dim]({s['rationale']})[/dim]"
            )


def export(
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Write to this file instead of stdout"),
    ] = None,
) -> None:
    """Export raw analytics data as JSON."""
    data = get_service().export_analytics()

    if output is None:
        output_json(data)
        return

    try:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(json.dumps(data, indent=2, default=str), encoding="utf-8")
    except OSError as e:
        output_error(f"Cannot write {output}: {e}")
        raise typer.Exit(1) from None
    total = sum(len(records) for records in data["quality_metrics"].values())
    console.print(f"[green]Exported[/green] {total} quality records to {output}")
