# arbiter/cli/commands: Command modules for the Arbiter CLI.
#
# Each module in this package provides one or more CLI commands.

from .analytics import compare, export, health, insights, report, trends
from .intelligence import anomalies, forecast, threshold

__all__ = [
    # analytics.py
    "trends",
    "compare",
    "insights",
    "health",
    "report",
    "export",
    # intelligence.py
    "threshold",
    "anomalies",
    "forecast",
]
