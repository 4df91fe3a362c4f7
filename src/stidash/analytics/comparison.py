from __future__ import annotations

from stidash.core.models import ComparisonDelta, MetricsSnapshot


def percent_change(current: float, previous: float) -> float:
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return ((current - previous) / previous) * 100


def compare(current: MetricsSnapshot, previous: MetricsSnapshot) -> ComparisonDelta:
    """Period-over-period deltas.

    Counts compare as percent change; the completion rate is already a
    percentage, so it compares as a point difference.
    """
    return ComparisonDelta(
        total_change=percent_change(current.total, previous.total),
        executed_change=percent_change(current.executed, previous.executed),
        completion_rate_change=current.completion_rate - previous.completion_rate,
        coverage_change=percent_change(current.coverage, previous.coverage),
    )


def format_trend(value: float, *, points: bool = False) -> str:
    unit = " pts" if points else "%"
    return f"{abs(value):.1f}{unit} vs periodo anterior"
