"""Dashboard state container.

All mutations of the active filter and the page cursor go through
`DashboardStore.dispatch`. The reducer decides which fetches an action
triggers and bumps the matching generation counter, so every fetch can be
tagged with the generation it was issued under.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date

from stidash.analytics.drilldown import clear_filter, select_breakdown_entry
from stidash.core.models import FilterState, PageCursor

METRICS = "metrics"
TABLE = "table"


@dataclass(frozen=True)
class DashboardState:
    filter: FilterState
    cursor: PageCursor
    metrics_generation: int = 0
    table_generation: int = 0


@dataclass(frozen=True)
class SetDateRange:
    start_date: date
    end_date: date


@dataclass(frozen=True)
class SelectBreakdown:
    value: str
    dimension: str


@dataclass(frozen=True)
class ClearFilter:
    dimension: str


@dataclass(frozen=True)
class SetCriticalOnly:
    enabled: bool


@dataclass(frozen=True)
class ReplaceFilter:
    filter: FilterState


@dataclass(frozen=True)
class ResetFilters:
    today: date


@dataclass(frozen=True)
class SetPage:
    page_number: int


@dataclass(frozen=True)
class SetTotalCount:
    total_count: int


def _filter_for(current: FilterState, action) -> FilterState | None:
    if isinstance(action, SetDateRange):
        return current.with_dates(action.start_date, action.end_date)
    if isinstance(action, SelectBreakdown):
        return select_breakdown_entry(current, action.value, action.dimension)
    if isinstance(action, ClearFilter):
        return clear_filter(current, action.dimension)
    if isinstance(action, SetCriticalOnly):
        return replace(current, critical_only=bool(action.enabled))
    if isinstance(action, ReplaceFilter):
        return action.filter
    if isinstance(action, ResetFilters):
        return FilterState.year_to_date(action.today)
    return None


def reduce(state: DashboardState, action) -> tuple[DashboardState, frozenset[str]]:
    """Apply one action; return the new state and the fetches it triggers."""
    new_filter = _filter_for(state.filter, action)
    if new_filter is not None:
        # Any filter mutation, even to an equal value, is a new fetch cycle on page 1.
        return (
            replace(
                state,
                filter=new_filter,
                cursor=replace(state.cursor, page_number=1),
                metrics_generation=state.metrics_generation + 1,
                table_generation=state.table_generation + 1,
            ),
            frozenset({METRICS, TABLE}),
        )

    if isinstance(action, SetPage):
        target = state.cursor.clamped(action.page_number)
        if target.page_number == state.cursor.page_number:
            return state, frozenset()
        return (
            replace(state, cursor=target, table_generation=state.table_generation + 1),
            frozenset({TABLE}),
        )

    if isinstance(action, SetTotalCount):
        cursor = replace(state.cursor, total_count=max(0, int(action.total_count)))
        return replace(state, cursor=cursor.clamped()), frozenset()

    raise ValueError(f"acción no soportada: {action!r}")


class DashboardStore:
    def __init__(self, *, today: date, page_size: int = 10):
        self._state = DashboardState(
            filter=FilterState.year_to_date(today),
            cursor=PageCursor(page_number=1, page_size=page_size),
        )

    @property
    def state(self) -> DashboardState:
        return self._state

    def dispatch(self, action) -> frozenset[str]:
        self._state, triggers = reduce(self._state, action)
        return triggers
