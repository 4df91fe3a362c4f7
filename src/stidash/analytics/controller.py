from __future__ import annotations

import asyncio
import logging
from datetime import date
from typing import Callable

from stidash.analytics.aggregator import MetricsAggregator
from stidash.analytics.comparison import compare
from stidash.analytics.export import ExportDocument, ExportSnapshotBuilder
from stidash.analytics.stalled import fetch_stalled_records
from stidash.analytics.state import (
    METRICS,
    TABLE,
    ClearFilter,
    DashboardStore,
    ReplaceFilter,
    ResetFilters,
    SelectBreakdown,
    SetCriticalOnly,
    SetDateRange,
    SetPage,
    SetTotalCount,
)
from stidash.analytics.table import PaginatedTableSynchronizer
from stidash.core.errors import AggregationError, ExportError, TableFetchError
from stidash.core.models import ComparisonDelta, FilterState, MetricsSnapshot, Notice, StalledRecord, TablePage
from stidash.data.gateway import RecordService
from stidash.settings import DashboardConfig

logger = logging.getLogger(__name__)


class DashboardController:
    """Runs the dashboard fetch cycles on the event loop.

    A filter mutation starts a metrics fetch and a table fetch; a page change
    starts only a table fetch. Each fetch carries the generation it was issued
    under and its result is dropped if a newer generation exists by the time
    it arrives. Failures keep the last good snapshot/page and raise a notice.
    """

    def __init__(
        self,
        service: RecordService,
        *,
        config: DashboardConfig | None = None,
        clock: Callable[[], date] = date.today,
    ):
        self.config = config or DashboardConfig()
        self.clock = clock
        self.service = service
        self.store = DashboardStore(today=clock(), page_size=self.config.page_size)

        self.aggregator = MetricsAggregator(service, staleness_days=self.config.staleness_days, clock=clock)
        self.table = PaginatedTableSynchronizer(service, staleness_days=self.config.staleness_days, clock=clock)
        self.exporter = ExportSnapshotBuilder(
            service,
            batch_size=self.config.export_batch_size,
            staleness_days=self.config.staleness_days,
            clock=clock,
        )

        self.current: MetricsSnapshot | None = None
        self.previous: MetricsSnapshot | None = None
        self.comparison: ComparisonDelta | None = None
        self.metrics_filter: FilterState | None = None
        self.page: TablePage | None = None
        self.stalled: list[StalledRecord] = []
        self.notices: list[Notice] = []
        self.loading: set[str] = set()

        self._listeners: list[Callable[[str], None]] = []
        self._tasks: set[asyncio.Task] = set()
        self._debounce_task: asyncio.Task | None = None

    @property
    def filter(self) -> FilterState:
        return self.store.state.filter

    # Listeners
    def subscribe(self, callback: Callable[[str], None]) -> None:
        self._listeners.append(callback)

    def _emit(self, event: str) -> None:
        for cb in list(self._listeners):
            cb(event)

    def _notify(self, level: str, message: str) -> None:
        notice = Notice(level=level, message=message)
        self.notices.append(notice)
        self._emit("notice")

    def dismiss_notice(self, notice: Notice) -> None:
        if notice in self.notices:
            self.notices.remove(notice)
            self._emit("notice")

    # Task bookkeeping
    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Unexpected error in dashboard task", exc_info=exc)

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # Mutations
    def dispatch(self, action) -> list[asyncio.Task]:
        triggers = self.store.dispatch(action)
        state = self.store.state
        if METRICS in triggers:
            # A newer filter mutation supersedes any debounced one still waiting.
            self._cancel_debounce()
            self._emit("filter")
            return self._on_filter_changed(state)
        if TABLE in triggers:
            return self._on_page_changed(state)
        return []

    def _on_filter_changed(self, state) -> list[asyncio.Task]:
        logger.debug("Filter changed (gen %s): %s", state.metrics_generation, state.filter)
        return [
            self._spawn(self._run_metrics(state.metrics_generation, state.filter)),
            self._spawn(self._run_table(state.table_generation, state.filter, state.cursor)),
        ]

    def _on_page_changed(self, state) -> list[asyncio.Task]:
        logger.debug("Page changed to %s (gen %s)", state.cursor.page_number, state.table_generation)
        return [self._spawn(self._run_table(state.table_generation, state.filter, state.cursor))]

    def select_breakdown(self, value: str, dimension: str) -> list[asyncio.Task]:
        return self.dispatch(SelectBreakdown(value=value, dimension=dimension))

    def clear_filter(self, dimension: str) -> list[asyncio.Task]:
        return self.dispatch(ClearFilter(dimension=dimension))

    def set_date_range(self, start_date: date, end_date: date) -> list[asyncio.Task]:
        return self.dispatch(SetDateRange(start_date=start_date, end_date=end_date))

    def set_critical_only(self, enabled: bool) -> list[asyncio.Task]:
        return self.dispatch(SetCriticalOnly(enabled=enabled))

    def reset_filters(self) -> list[asyncio.Task]:
        return self.dispatch(ResetFilters(today=self.clock()))

    def refresh(self) -> list[asyncio.Task]:
        """Re-run the fetch cycle for the current filter (retry after a failure)."""
        return self.dispatch(ReplaceFilter(filter=self.filter))

    def go_to_page(self, page_number: int) -> list[asyncio.Task]:
        return self.dispatch(SetPage(page_number=page_number))

    def next_page(self) -> list[asyncio.Task]:
        return self.go_to_page(self.store.state.cursor.page_number + 1)

    def previous_page(self) -> list[asyncio.Task]:
        return self.go_to_page(self.store.state.cursor.page_number - 1)

    def _cancel_debounce(self) -> None:
        if self._debounce_task is not None and not self._debounce_task.done():
            logger.debug("Dropping pending debounced action")
            self._debounce_task.cancel()
        self._debounce_task = None

    def debounce(self, action) -> asyncio.Task:
        """Dispatch `action` after a quiet period.

        A newer debounced call, or any filter mutation dispatched in the
        meantime, cancels the pending one.
        """
        self._cancel_debounce()

        async def _later() -> None:
            await asyncio.sleep(self.config.debounce_seconds)
            # Detach first so dispatch does not cancel the running task.
            self._debounce_task = None
            self.dispatch(action)

        self._debounce_task = self._spawn(_later())
        return self._debounce_task

    # Fetch runners
    def _set_loading(self, kind: str, on: bool) -> None:
        if on:
            self.loading.add(kind)
        else:
            self.loading.discard(kind)
        self._emit("loading")

    async def _run_metrics(self, generation: int, filter_state: FilterState) -> None:
        self._set_loading(METRICS, True)
        try:
            current, previous = await self.aggregator.aggregate(filter_state)
        except AggregationError as exc:
            if generation != self.store.state.metrics_generation:
                logger.debug("Ignoring failure of stale metrics fetch (gen %s)", generation)
                return
            logger.warning("Metrics fetch failed for %s: %s", filter_state, exc)
            self._notify("warning", f"No se pudieron actualizar las métricas: {exc}")
            return
        finally:
            if generation == self.store.state.metrics_generation:
                self._set_loading(METRICS, False)

        if generation != self.store.state.metrics_generation:
            logger.debug(
                "Discarding stale metrics (gen %s, current %s)", generation, self.store.state.metrics_generation
            )
            return

        self.current = current
        self.previous = previous
        self.comparison = compare(current, previous)
        self.metrics_filter = filter_state
        self._emit("metrics")

    async def _run_table(self, generation: int, filter_state: FilterState, cursor) -> None:
        self._set_loading(TABLE, True)
        try:
            page = await self.table.fetch_page(filter_state, cursor)
        except TableFetchError as exc:
            if generation != self.store.state.table_generation:
                logger.debug("Ignoring failure of stale table fetch (gen %s)", generation)
                return
            logger.warning("Table fetch failed for %s page %s: %s", filter_state, cursor.page_number, exc)
            self._notify("warning", f"No se pudo actualizar la tabla: {exc}")
            return
        finally:
            if generation == self.store.state.table_generation:
                self._set_loading(TABLE, False)

        if generation != self.store.state.table_generation:
            logger.debug("Discarding stale page (gen %s, current %s)", generation, self.store.state.table_generation)
            return

        self.store.dispatch(SetTotalCount(total_count=page.total_count))
        self.page = page
        self._emit("table")

    async def load_stalled(self) -> None:
        try:
            self.stalled = await fetch_stalled_records(
                self.service,
                today=self.clock(),
                limit=self.config.stalled_limit,
                staleness_days=self.config.staleness_days,
            )
        except Exception as exc:
            logger.warning("Stalled records fetch failed: %s", exc)
            self._notify("warning", f"No se pudieron cargar las solicitudes críticas: {exc}")
            return
        self._emit("stalled")

    async def start(self) -> None:
        """Initial load: one full fetch cycle plus the stalled-records panel."""
        tasks = self.refresh()
        await asyncio.gather(self.load_stalled(), *tasks)

    async def export(self) -> ExportDocument | None:
        """Build the report for the filter active right now.

        The filter is captured before the first suspension point, so later
        filter changes do not leak into this export. The on-screen snapshot is
        reused for the summary only when it was computed for that same filter;
        otherwise (metrics still loading, or the last fetch failed) the
        summary metrics are aggregated again for the captured filter.
        """
        filter_state = self.filter
        snapshot = self.current if self.metrics_filter == filter_state else None
        self._set_loading("export", True)
        try:
            if snapshot is None:
                logger.debug("On-screen metrics do not match %s; aggregating for export", filter_state)
                try:
                    snapshot, _ = await self.aggregator.aggregate(filter_state)
                except AggregationError as exc:
                    raise ExportError(str(exc)) from exc
            return await self.exporter.build_export(filter_state, snapshot)
        except ExportError as exc:
            logger.exception("Export failed for %s", filter_state)
            self._notify("negative", f"Error exportando: {exc}")
            return None
        finally:
            self._set_loading("export", False)
