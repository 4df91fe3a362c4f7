from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import date, timedelta
from typing import Any

from stidash.core.errors import AggregationError
from stidash.core.models import STALENESS_DAYS, BreakdownEntry, FilterState, MetricsSnapshot
from stidash.data.gateway import RecordService

logger = logging.getLogger(__name__)


def previous_period(start_date: date, end_date: date) -> tuple[date, date]:
    """Same-length window ending the day before `start_date`.

    Not calendar aligned: 2024-03-01..2024-03-31 (31 days) maps to
    2024-01-30..2024-02-29, not to February.
    """
    days = (end_date - start_date).days + 1
    prev_end = start_date - timedelta(days=1)
    prev_start = prev_end - timedelta(days=days - 1)
    return prev_start, prev_end


def _entries(raw: Any, key_field: str) -> tuple[BreakdownEntry, ...]:
    out: list[BreakdownEntry] = []
    for item in raw or []:
        key = item.get(key_field)
        if key is None:
            continue
        total = int(item.get("total") or 0)
        executed = int(item.get("executed") or 0)
        if executed > total:
            logger.warning("Breakdown %s=%r reports executed %s > total %s; clamping", key_field, key, executed, total)
            executed = total
        out.append(BreakdownEntry(key=str(key), total=total, executed=executed))
    return tuple(out)


def normalize_metrics(payload: dict[str, Any]) -> MetricsSnapshot:
    """Turn the aggregation payload into a MetricsSnapshot.

    Raises AggregationError when the payload lacks the `overall` block.
    """
    if not isinstance(payload, dict) or not isinstance(payload.get("overall"), dict):
        raise AggregationError("Respuesta de métricas sin bloque 'overall'")
    overall = payload["overall"]
    total = int(overall.get("total") or 0)
    executed = min(int(overall.get("executed") or 0), total)
    return MetricsSnapshot(
        total=total,
        executed=executed,
        coverage=int(overall.get("coverage") or 0),
        by_area=_entries(payload.get("areas"), "area"),
        by_supervisor=_entries(payload.get("supervisors"), "supervisor"),
        by_installation=_entries(payload.get("installations"), "name"),
        by_month=_entries(payload.get("months"), "month_key"),
    )


class MetricsAggregator:
    """Fetches current and previous-period metrics for a FilterState."""

    def __init__(self, service: RecordService, *, staleness_days: int = STALENESS_DAYS, clock=date.today):
        self.service = service
        self.staleness_days = staleness_days
        self.clock = clock

    def _params(self, filter_state: FilterState) -> dict[str, Any]:
        params = filter_state.to_query_params()
        params["today"] = self.clock().isoformat()
        params["staleness_days"] = self.staleness_days
        return params

    async def _fetch(self, params: dict[str, Any], label: str) -> MetricsSnapshot:
        try:
            payload = await self.service.get_dashboard_metrics(params)
        except Exception as exc:
            raise AggregationError(f"Error obteniendo métricas ({label}): {exc}") from exc
        return normalize_metrics(payload)

    async def aggregate(self, filter_state: FilterState) -> tuple[MetricsSnapshot, MetricsSnapshot]:
        """Return (current, previous) snapshots.

        Both calls run concurrently and share every dimension except the
        date range. Either failing raises AggregationError.
        """
        prev_start, prev_end = previous_period(filter_state.start_date, filter_state.end_date)
        current_params = self._params(filter_state)
        previous_params = self._params(replace(filter_state, start_date=prev_start, end_date=prev_end))

        current, previous = await asyncio.gather(
            self._fetch(current_params, "periodo actual"),
            self._fetch(previous_params, "periodo anterior"),
        )
        logger.debug(
            "Aggregated %s..%s (%s rows) vs %s..%s (%s rows)",
            filter_state.start_date,
            filter_state.end_date,
            current.total,
            prev_start,
            prev_end,
            previous.total,
        )
        return current, previous
