from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date
from typing import Any

from stidash.core.errors import TableFetchError
from stidash.core.models import STALENESS_DAYS, FilterState, PageCursor, TablePage, TableRow
from stidash.data.gateway import RecordService

logger = logging.getLogger(__name__)


class PaginatedTableSynchronizer:
    """Fetches one page of active requests for a FilterState.

    Same predicate as the current-period metrics call, minus executed/closed
    statuses, newest request first.
    """

    def __init__(self, service: RecordService, *, staleness_days: int = STALENESS_DAYS, clock=date.today):
        self.service = service
        self.staleness_days = staleness_days
        self.clock = clock

    async def _query(self, params: dict[str, Any], cursor: PageCursor) -> tuple[list[dict], int]:
        try:
            return await self.service.get_table_page(params, offset=cursor.offset, limit=cursor.page_size)
        except Exception as exc:
            raise TableFetchError(f"Error obteniendo página {cursor.page_number}: {exc}") from exc

    async def fetch_page(self, filter_state: FilterState, cursor: PageCursor) -> TablePage:
        """Fetch `cursor.page_number`, clamped to the last page.

        The clamp uses the last known total first; if the fresh total shows
        fewer pages than requested, the last page is fetched instead.
        """
        today = self.clock()
        params = filter_state.to_query_params()
        params["today"] = today.isoformat()
        params["staleness_days"] = self.staleness_days

        target = cursor.clamped() if cursor.total_count else cursor
        records, total = await self._query(params, target)

        resolved = replace(target, total_count=int(total))
        if resolved.page_number > resolved.page_count:
            resolved = resolved.clamped()
            logger.debug("Page %s past the end, refetching page %s", target.page_number, resolved.page_number)
            records, total = await self._query(params, resolved)
            resolved = replace(resolved, total_count=int(total)).clamped()

        try:
            rows = tuple(TableRow.from_record(r, today=today, staleness_days=self.staleness_days) for r in records)
        except (KeyError, TypeError, ValueError) as exc:
            raise TableFetchError(f"Fila inválida en la página {resolved.page_number}: {exc}") from exc
        return TablePage(rows=rows, cursor=resolved)
