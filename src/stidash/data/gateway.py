from __future__ import annotations

import asyncio
from datetime import date
from typing import Any, Protocol

from stidash.data.repository import Repository


class RecordService(Protocol):
    """Async contract the analytics layer depends on.

    These are the only suspension points of a fetch cycle.
    """

    async def get_dashboard_metrics(self, params: dict[str, Any]) -> dict[str, Any]: ...

    async def get_table_page(self, params: dict[str, Any], *, offset: int, limit: int) -> tuple[list[dict], int]: ...

    async def get_export_rows(self, params: dict[str, Any], *, offset: int, limit: int) -> list[dict]: ...

    async def get_stalled_records(self, *, today: date, limit: int, staleness_days: int) -> list[dict]: ...


class RecordGateway:
    """Runs the blocking `Repository` queries in a worker thread.

    Keeps the NiceGUI event loop responsive while sqlite works.
    """

    def __init__(self, repo: Repository):
        self.repo = repo

    async def get_dashboard_metrics(self, params: dict[str, Any]) -> dict[str, Any]:
        return await asyncio.to_thread(self.repo.get_dashboard_metrics, dict(params))

    async def get_table_page(self, params: dict[str, Any], *, offset: int, limit: int) -> tuple[list[dict], int]:
        return await asyncio.to_thread(lambda: self.repo.get_table_page(dict(params), offset=offset, limit=limit))

    async def get_export_rows(self, params: dict[str, Any], *, offset: int, limit: int) -> list[dict]:
        return await asyncio.to_thread(lambda: self.repo.get_export_rows(dict(params), offset=offset, limit=limit))

    async def get_stalled_records(self, *, today: date, limit: int, staleness_days: int) -> list[dict]:
        return await asyncio.to_thread(
            lambda: self.repo.get_stalled_records(today=today, limit=limit, staleness_days=staleness_days)
        )
