from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

import pandas as pd

from stidash.analytics.labels import format_month_label
from stidash.core.errors import ExportError
from stidash.core.models import STALENESS_DAYS, FilterState, MetricsSnapshot
from stidash.data.excel_io import write_excel_bytes
from stidash.data.gateway import RecordService

logger = logging.getLogger(__name__)

SUMMARY_SHEET = "Resumen"
DETAIL_SHEET = "Detalle Solicitudes Pendientes"

DETAIL_COLUMNS = {
    "numero_solicitud": "Solicitud",
    "fecha_solicitud": "Fecha",
    "base_location": "Ubicación Base",
    "instalacion_municipal": "Instalación Original",
    "descripcion_area": "Área",
    "descripcion_solicitud": "Descripción",
    "status_normalized": "Estado",
}


@dataclass(frozen=True)
class ExportDocument:
    filename: str
    content: bytes
    row_count: int


def export_filename(filter_state: FilterState) -> str:
    return f"Reporte_STI_{filter_state.start_date.isoformat()}_{filter_state.end_date.isoformat()}.xlsx"


def describe_filters(filter_state: FilterState) -> str:
    parts: list[str] = []
    if filter_state.area:
        parts.append(filter_state.area)
    if filter_state.supervisor:
        parts.append(filter_state.supervisor)
    if filter_state.installation:
        parts.append(filter_state.installation)
    if filter_state.month:
        parts.append(format_month_label(filter_state.month))
    if filter_state.critical_only:
        parts.append("Solo críticas")
    return ", ".join(parts) or "Ninguno"


def summary_rows(filter_state: FilterState, snapshot: MetricsSnapshot, *, generated_at: datetime) -> list[list[Any]]:
    """Summary sheet, built only from the snapshot already on screen."""
    rows: list[list[Any]] = [
        ["Reporte de Mantenimiento STI"],
        ["Generado el:", generated_at.strftime("%Y-%m-%d %H:%M:%S")],
        ["Periodo:", f"{filter_state.start_date.isoformat()} al {filter_state.end_date.isoformat()}"],
        ["Filtro Activo:", describe_filters(filter_state)],
        [],
        ["Indicador", "Valor"],
        ["Solicitudes Totales", snapshot.total],
        ["Solicitudes Ejecutadas", snapshot.executed],
        ["% Eficiencia Global", f"{snapshot.completion_rate:.2f}%"],
        ["Instalaciones Intervenidas", snapshot.coverage],
        [],
        ["Áreas de Trabajo (Top)"],
    ]
    rows.extend([a.key, a.total, f"{a.percentage:.1f}%"] for a in snapshot.by_area)
    return rows


class ExportSnapshotBuilder:
    """Builds the .xlsx report for a FilterState.

    The detail rows are re-queried in batches at call time; the table page on
    screen is never reused.
    """

    def __init__(
        self,
        service: RecordService,
        *,
        batch_size: int = 1000,
        staleness_days: int = STALENESS_DAYS,
        clock=date.today,
        now=datetime.now,
    ):
        if batch_size < 1:
            raise ValueError("batch_size debe ser >= 1")
        self.service = service
        self.batch_size = batch_size
        self.staleness_days = staleness_days
        self.clock = clock
        self.now = now

    async def fetch_all(self, filter_state: FilterState) -> list[dict]:
        params = filter_state.to_query_params()
        params["today"] = self.clock().isoformat()
        params["staleness_days"] = self.staleness_days

        records: list[dict] = []
        offset = 0
        while True:
            batch = await self.service.get_export_rows(params, offset=offset, limit=self.batch_size)
            records.extend(batch)
            if len(batch) < self.batch_size:
                return records
            offset += self.batch_size

    async def build_export(self, filter_state: FilterState, snapshot: MetricsSnapshot) -> ExportDocument:
        try:
            records = await self.fetch_all(filter_state)
        except Exception as exc:
            raise ExportError(f"Error consultando datos para exportar: {exc}") from exc

        rows = summary_rows(filter_state, snapshot, generated_at=self.now())
        width = max(len(r) for r in rows)
        summary = pd.DataFrame([r + [None] * (width - len(r)) for r in rows])
        detail = pd.DataFrame(
            [{label: rec.get(col) for col, label in DETAIL_COLUMNS.items()} for rec in records],
            columns=list(DETAIL_COLUMNS.values()),
        )
        try:
            content = await asyncio.to_thread(
                write_excel_bytes,
                [(SUMMARY_SHEET, summary, False), (DETAIL_SHEET, detail, True)],
            )
        except Exception as exc:
            raise ExportError(f"Error generando el archivo Excel: {exc}") from exc

        logger.info("Export %s built with %s detail rows", export_filename(filter_state), len(records))
        return ExportDocument(filename=export_filename(filter_state), content=content, row_count=len(records))
