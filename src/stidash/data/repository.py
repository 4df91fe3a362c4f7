from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Any

from stidash.core.models import (
    CANCELLED_STATUSES,
    EXECUTED_STATUSES,
    STALENESS_DAYS,
    TERMINAL_STATUSES,
    age_in_days,
    parse_record_date,
)
from stidash.data.db import Db
from stidash.data.excel_io import coerce_datetime_text, coerce_text, normalize_columns, parse_int_strict, read_excel_bytes

logger = logging.getLogger(__name__)


_RECORD_COLUMNS = (
    "numero_solicitud",
    "fecha_solicitud",
    "base_location",
    "instalacion_municipal",
    "descripcion_area",
    "supervisor_asignado_alias",
    "descripcion_solicitud",
    "status_normalized",
)

# Accepted spreadsheet headers (after normalize_col_name) per store column.
_IMPORT_ALIASES: dict[str, tuple[str, ...]] = {
    "numero_solicitud": ("numero_solicitud", "solicitud", "n_solicitud", "id"),
    "fecha_solicitud": ("fecha_solicitud", "fecha"),
    "base_location": ("base_location", "ubicacion_base", "ubicacion"),
    "instalacion_municipal": ("instalacion_municipal", "instalacion_original", "instalacion"),
    "descripcion_area": ("descripcion_area", "area"),
    "supervisor_asignado_alias": ("supervisor_asignado_alias", "supervisor_asignado", "supervisor"),
    "descripcion_solicitud": ("descripcion_solicitud", "descripcion"),
    "estado": ("estado", "status", "status_normalized"),
}

_TOP_INSTALLATIONS = 10


def _placeholders(values) -> str:
    return ", ".join("?" for _ in values)


class Repository:
    """Record store behind the dashboard.

    Plays the role of the remote data service: it answers the aggregation,
    table-page, export and stalled-records queries with plain dict payloads.
    All methods are blocking; the analytics layer reaches them through
    `RecordGateway`.
    """

    def __init__(self, db: Db):
        self.db = db

    def log_audit(self, category: str, message: str, details: str | None = None) -> None:
        """Record a business event in the audit log."""
        try:
            with self.db.connect() as con:
                con.execute(
                    "INSERT INTO audit_log (category, message, details) VALUES (?, ?, ?)",
                    (category, message, details),
                )
        except Exception:
            # Don't crash the app on audit failures
            logger.exception("Failed to write audit log")

    # Config
    def get_config(self, *, key: str, default: str | None = None) -> str | None:
        key = str(key).strip()
        if not key:
            raise ValueError("config key vacío")
        with self.db.connect() as con:
            row = con.execute("SELECT config_value FROM app_config WHERE config_key = ?", (key,)).fetchone()
        if row is None:
            return default
        return str(row[0])

    def set_config(self, *, key: str, value: str) -> None:
        key = str(key).strip()
        if not key:
            raise ValueError("config key vacío")

        with self.db.connect() as con:
            old_val_row = con.execute("SELECT config_value FROM app_config WHERE config_key = ?", (key,)).fetchone()
            old_val = old_val_row[0] if old_val_row else "(none)"
            con.execute(
                """
                INSERT INTO app_config(config_key, config_value, updated_at)
                VALUES(?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(config_key) DO UPDATE SET
                    config_value = excluded.config_value,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (key, str(value)),
            )

        self.log_audit("CONFIG", f"Updated '{key}'", f"From '{old_val}' to '{value}'")

    # Records
    def upsert_solicitudes(self, rows: list[dict[str, Any]]) -> int:
        if not rows:
            return 0
        with self.db.connect() as con:
            con.executemany(
                """
                INSERT INTO solicitud(
                    numero_solicitud, fecha_solicitud, base_location, instalacion_municipal,
                    descripcion_area, supervisor_asignado_alias, descripcion_solicitud, estado
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(numero_solicitud) DO UPDATE SET
                    fecha_solicitud = excluded.fecha_solicitud,
                    base_location = excluded.base_location,
                    instalacion_municipal = excluded.instalacion_municipal,
                    descripcion_area = excluded.descripcion_area,
                    supervisor_asignado_alias = excluded.supervisor_asignado_alias,
                    descripcion_solicitud = excluded.descripcion_solicitud,
                    estado = excluded.estado,
                    loaded_at = CURRENT_TIMESTAMP
                """,
                [
                    (
                        int(r["numero_solicitud"]),
                        str(r["fecha_solicitud"]),
                        r.get("base_location"),
                        r.get("instalacion_municipal"),
                        r.get("descripcion_area"),
                        r.get("supervisor_asignado_alias"),
                        r.get("descripcion_solicitud"),
                        r.get("estado"),
                    )
                    for r in rows
                ],
            )
        return len(rows)

    def count_solicitudes(self) -> int:
        with self.db.connect() as con:
            return int(con.execute("SELECT COUNT(*) FROM solicitud").fetchone()[0])

    def import_solicitudes_bytes(self, *, content: bytes) -> dict[str, int]:
        """Load an .xlsx export of requests into the store (upsert by id).

        Rows without a usable id or date are skipped and counted.
        """
        df = normalize_columns(read_excel_bytes(content))

        source_col: dict[str, str] = {}
        for target, aliases in _IMPORT_ALIASES.items():
            for alias in aliases:
                if alias in df.columns:
                    source_col[target] = alias
                    break
        missing = [c for c in ("numero_solicitud", "fecha_solicitud") if c not in source_col]
        if missing:
            raise ValueError(f"Faltan columnas requeridas: {', '.join(missing)}")

        rows: list[dict[str, Any]] = []
        skipped = 0
        for rec in df.to_dict(orient="records"):
            try:
                row = {
                    "numero_solicitud": parse_int_strict(rec.get(source_col["numero_solicitud"]), field="Solicitud"),
                    "fecha_solicitud": coerce_datetime_text(rec.get(source_col["fecha_solicitud"])),
                }
            except ValueError:
                skipped += 1
                continue
            for target, col in source_col.items():
                if target not in row:
                    row[target] = coerce_text(rec.get(col))
            rows.append(row)

        imported = self.upsert_solicitudes(rows)
        self.log_audit("IMPORT", f"Solicitudes importadas: {imported}", f"Omitidas: {skipped}")
        logger.info("Imported %s requests (%s skipped)", imported, skipped)
        return {"imported": imported, "skipped": skipped}

    # Query predicates
    def _where(
        self,
        params: dict[str, Any],
        *,
        exclude_statuses: frozenset[str],
    ) -> tuple[str, list[Any]]:
        clauses = ["fecha_dia BETWEEN ? AND ?"]
        args: list[Any] = [str(params["start_date"]), str(params["end_date"])]

        if exclude_statuses:
            excluded = sorted(exclude_statuses)
            clauses.append(f"status_normalized NOT IN ({_placeholders(excluded)})")
            args.extend(excluded)

        for key, column in (
            ("area", "descripcion_area"),
            ("supervisor", "supervisor_asignado_alias"),
            ("installation", "base_location"),
            ("month", "month_key"),
        ):
            value = params.get(key)
            if value is not None:
                clauses.append(f"{column} = ?")
                args.append(value)

        if params.get("critical_only"):
            today = params.get("today") or date.today().isoformat()
            staleness = int(params.get("staleness_days", STALENESS_DAYS))
            cutoff = date.fromisoformat(str(today)) - timedelta(days=staleness)
            terminal = sorted(TERMINAL_STATUSES)
            clauses.append("fecha_dia < ?")
            args.append(cutoff.isoformat())
            clauses.append(f"status_normalized NOT IN ({_placeholders(terminal)})")
            args.extend(terminal)

        return " AND ".join(clauses), args

    def get_dashboard_metrics(self, params: dict[str, Any]) -> dict[str, Any]:
        """Aggregate totals and breakdowns for one period.

        Cancelled requests never count. Returns
        {overall, areas, supervisors, installations, months}.
        """
        where, args = self._where(params, exclude_statuses=CANCELLED_STATUSES)
        executed = sorted(EXECUTED_STATUSES)
        executed_sql = f"SUM(CASE WHEN status_normalized IN ({_placeholders(executed)}) THEN 1 ELSE 0 END)"

        def _grouped(column: str, alias: str, order_by: str, limit: int | None = None) -> list[dict]:
            sql = f"""
                SELECT {column} AS {alias}, COUNT(*) AS total, {executed_sql} AS executed
                FROM vw_dashboard_analyzed
                WHERE {where} AND {column} IS NOT NULL AND TRIM({column}) <> ''
                GROUP BY {column}
                ORDER BY {order_by}
            """
            q_args = [*executed, *args]
            if limit is not None:
                sql += " LIMIT ?"
                q_args.append(limit)
            return [dict(r) for r in con.execute(sql, q_args).fetchall()]

        with self.db.connect() as con:
            overall = con.execute(
                f"""
                SELECT COUNT(*) AS total,
                       COALESCE({executed_sql}, 0) AS executed,
                       COUNT(DISTINCT base_location) AS coverage
                FROM vw_dashboard_analyzed
                WHERE {where}
                """,
                [*executed, *args],
            ).fetchone()

            areas = _grouped("descripcion_area", "area", "total DESC, area")
            supervisors = _grouped("supervisor_asignado_alias", "supervisor", "total DESC, supervisor")
            installations = _grouped("base_location", "name", "total DESC, name", limit=_TOP_INSTALLATIONS)
            months = _grouped("month_key", "month_key", "month_key")

        for r in installations:
            r["pending"] = int(r["total"]) - int(r["executed"])

        return {
            "overall": {
                "total": int(overall["total"]),
                "executed": int(overall["executed"]),
                "coverage": int(overall["coverage"]),
            },
            "areas": areas,
            "supervisors": supervisors,
            "installations": installations,
            "months": months,
        }

    def _select_records(self, where: str, args: list[Any], *, offset: int, limit: int) -> list[dict]:
        with self.db.connect() as con:
            rows = con.execute(
                f"""
                SELECT {', '.join(_RECORD_COLUMNS)}
                FROM vw_dashboard_analyzed
                WHERE {where}
                ORDER BY numero_solicitud DESC
                LIMIT ? OFFSET ?
                """,
                [*args, int(limit), int(offset)],
            ).fetchall()
        return [dict(r) for r in rows]

    def get_table_page(self, params: dict[str, Any], *, offset: int, limit: int) -> tuple[list[dict], int]:
        """One page of active requests (executed/closed statuses excluded) plus the exact total."""
        where, args = self._where(params, exclude_statuses=EXECUTED_STATUSES)
        with self.db.connect() as con:
            total = int(con.execute(f"SELECT COUNT(*) FROM vw_dashboard_analyzed WHERE {where}", args).fetchone()[0])
        return self._select_records(where, args, offset=offset, limit=limit), total

    def get_export_rows(self, params: dict[str, Any], *, offset: int, limit: int) -> list[dict]:
        """A batch of export detail rows: table predicate minus cancelled requests."""
        where, args = self._where(params, exclude_statuses=TERMINAL_STATUSES)
        return self._select_records(where, args, offset=offset, limit=limit)

    def get_stalled_records(
        self,
        *,
        today: date | None = None,
        limit: int = 6,
        staleness_days: int = STALENESS_DAYS,
    ) -> list[dict]:
        """Open requests older than the staleness threshold, oldest first."""
        today = today or date.today()
        cutoff = today - timedelta(days=staleness_days)
        terminal = sorted(TERMINAL_STATUSES)
        with self.db.connect() as con:
            rows = con.execute(
                f"""
                SELECT {', '.join(_RECORD_COLUMNS)}
                FROM vw_dashboard_analyzed
                WHERE fecha_dia < ? AND status_normalized NOT IN ({_placeholders(terminal)})
                ORDER BY fecha_dia ASC, numero_solicitud ASC
                LIMIT ?
                """,
                [cutoff.isoformat(), *terminal, int(limit)],
            ).fetchall()

        out: list[dict] = []
        for r in rows:
            rec = dict(r)
            rec["dias_espera"] = age_in_days(parse_record_date(rec["fecha_solicitud"]), today)
            out.append(rec)
        return out
