from __future__ import annotations


from contextlib import contextmanager
import sqlite3
from pathlib import Path


class Db:
    def __init__(self, path: Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def connect(self):
        con = sqlite3.connect(self.path, timeout=20.0)
        con.row_factory = sqlite3.Row
        try:
            yield con
            con.commit()
        except Exception:
            con.rollback()
            raise
        finally:
            con.close()

    def ensure_schema(self) -> None:
        con = sqlite3.connect(self.path, timeout=10.0)
        try:
            con.execute("PRAGMA journal_mode=WAL;")
            con.execute("PRAGMA foreign_keys=ON;")

            con.executescript(
                """
                CREATE TABLE IF NOT EXISTS audit_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL DEFAULT(datetime('now', 'localtime')),
                    category TEXT NOT NULL,
                    message TEXT NOT NULL,
                    details TEXT
                );

                CREATE TABLE IF NOT EXISTS app_config (
                    config_key TEXT PRIMARY KEY,
                    config_value TEXT NOT NULL,
                    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                );

                -- Solicitudes de mantenimiento (work orders / requests)
                CREATE TABLE IF NOT EXISTS solicitud (
                    numero_solicitud INTEGER PRIMARY KEY,
                    fecha_solicitud TEXT NOT NULL,
                    base_location TEXT,
                    instalacion_municipal TEXT,
                    descripcion_area TEXT,
                    supervisor_asignado_alias TEXT,
                    descripcion_solicitud TEXT,
                    estado TEXT,
                    loaded_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                );

                CREATE INDEX IF NOT EXISTS ix_solicitud_fecha ON solicitud(fecha_solicitud);
                CREATE INDEX IF NOT EXISTS ix_solicitud_area ON solicitud(descripcion_area);
                CREATE INDEX IF NOT EXISTS ix_solicitud_base ON solicitud(base_location);
                """
            )

            # Analysis view: one row per request, status normalized to upper-case
            # without surrounding whitespace and with a plain date column.
            con.execute("DROP VIEW IF EXISTS vw_dashboard_analyzed")
            con.execute(
                """
                CREATE VIEW vw_dashboard_analyzed AS
                SELECT
                    numero_solicitud,
                    fecha_solicitud,
                    substr(fecha_solicitud, 1, 10) AS fecha_dia,
                    substr(fecha_solicitud, 1, 7) AS month_key,
                    base_location,
                    instalacion_municipal,
                    descripcion_area,
                    supervisor_asignado_alias,
                    descripcion_solicitud,
                    UPPER(TRIM(COALESCE(estado, ''))) AS status_normalized
                FROM solicitud
                """
            )
            con.commit()
        finally:
            con.close()
