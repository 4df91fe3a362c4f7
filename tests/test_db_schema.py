"""Tests for database schema and the analysis view."""

import asyncio
import tempfile
from pathlib import Path

import pytest

from fixtures_records import SAMPLE_SOLICITUDES, TODAY
from stidash.data.db import Db
from stidash.data.gateway import RecordGateway
from stidash.data.repository import Repository


@pytest.fixture
def temp_db():
    """Create a temporary database for testing."""
    tmpdir = tempfile.mkdtemp()
    db_path = Path(tmpdir) / "test.db"
    db = Db(db_path)
    yield db, db_path

    try:
        for f in Path(tmpdir).glob("test.db*"):
            f.unlink(missing_ok=True)
        Path(tmpdir).rmdir()
    except OSError:
        pass


def test_ensure_schema_creates_tables_and_view(temp_db):
    db, _ = temp_db
    db.ensure_schema()

    with db.connect() as con:
        names = {
            (row["type"], row["name"])
            for row in con.execute("SELECT type, name FROM sqlite_master WHERE type IN ('table', 'view')")
        }

    assert ("table", "solicitud") in names
    assert ("table", "app_config") in names
    assert ("table", "audit_log") in names
    assert ("view", "vw_dashboard_analyzed") in names


def test_ensure_schema_is_idempotent(temp_db):
    db, _ = temp_db
    db.ensure_schema()
    Repository(db).upsert_solicitudes(SAMPLE_SOLICITUDES)
    db.ensure_schema()
    assert Repository(db).count_solicitudes() == len(SAMPLE_SOLICITUDES)


def test_view_normalizes_status_and_derives_dates(temp_db):
    db, _ = temp_db
    db.ensure_schema()
    Repository(db).upsert_solicitudes(
        [
            {"numero_solicitud": 1, "fecha_solicitud": "2024-02-29 17:45:00", "estado": "  ejecutada "},
            {"numero_solicitud": 2, "fecha_solicitud": "2024-03-01", "estado": None},
        ]
    )
    with db.connect() as con:
        rows = {
            r["numero_solicitud"]: r
            for r in con.execute("SELECT numero_solicitud, fecha_dia, month_key, status_normalized FROM vw_dashboard_analyzed")
        }
    assert rows[1]["fecha_dia"] == "2024-02-29"
    assert rows[1]["month_key"] == "2024-02"
    assert rows[1]["status_normalized"] == "EJECUTADA"
    assert rows[2]["status_normalized"] == ""


def test_upsert_updates_existing_request(temp_db):
    db, _ = temp_db
    db.ensure_schema()
    repo = Repository(db)
    repo.upsert_solicitudes([{"numero_solicitud": 7, "fecha_solicitud": "2024-03-01", "estado": "ACTIVA"}])
    repo.upsert_solicitudes([{"numero_solicitud": 7, "fecha_solicitud": "2024-03-01", "estado": "CERRADA"}])
    assert repo.count_solicitudes() == 1
    with db.connect() as con:
        status = con.execute("SELECT status_normalized FROM vw_dashboard_analyzed WHERE numero_solicitud = 7").fetchone()[0]
    assert status == "CERRADA"


def test_gateway_runs_repository_calls_off_the_loop(temp_db):
    db, _ = temp_db
    db.ensure_schema()
    repo = Repository(db)
    repo.upsert_solicitudes(SAMPLE_SOLICITUDES)
    gateway = RecordGateway(repo)
    params = {"start_date": "2024-01-01", "end_date": "2024-03-15", "today": TODAY.isoformat()}

    async def _run():
        return await asyncio.gather(
            gateway.get_dashboard_metrics(params),
            gateway.get_table_page(params, offset=0, limit=2),
            gateway.get_stalled_records(today=TODAY, limit=6, staleness_days=10),
        )

    metrics, (rows, total), stalled = asyncio.run(_run())
    assert metrics["overall"]["total"] == 5
    assert total == 4 and len(rows) == 2
    assert [r["numero_solicitud"] for r in stalled] == [102, 103]
