import gc
import io
import shutil
import tempfile
from datetime import timedelta
from pathlib import Path

import pandas as pd
import pytest

from fixtures_records import SAMPLE_SOLICITUDES, TODAY, days_ago
from stidash.data.db import Db
from stidash.data.repository import Repository


@pytest.fixture
def repo():
    tmpdir = tempfile.mkdtemp()
    db = Db(Path(tmpdir) / "test.db")
    db.ensure_schema()
    repo = Repository(db)
    repo.upsert_solicitudes(SAMPLE_SOLICITUDES)
    yield repo
    gc.collect()
    shutil.rmtree(tmpdir, ignore_errors=True)


def _params(**overrides):
    params = {
        "start_date": "2024-01-01",
        "end_date": "2024-03-15",
        "area": None,
        "supervisor": None,
        "installation": None,
        "month": None,
        "critical_only": False,
        "today": TODAY.isoformat(),
    }
    params.update(overrides)
    return params


def test_metrics_exclude_cancelled_and_count_executed(repo):
    payload = repo.get_dashboard_metrics(_params())

    # 6 requests, one CANCELADA
    assert payload["overall"] == {"total": 5, "executed": 2, "coverage": 3}

    areas = {a["area"]: (a["total"], a["executed"]) for a in payload["areas"]}
    assert areas == {"Electricidad": (3, 1), "Gasfitería": (1, 0), "Pintura": (1, 1)}
    # ordered by total desc
    assert payload["areas"][0]["area"] == "Electricidad"

    months = [m["month_key"] for m in payload["months"]]
    assert months == ["2024-01", "2024-02", "2024-03"]

    for inst in payload["installations"]:
        assert inst["pending"] == inst["total"] - inst["executed"]
        assert inst["executed"] <= inst["total"]


def test_metrics_apply_dimensions(repo):
    payload = repo.get_dashboard_metrics(_params(supervisor="JPEREZ", month="2024-01"))
    assert payload["overall"]["total"] == 2
    assert payload["overall"]["executed"] == 1
    assert [s["supervisor"] for s in payload["supervisors"]] == ["JPEREZ"]


def test_metrics_empty_period(repo):
    payload = repo.get_dashboard_metrics(_params(start_date="2023-01-01", end_date="2023-01-31"))
    assert payload["overall"] == {"total": 0, "executed": 0, "coverage": 0}
    assert payload["areas"] == []


def test_end_date_is_inclusive_for_timestamps(repo):
    payload = repo.get_dashboard_metrics(_params(start_date="2024-01-05", end_date="2024-01-05"))
    # stored as "2024-01-05 08:30:00"
    assert payload["overall"]["total"] == 1


def test_table_page_excludes_executed_keeps_cancelled_newest_first(repo):
    rows, total = repo.get_table_page(_params(), offset=0, limit=10)
    ids = [r["numero_solicitud"] for r in rows]
    assert ids == [106, 104, 103, 102]
    assert total == 4
    assert rows[2]["status_normalized"] == "EN PROCESO"


def test_table_page_offsets_keep_total(repo):
    first, total_1 = repo.get_table_page(_params(), offset=0, limit=2)
    second, total_2 = repo.get_table_page(_params(), offset=2, limit=2)
    assert total_1 == total_2 == 4
    assert [r["numero_solicitud"] for r in first + second] == [106, 104, 103, 102]


def test_critical_only_scenario(repo):
    repo.upsert_solicitudes(
        [
            {"numero_solicitud": 201, "fecha_solicitud": days_ago(11), "descripcion_area": "Obras", "estado": "ACTIVA"},
            {"numero_solicitud": 202, "fecha_solicitud": days_ago(11), "descripcion_area": "Obras", "estado": "EJECUTADA"},
            {"numero_solicitud": 203, "fecha_solicitud": days_ago(10), "descripcion_area": "Obras", "estado": "ACTIVA"},
        ]
    )
    params = _params(area="Obras", critical_only=True)
    rows, total = repo.get_table_page(params, offset=0, limit=10)
    assert [r["numero_solicitud"] for r in rows] == [201]
    assert total == 1

    payload = repo.get_dashboard_metrics(params)
    assert payload["overall"]["total"] == 1
    assert payload["overall"]["executed"] == 0


def test_export_rows_exclude_cancelled_and_batch(repo):
    first = repo.get_export_rows(_params(), offset=0, limit=2)
    rest = repo.get_export_rows(_params(), offset=2, limit=2)
    ids = [r["numero_solicitud"] for r in first + rest]
    assert ids == [106, 103, 102]


def test_stalled_records_capped_oldest_first(repo):
    repo.upsert_solicitudes(
        [
            {"numero_solicitud": 300 + i, "fecha_solicitud": days_ago(20 + i), "estado": "ACTIVA"}
            for i in range(8)
        ]
    )
    stalled = repo.get_stalled_records(today=TODAY, limit=6)
    assert len(stalled) == 6
    assert stalled[0]["dias_espera"] >= stalled[-1]["dias_espera"]
    assert all(r["dias_espera"] > 10 for r in stalled)
    assert all(r["status_normalized"] not in {"EJECUTADA", "CANCELADA", "FINALIZADA"} for r in stalled)


def test_config_round_trip_and_audit(repo):
    assert repo.get_config(key="page_size", default="10") == "10"
    repo.set_config(key="page_size", value="25")
    assert repo.get_config(key="page_size") == "25"
    with repo.db.connect() as con:
        row = con.execute("SELECT category, message FROM audit_log ORDER BY id DESC LIMIT 1").fetchone()
    assert row["category"] == "CONFIG"
    with pytest.raises(ValueError):
        repo.get_config(key="  ")


def _excel_bytes(data: dict) -> bytes:
    bio = io.BytesIO()
    pd.DataFrame(data).to_excel(bio, index=False)
    bio.seek(0)
    return bio.read()


def test_import_solicitudes_normalizes_headers_and_skips_invalid(repo):
    content = _excel_bytes(
        {
            "N° Solicitud": [900, 901, None],
            "Fecha Solicitud": ["2024-03-10", "10/03/2024", "2024-03-10"],
            "Área": ["Pintura", "Pintura", "Pintura"],
            "Supervisor": ["ABC", "ABC", "ABC"],
            "Estado": ["Activa", "EJECUTADA", "ACTIVA"],
        }
    )
    result = repo.import_solicitudes_bytes(content=content)
    assert result == {"imported": 2, "skipped": 1}

    rows, _ = repo.get_table_page(_params(area="Pintura"), offset=0, limit=10)
    assert [r["numero_solicitud"] for r in rows] == [900]
    assert rows[0]["status_normalized"] == "ACTIVA"
    assert rows[0]["supervisor_asignado_alias"] == "ABC"


def test_import_requires_id_and_date_columns(repo):
    with pytest.raises(ValueError):
        repo.import_solicitudes_bytes(content=_excel_bytes({"Área": ["Pintura"]}))


def test_stalled_threshold_boundary(repo):
    repo.upsert_solicitudes(
        [
            {"numero_solicitud": 401, "fecha_solicitud": (TODAY - timedelta(days=10)).isoformat(), "estado": "ACTIVA"},
        ]
    )
    ids = [r["numero_solicitud"] for r in repo.get_stalled_records(today=TODAY, limit=50)]
    assert 401 not in ids
