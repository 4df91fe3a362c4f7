from __future__ import annotations

from datetime import date

from stidash.core.models import STALENESS_DAYS, StalledRecord, parse_record_date
from stidash.data.gateway import RecordService


async def fetch_stalled_records(
    service: RecordService,
    *,
    today: date,
    limit: int = 6,
    staleness_days: int = STALENESS_DAYS,
) -> list[StalledRecord]:
    """Oldest open requests past the staleness threshold, capped at `limit`."""
    records = await service.get_stalled_records(today=today, limit=limit, staleness_days=staleness_days)
    out: list[StalledRecord] = []
    for r in records[:limit]:
        d = parse_record_date(r["fecha_solicitud"])
        out.append(
            StalledRecord(
                id=int(r["numero_solicitud"]),
                date=d,
                location=r.get("base_location"),
                area=r.get("descripcion_area"),
                status=r.get("status_normalized"),
                dias_espera=int(r.get("dias_espera", (today - d).days)),
            )
        )
    return out
