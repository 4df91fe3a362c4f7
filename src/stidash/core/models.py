from __future__ import annotations

import math
import re
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Any


# Status vocabulary of `status_normalized` in the record store.
EXECUTED_STATUSES = frozenset({"EJECUTADA", "FINALIZADA", "COMPLETADA", "CERRADA"})
CANCELLED_STATUSES = frozenset({"CANCELADA", "ANULADA"})
TERMINAL_STATUSES = EXECUTED_STATUSES | CANCELLED_STATUSES

STALENESS_DAYS = 10

PRIORITY_NORMAL = "normal"
PRIORITY_ELEVATED = "elevated"
PRIORITY_CRITICAL = "critical"

# Drill-down slots, all independent from each other.
DIMENSIONS = ("area", "supervisor", "installation", "month")

_MONTH_KEY_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


def is_month_key(value: str | None) -> bool:
    return bool(value) and bool(_MONTH_KEY_RE.match(str(value)))


def parse_record_date(value: Any) -> date:
    """Coerce a record date (date, datetime or ISO text with optional time) to a date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    s = str(value or "").strip()
    if not s:
        raise ValueError("fecha_solicitud vacía")
    # "2024-01-31", "2024-01-31 10:20:00", "2024-01-31T10:20:00+00:00"
    return date.fromisoformat(s[:10])


def age_in_days(record_date: date, today: date) -> int:
    return (today - record_date).days


def priority_for_age(days: int, staleness_days: int = STALENESS_DAYS) -> str:
    """Critical past the staleness threshold, elevated past half of it.

    With the default 10 days: ≤5 normal, 6-10 elevated, older than 10 critical.
    """
    if days <= staleness_days // 2:
        return PRIORITY_NORMAL
    if days <= staleness_days:
        return PRIORITY_ELEVATED
    return PRIORITY_CRITICAL


def completion_rate(total: int, executed: int) -> float:
    return (executed / total) * 100 if total > 0 else 0.0


@dataclass(frozen=True)
class FilterState:
    start_date: date
    end_date: date
    area: str | None = None
    supervisor: str | None = None
    installation: str | None = None
    month: str | None = None
    critical_only: bool = False

    def __post_init__(self) -> None:
        if self.start_date > self.end_date:
            raise ValueError(f"start_date {self.start_date} posterior a end_date {self.end_date}")
        if self.month is not None and not is_month_key(self.month):
            raise ValueError(f"month inválido (se espera YYYY-MM): {self.month!r}")

    @classmethod
    def year_to_date(cls, today: date) -> "FilterState":
        return cls(start_date=date(today.year, 1, 1), end_date=today)

    @property
    def day_count(self) -> int:
        """Inclusive number of days in the range."""
        return (self.end_date - self.start_date).days + 1

    def with_dimension(self, dimension: str, value: str | None) -> "FilterState":
        if dimension not in DIMENSIONS:
            raise ValueError(f"dimensión no soportada: {dimension!r}")
        return replace(self, **{dimension: value})

    def with_dates(self, start_date: date, end_date: date) -> "FilterState":
        return replace(self, start_date=start_date, end_date=end_date)

    def active_dimensions(self) -> dict[str, str]:
        return {d: getattr(self, d) for d in DIMENSIONS if getattr(self, d) is not None}

    def to_query_params(self) -> dict[str, Any]:
        return {
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "area": self.area,
            "supervisor": self.supervisor,
            "installation": self.installation,
            "month": self.month,
            "critical_only": self.critical_only,
        }


@dataclass(frozen=True)
class BreakdownEntry:
    key: str
    total: int
    executed: int

    @property
    def pending(self) -> int:
        return self.total - self.executed

    @property
    def percentage(self) -> float:
        return completion_rate(self.total, self.executed)


@dataclass(frozen=True)
class MetricsSnapshot:
    total: int = 0
    executed: int = 0
    coverage: int = 0
    by_area: tuple[BreakdownEntry, ...] = ()
    by_supervisor: tuple[BreakdownEntry, ...] = ()
    by_installation: tuple[BreakdownEntry, ...] = ()
    by_month: tuple[BreakdownEntry, ...] = ()

    @property
    def completion_rate(self) -> float:
        return completion_rate(self.total, self.executed)

    def breakdown(self, dimension: str) -> tuple[BreakdownEntry, ...]:
        if dimension not in DIMENSIONS:
            raise ValueError(f"dimensión no soportada: {dimension!r}")
        return getattr(self, f"by_{dimension}")


@dataclass(frozen=True)
class ComparisonDelta:
    total_change: float
    executed_change: float
    # Point difference, not a percentage of a percentage.
    completion_rate_change: float
    coverage_change: float


@dataclass(frozen=True)
class TableRow:
    id: int
    date: date
    location: str | None
    area: str | None
    supervisor: str | None
    status: str | None
    age_days: int
    installation: str | None = None
    description: str | None = None
    staleness_days: int = STALENESS_DAYS

    @property
    def priority(self) -> str:
        return priority_for_age(self.age_days, self.staleness_days)

    @classmethod
    def from_record(
        cls, record: dict[str, Any], *, today: date, staleness_days: int = STALENESS_DAYS
    ) -> "TableRow":
        d = parse_record_date(record.get("fecha_solicitud"))
        return cls(
            id=int(record["numero_solicitud"]),
            date=d,
            location=record.get("base_location"),
            area=record.get("descripcion_area"),
            supervisor=record.get("supervisor_asignado_alias"),
            status=record.get("status_normalized"),
            age_days=age_in_days(d, today),
            installation=record.get("instalacion_municipal"),
            description=record.get("descripcion_solicitud"),
            staleness_days=staleness_days,
        )


@dataclass(frozen=True)
class PageCursor:
    page_number: int = 1
    page_size: int = 10
    total_count: int = 0

    def __post_init__(self) -> None:
        if self.page_number < 1:
            raise ValueError(f"page_number debe ser >= 1: {self.page_number}")
        if self.page_size < 1:
            raise ValueError(f"page_size debe ser >= 1: {self.page_size}")

    @property
    def page_count(self) -> int:
        return max(1, math.ceil(self.total_count / self.page_size))

    @property
    def offset(self) -> int:
        return (self.page_number - 1) * self.page_size

    def clamped(self, page_number: int | None = None) -> "PageCursor":
        page = self.page_number if page_number is None else page_number
        return replace(self, page_number=max(1, min(int(page), self.page_count)))


@dataclass(frozen=True)
class TablePage:
    rows: tuple[TableRow, ...]
    cursor: PageCursor

    @property
    def total_count(self) -> int:
        return self.cursor.total_count


@dataclass(frozen=True)
class StalledRecord:
    id: int
    date: date
    location: str | None
    area: str | None
    status: str | None
    dias_espera: int


@dataclass(frozen=True)
class Notice:
    level: str
    message: str
    dismissable: bool = True
    created_at: datetime = field(default_factory=datetime.now)
