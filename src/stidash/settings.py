from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class Settings:
    db_path: Path
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"
    log_file: Path | None = None


def default_db_path() -> Path:
    # Fixed, repo-local database location (keeps paths stable across machines).
    return Path("db") / "stidash.db"


@dataclass(frozen=True)
class DashboardConfig:
    """Runtime tunables for the dashboard, stored in `app_config`."""

    page_size: int = 10
    staleness_days: int = 10
    debounce_ms: int = 500
    export_batch_size: int = 1000
    stalled_limit: int = 6

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000.0

    @classmethod
    def from_repository(cls, repo) -> "DashboardConfig":
        defaults = cls()

        def _read(key: str, default: int, *, minimum: int) -> int:
            raw = repo.get_config(key=key, default=str(default))
            try:
                value = int(str(raw).strip())
            except (TypeError, ValueError):
                return default
            return value if value >= minimum else default

        return cls(
            page_size=_read("page_size", defaults.page_size, minimum=1),
            staleness_days=_read("staleness_days", defaults.staleness_days, minimum=0),
            debounce_ms=_read("debounce_ms", defaults.debounce_ms, minimum=0),
            export_batch_size=_read("export_batch_size", defaults.export_batch_size, minimum=1),
            stalled_limit=_read("stalled_limit", defaults.stalled_limit, minimum=1),
        )


DEFAULT_TITLE = "Mantenimiento STI"


def app_title(repo) -> str:
    """Window title from the `titulo` config key."""
    title = (repo.get_config(key="titulo", default=DEFAULT_TITLE) or "").strip()
    return title or DEFAULT_TITLE
