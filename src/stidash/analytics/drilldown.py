from __future__ import annotations

from stidash.analytics.labels import parse_month_label, strip_label
from stidash.core.models import DIMENSIONS, FilterState


def breakdown_key(value: str, dimension: str) -> str:
    """Reduce a chart value (decorated label or plain key) to the filter key."""
    if dimension not in DIMENSIONS:
        raise ValueError(f"dimensión no soportada: {dimension!r}")
    if dimension == "month":
        month_key = parse_month_label(value)
        if month_key is None:
            raise ValueError(f"mes inválido: {value!r}")
        return month_key
    key = strip_label(value).strip()
    if not key:
        raise ValueError(f"valor vacío para {dimension}")
    return key


def select_breakdown_entry(current: FilterState, value: str, dimension: str) -> FilterState:
    """Narrow `current` by a clicked breakdown entry.

    Each dimension is one slot: a new value replaces the previous one for that
    slot, other slots are left alone. Selecting the value already set returns
    an equal FilterState.
    """
    return current.with_dimension(dimension, breakdown_key(value, dimension))


def clear_filter(current: FilterState, dimension: str) -> FilterState:
    return current.with_dimension(dimension, None)
