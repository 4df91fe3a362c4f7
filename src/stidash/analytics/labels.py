"""Display labels for breakdown entries.

Breakdown keys travel through the app as plain keys. The decorated form
("<key> (NN.N%)") is built only when rendering a chart, and anything coming
back from the chart is reduced to its key with `strip_label`.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from stidash.core.models import BreakdownEntry, is_month_key

_SUFFIX_RE = re.compile(r" \(\d+(\.\d+)?%\)$")

_MONTHS_ES = ("ene", "feb", "mar", "abr", "may", "jun", "jul", "ago", "sept", "oct", "nov", "dic")
_MONTH_ALIASES = {name: i + 1 for i, name in enumerate(_MONTHS_ES)}
_MONTH_ALIASES["sep"] = 9
_MONTH_LABEL_RE = re.compile(r"^([a-z]+)\.? (\d{2})$")


@dataclass(frozen=True)
class BreakdownLabel:
    key: str
    label: str


def decorate_label(key: str, percentage: float) -> str:
    return f"{key} ({percentage:.1f}%)"


def strip_label(label: str) -> str:
    """Remove a trailing " (NN.N%)" suffix. Idempotent on plain keys."""
    return _SUFFIX_RE.sub("", str(label))


def format_month_label(month_key: str) -> str:
    """'2024-12' -> 'dic. 24'."""
    year, month = str(month_key).split("-")
    return f"{_MONTHS_ES[int(month) - 1]}. {year[-2:]}"


def parse_month_label(value: str) -> str | None:
    """Accept 'YYYY-MM' or the short Spanish display form; return 'YYYY-MM'."""
    s = strip_label(str(value or "")).strip().lower()
    if is_month_key(s):
        return s
    m = _MONTH_LABEL_RE.match(s)
    if not m or m.group(1) not in _MONTH_ALIASES:
        return None
    return f"20{m.group(2)}-{_MONTH_ALIASES[m.group(1)]:02d}"


def decorate_breakdown(entries: tuple[BreakdownEntry, ...], *, with_percentage: bool = True) -> list[BreakdownLabel]:
    labels: list[BreakdownLabel] = []
    for e in entries:
        text = decorate_label(e.key, e.percentage) if with_percentage else e.key
        labels.append(BreakdownLabel(key=e.key, label=text))
    return labels


def month_labels(entries) -> list[BreakdownLabel]:
    return [BreakdownLabel(key=e.key, label=format_month_label(e.key)) for e in entries]
