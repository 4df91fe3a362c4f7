"""Error taxonomy for the analytics engine.

None of these are fatal: the controller turns them into notices and keeps the
last good snapshot/page on screen.
"""

from __future__ import annotations


class StidashError(Exception):
    pass


class AggregationError(StidashError):
    """The remote metrics call (current or previous period) failed."""


class TableFetchError(StidashError):
    """The table page query failed."""


class ExportError(StidashError):
    """The export query or the workbook serialization failed."""
