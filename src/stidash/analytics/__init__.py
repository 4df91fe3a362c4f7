"""Analytics package.

Fetch-cycle logic behind the maintenance dashboard: metrics aggregation with
period comparison, drill-down into filters, the paginated request table and
the Excel export. Nothing here imports NiceGUI.
"""

from stidash.analytics.aggregator import MetricsAggregator, normalize_metrics, previous_period
from stidash.analytics.comparison import compare, percent_change
from stidash.analytics.controller import DashboardController
from stidash.analytics.drilldown import clear_filter, select_breakdown_entry
from stidash.analytics.export import ExportDocument, ExportSnapshotBuilder
from stidash.analytics.labels import decorate_label, strip_label
from stidash.analytics.table import PaginatedTableSynchronizer

__all__ = [
    "DashboardController",
    "ExportDocument",
    "ExportSnapshotBuilder",
    "MetricsAggregator",
    "PaginatedTableSynchronizer",
    "clear_filter",
    "compare",
    "decorate_label",
    "normalize_metrics",
    "percent_change",
    "previous_period",
    "select_breakdown_entry",
    "strip_label",
]
