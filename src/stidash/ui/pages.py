from __future__ import annotations

import asyncio
import logging
from datetime import date

from nicegui import ui

from stidash.analytics.controller import DashboardController
from stidash.analytics.labels import decorate_breakdown, format_month_label, month_labels
from stidash.analytics.state import SetDateRange
from stidash.core.models import PRIORITY_CRITICAL, PRIORITY_ELEVATED
from stidash.data.gateway import RecordGateway
from stidash.data.repository import Repository
from stidash.settings import DashboardConfig
from stidash.ui.widgets import kpi_card, page_container, render_nav

logger = logging.getLogger(__name__)

_SUPERVISOR_CHART_LIMIT = 10

_PRIORITY_LABELS = {
    PRIORITY_CRITICAL: "Crítica",
    PRIORITY_ELEVATED: "Elevada",
}


def _bar_options(labels: list[str], totals: list[int], percentages: list[float], *, horizontal: bool = False) -> dict:
    category_axis = {"type": "category", "data": labels, "axisLabel": {"color": "#94a3b8"}}
    value_axis = {"type": "value", "axisLabel": {"color": "#94a3b8"}}
    series = [
        {
            "name": "Total",
            "type": "bar",
            "data": totals,
            "itemStyle": {"color": "#3b82f6"},
            "label": {"show": True, "position": "right" if horizontal else "top", "color": "#cbd5e1"},
        }
    ]
    options = {
        "tooltip": {"trigger": "axis"},
        "grid": {"left": 140 if horizontal else 45, "right": 45, "top": 30, "bottom": 45},
        "xAxis": value_axis if horizontal else category_axis,
        "yAxis": category_axis if horizontal else [value_axis, {"type": "value", "max": 100, "show": False}],
        "series": series,
    }
    if not horizontal:
        series.append(
            {
                "name": "% Ejecución",
                "type": "line",
                "yAxisIndex": 1,
                "data": [round(p, 1) for p in percentages],
                "itemStyle": {"color": "#34d399"},
            }
        )
    return options


def register_pages(repo: Repository) -> None:
    gateway = RecordGateway(repo)

    def _parse_iso(value) -> date | None:
        try:
            return date.fromisoformat(str(value or "").strip())
        except ValueError:
            return None

    @ui.page("/")
    def dashboard() -> None:
        render_nav("dashboard")
        client = ui.context.client
        controller = DashboardController(gateway, config=DashboardConfig.from_repository(repo))

        with page_container():
            with ui.row().classes("w-full items-end justify-between gap-4"):
                with ui.column().classes("gap-1"):
                    ui.label("Comparativa de Desempeño y Cobertura").classes("sd-subtitle")

                    @ui.refreshable
                    def filter_chips() -> None:
                        f = controller.filter
                        with ui.row().classes("gap-2"):
                            chips = [
                                ("area", "Área", f.area),
                                ("supervisor", "Sup", f.supervisor),
                                ("installation", "Instalación", f.installation),
                                ("month", "Mes", format_month_label(f.month) if f.month else None),
                            ]
                            for dimension, caption, value in chips:
                                if value is None:
                                    continue
                                ui.button(
                                    f"{caption}: {value}",
                                    icon="cancel",
                                    on_click=lambda d=dimension: controller.clear_filter(d),
                                ).props("dense rounded no-caps outline size=sm")
                            if f.active_dimensions() or f.critical_only:
                                ui.button("Limpiar filtros", on_click=lambda: controller.reset_filters()).props(
                                    "dense flat no-caps size=sm"
                                )

                    filter_chips()

                with ui.row().classes("items-end gap-3"):

                    def _on_dates_changed(_e=None) -> None:
                        start, end = _parse_iso(start_in.value), _parse_iso(end_in.value)
                        if start is None or end is None:
                            return
                        if start > end:
                            ui.notify("La fecha inicial debe ser anterior a la final", color="warning")
                            return
                        f = controller.filter
                        if (start, end) == (f.start_date, f.end_date):
                            return
                        controller.debounce(SetDateRange(start_date=start, end_date=end))

                    def _on_critical_changed(e) -> None:
                        if bool(e.value) != controller.filter.critical_only:
                            controller.set_critical_only(bool(e.value))

                    start_in = ui.input(
                        "Desde", value=controller.filter.start_date.isoformat(), on_change=_on_dates_changed
                    ).props("type=date dense dark")
                    end_in = ui.input(
                        "Hasta", value=controller.filter.end_date.isoformat(), on_change=_on_dates_changed
                    ).props("type=date dense dark")
                    critical_sw = ui.switch(
                        f"Solo críticas (>{controller.config.staleness_days} días)",
                        value=controller.filter.critical_only,
                        on_change=_on_critical_changed,
                    )

                    async def _export() -> None:
                        doc = await controller.export()
                        if doc is not None:
                            ui.download(doc.content, doc.filename)
                            ui.notify(f"Exportadas {doc.row_count} solicitudes", type="positive")

                    ui.button("Exportar Excel", icon="download", on_click=_export).props("unelevated color=primary no-caps")

            @ui.refreshable
            def loading_badge() -> None:
                if controller.loading:
                    with ui.row().classes("fixed bottom-4 right-4 items-center gap-2 bg-emerald-600 px-4 py-2 rounded-full z-50"):
                        ui.spinner(size="sm", color="white")
                        ui.label("Actualizando datos...").classes("text-white text-sm")

            loading_badge()

            @ui.refreshable
            def kpis() -> None:
                cur, delta = controller.current, controller.comparison
                if cur is None:
                    ui.label("Cargando Dashboard de Mantenimiento...").classes("sd-subtitle")
                    return
                with ui.element("div").classes("w-full grid gap-6 grid-cols-1 md:grid-cols-4"):
                    kpi_card(
                        "Solicitudes Totales", f"{cur.total:,}", icon="description", caption="Periodo",
                        trend=delta.total_change if delta else None,
                    )
                    kpi_card(
                        "Solicitudes Ejecutadas", f"{cur.executed:,}", icon="task_alt", caption="Completadas",
                        trend=delta.executed_change if delta else None,
                    )
                    kpi_card(
                        "% Ejecución Global", f"{cur.completion_rate:.1f}%", icon="speed", caption="Eficiencia",
                        trend=delta.completion_rate_change if delta else None, points=True,
                    )
                    kpi_card(
                        "Instalaciones Intervenidas", f"{cur.coverage:,}", icon="location_city", caption="Cobertura",
                        trend=delta.coverage_change if delta else None,
                    )

            @ui.refreshable
            def charts() -> None:
                cur = controller.current
                if cur is None:
                    return

                def _chart(title: str, dimension: str, labels, entries, *, horizontal: bool = False) -> None:
                    def _on_click(e) -> None:
                        idx = getattr(e, "data_index", None)
                        if idx is not None and 0 <= idx < len(labels):
                            controller.select_breakdown(labels[idx].key, dimension)
                        elif getattr(e, "name", None):
                            controller.select_breakdown(str(e.name), dimension)

                    with ui.card().classes("sd-card p-5 w-full"):
                        ui.label(title).classes("text-lg font-semibold")
                        if not entries:
                            ui.label("(sin datos)").classes("sd-subtitle")
                            return
                        ui.echart(
                            _bar_options(
                                [lbl.label for lbl in labels],
                                [e.total for e in entries],
                                [e.percentage for e in entries],
                                horizontal=horizontal,
                            ),
                            on_point_click=_on_click,
                        ).classes("w-full h-80")

                supervisors = cur.by_supervisor[:_SUPERVISOR_CHART_LIMIT]
                with ui.element("div").classes("w-full grid gap-8 grid-cols-1 lg:grid-cols-2"):
                    _chart("Solicitudes por Área", "area", decorate_breakdown(cur.by_area, with_percentage=False), cur.by_area)
                    _chart(
                        "Top Instalaciones",
                        "installation",
                        decorate_breakdown(cur.by_installation, with_percentage=False),
                        cur.by_installation,
                        horizontal=True,
                    )
                    _chart("Evolución Mensual", "month", month_labels(cur.by_month), cur.by_month)
                    _chart(
                        "Desempeño Supervisores",
                        "supervisor",
                        decorate_breakdown(supervisors),
                        supervisors,
                        horizontal=True,
                    )

            @ui.refreshable
            def stalled_panel() -> None:
                if not controller.stalled:
                    return
                with ui.card().classes("sd-card p-5 w-full"):
                    ui.label(
                        f"Solicitudes críticas (más de {controller.config.staleness_days} días sin cierre)"
                    ).classes("text-lg font-semibold")
                    with ui.element("div").classes("w-full grid gap-3 grid-cols-1 md:grid-cols-3"):
                        for s in controller.stalled:
                            with ui.card().classes("p-3"):
                                ui.label(f"#{s.id} · {s.location or 'N/A'}").classes("font-medium")
                                ui.label(f"{s.area or 'Sin área'} · {s.status or 'N/A'}").classes("text-xs sd-subtitle")
                                ui.label(f"{s.dias_espera} días de espera").classes("text-sm text-red-400")

            @ui.refreshable
            def table_section() -> None:
                page = controller.page
                with ui.card().classes("sd-card p-5 w-full"):
                    ui.label("Solicitudes Pendientes").classes("text-lg font-semibold")
                    if page is None:
                        ui.label("Cargando...").classes("sd-subtitle")
                        return
                    rows = [
                        {
                            "id": r.id,
                            "fecha": r.date.strftime("%d-%m-%y"),
                            "ubicacion": r.location or "",
                            "area": r.area or "",
                            "supervisor": r.supervisor or "",
                            "estado": r.status or "N/A",
                            "dias": r.age_days,
                            "prioridad": _PRIORITY_LABELS.get(r.priority, "Normal"),
                        }
                        for r in page.rows
                    ]
                    ui.table(
                        columns=[
                            {"name": "id", "label": "Solicitud", "field": "id", "align": "left"},
                            {"name": "fecha", "label": "Fecha", "field": "fecha"},
                            {"name": "ubicacion", "label": "Ubicación", "field": "ubicacion", "align": "left"},
                            {"name": "area", "label": "Área", "field": "area", "align": "left"},
                            {"name": "supervisor", "label": "Supervisor", "field": "supervisor", "align": "left"},
                            {"name": "estado", "label": "Estado", "field": "estado"},
                            {"name": "dias", "label": "Días", "field": "dias"},
                            {"name": "prioridad", "label": "Prioridad", "field": "prioridad"},
                        ],
                        rows=rows,
                        row_key="id",
                    ).classes("w-full sd-table").props("dense flat bordered dark")

                    cursor = page.cursor
                    with ui.row().classes("w-full items-center justify-between pt-2"):
                        ui.label(
                            f"Página {cursor.page_number} de {cursor.page_count} ({cursor.total_count} registros)"
                        ).classes("text-sm sd-subtitle")
                        with ui.row().classes("gap-1"):
                            ui.button(icon="chevron_left", on_click=lambda: controller.previous_page()).props(
                                "dense flat"
                            ).set_enabled(cursor.page_number > 1)
                            ui.button(icon="chevron_right", on_click=lambda: controller.next_page()).props(
                                "dense flat"
                            ).set_enabled(cursor.page_number < cursor.page_count)

            kpis()
            charts()
            stalled_panel()
            table_section()

        def _on_event(event: str) -> None:
            if event == "filter":
                filter_chips.refresh()
                f = controller.filter
                start_in.value = f.start_date.isoformat()
                end_in.value = f.end_date.isoformat()
                critical_sw.value = f.critical_only
            elif event == "metrics":
                kpis.refresh()
                charts.refresh()
            elif event == "table":
                table_section.refresh()
            elif event == "stalled":
                stalled_panel.refresh()
            elif event == "loading":
                loading_badge.refresh()
            elif event == "notice" and controller.notices:
                notice = controller.notices[-1]
                with client:
                    ui.notify(notice.message, type=notice.level, close_button="OK", timeout=8000)

        controller.subscribe(_on_event)
        ui.timer(0.1, controller.start, once=True)

    @ui.page("/actualizar")
    def actualizar() -> None:
        render_nav("actualizar")
        with page_container():
            ui.label("Actualizar solicitudes").classes("text-2xl font-semibold")
            ui.label(
                "Sube un .xlsx con columnas Solicitud, Fecha, Ubicación Base, Instalación, Área, Supervisor, "
                "Descripción y Estado. Las solicitudes existentes se actualizan por número."
            ).classes("sd-subtitle")

            @ui.refreshable
            def count_label() -> None:
                ui.label(f"Solicitudes cargadas: {repo.count_solicitudes()}").classes("text-sm sd-subtitle")

            async def handle_upload(e) -> None:
                try:
                    content = await e.file.read()
                    result = await asyncio.to_thread(lambda: repo.import_solicitudes_bytes(content=content))
                    msg = f"Importadas: {result['imported']} solicitudes"
                    if result["skipped"]:
                        msg += f" ({result['skipped']} filas omitidas)"
                    ui.notify(msg, type="positive")
                    count_label.refresh()
                except Exception as ex:
                    logger.exception("Import failed")
                    ui.notify(f"Error importando solicitudes: {ex}", color="negative")

            with ui.card().classes("sd-card p-4 w-[min(520px,100%)]"):
                ui.upload(label="Subir solicitudes (.xlsx)", on_upload=handle_upload, auto_upload=True).props(
                    "accept=.xlsx max-files=1"
                )
                count_label()
