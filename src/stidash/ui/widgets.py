from __future__ import annotations

from contextlib import contextmanager

from nicegui import ui

from stidash.analytics.comparison import format_trend


_THEME_APPLIED = False


def apply_theme() -> None:
    """Apply a lightweight global theme for the console."""
    try:
        ui.colors(
            primary="#10b981",  # emerald-500
            secondary="#3b82f6",  # blue-500
            positive="#34d399",  # emerald-400
            negative="#f87171",  # red-400
            warning="#f59e0b",  # amber-500
        )
    except Exception:
        # Keep running even if NiceGUI changes the API.
        pass

    ui.add_css(
        """
        body { background: #0f172a; color: #f1f5f9; }
        .sd-container { max-width: 1280px; margin: 0 auto; padding: 16px; }
        .sd-subtitle { color: #94a3b8; }
        .sd-header { border-bottom: 1px solid rgba(148, 163, 184, 0.2); }
        .sd-card { background: rgba(30, 41, 59, 0.6); border: 1px solid #334155; border-radius: 16px; }
        .sd-table .q-table th, .sd-table .q-table td { padding: 6px 8px; }
        """
    )


def ensure_theme() -> None:
    """Apply theme once, but only when called from within a page context."""
    global _THEME_APPLIED
    if _THEME_APPLIED:
        return
    apply_theme()
    _THEME_APPLIED = True


@contextmanager
def page_container():
    with ui.element("div").classes("sd-container"):
        yield


def render_nav(active: str | None = None, *, title: str = "Panel de Control de Mantenimiento (STI)") -> None:
    ensure_theme()
    active_key = active or "dashboard"
    sections: list[tuple[str, str, str]] = [
        ("dashboard", "Dashboard", "/"),
        ("actualizar", "Actualizar", "/actualizar"),
    ]

    with ui.header().classes("sd-header bg-slate-900 text-slate-100"):
        with ui.row().classes("w-full items-center justify-between gap-4 px-4 py-2"):
            with ui.row().classes("items-center gap-3"):
                ui.icon("monitor_heart", color="primary").classes("text-3xl")
                ui.label(title).classes("text-xl md:text-2xl font-semibold leading-none")
            with ui.row().classes("items-center gap-1"):
                for key, label, path in sections:
                    props = "dense no-caps color=primary" + (" unelevated" if key == active_key else " flat")
                    ui.button(label, on_click=lambda p=path: ui.navigate.to(p)).props(props)


def trend_badge(value: float | None, *, points: bool = False) -> None:
    if value is None:
        return
    positive = value >= 0
    color = "text-emerald-400" if positive else "text-red-400"
    with ui.row().classes(f"items-center gap-1 text-xs font-medium {color} mt-2"):
        ui.icon("trending_up" if positive else "trending_down").classes("text-sm")
        ui.label(format_trend(value, points=points))


def kpi_card(title: str, value: str, *, icon: str, caption: str, trend: float | None, points: bool = False) -> None:
    with ui.card().classes("sd-card p-5 w-full"):
        with ui.row().classes("w-full items-center justify-between"):
            ui.icon(icon, color="primary").classes("text-2xl")
            ui.label(caption).classes("text-xs sd-subtitle")
        ui.label(value).classes("text-3xl font-bold mt-2")
        ui.label(title).classes("text-sm sd-subtitle")
        trend_badge(trend, points=points)
