import asyncio
import io
from datetime import date

import pandas as pd

from fixtures_records import TODAY, FakeRecordService, metrics_payload, record
from stidash.analytics.controller import DashboardController
from stidash.analytics.state import SetDateRange
from stidash.settings import DashboardConfig


def _two_area_service() -> FakeRecordService:
    return FakeRecordService(
        [record(1, area="A"), record(2, area="A"), record(3, area="B"), record(4, area="B"), record(5, area="B")],
        metrics_by_area={
            "A": metrics_payload(2, 1, area="A"),
            "B": metrics_payload(3, 2, area="B"),
        },
    )


def test_start_loads_everything_and_emits_events():
    async def _run():
        service = FakeRecordService([record(i, fecha="2024-01-10") for i in range(1, 9)])
        controller = DashboardController(service, config=DashboardConfig(stalled_limit=3), clock=lambda: TODAY)
        events: list[str] = []
        controller.subscribe(events.append)
        await controller.start()
        return controller, events

    controller, events = asyncio.run(_run())
    assert controller.current is not None and controller.previous is not None
    assert controller.comparison is not None
    assert controller.page.total_count == 8
    assert len(controller.stalled) == 3
    assert controller.stalled[0].dias_espera == (TODAY - date(2024, 1, 10)).days
    assert {"filter", "metrics", "table", "stalled"} <= set(events)
    assert controller.loading == set()


def test_out_of_order_responses_keep_latest_filter():
    async def _run():
        service = _two_area_service()
        gate_a = service.gate("A")
        gate_b = service.gate("B")
        controller = DashboardController(service, clock=lambda: TODAY)

        tasks_a = controller.select_breakdown("A", "area")
        tasks_b = controller.select_breakdown("B", "area")

        # B resolves first, then the stale A responses arrive.
        gate_b.set()
        await asyncio.gather(*tasks_b)
        gate_a.set()
        await asyncio.gather(*tasks_a)
        return controller

    controller = asyncio.run(_run())
    assert controller.filter.area == "B"
    assert controller.metrics_filter.area == "B"
    assert controller.current.total == 3
    assert [r.id for r in controller.page.rows] == [5, 4, 3]
    assert controller.page.total_count == 3


def test_failure_keeps_last_good_state_and_raises_notice():
    async def _run():
        service = _two_area_service()
        controller = DashboardController(service, clock=lambda: TODAY)
        controller.select_breakdown("A", "area")
        await controller.wait_idle()
        good_metrics, good_page = controller.current, controller.page

        service.fail_metrics = True
        service.fail_table = True
        controller.select_breakdown("B", "area")
        await controller.wait_idle()
        return controller, good_metrics, good_page

    controller, good_metrics, good_page = asyncio.run(_run())
    assert controller.current is good_metrics
    assert controller.page is good_page
    assert controller.filter.area == "B"
    assert [n.level for n in controller.notices] == ["warning", "warning"]
    assert all(n.dismissable for n in controller.notices)
    assert controller.loading == set()

    controller.dismiss_notice(controller.notices[0])
    assert len(controller.notices) == 1


def test_page_change_fetches_table_only():
    async def _run():
        service = FakeRecordService([record(i) for i in range(1, 26)])
        controller = DashboardController(service, clock=lambda: TODAY)
        await controller.start()
        comparison = controller.comparison
        metrics_calls = len(service.metrics_calls)

        controller.next_page()
        await controller.wait_idle()
        return controller, service, comparison, metrics_calls

    controller, service, comparison, metrics_calls = asyncio.run(_run())
    assert len(service.metrics_calls) == metrics_calls == 2
    assert controller.comparison is comparison
    assert controller.page.cursor.page_number == 2
    assert controller.page.total_count == 25
    assert [r.id for r in controller.page.rows] == list(range(15, 5, -1))


def test_previous_page_on_first_page_does_nothing():
    async def _run():
        service = FakeRecordService([record(i) for i in range(1, 4)])
        controller = DashboardController(service, clock=lambda: TODAY)
        await controller.start()
        calls = len(service.table_calls)
        tasks = controller.previous_page()
        await controller.wait_idle()
        return tasks, calls, len(service.table_calls)

    tasks, before, after = asyncio.run(_run())
    assert tasks == []
    assert before == after


def test_export_binds_to_filter_at_invocation():
    async def _run():
        service = _two_area_service()
        controller = DashboardController(service, clock=lambda: TODAY)
        controller.select_breakdown("A", "area")
        await controller.wait_idle()

        gate_a = service.gate("A")
        export_task = asyncio.create_task(controller.export())
        for _ in range(5):
            await asyncio.sleep(0)

        # Filter changes while the export is still waiting on its data.
        controller.select_breakdown("B", "area")
        await controller.wait_idle()

        gate_a.set()
        doc = await export_task
        return controller, service, doc

    controller, service, doc = asyncio.run(_run())
    assert controller.filter.area == "B"
    assert all(params["area"] == "A" for params, _, _ in service.export_calls)
    assert doc.filename == "Reporte_STI_2024-01-01_2024-03-15.xlsx"
    assert doc.row_count == 2

    detail = pd.read_excel(io.BytesIO(doc.content), sheet_name="Detalle Solicitudes Pendientes")
    assert detail["Solicitud"].tolist() == [2, 1]
    summary = pd.read_excel(io.BytesIO(doc.content), sheet_name="Resumen", header=None)
    values = dict(zip(summary[0], summary[1]))
    assert values["Filtro Activo:"] == "A"
    assert values["Solicitudes Totales"] == 2


def test_export_failure_returns_none_with_notice():
    async def _run():
        service = FakeRecordService([record(1)])
        service.fail_export = True
        controller = DashboardController(service, clock=lambda: TODAY)
        doc = await controller.export()
        return controller, doc

    controller, doc = asyncio.run(_run())
    assert doc is None
    assert controller.notices[-1].level == "negative"
    assert "export" not in controller.loading


def test_debounce_coalesces_rapid_changes():
    async def _run():
        service = FakeRecordService([record(1)])
        controller = DashboardController(service, config=DashboardConfig(debounce_ms=20), clock=lambda: TODAY)
        controller.debounce(SetDateRange(date(2024, 1, 1), date(2024, 1, 10)))
        controller.debounce(SetDateRange(date(2024, 1, 1), date(2024, 1, 20)))
        controller.debounce(SetDateRange(date(2024, 1, 1), date(2024, 1, 31)))
        await asyncio.sleep(0.1)
        await controller.wait_idle()
        return controller, service

    controller, service = asyncio.run(_run())
    assert controller.store.state.metrics_generation == 1
    assert controller.filter.end_date == date(2024, 1, 31)
    assert sorted(c["end_date"] for c in service.metrics_calls) == ["2023-12-31", "2024-01-31"]


def test_filter_mutation_cancels_pending_debounced_change():
    async def _run():
        service = FakeRecordService([record(1)])
        controller = DashboardController(service, config=DashboardConfig(debounce_ms=20), clock=lambda: TODAY)
        controller.debounce(SetDateRange(date(2024, 2, 1), date(2024, 2, 10)))
        controller.reset_filters()
        await asyncio.sleep(0.1)
        await controller.wait_idle()
        return controller

    controller = asyncio.run(_run())
    assert controller.filter.start_date == date(2024, 1, 1)
    assert controller.filter.end_date == TODAY
    assert controller.store.state.metrics_generation == 1


def test_page_change_keeps_pending_debounced_change():
    async def _run():
        service = FakeRecordService([record(i) for i in range(1, 26)])
        controller = DashboardController(service, config=DashboardConfig(debounce_ms=20), clock=lambda: TODAY)
        await controller.start()
        controller.debounce(SetDateRange(date(2024, 1, 1), date(2024, 1, 31)))
        controller.next_page()
        await asyncio.sleep(0.1)
        await controller.wait_idle()
        return controller

    controller = asyncio.run(_run())
    assert controller.filter.end_date == date(2024, 1, 31)
    assert controller.page.cursor.page_number == 1


def test_export_while_metrics_in_flight_uses_exported_filter_totals():
    async def _run():
        service = _two_area_service()
        controller = DashboardController(service, clock=lambda: TODAY)
        controller.select_breakdown("A", "area")
        await controller.wait_idle()

        gate_b = service.gate("B")
        controller.select_breakdown("B", "area")
        export_task = asyncio.create_task(controller.export())
        for _ in range(5):
            await asyncio.sleep(0)

        gate_b.set()
        doc = await export_task
        await controller.wait_idle()
        return doc

    doc = asyncio.run(_run())
    assert doc.row_count == 3
    summary = pd.read_excel(io.BytesIO(doc.content), sheet_name="Resumen", header=None)
    values = dict(zip(summary[0], summary[1]))
    assert values["Filtro Activo:"] == "B"
    assert values["Solicitudes Totales"] == 3


def test_export_after_failed_metrics_does_not_reuse_stale_snapshot():
    async def _run():
        service = _two_area_service()
        controller = DashboardController(service, clock=lambda: TODAY)
        controller.select_breakdown("A", "area")
        await controller.wait_idle()

        service.fail_metrics = True
        controller.select_breakdown("B", "area")
        await controller.wait_idle()
        kept_total = controller.current.total

        service.fail_metrics = False
        doc = await controller.export()
        return kept_total, doc

    kept_total, doc = asyncio.run(_run())
    assert kept_total == 2
    summary = pd.read_excel(io.BytesIO(doc.content), sheet_name="Resumen", header=None)
    values = dict(zip(summary[0], summary[1]))
    assert values["Solicitudes Totales"] == 3
    assert doc.row_count == 3


def test_export_fails_cleanly_when_summary_metrics_cannot_load():
    async def _run():
        service = _two_area_service()
        service.fail_metrics = True
        controller = DashboardController(service, clock=lambda: TODAY)
        doc = await controller.export()
        return controller, service, doc

    controller, service, doc = asyncio.run(_run())
    assert doc is None
    assert controller.notices[-1].level == "negative"
    assert service.export_calls == []
