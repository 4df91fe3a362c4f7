from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from nicegui import app, ui

from stidash.data.db import Db
from stidash.data.repository import Repository
from stidash.logging_conf import configure_logging
from stidash.settings import Settings, app_title, default_db_path
from stidash.ui.pages import register_pages

logger = logging.getLogger(__name__)


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Panel de Control de Mantenimiento (STI)")
    parser.add_argument("--host", type=str, default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8080)
    parser.add_argument("--db", type=Path, default=None, help="Ruta de la base de datos sqlite")
    parser.add_argument("--log-level", type=str, default="INFO")
    parser.add_argument("--log-file", type=Path, default=None, help="Archivo de log rotativo (opcional)")
    return parser


def main() -> None:
    args = build_arg_parser().parse_args()
    settings = Settings(
        db_path=args.db or default_db_path(),
        host=args.host,
        port=args.port,
        log_level=args.log_level,
        log_file=args.log_file,
    )
    configure_logging(settings.log_level, log_file=settings.log_file)

    db = Db(settings.db_path)
    db.ensure_schema()

    repo = Repository(db)
    title = app_title(repo)
    register_pages(repo)
    logger.info("Serving %s on %s:%s (db=%s)", title, settings.host, settings.port, settings.db_path)

    if sys.platform == "win32":
        @app.on_startup
        async def _silence_windows_connection_reset() -> None:
            # Suppress noisy ConnectionResetError 10054 from Windows clients dropping websockets.
            loop = asyncio.get_running_loop()

            def _handler(loop: asyncio.AbstractEventLoop, context: dict) -> None:
                exc = context.get("exception")
                if isinstance(exc, ConnectionResetError) and getattr(exc, "winerror", None) == 10054:
                    return
                loop.default_exception_handler(context)

            loop.set_exception_handler(_handler)

    ui.run(host=settings.host, port=settings.port, title=title, reload=False)


if __name__ in {"__main__", "__mp_main__"}:
    main()
