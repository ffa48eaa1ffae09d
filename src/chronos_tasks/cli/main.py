# src/chronos_tasks/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, then runs one asyncio session:
- background timer tick + undo expiry,
- optional sync attach (CHRONOS_OWNER_ID),
- console REPL (optional; otherwise idle until Ctrl+C).
"""

from __future__ import annotations

import asyncio
import logging

from ..cli.bootstrap import create_initial_state
from ..config import get_settings
from ..connectors.console_connector import run_console_loop
from ..core.state import AppState
from ..logging_setup import setup_logging

logger = logging.getLogger(__name__)


async def _run(state: AppState) -> None:
    settings = state.settings
    state.collection.start_background(tick_seconds=settings.timer_tick_seconds)

    if settings.owner_id and state.sync is not None:
        try:
            await state.sync.attach(settings.owner_id)
        except Exception:
            logger.exception("Initial sync attach failed; continuing locally.")

    if settings.console_enabled:
        await run_console_loop(state)
    else:
        logger.info("Console disabled. Running background loops only. Press Ctrl+C to stop.")
        await asyncio.Event().wait()


def main() -> None:
    settings = get_settings()

    # choose console log level from settings.log_level
    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)

    log_dir = getattr(settings, "data_dir", ".local/chronos")
    setup_logging(log_dir=log_dir, console_level=console_level)

    logger.info("Starting %s...", getattr(settings, "app_name", "chronos"))

    # reuse the same settings object
    state = create_initial_state(settings=settings)

    try:
        asyncio.run(_run(state))
    except KeyboardInterrupt:
        logger.info("KeyboardInterrupt, shutting down...")
    finally:
        state.close()
        logger.info("Bye.")


if __name__ == "__main__":
    main()
