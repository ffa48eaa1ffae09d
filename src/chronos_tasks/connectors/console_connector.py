# src/chronos_tasks/connectors/console_connector.py

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from ..cli.commands import registry as command_registry
from ..core.notifications import Notification, NotificationLevel
from ..core.state import AppState

logger = logging.getLogger(__name__)

_LEVEL_TAGS = {
    NotificationLevel.SUCCESS: "OK",
    NotificationLevel.INFO: "INFO",
    NotificationLevel.WARNING: "WARN",
    NotificationLevel.ERROR: "ERROR",
}


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}", flush=True)


def _print_notification(n: Notification) -> None:
    hint = "  (/undo)" if n.undo_id else ""
    _print_ts(f"[{_LEVEL_TAGS.get(n.level, 'INFO')}] {n.message}{hint}")


async def run_console_loop(state: AppState) -> None:
    """
    Read slash commands from stdin until /exit or EOF.

    input() runs in a worker thread so the event loop keeps serving the
    debounced saves, sync and the timer tick while we wait for the user.
    Every state mutation happens back on the loop.
    """
    logger.info("Console connector started (owner=%s).", state.collection.owner_id)
    _print_ts("[CONSOLE] Type /help for commands. Use /exit to quit.\n")

    unsubscribe = state.bus.subscribe(_print_notification)

    def emit(text: str) -> None:
        _print_ts(text)

    try:
        while True:
            try:
                line = (await asyncio.to_thread(input, ">>> ")).strip()
            except EOFError:
                logger.info("Console EOF received, exiting.")
                break
            except KeyboardInterrupt:
                logger.info("Console KeyboardInterrupt, exiting.")
                print()
                break

            if not line:
                continue

            if line.lower() in ("/exit", "/quit"):
                logger.info("Console exit command received.")
                break

            if not line.startswith("/"):
                # bare text is a quick add
                line = f"/add {line}"

            try:
                reply = await command_registry.handle(state, line, emit=emit)
            except ValueError as e:
                reply = f"Invalid input: {e}"
            except Exception:
                logger.exception("Command handler crashed.")
                reply = "Internal error while handling a command."

            if reply is not None:
                _print_ts(reply)
    finally:
        unsubscribe()

    logger.info("Console connector finished.")
