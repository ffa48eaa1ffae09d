# src/chronos_tasks/cli/commands.py

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import cast

from ..core.state import AppState
from ..core.timeutil import local_now
from ..tasks.display import GroupBy
from ..tasks.task_models import Priority, TaskEntity

CommandEmitter = Callable[[str], None]
CommandResult = str | Awaitable[str]
CommandHandler2 = Callable[[AppState, list[str]], CommandResult]
CommandHandler3 = Callable[[AppState, list[str], CommandEmitter | None], CommandResult]
CommandHandler = CommandHandler2 | CommandHandler3

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by connectors (/help, /add, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    async def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command. Handlers may be
        plain functions or coroutine functions.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except (TypeError, ValueError):
            nparams = 3

        if nparams >= 3:
            result = cast(CommandHandler3, handler)(state, args, emit)
        else:
            result = cast(CommandHandler2, handler)(state, args)

        if inspect.isawaitable(result):
            result = await result
        return cast(str, result)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


# ---- formatting helpers ----


def format_duration(ms: int) -> str:
    total = max(0, int(ms)) // 1000
    h, rem = divmod(total, 3600)
    m, s = divmod(rem, 60)
    return f"{h}:{m:02d}:{s:02d}" if h else f"{m:02d}:{s:02d}"


def _format_task(index: int | None, task: TaskEntity) -> str:
    mark = "x" if task.is_completed else " "
    prefix = f"{index:>2}. " if index is not None else "    "
    parts = [f"{prefix}[{mark}] {task.title}"]
    if task.priority != Priority.NONE:
        parts.append(f"!{task.priority.value}")
    if task.due_at is not None:
        parts.append(f"due {task.due_at.strftime('%Y-%m-%d')}")
    if task.tags:
        parts.append(" ".join(f"#{t}" for t in task.tags))
    elapsed = task.displayed_elapsed_ms()
    if task.is_running:
        parts.append(f"(running {format_duration(elapsed)})")
    elif elapsed:
        parts.append(f"({format_duration(elapsed)})")
    if task.sync_error:
        parts.append("[sync error]")
    return "  ".join(parts)


def _resolve(state: AppState, ref: str) -> TaskEntity | None:
    """A 1-based index into the active view, or an id prefix."""
    col = state.collection
    if ref.isdigit():
        active = col.active()
        idx = int(ref) - 1
        return active[idx] if 0 <= idx < len(active) else None
    matches = [t for t in col.all() if t.id.startswith(ref)]
    return matches[0] if len(matches) == 1 else None


# ---- commands ----


def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


def cmd_add(state: AppState, args: list[str]) -> str:
    title = " ".join(args).strip()
    if not title:
        return "Usage: /add <title>"
    task = state.collection.add(title)
    return f"Added: {task.title}"


def cmd_list(state: AppState, args: list[str]) -> str:
    col = state.collection
    mode = args[0].lower() if args else "active"

    if mode in ("done", "completed"):
        done = col.completed()
        if not done:
            return "No completed tasks."
        return "Completed:\n" + "\n".join(_format_task(None, t) for t in done)

    if mode in ("groups", "grouped"):
        lines: list[str] = []
        index = {t.id: i for i, t in enumerate(col.active(), start=1)}
        for group in col.grouped_tasks():
            lines.append(f"{group.label}:")
            lines.extend(_format_task(index.get(t.id), t) for t in group.tasks)
        return "\n".join(lines) if lines else "No tasks."

    active = col.active()
    if not active:
        return "No active tasks. Use /add <title>."
    return "Tasks:\n" + "\n".join(_format_task(i, t) for i, t in enumerate(active, start=1))


def cmd_done(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /done <n>"
    task = _resolve(state, args[0])
    if task is None:
        return f"No task {args[0]}."
    follow_up = state.collection.toggle_complete(task.id)
    verb = "Completed" if task.is_completed else "Reopened"
    msg = f"{verb}: {task.title}"
    if follow_up is not None and follow_up.due_at is not None:
        msg += f" (next on {follow_up.due_at.strftime('%Y-%m-%d')})"
    return msg


def cmd_rm(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /rm <n>"
    task = _resolve(state, args[0])
    if task is None:
        return f"No task {args[0]}."
    state.collection.remove(task.id)
    return f'Deleted "{task.title}". Use /undo to restore.'


def cmd_undo(state: AppState, args: list[str]) -> str:
    if state.collection.undo():
        return "Undone."
    return "Nothing to undo."


def cmd_timer(state: AppState, args: list[str]) -> str:
    """
    /timer <n>   -> start/pause the timer of task n
    /timer stop  -> pause whatever is running
    """
    col = state.collection
    if not args:
        running = col.running_task
        if running is None:
            return "No timer running."
        return f"Running: {running.title} {format_duration(running.displayed_elapsed_ms())}"

    if args[0].lower() in ("stop", "pause"):
        n = col.pause_all_timers()
        return "Paused." if n else "No timer running."

    task = _resolve(state, args[0])
    if task is None:
        return f"No task {args[0]}."
    if col.toggle_timer(task.id):
        return f"Started: {task.title}"
    return f"Paused: {task.title} ({format_duration(task.accumulated_time)})"


def cmd_move(state: AppState, args: list[str]) -> str:
    if len(args) != 2 or not all(a.isdigit() for a in args):
        return "Usage: /move <from> <to>"
    if state.collection.reorder(int(args[0]) - 1, int(args[1]) - 1):
        return "Moved."
    return "Nothing moved."


def cmd_prio(state: AppState, args: list[str]) -> str:
    if len(args) != 2:
        return "Usage: /prio <n> high|medium|low|none"
    task = _resolve(state, args[0])
    if task is None:
        return f"No task {args[0]}."
    try:
        prio = Priority.from_raw(args[1])
    except ValueError:
        return "Priority must be one of: high, medium, low, none."
    state.collection.update_task(task.id, {"priority": prio})
    return f"Priority of {task.title}: {prio.value}"


def cmd_due(state: AppState, args: list[str]) -> str:
    if len(args) != 2:
        return "Usage: /due <n> YYYY-MM-DD|none"
    task = _resolve(state, args[0])
    if task is None:
        return f"No task {args[0]}."
    if args[1].lower() == "none":
        state.collection.update_task(task.id, {"due_at": None})
        return f"Cleared due date of {task.title}."
    try:
        day = datetime.strptime(args[1], "%Y-%m-%d")
    except ValueError:
        return "Date must look like 2025-01-31."
    due = day.replace(hour=23, minute=59).astimezone()
    state.collection.update_task(task.id, {"due_at": due})
    return f"Due date of {task.title}: {args[1]}"


def cmd_tag(state: AppState, args: list[str]) -> str:
    """
    /tag <n> <tag>     -> add a tag to task n
    /tag -<n> <tag>    -> remove it again
    /tag delete <tag>  -> delete a tag everywhere (undoable)
    """
    if len(args) != 2:
        return "Usage: /tag <n> <tag> | /tag -<n> <tag> | /tag delete <tag>"
    col = state.collection
    if args[0].lower() == "delete":
        if col.delete_tag(args[1]) is None:
            return f"No tag {args[1]}."
        return f'Deleted tag "{args[1].lower()}". Use /undo to restore.'

    remove = args[0].startswith("-")
    task = _resolve(state, args[0].lstrip("-"))
    if task is None:
        return f"No task {args[0]}."
    if remove:
        return "Tag removed." if col.remove_tag_from_task(task.id, args[1]) else "Tag not on task."
    return "Tag added." if col.add_tag_to_task(task.id, args[1]) else "Tag not added."


def cmd_group(state: AppState, args: list[str]) -> str:
    if not args:
        return f"Grouping: {state.collection.display_config.group_by.value}"
    try:
        group_by = GroupBy(args[0].lower())
    except ValueError:
        return "Usage: /group none|priority|date"
    state.collection.set_display_config(group_by=group_by.value)
    return f"Grouping: {group_by.value}"


def cmd_clear(state: AppState, args: list[str]) -> str:
    action = state.collection.clear_completed()
    if action is None:
        return "No completed tasks."
    return f"{action.label}. Use /undo to restore."


def cmd_stats(state: AppState, args: list[str]) -> str:
    s = state.collection.stats()
    lines = [
        "Stats:",
        f"  Tasks: {s.total_tasks} (active {s.active_tasks}, done {s.completed_tasks}, overdue {s.overdue_tasks})",
        f"  Time tracked: {format_duration(s.total_time_ms)} / estimated {format_duration(s.estimated_time_ms)}",
        f"  Completion rate: {s.completion_rate:.0f}%",
    ]
    if s.tag_counts:
        tags = ", ".join(f"#{k} {v}" for k, v in sorted(s.tag_counts.items()))
        lines.append(f"  Tags: {tags}")
    return "\n".join(lines)


def cmd_status(state: AppState, args: list[str]) -> str:
    col = state.collection
    owner = col.owner_id or "-"
    remote = "none" if state.remote is None else type(state.remote).__name__
    err = col.persistence_error or "-"
    return (
        "Status:\n"
        f"  Owner: {owner}\n"
        f"  Remote: {remote}\n"
        f"  Sync: {col.sync_state}\n"
        f"  Local save error: {err}\n"
        f"  Time: {local_now().strftime('%Y-%m-%d %H:%M:%S')}"
    )


async def cmd_login(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if state.sync is None:
        return "No remote store configured (set CHRONOS_REMOTE_MODE=memory)."
    if not args:
        return "Usage: /login <owner_id>"
    if emit:
        emit(f"[SYNC] Attaching {args[0]}...")
    ok = await state.sync.attach(args[0])
    return f"Logged in as {args[0]}." + ("" if ok else " Sync reported errors.")


def cmd_logout(state: AppState, args: list[str]) -> str:
    if state.sync is None or state.collection.owner_id is None:
        return "Not logged in."
    state.sync.detach()
    return "Logged out. Working locally."


async def cmd_sync(state: AppState, args: list[str]) -> str:
    if state.sync is None or state.collection.owner_id is None:
        return "Not logged in."
    ok = await state.sync.force_sync()
    return "Synced." if ok else f"Sync finished with errors: {state.sync.last_error}"


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("add", cmd_add, help_text="Add a task: /add <title>.", aliases=["a"])
registry.register("list", cmd_list, help_text="List tasks: /list [done|groups].", aliases=["ls"])
registry.register("done", cmd_done, help_text="Toggle completion: /done <n>.")
registry.register("rm", cmd_rm, help_text="Delete a task: /rm <n>.", aliases=["del"])
registry.register("undo", cmd_undo, help_text="Undo the last destructive action.", aliases=["u"])
registry.register("timer", cmd_timer, help_text="Start/pause a timer: /timer <n> | /timer stop.", aliases=["t"])
registry.register("move", cmd_move, help_text="Reorder active tasks: /move <from> <to>.")
registry.register("prio", cmd_prio, help_text="Set priority: /prio <n> high|medium|low|none.")
registry.register("due", cmd_due, help_text="Set due date: /due <n> YYYY-MM-DD|none.")
registry.register("tag", cmd_tag, help_text="Tags: /tag <n> <tag> | /tag -<n> <tag> | /tag delete <tag>.")
registry.register("group", cmd_group, help_text="Group the list: /group none|priority|date.")
registry.register("clear", cmd_clear, help_text="Delete all completed tasks (undoable).")
registry.register("stats", cmd_stats, help_text="Show task statistics.")
registry.register("status", cmd_status, help_text="Show owner, remote and sync state.")
registry.register("login", cmd_login, help_text="Attach an owner and sync: /login <owner_id>.")
registry.register("logout", cmd_logout, help_text="Detach the owner (stay local).")
registry.register("sync", cmd_sync, help_text="Force a sync now.")
