"""
main.py - Taskforge Entry Point

Usage:
    taskforge run "Summarise the README" --goal "A five-line summary"
    taskforge run "..." --config path/to/config.yaml --log-level DEBUG
    python -m taskforge.main run "..."
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel

from taskforge.agent.events import EventKind
from taskforge.agent.synthesizer import build_result_message
from taskforge.agent.types import AgentError, ExecutionResult, ProgressEvent, ProgressEventType

console = Console()

_EVENT_STYLE = {
    ProgressEventType.STEP_START: "cyan",
    ProgressEventType.STEP_COMPLETE: "green",
    ProgressEventType.STEP_ERROR: "red",
    ProgressEventType.STATUS_CHANGE: "magenta",
    ProgressEventType.PROGRESS_UPDATE: "blue",
}


def _find_env_file() -> Optional[Path]:
    """Walk up from CWD looking for a .env file."""
    cwd = Path.cwd()
    for d in [cwd, *cwd.parents]:
        candidate = d / ".env"
        if candidate.is_file():
            return candidate
    return None


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="taskforge",
        description="Taskforge - autonomous ReAct task execution agent",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run one task to completion")
    run.add_argument("task", help="What the agent should do")
    run.add_argument("--goal", default=None, help="Success criterion (default: the task itself)")
    run.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: $TASKFORGE_CONFIG or config/config.yaml)",
    )
    run.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override log level from config",
    )
    return parser.parse_args(argv)


def bootstrap(args: argparse.Namespace):
    """
    Load config, validate it fully, and set up logging.
    Returns (settings, log). Exits with code 1 on invalid configuration.
    """
    from pydantic import ValidationError

    from taskforge.config.settings import ConfigError, load_settings
    from taskforge.observability.logger import get_logger, setup_logging

    try:
        settings = load_settings(args.config)
    except ValidationError as exc:
        problems = "\n".join(
            f"  • {'.'.join(str(p) for p in e['loc']) if e['loc'] else '?'}: {e['msg']}"
            for e in exc.errors()
        )
        print(
            f"\n❌  Config validation failed:\n\n{problems}\n\n"
            f"    Fix config/config.yaml or your .env file and restart.\n",
            file=sys.stderr,
        )
        sys.exit(1)
    except (OSError, ValueError) as exc:
        print(f"\n❌  Failed to load config: {type(exc).__name__}: {exc}\n", file=sys.stderr)
        sys.exit(1)

    try:
        settings.validate_all()
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(1)

    setup_logging(
        level=args.log_level or settings.log_level,
        log_dir=settings.log_dir,
        json_format=settings.logging.json_format,
        console_output=settings.logging.console_output,
        max_bytes=settings.logging.max_file_size_mb * 1024 * 1024,
        backup_count=settings.logging.backup_count,
    )
    return settings, get_logger("taskforge.main")


def _render_progress(event: ProgressEvent) -> None:
    style = _EVENT_STYLE.get(event.type, "white")
    console.print(
        f"[{style}]{event.progress:5.1f}%[/{style}] "
        f"[dim]{event.type.value:<15}[/dim] {event.message}"
    )


def _render_error(error: AgentError) -> None:
    console.print(f"[red]✗ {error.message}[/red] [dim]{error.details}[/dim]")


def _render_result(result: ExecutionResult) -> None:
    style = "green" if result.success else "red"
    title = "Task completed" if result.success else "Task did not complete"
    console.print(Panel(Markdown(build_result_message(result)), title=title, border_style=style))
    conclusion = result.task_conclusion or {}
    answer = conclusion.get("userResponse") or conclusion.get("user_response")
    if answer:
        console.print(Panel(str(answer), title="Answer", border_style="blue"))


async def run_task(args: argparse.Namespace) -> int:
    from taskforge.exceptions import SessionTimeoutError
    from taskforge.kernel.bootstrap import build_agent_stack

    settings, log = bootstrap(args)
    stack = build_agent_stack(settings)
    conversation_id = stack.conversations.create()

    goal = args.goal or args.task
    log.info("taskforge.run", task=args.task[:80], conversation_id=conversation_id)
    session_id = await stack.sessions.start_task(args.task, goal, conversation_id)
    console.print(f"[bold]Session[/bold] {session_id}: {args.task}")

    async def _follow() -> None:
        async for event in stack.sessions.subscribe(session_id):
            if event.kind == EventKind.PROGRESS:
                _render_progress(event.payload)
            elif event.kind == EventKind.ERROR:
                _render_error(event.payload)

    # The engine never enforces its own wall-clock timeout; race it here.
    timeout = settings.agent.timeout_seconds
    try:
        await asyncio.wait_for(_follow(), timeout)
        result = await stack.sessions.wait_for_result(session_id, timeout=1.0)
    except (asyncio.TimeoutError, SessionTimeoutError):
        log.warning("taskforge.timeout", session_id=session_id, timeout_seconds=timeout)
        console.print(f"[yellow]Timed out after {timeout:.0f}s, stopping the session.[/yellow]")
        stack.sessions.stop_session(session_id)
        await stack.sessions.shutdown(timeout=30.0)
        return 2

    _render_result(result)
    await stack.sessions.shutdown()
    return 0 if result.success else 1


def main(argv: Optional[list[str]] = None) -> int:
    env_path = _find_env_file()
    if env_path:
        load_dotenv(dotenv_path=env_path)

    args = parse_args(argv)
    try:
        if args.command == "run":
            return asyncio.run(run_task(args))
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted.[/yellow]")
        return 130
    return 1


if __name__ == "__main__":
    sys.exit(main())
