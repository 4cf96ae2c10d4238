#!/usr/bin/env python3
"""
genplan CLI - reviewable, resumable code generation.

This is the main entry point for the genplan command-line interface. It wraps
the parser, the execution engine and the task ledger with a rich terminal UI.

USAGE:
------
  genplan build "login form"                 - Generate, review and apply a feature
  genplan build "login form" --from-file r.md - Use saved model output instead
  genplan build "login form" --yes            - Apply without asking
  genplan todo list | add | start | done | skip | block
  genplan continue                            - Resume the most relevant todo
  genplan checkpoint create | list | delete | restore
  genplan git-status

WORKFLOW:
--------
  1. Text      - ask the configured model (or read --from-file)
  2. Plan      - parse file operations, build a GenerationPlan
  3. Review    - approve / skip / edit / auto, one operation at a time
  4. Apply     - write files, branch and commit
  5. Track     - one todo per operation, checkpoint after the build
"""

import argparse
import asyncio
import logging
import signal
import sys
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Optional

from checkpoints import CheckpointManager
from config import Config, load_config
from content_parser import ContentParser
from costs import CostTracker, estimate_cost, estimate_tokens
from errors import GenplanError
from execution import ExecutionEngine
from git_manager import GitManager
from ledger import TodoLedger
from plan_builder import PlanBuilder
from providers import BUILD_SYSTEM_PROMPT, build_messages, get_provider
from safety import DirectorySafety, find_project_root
from schemas import TodoPriority
from workspace import ProjectWorkspace
import ui

logger = logging.getLogger("genplan")


# =============================================================================
# CLI ARGUMENT PARSING
# =============================================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="genplan",
        description="Turn generated text into reviewed, resumable file changes",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  genplan build "add a login form"
  genplan build "add a login form" --from-file answer.md --yes
  genplan todo add "Write tests" --priority high
  genplan continue
  genplan checkpoint create "before refactor"
        """
    )

    parser.add_argument(
        "--root",
        type=Path,
        help="Project root (default: discovered from the current directory)"
    )
    parser.add_argument(
        "--session",
        help="Ledger session id (default: the last session used in this project)"
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Path to a config YAML file"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Show debug logging"
    )
    parser.add_argument(
        "--version",
        action="version",
        version="genplan 0.1.0"
    )

    commands = parser.add_subparsers(dest="command")

    # build
    build = commands.add_parser("build", help="Generate and apply a feature")
    build.add_argument("feature", help="Feature description")
    build.add_argument(
        "-f", "--from-file",
        type=Path,
        help="Read generated text from a file instead of calling a model"
    )
    build.add_argument(
        "-y", "--yes",
        action="store_true",
        help="Apply every operation without asking"
    )

    # todo
    todo = commands.add_parser("todo", help="Manage todos")
    todo_commands = todo.add_subparsers(dest="todo_command")
    todo_commands.add_parser("list", help="List todos")

    todo_add = todo_commands.add_parser("add", help="Add a todo")
    todo_add.add_argument("title")
    todo_add.add_argument("-d", "--description")
    todo_add.add_argument(
        "-p", "--priority",
        choices=[p.value for p in TodoPriority],
        default=TodoPriority.MEDIUM.value
    )
    todo_add.add_argument("--tokens", type=int, help="Estimated tokens")
    todo_add.add_argument("--depends", nargs="+", default=[], metavar="ID")
    todo_add.add_argument("--tag", action="append", default=[], dest="tags")

    for name, help_text in (("start", "Start a todo"), ("done", "Complete a todo")):
        sub = todo_commands.add_parser(name, help=help_text)
        sub.add_argument("id")
        if name == "done":
            sub.add_argument("--tokens", type=int, help="Actual tokens used")

    for name, help_text in (("skip", "Skip a todo"), ("block", "Mark a todo blocked")):
        sub = todo_commands.add_parser(name, help=help_text)
        sub.add_argument("id")
        sub.add_argument("-r", "--reason")

    # continue
    commands.add_parser("continue", help="Resume the in-progress or next todo")

    # checkpoint
    checkpoint = commands.add_parser("checkpoint", help="Manage checkpoints")
    checkpoint_commands = checkpoint.add_subparsers(dest="checkpoint_command")

    cp_create = checkpoint_commands.add_parser("create", help="Snapshot the ledger")
    cp_create.add_argument("title")
    cp_create.add_argument("-d", "--description")

    cp_list = checkpoint_commands.add_parser("list", help="List checkpoints")
    cp_list.add_argument("--all", action="store_true", help="Include other sessions")

    for name, help_text in (("delete", "Delete a checkpoint"), ("restore", "Restore the ledger")):
        sub = checkpoint_commands.add_parser(name, help=help_text)
        sub.add_argument("id")

    # git-status / costs
    commands.add_parser("git-status", help="Show repository status")
    commands.add_parser("costs", help="Show today's spending")

    return parser


# =============================================================================
# CONTEXT
# =============================================================================

@dataclass
class GenplanContext:
    """Everything a command needs, built once per invocation."""
    root: Path
    config: Config
    store_dir: Path
    session_id: str
    workspace: ProjectWorkspace
    ledger: TodoLedger
    checkpoints: CheckpointManager
    costs: CostTracker
    git: GitManager


def resolve_session_id(store_dir: Path, requested: Optional[str]) -> str:
    """
    The session to use: explicit, else the last one used, else a new one.

    The chosen id is remembered in <store>/session.
    """
    marker = store_dir / "session"
    if requested:
        session_id = requested
    elif marker.exists() and marker.read_text().strip():
        return marker.read_text().strip()
    else:
        session_id = str(uuid.uuid4())[:8]

    store_dir.mkdir(parents=True, exist_ok=True)
    marker.write_text(session_id + "\n")
    return session_id


def build_context(args: argparse.Namespace) -> GenplanContext:
    root = Path(args.root).resolve() if args.root else find_project_root()
    config = load_config(args.config, project_root=root)
    store_dir = config.storage.path_for(root)
    session_id = resolve_session_id(store_dir, args.session)

    return GenplanContext(
        root=root,
        config=config,
        store_dir=store_dir,
        session_id=session_id,
        workspace=ProjectWorkspace(root, DirectorySafety(root)),
        ledger=TodoLedger(store_dir, session_id),
        checkpoints=CheckpointManager(store_dir),
        costs=CostTracker(store_dir, session_id),
        git=GitManager(root, config.git),
    )


class InterruptGuard:
    """
    SIGINT handler for one CLI run.

    asyncio.run() would otherwise turn Ctrl+C into a silent cancellation of
    the running command. Instead:

    - Inside a blocking prompt (see raising()), Ctrl+C raises
      KeyboardInterrupt so the prompt wrapper can ask before quitting.
    - Anywhere else the user is asked right away. Declining resumes the
      command; confirming cancels it at its next await, so a file write that
      is already running always completes.

    A second Ctrl+C at the exit question counts as yes.
    """

    def __init__(self):
        self.task: Optional[asyncio.Task] = None
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self.prompting = False
        self._previous = None

    def install(self) -> None:
        """Take over SIGINT. Must run in the main thread, before asyncio.run()."""
        self._previous = signal.signal(signal.SIGINT, self)

    def restore(self) -> None:
        if self._previous is not None:
            signal.signal(signal.SIGINT, self._previous)
            self._previous = None

    def attach(self) -> None:
        """Remember the running command so a confirmed interrupt can cancel it."""
        self.task = asyncio.current_task()
        self.loop = asyncio.get_running_loop()

    def detach(self) -> None:
        self.task = None
        self.loop = None

    @contextmanager
    def raising(self):
        """Let Ctrl+C raise KeyboardInterrupt inside a blocking prompt."""
        previous = self.prompting
        self.prompting = True
        try:
            yield
        finally:
            self.prompting = previous

    def ask_exit(self) -> bool:
        with self.raising():
            try:
                confirmed = ui.confirm_exit()
            except KeyboardInterrupt:
                confirmed = True
        return confirmed

    def __call__(self, signum, frame) -> None:
        if self.prompting:
            raise KeyboardInterrupt
        if not self.ask_exit():
            return
        if self.task is not None and not self.task.done():
            self.task.cancel()
            # Wake the loop if it is waiting in select()
            self.loop.call_soon_threadsafe(lambda: None)
            return
        raise KeyboardInterrupt


interrupts = InterruptGuard()


def interruptible(decide, guard: Optional[InterruptGuard] = None):
    """
    Wrap a blocking prompt so Ctrl+C asks before quitting.

    Declining the exit asks the same question again.
    """
    guard = guard or interrupts

    def wrapper(*args, **kwargs):
        while True:
            try:
                with guard.raising():
                    return decide(*args, **kwargs)
            except KeyboardInterrupt:
                if guard.ask_exit():
                    raise
    return wrapper


# =============================================================================
# COMMANDS
# =============================================================================

async def generate_text(ctx: GenplanContext, feature: str) -> tuple[str, float]:
    """
    Ask the configured model for the feature.

    Returns:
        (response text, cost in USD)
    """
    generation = ctx.config.generation
    messages = build_messages(feature, ctx.workspace.safety.get_safe_file_list())

    prompt_tokens = estimate_tokens(BUILD_SYSTEM_PROMPT + messages[0]["content"])
    projected = estimate_cost(generation.model, prompt_tokens, generation.max_tokens)
    if not ctx.costs.check_daily_limit(ctx.config.costs.daily_limit, projected):
        raise GenplanError(
            f"Daily cost limit of ${ctx.config.costs.daily_limit:.2f} would be exceeded"
        )

    provider = get_provider(ctx.config.to_provider_config(), generation.model)
    with ui.show_thinking(f"Generating {feature}..."):
        response = await provider.complete(
            messages,
            system=BUILD_SYSTEM_PROMPT,
            max_tokens=generation.max_tokens,
            temperature=generation.temperature
        )

    usage = ctx.costs.record(generation.model, response["input_tokens"], response["output_tokens"])
    return response["content"], usage.cost


async def run_build(ctx: GenplanContext, feature: str, from_file: Optional[Path], yes: bool) -> int:
    ui.show_header(f"genplan build: {feature}", f"Project: {ctx.root}")

    if from_file:
        if not from_file.exists():
            ui.show_error(f"File not found: {from_file}")
            return 1
        text = from_file.read_text()
        cost = 0.0
        ui.show_info(f"Loaded generated text from: {from_file}")
    else:
        text, cost = await generate_text(ctx, feature)

    operations = ContentParser(ctx.workspace).parse(text)
    plan = PlanBuilder(ctx.config.git).build(feature, operations, cost_estimate=cost)
    ui.show_generation_plan(plan)

    if plan.is_empty:
        return 0

    auto = yes or ctx.config.approval.auto_mode
    if not auto and not interruptible(ui.confirm_generation)(plan):
        ui.show_warning("Generation cancelled")
        return 0

    group = ctx.ledger.track_plan(plan)

    decide = interruptible(partial(
        ui.prompt_decision,
        show_preview=ctx.config.approval.show_preview,
        preview_lines=ctx.config.approval.preview_lines,
        offer_diff=ctx.config.approval.show_diff
    ))
    engine = ExecutionEngine(ctx.workspace, ctx.git, ctx.config.git)
    result = await engine.execute_plan(plan, decide, start_in_auto=auto)

    ctx.ledger.record_result(group.id, plan, result)
    ctx.checkpoints.create(
        ctx.session_id,
        f"After build: {feature}",
        ctx.ledger,
        description=plan.summary,
        last_command=f"build {feature}",
        context_files=result.touched_files,
        working_directory=ctx.root,
    )

    ui.show_completion_summary(result, ctx.workspace.get_structure(result.touched_files))
    return 0 if result.success else 1


def run_todo(ctx: GenplanContext, args: argparse.Namespace) -> int:
    ledger = ctx.ledger
    command = args.todo_command or "list"

    if command == "list":
        ui.show_todo_list(ledger.groups, ledger.get_progress())
        return 0

    if command == "add":
        todo = ledger.add_todo(
            args.title,
            description=args.description,
            priority=TodoPriority(args.priority),
            estimated_tokens=args.tokens,
            dependencies=args.depends,
            tags=args.tags,
        )
        ui.show_success(f"Added todo {todo.id}: {todo.title}")
        return 0

    if command == "start":
        todo = ledger.start_todo(args.id)
    elif command == "done":
        todo = ledger.complete_todo(args.id, actual_tokens=args.tokens)
    elif command == "skip":
        todo = ledger.skip_todo(args.id, reason=args.reason)
    else:
        todo = ledger.block_todo(args.id, reason=args.reason)

    ui.show_success(f"{todo.title}: {todo.status.value}")
    return 0


def run_continue(ctx: GenplanContext) -> int:
    todo = ctx.ledger.continue_from_checkpoint()
    if todo is None:
        ui.show_info("Nothing left to do")
        return 0

    ui.show_todo(todo)
    progress = ctx.ledger.get_progress()
    ui.console.print(f"[dim]{progress.completed}/{progress.total} done ({progress.percentage}%)[/dim]")
    return 0


def run_checkpoint(ctx: GenplanContext, args: argparse.Namespace) -> int:
    manager = ctx.checkpoints
    command = args.checkpoint_command or "list"

    if command == "create":
        checkpoint = manager.create(
            ctx.session_id,
            args.title,
            ctx.ledger,
            description=args.description,
            last_command="checkpoint create",
            working_directory=ctx.root,
        )
        ui.show_success(f"Created checkpoint {checkpoint.id}")
        return 0

    if command == "list":
        ui.show_checkpoints(manager.list_all(None if args.all else ctx.session_id))
        return 0

    if command == "delete":
        if manager.delete(args.id):
            ui.show_success(f"Deleted checkpoint {args.id}")
            return 0
        ui.show_error(f"Checkpoint not found: {args.id}")
        return 1

    checkpoint = manager.load(args.id)
    ctx.ledger.restore(checkpoint)
    ui.show_success(f"Restored ledger from {checkpoint.title}")
    return 0


async def async_main(args: argparse.Namespace, ctx: GenplanContext) -> int:
    """
    Dispatch a parsed command.

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    interrupts.attach()
    try:
        if args.command == "build":
            return await run_build(ctx, args.feature, args.from_file, args.yes)
        if args.command == "todo":
            return run_todo(ctx, args)
        if args.command == "continue":
            return run_continue(ctx)
        if args.command == "checkpoint":
            return run_checkpoint(ctx, args)
        if args.command == "git-status":
            ui.show_git_status(await ctx.git.get_status())
            return 0
        if args.command == "costs":
            ctx.costs.records = [r for r in ctx.costs.load_history() if r.session_id == ctx.session_id]
            ui.console.print(ctx.costs.format_summary())
            return 0
    except (GenplanError, FileNotFoundError, KeyError) as e:
        ui.show_error(str(e))
        if args.verbose:
            logger.exception("Command failed")
        return 1
    finally:
        interrupts.detach()

    return 0


def main() -> None:
    """Main entry point for the CLI."""
    parser = create_parser()
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr
    )

    if not args.command:
        parser.print_help()
        sys.exit(0)

    try:
        ctx = build_context(args)
    except (GenplanError, FileNotFoundError) as e:
        ui.show_error(str(e))
        sys.exit(1)

    interrupts.install()
    try:
        exit_code = asyncio.run(async_main(args, ctx))
    except (KeyboardInterrupt, asyncio.CancelledError):
        # Only raised once the user confirmed the exit; cost records are
        # appended as they happen, so the ledger is all that needs flushing
        ui.show_warning("Interrupted")
        ctx.ledger.save()
        sys.exit(130)
    finally:
        interrupts.restore()

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
