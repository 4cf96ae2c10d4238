"""
Rich terminal UI components for genplan.

WHY THIS FILE EXISTS:
--------------------
The CLI needs to show plans, previews, diffs and todo lists in a readable
way, and it needs a human decision channel for the approval loop. Rich
provides the panels, tables, syntax highlighting and prompts.

DESIGN PRINCIPLES:
-----------------
1. Consistent styling across all displays
2. Color-coded operation kinds and todo statuses
3. Nothing here changes state; every function only renders or asks

COMPONENTS:
----------
- show_generation_plan() - Plan summary and operation table
- show_file_preview()    - First lines of an operation's content
- show_diff()            - Unified diff of a modify operation
- prompt_decision()      - The approval prompt (y/n/e/a/d)
- show_completion_summary() - What happened to every path
- show_todo_list(), show_checkpoints(), show_git_status()
"""

import difflib
from datetime import datetime
from typing import Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.syntax import Syntax
from rich.table import Table

from approval import parse_response
from schemas import (
    Checkpoint,
    Decision,
    FileOperation,
    GenerationPlan,
    GenerationResult,
    GitStatus,
    OperationKind,
    Todo,
    TodoGroup,
    TodoProgress,
)

# Global console instance for consistent output
console = Console()


# =============================================================================
# COLOR SCHEMES
# =============================================================================

KIND_STYLES = {
    OperationKind.CREATE: ("green", "+"),
    OperationKind.MODIFY: ("yellow", "~"),
    OperationKind.DELETE: ("red", "-"),
}

PRIORITY_COLORS = {
    "low": "green",
    "medium": "yellow",
    "high": "red",
}

STATUS_COLORS = {
    "completed": "green",
    "in_progress": "yellow",
    "pending": "dim",
    "skipped": "blue",
    "blocked": "red",
}

STATUS_ICONS = {
    "completed": "✓",
    "in_progress": "▶",
    "pending": "○",
    "skipped": "⏭",
    "blocked": "✗",
}


# =============================================================================
# HEADER/SECTION UTILITIES
# =============================================================================

def show_header(title: str, subtitle: str = "") -> None:
    """Display a styled header."""
    console.print()
    console.rule(f"[bold blue]{title}[/bold blue]")
    if subtitle:
        console.print(f"[dim]{subtitle}[/dim]", justify="center")
    console.print()


def show_success(message: str) -> None:
    console.print(f"[green]✓[/green] {message}")


def show_error(message: str) -> None:
    console.print(f"[red]✗[/red] {message}")


def show_warning(message: str) -> None:
    console.print(f"[yellow]⚠[/yellow] {message}")


def show_info(message: str) -> None:
    console.print(f"[blue]ℹ[/blue] {message}")


def show_thinking(message: str = "Thinking..."):
    """
    Context manager that shows a spinner while processing.

    Usage:
        with show_thinking("Generating..."):
            response = await provider.complete(messages)
    """
    return console.status(f"[bold blue]{message}[/bold blue]", spinner="dots")


def format_time_ago(timestamp: datetime, now: Optional[datetime] = None) -> str:
    """
    Human friendly age of a timestamp.

    Example:
        format_time_ago(two_hours_ago) -> "2 hours ago"
    """
    seconds = int(((now or datetime.now()) - timestamp).total_seconds())
    if seconds < 60:
        return "just now"

    for unit, size in (("day", 86400), ("hour", 3600), ("minute", 60)):
        if seconds >= size:
            count = seconds // size
            return f"{count} {unit}{'s' if count != 1 else ''} ago"

    return "just now"


# =============================================================================
# PLAN DISPLAY
# =============================================================================

def show_generation_plan(plan: GenerationPlan) -> None:
    """
    Display a generation plan.

    Args:
        plan: The GenerationPlan to display
    """
    show_header("Generation Plan", plan.summary)

    if plan.is_empty:
        console.print("[dim]No file operations were found in the generated text.[/dim]")
        return

    table = Table(box=box.ROUNDED, show_header=True, header_style="bold")
    table.add_column("#", justify="right", style="cyan", width=3)
    table.add_column("Kind", justify="center")
    table.add_column("Path")
    table.add_column("Lines", justify="right", style="dim")
    table.add_column("Description", style="dim")

    for i, op in enumerate(plan.operations, 1):
        color, _ = KIND_STYLES[op.kind]
        kind = f"[{color}]{op.kind.value}[/{color}]"
        path = f"{op.path} [dim](placeholder)[/dim]" if op.placeholder else op.path
        table.add_row(str(i), kind, path, str(op.estimated_lines), op.description)

    console.print(table)

    if plan.branch_name:
        console.print(f"\n[bold]Branch:[/bold] {plan.branch_name}")
    else:
        console.print("\n[bold]Branch:[/bold] current branch")

    if plan.estimated_cost > 0:
        console.print(f"[bold]Estimated Cost:[/bold] ${plan.estimated_cost:.4f}")


def show_file_preview(operation: FileOperation, max_lines: int = 20) -> None:
    """Show the first lines of what an operation would write."""
    color, _ = KIND_STYLES[operation.kind]
    title = f"[{color}]{operation.path}[/{color}] ({operation.kind.value.upper()})"

    if operation.kind == OperationKind.DELETE:
        console.print(Panel("[red]File will be removed[/red]", title=title, border_style=color))
        return

    lines = operation.content.splitlines()
    preview = "\n".join(lines[:max_lines])
    lexer = Syntax.guess_lexer(operation.path, code=operation.content)

    console.print(Panel(
        Syntax(preview or " ", lexer, line_numbers=True, word_wrap=True),
        title=title,
        border_style=color,
        box=box.ROUNDED
    ))

    if len(lines) > max_lines:
        console.print(f"[dim]... and {len(lines) - max_lines} more lines[/dim]")


def render_diff(operation: FileOperation) -> str:
    """Unified diff between the file on disk at parse time and the new content."""
    before = (operation.prior_content or "").splitlines(keepends=True)
    after = "" if operation.kind == OperationKind.DELETE else operation.content
    return "".join(difflib.unified_diff(
        before,
        after.splitlines(keepends=True),
        fromfile=f"a/{operation.path}",
        tofile=f"b/{operation.path}",
    ))


def show_diff(operation: FileOperation) -> None:
    diff = render_diff(operation)
    if not diff:
        console.print("[dim]No changes.[/dim]")
        return
    console.print(Syntax(diff, "diff", word_wrap=True))


# =============================================================================
# APPROVAL PROMPT
# =============================================================================

def prompt_decision(
    operation: FileOperation,
    index: int,
    total: int,
    show_preview: bool = True,
    preview_lines: int = 20,
    offer_diff: bool = True
) -> Decision:
    """
    Ask the user what to do with one operation.

    Accepts y/yes, n/no/s/skip, e/edit, a/auto/auto-mode, and d/diff which
    shows the diff and asks again.

    Returns:
        The chosen Decision
    """
    console.print(f"\n[cyan]⚡ Step {index}/{total}:[/cyan] {operation.description}")

    if show_preview:
        show_file_preview(operation, preview_lines)

    options = "[green](y)es[/green]/[red](n)o[/red]/[yellow](e)dit[/yellow]/[blue](a)uto[/blue]"
    can_diff = offer_diff and operation.kind != OperationKind.CREATE
    if can_diff:
        options += "/[cyan](d)iff[/cyan]"

    action = {
        OperationKind.CREATE: "Create",
        OperationKind.MODIFY: "Modify",
        OperationKind.DELETE: "Delete",
    }[operation.kind]

    while True:
        response = Prompt.ask(f"[bold]{action} this file?[/bold] {options}", default="y")
        normalized = response.strip().lower()

        if can_diff and normalized in ("d", "diff"):
            show_diff(operation)
            continue

        decision = parse_response(normalized)
        if decision is not None:
            if decision == Decision.AUTO:
                console.print("[yellow]Auto mode enabled - applying remaining files...[/yellow]")
            return decision

        console.print("[red]Invalid response. Please enter y/n/e/a/d or use the full words.[/red]")


def confirm_generation(plan: GenerationPlan) -> bool:
    """Ask whether to start reviewing the plan's operations."""
    return Confirm.ask(
        f"[bold]Review and apply {len(plan.operations)} operation(s)?[/bold]",
        default=True
    )


def confirm_exit() -> bool:
    """Asked after Ctrl+C."""
    return Confirm.ask("\n[bold yellow]Exit genplan?[/bold yellow]", default=True)


# =============================================================================
# RESULT DISPLAY
# =============================================================================

def show_completion_summary(result: GenerationResult, tree: Optional[str] = None) -> None:
    """
    Display what happened to every path.

    Args:
        result: The GenerationResult to display
        tree: Optional tree view of touched files
    """
    status = "COMPLETE" if result.success else "COMPLETED WITH ERRORS"
    show_header(f"Generation {status}")

    sections = [
        ("Created", result.files_created, "green", "+"),
        ("Modified", result.files_modified, "yellow", "~"),
        ("Deleted", result.files_deleted, "red", "-"),
        ("Skipped", result.files_skipped, "dim", "·"),
    ]

    for label, paths, color, marker in sections:
        if not paths:
            continue
        console.print(f"[bold]{label} ({len(paths)}):[/bold]")
        for path in paths:
            console.print(f"  [{color}]{marker}[/{color}] {path}")

    if tree and result.touched_files:
        console.print(f"\n[dim]{tree}[/dim]")

    if result.branch_created:
        console.print(f"\n[bold]Branch:[/bold] {result.branch_created}")
    if result.git_commit:
        console.print(f"[bold]Commit:[/bold] {result.git_commit}")

    for note in result.notes:
        show_info(note)

    if result.errors:
        console.print(f"\n[bold red]Errors ({len(result.errors)}):[/bold red]")
        for error in result.errors:
            show_error(error)


# =============================================================================
# TODO DISPLAY
# =============================================================================

def _status_label(status: str) -> str:
    color = STATUS_COLORS.get(status, "white")
    icon = STATUS_ICONS.get(status, "?")
    return f"[{color}]{icon} {status}[/{color}]"


def show_todo(todo: Todo) -> None:
    """Display one todo in detail."""
    body = f"[bold]{todo.title}[/bold]"
    if todo.description:
        body += f"\n\n{todo.description}"
    body += f"\n\n[dim]id {todo.id} · {todo.priority.value} priority · {_status_label(todo.status.value)}[/dim]"
    console.print(Panel(body, border_style="cyan", box=box.ROUNDED))


def show_todo_list(groups: list[TodoGroup], progress: Optional[TodoProgress] = None) -> None:
    """
    Display every group with its todos.

    Args:
        groups: Ledger groups in order
        progress: Optional overall progress line
    """
    if not groups:
        console.print("[dim]No todos yet.[/dim]")
        return

    for group in groups:
        table = Table(
            box=box.ROUNDED,
            show_header=True,
            header_style="bold",
            title=f"[bold]{group.title}[/bold] {_status_label(group.status.value)}"
        )
        table.add_column("ID", style="cyan")
        table.add_column("Status")
        table.add_column("Priority", justify="center")
        table.add_column("Title")
        table.add_column("Depends on", style="dim")

        for todo in group.todos:
            priority_color = PRIORITY_COLORS.get(todo.priority.value, "white")
            table.add_row(
                todo.id,
                _status_label(todo.status.value),
                f"[{priority_color}]{todo.priority.value}[/{priority_color}]",
                todo.title,
                ", ".join(todo.dependencies) or "-"
            )

        console.print(table)

    if progress:
        console.print(
            f"\n[bold]Progress:[/bold] {progress.completed}/{progress.total} "
            f"({progress.percentage}%) · ~{progress.estimated_tokens_remaining:,} tokens remaining"
        )


def show_checkpoints(checkpoints: list[Checkpoint]) -> None:
    if not checkpoints:
        console.print("[dim]No checkpoints found.[/dim]")
        return

    table = Table(box=box.ROUNDED, show_header=True, header_style="bold")
    table.add_column("ID", style="cyan")
    table.add_column("Title")
    table.add_column("Session", style="dim")
    table.add_column("Todos", justify="right")
    table.add_column("Created", style="dim")

    for checkpoint in checkpoints:
        todo_count = sum(len(g.todos) for g in checkpoint.todo_groups)
        table.add_row(
            checkpoint.id,
            checkpoint.title,
            checkpoint.session_id,
            str(todo_count),
            format_time_ago(checkpoint.timestamp)
        )

    console.print(table)


def show_git_status(status: GitStatus) -> None:
    """Display repository status."""
    if not status.is_git_repo:
        show_error("Not a git repository")
        return

    show_success("Git repository detected")
    console.print(f"[blue]Current branch:[/blue] {status.current_branch}")

    if status.has_remote:
        console.print(f"[blue]Remote:[/blue] {status.remote_name} ({status.remote_url})")
        tracking = []
        if status.ahead:
            tracking.append(f"[green]{status.ahead} ahead[/green]")
        if status.behind:
            tracking.append(f"[red]{status.behind} behind[/red]")
        if tracking:
            console.print(f"[yellow]Status:[/yellow] {', '.join(tracking)}")
    else:
        console.print("[yellow]Remote:[/yellow] Not configured")

    if status.has_uncommitted_changes:
        show_warning("Uncommitted changes detected")
    else:
        show_success("Working directory clean")
