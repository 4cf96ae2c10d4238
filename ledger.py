"""
Task ledger for genplan.

WHY THIS FILE EXISTS:
--------------------
A feature build is rarely finished in one sitting. The ledger records the
logical steps of the work as todos, grouped per build, so that a later
`genplan continue` can pick up the most relevant pending step.

- Which todos exist, in which group
- Which one is being worked on right now (at most one)
- Which one should come next, respecting priorities and dependencies

PERSISTENCE:
-----------
One JSON file per session at <store>/todos/<session_id>.json. Every mutation
writes the whole file back (write-through) via a temp file and os.replace(),
so a crash mid-save leaves the previous version. An unreadable file is treated as
an empty ledger with a warning; it is overwritten by the next mutation.

TODO LIFECYCLE:
--------------
    pending ──> in_progress ──> completed
       │             ├────────> skipped
       │             └────────> blocked
       └──────> skipped / blocked

Terminal statuses (completed, skipped, blocked) never change again.
"""

import json
import logging
import os
import random
import string
from datetime import datetime
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from costs import estimate_tokens
from errors import InvalidTransitionError, LedgerCorruptionError, TodoNotFoundError
from schemas import (
    PRIORITY_WEIGHT,
    Checkpoint,
    GenerationPlan,
    GenerationResult,
    Todo,
    TodoGroup,
    TodoPriority,
    TodoProgress,
    TodoStatus,
)

logger = logging.getLogger(__name__)


DEFAULT_GROUP_TITLE = "Default Tasks"

# Used for progress estimates when a todo has no token estimate
DEFAULT_TODO_TOKENS = 1000

ID_ALPHABET = string.ascii_lowercase + string.digits


# Valid todo status transitions
TODO_TRANSITIONS = {
    TodoStatus.PENDING: [TodoStatus.IN_PROGRESS, TodoStatus.SKIPPED, TodoStatus.BLOCKED],
    TodoStatus.IN_PROGRESS: [TodoStatus.COMPLETED, TodoStatus.SKIPPED, TodoStatus.BLOCKED],
    TodoStatus.COMPLETED: [],
    TodoStatus.SKIPPED: [],
    TodoStatus.BLOCKED: [],
}


def generate_id(length: int = 9) -> str:
    """Short random id, e.g. 'k3j9x0a1b'."""
    return "".join(random.choices(ID_ALPHABET, k=length))


def can_transition(current: TodoStatus, target: TodoStatus) -> bool:
    """Check if a todo status transition is valid."""
    return target in TODO_TRANSITIONS.get(current, [])


def write_json_atomic(path: Path, data: dict) -> None:
    """
    Replace path with data serialized as JSON.

    The payload goes to a sibling .tmp file first and is moved over the target
    with os.replace(), so a crash mid-write leaves the previous file intact.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    try:
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, default=str)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        if tmp_path.exists():
            tmp_path.unlink()
        raise


class TodoLedger:
    """
    Persistent, dependency-aware todo list for one session.

    Usage:
        ledger = TodoLedger(Path(".genplan"), "abc12345")
        ledger.create_group("Login form")
        first = ledger.add_todo("Create the form component", priority=TodoPriority.HIGH)
        ledger.add_todo("Wire the route", dependencies=[first.id])

        # Later, possibly in another process...
        todo = TodoLedger(Path(".genplan"), "abc12345").continue_from_checkpoint()
    """

    def __init__(self, store_dir: Path, session_id: str):
        """
        Args:
            store_dir: Storage directory (usually <project>/.genplan)
            session_id: Ledger to open; created on first mutation
        """
        self.store_dir = Path(store_dir)
        self.session_id = session_id
        self.path = self.store_dir / "todos" / f"{session_id}.json"

        self._groups: list[TodoGroup] = []
        self.current_group_id: Optional[str] = None
        self.current_todo_id: Optional[str] = None

        try:
            self._load()
        except LedgerCorruptionError as e:
            logger.warning(f"Ignoring unreadable ledger {self.path}: {e}")
            self._groups = []
            self.current_group_id = None
            self.current_todo_id = None

    # =========================================================================
    # PERSISTENCE
    # =========================================================================

    def _load(self) -> None:
        """
        Read the ledger file if it exists.

        Raises:
            LedgerCorruptionError: If the file cannot be parsed or validated
        """
        if not self.path.exists():
            return

        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
            groups = [TodoGroup.model_validate(g) for g in data.get("groups", [])]
            current_group_id = data.get("current_group_id")
        except (OSError, ValueError, ValidationError, AttributeError, TypeError) as e:
            raise LedgerCorruptionError(str(e)) from e

        self._groups = groups
        self.current_group_id = current_group_id
        self._sync_current_todo()

    def save(self) -> None:
        """Write the whole ledger to disk, replacing the previous file atomically."""
        data = {
            "session_id": self.session_id,
            "updated_at": datetime.now().isoformat(),
            "current_group_id": self.current_group_id,
            "current_todo_id": self.current_todo_id,
            "groups": [group.model_dump(mode="json") for group in self._groups],
        }
        write_json_atomic(self.path, data)

    def _sync_current_todo(self) -> None:
        """Point current_todo_id at the in-progress todo found in the data."""
        in_progress = [t for t in self.all_todos() if t.status == TodoStatus.IN_PROGRESS]
        if len(in_progress) > 1:
            logger.warning(
                f"Ledger {self.session_id} has {len(in_progress)} todos in progress; "
                f"resuming {in_progress[0].id}"
            )
        self.current_todo_id = in_progress[0].id if in_progress else None

    # =========================================================================
    # QUERIES
    # =========================================================================

    @property
    def groups(self) -> list[TodoGroup]:
        return list(self._groups)

    def all_todos(self) -> list[Todo]:
        """Every todo in ledger order (group order, then position)."""
        return [todo for group in self._groups for todo in group.todos]

    def get_group(self, group_id: str) -> Optional[TodoGroup]:
        return next((g for g in self._groups if g.id == group_id), None)

    def _find(self, todo_id: str) -> tuple[TodoGroup, Todo]:
        for group in self._groups:
            for todo in group.todos:
                if todo.id == todo_id:
                    return group, todo
        raise TodoNotFoundError(todo_id)

    def get_todo(self, todo_id: str) -> Todo:
        """
        Raises:
            TodoNotFoundError: If no todo has this id
        """
        return self._find(todo_id)[1]

    def get_current_todo(self) -> Optional[Todo]:
        """The in-progress todo, if any."""
        if not self.current_todo_id:
            return None
        return self.get_todo(self.current_todo_id)

    def _dependencies_met(self, todo: Todo, completed_ids: set[str]) -> bool:
        return all(dep in completed_ids for dep in todo.dependencies)

    def get_next_todo(self) -> Optional[Todo]:
        """
        The pending todo to work on next.

        Only todos whose dependencies are all completed are eligible.
        Highest priority first, then earliest created_at, then ledger order.
        """
        todos = self.all_todos()
        completed_ids = {t.id for t in todos if t.status == TodoStatus.COMPLETED}

        eligible = [
            t for t in todos
            if t.status == TodoStatus.PENDING and self._dependencies_met(t, completed_ids)
        ]
        if not eligible:
            return None

        # sorted() is stable, so equal keys keep ledger order
        eligible = sorted(eligible, key=lambda t: (-PRIORITY_WEIGHT[t.priority], t.created_at))
        return eligible[0]

    def get_progress(self, group_id: Optional[str] = None) -> TodoProgress:
        """
        Counts for one group, or for the whole ledger.

        Raises:
            KeyError: If group_id is given but unknown
        """
        if group_id is None:
            todos = self.all_todos()
        else:
            group = self.get_group(group_id)
            if group is None:
                raise KeyError(f"Group with id {group_id} not found")
            todos = group.todos

        def count(status: TodoStatus) -> int:
            return sum(1 for t in todos if t.status == status)

        total = len(todos)
        completed = count(TodoStatus.COMPLETED)
        remaining = [t for t in todos if not t.is_terminal]

        return TodoProgress(
            total=total,
            completed=completed,
            in_progress=count(TodoStatus.IN_PROGRESS),
            pending=count(TodoStatus.PENDING),
            skipped=count(TodoStatus.SKIPPED),
            blocked=count(TodoStatus.BLOCKED),
            percentage=round(completed / total * 100) if total else 0,
            estimated_tokens_remaining=sum(
                t.estimated_tokens if t.estimated_tokens is not None else DEFAULT_TODO_TOKENS
                for t in remaining
            ),
        )

    def pending_count(self) -> int:
        """Todos still waiting or being worked on."""
        return sum(1 for t in self.all_todos() if not t.is_terminal)

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    def create_group(
        self,
        title: str,
        description: Optional[str] = None,
        estimated_tokens: Optional[float] = None
    ) -> TodoGroup:
        """Create a group and make it the active one."""
        group = TodoGroup(
            id=generate_id(),
            title=title,
            description=description,
            estimated_tokens=estimated_tokens,
        )
        self._groups.append(group)
        self.current_group_id = group.id
        self.save()
        return group

    def add_todo(
        self,
        title: str,
        description: Optional[str] = None,
        priority: TodoPriority = TodoPriority.MEDIUM,
        estimated_tokens: Optional[int] = None,
        dependencies: Optional[list[str]] = None,
        tags: Optional[list[str]] = None,
        group_id: Optional[str] = None
    ) -> Todo:
        """
        Append a todo to the given group, the active group, or a new
        "Default Tasks" group.

        Raises:
            KeyError: If group_id is given but unknown
        """
        if group_id is not None:
            group = self.get_group(group_id)
            if group is None:
                raise KeyError(f"Group with id {group_id} not found")
        else:
            group = self.get_group(self.current_group_id) if self.current_group_id else None
            if group is None:
                group = self.create_group(DEFAULT_GROUP_TITLE)

        todo = Todo(
            id=generate_id(),
            title=title,
            description=description,
            priority=TodoPriority(priority),
            estimated_tokens=estimated_tokens,
            dependencies=list(dependencies or []),
            tags=list(tags or []),
        )
        group.todos.append(todo)
        self._touch(group)
        self.save()
        return todo

    def update_status(
        self,
        todo_id: str,
        status: TodoStatus,
        actual_tokens: Optional[int] = None
    ) -> Todo:
        """
        Move a todo to a new status.

        Raises:
            TodoNotFoundError: If no todo has this id
            InvalidTransitionError: If the transition is not allowed, or
                                    another todo is already in progress
        """
        status = TodoStatus(status)
        group, todo = self._find(todo_id)

        if not can_transition(todo.status, status):
            raise InvalidTransitionError(
                f"Invalid todo transition: {todo.status.value} -> {status.value}. "
                f"Allowed: {[s.value for s in TODO_TRANSITIONS[todo.status]]}"
            )

        if status == TodoStatus.IN_PROGRESS and self.current_todo_id not in (None, todo_id):
            raise InvalidTransitionError(
                f"Todo {self.current_todo_id} is already in progress"
            )

        todo.status = status
        todo.updated_at = datetime.now()
        if actual_tokens is not None:
            todo.actual_tokens = actual_tokens

        if status == TodoStatus.IN_PROGRESS:
            self.current_todo_id = todo_id
        elif self.current_todo_id == todo_id:
            self.current_todo_id = None

        self._touch(group)
        self.save()
        return todo

    def start_todo(self, todo_id: str) -> Todo:
        return self.update_status(todo_id, TodoStatus.IN_PROGRESS)

    def complete_todo(self, todo_id: str, actual_tokens: Optional[int] = None) -> Todo:
        return self.update_status(todo_id, TodoStatus.COMPLETED, actual_tokens)

    def skip_todo(self, todo_id: str, reason: Optional[str] = None) -> Todo:
        if reason:
            self._annotate(todo_id, f"[SKIPPED: {reason}]")
        return self.update_status(todo_id, TodoStatus.SKIPPED)

    def block_todo(self, todo_id: str, reason: Optional[str] = None) -> Todo:
        if reason:
            self._annotate(todo_id, f"[BLOCKED: {reason}]")
        return self.update_status(todo_id, TodoStatus.BLOCKED)

    def _annotate(self, todo_id: str, note: str) -> None:
        _, todo = self._find(todo_id)
        if todo.is_terminal:
            return
        todo.description = f"{todo.description}\n{note}" if todo.description else note

    def continue_from_checkpoint(self) -> Optional[Todo]:
        """
        Resume work.

        Returns:
            The in-progress todo if there is one; otherwise the next eligible
            pending todo, now started; otherwise None
        """
        current = self.get_current_todo()
        if current is not None:
            return current

        next_todo = self.get_next_todo()
        if next_todo is None:
            return None

        return self.start_todo(next_todo.id)

    # =========================================================================
    # PLAN TRACKING
    # =========================================================================

    def track_plan(self, plan: GenerationPlan) -> TodoGroup:
        """
        Create a group with one todo per plan operation, in plan order.

        Returns:
            The new (active) group
        """
        group = self.create_group(
            f"Build: {plan.feature}",
            description=plan.summary,
            estimated_tokens=sum(estimate_tokens(op.content) for op in plan.operations),
        )
        for operation in plan.operations:
            self.add_todo(
                operation.description or f"{operation.kind.value} {operation.path}",
                description=operation.path,
                priority=TodoPriority.MEDIUM if operation.placeholder else TodoPriority.HIGH,
                estimated_tokens=estimate_tokens(operation.content),
                tags=[operation.kind.value],
                group_id=group.id,
            )
        return group

    def record_result(self, group_id: str, plan: GenerationPlan, result: GenerationResult) -> TodoGroup:
        """
        Settle a tracked plan's todos from its execution result.

        Applied operations complete, skipped ones are skipped and failed ones
        are blocked with the error message.
        """
        group = self.get_group(group_id)
        if group is None:
            raise KeyError(f"Group with id {group_id} not found")

        touched = set(result.touched_files)
        skipped = set(result.files_skipped)

        for todo, operation in zip(group.todos, plan.operations):
            if todo.is_terminal:
                continue

            if operation.path in touched:
                if todo.status == TodoStatus.PENDING:
                    self._set_status(todo, TodoStatus.IN_PROGRESS)
                self._set_status(todo, TodoStatus.COMPLETED)
            elif operation.path in skipped:
                self._set_status(todo, TodoStatus.SKIPPED)
            else:
                prefix = f"Failed to process {operation.path}:"
                error = next((e for e in result.errors if e.startswith(prefix)), None)
                if error:
                    self._annotate(todo.id, f"[BLOCKED: {error}]")
                self._set_status(todo, TodoStatus.BLOCKED)

        self._touch(group)
        self.save()
        return group

    def _set_status(self, todo: Todo, status: TodoStatus) -> None:
        if not can_transition(todo.status, status):
            raise InvalidTransitionError(
                f"Invalid todo transition: {todo.status.value} -> {status.value}"
            )
        todo.status = status
        todo.updated_at = datetime.now()
        if self.current_todo_id == todo.id and status != TodoStatus.IN_PROGRESS:
            self.current_todo_id = None

    def restore(self, checkpoint: Checkpoint) -> None:
        """Replace every group with the checkpoint's snapshot."""
        self._groups = [group.model_copy(deep=True) for group in checkpoint.todo_groups]
        self.current_group_id = self._groups[-1].id if self._groups else None
        self._sync_current_todo()
        self.save()
        logger.info(f"Restored ledger {self.session_id} from {checkpoint.id}")

    def _touch(self, group: TodoGroup) -> None:
        group.status = group.derive_status()
        group.updated_at = datetime.now()
