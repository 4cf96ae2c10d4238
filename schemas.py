"""
Pydantic schemas for genplan.

WHY THIS FILE EXISTS:
--------------------
Everything that flows between the parser, the plan builder, the approval
loop, the execution engine and the task ledger is defined here, once.

Generated text is untrusted. By the time anything reaches these models it
has been parsed, safety-checked and validated, so the rest of the code can
work with typed objects instead of loose dicts.

TWO FAMILIES OF MODELS:
----------------------
1. Generation models - FileOperation, GenerationPlan, GenerationResult.
   Plans and operations are FROZEN: once built they are only read.

2. Ledger models - Todo, TodoGroup, Checkpoint.
   These are persisted as JSON (model_dump(mode="json")) and loaded back
   with model_validate().
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


# =============================================================================
# FILE OPERATION SCHEMAS
# =============================================================================

class OperationKind(str, Enum):
    """What an operation does to its target file."""
    CREATE = "create"
    MODIFY = "modify"
    DELETE = "delete"


class FileOperation(BaseModel):
    """
    One file mutation extracted from generated text.

    Example:
        FileOperation(
            path="src/auth/login.py",
            kind=OperationKind.CREATE,
            content="def login(user): ...\\n",
            description="Create Python module login.py",
            estimated_lines=1
        )
    """
    model_config = ConfigDict(frozen=True)

    path: str = Field(
        description="Path relative to the project root, POSIX separators"
    )
    kind: OperationKind = Field(
        description="create, modify or delete"
    )
    content: str = Field(
        default="",
        description="Full file content to write (ignored for delete)"
    )
    prior_content: Optional[str] = Field(
        default=None,
        description="Content on disk when the plan was parsed (modify only)"
    )
    description: str = Field(
        default="",
        description="Human readable one-liner, e.g. 'Create Python module app.py'"
    )
    estimated_lines: int = Field(
        default=0,
        ge=0,
        description="Line count of the content, for display only"
    )
    placeholder: bool = Field(
        default=False,
        description="True when the operation was inferred from prose and has no generated body"
    )


class GitStrategy(str, Enum):
    """Where generated changes land."""
    NEW_BRANCH = "new-branch"
    CURRENT_BRANCH = "current-branch"


class GenerationPlan(BaseModel):
    """
    An ordered, immutable set of file operations for one feature.

    The operation order is the order the parser found them in and is never
    re-sorted. branch_name is present if and only if the strategy is
    NEW_BRANCH.
    """
    model_config = ConfigDict(frozen=True)

    feature: str = Field(description="Feature label the plan was built for")
    operations: tuple[FileOperation, ...] = Field(
        default=(),
        description="Operations in parse order"
    )
    estimated_cost: float = Field(
        default=0.0,
        ge=0.0,
        description="Estimated cost in USD"
    )
    git_strategy: GitStrategy = Field(
        default=GitStrategy.CURRENT_BRANCH,
        description="Version control strategy"
    )
    branch_name: Optional[str] = Field(
        default=None,
        description="Feature branch name (new-branch strategy only)"
    )
    summary: str = Field(default="", description="Deterministic one-line summary")

    @model_validator(mode="after")
    def branch_matches_strategy(self) -> "GenerationPlan":
        """branch_name must be set exactly when a new branch is requested."""
        wants_branch = self.git_strategy == GitStrategy.NEW_BRANCH
        if wants_branch and not self.branch_name:
            raise ValueError("new-branch strategy requires a branch_name")
        if not wants_branch and self.branch_name:
            raise ValueError("branch_name is only allowed with the new-branch strategy")
        return self

    @property
    def create_count(self) -> int:
        return sum(1 for op in self.operations if op.kind == OperationKind.CREATE)

    @property
    def modify_count(self) -> int:
        return sum(1 for op in self.operations if op.kind == OperationKind.MODIFY)

    @property
    def delete_count(self) -> int:
        return sum(1 for op in self.operations if op.kind == OperationKind.DELETE)

    @property
    def total_lines(self) -> int:
        return sum(op.estimated_lines for op in self.operations)

    @property
    def is_empty(self) -> bool:
        """An empty plan means 'nothing to generate', not an error."""
        return not self.operations


# =============================================================================
# APPROVAL SCHEMAS
# =============================================================================

class Decision(str, Enum):
    """A reviewer's answer for one operation."""
    APPROVE = "approve"   # Apply this operation
    EDIT = "edit"         # Not implemented yet: degrades to skip with a note
    SKIP = "skip"         # Leave the file untouched
    AUTO = "auto"         # Apply this and every remaining operation


class ApprovalState(str, Enum):
    """States of the per-plan approval loop."""
    IDLE = "idle"
    AWAITING_DECISION = "awaiting_decision"
    AUTO_APPROVE = "auto_approve"
    TERMINATED = "terminated"


# =============================================================================
# EXECUTION RESULT SCHEMAS
# =============================================================================

class ExecutionEvent(BaseModel):
    """
    A single event in the execution timeline.

    Used to build an audit trail of what happened to each operation.
    """
    timestamp: datetime = Field(
        default_factory=datetime.now,
        description="When this event occurred"
    )
    event_type: str = Field(
        description="branch_created, operation_applied, operation_skipped, operation_failed, ..."
    )
    path: Optional[str] = Field(
        default=None,
        description="Operation path if the event concerns one file"
    )
    details: str = Field(default="", description="Event details")


class GenerationResult(BaseModel):
    """
    Outcome of executing a GenerationPlan.

    Built incrementally by the execution engine. success flips to False only
    when applying an operation failed; skipped files and version control
    errors leave it untouched.
    """
    success: bool = Field(default=True, description="False if any operation errored")
    files_created: list[str] = Field(default_factory=list)
    files_modified: list[str] = Field(default_factory=list)
    files_deleted: list[str] = Field(default_factory=list)
    files_skipped: list[str] = Field(default_factory=list)
    errors: list[str] = Field(
        default_factory=list,
        description="Operation and version control error messages"
    )
    notes: list[str] = Field(
        default_factory=list,
        description="Non-error diagnostics (e.g. edit requests that were skipped)"
    )
    branch_created: Optional[str] = Field(default=None)
    git_commit: Optional[str] = Field(
        default=None,
        description="Commit message of the auto-commit, if one was made"
    )
    events: list[ExecutionEvent] = Field(default_factory=list)

    @property
    def touched_files(self) -> list[str]:
        """Every path that was written or removed, in result order."""
        return self.files_created + self.files_modified + self.files_deleted


# =============================================================================
# TASK LEDGER SCHEMAS
# =============================================================================

class TodoStatus(str, Enum):
    """Lifecycle of a single todo."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    BLOCKED = "blocked"


class TodoPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# Terminal statuses are never resumed and never left
TERMINAL_TODO_STATUSES = frozenset({
    TodoStatus.COMPLETED,
    TodoStatus.SKIPPED,
    TodoStatus.BLOCKED,
})

PRIORITY_WEIGHT = {
    TodoPriority.HIGH: 3,
    TodoPriority.MEDIUM: 2,
    TodoPriority.LOW: 1,
}


class Todo(BaseModel):
    """
    One logical implementation step.

    Example:
        Todo(
            id="k3j9x0a1b",
            title="Wire the login route",
            priority=TodoPriority.HIGH,
            dependencies=["a81kd0e2c"]
        )
    """
    id: str = Field(description="Short random identifier")
    title: str = Field(description="What needs doing")
    description: Optional[str] = Field(default=None)
    status: TodoStatus = Field(default=TodoStatus.PENDING)
    priority: TodoPriority = Field(default=TodoPriority.MEDIUM)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
    estimated_tokens: Optional[int] = Field(default=None, ge=0)
    actual_tokens: Optional[int] = Field(default=None, ge=0)
    dependencies: list[str] = Field(
        default_factory=list,
        description="Ids of todos that must be completed first"
    )
    tags: list[str] = Field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_TODO_STATUSES


class GroupStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class TodoGroup(BaseModel):
    """
    An ordered list of todos, usually one per feature build.

    status is derived from the members by derive_status() and refreshed by
    the ledger on every mutation.
    """
    id: str
    title: str
    description: Optional[str] = None
    todos: list[Todo] = Field(default_factory=list)
    status: GroupStatus = Field(default=GroupStatus.PENDING)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
    estimated_tokens: Optional[float] = Field(default=None, ge=0)

    def derive_status(self) -> GroupStatus:
        """
        completed   - every member completed
        in_progress - some member in progress or completed, but not all completed
        pending     - otherwise (including an empty group)
        """
        if not self.todos:
            return GroupStatus.PENDING

        statuses = [t.status for t in self.todos]
        if all(s == TodoStatus.COMPLETED for s in statuses):
            return GroupStatus.COMPLETED
        if any(s in (TodoStatus.IN_PROGRESS, TodoStatus.COMPLETED) for s in statuses):
            return GroupStatus.IN_PROGRESS
        return GroupStatus.PENDING


class TodoProgress(BaseModel):
    """Counts for a group or the whole ledger."""
    total: int = 0
    completed: int = 0
    in_progress: int = 0
    pending: int = 0
    skipped: int = 0
    blocked: int = 0
    percentage: int = 0
    estimated_tokens_remaining: int = 0


class ProjectState(BaseModel):
    """Where the user was when a checkpoint was taken."""
    model_config = ConfigDict(frozen=True)

    working_directory: str
    last_command: Optional[str] = None
    context_files: tuple[str, ...] = ()


class Checkpoint(BaseModel):
    """
    Immutable point-in-time snapshot of a ledger.

    Checkpoints are written once and deleted explicitly; nothing ever
    updates one in place.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    session_id: str
    timestamp: datetime = Field(default_factory=datetime.now)
    title: str
    description: Optional[str] = None
    todo_groups: tuple[TodoGroup, ...] = ()
    project_state: ProjectState


# =============================================================================
# VERSION CONTROL SCHEMAS
# =============================================================================

class GitStatus(BaseModel):
    """Repository summary used by the engine and the status display."""
    is_git_repo: bool = False
    current_branch: str = ""
    has_remote: bool = False
    remote_name: Optional[str] = None
    remote_url: Optional[str] = None
    has_uncommitted_changes: bool = False
    ahead: int = 0
    behind: int = 0


# =============================================================================
# COST SCHEMAS
# =============================================================================

class UsageRecord(BaseModel):
    """One line of the append-only usage log."""
    timestamp: datetime = Field(default_factory=datetime.now)
    session_id: str
    model: str
    input_tokens: int = Field(ge=0)
    output_tokens: int = Field(ge=0)
    cost: float = Field(ge=0.0)
