"""
Execution engine for genplan.

WHAT THIS FILE DOES:
-------------------
Takes a GenerationPlan and turns it into real files. Operations are applied
strictly in plan order, one at a time, and only after the approval state
machine said so.

EXECUTION FLOW:
--------------
    GenerationPlan
           │
           ▼
    1. Branch: new-branch strategy + git repository -> create/switch branch
           │   (failure is recorded, generation continues)
           ▼
    2. For each operation:
    ├── ApprovalStateMachine.request()  -> approve / skip / edit / auto
    ├── approve or auto: write or remove the file
    ├── skip or edit: record as skipped (edit adds a note)
    └── any exception: record "Failed to process <path>: <reason>", go on
           │
           ▼
    3. Commit: auto_commit + something was touched -> stage exactly those
           │   files and commit; then push if auto_push and a remote exists
           ▼
    GenerationResult with every path accounted for, plus an event timeline

There is no rollback. A failure in the middle leaves earlier files written
and later operations still offered for approval.
"""

import logging
from datetime import datetime
from typing import Optional

from approval import ApprovalStateMachine, DecisionCallback
from config import GitConfig
from errors import ApplyFailure, VersionControlError
from git_manager import GitManager
from schemas import (
    Decision,
    ExecutionEvent,
    FileOperation,
    GenerationPlan,
    GenerationResult,
    GitStrategy,
    OperationKind,
)
from workspace import ProjectWorkspace

logger = logging.getLogger(__name__)


class ExecutionEngine:
    """
    Applies generation plans to a project.

    This is the central coordinator that:
    1. Prepares the feature branch
    2. Drives the approval loop over every operation
    3. Writes and removes files through the workspace
    4. Commits what was touched
    5. Records everything in the result's event timeline
    """

    def __init__(
        self,
        workspace: ProjectWorkspace,
        git_manager: Optional[GitManager] = None,
        git_config: Optional[GitConfig] = None
    ):
        """
        Args:
            workspace: Project files to operate on
            git_manager: Git wrapper; None disables every git step
            git_config: Commit/branch behaviour (defaults to the manager's)
        """
        self.workspace = workspace
        self.git_manager = git_manager
        if git_config is None:
            git_config = git_manager.config if git_manager else GitConfig()
        self.git_config = git_config

        self._result: Optional[GenerationResult] = None

    async def execute_plan(
        self,
        plan: GenerationPlan,
        decide: DecisionCallback,
        start_in_auto: bool = False
    ) -> GenerationResult:
        """
        Execute a complete plan.

        Args:
            plan: The plan to execute (read only)
            decide: Decision callback, see ApprovalStateMachine
            start_in_auto: Apply everything without asking

        Returns:
            GenerationResult; success is False only if an operation failed
        """
        result = GenerationResult()
        self._result = result
        self._add_event("execution_started", None, plan.summary)

        await self._prepare_branch(plan, result)

        machine = ApprovalStateMachine(decide, start_in_auto=start_in_auto)
        total = len(plan.operations)

        for index, operation in enumerate(plan.operations, 1):
            try:
                decision = await machine.request(operation, index, total)

                if decision in (Decision.APPROVE, Decision.AUTO):
                    self._apply_operation(operation, result)
                elif decision == Decision.EDIT:
                    result.files_skipped.append(operation.path)
                    result.notes.append(
                        f"Editing is not supported yet; skipped {operation.path}"
                    )
                    self._add_event("operation_skipped", operation.path, "edit requested")
                else:
                    result.files_skipped.append(operation.path)
                    self._add_event("operation_skipped", operation.path, "skipped by reviewer")

            except Exception as e:
                failure = e if isinstance(e, ApplyFailure) else ApplyFailure(operation.path, str(e))
                logger.error(str(failure))
                result.errors.append(str(failure))
                result.success = False
                self._add_event("operation_failed", operation.path, failure.reason)

        machine.terminate()

        await self._commit_changes(plan, result)

        self._add_event(
            "execution_completed",
            None,
            f"{len(result.touched_files)} touched, {len(result.files_skipped)} skipped, "
            f"{len(result.errors)} error(s)"
        )
        return result

    # =========================================================================
    # FILE OPERATIONS
    # =========================================================================

    def _apply_operation(self, operation: FileOperation, result: GenerationResult) -> None:
        """
        Write or remove one file.

        Raises:
            ApplyFailure: If the filesystem refused
        """
        path = operation.path

        if operation.placeholder and self.workspace.exists(path):
            result.files_skipped.append(path)
            result.notes.append(f"No content was generated for {path}; existing file left untouched")
            self._add_event("operation_skipped", path, "placeholder for existing file")
            return

        try:
            if operation.kind == OperationKind.DELETE:
                if not self.workspace.exists(path):
                    raise ApplyFailure(path, "file does not exist")
                self.workspace.delete_file(path)
                result.files_deleted.append(path)
            else:
                self.workspace.write_file(path, operation.content)
                if operation.kind == OperationKind.CREATE:
                    result.files_created.append(path)
                else:
                    result.files_modified.append(path)
        except OSError as e:
            raise ApplyFailure(path, e.strerror or str(e)) from e

        self._add_event("operation_applied", path, operation.kind.value)

    # =========================================================================
    # VERSION CONTROL
    # =========================================================================

    async def _prepare_branch(self, plan: GenerationPlan, result: GenerationResult) -> None:
        if plan.git_strategy != GitStrategy.NEW_BRANCH or not self.git_manager:
            return

        if not await self.git_manager.is_git_repository():
            logger.info("Not a git repository; skipping branch creation")
            return

        try:
            result.branch_created = await self.git_manager.create_branch(plan.branch_name)
            self._add_event("branch_created", None, plan.branch_name)
        except (VersionControlError, OSError) as e:
            logger.warning(f"Git branch creation failed: {e}")
            result.errors.append(f"Git branch creation failed: {e}")
            self._add_event("branch_failed", None, str(e))

    async def _commit_changes(self, plan: GenerationPlan, result: GenerationResult) -> None:
        touched = result.touched_files
        if not (self.git_config.auto_commit and touched and self.git_manager):
            return

        if not await self.git_manager.is_git_repository():
            return

        message = self.git_manager.generate_commit_message(
            plan.feature, touched, any_created=bool(result.files_created)
        )

        try:
            result.git_commit = await self.git_manager.commit(message, touched)
            self._add_event("committed", None, result.git_commit)
        except (VersionControlError, OSError) as e:
            logger.warning(f"Git commit failed: {e}")
            result.errors.append(f"Git commit failed: {e}")
            self._add_event("commit_failed", None, str(e))
            return

        if not self.git_config.auto_push:
            return

        try:
            status = await self.git_manager.get_status()
            if not status.has_remote:
                logger.info("No remote configured; skipping push")
                return
            await self.git_manager.push(status.remote_name, status.current_branch)
            self._add_event("pushed", None, f"{status.remote_name}/{status.current_branch}")
        except (VersionControlError, OSError) as e:
            logger.warning(f"Git push failed: {e}")
            result.errors.append(f"Git push failed: {e}")
            self._add_event("push_failed", None, str(e))

    def _add_event(self, event_type: str, path: Optional[str], details: str) -> None:
        """Add an event to the current result's timeline."""
        if self._result is not None:
            self._result.events.append(ExecutionEvent(
                timestamp=datetime.now(),
                event_type=event_type,
                path=path,
                details=details
            ))


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

async def execute_plan_interactive(
    plan: GenerationPlan,
    workspace: ProjectWorkspace,
    git_manager: Optional[GitManager] = None,
    git_config: Optional[GitConfig] = None,
    decide: Optional[DecisionCallback] = None
) -> GenerationResult:
    """
    Execute a plan asking the user about every operation.

    Args:
        plan: The plan to execute
        workspace: Project files
        git_manager: Git wrapper (optional)
        git_config: Git behaviour (optional)
        decide: Decision callback; defaults to the rich terminal prompt

    Returns:
        GenerationResult with full details
    """
    if decide is None:
        from ui import prompt_decision
        decide = prompt_decision

    engine = ExecutionEngine(workspace, git_manager, git_config)
    return await engine.execute_plan(plan, decide)


async def execute_plan_headless(
    plan: GenerationPlan,
    workspace: ProjectWorkspace,
    git_manager: Optional[GitManager] = None,
    git_config: Optional[GitConfig] = None
) -> GenerationResult:
    """
    Execute a plan without interaction (for automation and the MCP server).

    Every operation is auto-approved.
    """
    engine = ExecutionEngine(workspace, git_manager, git_config)
    return await engine.execute_plan(plan, lambda op, i, n: Decision.AUTO, start_in_auto=True)
