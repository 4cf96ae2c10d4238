#!/usr/bin/env python3
"""
MCP Server for genplan - reviewable code generation for agents.

IMPORTANT: Never print to stdout - it breaks JSON-RPC communication.
All logging must go to stderr.

This server exposes genplan's planning and tracking via MCP tools:
- genplan_preview: Parse generated text into a plan without touching files
- genplan_apply: Parse and apply generated text, tracking it in the ledger
- genplan_todos: Show the session's todos and progress
- genplan_continue: Resume the in-progress or next todo
- genplan_checkpoint: Snapshot the session's ledger

Agents produce the text themselves; there is no interactive review here, so
genplan_apply approves every operation. Call genplan_preview first.

To run:
    python mcp_server.py
"""

import sys
import json
import logging
from pathlib import Path
from typing import Optional

# CRITICAL: Configure logging to stderr BEFORE any other imports
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    stream=sys.stderr
)
logger = logging.getLogger("genplan-mcp")

# MCP imports
from mcp.server.fastmcp import FastMCP

from checkpoints import CheckpointManager
from cli import resolve_session_id
from config import load_config
from content_parser import ContentParser
from execution import execute_plan_headless
from git_manager import GitManager
from ledger import TodoLedger
from plan_builder import PlanBuilder
from safety import DirectorySafety, find_project_root
from workspace import ProjectWorkspace

# Create MCP server
mcp = FastMCP("genplan")


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def _open_project(root: str = "", session: str = ""):
    """
    Load config, workspace and ledger for a project.

    Returns:
        (config, workspace, ledger, store_dir)
    """
    project_root = Path(root).resolve() if root else find_project_root()
    config = load_config(project_root=project_root)
    store_dir = config.storage.path_for(project_root)
    session_id = resolve_session_id(store_dir, session or None)

    workspace = ProjectWorkspace(project_root, DirectorySafety(project_root))
    ledger = TodoLedger(store_dir, session_id)
    return config, workspace, ledger, store_dir


def _build_plan(text: str, feature: str, config, workspace: ProjectWorkspace):
    operations = ContentParser(workspace).parse(text)
    return PlanBuilder(config.git).build(feature, operations)


def _todo_summary(todo) -> Optional[dict]:
    if todo is None:
        return None
    return {
        "id": todo.id,
        "title": todo.title,
        "description": todo.description,
        "status": todo.status.value,
        "priority": todo.priority.value,
    }


# =============================================================================
# MCP TOOLS
# =============================================================================

@mcp.tool()
async def genplan_preview(
    text: str,
    feature: str,
    root: str = ""
) -> str:
    """
    Turn generated text into a generation plan without changing anything.

    Fenced code blocks whose first line names a file (e.g. "# src/app.py")
    become create or modify operations. Unsafe paths are dropped.

    Args:
        text: Model output containing fenced code blocks
        feature: Short feature label (used for the branch name and commit)
        root: Project root (default: discovered from the server's directory)

    Returns:
        JSON GenerationPlan with operations, summary and branch name.
    """
    logger.info(f"genplan_preview: {feature[:50]}")

    try:
        config, workspace, _, _ = _open_project(root)
        plan = _build_plan(text, feature, config, workspace)
        return plan.model_dump_json(indent=2)
    except Exception as e:
        logger.error(f"genplan_preview failed: {e}")
        return json.dumps({"error": str(e)})


@mcp.tool()
async def genplan_apply(
    text: str,
    feature: str,
    root: str = "",
    session: str = ""
) -> str:
    """
    Parse generated text and apply every operation.

    Creates a feature branch and commits when the project is a git
    repository and the config allows it. Each operation becomes a todo in
    the session's ledger, settled from the outcome.

    Args:
        text: Model output containing fenced code blocks
        feature: Short feature label
        root: Project root (default: discovered)
        session: Ledger session id (default: the project's last session)

    Returns:
        JSON with the plan summary, the GenerationResult and the todo group id.
    """
    logger.info(f"genplan_apply: {feature[:50]}")

    try:
        config, workspace, ledger, store_dir = _open_project(root, session)
        plan = _build_plan(text, feature, config, workspace)

        if plan.is_empty:
            return json.dumps({"summary": plan.summary, "result": None, "group_id": None})

        group = ledger.track_plan(plan)
        git = GitManager(workspace.root, config.git)
        result = await execute_plan_headless(plan, workspace, git, config.git)
        ledger.record_result(group.id, plan, result)

        CheckpointManager(store_dir).create(
            ledger.session_id,
            f"After build: {feature}",
            ledger,
            description=plan.summary,
            last_command=f"genplan_apply {feature}",
            context_files=result.touched_files,
            working_directory=workspace.root,
        )

        return json.dumps({
            "summary": plan.summary,
            "result": result.model_dump(mode="json"),
            "group_id": group.id,
        }, indent=2)

    except Exception as e:
        logger.error(f"genplan_apply failed: {e}")
        return json.dumps({"error": str(e)})


@mcp.tool()
async def genplan_todos(
    root: str = "",
    session: str = ""
) -> str:
    """
    List the session's todo groups with progress.

    Args:
        root: Project root (default: discovered)
        session: Ledger session id (default: the project's last session)

    Returns:
        JSON with session_id, progress, current todo and every group.
    """
    try:
        _, _, ledger, _ = _open_project(root, session)
        return json.dumps({
            "session_id": ledger.session_id,
            "progress": ledger.get_progress().model_dump(),
            "current": _todo_summary(ledger.get_current_todo()),
            "groups": [group.model_dump(mode="json") for group in ledger.groups],
        }, indent=2)
    except Exception as e:
        logger.error(f"genplan_todos failed: {e}")
        return json.dumps({"error": str(e)})


@mcp.tool()
async def genplan_continue(
    root: str = "",
    session: str = ""
) -> str:
    """
    Resume work: the in-progress todo, or start the next eligible one.

    The next todo is the highest-priority pending todo whose dependencies
    are all completed.

    Args:
        root: Project root (default: discovered)
        session: Ledger session id (default: the project's last session)

    Returns:
        JSON with the todo to work on (null when nothing is left) and progress.
    """
    try:
        _, _, ledger, _ = _open_project(root, session)
        todo = ledger.continue_from_checkpoint()
        return json.dumps({
            "todo": _todo_summary(todo),
            "pending": ledger.pending_count(),
            "progress": ledger.get_progress().model_dump(),
        }, indent=2)
    except Exception as e:
        logger.error(f"genplan_continue failed: {e}")
        return json.dumps({"error": str(e)})


@mcp.tool()
async def genplan_checkpoint(
    title: str,
    root: str = "",
    session: str = ""
) -> str:
    """
    Snapshot the session's ledger so it can be restored later.

    Args:
        title: Checkpoint title
        root: Project root (default: discovered)
        session: Ledger session id (default: the project's last session)

    Returns:
        JSON with the checkpoint id.
    """
    try:
        _, workspace, ledger, store_dir = _open_project(root, session)
        checkpoint = CheckpointManager(store_dir).create(
            ledger.session_id,
            title,
            ledger,
            last_command="genplan_checkpoint",
            working_directory=workspace.root,
        )
        return json.dumps({"checkpoint_id": checkpoint.id, "title": checkpoint.title})
    except Exception as e:
        logger.error(f"genplan_checkpoint failed: {e}")
        return json.dumps({"error": str(e)})


# =============================================================================
# ENTRY POINT
# =============================================================================

def main() -> None:
    logger.info("Starting genplan MCP Server")
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
