"""
Ledger Tests: Todos, Progress and Checkpoints

These tests verify that genplan can:
1. Track todos with priorities, dependencies and a strict lifecycle
2. Persist the ledger and recover from a corrupt file
3. Snapshot and restore the ledger through checkpoints
4. Tie todos to the operations of a generation plan

Test list:
1. test_priority_ordering - Highest priority first, ties in creation order
2. test_dependencies_gate_next_todo - Dependents wait for completion
3. test_status_transitions - Allowed and forbidden transitions
4. test_single_in_progress - At most one todo in progress
5. test_continue_from_checkpoint - Resume current, else start next, else None
6. test_progress_and_reasons - Counts, percentage, skip/block annotations
7. test_persistence - A second ledger instance sees the same data
8. test_corrupt_ledger - Unreadable file becomes an empty ledger
9. test_checkpoint_roundtrip - Snapshot is isolated, restore brings it back
10. test_checkpoint_listing_and_cleanup - Sessions, ordering, old checkpoints
11. test_track_plan_and_record_result - One todo per operation, settled from the result
12. test_undecodable_files - Non-UTF-8 ledger and checkpoint files are recovered
13. test_interrupted_save_keeps_previous_state - A torn write never replaces good data
"""

import json
import shutil
import sys
import tempfile
from datetime import datetime, timedelta
from pathlib import Path
from unittest.mock import patch

import pytest

# Add project directory to path
sys.path.insert(0, str(Path(__file__).parent))

from checkpoints import CheckpointManager
from config import GitConfig
from errors import InvalidTransitionError, LedgerCorruptionError, TodoNotFoundError
from ledger import DEFAULT_GROUP_TITLE, TodoLedger, can_transition
from plan_builder import PlanBuilder
from schemas import (
    Checkpoint,
    FileOperation,
    GenerationResult,
    GroupStatus,
    OperationKind,
    ProjectState,
    TodoPriority,
    TodoStatus,
)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def store_dir():
    """Create a temporary storage directory."""
    store = tempfile.mkdtemp(prefix="genplan_store_")
    yield Path(store)
    shutil.rmtree(store, ignore_errors=True)


@pytest.fixture
def ledger(store_dir):
    return TodoLedger(store_dir, "test-session")


# =============================================================================
# TEST 1-6: Todo Lifecycle
# =============================================================================

def test_priority_ordering(ledger):
    """
    Test 1: [low, high, medium] is worked on as high, medium, low.
    """
    low = ledger.add_todo("Polish", priority=TodoPriority.LOW)
    high = ledger.add_todo("Core", priority=TodoPriority.HIGH)
    medium = ledger.add_todo("Docs", priority=TodoPriority.MEDIUM)

    assert ledger.groups[0].title == DEFAULT_GROUP_TITLE

    order = []
    todo = ledger.get_next_todo()
    while todo is not None:
        order.append(todo.id)
        ledger.start_todo(todo.id)
        ledger.complete_todo(todo.id)
        todo = ledger.get_next_todo()

    assert order == [high.id, medium.id, low.id]

    print("✓ Test 1 passed: Priority ordering respected")


def test_dependencies_gate_next_todo(ledger):
    """
    Test 2: A todo only becomes eligible once its dependencies completed.
    """
    schema = ledger.add_todo("Schema", priority=TodoPriority.LOW)
    api = ledger.add_todo("API", priority=TodoPriority.HIGH, dependencies=[schema.id])

    assert ledger.get_next_todo().id == schema.id

    ledger.start_todo(schema.id)
    assert ledger.get_next_todo() is None

    ledger.complete_todo(schema.id)
    assert ledger.get_next_todo().id == api.id

    # Skipping a dependency does not unblock its dependents
    base = ledger.add_todo("Base")
    child = ledger.add_todo("Child", dependencies=[base.id])
    ledger.skip_todo(base.id)
    ledger.start_todo(api.id)
    ledger.complete_todo(api.id)
    assert ledger.get_next_todo() is None
    assert ledger.get_todo(child.id).status == TodoStatus.PENDING

    print("✓ Test 2 passed: Dependencies gate eligibility")


def test_status_transitions(ledger):
    """
    Test 3: Terminal statuses are final; pending cannot jump to completed.
    """
    assert can_transition(TodoStatus.PENDING, TodoStatus.IN_PROGRESS)
    assert can_transition(TodoStatus.PENDING, TodoStatus.BLOCKED)
    assert not can_transition(TodoStatus.PENDING, TodoStatus.COMPLETED)
    assert not can_transition(TodoStatus.COMPLETED, TodoStatus.PENDING)

    todo = ledger.add_todo("Task")

    with pytest.raises(InvalidTransitionError):
        ledger.complete_todo(todo.id)

    ledger.start_todo(todo.id)
    ledger.complete_todo(todo.id, actual_tokens=420)
    assert ledger.get_todo(todo.id).actual_tokens == 420

    for status in (TodoStatus.PENDING, TodoStatus.IN_PROGRESS, TodoStatus.SKIPPED):
        with pytest.raises(InvalidTransitionError):
            ledger.update_status(todo.id, status)

    with pytest.raises(TodoNotFoundError):
        ledger.start_todo("does-not-exist")

    print("✓ Test 3 passed: Transitions enforced")


def test_single_in_progress(ledger):
    """
    Test 4: Starting a second todo while one is in progress is refused.
    """
    first = ledger.add_todo("First")
    second = ledger.add_todo("Second")

    ledger.start_todo(first.id)
    assert ledger.get_current_todo().id == first.id

    with pytest.raises(InvalidTransitionError):
        ledger.start_todo(second.id)

    ledger.block_todo(first.id, reason="waiting on API key")
    assert ledger.get_current_todo() is None

    ledger.start_todo(second.id)
    assert ledger.get_current_todo().id == second.id

    in_progress = [t for t in ledger.all_todos() if t.status == TodoStatus.IN_PROGRESS]
    assert len(in_progress) == 1

    print("✓ Test 4 passed: One todo in progress at a time")


def test_continue_from_checkpoint(ledger):
    """
    Test 5: Continue resumes the current todo, else starts the next one.
    """
    assert ledger.continue_from_checkpoint() is None

    a = ledger.add_todo("A", priority=TodoPriority.HIGH)
    b = ledger.add_todo("B")

    started = ledger.continue_from_checkpoint()
    assert started.id == a.id
    assert started.status == TodoStatus.IN_PROGRESS

    # Idempotent while A is still in progress
    assert ledger.continue_from_checkpoint().id == a.id

    ledger.complete_todo(a.id)
    assert ledger.continue_from_checkpoint().id == b.id

    ledger.complete_todo(b.id)
    assert ledger.continue_from_checkpoint() is None

    print("✓ Test 5 passed: Continue resumes work")


def test_progress_and_reasons(ledger):
    """
    Test 6: Progress counts and skip/block reasons.
    """
    done = ledger.add_todo("Done", estimated_tokens=100)
    skipped = ledger.add_todo("Skipped", description="Optional step")
    blocked = ledger.add_todo("Blocked")
    ledger.add_todo("Waiting", estimated_tokens=300)
    ledger.add_todo("Unestimated")

    ledger.start_todo(done.id)
    ledger.complete_todo(done.id)
    ledger.skip_todo(skipped.id, reason="not needed")
    ledger.block_todo(blocked.id, reason="missing credentials")

    progress = ledger.get_progress()
    assert progress.total == 5
    assert progress.completed == 1
    assert progress.skipped == 1
    assert progress.blocked == 1
    assert progress.pending == 2
    assert progress.percentage == 20
    assert progress.estimated_tokens_remaining == 1300
    assert ledger.pending_count() == 2

    assert ledger.get_todo(skipped.id).description == "Optional step\n[SKIPPED: not needed]"
    assert ledger.get_todo(blocked.id).description == "[BLOCKED: missing credentials]"

    group_id = ledger.groups[0].id
    assert ledger.get_progress(group_id) == progress
    with pytest.raises(KeyError):
        ledger.get_progress("unknown")

    assert ledger.get_group(group_id).status == GroupStatus.IN_PROGRESS

    print("✓ Test 6 passed: Progress reported")


# =============================================================================
# TEST 7-8: Persistence
# =============================================================================

def test_persistence(store_dir, ledger):
    """
    Test 7: Every mutation is written through to disk.
    """
    group = ledger.create_group("Login form", description="Auth work")
    todo = ledger.add_todo("Create form", tags=["ui"])
    ledger.start_todo(todo.id)

    assert ledger.path == store_dir / "todos" / "test-session.json"
    assert ledger.path.exists()

    reopened = TodoLedger(store_dir, "test-session")
    assert [g.id for g in reopened.groups] == [group.id]
    assert reopened.current_group_id == group.id
    assert reopened.get_current_todo().id == todo.id
    assert reopened.get_todo(todo.id).tags == ["ui"]

    # Sessions are independent
    other = TodoLedger(store_dir, "other-session")
    assert other.groups == []

    print("✓ Test 7 passed: Ledger persisted")


def test_corrupt_ledger(store_dir, caplog):
    """
    Test 8: A corrupt ledger file loads as empty and is replaced on write.
    """
    path = store_dir / "todos" / "broken.json"
    path.parent.mkdir(parents=True)
    path.write_text("{not json")

    with caplog.at_level("WARNING"):
        ledger = TodoLedger(store_dir, "broken")

    assert ledger.groups == []
    assert "Ignoring unreadable ledger" in caplog.text

    ledger.add_todo("Fresh start")
    data = json.loads(path.read_text())
    assert data["groups"][0]["todos"][0]["title"] == "Fresh start"

    print("✓ Test 8 passed: Corrupt ledger recovered")


# =============================================================================
# TEST 9-10: Checkpoints
# =============================================================================

def test_checkpoint_roundtrip(store_dir, ledger):
    """
    Test 9: A checkpoint is a deep snapshot that restore brings back.
    """
    first = ledger.add_todo("First")
    manager = CheckpointManager(store_dir)

    checkpoint = manager.create(
        ledger.session_id,
        "Before work",
        ledger,
        last_command="todo add",
        context_files=["src/app.py"],
        working_directory=store_dir,
    )
    assert checkpoint.id.startswith("checkpoint_")
    assert checkpoint.project_state.context_files == ("src/app.py",)

    ledger.start_todo(first.id)
    ledger.complete_todo(first.id)
    ledger.add_todo("Second")

    # Later changes never leak into the snapshot
    loaded = manager.load(checkpoint.id)
    assert len(loaded.todo_groups[0].todos) == 1
    assert loaded.todo_groups[0].todos[0].status == TodoStatus.PENDING

    ledger.restore(loaded)
    assert [t.title for t in ledger.all_todos()] == ["First"]
    assert ledger.get_todo(first.id).status == TodoStatus.PENDING
    assert TodoLedger(store_dir, "test-session").all_todos()[0].status == TodoStatus.PENDING

    with pytest.raises(FileNotFoundError):
        manager.load("checkpoint_missing")

    print("✓ Test 9 passed: Checkpoint snapshot and restore")


def test_checkpoint_listing_and_cleanup(store_dir, ledger):
    """
    Test 10: Listing filters by session, newest first; old checkpoints are pruned.
    """
    manager = CheckpointManager(store_dir)
    ledger.add_todo("Task")

    mine = manager.create("test-session", "Mine", ledger)
    theirs = manager.create("other-session", "Theirs", ledger)

    old = Checkpoint(
        id="checkpoint_1_old000",
        session_id="test-session",
        timestamp=datetime.now() - timedelta(days=45),
        title="Ancient",
        project_state=ProjectState(working_directory=str(store_dir)),
    )
    (manager.base_path / f"{old.id}.json").write_text(old.model_dump_json())
    (manager.base_path / "checkpoint_garbage.json").write_text("][")

    assert [c.id for c in manager.list_all("test-session")] == [mine.id, old.id]
    assert {c.id for c in manager.list_all()} == {mine.id, theirs.id, old.id}
    assert manager.latest("other-session").id == theirs.id

    assert manager.cleanup_old(max_age_days=30) == 1
    assert manager.list_all("test-session")[-1].id == mine.id

    assert manager.delete(theirs.id)
    assert not manager.delete(theirs.id)

    print("✓ Test 10 passed: Checkpoints listed and cleaned up")


# =============================================================================
# TEST 11: Plan Tracking
# =============================================================================

def test_track_plan_and_record_result(ledger):
    """
    Test 11: Each plan operation gets a todo, settled from the execution result.
    """
    operations = [
        FileOperation(path="src/a.py", kind=OperationKind.CREATE, content="A\n", description="Create a"),
        FileOperation(path="src/b.py", kind=OperationKind.CREATE, content="B\n", description="Create b"),
        FileOperation(path="src/c.py", kind=OperationKind.CREATE, content="C\n", description="Create c"),
        FileOperation(path="notes.md", kind=OperationKind.CREATE, content="", placeholder=True),
    ]
    plan = PlanBuilder(GitConfig()).build("widgets", operations)

    group = ledger.track_plan(plan)

    assert group.title == "Build: widgets"
    assert [t.description for t in group.todos] == ["src/a.py", "src/b.py", "src/c.py", "notes.md"]
    assert [t.priority for t in group.todos] == [TodoPriority.HIGH] * 3 + [TodoPriority.MEDIUM]
    assert group.todos[3].title == "create notes.md"
    assert ledger.current_group_id == group.id

    result = GenerationResult(
        success=False,
        files_created=["src/a.py", "notes.md"],
        files_skipped=["src/b.py"],
        errors=["Failed to process src/c.py: Permission denied"],
    )
    settled = ledger.record_result(group.id, plan, result)

    statuses = [t.status for t in settled.todos]
    assert statuses == [
        TodoStatus.COMPLETED,
        TodoStatus.SKIPPED,
        TodoStatus.BLOCKED,
        TodoStatus.COMPLETED,
    ]
    assert "Permission denied" in settled.todos[2].description
    assert settled.status == GroupStatus.IN_PROGRESS
    assert ledger.get_current_todo() is None
    assert ledger.pending_count() == 0

    print("✓ Test 11 passed: Plan tracked in the ledger")


# =============================================================================
# TEST 12-13: Damaged Files and Interrupted Saves
# =============================================================================

def test_undecodable_files(store_dir, caplog):
    """
    Test 12: Bytes that are not UTF-8 are treated like any other corruption.
    """
    path = store_dir / "todos" / "binary.json"
    path.parent.mkdir(parents=True)
    path.write_bytes(b'{"groups": [\xff\xfe]}')

    with caplog.at_level("WARNING"):
        ledger = TodoLedger(store_dir, "binary")

    assert ledger.groups == []
    assert "Ignoring unreadable ledger" in caplog.text

    ledger.add_todo("Survivor")
    manager = CheckpointManager(store_dir)
    good = manager.create("binary", "Good", ledger)
    (manager.base_path / "checkpoint_0_binary.json").write_bytes(b"\xff\xfe\x00")

    assert [c.id for c in manager.list_all()] == [good.id]
    with pytest.raises(LedgerCorruptionError):
        manager.load("checkpoint_0_binary")

    print("✓ Test 12 passed: Undecodable files recovered")


def torn_dump(data, f, **kwargs):
    """Write half a document, then fail like a full disk would."""
    f.write('{"session_id": "test-session", "groups": [')
    raise OSError(28, "No space left on device")


def test_interrupted_save_keeps_previous_state(store_dir, ledger):
    """
    Test 13: A save that dies halfway leaves the last good ledger on disk.
    """
    for title in ("One", "Two", "Three"):
        ledger.add_todo(title)
    manager = CheckpointManager(store_dir)
    first = manager.create("test-session", "Before", ledger)

    with patch("ledger.json.dump", side_effect=torn_dump):
        with pytest.raises(OSError):
            ledger.add_todo("Four")
        with pytest.raises(OSError):
            manager.create("test-session", "Torn", ledger)

    reopened = TodoLedger(store_dir, "test-session")
    assert [t.title for t in reopened.all_todos()] == ["One", "Two", "Three"]
    assert [c.id for c in manager.list_all()] == [first.id]

    leftovers = list(store_dir.rglob("*.tmp"))
    assert leftovers == []

    print("✓ Test 13 passed: Interrupted saves lose nothing")
