"""
Checkpoints for genplan.

A checkpoint is a frozen copy of a ledger's groups plus a note of where the
user was. Checkpoints are only ever created, read and deleted; restoring one
copies it back into a TodoLedger.

Stored as JSON files in <store>/checkpoints/<checkpoint id>.json.
"""

import json
import logging
import random
import string
import time
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from errors import LedgerCorruptionError
from ledger import TodoLedger, write_json_atomic
from schemas import Checkpoint, ProjectState

logger = logging.getLogger(__name__)


def generate_checkpoint_id() -> str:
    """e.g. checkpoint_1760601234567_x81kq0"""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
    return f"checkpoint_{int(time.time() * 1000)}_{suffix}"


class CheckpointManager:
    """
    Creates and reads ledger snapshots.

    Usage:
        checkpoints = CheckpointManager(Path(".genplan"))
        cp = checkpoints.create(ledger.session_id, "Before refactor", ledger)
        ...
        ledger.restore(checkpoints.load(cp.id))
    """

    def __init__(self, store_dir: Path):
        self.base_path = Path(store_dir) / "checkpoints"

    def _checkpoint_path(self, checkpoint_id: str) -> Path:
        return self.base_path / f"{checkpoint_id}.json"

    def create(
        self,
        session_id: str,
        title: str,
        ledger: TodoLedger,
        description: Optional[str] = None,
        last_command: Optional[str] = None,
        context_files: Optional[list[str]] = None,
        working_directory: Optional[Path] = None
    ) -> Checkpoint:
        """
        Snapshot the ledger.

        The groups are deep-copied: later changes to the ledger never show up
        in the checkpoint.
        """
        checkpoint = Checkpoint(
            id=generate_checkpoint_id(),
            session_id=session_id,
            timestamp=datetime.now(),
            title=title,
            description=description,
            todo_groups=tuple(group.model_copy(deep=True) for group in ledger.groups),
            project_state=ProjectState(
                working_directory=str(working_directory or Path.cwd()),
                last_command=last_command,
                context_files=tuple(context_files or ()),
            ),
        )

        write_json_atomic(self._checkpoint_path(checkpoint.id), checkpoint.model_dump(mode="json"))

        logger.info(f"Created checkpoint {checkpoint.id}: {title}")
        return checkpoint

    def _read(self, path: Path) -> Checkpoint:
        try:
            with open(path, encoding="utf-8") as f:
                return Checkpoint.model_validate(json.load(f))
        except (OSError, ValueError, ValidationError) as e:
            raise LedgerCorruptionError(f"Unreadable checkpoint {path.name}: {e}") from e

    def load(self, checkpoint_id: str) -> Checkpoint:
        """
        Raises:
            FileNotFoundError: If the checkpoint doesn't exist
            LedgerCorruptionError: If the file is unreadable
        """
        path = self._checkpoint_path(checkpoint_id)
        if not path.exists():
            raise FileNotFoundError(f"Checkpoint not found: {checkpoint_id}")
        return self._read(path)

    def list_all(self, session_id: Optional[str] = None) -> list[Checkpoint]:
        """
        All checkpoints, newest first. Unreadable files are skipped.

        Args:
            session_id: Only checkpoints of this session
        """
        if not self.base_path.exists():
            return []

        checkpoints = []
        for path in self.base_path.glob("*.json"):
            try:
                checkpoint = self._read(path)
            except LedgerCorruptionError as e:
                logger.warning(str(e))
                continue
            if session_id is None or checkpoint.session_id == session_id:
                checkpoints.append(checkpoint)

        return sorted(checkpoints, key=lambda c: c.timestamp, reverse=True)

    def latest(self, session_id: Optional[str] = None) -> Optional[Checkpoint]:
        checkpoints = self.list_all(session_id)
        return checkpoints[0] if checkpoints else None

    def delete(self, checkpoint_id: str) -> bool:
        """
        Delete a checkpoint. Irreversible.

        Returns:
            True if deleted, False if it didn't exist
        """
        path = self._checkpoint_path(checkpoint_id)
        if path.exists():
            path.unlink()
            return True
        return False

    def cleanup_old(self, max_age_days: int = 30) -> int:
        """
        Delete checkpoints older than max_age_days.

        Returns:
            Number of checkpoints deleted
        """
        cutoff = datetime.now() - timedelta(days=max_age_days)
        deleted = 0

        for checkpoint in self.list_all():
            if checkpoint.timestamp < cutoff and self.delete(checkpoint.id):
                deleted += 1

        return deleted
