"""
Safety boundary for genplan.

WHAT THIS FILE DOES:
-------------------
Every path that generated text mentions is a suggestion from an untrusted
source. Before a path may enter a plan it goes through canonicalize():

    "src/app.py"           -> "src/app.py"          (accepted)
    "./src//app.py"        -> "src/app.py"          (accepted)
    "<root>/src/app.py"    -> "src/app.py"          (accepted)
    "../../etc/passwd"     -> UnsafePathError       (escapes root)
    "/etc/passwd"          -> UnsafePathError       (escapes root)
    ".git/config"          -> UnsafePathError       (protected directory)

Paths are resolved with symlinks followed, so a link inside the project that
points outside it is rejected as well.
"""

import fnmatch
import logging
import os
from pathlib import Path
from typing import Optional

from errors import UnsafePathError

logger = logging.getLogger(__name__)


# Files or directories that mark the top of a project
ROOT_INDICATORS = [
    ".git",
    "pyproject.toml",
    "setup.py",
    "requirements.txt",
    "package.json",
    "Cargo.toml",
    "go.mod",
    ".genplan",
]

# Top-level directories generated text may never write into
PROTECTED_DIRS = {".git", ".genplan"}

DEFAULT_IGNORES = [
    "node_modules/*",
    ".git/*",
    ".genplan/*",
    "dist/*",
    "build/*",
    ".venv/*",
    "venv/*",
    "target/*",
    "__pycache__/*",
    "*.pyc",
    ".DS_Store",
]

IGNORE_FILE = ".genplanignore"


def find_project_root(start: Optional[Path] = None) -> Path:
    """
    Walk upward from start until a directory holds a root indicator.

    Falls back to start itself when nothing is found.
    """
    start = Path(start or Path.cwd()).resolve()
    current = start

    while current != current.parent:
        for indicator in ROOT_INDICATORS:
            if (current / indicator).exists():
                return current
        current = current.parent

    return start


class DirectorySafety:
    """
    Decides whether a path may be touched.

    Usage:
        safety = DirectorySafety(Path("/work/project"))
        rel = safety.canonicalize("src/app.py")   # "src/app.py"
        safety.is_path_safe("/etc/passwd")        # False
    """

    def __init__(self, project_root: Optional[Path] = None):
        """
        Args:
            project_root: Boundary directory. Discovered from the current
                          directory when omitted.
        """
        root = Path(project_root) if project_root else find_project_root()
        self.project_root = root.resolve()

    def _full_path(self, candidate: str) -> Path:
        target = Path(candidate).expanduser() if candidate.startswith("~") else Path(candidate)
        if not target.is_absolute():
            target = self.project_root / target
        return target.resolve()

    def is_path_safe(self, candidate: str) -> bool:
        """True if candidate resolves inside the project root."""
        try:
            self._full_path(str(candidate)).relative_to(self.project_root)
            return True
        except (ValueError, OSError):
            return False

    def validate_path(self, candidate: str) -> Path:
        """
        Resolve candidate and make sure it stays inside the root.

        Returns:
            The absolute, resolved path

        Raises:
            UnsafePathError: If the path escapes the project root or cannot be
                             resolved at all (e.g. it contains a NUL byte)
        """
        try:
            full_path = self._full_path(str(candidate))
            full_path.relative_to(self.project_root)
        except (ValueError, OSError):
            raise UnsafePathError(str(candidate), str(self.project_root))
        return full_path

    def canonicalize(self, candidate: str) -> str:
        """
        Turn a path mentioned in generated text into a safe relative path.

        Raises:
            UnsafePathError: If the path is empty, names the root itself,
                             escapes the root or points into a protected
                             directory
        """
        cleaned = candidate.strip().strip("`'\"").replace("\\", "/")
        if not cleaned:
            raise UnsafePathError(candidate, str(self.project_root))

        full_path = self.validate_path(cleaned)
        relative = full_path.relative_to(self.project_root)

        if not relative.parts:
            raise UnsafePathError(candidate, str(self.project_root))
        if relative.parts[0] in PROTECTED_DIRS:
            raise UnsafePathError(candidate, str(self.project_root))

        return relative.as_posix()

    def get_relative_path(self, full_path: Path) -> str:
        return Path(os.path.relpath(full_path, self.project_root)).as_posix()

    def get_ignore_patterns(self) -> list[str]:
        """Default ignores plus any patterns listed in .genplanignore."""
        ignore_path = self.project_root / IGNORE_FILE
        if not ignore_path.exists():
            return list(DEFAULT_IGNORES)

        custom = [
            line.strip()
            for line in ignore_path.read_text().splitlines()
            if line.strip() and not line.strip().startswith("#")
        ]
        return DEFAULT_IGNORES + custom

    def get_safe_file_list(self) -> list[str]:
        """
        List project files that are not ignored.

        Returns:
            Sorted relative POSIX paths
        """
        patterns = self.get_ignore_patterns()
        files = []

        for file_path in self.project_root.rglob("*"):
            if not file_path.is_file():
                continue
            rel_path = self.get_relative_path(file_path)
            if any(fnmatch.fnmatch(rel_path, p) or fnmatch.fnmatch(file_path.name, p) for p in patterns):
                continue
            files.append(rel_path)

        logger.debug(f"{len(files)} files in scope under {self.project_root}")
        return sorted(files)
