"""
Project workspace for genplan.

WHAT THIS FILE DOES:
-------------------
The only place genplan touches the user's files. The execution engine never
calls open() or Path.write_text() itself; it goes through ProjectWorkspace,
which:

- Resolves every relative path through the DirectorySafety boundary
- Creates parent directories before a write
- Reads, writes and removes whole files (no partial edits)
- Renders a small tree of touched paths for the completion summary

All paths handed in and out are relative POSIX paths, the same strings that
appear in FileOperation.path.
"""

import logging
from pathlib import Path
from typing import Optional

from safety import DirectorySafety

logger = logging.getLogger(__name__)


class ProjectWorkspace:
    """
    Whole-file access to a project directory.

    Usage:
        workspace = ProjectWorkspace(Path("/work/project"))
        if not workspace.exists("src/app.py"):
            workspace.write_file("src/app.py", "print('hello')\\n")
        print(workspace.read_file("src/app.py"))
    """

    def __init__(self, root: Path, safety: Optional[DirectorySafety] = None):
        """
        Args:
            root: Project root directory
            safety: Boundary to check paths against (built from root if omitted)
        """
        self.safety = safety or DirectorySafety(Path(root))
        self.root = self.safety.project_root

    def resolve(self, path: str) -> Path:
        """
        Resolve a relative path within the project, preventing traversal.

        Raises:
            UnsafePathError: If the path escapes the project root
        """
        return self.safety.validate_path(path)

    def exists(self, path: str) -> bool:
        """True if a regular file exists at path. Unsafe paths never exist."""
        if not self.safety.is_path_safe(path):
            return False
        return self.resolve(path).is_file()

    def read_file(self, path: str) -> str:
        """
        Read a file from the project.

        Raises:
            FileNotFoundError: If the file doesn't exist
        """
        full_path = self.resolve(path)

        if not full_path.is_file():
            raise FileNotFoundError(f"File not found: {path}")

        return full_path.read_text(encoding="utf-8")

    def read_file_if_exists(self, path: str) -> Optional[str]:
        if not self.exists(path):
            return None
        return self.read_file(path)

    def write_file(self, path: str, content: str) -> Path:
        """
        Write content to a file, creating parent directories as needed.

        Returns:
            Absolute path that was written
        """
        full_path = self.resolve(path)
        full_path.parent.mkdir(parents=True, exist_ok=True)
        full_path.write_text(content, encoding="utf-8")
        logger.debug(f"Wrote {path} ({len(content)} chars)")
        return full_path

    def delete_file(self, path: str) -> Path:
        """
        Remove a file.

        Raises:
            FileNotFoundError: If the file doesn't exist
        """
        full_path = self.resolve(path)
        full_path.unlink()
        logger.debug(f"Deleted {path}")
        return full_path

    def get_structure(self, paths: list[str]) -> str:
        """
        Tree view of the given relative paths.

        Args:
            paths: Relative POSIX paths, e.g. GenerationResult.touched_files

        Returns:
            ASCII tree representation
        """
        tree: dict = {}
        for path in sorted(paths):
            node = tree
            for part in path.split("/"):
                node = node.setdefault(part, {})

        lines = [self.root.name + "/"]
        self._build_tree(tree, "", lines)
        return "\n".join(lines)

    def _build_tree(self, node: dict, prefix: str, lines: list[str]) -> None:
        """Build tree representation recursively. Directories come first."""
        children = sorted(node.items(), key=lambda item: (not item[1], item[0].lower()))

        for i, (name, child) in enumerate(children):
            is_last = i == len(children) - 1
            connector = "└── " if is_last else "├── "

            if child:
                lines.append(f"{prefix}{connector}{name}/")
                new_prefix = prefix + ("    " if is_last else "│   ")
                self._build_tree(child, new_prefix, lines)
            else:
                lines.append(f"{prefix}{connector}{name}")
