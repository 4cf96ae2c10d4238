"""
Content parser for genplan.

WHY THIS FILE EXISTS:
--------------------
The model answers in free-form markdown. Somewhere in that answer are the
files it wants to write, usually as fenced code blocks whose first line names
the file:

    ```python
    # src/auth/login.py
    def login(user): ...
    ```

This module turns such text into an ordered list of FileOperations. It never
guesses content: if the model only *talks* about a file ("Create file
src/auth/__init__.py") the operation is flagged as a placeholder.

HOW A PATH IS FOUND:
-------------------
1. First line of the fence body, written as a comment:
       // src/app.ts      # app.py      -- schema.sql     ; init.el
       /* style.css */    <!-- index.html -->
   optionally labelled "File:" or "Path:". An unlabelled comment only counts
   when it looks like a path (no spaces, has an extension or a slash).
2. Otherwise the fence info string: ```python:src/app.py```,
   ```python src/app.py``` or ```tsx title="src/App.tsx"```.
3. Fences with neither are ordinary code samples and are ignored.

After the fences, the prose outside them is scanned for
"Create/Update/Modify [file] <path>" to catch files the model mentioned but
did not write out.

Every candidate goes through DirectorySafety.canonicalize(); rejected paths
are logged and dropped. The first occurrence of a canonical path wins.
"""

import logging
import re
from pathlib import PurePosixPath
from typing import Optional

from errors import UnsafePathError
from schemas import FileOperation, OperationKind
from workspace import ProjectWorkspace

logger = logging.getLogger(__name__)


# =============================================================================
# PATTERNS
# =============================================================================

FENCE_PATTERN = re.compile(
    r"^[ \t]*(?P<fence>`{3,})(?P<info>[^\n`]*)\n(?P<body>.*?)^[ \t]*(?P=fence)[ \t]*$",
    re.MULTILINE | re.DOTALL,
)

# Comment forms a path marker can be written in
MARKER_PATTERNS = [
    re.compile(r"^\s*/\*\s*(?P<text>.+?)\s*\*/\s*$"),
    re.compile(r"^\s*<!--\s*(?P<text>.+?)\s*-->\s*$"),
    re.compile(r"^\s*(?://|#|--|;+)\s*(?P<text>.+?)\s*$"),
]

LABEL_PATTERN = re.compile(r"^(?:file|path)\s*:\s*(?P<path>.+)$", re.IGNORECASE)

TITLE_PATTERN = re.compile(r"""title\s*=\s*["'](?P<path>[^"']+)["']""")

EXPLICIT_FILE_PATTERN = re.compile(
    r"\b(?:create|update|modify)\s+(?:(?:the|an?|new)\s+)*(?:file\s+)?"
    r"[`\"']?(?P<path>[\w./\\-]+\.[A-Za-z][A-Za-z0-9]{0,5})\b[`\"']?",
    re.IGNORECASE,
)

PATHLIKE_PATTERN = re.compile(r"^[^\s]*(?:/[^\s]*|\.[A-Za-z][A-Za-z0-9]{0,9})$")


# =============================================================================
# FILE TYPE METADATA
# =============================================================================

FILE_TYPES = {
    ".py": "Python module",
    ".ts": "TypeScript file",
    ".tsx": "React component",
    ".js": "JavaScript file",
    ".jsx": "React component",
    ".go": "Go file",
    ".rs": "Rust file",
    ".java": "Java class",
    ".cpp": "C++ file",
    ".h": "Header file",
    ".css": "Stylesheet",
    ".scss": "Sass stylesheet",
    ".html": "HTML page",
    ".json": "Configuration file",
    ".toml": "Configuration file",
    ".md": "Documentation",
    ".yml": "YAML configuration",
    ".yaml": "YAML configuration",
    ".sql": "SQL script",
    ".sh": "Shell script",
}

# Single-line comment syntax used for placeholder bodies
COMMENT_SYNTAX = {
    ".py": "# {}",
    ".rb": "# {}",
    ".sh": "# {}",
    ".yml": "# {}",
    ".yaml": "# {}",
    ".toml": "# {}",
    ".ts": "// {}",
    ".tsx": "// {}",
    ".js": "// {}",
    ".jsx": "// {}",
    ".go": "// {}",
    ".rs": "// {}",
    ".java": "// {}",
    ".cpp": "// {}",
    ".h": "// {}",
    ".scss": "// {}",
    ".css": "/* {} */",
    ".html": "<!-- {} -->",
    ".md": "<!-- {} -->",
    ".xml": "<!-- {} -->",
    ".sql": "-- {}",
    ".lisp": ";; {}",
    ".el": ";; {}",
}


def describe_file(path: str, exists: bool) -> str:
    """
    One-line description of an operation.

    Example:
        describe_file("src/app.py", False) -> "Create Python module app.py"
    """
    file_path = PurePosixPath(path)
    file_type = FILE_TYPES.get(file_path.suffix.lower(), "file")
    action = "Modify" if exists else "Create"
    return f"{action} {file_type} {file_path.name}"


def placeholder_content(path: str) -> str:
    """Body written for a file that was mentioned but never generated."""
    template = COMMENT_SYNTAX.get(PurePosixPath(path).suffix.lower())
    if template is None:
        return ""
    return template.format(f"Placeholder for {path}: no content was generated") + "\n"


def count_lines(content: str) -> int:
    return len(content.splitlines())


# =============================================================================
# PARSER
# =============================================================================

class ContentParser:
    """
    Extracts file operations from generated text.

    Usage:
        parser = ContentParser(ProjectWorkspace(Path(".")))
        operations = parser.parse(response_text)
    """

    def __init__(self, workspace: ProjectWorkspace):
        self.workspace = workspace
        self.safety = workspace.safety

    def parse(self, text: str) -> list[FileOperation]:
        """
        Parse generated text into operations.

        Args:
            text: Raw model output

        Returns:
            Operations in order of first appearance; empty if the text holds
            no recognizable file markers
        """
        operations: list[FileOperation] = []
        seen: set[str] = set()

        for match in FENCE_PATTERN.finditer(text):
            extracted = self._extract_fenced_file(match.group("info"), match.group("body"))
            if extracted is None:
                continue

            candidate, content = extracted
            path = self._accept_path(candidate, seen)
            if path is None:
                continue

            operations.append(self._build_operation(path, content))

        prose = FENCE_PATTERN.sub("", text)
        for match in EXPLICIT_FILE_PATTERN.finditer(prose):
            path = self._accept_path(match.group("path"), seen)
            if path is None:
                continue

            operations.append(self._build_placeholder(path))

        logger.debug(f"Parsed {len(operations)} file operation(s)")
        return operations

    # -------------------------------------------------------------------------
    # Path extraction
    # -------------------------------------------------------------------------

    def _extract_fenced_file(self, info: str, body: str) -> Optional[tuple[str, str]]:
        """
        Find the target path of one fenced block.

        Returns:
            (candidate path, content with the marker line removed), or None
            for an unannotated block
        """
        lines = body.split("\n")
        marker = self._extract_marker(lines[0]) if lines else None

        if marker is not None:
            return marker, self._normalize_content("\n".join(lines[1:]))

        info_path = self._extract_info_path(info)
        if info_path is not None:
            return info_path, self._normalize_content(body)

        return None

    def _extract_marker(self, line: str) -> Optional[str]:
        """Path named by a comment line, or None if the line is not a marker."""
        for pattern in MARKER_PATTERNS:
            match = pattern.match(line)
            if not match:
                continue

            text = match.group("text").strip()
            labelled = LABEL_PATTERN.match(text)
            if labelled:
                return labelled.group("path").strip()
            if PATHLIKE_PATTERN.match(text):
                return text
            return None

        return None

    def _extract_info_path(self, info: str) -> Optional[str]:
        """Path carried by a fence info string such as 'python:src/app.py'."""
        info = info.strip()
        if not info:
            return None

        titled = TITLE_PATTERN.search(info)
        if titled:
            return titled.group("path").strip()

        tokens = info.split()
        if len(tokens) >= 2 and PATHLIKE_PATTERN.match(tokens[1]):
            return tokens[1]

        first = tokens[0]
        if ":" in first:
            _, _, path = first.partition(":")
            if path and PATHLIKE_PATTERN.match(path):
                return path
        elif "/" in first:
            return first

        return None

    def _accept_path(self, candidate: str, seen: set[str]) -> Optional[str]:
        """Canonicalize a candidate; None if it is unsafe or already taken."""
        try:
            path = self.safety.canonicalize(candidate)
        except UnsafePathError as e:
            logger.warning(f"Skipping unsafe file path: {candidate} ({e})")
            return None

        if path in seen:
            logger.debug(f"Ignoring repeated mention of {path}")
            return None

        seen.add(path)
        return path

    @staticmethod
    def _normalize_content(content: str) -> str:
        content = content.strip("\n").rstrip()
        return content + "\n" if content else ""

    # -------------------------------------------------------------------------
    # Operation construction
    # -------------------------------------------------------------------------

    def _build_operation(self, path: str, content: str) -> FileOperation:
        prior_content = self.workspace.read_file_if_exists(path)
        exists = prior_content is not None

        return FileOperation(
            path=path,
            kind=OperationKind.MODIFY if exists else OperationKind.CREATE,
            content=content,
            prior_content=prior_content,
            description=describe_file(path, exists),
            estimated_lines=count_lines(content),
        )

    def _build_placeholder(self, path: str) -> FileOperation:
        """
        Operation for a file mentioned only in prose.

        An existing file keeps its content, so approving a placeholder modify
        never clobbers it.
        """
        prior_content = self.workspace.read_file_if_exists(path)
        exists = prior_content is not None
        content = prior_content if exists else placeholder_content(path)

        return FileOperation(
            path=path,
            kind=OperationKind.MODIFY if exists else OperationKind.CREATE,
            content=content,
            prior_content=prior_content,
            description=describe_file(path, exists),
            estimated_lines=count_lines(content),
            placeholder=True,
        )
