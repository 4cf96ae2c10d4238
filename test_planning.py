"""
Planning Tests: From Generated Text to a GenerationPlan

These tests verify that genplan can:
1. Keep every path inside the project root
2. Find file markers in fenced code blocks
3. Fall back to placeholders for files only mentioned in prose
4. Build deterministic, frozen plans

Test list:
1. test_canonicalize_paths - Relative, dotted, absolute-inside and backslash paths
2. test_unsafe_paths_rejected - Traversal, outside-absolute, protected and empty paths
3. test_safe_file_list - Default ignores and .genplanignore patterns
4. test_find_project_root - Walks upward to the nearest root indicator
5. test_parse_marker_styles - One operation per annotated block, in order
6. test_parse_info_string_paths - Paths carried by the fence info string
7. test_parse_skips_unsafe_and_duplicates - Unsafe dropped, first occurrence wins
8. test_parse_existing_file_is_modify - Existing files become modify ops with prior content
9. test_parse_prose_placeholders - Prose mentions become placeholder ops
10. test_parse_without_markers - Plain code samples produce nothing
11. test_plan_builder - Branch naming, summary and frozen plans
12. test_slugify - Branch-safe feature labels
13. test_workspace_files - Read, write, delete and tree view
14. test_parse_survives_malformed_paths - NUL bytes in a path drop one block, not the plan
"""

import shutil
import sys
import tempfile
from pathlib import Path

import pytest
from pydantic import ValidationError

# Add project directory to path
sys.path.insert(0, str(Path(__file__).parent))

from config import GitConfig
from content_parser import ContentParser, describe_file, placeholder_content
from errors import UnsafePathError
from plan_builder import PlanBuilder, slugify, summarize
from safety import DirectorySafety, find_project_root
from schemas import GitStrategy, OperationKind
from workspace import ProjectWorkspace


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def temp_project():
    """Create a temporary project directory."""
    project = tempfile.mkdtemp(prefix="genplan_test_")
    yield Path(project).resolve()
    shutil.rmtree(project, ignore_errors=True)


@pytest.fixture
def workspace(temp_project):
    return ProjectWorkspace(temp_project)


@pytest.fixture
def parser(workspace):
    return ContentParser(workspace)


SAMPLE_RESPONSE = '''Here is the login feature.

```python
# src/auth/login.py
def login(user, password):
    return user.check(password)
```

The form component:

```tsx
// src/components/LoginForm.tsx
export const LoginForm = () => <form />;
```

And some styles:

```css
/* src/styles/login.css */
form { margin: 0; }
```
'''


# =============================================================================
# TEST 1-4: Safety
# =============================================================================

def test_canonicalize_paths(temp_project):
    """
    Test 1: Accepted paths come back relative and POSIX-style.
    """
    safety = DirectorySafety(temp_project)

    assert safety.canonicalize("src/app.py") == "src/app.py"
    assert safety.canonicalize("./src/app.py") == "src/app.py"
    assert safety.canonicalize("src/../lib/util.py") == "lib/util.py"
    assert safety.canonicalize(str(temp_project / "docs" / "README.md")) == "docs/README.md"
    assert safety.canonicalize("src\\windows\\path.py") == "src/windows/path.py"
    assert safety.canonicalize("`src/quoted.py`") == "src/quoted.py"

    assert safety.is_path_safe("src/app.py")
    assert safety.validate_path("src/app.py") == temp_project / "src" / "app.py"

    print("✓ Test 1 passed: Paths canonicalize correctly")


def test_unsafe_paths_rejected(temp_project):
    """
    Test 2: Anything that leaves the root, or touches protected state, is refused.
    """
    safety = DirectorySafety(temp_project)

    for candidate in ["../escape.py", "/etc/passwd", "src/../../escape.py",
                      ".git/config", ".genplan/todos/x.json", "", "  ", "."]:
        with pytest.raises(UnsafePathError):
            safety.canonicalize(candidate)

    assert not safety.is_path_safe("../escape.py")
    assert not safety.is_path_safe("/etc/passwd")

    # Unsafe errors are also ValueErrors
    with pytest.raises(ValueError):
        safety.validate_path("../../etc/shadow")

    print("✓ Test 2 passed: Unsafe paths are rejected")


def test_safe_file_list(temp_project):
    """
    Test 3: Ignored files never show up in the project file list.
    """
    (temp_project / "src").mkdir()
    (temp_project / "src" / "app.py").write_text("print('hi')\n")
    (temp_project / "node_modules" / "lib").mkdir(parents=True)
    (temp_project / "node_modules" / "lib" / "index.js").write_text("")
    (temp_project / "debug.log").write_text("noise")
    (temp_project / ".genplanignore").write_text("# logs\n*.log\n")

    files = DirectorySafety(temp_project).get_safe_file_list()

    assert files == [".genplanignore", "src/app.py"]

    print("✓ Test 3 passed: File list honours ignore patterns")


def test_find_project_root(temp_project):
    """
    Test 4: The nearest directory with a root indicator wins.
    """
    (temp_project / "pyproject.toml").write_text("[project]\nname = 'x'\n")
    nested = temp_project / "src" / "pkg"
    nested.mkdir(parents=True)

    assert find_project_root(nested) == temp_project

    print("✓ Test 4 passed: Project root discovered")


# =============================================================================
# TEST 5-10: Content Parser
# =============================================================================

def test_parse_marker_styles(parser):
    """
    Test 5: Three annotated blocks become three create operations, in order.
    """
    operations = parser.parse(SAMPLE_RESPONSE)

    assert [op.path for op in operations] == [
        "src/auth/login.py",
        "src/components/LoginForm.tsx",
        "src/styles/login.css",
    ]
    assert all(op.kind == OperationKind.CREATE for op in operations)
    assert all(not op.placeholder for op in operations)

    login = operations[0]
    assert login.content == "def login(user, password):\n    return user.check(password)\n"
    assert login.estimated_lines == 2
    assert login.prior_content is None
    assert login.description == "Create Python module login.py"

    # Parsing is deterministic
    assert parser.parse(SAMPLE_RESPONSE) == operations

    print("✓ Test 5 passed: Marker styles parsed in order")


def test_parse_info_string_paths(parser):
    """
    Test 6: Fence info strings can carry the path too.
    """
    text = (
        "```python:src/a.py\nA = 1\n```\n"
        "```python src/b.py\nB = 2\n```\n"
        "```tsx title=\"src/C.tsx\"\nexport const C = 3;\n```\n"
        "```sql\n-- File: db/schema.sql\nCREATE TABLE t (id int);\n```\n"
        "```html\n<!-- public/index.html -->\n<html></html>\n```\n"
    )

    operations = parser.parse(text)

    assert [op.path for op in operations] == [
        "src/a.py", "src/b.py", "src/C.tsx", "db/schema.sql", "public/index.html"
    ]
    assert operations[0].content == "A = 1\n"
    assert operations[3].content == "CREATE TABLE t (id int);\n"

    print("✓ Test 6 passed: Info string paths parsed")


def test_parse_skips_unsafe_and_duplicates(parser, caplog):
    """
    Test 7: Unsafe paths are logged and dropped; repeats keep the first block.
    """
    text = (
        "```python\n# ../outside.py\nBAD = True\n```\n"
        "```python\n# src/app.py\nVERSION = 1\n```\n"
        "```bash\n# .git/hooks/pre-commit\nrm -rf /\n```\n"
        "```python\n# ./src/app.py\nVERSION = 2\n```\n"
    )

    with caplog.at_level("WARNING"):
        operations = parser.parse(text)

    assert len(operations) == 1
    assert operations[0].path == "src/app.py"
    assert operations[0].content == "VERSION = 1\n"
    assert "Skipping unsafe file path" in caplog.text

    print("✓ Test 7 passed: Unsafe paths and duplicates handled")


def test_parse_existing_file_is_modify(parser, temp_project):
    """
    Test 8: A block for an existing file is a modify carrying the old content.
    """
    (temp_project / "app.py").write_text("OLD = True\n")

    operations = parser.parse("```python\n# app.py\nNEW = True\n```\n")

    assert len(operations) == 1
    op = operations[0]
    assert op.kind == OperationKind.MODIFY
    assert op.prior_content == "OLD = True\n"
    assert op.content == "NEW = True\n"
    assert op.description == "Modify Python module app.py"

    print("✓ Test 8 passed: Existing files become modify operations")


def test_parse_prose_placeholders(parser, temp_project):
    """
    Test 9: Files mentioned only in prose become placeholders.
    """
    (temp_project / "README.md").write_text("# Project\n")

    text = (
        "```python\n# src/app.py\nAPP = 1\n```\n"
        "You should also create a new file src/settings.py for configuration, "
        "and update README.md with usage notes. Then update src/app.py again."
    )

    operations = parser.parse(text)

    assert [op.path for op in operations] == ["src/app.py", "src/settings.py", "README.md"]

    settings = operations[1]
    assert settings.placeholder
    assert settings.kind == OperationKind.CREATE
    assert settings.content == placeholder_content("src/settings.py")
    assert settings.content.startswith("# Placeholder for src/settings.py")

    readme = operations[2]
    assert readme.placeholder
    assert readme.kind == OperationKind.MODIFY
    assert readme.content == "# Project\n"

    # Unknown extensions get an empty body
    assert placeholder_content("data.bin") == ""
    assert describe_file("notes.xyz", False) == "Create file notes.xyz"

    print("✓ Test 9 passed: Prose mentions become placeholders")


def test_parse_without_markers(parser):
    """
    Test 10: Ordinary code samples and plain prose produce no operations.
    """
    text = (
        "Run this:\n\n```bash\npip install genplan\n```\n\n"
        "```python\n# just a comment about things\nprint('hi')\n```\n"
        "Version v1.0 is out."
    )

    assert parser.parse(text) == []
    assert parser.parse("") == []

    print("✓ Test 10 passed: Unannotated text is ignored")


# =============================================================================
# TEST 11-12: Plan Builder
# =============================================================================

def test_plan_builder(parser):
    """
    Test 11: Plans keep operation order, name the branch and are frozen.
    """
    operations = parser.parse(SAMPLE_RESPONSE)

    plan = PlanBuilder(GitConfig()).build("Login Form", operations, cost_estimate=0.05)

    assert plan.git_strategy == GitStrategy.NEW_BRANCH
    assert plan.branch_name == "genplan-login-form"
    assert list(plan.operations) == operations
    assert plan.create_count == 3
    assert plan.modify_count == 0
    assert plan.total_lines == 4
    assert plan.estimated_cost == 0.05
    assert plan.summary == "Generate Login Form: 3 new files (~4 lines)"
    assert plan.summary == summarize("Login Form", operations)

    with pytest.raises(ValidationError):
        plan.feature = "something else"

    current = PlanBuilder(GitConfig(create_feature_branches=False)).build("x", operations)
    assert current.git_strategy == GitStrategy.CURRENT_BRANCH
    assert current.branch_name is None

    empty = PlanBuilder(GitConfig()).build("nothing", [])
    assert empty.is_empty
    assert empty.summary == "Generate nothing: no file changes (~0 lines)"

    print("✓ Test 11 passed: Plans built correctly")


def test_slugify():
    """
    Test 12: Feature labels become branch-safe slugs.
    """
    assert slugify("Login Form (v2)!") == "login-form-v2"
    assert slugify("  many   spaces  ") == "many-spaces"
    assert slugify("!!!") == "feature"
    assert len(slugify("word " * 40)) <= 50
    assert not slugify("word " * 40).endswith("-")

    print("✓ Test 12 passed: Slugs generated")


# =============================================================================
# TEST 13: Workspace
# =============================================================================

def test_workspace_files(workspace, temp_project):
    """
    Test 13: Whole-file access stays inside the root.
    """
    workspace.write_file("src/pkg/mod.py", "X = 1\n")
    workspace.write_file("README.md", "hello\n")

    assert workspace.exists("src/pkg/mod.py")
    assert workspace.read_file("src/pkg/mod.py") == "X = 1\n"
    assert workspace.read_file_if_exists("missing.py") is None
    assert not workspace.exists("../outside.py")

    with pytest.raises(FileNotFoundError):
        workspace.read_file("missing.py")
    with pytest.raises(UnsafePathError):
        workspace.write_file("../outside.py", "nope")

    tree = workspace.get_structure(["src/pkg/mod.py", "README.md"])
    assert tree.splitlines() == [
        f"{temp_project.name}/",
        "├── src/",
        "│   └── pkg/",
        "│       └── mod.py",
        "└── README.md",
    ]

    workspace.delete_file("README.md")
    assert not (temp_project / "README.md").exists()

    print("✓ Test 13 passed: Workspace file access works")


def test_parse_survives_malformed_paths(parser, temp_project, caplog):
    """
    Test 14: A path that cannot even be resolved drops only its own block.
    """
    safety = DirectorySafety(temp_project)
    with pytest.raises(UnsafePathError):
        safety.validate_path("src/a\x00b.py")
    assert not safety.is_path_safe("src/a\x00b.py")

    text = (
        "```python\n# src/a\x00b.py\nBROKEN = True\n```\n"
        "```python\n# ok.py\nOK = True\n```\n"
    )

    with caplog.at_level("WARNING"):
        operations = parser.parse(text)

    assert [op.path for op in operations] == ["ok.py"]
    assert "Skipping unsafe file path" in caplog.text

    print("✓ Test 14 passed: Malformed paths are dropped")
