"""
Plan builder for genplan.

Wraps parsed operations into an immutable GenerationPlan: picks the git
strategy, derives the branch name and writes a deterministic summary. Nothing
here touches the disk or the network, so the same inputs always produce the
same plan.
"""

import re

from config import GitConfig
from schemas import FileOperation, GenerationPlan, GitStrategy, OperationKind


MAX_SLUG_LENGTH = 50


def slugify(feature: str) -> str:
    """
    Branch-safe form of a feature label.

    Example:
        slugify("Login Form (v2)!") -> "login-form-v2"
    """
    slug = feature.lower()
    slug = re.sub(r"[^a-z0-9\s-]", "", slug)
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    slug = slug.strip("-")[:MAX_SLUG_LENGTH].strip("-")
    return slug or "feature"


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'s' if count != 1 else ''}"


def summarize(feature: str, operations: list[FileOperation]) -> str:
    """
    One-line summary of a plan.

    Example:
        "Generate login form: 2 new files, 1 modified file (~84 lines)"
    """
    creates = sum(1 for op in operations if op.kind == OperationKind.CREATE)
    modifies = sum(1 for op in operations if op.kind == OperationKind.MODIFY)
    deletes = sum(1 for op in operations if op.kind == OperationKind.DELETE)
    total_lines = sum(op.estimated_lines for op in operations)

    parts = []
    if creates:
        parts.append(_plural(creates, "new file"))
    if modifies:
        parts.append(_plural(modifies, "modified file"))
    if deletes:
        parts.append(_plural(deletes, "deleted file"))
    if not parts:
        parts.append("no file changes")

    return f"Generate {feature}: {', '.join(parts)} (~{total_lines} lines)"


class PlanBuilder:
    """
    Builds GenerationPlans according to the git configuration.

    Usage:
        builder = PlanBuilder(config.git)
        plan = builder.build("login form", operations, cost_estimate=0.04)
    """

    def __init__(self, git_config: GitConfig):
        self.git_config = git_config

    def build(
        self,
        feature: str,
        operations: list[FileOperation],
        cost_estimate: float = 0.0
    ) -> GenerationPlan:
        """
        Assemble a plan. Operation order is kept exactly as given.

        Args:
            feature: Feature label, used for the branch name and summary
            operations: Parsed operations
            cost_estimate: Estimated USD cost of producing the text

        Returns:
            Frozen GenerationPlan
        """
        if self.git_config.create_feature_branches:
            strategy = GitStrategy.NEW_BRANCH
            branch_name = f"{self.git_config.branch_prefix}{slugify(feature)}"
        else:
            strategy = GitStrategy.CURRENT_BRANCH
            branch_name = None

        return GenerationPlan(
            feature=feature,
            operations=tuple(operations),
            estimated_cost=max(cost_estimate, 0.0),
            git_strategy=strategy,
            branch_name=branch_name,
            summary=summarize(feature, operations),
        )
