"""
Cost tracking for genplan.
Records token usage to an append-only log and estimates costs.
"""

import json
import logging
import math
from datetime import date, datetime
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from schemas import UsageRecord

logger = logging.getLogger(__name__)


# Cost per 1K tokens (update as needed)
COST_TABLE = {
    "claude": {
        "input": 0.003,   # Claude Sonnet
        "output": 0.015
    },
    "gpt4": {
        "input": 0.005,   # GPT-4o
        "output": 0.015
    },
    "local": {
        "input": 0.0,     # Local = free
        "output": 0.0
    }
}

# Unknown models are priced pessimistically
DEFAULT_COSTS = {"input": 0.01, "output": 0.03}

# Rough average for English text and code
CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    """USD cost of a call, using the per-1K-token table."""
    costs = COST_TABLE.get(model, DEFAULT_COSTS)
    return (input_tokens / 1000) * costs["input"] + (output_tokens / 1000) * costs["output"]


class CostTracker:
    """
    Tracks usage for one session and persists it to <store>/costs.jsonl.

    Each call appends one JSON line, so concurrent writers never clobber
    each other's records.
    """

    def __init__(self, store_dir: Path, session_id: str):
        self.path = Path(store_dir) / "costs.jsonl"
        self.session_id = session_id
        self.records: list[UsageRecord] = []

    @property
    def total_input_tokens(self) -> int:
        return sum(r.input_tokens for r in self.records)

    @property
    def total_output_tokens(self) -> int:
        return sum(r.output_tokens for r in self.records)

    @property
    def total_tokens(self) -> int:
        return self.total_input_tokens + self.total_output_tokens

    def get_total_cost(self) -> float:
        """Cost of everything recorded in this session."""
        return sum(r.cost for r in self.records)

    def record(self, model: str, input_tokens: int, output_tokens: int) -> UsageRecord:
        """Add token usage and append it to the log."""
        usage = UsageRecord(
            session_id=self.session_id,
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost=estimate_cost(model, input_tokens, output_tokens),
        )
        self.records.append(usage)

        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a") as f:
            f.write(usage.model_dump_json() + "\n")

        return usage

    def load_history(self) -> list[UsageRecord]:
        """Every record in the log. Malformed lines are skipped."""
        if not self.path.exists():
            return []

        history = []
        with open(self.path) as f:
            for line_number, line in enumerate(f, 1):
                if not line.strip():
                    continue
                try:
                    history.append(UsageRecord.model_validate(json.loads(line)))
                except (json.JSONDecodeError, ValidationError):
                    logger.warning(f"Skipping malformed usage record at {self.path}:{line_number}")
        return history

    def daily_spending(self, day: Optional[date] = None) -> float:
        """Total cost logged on one day (default: today), across sessions."""
        day = day or datetime.now().date()
        return sum(r.cost for r in self.load_history() if r.timestamp.date() == day)

    def check_daily_limit(self, limit: Optional[float], additional: float = 0.0) -> bool:
        """
        True if spending `additional` today stays within limit.

        A limit of None means unlimited.
        """
        if limit is None:
            return True
        return self.daily_spending() + additional <= limit

    def format_summary(self) -> str:
        """Get a formatted cost summary."""
        lines = ["Cost Summary", "=" * 40]

        by_model: dict[str, list[UsageRecord]] = {}
        for r in self.records:
            by_model.setdefault(r.model, []).append(r)

        for model, records in by_model.items():
            tokens = sum(r.input_tokens + r.output_tokens for r in records)
            lines.append(f"\n{model}:")
            lines.append(f"  Tokens: {tokens:,}")
            lines.append(f"  Cost: ${sum(r.cost for r in records):.4f}")

        lines.append(f"\n{'=' * 40}")
        lines.append(f"TOTAL: {self.total_tokens:,} tokens, ${self.get_total_cost():.4f}")
        lines.append(f"Today: ${self.daily_spending():.4f}")

        return "\n".join(lines)
