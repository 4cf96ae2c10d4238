"""
Approval state machine for genplan.

WHY THIS FILE EXISTS:
--------------------
Nothing is written to disk unless someone said yes. For every operation of a
plan, in order, the machine asks an injected decision callback what to do:

    approve -> apply this operation
    skip    -> leave the file alone
    edit    -> not supported yet; treated as skip (the engine adds a note)
    auto    -> apply this operation and every remaining one without asking

STATE FLOW:
----------
    IDLE ──request()──> AWAITING_DECISION ──approve/skip/edit──> IDLE
                               │
                               └──auto──> AUTO_APPROVE ──(stays)──┐
                                                                  │
    any non-terminal state ──terminate()──> TERMINATED <──────────┘

AUTO_APPROVE never goes back to asking within one plan. Once TERMINATED, the
machine refuses further requests.

The callback is what makes this testable: the CLI plugs in a rich prompt,
the MCP server and --yes plug in "auto", tests plug in a scripted list.
"""

import inspect
import logging
from typing import Awaitable, Callable, Optional, Union

from errors import InvalidTransitionError
from schemas import ApprovalState, Decision, FileOperation

logger = logging.getLogger(__name__)


DecisionValue = Union[Decision, str]
DecisionCallback = Callable[
    [FileOperation, int, int],
    Union[DecisionValue, Awaitable[DecisionValue]]
]


# Valid transitions between approval states
APPROVAL_TRANSITIONS = {
    ApprovalState.IDLE: [
        ApprovalState.AWAITING_DECISION,
        ApprovalState.AUTO_APPROVE,
        ApprovalState.TERMINATED,
    ],
    ApprovalState.AWAITING_DECISION: [
        ApprovalState.IDLE,
        ApprovalState.AUTO_APPROVE,
        ApprovalState.TERMINATED,
    ],
    ApprovalState.AUTO_APPROVE: [ApprovalState.TERMINATED],
    ApprovalState.TERMINATED: [],
}

# Typed answers accepted from a human (or a string-returning callback)
RESPONSES = {
    "y": Decision.APPROVE,
    "yes": Decision.APPROVE,
    "approve": Decision.APPROVE,
    "n": Decision.SKIP,
    "no": Decision.SKIP,
    "s": Decision.SKIP,
    "skip": Decision.SKIP,
    "e": Decision.EDIT,
    "edit": Decision.EDIT,
    "a": Decision.AUTO,
    "auto": Decision.AUTO,
    "auto-mode": Decision.AUTO,
}


def parse_response(response: str) -> Optional[Decision]:
    """Map a typed answer to a Decision, or None if it is not recognised."""
    return RESPONSES.get(response.strip().lower())


def coerce_decision(value: DecisionValue) -> Decision:
    """
    Accept a Decision or any recognised answer string.

    Raises:
        ValueError: If the value is not a valid decision
    """
    if isinstance(value, Decision):
        return value
    if isinstance(value, str):
        decision = parse_response(value)
        if decision is not None:
            return decision
    raise ValueError(f"Invalid approval decision: {value!r}")


class ApprovalStateMachine:
    """
    Per-plan approval loop.

    Usage:
        machine = ApprovalStateMachine(ui.prompt_decision)
        for i, op in enumerate(plan.operations, 1):
            decision = await machine.request(op, i, len(plan.operations))
        machine.terminate()
    """

    def __init__(self, decide: DecisionCallback, start_in_auto: bool = False):
        """
        Args:
            decide: Called as decide(operation, index, total); may be sync or
                    async and may return a Decision or an answer string
            start_in_auto: Skip asking altogether (--yes, approval.auto_mode)
        """
        self.decide = decide
        self.state = ApprovalState.IDLE
        self.history: list[ApprovalState] = [ApprovalState.IDLE]

        if start_in_auto:
            self._transition(ApprovalState.AUTO_APPROVE)

    @property
    def is_auto(self) -> bool:
        return self.state == ApprovalState.AUTO_APPROVE

    @property
    def is_terminated(self) -> bool:
        return self.state == ApprovalState.TERMINATED

    def can_transition(self, to_state: ApprovalState) -> bool:
        return to_state in APPROVAL_TRANSITIONS.get(self.state, [])

    def _transition(self, to_state: ApprovalState) -> None:
        if not self.can_transition(to_state):
            raise InvalidTransitionError(
                f"Invalid approval transition: {self.state.value} -> {to_state.value}"
            )
        self.state = to_state
        self.history.append(to_state)

    async def request(self, operation: FileOperation, index: int, total: int) -> Decision:
        """
        Get the decision for one operation.

        Returns:
            APPROVE when already in auto mode, otherwise the coerced answer
            of the callback (AUTO included, which also switches modes)

        Raises:
            InvalidTransitionError: If the machine has terminated
            ValueError: If the callback returned an invalid decision
        """
        if self.is_terminated:
            raise InvalidTransitionError("Approval loop has already terminated")

        if self.is_auto:
            return Decision.APPROVE

        self._transition(ApprovalState.AWAITING_DECISION)

        try:
            value = self.decide(operation, index, total)
            if inspect.isawaitable(value):
                value = await value
            decision = coerce_decision(value)
        except Exception:
            self._transition(ApprovalState.IDLE)
            raise

        if decision == Decision.AUTO:
            logger.info(f"Auto mode enabled at operation {index}/{total}")
            self._transition(ApprovalState.AUTO_APPROVE)
        else:
            self._transition(ApprovalState.IDLE)

        return decision

    def terminate(self) -> None:
        """End the loop. Idempotent."""
        if not self.is_terminated:
            self._transition(ApprovalState.TERMINATED)
