"""Approval gate between planning and execution.

Per task: ``plan ready -> run`` when no sign-off is needed, otherwise
``plan ready -> awaiting_approval -> approved | rejected``. The gate fails
closed: approval required with no handler configured is a rejection, and so
is a handler that raises.
"""

from __future__ import annotations

import inspect
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from taskcore.agents.types import ExecutionPlan
from taskcore.enhanced_logging import log_approval_event
from taskcore.exceptions_unified import ApprovalError, error_message
from taskcore.orchestration.models import AutonomyLevel, Task

logger = logging.getLogger(__name__)

AUTO_APPROVED_REASON = "Auto-approved based on autonomy level"
NO_HANDLER_REASON = "No approval handler configured"


@dataclass
class ApprovalRequest:
    """What a human or policy is asked to sign off on."""

    id: str
    task: Task
    plan: ExecutionPlan
    summary: str
    risks: List[str] = field(default_factory=list)
    timestamp: float = field(default_factory=time.time)


@dataclass
class ApprovalDecision:
    request_id: str
    approved: bool
    reason: Optional[str] = None
    modified_plan: Optional[ExecutionPlan] = None
    timestamp: float = field(default_factory=time.time)


ApprovalHandler = Callable[
    [ApprovalRequest], Union[ApprovalDecision, Awaitable[ApprovalDecision]]
]


def _approval_id() -> str:
    return f"approval-{uuid.uuid4().hex[:12]}"


class ApprovalGate:
    """Decides whether a plan needs sign-off and collects the decision."""

    def __init__(self, max_auto_approvals: int = 10, handler: Optional[ApprovalHandler] = None) -> None:
        self.max_auto_approvals = max_auto_approvals
        self._handler = handler
        self._pending: Dict[str, ApprovalRequest] = {}
        self._auto_approvals = 0
        self._lock = threading.RLock()

    def set_approval_handler(self, handler: Optional[ApprovalHandler]) -> None:
        self._handler = handler

    @property
    def has_handler(self) -> bool:
        return self._handler is not None

    def requires_approval(self, task: Task, plan: ExecutionPlan) -> bool:
        if plan.requires_approval:
            return True
        return task.autonomy_level != AutonomyLevel.FULL

    async def request_approval(self, task: Task, plan: ExecutionPlan) -> ApprovalDecision:
        if not self.requires_approval(task, plan):
            with self._lock:
                self._auto_approvals += 1
            decision = ApprovalDecision(
                request_id=_approval_id(), approved=True, reason=AUTO_APPROVED_REASON
            )
            log_approval_event("auto_approved", task_id=task.id, role=task.role.value)
            return decision

        if self._handler is None:
            logger.warning("Task %s needs approval but no handler is configured", task.id)
            log_approval_event("rejected", task_id=task.id, reason=NO_HANDLER_REASON)
            return ApprovalDecision(request_id=_approval_id(), approved=False, reason=NO_HANDLER_REASON)

        request = ApprovalRequest(
            id=_approval_id(),
            task=task,
            plan=plan,
            summary=self.generate_summary(task, plan),
            risks=list(plan.risks),
        )
        with self._lock:
            self._pending[request.id] = request
        log_approval_event("requested", task_id=task.id, request_id=request.id)

        try:
            outcome = self._handler(request)
            if inspect.isawaitable(outcome):
                outcome = await outcome
            if not isinstance(outcome, ApprovalDecision):
                raise ApprovalError(f"handler returned {type(outcome).__name__}, expected ApprovalDecision")
            decision = outcome
        except Exception as exc:
            logger.exception("Approval handler failed for task %s", task.id)
            decision = ApprovalDecision(
                request_id=request.id,
                approved=False,
                reason=f"Approval handler error: {error_message(exc)}",
            )
        finally:
            with self._lock:
                self._pending.pop(request.id, None)

        log_approval_event(
            "approved" if decision.approved else "rejected",
            task_id=task.id,
            request_id=request.id,
            reason=decision.reason,
        )
        return decision

    def should_auto_approve(self, task: Task) -> bool:
        """Policy hint: full autonomy and the auto-approval budget not spent."""
        if task.autonomy_level != AutonomyLevel.FULL:
            return False
        return self.auto_approval_count < self.max_auto_approvals

    # -- pending requests ------------------------------------------------

    def get_pending_approvals(self) -> List[ApprovalRequest]:
        with self._lock:
            return list(self._pending.values())

    def get_pending_approval(self, request_id: str) -> Optional[ApprovalRequest]:
        with self._lock:
            return self._pending.get(request_id)

    def cancel_approval(self, request_id: str) -> bool:
        with self._lock:
            return self._pending.pop(request_id, None) is not None

    # -- auto-approval counter ------------------------------------------

    @property
    def auto_approval_count(self) -> int:
        with self._lock:
            return self._auto_approvals

    def reset_auto_approval_count(self) -> None:
        with self._lock:
            self._auto_approvals = 0

    @staticmethod
    def generate_summary(task: Task, plan: ExecutionPlan) -> str:
        lines = [
            f"Task: {task.title}",
            f"Type: {task.role.value}",
            f"Description: {task.description}",
            "",
            "Execution Plan:",
            *(f"  {i}. {step.description}" for i, step in enumerate(plan.steps, start=1)),
            "",
            f"Estimated tool calls: {plan.estimated_tool_calls}",
        ]
        if plan.risks:
            lines += ["", "Risks:", *(f"  - {risk}" for risk in plan.risks)]
        return "\n".join(lines)


# ============================================================================
# HANDLER FACTORIES
# ============================================================================

PromptFn = Callable[[str, Sequence[str]], Union[str, Awaitable[str]]]


def create_interactive_approval_handler(
    prompt_fn: PromptFn,
    output: Callable[[str], Any] = print,
    edit_plan: Optional[Callable[[ExecutionPlan], ExecutionPlan]] = None,
) -> ApprovalHandler:
    """Handler that shows the summary and asks ``yes`` / ``no`` / ``modify``.

    ``prompt_fn(message, options)`` may be sync or async. On ``modify`` the
    plan is passed through ``edit_plan`` when given and returned as the
    decision's ``modified_plan``.
    """

    async def handler(request: ApprovalRequest) -> ApprovalDecision:
        rule = "=" * 60
        output(f"\n{rule}\nAPPROVAL REQUIRED\n{rule}\n{request.summary}\n{rule}\n")

        answer = prompt_fn("Do you want to proceed?", ["yes", "no", "modify"])
        if inspect.isawaitable(answer):
            answer = await answer
        answer = str(answer).strip().lower()

        if answer in ("yes", "y"):
            return ApprovalDecision(request_id=request.id, approved=True)
        if answer == "modify":
            plan = edit_plan(request.plan) if edit_plan else request.plan
            return ApprovalDecision(
                request_id=request.id,
                approved=True,
                reason="Plan modified by user",
                modified_plan=plan,
            )
        return ApprovalDecision(request_id=request.id, approved=False, reason="Rejected by user")

    return handler


def create_auto_approve_handler() -> ApprovalHandler:
    async def handler(request: ApprovalRequest) -> ApprovalDecision:
        return ApprovalDecision(request_id=request.id, approved=True, reason="Auto-approved")

    return handler


def create_auto_reject_handler(reason: str = "Auto-rejected") -> ApprovalHandler:
    async def handler(request: ApprovalRequest) -> ApprovalDecision:
        return ApprovalDecision(request_id=request.id, approved=False, reason=reason)

    return handler
