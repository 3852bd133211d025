"""Base agent: plan, execute through the shared loop, validate.

Concrete agents describe themselves with ``metadata`` and supply prompts and
a plan; execution is always delegated to ``AgentExecutionLoop``.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Any, List, Optional

from taskcore.agents.loop import AgentEventHandler, AgentExecutionLoop
from taskcore.agents.types import (
    AgentContext,
    AgentEvent,
    AgentMetadata,
    AgentResult,
    ExecutionPlan,
    ExecutionStep,
    ValidationIssue,
    ValidationResult,
)
from taskcore.interfaces.model_client import ModelClient

logger = logging.getLogger(__name__)

DESTRUCTIVE_TOOLS = frozenset({"delete_file"})
DESTRUCTIVE_RISK = "Plan deletes files"


class BaseAgent(ABC):
    """Interface every role agent implements."""

    metadata: AgentMetadata

    def __init__(self, model_client: ModelClient) -> None:
        self.model_client = model_client
        self._event_handlers: List[AgentEventHandler] = []

    @property
    def role(self):
        return self.metadata.role

    def on_event(self, handler: AgentEventHandler) -> None:
        self._event_handlers.append(handler)

    # ------------------------------------------------------------------
    # Plan / execute / validate
    # ------------------------------------------------------------------

    async def plan_execution(self, context: AgentContext) -> ExecutionPlan:
        """Build the role's plan; destructive steps may force approval."""
        plan = self.build_plan(context)
        if not context.settings.require_approval_for_destructive:
            return plan
        destructive = any(step.tool_name in DESTRUCTIVE_TOOLS for step in plan.steps)
        if destructive and not plan.requires_approval:
            risks = plan.risks if DESTRUCTIVE_RISK in plan.risks else plan.risks + (DESTRUCTIVE_RISK,)
            plan = replace(plan, requires_approval=True, risks=risks)
        return plan

    async def execute(self, context: AgentContext) -> AgentResult:
        """Run the loop; an approved plan is appended to the system prompt."""
        system_prompt = self.build_system_prompt(context)
        if context.plan is not None and (context.plan.steps or context.plan.risks):
            system_prompt = f"{system_prompt}\n\n{self.describe_plan(context.plan)}"
        loop = AgentExecutionLoop(self.model_client, on_event=self._dispatch_event)
        return await loop.run(
            context,
            system_prompt=system_prompt,
            initial_prompt=self.build_initial_prompt(context),
        )

    async def validate_result(self, result: AgentResult) -> ValidationResult:
        """Default check: a failed run is an error, failed tool calls are warnings."""
        issues = [
            ValidationIssue(
                severity=self.tool_failure_severity(record.tool_name),
                message=f"{record.tool_name} failed: {record.result.error or 'Unknown error'}",
            )
            for record in result.tools_used
            if not record.result.success
        ]
        if not result.success:
            issues.append(ValidationIssue(severity="error", message=result.error or "Run failed"))
        return ValidationResult(
            valid=not any(i.severity == "error" for i in issues),
            issues=issues,
            suggestions=self.suggestions(issues),
        )

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def build_plan(self, context: AgentContext) -> ExecutionPlan:
        ...

    @abstractmethod
    def build_system_prompt(self, context: AgentContext) -> str:
        ...

    @abstractmethod
    def build_initial_prompt(self, context: AgentContext) -> str:
        ...

    def tool_failure_severity(self, tool_name: str) -> str:
        return "warning"

    def suggestions(self, issues: List[ValidationIssue]) -> List[str]:
        return ["Review the failed tool calls before accepting the changes"] if issues else []

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def describe_context(self, context: AgentContext) -> str:
        """Common prompt footer: tools, working directory and target."""
        lines = [
            f"Available tools: {', '.join(context.tools) or 'none'}",
            f"Working directory: {context.working_directory}",
        ]
        target = context.task.target
        if target is not None:
            if target.files:
                lines.append(f"Target files: {', '.join(target.files)}")
            if target.directories:
                lines.append(f"Target directories: {', '.join(target.directories)}")
            if target.pattern:
                lines.append(f"Target pattern: {target.pattern}")
        return "\n".join(lines)

    @staticmethod
    def describe_plan(plan: ExecutionPlan) -> str:
        """Approved plan as a numbered list the run must follow."""
        lines = ["Follow this approved plan:"]
        for number, step in enumerate(plan.steps, start=1):
            tool = f" [{step.tool_name}]" if step.tool_name else ""
            optional = " (optional)" if step.optional else ""
            lines.append(f"{number}. {step.description}{tool}{optional}")
        if plan.risks:
            lines.append(f"Known risks: {'; '.join(plan.risks)}")
        return "\n".join(lines)

    @staticmethod
    def step(step_id: str, description: str, tool_name: Optional[str] = None,
             depends_on: Any = (), optional: bool = False) -> ExecutionStep:
        return ExecutionStep(
            id=step_id,
            description=description,
            tool_name=tool_name,
            depends_on=tuple(depends_on),
            optional=optional,
        )

    def _dispatch_event(self, event: AgentEvent) -> None:
        for handler in list(self._event_handlers):
            try:
                handler(event)
            except Exception:
                logger.exception("%s event handler failed", self.metadata.name)
