"""Role agents with minimal default plans and prompts."""

from typing import Dict, List

from taskcore.agents.base import BaseAgent
from taskcore.agents.types import (
    AgentCapabilities,
    AgentContext,
    AgentMetadata,
    ExecutionPlan,
    ExecutionStep,
    ValidationIssue,
)
from taskcore.interfaces.model_client import ModelClient
from taskcore.orchestration.models import AgentRole

_COMPLETION_NOTE = (
    "When you are done, end your turn with a short plain-text summary of what you did."
)


# ============================================================================
# TEST
# ============================================================================


class TestAgent(BaseAgent):
    __test__ = False  # not a pytest test class

    metadata = AgentMetadata(
        role=AgentRole.TEST,
        name="Test Agent",
        description="Writes and updates unit tests for the target code",
        capabilities=AgentCapabilities(can_write_files=True, can_execute_commands=True, can_modify_tests=True),
    )

    def build_plan(self, context: AgentContext) -> ExecutionPlan:
        steps = (
            self.step("discover", "List source and existing test files", "list_files"),
            self.step("read-source", "Read the code under test", "read_file", ["discover"]),
            self.step("write-tests", "Write or extend test files", "write_file", ["read-source"]),
            self.step("run-tests", "Run the new tests", "run_tests", ["write-tests"]),
        )
        return ExecutionPlan(steps=steps, estimated_tool_calls=len(steps) * 2)

    def build_system_prompt(self, context: AgentContext) -> str:
        return (
            "You are a Test Agent. Write focused, deterministic unit tests for the "
            "target code. Only create or change test files.\n\n"
            f"{self.describe_context(context)}\n\n{_COMPLETION_NOTE}"
        )

    def build_initial_prompt(self, context: AgentContext) -> str:
        return f"Write tests for: {context.task.title}\n\n{context.task.description}".rstrip()


# ============================================================================
# QA
# ============================================================================


class QAAgent(BaseAgent):
    metadata = AgentMetadata(
        role=AgentRole.QA,
        name="QA Agent",
        description="Reviews code quality and reports issues without modifying files",
        capabilities=AgentCapabilities(can_execute_commands=True),
    )

    def build_plan(self, context: AgentContext) -> ExecutionPlan:
        steps = (
            self.step("discover", "List files in scope", "list_files"),
            self.step("inspect", "Read files and check for quality issues", "read_file", ["discover"]),
            self.step("lint", "Run the linter", "run_linter"),
            self.step("test", "Run the test suite", "run_tests"),
            self.step(
                "report", "Summarize findings with an overall PASS/FAIL status", None, ["inspect", "lint", "test"]
            ),
        )
        return ExecutionPlan(steps=steps, estimated_tool_calls=6)

    def build_system_prompt(self, context: AgentContext) -> str:
        return (
            "You are a QA Agent responsible for validating code quality. You must NOT "
            "modify any files; your role is strictly to inspect and report.\n\n"
            f"{self.describe_context(context)}\n\n"
            "Finish with an overall QA status (PASS/FAIL) and the issues found."
        )

    def build_initial_prompt(self, context: AgentContext) -> str:
        return f"Run QA checks.\n\nTask: {context.task.description or context.task.title}"

    def tool_failure_severity(self, tool_name: str) -> str:
        return "error" if "test" in tool_name else "warning"

    def suggestions(self, issues: List[ValidationIssue]) -> List[str]:
        return ["Fix the reported issues before committing"] if issues else []


# ============================================================================
# FEATURE
# ============================================================================


class FeatureAgent(BaseAgent):
    metadata = AgentMetadata(
        role=AgentRole.FEATURE,
        name="Feature Agent",
        description="Implements new functionality in the source tree",
        capabilities=AgentCapabilities(
            can_write_files=True, can_execute_commands=True, can_modify_source=True, can_modify_tests=True
        ),
    )

    def build_plan(self, context: AgentContext) -> ExecutionPlan:
        steps = (
            self.step("explore", "Explore the relevant parts of the codebase", "list_files"),
            self.step("read", "Read the files the feature touches", "read_file", ["explore"]),
            self.step("implement", "Implement the feature", "edit_file", ["read"]),
            self.step("add-files", "Create new modules if needed", "create_file", ["read"], optional=True),
        )
        return ExecutionPlan(
            steps=steps,
            estimated_tool_calls=10,
            risks=("Modifies source files",),
        )

    def build_system_prompt(self, context: AgentContext) -> str:
        return (
            "You are a Feature Agent. Implement the requested functionality with "
            "minimal, well-structured changes that follow the existing code style.\n\n"
            f"{self.describe_context(context)}\n\n{_COMPLETION_NOTE}"
        )

    def build_initial_prompt(self, context: AgentContext) -> str:
        return f"Implement feature: {context.task.title}\n\n{context.task.description}".rstrip()


# ============================================================================
# REFACTOR
# ============================================================================


class RefactorAgent(BaseAgent):
    metadata = AgentMetadata(
        role=AgentRole.REFACTOR,
        name="Refactor Agent",
        description="Restructures code without changing its behavior",
        capabilities=AgentCapabilities(
            can_write_files=True, can_execute_commands=True, can_modify_source=True
        ),
    )

    def build_plan(self, context: AgentContext) -> ExecutionPlan:
        steps = (
            self.step("read", "Read the code to refactor", "read_file"),
            self.step("refactor", "Apply behavior-preserving edits", "edit_file", ["read"]),
            self.step("verify", "Run the tests to confirm behavior is unchanged", "run_tests", ["refactor"]),
        )
        return ExecutionPlan(
            steps=steps,
            estimated_tool_calls=6,
            risks=("Behavior may change if the refactor is incorrect",),
        )

    def build_system_prompt(self, context: AgentContext) -> str:
        return (
            "You are a Refactor Agent. Improve structure and readability while "
            "preserving behavior exactly. Prefer small, reviewable edits.\n\n"
            f"{self.describe_context(context)}\n\n{_COMPLETION_NOTE}"
        )

    def build_initial_prompt(self, context: AgentContext) -> str:
        return f"Refactor: {context.task.title}\n\n{context.task.description}".rstrip()


# ============================================================================
# DOCS
# ============================================================================


class DocsAgent(BaseAgent):
    metadata = AgentMetadata(
        role=AgentRole.DOCS,
        name="Docs Agent",
        description="Writes and updates project documentation",
        capabilities=AgentCapabilities(can_write_files=True),
    )

    def build_plan(self, context: AgentContext) -> ExecutionPlan:
        steps = (
            self.step("read", "Read the code and existing docs", "read_file"),
            self.step("write", "Write or update documentation", "write_file", ["read"]),
        )
        return ExecutionPlan(steps=steps, estimated_tool_calls=5)

    def build_system_prompt(self, context: AgentContext) -> str:
        return (
            "You are a Docs Agent. Write accurate, concise documentation that matches "
            "the code as it is. Do not change source code.\n\n"
            f"{self.describe_context(context)}\n\n{_COMPLETION_NOTE}"
        )

    def build_initial_prompt(self, context: AgentContext) -> str:
        return f"Document: {context.task.title}\n\n{context.task.description}".rstrip()


# ============================================================================
# SECURITY
# ============================================================================


class SecurityAgent(BaseAgent):
    metadata = AgentMetadata(
        role=AgentRole.SECURITY,
        name="Security Agent",
        description="Audits the codebase for secrets and insecure patterns",
        capabilities=AgentCapabilities(
            can_write_files=True, can_execute_commands=True, can_modify_source=True
        ),
    )

    def build_plan(self, context: AgentContext) -> ExecutionPlan:
        scan_type = context.task.options.get("scan_type", "full")
        steps: List[ExecutionStep] = [
            self.step("analyze-structure", "Identify files to scan", "list_files"),
        ]
        if scan_type in ("full", "secrets"):
            steps.append(self.step(
                "scan-secrets", "Scan for hardcoded secrets and credentials", "read_file", ["analyze-structure"]
            ))
        if scan_type in ("full", "sast"):
            steps.append(self.step(
                "analyze-code-patterns", "Check code for security anti-patterns", "read_file", ["analyze-structure"]
            ))
        steps.append(self.step(
            "generate-report", "Write the security audit report", "write_file", [s.id for s in steps]
        ))
        return ExecutionPlan(
            steps=tuple(steps),
            estimated_tool_calls=len(steps) * 3,
            requires_approval=True,
            risks=("Findings may expose vulnerabilities in logs",),
        )

    def build_system_prompt(self, context: AgentContext) -> str:
        return (
            "You are a Security Agent. Look for hardcoded secrets, injection risks, "
            "unsafe deserialization and missing input validation. Report findings "
            "with file and line where possible.\n\n"
            f"{self.describe_context(context)}\n\n{_COMPLETION_NOTE}"
        )

    def build_initial_prompt(self, context: AgentContext) -> str:
        scan_type = context.task.options.get("scan_type", "full")
        return f"Run a {scan_type} security audit.\n\nTask: {context.task.description or context.task.title}"

    def tool_failure_severity(self, tool_name: str) -> str:
        return "error" if tool_name == "write_file" else "warning"


AGENT_CLASSES = {
    AgentRole.TEST: TestAgent,
    AgentRole.QA: QAAgent,
    AgentRole.FEATURE: FeatureAgent,
    AgentRole.REFACTOR: RefactorAgent,
    AgentRole.DOCS: DocsAgent,
    AgentRole.SECURITY: SecurityAgent,
}


def create_default_agents(model_client: ModelClient) -> Dict[AgentRole, BaseAgent]:
    """One agent per role, all sharing ``model_client``."""
    return {role: cls(model_client) for role, cls in AGENT_CLASSES.items()}
