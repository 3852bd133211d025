"""Command-backed tools: test runner, linter and git.

Commands are argv lists (never a shell) run inside the working directory.
A command that outlives its timeout is killed and reported with exit code
124. A non-zero exit becomes a failed ToolResult carrying the output.
"""

import asyncio
import logging
import os
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

from taskcore.exceptions_unified import ToolExecutionError
from taskcore.interfaces.tools import ToolResult
from taskcore.tools.file_ops import FileTool

logger = logging.getLogger(__name__)

TEST_CATEGORY = "test"
LINT_CATEGORY = "lint"
GIT_CATEGORY = "git"

# Tools in these categories run project commands.
COMMAND_CATEGORIES = frozenset({TEST_CATEGORY, LINT_CATEGORY})

# Only offered when the agent may commit and the task enables commits.
COMMIT_TOOLS = frozenset({"git_add", "git_commit"})

DEFAULT_TEST_COMMAND = ("python", "-m", "pytest", "-q")
DEFAULT_LINT_COMMAND = ("ruff", "check")
DEFAULT_COMMAND_TIMEOUT = 120.0
TIMEOUT_EXIT_CODE = 124

_TEST_COUNT = re.compile(r"(\d+) (passed|failed|skipped|errors?)")


@dataclass
class CommandResult:
    stdout: str
    stderr: str
    exit_code: int

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def output(self) -> str:
        return self.stdout or self.stderr


async def run_command(argv: Sequence[str], cwd: str, timeout: float = DEFAULT_COMMAND_TIMEOUT) -> CommandResult:
    """Run ``argv`` in ``cwd`` and capture its output."""
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            cwd=cwd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env={**os.environ, "NO_COLOR": "1"},
        )
    except OSError as exc:
        raise ToolExecutionError(f"Cannot run {argv[0]}: {exc.strerror or exc}") from exc

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout)
    except asyncio.TimeoutError:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
        stdout, stderr = await proc.communicate()
        logger.warning("Command timed out after %.0fs: %s", timeout, " ".join(argv))
        return CommandResult(_decode(stdout), _decode(stderr) + "\nProcess timed out", TIMEOUT_EXIT_CODE)
    return CommandResult(_decode(stdout), _decode(stderr), proc.returncode if proc.returncode is not None else 1)


def _decode(data: Optional[bytes]) -> str:
    return (data or b"").decode("utf-8", errors="replace")


# ============================================================================
# INPUT MODELS
# ============================================================================


class RunTestsInput(BaseModel):
    path: Optional[str] = Field(default=None, description="Test file or directory to run; defaults to all tests")
    args: List[str] = Field(default_factory=list, description="Extra arguments for the test command")


class RunLinterInput(BaseModel):
    paths: List[str] = Field(default_factory=list, description="Files or directories to lint")
    fix: bool = Field(default=False, description="Apply automatic fixes")


class GitStatusInput(BaseModel):
    pass


class GitDiffInput(BaseModel):
    staged: bool = Field(default=False, description="Show staged changes")
    base: Optional[str] = Field(default=None, description="Revision to diff against")
    path: Optional[str] = Field(default=None, description="Limit the diff to one path")


class GitLogInput(BaseModel):
    count: int = Field(default=10, ge=1, le=100, description="Number of commits")
    path: Optional[str] = Field(default=None, description="Only commits touching this path")


class GitAddInput(BaseModel):
    paths: List[str] = Field(..., min_length=1, description="Paths to stage")


class GitCommitInput(BaseModel):
    message: str = Field(..., min_length=1, description="Commit message")


# ============================================================================
# BASE
# ============================================================================


class CommandTool(FileTool):
    """File tool whose work is an external command."""

    def __init__(self, working_directory: str, timeout: float = DEFAULT_COMMAND_TIMEOUT) -> None:
        super().__init__(working_directory)
        self.timeout = timeout

    async def command(self, argv: Sequence[str]) -> CommandResult:
        logger.debug("%s: %s", self.name, " ".join(argv))
        return await run_command(argv, str(self.root), self.timeout)

    def relative(self, path: str) -> str:
        """Confine ``path`` to the working directory and return it relative."""
        full = self.resolve(path)
        return str(full.relative_to(self.root)) if full != self.root else "."


def _command_result(result: CommandResult, failure: str, **metadata: Any) -> ToolResult:
    metadata["exit_code"] = result.exit_code
    if result.ok:
        return ToolResult(success=True, output=result.output, metadata=metadata)
    return ToolResult(
        success=False,
        output=result.output,
        error=result.stderr.strip() or failure,
        metadata=metadata,
    )


# ============================================================================
# TEST RUNNER / LINTER
# ============================================================================


class RunTestsTool(CommandTool):
    name = "run_tests"
    description = "Run the project's test suite, or one test file, and report pass/fail counts"
    category = TEST_CATEGORY
    input_model = RunTestsInput

    def __init__(self, working_directory: str, command: Sequence[str] = DEFAULT_TEST_COMMAND,
                 timeout: float = DEFAULT_COMMAND_TIMEOUT) -> None:
        super().__init__(working_directory, timeout)
        self.base_command = list(command)

    async def run(self, params: RunTestsInput) -> ToolResult:
        argv = list(self.base_command)
        if params.path:
            argv.append(self.relative(params.path))
        argv.extend(params.args)
        result = await self.command(argv)
        counts = parse_test_counts(result.stdout)
        tool_result = _command_result(result, "Tests failed", **counts)
        if counts:
            summary = ", ".join(f"{n} {label}" for label, n in counts.items())
            tool_result.output = f"Tests: {summary}\n\n{tool_result.output}"
        return tool_result


def parse_test_counts(output: str) -> Dict[str, int]:
    """Counts from a pytest-style summary line, e.g. ``3 passed, 1 failed``."""
    counts: Dict[str, int] = {}
    for line in reversed(output.splitlines()):
        found = _TEST_COUNT.findall(line)
        if found:
            for number, label in found:
                counts["errors" if label.startswith("error") else label] = int(number)
            break
    return counts


class RunLinterTool(CommandTool):
    name = "run_linter"
    description = "Run the project's linter and report any issues"
    category = LINT_CATEGORY
    input_model = RunLinterInput

    def __init__(self, working_directory: str, command: Sequence[str] = DEFAULT_LINT_COMMAND,
                 timeout: float = DEFAULT_COMMAND_TIMEOUT) -> None:
        super().__init__(working_directory, timeout)
        self.base_command = list(command)

    async def run(self, params: RunLinterInput) -> ToolResult:
        argv = list(self.base_command)
        if params.fix:
            argv.append("--fix")
        argv.extend(self.relative(p) for p in params.paths)
        result = await self.command(argv)
        return _command_result(result, "Lint issues found")


# ============================================================================
# GIT
# ============================================================================


class GitTool(CommandTool):
    category = GIT_CATEGORY

    async def git(self, *args: str) -> CommandResult:
        return await self.command(["git", *args])


class GitStatusTool(GitTool):
    name = "git_status"
    description = "Show the current branch and the staged, unstaged and untracked files"
    input_model = GitStatusInput

    async def run(self, params: GitStatusInput) -> ToolResult:
        status = await self.git("status", "--porcelain")
        if not status.ok:
            return _command_result(status, "Failed to get git status")
        branch = await self.git("rev-parse", "--abbrev-ref", "HEAD")

        staged: List[str] = []
        unstaged: List[str] = []
        untracked: List[str] = []
        for line in status.stdout.splitlines():
            if len(line) < 4:
                continue
            index, worktree, path = line[0], line[1], line[3:]
            if index == "?" and worktree == "?":
                untracked.append(path)
                continue
            if index != " ":
                staged.append(path)
            if worktree != " ":
                unstaged.append(path)

        current = branch.stdout.strip() if branch.ok else ""
        output = "\n".join([
            f"Branch: {current}",
            f"Staged: {len(staged)} file(s)",
            f"Unstaged: {len(unstaged)} file(s)",
            f"Untracked: {len(untracked)} file(s)",
        ])
        return ToolResult(
            success=True,
            output=output,
            metadata={"branch": current, "staged": staged, "unstaged": unstaged, "untracked": untracked},
        )


class GitDiffTool(GitTool):
    name = "git_diff"
    description = "Show changes in the working tree, the index, or against a revision"
    input_model = GitDiffInput

    async def run(self, params: GitDiffInput) -> ToolResult:
        args = ["diff"]
        if params.staged:
            args.append("--staged")
        if params.base:
            args.append(params.base)
        if params.path:
            args.extend(["--", self.relative(params.path)])
        result = await self.git(*args)
        tool_result = _command_result(result, "Failed to get git diff")
        if tool_result.success and not tool_result.output:
            tool_result.output = "No changes"
        return tool_result


class GitLogTool(GitTool):
    name = "git_log"
    description = "Show recent commits, optionally for one path"
    input_model = GitLogInput

    async def run(self, params: GitLogInput) -> ToolResult:
        args = ["log", f"-{params.count}", "--pretty=format:%h %an %ar %s"]
        if params.path:
            args.extend(["--", self.relative(params.path)])
        return _command_result(await self.git(*args), "Failed to get git log")


class GitAddTool(GitTool):
    name = "git_add"
    description = "Stage files for the next commit"
    input_model = GitAddInput

    async def run(self, params: GitAddInput) -> ToolResult:
        paths = [self.relative(p) for p in params.paths]
        result = await self.git("add", "--", *paths)
        tool_result = _command_result(result, "Failed to stage files", paths=paths)
        if tool_result.success:
            tool_result.output = f"Staged {len(paths)} path(s)"
        return tool_result


class GitCommitTool(GitTool):
    name = "git_commit"
    description = "Commit the staged changes with a message"
    input_model = GitCommitInput

    async def run(self, params: GitCommitInput) -> ToolResult:
        result = await self.git("commit", "-m", params.message)
        if not result.ok and "nothing to commit" in result.stdout:
            return ToolResult.failure("Nothing to commit", exit_code=result.exit_code)
        return _command_result(result, "Commit failed")


def create_command_tools(
    working_directory: str,
    test_command: Sequence[str] = DEFAULT_TEST_COMMAND,
    lint_command: Sequence[str] = DEFAULT_LINT_COMMAND,
    timeout: float = DEFAULT_COMMAND_TIMEOUT,
) -> List[CommandTool]:
    """Test runner, linter and git tools bound to ``working_directory``."""
    return [
        RunTestsTool(working_directory, test_command, timeout),
        RunLinterTool(working_directory, lint_command, timeout),
        GitStatusTool(working_directory, timeout),
        GitDiffTool(working_directory, timeout),
        GitLogTool(working_directory, timeout),
        GitAddTool(working_directory, timeout),
        GitCommitTool(working_directory, timeout),
    ]


def is_commit_tool(tool_name: str) -> bool:
    return tool_name in COMMIT_TOOLS
