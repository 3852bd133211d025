"""Built-in file tools.

All paths are resolved against the working directory and may not escape
it. Inputs are described by pydantic models, which also provide each tool's
JSON schema and its ``validate`` step.
"""

import asyncio
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Type

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from taskcore.exceptions_unified import ToolExecutionError, error_message
from taskcore.interfaces.tools import ToolResult, ToolValidation

logger = logging.getLogger(__name__)

FILE_CATEGORY = "file"
SEARCH_CATEGORY = "search"

# Directory names skipped by the search tools.
DEFAULT_IGNORED_DIRS = (".git", ".venv", "node_modules", "__pycache__", "dist", "build")


# ============================================================================
# INPUT MODELS
# ============================================================================


class ReadFileInput(BaseModel):
    path: str = Field(..., description="The file path relative to the working directory")
    encoding: str = Field(default="utf-8", description="File encoding")


class WriteFileInput(BaseModel):
    path: str = Field(..., description="The file path relative to the working directory")
    content: str = Field(..., description="The content to write to the file")
    create_directories: bool = Field(default=True, description="Create missing parent directories")


class EditFileInput(BaseModel):
    path: str = Field(..., description="The file path relative to the working directory")
    old_content: str = Field(..., min_length=1, description="The exact content to replace")
    new_content: str = Field(..., description="The replacement content")
    replace_all: bool = Field(default=False, description="Replace every occurrence")


class DeleteFileInput(BaseModel):
    path: str = Field(..., description="The file path relative to the working directory")


class ListFilesInput(BaseModel):
    path: str = Field(default=".", description="Directory to list")
    pattern: Optional[str] = Field(default=None, description='Glob pattern, e.g. "**/*.py"')
    recursive: bool = Field(default=False, description="List files recursively")


class SearchFilesInput(BaseModel):
    pattern: str = Field(..., min_length=1, description='Glob pattern to match files, e.g. "**/*.py"')
    path: str = Field(default=".", description="Directory to search from")
    ignore: List[str] = Field(
        default_factory=lambda: list(DEFAULT_IGNORED_DIRS), description="Directory names to skip"
    )


class SearchContentInput(BaseModel):
    pattern: str = Field(..., min_length=1, description="Regular expression to search for")
    file_pattern: str = Field(default="**/*.py", description="Glob pattern selecting the files to search")
    max_results: int = Field(default=50, ge=1, le=500, description="Maximum number of matching lines")


class FileExistsInput(BaseModel):
    path: str = Field(..., description="The path to check")


# ============================================================================
# BASE
# ============================================================================


class PathOutsideWorkspaceError(ToolExecutionError):
    pass


class FileTool:
    """Shared plumbing: schema from the input model, validation, path confinement.

    Subclasses set ``name``, ``description``, ``input_model`` and implement
    ``_run`` (synchronous; executed in a worker thread). Tools that await
    instead override ``run``.
    """

    name: str = ""
    description: str = ""
    category: str = FILE_CATEGORY
    input_model: Type[BaseModel] = BaseModel

    def __init__(self, working_directory: str) -> None:
        self.root = Path(working_directory).resolve()

    @property
    def input_schema(self) -> Dict[str, Any]:
        schema = self.input_model.model_json_schema()
        schema.pop("title", None)
        return schema

    def validate(self, tool_input: Dict[str, Any]) -> ToolValidation:
        try:
            self.input_model.model_validate(tool_input)
        except PydanticValidationError as exc:
            errors = [
                f"{'.'.join(str(p) for p in err['loc']) or 'input'}: {err['msg']}"
                for err in exc.errors()
            ]
            return ToolValidation(valid=False, errors=errors)
        return ToolValidation(valid=True)

    async def execute(self, tool_input: Dict[str, Any]) -> ToolResult:
        try:
            params = self.input_model.model_validate(tool_input)
        except PydanticValidationError as exc:
            return ToolResult.failure(f"Invalid input: {exc.error_count()} error(s)")
        try:
            return await self.run(params)
        except (OSError, UnicodeDecodeError, ToolExecutionError) as exc:
            logger.debug("%s failed: %s", self.name, exc)
            return ToolResult.failure(error_message(exc))

    def resolve(self, relative: str) -> Path:
        candidate = Path(relative)
        full = (candidate if candidate.is_absolute() else self.root / candidate).resolve()
        if full != self.root and self.root not in full.parents:
            raise PathOutsideWorkspaceError(f"Path escapes the working directory: {relative}")
        return full

    async def run(self, params: Any) -> ToolResult:
        return await asyncio.to_thread(self._run, params)

    def _run(self, params: Any) -> ToolResult:
        raise NotImplementedError


# ============================================================================
# TOOLS
# ============================================================================


class ReadFileTool(FileTool):
    name = "read_file"
    description = "Read the contents of a file at the specified path"
    input_model = ReadFileInput

    def _run(self, params: ReadFileInput) -> ToolResult:
        full = self.resolve(params.path)
        content = full.read_text(encoding=params.encoding)
        return ToolResult(success=True, output=content, metadata={"path": str(full), "size": len(content)})


class WriteFileTool(FileTool):
    name = "write_file"
    description = "Write content to a file, creating it if it does not exist"
    input_model = WriteFileInput

    def _run(self, params: WriteFileInput) -> ToolResult:
        full = self.resolve(params.path)
        if params.create_directories:
            full.parent.mkdir(parents=True, exist_ok=True)
        full.write_text(params.content, encoding="utf-8")
        return ToolResult(
            success=True,
            output=f"Successfully wrote {len(params.content)} bytes to {params.path}",
            metadata={"path": str(full), "size": len(params.content)},
        )


class CreateFileTool(WriteFileTool):
    """Like ``write_file`` but refuses to overwrite."""

    name = "create_file"
    description = "Create a new file; fails if the file already exists"

    def _run(self, params: WriteFileInput) -> ToolResult:
        full = self.resolve(params.path)
        if full.exists():
            return ToolResult.failure(f"File already exists: {params.path}")
        return super()._run(params)


class EditFileTool(FileTool):
    name = "edit_file"
    description = "Edit a file by replacing a specific string with new content"
    input_model = EditFileInput

    def _run(self, params: EditFileInput) -> ToolResult:
        full = self.resolve(params.path)
        text = full.read_text(encoding="utf-8")
        occurrences = text.count(params.old_content)
        if occurrences == 0:
            return ToolResult.failure("The specified content was not found in the file")
        count = -1 if params.replace_all else 1
        full.write_text(text.replace(params.old_content, params.new_content, count), encoding="utf-8")
        replaced = occurrences if params.replace_all else 1
        return ToolResult(
            success=True,
            output=f"Successfully edited {params.path}",
            metadata={"path": str(full), "replacements": replaced},
        )


class DeleteFileTool(FileTool):
    name = "delete_file"
    description = "Delete a file at the specified path"
    input_model = DeleteFileInput

    def _run(self, params: DeleteFileInput) -> ToolResult:
        full = self.resolve(params.path)
        full.unlink()
        return ToolResult(success=True, output=f"Successfully deleted {params.path}", metadata={"path": str(full)})


class ListFilesTool(FileTool):
    name = "list_files"
    description = "List files in a directory, optionally filtering by glob pattern"
    input_model = ListFilesInput

    def _run(self, params: ListFilesInput) -> ToolResult:
        base = self.resolve(params.path)
        if not base.is_dir():
            raise ToolExecutionError(f"Not a directory: {params.path}")
        if params.pattern:
            found = base.glob(params.pattern)
        elif params.recursive:
            found = base.rglob("*")
        else:
            found = base.iterdir()
        files = sorted(str(p.relative_to(base)) for p in found if p.is_file())
        return ToolResult(success=True, output="\n".join(files), metadata={"count": len(files)})


class SearchFilesTool(FileTool):
    name = "search_files"
    description = "Find files matching a glob pattern, skipping dependency and build directories"
    category = SEARCH_CATEGORY
    input_model = SearchFilesInput

    def _run(self, params: SearchFilesInput) -> ToolResult:
        base = self.resolve(params.path)
        if not base.is_dir():
            raise ToolExecutionError(f"Not a directory: {params.path}")
        files = sorted(
            str(p.relative_to(base)) for p in base.glob(params.pattern)
            if p.is_file() and not _is_ignored(p.relative_to(base), params.ignore)
        )
        return ToolResult(
            success=True,
            output="\n".join(files),
            metadata={"count": len(files), "pattern": params.pattern},
        )


class SearchContentTool(FileTool):
    name = "search_content"
    description = "Search file contents with a regular expression; returns file:line: text matches"
    category = SEARCH_CATEGORY
    input_model = SearchContentInput

    def _run(self, params: SearchContentInput) -> ToolResult:
        try:
            regex = re.compile(params.pattern)
        except re.error as exc:
            raise ToolExecutionError(f"Invalid regular expression: {exc}") from exc

        matches: List[str] = []
        for path in sorted(self.root.glob(params.file_pattern)):
            relative = path.relative_to(self.root)
            if not path.is_file() or _is_ignored(relative, DEFAULT_IGNORED_DIRS):
                continue
            try:
                lines = path.read_text(encoding="utf-8").splitlines()
            except UnicodeDecodeError:
                continue
            for number, line in enumerate(lines, start=1):
                if regex.search(line):
                    matches.append(f"{relative}:{number}: {line.strip()}")
                    if len(matches) >= params.max_results:
                        break
            if len(matches) >= params.max_results:
                break

        return ToolResult(
            success=True,
            output="\n".join(matches) or "No matches found",
            metadata={"count": len(matches), "pattern": params.pattern},
        )


class FileExistsTool(FileTool):
    name = "file_exists"
    description = "Check whether a file or directory exists at the specified path"
    input_model = FileExistsInput

    def _run(self, params: FileExistsInput) -> ToolResult:
        full = self.resolve(params.path)
        if not full.exists():
            return ToolResult(success=True, output="false", metadata={"exists": False})
        return ToolResult(
            success=True,
            output="true",
            metadata={
                "exists": True,
                "is_file": full.is_file(),
                "is_directory": full.is_dir(),
                "size": full.stat().st_size,
            },
        )


def _is_ignored(relative: Path, ignored: Sequence[str]) -> bool:
    return any(part in ignored for part in relative.parts[:-1])


def create_file_tools(working_directory: str) -> List[FileTool]:
    """All built-in file tools bound to ``working_directory``."""
    return [
        ReadFileTool(working_directory),
        WriteFileTool(working_directory),
        CreateFileTool(working_directory),
        EditFileTool(working_directory),
        DeleteFileTool(working_directory),
        ListFilesTool(working_directory),
        SearchFilesTool(working_directory),
        SearchContentTool(working_directory),
        FileExistsTool(working_directory),
    ]
