"""Tool registry and built-in tools."""

from taskcore.tools.commands import (
    CommandTool,
    GitAddTool,
    GitCommitTool,
    GitDiffTool,
    GitLogTool,
    GitStatusTool,
    RunLinterTool,
    RunTestsTool,
    create_command_tools,
)
from taskcore.tools.file_ops import (
    CreateFileTool,
    DeleteFileTool,
    EditFileTool,
    FileExistsTool,
    FileTool,
    ListFilesTool,
    ReadFileTool,
    SearchContentTool,
    SearchFilesTool,
    WriteFileTool,
    create_file_tools,
)
from taskcore.tools.registry import ToolRegistry, create_builtin_tools

__all__ = [
    "CommandTool",
    "CreateFileTool",
    "DeleteFileTool",
    "EditFileTool",
    "FileExistsTool",
    "FileTool",
    "GitAddTool",
    "GitCommitTool",
    "GitDiffTool",
    "GitLogTool",
    "GitStatusTool",
    "ListFilesTool",
    "ReadFileTool",
    "RunLinterTool",
    "RunTestsTool",
    "SearchContentTool",
    "SearchFilesTool",
    "ToolRegistry",
    "WriteFileTool",
    "create_builtin_tools",
    "create_command_tools",
    "create_file_tools",
]
