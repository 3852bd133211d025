"""Tests for the tool registry (tools/registry.py) and built-in file tools (tools/file_ops.py)."""

import pytest

from taskcore.exceptions_unified import ToolRegistrationError
from taskcore.interfaces.tools import Tool, tool_schema
from taskcore.tools.file_ops import (
    FILE_CATEGORY,
    CreateFileTool,
    DeleteFileTool,
    EditFileTool,
    FileExistsTool,
    ListFilesTool,
    ReadFileTool,
    SearchContentTool,
    SearchFilesTool,
    WriteFileTool,
    create_file_tools,
)
from taskcore.tools.registry import ToolRegistry

from fakes import EchoTool, StrictTool


# ============================================================================
# Registry
# ============================================================================


class TestToolRegistry:
    def test_register_and_lookup(self):
        echo = EchoTool()
        registry = ToolRegistry([echo])
        assert registry.get("echo") is echo
        assert registry.has("echo")
        assert "echo" in registry
        assert len(registry) == 1
        assert registry.get("missing") is None

    def test_duplicate_name_rejected(self):
        registry = ToolRegistry([EchoTool()])
        with pytest.raises(ToolRegistrationError, match='Tool "echo" is already registered'):
            registry.register(EchoTool())

    def test_unregister(self):
        registry = ToolRegistry([EchoTool()])
        assert registry.unregister("echo")
        assert registry.unregister("echo") is False
        assert registry.names() == []

    def test_get_by_category(self, tmp_path):
        registry = ToolRegistry(create_file_tools(str(tmp_path)))
        registry.register(EchoTool())
        assert len(registry.get_by_category(FILE_CATEGORY)) == 6
        assert [t.name for t in registry.get_by_category("test")] == ["echo"]

    def test_as_mapping_excludes_names(self):
        registry = ToolRegistry([EchoTool(), StrictTool()])
        assert list(registry.as_mapping(exclude=["strict"])) == ["echo"]
        assert len(registry.as_mapping()) == 2

    def test_registries_are_independent(self):
        first = ToolRegistry([EchoTool()])
        second = ToolRegistry()
        assert "echo" not in second
        first.clear()
        assert len(first) == 0

    def test_schemas(self):
        registry = ToolRegistry([EchoTool()])
        assert registry.schemas() == [tool_schema(EchoTool())]
        assert registry.schemas()[0]["name"] == "echo"


# ============================================================================
# File tools
# ============================================================================


class TestFileTools:
    def test_tools_satisfy_protocol(self, tmp_path):
        for tool in create_file_tools(str(tmp_path)):
            assert isinstance(tool, Tool)

    def test_input_schema_comes_from_model(self, tmp_path):
        schema = EditFileTool(str(tmp_path)).input_schema
        assert schema["type"] == "object"
        assert set(schema["required"]) == {"path", "old_content", "new_content"}
        assert "title" not in schema

    def test_validate_reports_missing_fields(self, tmp_path):
        validation = WriteFileTool(str(tmp_path)).validate({"path": "a.txt"})
        assert validation.valid is False
        assert validation.errors[0].startswith("content")

    async def test_write_then_read(self, tmp_path):
        write = WriteFileTool(str(tmp_path))
        result = await write.execute({"path": "pkg/mod.py", "content": "x = 1\n"})
        assert result.success
        read = await ReadFileTool(str(tmp_path)).execute({"path": "pkg/mod.py"})
        assert read.output == "x = 1\n"

    async def test_read_missing_file_fails(self, tmp_path):
        result = await ReadFileTool(str(tmp_path)).execute({"path": "nope.txt"})
        assert result.success is False
        assert result.error

    async def test_create_refuses_existing(self, tmp_path):
        (tmp_path / "a.txt").write_text("old")
        result = await CreateFileTool(str(tmp_path)).execute({"path": "a.txt", "content": "new"})
        assert result.success is False
        assert (tmp_path / "a.txt").read_text() == "old"

    async def test_edit_replaces_first_occurrence(self, tmp_path):
        (tmp_path / "a.txt").write_text("foo foo")
        tool = EditFileTool(str(tmp_path))
        result = await tool.execute({"path": "a.txt", "old_content": "foo", "new_content": "bar"})
        assert result.success
        assert (tmp_path / "a.txt").read_text() == "bar foo"

    async def test_edit_replace_all(self, tmp_path):
        (tmp_path / "a.txt").write_text("foo foo")
        tool = EditFileTool(str(tmp_path))
        result = await tool.execute(
            {"path": "a.txt", "old_content": "foo", "new_content": "bar", "replace_all": True}
        )
        assert result.metadata["replacements"] == 2
        assert (tmp_path / "a.txt").read_text() == "bar bar"

    async def test_edit_missing_content(self, tmp_path):
        (tmp_path / "a.txt").write_text("foo")
        tool = EditFileTool(str(tmp_path))
        result = await tool.execute({"path": "a.txt", "old_content": "baz", "new_content": "bar"})
        assert result.success is False
        assert "not found" in result.error

    async def test_delete(self, tmp_path):
        (tmp_path / "a.txt").write_text("x")
        result = await DeleteFileTool(str(tmp_path)).execute({"path": "a.txt"})
        assert result.success
        assert not (tmp_path / "a.txt").exists()

    async def test_list_files(self, tmp_path):
        (tmp_path / "src").mkdir()
        (tmp_path / "src" / "a.py").write_text("")
        (tmp_path / "src" / "b.txt").write_text("")
        (tmp_path / "top.py").write_text("")
        tool = ListFilesTool(str(tmp_path))

        flat = await tool.execute({})
        assert flat.output.splitlines() == ["top.py"]

        recursive = await tool.execute({"recursive": True})
        assert recursive.metadata["count"] == 3

        matched = await tool.execute({"path": "src", "pattern": "*.py"})
        assert matched.output == "a.py"

    async def test_list_files_requires_directory(self, tmp_path):
        (tmp_path / "a.txt").write_text("x")
        result = await ListFilesTool(str(tmp_path)).execute({"path": "a.txt"})
        assert result.success is False
        assert result.error == "Not a directory: a.txt"

    @pytest.mark.parametrize("path", ["../outside.txt", "/etc/passwd"])
    async def test_paths_cannot_escape_working_directory(self, tmp_path, path):
        result = await ReadFileTool(str(tmp_path / "workspace")).execute({"path": path})
        assert result.success is False
        assert "escapes the working directory" in result.error
        assert not result.error.startswith("[")


# ============================================================================
# Search tools
# ============================================================================


def _build_tree(root):
    (root / "src").mkdir()
    (root / "src" / "app.py").write_text("def main():\n    return 1\n")
    (root / "src" / "util.py").write_text("# helpers\nDEBUG = False\n")
    (root / "node_modules" / "dep").mkdir(parents=True)
    (root / "node_modules" / "dep" / "index.py").write_text("def main():\n    pass\n")
    (root / "README.md").write_text("main entry point\n")


class TestSearchTools:
    async def test_search_files_skips_ignored_directories(self, tmp_path):
        _build_tree(tmp_path)
        result = await SearchFilesTool(str(tmp_path)).execute({"pattern": "**/*.py"})
        assert result.output.splitlines() == ["src/app.py", "src/util.py"]
        assert result.metadata["count"] == 2

    async def test_search_files_custom_ignore(self, tmp_path):
        _build_tree(tmp_path)
        result = await SearchFilesTool(str(tmp_path)).execute({"pattern": "**/*.py", "ignore": ["src"]})
        assert result.output == "node_modules/dep/index.py"

    async def test_search_content_reports_file_and_line(self, tmp_path):
        _build_tree(tmp_path)
        result = await SearchContentTool(str(tmp_path)).execute({"pattern": r"def \w+\("})
        assert result.output == "src/app.py:1: def main():"
        assert result.metadata["count"] == 1

    async def test_search_content_respects_file_pattern_and_limit(self, tmp_path):
        _build_tree(tmp_path)
        tool = SearchContentTool(str(tmp_path))
        markdown = await tool.execute({"pattern": "main", "file_pattern": "*.md"})
        assert markdown.output == "README.md:1: main entry point"
        (tmp_path / "many.py").write_text("x = 1\n" * 10)
        limited = await tool.execute({"pattern": "x", "file_pattern": "many.py", "max_results": 3})
        assert limited.metadata["count"] == 3

    async def test_search_content_without_matches(self, tmp_path):
        _build_tree(tmp_path)
        result = await SearchContentTool(str(tmp_path)).execute({"pattern": "nowhere"})
        assert result.success
        assert result.output == "No matches found"

    async def test_search_content_invalid_regex(self, tmp_path):
        result = await SearchContentTool(str(tmp_path)).execute({"pattern": "("})
        assert result.success is False
        assert result.error.startswith("Invalid regular expression")

    async def test_file_exists(self, tmp_path):
        _build_tree(tmp_path)
        tool = FileExistsTool(str(tmp_path))
        found = await tool.execute({"path": "src/app.py"})
        assert found.output == "true"
        assert found.metadata["is_file"] is True
        directory = await tool.execute({"path": "src"})
        assert directory.metadata["is_directory"] is True
        missing = await tool.execute({"path": "src/missing.py"})
        assert missing.success
        assert missing.output == "false"
        assert missing.metadata == {"exists": False}

    async def test_file_exists_is_confined(self, tmp_path):
        result = await FileExistsTool(str(tmp_path)).execute({"path": "../elsewhere"})
        assert result.success is False
