from pathlib import Path

import pytest

from agentloop.messages import ToolUseContent
from agentloop.tools.registry import ToolRegistry
from agentloop.tools.write_file import WriteFileTool


@pytest.mark.asyncio
async def test_write_file_creates_parent_directories(tmp_path: Path):
    tool = WriteFileTool(root=tmp_path)

    result = await tool.execute(file_path="scripts/example.sh", content="echo hi\n")

    target = tmp_path / "scripts" / "example.sh"
    assert result.success is True
    assert result.content == "Wrote to file: scripts/example.sh"
    assert target.read_text(encoding="utf-8") == "echo hi\n"


@pytest.mark.asyncio
async def test_write_file_overwrites_existing_content(tmp_path: Path):
    (tmp_path / "notes.md").write_text("old", encoding="utf-8")

    await WriteFileTool(root=tmp_path).execute(file_path="notes.md", content="new")

    assert (tmp_path / "notes.md").read_text(encoding="utf-8") == "new"


@pytest.mark.asyncio
@pytest.mark.parametrize("file_path", ["../escape.txt", "/etc/agentloop-test.txt", "."])
async def test_write_file_rejects_paths_outside_root(tmp_path: Path, file_path: str):
    root = tmp_path / "project"
    root.mkdir()

    result = await WriteFileTool(root=root).execute(file_path=file_path, content="x")

    assert result.success is False
    assert result.error == "file_path must be within the current working directory"
    assert not (tmp_path / "escape.txt").exists()


@pytest.mark.asyncio
async def test_write_file_defaults_to_working_directory(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.chdir(tmp_path)
    registry = ToolRegistry()
    registry.register(WriteFileTool())

    result = await registry.call_tool(
        ToolUseContent("t1", "write_file", {"file_path": "report.txt", "content": "ready"})
    )

    assert result.is_error is False
    assert result.text == "Wrote to file: report.txt"
    assert (tmp_path / "report.txt").read_text(encoding="utf-8") == "ready"


def test_write_file_session_approval_pins_only_the_path():
    tool = WriteFileTool()

    assert tool.mask_approval_input({"file_path": "a.txt", "content": "long"}) == {"file_path": "a.txt"}
