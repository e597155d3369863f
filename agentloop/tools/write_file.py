"""write_file tool: create or overwrite a file inside the working directory."""

from pathlib import Path
from typing import Any

from agentloop.logging import get_logger
from agentloop.tools.registry import Tool, ToolResult

log = get_logger(__name__)

OUTSIDE_ROOT_ERROR = "file_path must be within the current working directory"


def resolve_in_root(root: Path | None, file_path: str) -> Path | None:
    """Resolve ``file_path`` under ``root`` (default cwd); ``None`` if it escapes."""
    base = (root or Path.cwd()).resolve()
    target = (base / Path(file_path).expanduser()).resolve()
    if base not in target.parents:
        return None
    return target


class WriteFileTool(Tool):
    """Write content to a file under the current directory."""

    name = "write_file"
    description = "Write a file"
    parameters = {
        "type": "object",
        "properties": {
            "file_path": {
                "type": "string",
                "description": "Path relative to the working directory",
            },
            "content": {
                "type": "string",
                "description": "Full file content",
            },
        },
        "required": ["file_path", "content"],
    }

    def __init__(self, root: Path | str | None = None):
        self.root = Path(root) if root is not None else None

    def mask_approval_input(self, arguments: dict[str, Any]) -> dict[str, Any]:
        return {"file_path": arguments.get("file_path")}

    async def execute(self, file_path: str, content: str, **kwargs: Any) -> ToolResult:
        target = resolve_in_root(self.root, file_path)
        if target is None:
            return ToolResult(success=False, error=OUTSIDE_ROOT_ERROR)

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        except OSError as e:
            log.error("Write failed", path=file_path, error=str(e))
            return ToolResult(success=False, error=str(e))

        log.info("Wrote file", path=str(target), chars=len(content))
        return ToolResult(success=True, content=f"Wrote to file: {file_path}")
