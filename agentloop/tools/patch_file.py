"""patch_file tool: apply SEARCH/REPLACE blocks to a file in the working directory."""

import re
from pathlib import Path
from typing import Any

from agentloop.logging import get_logger
from agentloop.tools.registry import Tool, ToolResult
from agentloop.tools.write_file import OUTSIDE_ROOT_ERROR, resolve_in_root

log = get_logger(__name__)

BLOCK_RE = re.compile(r"<<<<<<< SEARCH\n(.*?)\n?=======\n(.*?)\n?>>>>>>> REPLACE", re.DOTALL)

FORMAT_HELP = """No matches found in diff.

Expected format:
```
<<<<<<< SEARCH
(content to be removed)
=======
(new content to replace the removed content)
>>>>>>> REPLACE

<<<<<<< SEARCH
(second content to be removed)
=======
(new content to replace the second removed content)
>>>>>>> REPLACE

...
```

- <<<<<<< SEARCH (7 < characters + SEARCH) is the start of the search content.
- ======= (7 = characters) is the separator between the search and replace content.
- >>>>>>> REPLACE (7 > characters + REPLACE) is the end of the replace content."""


def parse_search_replace_blocks(diff: str) -> list[tuple[str, str]]:
    """Return ``(search, replace)`` pairs in the order they appear."""
    return [(match.group(1), match.group(2)) for match in BLOCK_RE.finditer(diff)]


def apply_search_replace(content: str, blocks: list[tuple[str, str]]) -> str:
    """Apply each block to its first occurrence.

    Raises ``ValueError`` naming the search text that was not found. An empty
    replacement also removes one newline next to the search text so deleted
    lines do not leave blank lines behind.
    """
    for search, replace in blocks:
        if search not in content:
            raise ValueError(f"Search content not found: {search}")
        if replace == "" and f"{search}\n" in content:
            content = content.replace(f"{search}\n", "", 1)
        elif replace == "" and f"\n{search}" in content:
            content = content.replace(f"\n{search}", "", 1)
        else:
            content = content.replace(search, replace, 1)
    return content


class PatchFileTool(Tool):
    """Edit part of a file without resending all of it."""

    name = "patch_file"
    description = "Patch a file"
    parameters = {
        "type": "object",
        "properties": {
            "file_path": {
                "type": "string",
                "description": "Path relative to the working directory",
            },
            "diff": {
                "type": "string",
                "description": "The diff to apply to the file in SEARCH/REPLACE format.",
            },
        },
        "required": ["file_path", "diff"],
    }

    def __init__(self, root: Path | str | None = None):
        self.root = Path(root) if root is not None else None

    def mask_approval_input(self, arguments: dict[str, Any]) -> dict[str, Any]:
        return {"file_path": arguments.get("file_path")}

    async def execute(self, file_path: str, diff: str, **kwargs: Any) -> ToolResult:
        target = resolve_in_root(self.root, file_path)
        if target is None:
            return ToolResult(success=False, error=OUTSIDE_ROOT_ERROR)

        blocks = parse_search_replace_blocks(diff)
        if not blocks:
            return ToolResult(success=False, error=FORMAT_HELP)

        try:
            content = target.read_text(encoding="utf-8")
            patched = apply_search_replace(content, blocks)
            target.write_text(patched, encoding="utf-8")
        except (OSError, ValueError) as e:
            log.error("Patch failed", path=file_path, error=str(e))
            return ToolResult(success=False, error=str(e))

        log.info("Patched file", path=str(target), blocks=len(blocks))
        return ToolResult(success=True, content=f"Patched file: {file_path}")
