"""Scratch files for tool output that is too large to inline."""

import secrets
import string
from datetime import datetime, timezone
from pathlib import Path

from agentloop.config import PROJECT_METADATA_DIR

_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


def write_tmp_file(
    content: str,
    name: str,
    extension: str = "txt",
    metadata_dir: str = PROJECT_METADATA_DIR,
) -> Path:
    """Write ``content`` under ``<metadata_dir>/tmp`` and return the path."""
    timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d-%H%M%S")
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(6))
    tmp_dir = Path(metadata_dir) / "tmp"
    tmp_dir.mkdir(parents=True, exist_ok=True)
    path = tmp_dir / f"{timestamp}-{suffix}--{name}.{extension}"
    path.write_text(content, encoding="utf-8")
    return path
