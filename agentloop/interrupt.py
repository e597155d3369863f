"""Side-channel for messages staged while a turn is running."""

from pathlib import Path

from agentloop.logging import get_logger

log = get_logger(__name__)


class FileInterruptSource:
    """Reads a staged message from a file and deletes it.

    Write text to the file from another terminal; it is injected as a user
    turn after the next executed tool batch.
    """

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def consume(self) -> str | None:
        try:
            content = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        self.path.unlink(missing_ok=True)
        if not content.strip():
            return None
        log.info("Consumed interrupt message", path=str(self.path), chars=len(content))
        return content
