"""Human-readable progress log for a running loop.

The progress file is an append-only markdown record of every turn: what the
loop did, which phase or iteration it was in, and a short excerpt of the
agent's reply. The Ralph prompt points the agent at this file, so it doubles
as memory between iterations when the conversation is cleared.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

logger = logging.getLogger(__name__)

PROGRESS_HEADER = "# Agent Loop Progress\n\n"
EXCERPT_CHARS = 500


@dataclass
class ProgressEntry:
    """One turn's record."""

    title: str
    details: list[str] = field(default_factory=list)
    excerpt: str | None = None


class ProgressLog:
    """Appends entries to the progress markdown file."""

    def __init__(self, progress_path: Path):
        self.progress_path = Path(progress_path)

    def read(self) -> str:
        """Return the log contents, or an empty string if none exists."""
        if not self.progress_path.exists():
            return ""
        return self.progress_path.read_text()

    def entry_count(self) -> int:
        """Count entries (## headers that aren't the title)."""
        return self.read().count("\n## ")

    def append(self, entry: ProgressEntry) -> None:
        """Append an entry, creating the file with a header first if needed.

        Raises:
            OSError: If the file cannot be written
        """
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M")

        lines = [f"## {entry.title} ({timestamp})", ""]
        for item in entry.details:
            lines.append(f"- {item}")
        if entry.details:
            lines.append("")

        if entry.excerpt:
            excerpt = entry.excerpt.strip()
            if len(excerpt) > EXCERPT_CHARS:
                excerpt = excerpt[:EXCERPT_CHARS] + " ..."
            lines.append("```text")
            lines.append(excerpt)
            lines.append("```")
            lines.append("")

        self.progress_path.parent.mkdir(parents=True, exist_ok=True)

        if not self.progress_path.exists():
            self.progress_path.write_text(PROGRESS_HEADER)

        with self.progress_path.open("a") as f:
            f.write("\n".join(lines) + "\n")
        logger.debug(f"Appended progress entry: {entry.title}")
