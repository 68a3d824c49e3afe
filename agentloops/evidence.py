"""Evidence gate for Ralph loops that require proof of completion."""

from __future__ import annotations

import logging
from pathlib import Path

logger = logging.getLogger(__name__)

IMAGE_SUFFIXES = frozenset({".png", ".jpg", ".jpeg", ".gif", ".webp"})


class ScreenshotEvidenceChecker:
    """Passes when the evidence folder holds enough screenshots.

    Called with the session's working directory; looks for image files in
    ``<working_dir>/<evidence_dir>/screenshots``.
    """

    def __init__(self, evidence_dir: str = "evidence", min_screenshots: int = 1):
        self.evidence_dir = evidence_dir
        self.min_screenshots = min_screenshots

    def screenshots(self, working_dir: Path) -> list[Path]:
        """Screenshot files currently present, sorted by name."""
        folder = Path(working_dir) / self.evidence_dir / "screenshots"
        if not folder.is_dir():
            return []
        return sorted(
            p for p in folder.iterdir() if p.is_file() and p.suffix.lower() in IMAGE_SUFFIXES
        )

    def __call__(self, working_dir: Path) -> bool:
        found = len(self.screenshots(working_dir))
        if found < self.min_screenshots:
            logger.info(
                f"Evidence check failed: {found} screenshot(s), need {self.min_screenshots}"
            )
            return False
        return True
