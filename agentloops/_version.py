"""Version of the agentloops package.

Running from a git checkout appends the checkout's revision, e.g.
``agentloops 0.1.0 (abc1234-dirty)``. An installed wheel shows the bare version.
"""

import subprocess
from functools import lru_cache
from pathlib import Path

__version__ = "0.1.0"

PACKAGE_DIR = Path(__file__).resolve().parent


@lru_cache(maxsize=1)
def source_revision() -> str | None:
    """Revision of the checkout this package runs from, or None outside git."""
    try:
        result = subprocess.run(
            ["git", "describe", "--always", "--dirty"],
            cwd=PACKAGE_DIR,
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (subprocess.SubprocessError, OSError):
        return None
    revision = result.stdout.strip()
    return revision if result.returncode == 0 and revision else None


def get_full_version_string() -> str:
    revision = source_revision()
    if revision:
        return f"agentloops {__version__} ({revision})"
    return f"agentloops {__version__}"
