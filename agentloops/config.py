"""Agent loop configuration management.

Loads configuration from .agentloops/config.toml if present, with sensible defaults.
Configuration hierarchy (highest priority first):
1. Command-line flags
2. Repo-level config (.agentloops/config.toml)
3. Defaults
"""

from dataclasses import dataclass, field
from pathlib import Path

try:
    import tomllib
except ImportError:
    import tomli as tomllib  # type: ignore[import-not-found]

DEFAULT_STATE_DIR = ".agentloops"
DEFAULT_MAX_ITERATIONS = 5
DEFAULT_MAX_TRANSITIONS = 50


@dataclass
class PathsConfig:
    """Configuration for loop artifact paths."""

    state_dir: str = DEFAULT_STATE_DIR
    state_file: str = "state.json"
    progress_file: str = "progress.md"
    evidence_dir: str = "evidence"

    def session_dir(self, session_id: str) -> str:
        return f"{self.state_dir}/{session_id}"

    def get_state_path(self, session_id: str) -> str:
        """State file path for a session, relative to the workspace."""
        return f"{self.session_dir(session_id)}/{self.state_file}"

    def get_progress_path(self, session_id: str) -> str:
        """Progress log path for a session, relative to the workspace."""
        return f"{self.session_dir(session_id)}/{self.progress_file}"


@dataclass
class RalphConfig:
    """Settings for a Ralph loop."""

    max_iterations: int = DEFAULT_MAX_ITERATIONS
    require_evidence: bool = False
    clear_context: bool = True

    def __post_init__(self) -> None:
        if self.max_iterations <= 0:
            raise ValueError(f"max_iterations must be positive, got {self.max_iterations}")


@dataclass
class LisaConfig:
    """Settings for a Lisa loop.

    ``max_transitions`` bounds the total number of phase transitions; 0 disables the cap.
    """

    max_transitions: int = DEFAULT_MAX_TRANSITIONS

    def __post_init__(self) -> None:
        if self.max_transitions < 0:
            raise ValueError(f"max_transitions must be >= 0, got {self.max_transitions}")


@dataclass
class LoopsConfig:
    """Agent loop configuration."""

    paths: PathsConfig = field(default_factory=PathsConfig)
    ralph: RalphConfig = field(default_factory=RalphConfig)
    lisa: LisaConfig = field(default_factory=LisaConfig)

    def ralph_config(
        self,
        *,
        max_iterations: int | None = None,
        require_evidence: bool | None = None,
        clear_context: bool | None = None,
    ) -> RalphConfig:
        """Ralph settings with CLI overrides applied on top of the file config."""
        return RalphConfig(
            max_iterations=max_iterations if max_iterations is not None else self.ralph.max_iterations,
            require_evidence=(
                require_evidence if require_evidence is not None else self.ralph.require_evidence
            ),
            clear_context=clear_context if clear_context is not None else self.ralph.clear_context,
        )

    def lisa_config(self, *, max_transitions: int | None = None) -> LisaConfig:
        """Lisa settings with CLI overrides applied on top of the file config."""
        return LisaConfig(
            max_transitions=(
                max_transitions if max_transitions is not None else self.lisa.max_transitions
            ),
        )


def load_config(workspace: Path) -> LoopsConfig:
    """Load configuration from .agentloops/config.toml if it exists.

    Args:
        workspace: Path to the workspace/repository root.

    Returns:
        LoopsConfig with values from config file or defaults.
    """
    config_path = workspace / DEFAULT_STATE_DIR / "config.toml"

    if not config_path.exists():
        return LoopsConfig()

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    paths_data = data.get("paths", {})
    ralph_data = data.get("ralph", {})
    lisa_data = data.get("lisa", {})

    paths = PathsConfig(
        state_dir=paths_data.get("state_dir", DEFAULT_STATE_DIR),
        state_file=paths_data.get("state_file", "state.json"),
        progress_file=paths_data.get("progress_file", "progress.md"),
        evidence_dir=paths_data.get("evidence_dir", "evidence"),
    )

    ralph = RalphConfig(
        max_iterations=ralph_data.get("max_iterations", DEFAULT_MAX_ITERATIONS),
        require_evidence=ralph_data.get("require_evidence", False),
        clear_context=ralph_data.get("clear_context", True),
    )

    lisa = LisaConfig(
        max_transitions=lisa_data.get("max_transitions", DEFAULT_MAX_TRANSITIONS),
    )

    return LoopsConfig(paths=paths, ralph=ralph, lisa=lisa)
