"""agentloops - autonomous Ralph and Lisa loops for coding agents."""

from agentloops._version import __version__

__all__ = ["__version__"]
