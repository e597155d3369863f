"""agentloop - a terminal coding agent with streaming model adapters."""

__version__ = "0.1.0"

from agentloop.config import Config

__all__ = ["Config", "__version__"]
