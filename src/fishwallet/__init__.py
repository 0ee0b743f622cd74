"""fishwallet: agentic tool-execution orchestrator for idea workspaces."""

__version__ = "0.1.0"

__all__ = ["__version__"]
