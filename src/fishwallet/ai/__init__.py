"""AI client, feature profiles, and tool wiring."""

from .client import AIClient, ClientSettings

__all__ = ["AIClient", "ClientSettings"]
