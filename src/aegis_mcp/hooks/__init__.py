"""Host hook surface."""

from .plugin import GovernancePlugin, create_plugin

__all__ = ["GovernancePlugin", "create_plugin"]
