"""Agent role profiles and loader exports."""

from .loader import ProfileLoadError, ProfileLoader, load_profiles
from .models import AgentProfile

__all__ = [
    "AgentProfile",
    "ProfileLoadError",
    "ProfileLoader",
    "load_profiles",
]
