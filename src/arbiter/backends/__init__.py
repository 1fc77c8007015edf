"""Sub-agent backends."""

from arbiter.backends.base import SubAgentBackend
from arbiter.backends.http import HttpSubAgentBackend

__all__ = ["HttpSubAgentBackend", "SubAgentBackend"]
