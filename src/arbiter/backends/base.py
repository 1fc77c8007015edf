"""Protocol for the external capability that runs a sub-agent's task."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

from arbiter.quality.models import ValidationContext


@runtime_checkable
class SubAgentBackend(Protocol):
    """Runs a prompt as a sub-agent and returns its response.

    The response is either raw text or an already-parsed mapping. Failures
    are raised; the refinement controller decides what to do with them.
    """

    @property
    def name(self) -> str: ...

    async def invoke(
        self, prompt: str, context: ValidationContext
    ) -> str | Mapping[str, Any]: ...
