"""Call context passed into every state-changing operation."""

from typing import Any, Dict
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


class CallContext(BaseModel):
    """
    Who is calling and at what logical time.

    ``block_height`` is the externally supplied monotonic counter used for
    every time comparison; nothing in the engines reads a wall clock.
    """

    caller: str = Field(..., min_length=1)
    block_height: int = Field(0, ge=0)
    correlation_id: str = Field(default_factory=lambda: str(uuid4()))

    model_config = ConfigDict(frozen=True)

    def to_log_fields(self) -> Dict[str, Any]:
        """Fields bound onto log lines for this call."""
        return {
            "caller": self.caller,
            "block_height": self.block_height,
            "correlation_id": self.correlation_id,
        }
