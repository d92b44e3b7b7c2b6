"""Provider-neutral chat message and sampling option models."""

from typing import Literal, Optional
from pydantic import BaseModel, Field


class Message(BaseModel):
    """
    A single chat message as sent to any provider.

    Adapters translate this into their vendor's envelope; nothing above the
    adapter layer ever sees vendor JSON.
    """
    role: Literal["user", "assistant", "system"]
    content: str
    timestamp: Optional[float] = None

    def to_wire(self) -> dict:
        return {"role": self.role, "content": self.content}


class GenerationOptions(BaseModel):
    """
    Sampling options for one call.

    None means "use the provider's documented default" - it is never
    treated as zero. A temperature of 0.0 is a real value and is sent.
    """
    temperature: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    max_tokens: Optional[int] = Field(default=None, gt=0)
    system_prompt: Optional[str] = None
