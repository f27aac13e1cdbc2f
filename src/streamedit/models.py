from __future__ import annotations

from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, Field


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class Message(BaseModel):
    """
    A single conversation message sent to, or produced by, the model.
    """

    role: Role = Field(..., description="Sender role")
    text: str = Field(..., description="Message text")

    def to_litellm(self) -> Dict[str, Any]:
        return {"role": self.role.value, "content": self.text}
