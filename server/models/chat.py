"""Chat message shapes shared by the buffer, the database layer and the API."""

from typing import Literal
from pydantic import BaseModel, ConfigDict, Field

MessageRole = Literal["user", "assistant", "system"]


class ChatTurn(BaseModel):
    """One message waiting to be written to chat history."""

    model_config = ConfigDict(frozen=True)

    role: MessageRole
    content: str = Field(min_length=1, max_length=50000)
