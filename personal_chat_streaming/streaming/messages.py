"""Persisted chat messages echoed back inside the stream.

The backend saves both sides of a turn and announces them through the
``user_message`` and ``assistant_message`` events. Keys arrive in camelCase;
unknown keys are kept so newer backends do not break older clients.
"""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class _PersistedMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: Optional[str] = None
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    content: Optional[str] = None
    created_at: Optional[str] = Field(default=None, alias="createdAt")


class UserMessage(_PersistedMessage):
    """The user's message as stored by the backend."""

    role: Literal["user"] = "user"
    image_url: Optional[str] = Field(default=None, alias="imageUrl")


class AssistantMessage(_PersistedMessage):
    """The assistant's reply as stored by the backend once streaming finished."""

    role: Literal["assistant"] = "assistant"
    generated_image_url: Optional[str] = Field(default=None, alias="generatedImageUrl")
    metadata: dict[str, Any] = Field(default_factory=dict)
