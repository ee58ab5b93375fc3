"""Request construction for the streaming endpoint.

Builds the POST request that opens one streaming turn: URL, SSE headers,
optional bearer token and the camelCase JSON body the backend expects.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..core.config import _EVENT_STREAM_CONTENT_TYPE, _JSON_CONTENT_TYPE, StreamingValves
from ..core.timing_logger import timed


class TurnInput(BaseModel):
    """What the user sent for one turn of a personal conversation."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    conversation_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    content: str = ""
    image_url: Optional[str] = None
    ai_friend_id: Optional[str] = None

    @field_validator("conversation_id", "user_id")
    @classmethod
    def _strip_identifier(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("identifier must not be blank")
        return value

    @timed
    def to_payload(self) -> dict[str, Any]:
        """Return the JSON body for the streaming endpoint, omitting unset optionals."""
        payload: dict[str, Any] = {"userId": self.user_id, "content": self.content}
        if self.image_url:
            payload["imageUrl"] = self.image_url
        if self.ai_friend_id:
            payload["aiFriendId"] = self.ai_friend_id
        return payload


@dataclass(frozen=True, slots=True)
class StreamRequest:
    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    json_body: dict[str, Any] = field(default_factory=dict)


@timed
def build_stream_request(
    turn_input: TurnInput,
    valves: StreamingValves,
    token: Optional[str] = None,
) -> StreamRequest:
    """Build the POST request that opens a streaming turn."""
    headers = {
        "Content-Type": _JSON_CONTENT_TYPE,
        "Accept": _EVENT_STREAM_CONTENT_TYPE,
        "Cache-Control": "no-cache",
    }
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return StreamRequest(
        method="POST",
        url=valves.stream_url(turn_input.conversation_id),
        headers=headers,
        json_body=turn_input.to_payload(),
    )
