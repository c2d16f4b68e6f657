"""
Pydantic models for mcpilot API requests and responses.
This module defines the request and response schemas used by the mcpilot API.
"""

from typing import (
    List,
    Optional,
)

from pydantic import (
    BaseModel,
    Field,
)

from mcpilot.core.schema import (
    ConversationTurn,
    SessionContext,
    ToolOutcome,
    Usage,
)


# ---------------------------------------------------------------------------
# Server-side session state
# ---------------------------------------------------------------------------
class ChatSession(BaseModel):
    """Plain-text history and learned identifiers for one chat."""

    history: List[ConversationTurn] = Field(default_factory=list)
    context: SessionContext = Field(default_factory=SessionContext)

    def remember(self, user_message: str, reply: str, max_turns: int) -> None:
        """Append one user/assistant pair, keeping the last *max_turns* pairs."""
        if max_turns <= 0:
            self.history = []
            return
        self.history.append(ConversationTurn(role="user", content=user_message))
        self.history.append(ConversationTurn(role="assistant", content=reply))
        self.history = self.history[-max_turns * 2 :]


# ---------------------------------------------------------------------------
# Pydantic request / response schema
# ---------------------------------------------------------------------------
class SessionResponse(BaseModel):
    """Response with session information."""

    session_id: str


class MessageRequest(BaseModel):
    """Incoming user message."""

    message: str = Field(..., min_length=1, description="User message for the assistant")
    session_id: Optional[str] = Field(None, description="Session ID for conversation context")


class MessageResponse(BaseModel):
    """API response returned to the caller."""

    reply: str
    session_id: str
    stop_reason: Optional[str] = None
    usage: Usage = Field(default_factory=Usage)
    outcome: Optional[ToolOutcome] = None


class StatusResponse(BaseModel):
    """Acknowledgement for command-style endpoints."""

    status: str
    detail: str = ""
