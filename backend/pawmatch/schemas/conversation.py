"""
PawMatch Backend — Pydantic Request/Response Schemas
======================================================

What:  Pydantic models defining the conversation API contract.
How:   FastAPI validates request bodies against these models and serializes
       the service results through them. Field names are snake_case in
       Python and camelCase on the wire (alias_generator=to_camel).
Who:   Used by route handlers as body/return types and by the services
       to build responses.

Design Decision:
    Ids in request bodies and paths arrive as plain strings. The services
    parse them and raise ValidationError (400) for malformed ids, so a bad
    animalId gets the same error shape as an empty message text instead of
    FastAPI's 422 body. Bodies of the wrong shape (an animalId that is not a
    string) are mapped to the same 400 body by the RequestValidationError
    handler in main.py.
"""

import uuid
from datetime import datetime
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

UNKNOWN_ANIMAL_NAME = "Onbekend dier"


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ══════════════════════════════════════════════════════════════════════════
# Request Models — What clients send
# ══════════════════════════════════════════════════════════════════════════


class StartConversationRequest(CamelModel):
    """
    Body of POST /api/conversations.

    autoMessage:
        true   → send the generated opening message (once)
        false  → never send it on this call
        "text" → send this text as the opening message (once)
        absent → follow AUTO_MESSAGE_ON_START
    userId is only honoured for shelter callers starting a conversation on
    behalf of an adopter.
    """
    animal_id: Optional[str] = Field(default=None, description="Animal to talk to")
    auto_message: Optional[Union[bool, str]] = Field(
        default=None,
        description="true, false, or an explicit opening text",
    )
    user_id: Optional[str] = Field(
        default=None,
        description="Adopter id (shelter callers only)",
    )


class ReplyRequest(CamelModel):
    text: Optional[str] = Field(default=None, description="Message text (trimmed, non-empty)")


class ShelterReplyRequest(ReplyRequest):
    """A shelter reply, either in the shelter's own voice or the animal's."""
    sender_kind: Literal["shelter", "animal"] = Field(default="shelter")


class OpeningMessageRequest(CamelModel):
    text: Optional[str] = Field(
        default=None,
        description="Override text; the generated default is used when omitted",
    )


# ══════════════════════════════════════════════════════════════════════════
# Response Models — What the API returns
# ══════════════════════════════════════════════════════════════════════════


class MessageResponse(CamelModel):
    """One ledger entry as rendered in a chat history."""
    id: int = Field(description="Insertion sequence; also the afterId polling cursor")
    conversation_id: uuid.UUID
    from_kind: str = Field(description="user, shelter, animal or system")
    from_id: Optional[uuid.UUID] = None
    to_kind: str = Field(description="user, shelter or animal")
    to_id: Optional[uuid.UUID] = None
    text: str
    author_display_name: Optional[str] = None
    author_avatar: Optional[str] = None
    read: bool = False
    created_at: datetime


class ConversationResponse(CamelModel):
    """
    What:  A conversation as shown in a conversation list.
    Who:   Returned by both list endpoints and the start endpoint.

    name / avatar come from the animal snapshot on the conversation, so
    the list renders without looking the animal up again. unreadCount
    counts messages addressed to the caller's side that are not read yet.
    userName is only filled for shelter callers.
    """
    id: uuid.UUID
    animal_id: uuid.UUID
    name: str = Field(default=UNKNOWN_ANIMAL_NAME)
    avatar: Optional[str] = None
    user_id: Optional[uuid.UUID] = None
    user_name: Optional[str] = None
    shelter_id: Optional[uuid.UUID] = None
    last_message: Optional[str] = None
    last_message_at: Optional[datetime] = None
    matched_at: datetime
    auto_message_sent: bool
    unread_count: int = 0

    @classmethod
    def build(cls, conversation, unread_count: int = 0, user_name: Optional[str] = None):
        return cls(
            id=conversation.id,
            animal_id=conversation.animal_id,
            name=conversation.animal_name or UNKNOWN_ANIMAL_NAME,
            avatar=conversation.animal_photo,
            user_id=conversation.user_id,
            user_name=user_name,
            shelter_id=conversation.shelter_id,
            last_message=conversation.last_message,
            last_message_at=conversation.last_message_at,
            matched_at=conversation.matched_at,
            auto_message_sent=conversation.auto_message_sent,
            unread_count=unread_count,
        )


class StartConversationResponse(CamelModel):
    """
    Returned by POST /api/conversations.

    openingMessage is set only when this call created it; the route maps
    that to 201 Created, otherwise 200 OK.
    """
    conversation: ConversationResponse
    opening_message: Optional[MessageResponse] = None


class MessageListResponse(CamelModel):
    conversation_id: uuid.UUID
    messages: List[MessageResponse]


class OpeningMessageResponse(CamelModel):
    sent: bool = Field(description="False when the opening message already exists")
    message: Optional[MessageResponse] = None


class MarkReadResponse(CamelModel):
    updated: int = Field(description="Messages flipped to read by this call")


# ══════════════════════════════════════════════════════════════════════════
# Error / Health Models
# ══════════════════════════════════════════════════════════════════════════


class ErrorResponse(BaseModel):
    """
    Standardized error body for every API error.

    Example:
        {
            "error": "validation_error",
            "message": "text required",
            "details": {"field": "text"},
            "request_id": "3f9a1c2e"
        }
    """
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    status: str = Field(description="Overall service status: healthy or unhealthy")
    version: str = Field(description="Application version")
    database: str = Field(description="Database connectivity: connected, disconnected")
    uptime_seconds: float = Field(description="Seconds since service started")
