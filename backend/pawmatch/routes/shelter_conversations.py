"""
PawMatch Backend — Shelter Conversation Routes
================================================

What:  The shelter inbox: conversations about the shelter's animals, keyed
       by conversation id.
How:   Requires a shelter identity (signed shelter token, or the legacy
       X-Shelter-Id header when trusted) and delegates to ConversationService.
       Conversations of other shelters answer 404, never 403.
Who:   Called by the shelter dashboard.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from pawmatch.database import get_db_session
from pawmatch.schemas.conversation import (
    ConversationResponse,
    ErrorResponse,
    MarkReadResponse,
    MessageListResponse,
    MessageResponse,
    OpeningMessageRequest,
    OpeningMessageResponse,
    ShelterReplyRequest,
)
from pawmatch.services.conversation_service import conversation_service
from pawmatch.services.identity import ShelterIdentity, get_shelter_identity

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/shelter/conversations", tags=["Shelter Conversations"])

COMMON_ERRORS = {
    400: {"description": "Malformed id or empty text", "model": ErrorResponse},
    401: {"description": "Shelter credentials required", "model": ErrorResponse},
    404: {"description": "Conversation not found for this shelter", "model": ErrorResponse},
    500: {"description": "Server error", "model": ErrorResponse},
}


@router.get(
    "",
    response_model=List[ConversationResponse],
    responses=COMMON_ERRORS,
    summary="List the shelter's conversations",
    description="Optionally filtered by animal and/or adopter. Includes the adopter's name.",
)
async def list_shelter_conversations(
    animal_id: Optional[str] = Query(default=None, alias="animalId"),
    user_id: Optional[str] = Query(default=None, alias="userId"),
    identity: ShelterIdentity = Depends(get_shelter_identity),
    db: AsyncSession = Depends(get_db_session),
) -> List[ConversationResponse]:
    return await conversation_service.list_shelter_conversations(
        db=db, identity=identity, animal_id=animal_id, user_id=user_id
    )


@router.get(
    "/{conversation_id}/messages",
    response_model=MessageListResponse,
    responses=COMMON_ERRORS,
    summary="Get a conversation's message history",
)
async def get_shelter_messages(
    conversation_id: str,
    after_id: Optional[int] = Query(default=None, alias="afterId", ge=0),
    identity: ShelterIdentity = Depends(get_shelter_identity),
    db: AsyncSession = Depends(get_db_session),
) -> MessageListResponse:
    return await conversation_service.get_shelter_history(
        db=db, identity=identity, conversation_id=conversation_id, after_id=after_id
    )


@router.post(
    "/{conversation_id}/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
    responses=COMMON_ERRORS,
    summary="Reply as the shelter or as the animal",
)
async def post_shelter_message(
    conversation_id: str,
    body: ShelterReplyRequest,
    identity: ShelterIdentity = Depends(get_shelter_identity),
    db: AsyncSession = Depends(get_db_session),
) -> MessageResponse:
    return await conversation_service.post_shelter_reply(
        db=db,
        identity=identity,
        conversation_id=conversation_id,
        text=body.text,
        sender_kind=body.sender_kind,
    )


@router.post(
    "/{conversation_id}/opening-message",
    response_model=OpeningMessageResponse,
    responses=COMMON_ERRORS,
    summary="Send the opening message if it was not sent yet",
)
async def send_opening_message(
    conversation_id: str,
    body: Optional[OpeningMessageRequest] = None,
    identity: ShelterIdentity = Depends(get_shelter_identity),
    db: AsyncSession = Depends(get_db_session),
) -> OpeningMessageResponse:
    return await conversation_service.send_opening_message(
        db=db,
        identity=identity,
        conversation_id=conversation_id,
        text=body.text if body else None,
    )


@router.post(
    "/{conversation_id}/read",
    response_model=MarkReadResponse,
    responses=COMMON_ERRORS,
    summary="Mark the adopter's messages as read",
)
async def mark_shelter_read(
    conversation_id: str,
    identity: ShelterIdentity = Depends(get_shelter_identity),
    db: AsyncSession = Depends(get_db_session),
) -> MarkReadResponse:
    return await conversation_service.mark_shelter_read(
        db=db, identity=identity, conversation_id=conversation_id
    )


@router.delete(
    "/{conversation_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses=COMMON_ERRORS,
    summary="Delete a conversation and all its messages",
)
async def delete_shelter_conversation(
    conversation_id: str,
    identity: ShelterIdentity = Depends(get_shelter_identity),
    db: AsyncSession = Depends(get_db_session),
) -> Response:
    await conversation_service.delete_shelter_conversation(
        db=db, identity=identity, conversation_id=conversation_id
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
