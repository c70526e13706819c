"""
PawMatch Backend — Participant Conversation Routes
====================================================

What:  Conversation endpoints for adopters (bearer token) and anonymous
       devices (X-Device-Key), keyed by animal id.
How:   Resolves the caller through the identity dependencies and delegates
       to ConversationService. No business rules live here.
Who:   Called by the adopter app's swipe and chat screens.

Endpoints:
    POST   /api/conversations                       start-or-attach
    GET    /api/conversations                       list
    GET    /api/conversations/{animalId}/messages   history
    POST   /api/conversations/{animalId}/messages   reply
    POST   /api/conversations/{animalId}/read       mark shelter messages read
    DELETE /api/conversations/{animalId}            delete with messages
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
    ReplyRequest,
    StartConversationRequest,
    StartConversationResponse,
)
from pawmatch.services.conversation_service import conversation_service
from pawmatch.services.identity import (
    Identity,
    get_identity,
    get_participant_identity,
)

logger = logging.getLogger(__name__)

# ── Router Configuration ──────────────────────────────────────────────────
router = APIRouter(prefix="/api/conversations", tags=["Conversations"])

COMMON_ERRORS = {
    400: {"description": "Malformed id or empty text", "model": ErrorResponse},
    401: {"description": "No usable credentials", "model": ErrorResponse},
    404: {"description": "Animal or conversation not found", "model": ErrorResponse},
    500: {"description": "Server error", "model": ErrorResponse},
}


@router.post(
    "",
    response_model=StartConversationResponse,
    status_code=status.HTTP_200_OK,
    responses={
        201: {"description": "Conversation ready, opening message created", "model": StartConversationResponse},
        **COMMON_ERRORS,
    },
    summary="Start or attach to a conversation with an animal",
    description=(
        "Idempotent: calling it again for the same caller and animal returns the same "
        "conversation. Responds 201 when this call created the opening message, 200 "
        "otherwise. Shelter callers must pass userId."
    ),
)
async def start_conversation(
    body: StartConversationRequest,
    response: Response,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db_session),
) -> StartConversationResponse:
    result, created = await conversation_service.start_conversation(
        db=db,
        identity=identity,
        animal_id=body.animal_id,
        auto_message=body.auto_message,
        user_id=body.user_id,
    )
    if created:
        response.status_code = status.HTTP_201_CREATED
    return result


@router.get(
    "",
    response_model=List[ConversationResponse],
    responses={401: COMMON_ERRORS[401], 500: COMMON_ERRORS[500]},
    summary="List the caller's conversations",
    description="Newest activity first, with the number of unread shelter messages.",
)
async def list_conversations(
    identity=Depends(get_participant_identity),
    db: AsyncSession = Depends(get_db_session),
) -> List[ConversationResponse]:
    return await conversation_service.list_conversations(db=db, identity=identity)


@router.get(
    "/{animal_id}/messages",
    response_model=MessageListResponse,
    responses=COMMON_ERRORS,
    summary="Get the message history with an animal",
)
async def get_messages(
    animal_id: str,
    after_id: Optional[int] = Query(
        default=None,
        alias="afterId",
        ge=0,
        description="Only return messages appended after this message id",
    ),
    identity=Depends(get_participant_identity),
    db: AsyncSession = Depends(get_db_session),
) -> MessageListResponse:
    return await conversation_service.get_history(
        db=db, identity=identity, animal_id=animal_id, after_id=after_id
    )


@router.post(
    "/{animal_id}/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
    responses=COMMON_ERRORS,
    summary="Send a message to an animal",
    description=(
        "Creates the conversation if it does not exist yet. A signed-in adopter "
        "sending X-Device-Key takes over that device's anonymous conversation."
    ),
)
async def post_message(
    animal_id: str,
    body: ReplyRequest,
    identity=Depends(get_participant_identity),
    db: AsyncSession = Depends(get_db_session),
) -> MessageResponse:
    return await conversation_service.post_reply(
        db=db, identity=identity, animal_id=animal_id, text=body.text
    )


@router.post(
    "/{animal_id}/read",
    response_model=MarkReadResponse,
    responses=COMMON_ERRORS,
    summary="Mark the shelter's messages as read",
)
async def mark_read(
    animal_id: str,
    identity=Depends(get_participant_identity),
    db: AsyncSession = Depends(get_db_session),
) -> MarkReadResponse:
    return await conversation_service.mark_read(db=db, identity=identity, animal_id=animal_id)


@router.delete(
    "/{animal_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses=COMMON_ERRORS,
    summary="Delete the conversation with an animal and all its messages",
)
async def delete_conversation(
    animal_id: str,
    identity=Depends(get_participant_identity),
    db: AsyncSession = Depends(get_db_session),
) -> Response:
    await conversation_service.delete_conversation(db=db, identity=identity, animal_id=animal_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
