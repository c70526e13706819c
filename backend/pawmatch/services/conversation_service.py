"""
PawMatch Backend — Conversation Service (Business Logic Orchestrator)
=======================================================================

What:  Central orchestrator for every conversation operation exposed over
       HTTP, for adopters/devices and for shelters.
How:   Composes ConversationStore, MessageLedger and AutoMessageTrigger.
       Parses raw ids, applies caller-kind rules, builds response schemas.
Who:   Called by routes/conversations.py and routes/shelter_conversations.py.

Orchestration Flow (POST /api/conversations):
    ┌──────────┐    ┌─────────────┐    ┌──────────────┐    ┌──────────────┐
    │ Identity │───▶│  Store      │───▶│  Opening     │───▶│  Response    │
    │ (Route)  │    │  upsert     │    │  message CAS │    │  201 / 200   │
    └──────────┘    └─────────────┘    └──────────────┘    └──────────────┘

Error Handling Strategy:
    Application exceptions propagate unchanged. Unexpected SQLAlchemy
    errors are logged with identity kind, animal id and conversation id,
    then wrapped in DatabaseError so the client sees a generic 500.

Design Decision:
    The service is stateless; it receives the request session for each
    call and never commits. get_db_session commits once the route returns,
    so one HTTP request is one transaction.
"""

import logging
import uuid
from contextlib import contextmanager
from typing import Iterator, List, Optional, Tuple, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from pawmatch.config import settings
from pawmatch.exceptions import (
    AnimalNotFoundError,
    DatabaseError,
    NotFoundError,
    ValidationError,
)
from pawmatch.schemas.conversation import (
    ConversationResponse,
    MarkReadResponse,
    MessageListResponse,
    MessageResponse,
    OpeningMessageResponse,
    StartConversationResponse,
)
from pawmatch.services.auto_message import AutoMessageTrigger, auto_message_trigger
from pawmatch.services.conversation_store import ConversationStore, conversation_store
from pawmatch.services.directory import Directory, sql_directory
from pawmatch.services.identity import (
    DeviceIdentity,
    Identity,
    ShelterIdentity,
    UserIdentity,
    parse_uuid,
)
from pawmatch.services.message_ledger import MessageLedger, Sender, message_ledger

logger = logging.getLogger(__name__)

Participant = Union[UserIdentity, DeviceIdentity]


def _require_uuid(value: Optional[str], field: str) -> uuid.UUID:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(message=f"{field} required", field=field)
    parsed = parse_uuid(value.strip() if isinstance(value, str) else value)
    if parsed is None:
        raise ValidationError(message=f"Invalid {field}", field=field)
    return parsed


def _optional_uuid(value: Optional[str], field: str) -> Optional[uuid.UUID]:
    if value is None or not value.strip():
        return None
    return _require_uuid(value, field)


@contextmanager
def _storage_errors(operation: str, identity: Optional[Identity] = None, **context) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as e:
        ctx = {"operation": operation, "original_error": type(e).__name__, **context}
        if identity is not None:
            ctx["identity"] = identity.kind
        logger.error("Storage failure during %s: %s | Context: %s", operation, str(e), ctx, exc_info=True)
        raise DatabaseError(context=ctx)


class ConversationService:
    """
    Participant operations:
        start_conversation, list_conversations, get_history, post_reply,
        mark_read, delete_conversation
    Shelter operations:
        list_shelter_conversations, get_shelter_history, post_shelter_reply,
        send_opening_message, mark_shelter_read, delete_shelter_conversation
    """

    def __init__(
        self,
        store: Optional[ConversationStore] = None,
        ledger: Optional[MessageLedger] = None,
        trigger: Optional[AutoMessageTrigger] = None,
        directory: Optional[Directory] = None,
    ):
        self.store = store or conversation_store
        self.ledger = ledger or message_ledger
        self.trigger = trigger or auto_message_trigger
        self.directory = directory or sql_directory

    # ══════════════════════════════════════════════════════════════════════
    # Participant Operations
    # ══════════════════════════════════════════════════════════════════════

    async def start_conversation(
        self,
        db: AsyncSession,
        identity: Identity,
        animal_id: Optional[str],
        auto_message: Optional[Union[bool, str]] = None,
        user_id: Optional[str] = None,
    ) -> Tuple[StartConversationResponse, bool]:
        """
        Start-or-attach a conversation and send the opening message if asked.

        Shelter callers must name the adopter with user_id and own the
        animal. The adopter's existing conversation is reused; its user is
        never replaced.

        auto_message:
            None   → settings.auto_message_on_start decides
            True   → generated opening message
            False  → no opening message on this call
            str    → this text as the opening message

        Returns:
            (response, created) where created is True when this call
            appended the opening message.
        """
        animal_uuid = _require_uuid(animal_id, "animalId")
        participant = await self._participant_for_start(db, identity, animal_uuid, user_id)

        with _storage_errors("start_conversation", identity, animal_id=str(animal_uuid)):
            conversation, _animal = await self.store.upsert(db, participant, animal_uuid)

            override_text = None
            if isinstance(auto_message, str):
                override_text = auto_message
                wants_opening = bool(auto_message.strip())
            elif auto_message is None:
                wants_opening = settings.auto_message_on_start
            else:
                wants_opening = auto_message

            opening = None
            if wants_opening:
                opening = await self.trigger.ensure_opening_message(
                    db, conversation, identity=identity, override_text=override_text
                )

        logger.info(
            "Conversation %s started (identity=%s, animal=%s, opening=%s)",
            conversation.id,
            identity.kind,
            animal_uuid,
            opening is not None,
        )
        response = StartConversationResponse(
            conversation=ConversationResponse.build(conversation),
            opening_message=MessageResponse.model_validate(opening) if opening else None,
        )
        return response, opening is not None

    async def _participant_for_start(
        self,
        db: AsyncSession,
        identity: Identity,
        animal_id: uuid.UUID,
        user_id: Optional[str],
    ) -> Participant:
        if not isinstance(identity, ShelterIdentity):
            return identity

        target_user = _require_uuid(user_id, "userId")
        animal = await self.directory.get_animal(db, animal_id)
        if animal is None or animal.shelter_id != identity.shelter_id:
            raise AnimalNotFoundError(str(animal_id))
        if not await self.directory.user_exists(db, target_user):
            raise NotFoundError(resource="user", resource_id=str(target_user))
        return UserIdentity(user_id=target_user)

    async def list_conversations(
        self, db: AsyncSession, identity: Participant
    ) -> List[ConversationResponse]:
        with _storage_errors("list_conversations", identity):
            rows = await self.store.list_for_participant(db, identity)
        return [ConversationResponse.build(conversation, unread) for conversation, unread in rows]

    async def get_history(
        self,
        db: AsyncSession,
        identity: Participant,
        animal_id: str,
        after_id: Optional[int] = None,
    ) -> MessageListResponse:
        animal_uuid = _require_uuid(animal_id, "animalId")
        with _storage_errors("get_history", identity, animal_id=str(animal_uuid)):
            conversation = await self.store.find_existing(db, identity, animal_uuid)
            messages = await self.ledger.list_by_conversation(db, conversation.id, after_id)
        return MessageListResponse(
            conversation_id=conversation.id,
            messages=[MessageResponse.model_validate(m) for m in messages],
        )

    async def post_reply(
        self,
        db: AsyncSession,
        identity: Participant,
        animal_id: str,
        text: Optional[str],
    ) -> MessageResponse:
        """
        Reply to an animal, creating the conversation if needed.

        The text is checked before the upsert so an empty reply does not
        leave an empty conversation behind.
        """
        animal_uuid = _require_uuid(animal_id, "animalId")
        if not (text or "").strip():
            raise ValidationError(message="text required", field="text")

        with _storage_errors("post_reply", identity, animal_id=str(animal_uuid)):
            conversation, _animal = await self.store.upsert(db, identity, animal_uuid)
            sender = await self._participant_sender(db, identity)
            message = await self.ledger.append(db, conversation, sender, text)
        return MessageResponse.model_validate(message)

    async def _participant_sender(self, db: AsyncSession, identity: Participant) -> Sender:
        if isinstance(identity, UserIdentity):
            name = identity.display_name or await self.directory.get_user_name(db, identity.user_id)
            return Sender(kind="user", id=identity.user_id, display_name=name)
        return Sender(kind="user")

    async def mark_read(
        self, db: AsyncSession, identity: Participant, animal_id: str
    ) -> MarkReadResponse:
        animal_uuid = _require_uuid(animal_id, "animalId")
        with _storage_errors("mark_read", identity, animal_id=str(animal_uuid)):
            conversation = await self.store.find_existing(db, identity, animal_uuid)
            updated = await self.ledger.mark_read(db, conversation.id, "user")
        return MarkReadResponse(updated=updated)

    async def delete_conversation(
        self, db: AsyncSession, identity: Participant, animal_id: str
    ) -> None:
        animal_uuid = _require_uuid(animal_id, "animalId")
        with _storage_errors("delete_conversation", identity, animal_id=str(animal_uuid)):
            conversation = await self.store.find_existing(db, identity, animal_uuid)
            conversation_id = conversation.id
            removed = await self.store.delete_cascade(db, conversation)
        logger.info(
            "Conversation %s deleted by %s (animal=%s, messages=%d)",
            conversation_id,
            identity.kind,
            animal_uuid,
            removed,
        )

    # ══════════════════════════════════════════════════════════════════════
    # Shelter Operations
    # ══════════════════════════════════════════════════════════════════════

    async def list_shelter_conversations(
        self,
        db: AsyncSession,
        identity: ShelterIdentity,
        animal_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> List[ConversationResponse]:
        animal_uuid = _optional_uuid(animal_id, "animalId")
        user_uuid = _optional_uuid(user_id, "userId")
        with _storage_errors("list_shelter_conversations", identity):
            rows = await self.store.list_for_shelter(
                db, identity.shelter_id, animal_id=animal_uuid, user_id=user_uuid
            )
        return [
            ConversationResponse.build(conversation, unread, user_name=name)
            for conversation, unread, name in rows
        ]

    async def get_shelter_history(
        self,
        db: AsyncSession,
        identity: ShelterIdentity,
        conversation_id: str,
        after_id: Optional[int] = None,
    ) -> MessageListResponse:
        conversation_uuid = _require_uuid(conversation_id, "conversationId")
        with _storage_errors("get_shelter_history", identity, conversation_id=str(conversation_uuid)):
            conversation = await self.store.find_by_id(db, conversation_uuid, identity.shelter_id)
            messages = await self.ledger.list_by_conversation(db, conversation.id, after_id)
        return MessageListResponse(
            conversation_id=conversation.id,
            messages=[MessageResponse.model_validate(m) for m in messages],
        )

    async def post_shelter_reply(
        self,
        db: AsyncSession,
        identity: ShelterIdentity,
        conversation_id: str,
        text: Optional[str],
        sender_kind: str = "shelter",
    ) -> MessageResponse:
        """Reply into an existing conversation as the shelter or as the animal."""
        conversation_uuid = _require_uuid(conversation_id, "conversationId")
        with _storage_errors("post_shelter_reply", identity, conversation_id=str(conversation_uuid)):
            conversation = await self.store.find_by_id(db, conversation_uuid, identity.shelter_id)
            if sender_kind == "animal":
                sender = Sender(
                    kind="animal",
                    id=conversation.animal_id,
                    display_name=conversation.animal_name,
                    avatar=conversation.animal_photo,
                )
            else:
                shelter = await self.directory.get_shelter(db, identity.shelter_id)
                sender = Sender(
                    kind="shelter",
                    id=identity.shelter_id,
                    display_name=shelter.name if shelter else None,
                )
            message = await self.ledger.append(db, conversation, sender, text)
        return MessageResponse.model_validate(message)

    async def send_opening_message(
        self,
        db: AsyncSession,
        identity: ShelterIdentity,
        conversation_id: str,
        text: Optional[str] = None,
    ) -> OpeningMessageResponse:
        conversation_uuid = _require_uuid(conversation_id, "conversationId")
        with _storage_errors("send_opening_message", identity, conversation_id=str(conversation_uuid)):
            conversation = await self.store.find_by_id(db, conversation_uuid, identity.shelter_id)
            message = await self.trigger.ensure_opening_message(
                db, conversation, identity=identity, override_text=text
            )
        return OpeningMessageResponse(
            sent=message is not None,
            message=MessageResponse.model_validate(message) if message else None,
        )

    async def mark_shelter_read(
        self, db: AsyncSession, identity: ShelterIdentity, conversation_id: str
    ) -> MarkReadResponse:
        conversation_uuid = _require_uuid(conversation_id, "conversationId")
        with _storage_errors("mark_shelter_read", identity, conversation_id=str(conversation_uuid)):
            conversation = await self.store.find_by_id(db, conversation_uuid, identity.shelter_id)
            updated = await self.ledger.mark_read(db, conversation.id, "shelter")
        return MarkReadResponse(updated=updated)

    async def delete_shelter_conversation(
        self, db: AsyncSession, identity: ShelterIdentity, conversation_id: str
    ) -> None:
        conversation_uuid = _require_uuid(conversation_id, "conversationId")
        with _storage_errors(
            "delete_shelter_conversation", identity, conversation_id=str(conversation_uuid)
        ):
            conversation = await self.store.find_by_id(db, conversation_uuid, identity.shelter_id)
            removed = await self.store.delete_cascade(db, conversation)
        logger.info(
            "Conversation %s deleted by shelter %s (messages=%d)",
            conversation_uuid,
            identity.shelter_id,
            removed,
        )


# ── Singleton Instance ────────────────────────────────────────────────────
conversation_service = ConversationService()
