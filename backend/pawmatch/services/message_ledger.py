"""
PawMatch Backend — Message Ledger
===================================

What:  Append-only, per-conversation ordered log of chat messages.
How:   append() inserts one Message and refreshes the conversation's
       last_message projection in the same transaction. History is read in
       insertion-sequence order.
Who:   Called by ConversationService for replies and by the opening-message
       trigger.

Recipient rule (sender → recipient):
    user     → shelter
    shelter  → user
    animal   → user when the conversation has one, otherwise shelter
    system   → user

A user reply into an unclaimed device conversation claims it for that user.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from pawmatch.exceptions import (
    ConversationNotFoundError,
    StorageConflictError,
    ValidationError,
)
from pawmatch.models.conversation import Conversation, utcnow
from pawmatch.models.message import SENDER_KINDS, Message
from pawmatch.services.conversation_store import ConversationStore, conversation_store

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Sender:
    """
    Who a message is from.

    id is the user, shelter or animal id; it is None for an anonymous
    device writing as "user".
    """
    kind: str
    id: Optional[uuid.UUID] = None
    display_name: Optional[str] = None
    avatar: Optional[str] = None


class MessageLedger:
    def __init__(self, store: Optional[ConversationStore] = None):
        self.store = store or conversation_store

    @staticmethod
    def recipient_for(conversation: Conversation, sender_kind: str) -> Tuple[str, Optional[uuid.UUID]]:
        if sender_kind == "user":
            return "shelter", conversation.shelter_id
        if sender_kind == "animal" and conversation.user_id is None:
            return "shelter", conversation.shelter_id
        return "user", conversation.user_id

    async def append(
        self,
        db: AsyncSession,
        conversation: Conversation,
        sender: Sender,
        text: Optional[str],
    ) -> Message:
        """
        Append a message and update the conversation's last-message fields.

        Raises:
            ValidationError: text is empty after trimming, or unknown sender kind
            ConversationNotFoundError: a user writes into a conversation that
                belongs to a different user
        """
        body = (text or "").strip()
        if not body:
            raise ValidationError(message="text required", field="text")
        if sender.kind not in SENDER_KINDS:
            raise ValidationError(message=f"Unknown sender kind '{sender.kind}'", field="senderKind")

        if sender.kind == "user" and sender.id is not None and conversation.user_id != sender.id:
            try:
                await self.store.claim(db, conversation, sender.id)
            except StorageConflictError:
                raise ConversationNotFoundError(str(conversation.id))

        to_kind, to_id = self.recipient_for(conversation, sender.kind)
        now = utcnow()

        message = Message(
            conversation_id=conversation.id,
            conversation_key=conversation.conversation_key,
            user_id=conversation.user_id,
            device_key=conversation.device_key,
            animal_id=conversation.animal_id,
            shelter_id=conversation.shelter_id,
            from_kind=sender.kind,
            from_id=sender.id,
            to_kind=to_kind,
            to_id=to_id,
            text=body,
            author_display_name=sender.display_name,
            author_avatar=sender.avatar,
            read=False,
            created_at=now,
        )
        db.add(message)
        await db.flush()

        conversation.last_message = body
        conversation.last_message_at = message.created_at
        conversation.updated_at = now
        await db.flush()

        logger.info(
            "Message %d appended to conversation %s (%s → %s, animal=%s)",
            message.id,
            conversation.id,
            sender.kind,
            to_kind,
            conversation.animal_id,
        )
        return message

    async def list_by_conversation(
        self,
        db: AsyncSession,
        conversation_id: uuid.UUID,
        after_id: Optional[int] = None,
    ) -> List[Message]:
        """
        All messages of a conversation in append order.

        With after_id only the messages appended after that one are returned,
        which lets clients poll for new messages.
        """
        stmt = select(Message).where(Message.conversation_id == conversation_id)
        if after_id is not None:
            stmt = stmt.where(Message.id > after_id)
        result = await db.execute(stmt.order_by(Message.id))
        return list(result.scalars().all())

    async def mark_read(self, db: AsyncSession, conversation_id: uuid.UUID, reader_kind: str) -> int:
        """Flag every unread message addressed to reader_kind as read; returns the count."""
        result = await db.execute(
            update(Message)
            .where(
                Message.conversation_id == conversation_id,
                Message.to_kind == reader_kind,
                Message.read.is_(False),
            )
            .values(read=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount


# ── Singleton Instance ────────────────────────────────────────────────────
message_ledger = MessageLedger()
