"""
PawMatch Backend — Opening Message Trigger
============================================

What:  Appends the scripted opening message to a conversation at most once.
How:   The auto_message_sent flag is flipped with a compare-and-set UPDATE
       (WHERE auto_message_sent IS false). Only the request whose UPDATE
       matched a row appends the message; every other caller gets None.
       Flag and message share the request transaction, so a failed append
       rolls the flag back as well.
Who:   Called by ConversationService when a conversation is started and by
       the shelter opening-message endpoint.

State machine:
    NotSent ──(CAS wins)──▶ Sent      one way, terminal
"""

import logging
import random
from typing import List, Optional

from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession

from pawmatch.config import settings
from pawmatch.models.conversation import Conversation, utcnow
from pawmatch.models.message import Message
from pawmatch.services.directory import Directory, sql_directory
from pawmatch.services.identity import Identity, ShelterIdentity
from pawmatch.services.message_ledger import MessageLedger, Sender, message_ledger

logger = logging.getLogger(__name__)


class AutoMessageTrigger:
    """
    Builds and sends the opening message.

    The intro pool and suffix default to settings but can be injected,
    which the tests use to pin the generated text.
    """

    def __init__(
        self,
        ledger: Optional[MessageLedger] = None,
        directory: Optional[Directory] = None,
        intro_lines: Optional[List[str]] = None,
        suffix: Optional[str] = None,
    ):
        self.ledger = ledger or message_ledger
        self.directory = directory or sql_directory
        self.intro_lines = intro_lines
        self.suffix = suffix

    def build_default_text(self) -> Optional[str]:
        """
        One random intro line, a blank line, then the suffix.

        Falls back to the suffix alone when the pool is empty and returns
        None when both are empty.
        """
        intro_lines = settings.auto_message_intro_lines if self.intro_lines is None else self.intro_lines
        suffix = settings.auto_message_suffix if self.suffix is None else self.suffix

        pool = [line.strip() for line in intro_lines if line and line.strip()]
        suffix = (suffix or "").strip()
        if not pool:
            return suffix or None
        intro = random.choice(pool)
        return f"{intro}\n\n{suffix}" if suffix else intro

    async def ensure_opening_message(
        self,
        db: AsyncSession,
        conversation: Conversation,
        identity: Optional[Identity] = None,
        override_text: Optional[str] = None,
    ) -> Optional[Message]:
        """
        Send the opening message unless it was sent already.

        Returns:
            The new Message, or None when the flag was already set, no text
            is available, no shelter can be attributed, or a concurrent call
            won the compare-and-set.
        """
        if conversation.auto_message_sent:
            return None

        text = (override_text or "").strip() or self.build_default_text()
        if not text:
            return None

        shelter_id = conversation.shelter_id
        if shelter_id is None and isinstance(identity, ShelterIdentity):
            shelter_id = identity.shelter_id
        if shelter_id is None:
            animal = await self.directory.get_animal(db, conversation.animal_id)
            if animal is not None:
                shelter_id = animal.shelter_id
        if shelter_id is None:
            logger.info(
                "No shelter for conversation %s (animal=%s); opening message skipped",
                conversation.id,
                conversation.animal_id,
            )
            return None

        result = await db.execute(
            update(Conversation)
            .where(
                Conversation.id == conversation.id,
                Conversation.auto_message_sent.is_(False),
            )
            .values(
                auto_message_sent=True,
                shelter_id=func.coalesce(Conversation.shelter_id, shelter_id),
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        await db.refresh(conversation)
        if result.rowcount == 0:
            logger.info("Opening message for conversation %s already sent", conversation.id)
            return None

        shelter = await self.directory.get_shelter(db, conversation.shelter_id)
        sender = Sender(
            kind="shelter",
            id=conversation.shelter_id,
            display_name=shelter.name if shelter else None,
        )
        message = await self.ledger.append(db, conversation, sender, text)
        logger.info(
            "Opening message %d sent in conversation %s (animal=%s, shelter=%s)",
            message.id,
            conversation.id,
            conversation.animal_id,
            conversation.shelter_id,
        )
        return message


# ── Singleton Instance ────────────────────────────────────────────────────
auto_message_trigger = AutoMessageTrigger()
