"""
PawMatch Backend — Conversation Store
=======================================

What:  Keyed, upsertable storage of conversations: one row per
       (participant, animal), with claim semantics for device conversations.
How:   Every write that races another request is a single conditional
       statement. The database is the only coordinator; nothing here holds
       an in-process lock.
Who:   Called by ConversationService, MessageLedger (claim on reply) and
       the opening-message trigger (animal lookup).

Atomic operations:
    upsert   INSERT … ON CONFLICT (key, animal_id) WHERE key IS NOT NULL
             DO UPDATE SET <snapshot> RETURNING id
             matched_at / created_at are only written by the INSERT branch.
             Dialects without ON CONFLICT fall back to select → insert in a
             savepoint → retry on IntegrityError (tenacity).
    claim    UPDATE conversations SET user_id = :user
             WHERE id = :id AND user_id IS NULL
             Zero rows, or a unique violation because the user already has
             a conversation for the animal, raise StorageConflictError.

Callers catch StorageConflictError and re-read; it only reaches the client
if a service lets it escape.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional, Tuple, Union

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from pawmatch.config import settings
from pawmatch.exceptions import (
    AnimalNotFoundError,
    ConversationNotFoundError,
    StorageConflictError,
    UnauthorizedError,
)
from pawmatch.models.conversation import Conversation, utcnow
from pawmatch.models.directory import Animal, User
from pawmatch.models.message import Message
from pawmatch.services.directory import AnimalSnapshot, Directory, sql_directory
from pawmatch.services.identity import (
    DeviceIdentity,
    Identity,
    ShelterIdentity,
    UserIdentity,
)

logger = logging.getLogger(__name__)

Participant = Union[UserIdentity, DeviceIdentity]


def _dialect_insert(dialect_name: str):
    """Returns the dialect's INSERT construct when it supports ON CONFLICT."""
    if dialect_name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
        return insert
    if dialect_name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
        return insert
    return None


class ConversationStore:
    """
    Responsibilities:
        - upsert(): atomic find-update-or-insert for (participant, animal)
        - find_existing(): participant lookup, claiming a device conversation
        - claim(): conditional user assignment on a device conversation
        - find_by_id(): shelter-scoped lookup with shelter backfill
        - delete_cascade(): messages then conversation, one transaction
        - list_for_participant() / list_for_shelter(): list views with
          unread counts

    All methods flush and never commit; the request session owns the
    transaction.
    """

    def __init__(self, directory: Optional[Directory] = None):
        self.directory = directory or sql_directory

    # ══════════════════════════════════════════════════════════════════════
    # Upsert
    # ══════════════════════════════════════════════════════════════════════

    async def upsert(
        self,
        db: AsyncSession,
        identity: Identity,
        animal_id: uuid.UUID,
    ) -> Tuple[Conversation, AnimalSnapshot]:
        """
        Find or create the conversation between a participant and an animal.

        The animal snapshot (name, photo, shelter) is refreshed on every
        call; matched_at is only set when the row is created.

        A user that also presents a device key first tries to claim that
        device's unclaimed conversation with the animal, so logging in does
        not start a second chat.

        Raises:
            AnimalNotFoundError: the animal does not exist
            UnauthorizedError: called with a ShelterIdentity (shelters start
                conversations through a UserIdentity for the adopter)
        """
        if isinstance(identity, ShelterIdentity):
            raise UnauthorizedError(message="Shelters start conversations on behalf of a user")

        animal = await self.directory.get_animal(db, animal_id)
        if animal is None:
            raise AnimalNotFoundError(str(animal_id))

        snapshot: Dict[str, Any] = {
            "animal_name": animal.name,
            "animal_photo": animal.photo,
        }
        if animal.shelter_id is not None:
            snapshot["shelter_id"] = animal.shelter_id

        if isinstance(identity, UserIdentity) and identity.device_key:
            claimed = await self._claim_device_conversation(db, identity, animal_id)
            if claimed is not None:
                await self._apply_snapshot(db, claimed, snapshot)
                return claimed, animal

        if isinstance(identity, UserIdentity):
            key = {"user_id": identity.user_id}
        else:
            key = {"device_key": identity.device_key}

        insert = _dialect_insert(db.get_bind().dialect.name)
        if insert is not None:
            conversation_id = await self._native_upsert(db, insert, key, animal_id, snapshot)
        else:
            conversation_id = await self._emulated_upsert(db, key, animal_id, snapshot)

        conversation = await db.get(Conversation, conversation_id, populate_existing=True)
        logger.debug(
            "Upserted conversation %s (identity=%s, animal=%s)",
            conversation_id,
            identity.kind,
            animal_id,
        )
        return conversation, animal

    async def _native_upsert(
        self,
        db: AsyncSession,
        insert,
        key: Dict[str, Any],
        animal_id: uuid.UUID,
        snapshot: Dict[str, Any],
    ) -> uuid.UUID:
        now = utcnow()
        key_column = Conversation.user_id if "user_id" in key else Conversation.device_key

        stmt = insert(Conversation).values(
            id=uuid.uuid4(),
            animal_id=animal_id,
            matched_at=now,
            created_at=now,
            updated_at=now,
            auto_message_sent=False,
            **key,
            **snapshot,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[key_column, Conversation.animal_id],
            index_where=key_column.isnot(None),
            set_={**snapshot, "updated_at": now},
        ).returning(Conversation.id)

        result = await db.execute(stmt)
        return result.scalar_one()

    async def _emulated_upsert(
        self,
        db: AsyncSession,
        key: Dict[str, Any],
        animal_id: uuid.UUID,
        snapshot: Dict[str, Any],
    ) -> uuid.UUID:
        """
        Select → insert-in-savepoint → retry for dialects without ON CONFLICT.

        A concurrent insert of the same key makes our insert hit the partial
        unique index; the savepoint is rolled back and the next attempt
        finds the winner's row.
        """
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(IntegrityError),
            stop=stop_after_attempt(settings.upsert_retry_attempts),
            wait=wait_exponential_jitter(multiplier=0.05, max=0.5),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                existing = await self._find_by_key(db, key, animal_id)
                if existing is not None:
                    await self._apply_snapshot(db, existing, snapshot)
                    return existing.id

                conversation = Conversation(animal_id=animal_id, **key, **snapshot)
                async with db.begin_nested():
                    db.add(conversation)
                    await db.flush()
                return conversation.id

    async def _apply_snapshot(
        self, db: AsyncSession, conversation: Conversation, snapshot: Dict[str, Any]
    ) -> None:
        for name, value in snapshot.items():
            setattr(conversation, name, value)
        conversation.updated_at = utcnow()
        await db.flush()

    async def _find_by_key(
        self, db: AsyncSession, key: Dict[str, Any], animal_id: uuid.UUID
    ) -> Optional[Conversation]:
        if "user_id" in key:
            return await self._find_for_user(db, key["user_id"], animal_id)
        return await self._find_for_device(db, key["device_key"], animal_id)

    # ══════════════════════════════════════════════════════════════════════
    # Lookups and Claim
    # ══════════════════════════════════════════════════════════════════════

    async def _find_for_user(
        self, db: AsyncSession, user_id: uuid.UUID, animal_id: uuid.UUID
    ) -> Optional[Conversation]:
        result = await db.execute(
            select(Conversation).where(
                Conversation.user_id == user_id,
                Conversation.animal_id == animal_id,
            )
        )
        return result.scalar_one_or_none()

    async def _find_for_device(
        self, db: AsyncSession, device_key: str, animal_id: uuid.UUID
    ) -> Optional[Conversation]:
        result = await db.execute(
            select(Conversation).where(
                Conversation.device_key == device_key,
                Conversation.animal_id == animal_id,
            )
        )
        return result.scalar_one_or_none()

    async def _claim_device_conversation(
        self, db: AsyncSession, identity: UserIdentity, animal_id: uuid.UUID
    ) -> Optional[Conversation]:
        device_conversation = await self._find_for_device(db, identity.device_key, animal_id)
        if device_conversation is None:
            return None
        try:
            return await self.claim(db, device_conversation, identity.user_id)
        except StorageConflictError:
            return None

    async def claim(
        self, db: AsyncSession, conversation: Conversation, user_id: uuid.UUID
    ) -> Conversation:
        """
        Attach a user to an anonymous device conversation.

        Idempotent for the same user. Never overwrites a different user.

        Raises:
            StorageConflictError: another user holds the conversation, or
                this user already has a conversation with the animal
        """
        if conversation.user_id == user_id:
            return conversation
        if conversation.user_id is not None:
            raise StorageConflictError(
                message="Conversation is already claimed",
                context={"conversation_id": str(conversation.id)},
            )

        try:
            async with db.begin_nested():
                result = await db.execute(
                    update(Conversation)
                    .where(Conversation.id == conversation.id, Conversation.user_id.is_(None))
                    .values(user_id=user_id, updated_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
        except IntegrityError:
            raise StorageConflictError(
                message="User already has a conversation for this animal",
                context={"conversation_id": str(conversation.id), "user_id": str(user_id)},
            )

        await db.refresh(conversation)
        if result.rowcount == 0 and conversation.user_id != user_id:
            logger.info(
                "Claim lost for conversation %s: already held by another user",
                conversation.id,
            )
            raise StorageConflictError(
                message="Conversation is already claimed",
                context={"conversation_id": str(conversation.id)},
            )

        logger.info(
            "Conversation %s claimed by user %s (device=%s, animal=%s)",
            conversation.id,
            user_id,
            conversation.device_key,
            conversation.animal_id,
        )
        return conversation

    async def find_existing(
        self, db: AsyncSession, identity: Participant, animal_id: uuid.UUID
    ) -> Conversation:
        """
        Locate the caller's conversation with an animal without creating one.

        For a user that also presents a device key, an unclaimed device
        conversation is claimed on the way. If that claim loses a race the
        user's own conversation is re-read.

        Raises:
            ConversationNotFoundError: nothing matches
        """
        if isinstance(identity, UserIdentity):
            conversation = await self._find_for_user(db, identity.user_id, animal_id)
            if conversation is not None:
                return conversation

            if identity.device_key:
                device_conversation = await self._find_for_device(db, identity.device_key, animal_id)
                if device_conversation is not None:
                    if device_conversation.user_id == identity.user_id:
                        return device_conversation
                    if device_conversation.user_id is None:
                        try:
                            return await self.claim(db, device_conversation, identity.user_id)
                        except StorageConflictError:
                            conversation = await self._find_for_user(
                                db, identity.user_id, animal_id
                            )
                            if conversation is not None:
                                return conversation

        elif isinstance(identity, DeviceIdentity):
            conversation = await self._find_for_device(db, identity.device_key, animal_id)
            if conversation is not None:
                return conversation

        raise ConversationNotFoundError(context={"animal_id": str(animal_id)})

    async def find_by_id(
        self, db: AsyncSession, conversation_id: uuid.UUID, shelter_id: uuid.UUID
    ) -> Conversation:
        """
        Shelter-scoped lookup by primary key.

        Ownership is the stored shelter reference, or for rows created
        before the animal had a shelter, the animal's current shelter. In
        the second case the reference is backfilled onto the conversation.

        Raises:
            ConversationNotFoundError: missing, or owned by another shelter
        """
        conversation = await db.get(Conversation, conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(str(conversation_id))

        if conversation.shelter_id is not None:
            if conversation.shelter_id != shelter_id:
                raise ConversationNotFoundError(str(conversation_id))
            return conversation

        animal = await self.directory.get_animal(db, conversation.animal_id)
        if animal is None or animal.shelter_id != shelter_id:
            raise ConversationNotFoundError(str(conversation_id))

        # Keep updated_at so the backfill does not reorder lists
        await db.execute(
            update(Conversation)
            .where(Conversation.id == conversation.id, Conversation.shelter_id.is_(None))
            .values(shelter_id=shelter_id, updated_at=Conversation.updated_at)
            .execution_options(synchronize_session=False)
        )
        await db.refresh(conversation)
        logger.info("Backfilled shelter %s on conversation %s", shelter_id, conversation.id)
        return conversation

    # ══════════════════════════════════════════════════════════════════════
    # Delete
    # ══════════════════════════════════════════════════════════════════════

    async def delete_cascade(self, db: AsyncSession, conversation: Conversation) -> int:
        """
        Delete a conversation and all of its messages.

        Messages go first so a partial failure never leaves messages
        pointing at a missing conversation. Both statements run in the
        request transaction. Returns the number of messages removed.
        """
        result = await db.execute(
            delete(Message)
            .where(Message.conversation_id == conversation.id)
            .execution_options(synchronize_session=False)
        )
        await db.execute(
            delete(Conversation)
            .where(Conversation.id == conversation.id)
            .execution_options(synchronize_session=False)
        )
        db.expunge(conversation)
        return result.rowcount

    # ══════════════════════════════════════════════════════════════════════
    # Lists
    # ══════════════════════════════════════════════════════════════════════

    def _unread_counts(self, reader_kind: str):
        return (
            select(
                Message.conversation_id.label("conversation_id"),
                func.count(Message.id).label("unread"),
            )
            .where(Message.to_kind == reader_kind, Message.read.is_(False))
            .group_by(Message.conversation_id)
            .subquery()
        )

    async def list_for_participant(
        self, db: AsyncSession, identity: Participant
    ) -> List[Tuple[Conversation, int]]:
        """Caller's conversations with their unread counts, newest activity first."""
        unread = self._unread_counts("user")
        if isinstance(identity, UserIdentity):
            owner = Conversation.user_id == identity.user_id
        else:
            owner = Conversation.device_key == identity.device_key

        result = await db.execute(
            select(Conversation, func.coalesce(unread.c.unread, 0))
            .outerjoin(unread, unread.c.conversation_id == Conversation.id)
            .where(owner)
            .order_by(Conversation.updated_at.desc(), Conversation.id)
        )
        return [(conversation, count) for conversation, count in result.all()]

    async def list_for_shelter(
        self,
        db: AsyncSession,
        shelter_id: uuid.UUID,
        animal_id: Optional[uuid.UUID] = None,
        user_id: Optional[uuid.UUID] = None,
    ) -> List[Tuple[Conversation, int, Optional[str]]]:
        """
        Conversations owned by a shelter, with unread counts and user names.

        A conversation belongs to the shelter through its stored reference,
        or, when that is unset, through its animal's shelter.
        """
        unread = self._unread_counts("shelter")
        stmt = (
            select(Conversation, func.coalesce(unread.c.unread, 0), User.name)
            .outerjoin(unread, unread.c.conversation_id == Conversation.id)
            .outerjoin(Animal, Animal.id == Conversation.animal_id)
            .outerjoin(User, User.id == Conversation.user_id)
            .where(
                or_(
                    Conversation.shelter_id == shelter_id,
                    and_(Conversation.shelter_id.is_(None), Animal.shelter_id == shelter_id),
                )
            )
        )
        if animal_id is not None:
            stmt = stmt.where(Conversation.animal_id == animal_id)
        if user_id is not None:
            stmt = stmt.where(Conversation.user_id == user_id)

        result = await db.execute(stmt.order_by(Conversation.updated_at.desc(), Conversation.id))
        return [(conversation, count, name) for conversation, count, name in result.all()]


# ── Singleton Instance ────────────────────────────────────────────────────
conversation_store = ConversationStore()
