"""
PawMatch Backend — Conversation SQLAlchemy Model
==================================================

What:  ORM model for the `conversations` table: one ongoing chat between a
       participant (adopter or anonymous device) and one animal.
Who:   Written by ConversationStore; read by the conversation service and
       the message ledger.

Table Design:
    - user_id / device_key: the participant. A conversation starts with one
      of them; a device conversation gains a user_id when it is claimed.
    - animal_name / animal_photo / shelter_id: snapshot of the animal taken
      on every upsert so lists render without joins.
    - matched_at: set on insert only.
    - auto_message_sent: NotSent → Sent, one way. Flipped with a
      conditional UPDATE so concurrent requests cannot both send.
    - last_message / last_message_at: projection of the newest message.

Uniqueness (partial, so NULL keys do not collide):
    uq_conversations_user_animal    (user_id, animal_id)    WHERE user_id IS NOT NULL
    uq_conversations_device_animal  (device_key, animal_id) WHERE device_key IS NOT NULL
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    String,
    Text,
    Uuid,
    false,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from pawmatch.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Conversation(Base):
    """
    Lifecycle:
        1. Upserted on first contact between a participant and an animal
        2. Snapshot refreshed on every later upsert
        3. Claimed by a user (device conversations only, once)
        4. last_message projection updated on every message
        5. Deleted only explicitly, together with its messages
    """

    __tablename__ = "conversations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # ── Participant ───────────────────────────────────────────────────────
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    device_key: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)

    # ── Animal snapshot ───────────────────────────────────────────────────
    animal_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    animal_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    animal_photo: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    shelter_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    # ── State ─────────────────────────────────────────────────────────────
    matched_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    auto_message_sent: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
    )
    last_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    last_message_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # ── Timestamps ────────────────────────────────────────────────────────
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    __table_args__ = (
        CheckConstraint(
            "user_id IS NOT NULL OR device_key IS NOT NULL",
            name="ck_conversations_participant",
        ),
        Index(
            "uq_conversations_user_animal",
            "user_id",
            "animal_id",
            unique=True,
            postgresql_where=text("user_id IS NOT NULL"),
            sqlite_where=text("user_id IS NOT NULL"),
        ),
        Index(
            "uq_conversations_device_animal",
            "device_key",
            "animal_id",
            unique=True,
            postgresql_where=text("device_key IS NOT NULL"),
            sqlite_where=text("device_key IS NOT NULL"),
        ),
        Index("idx_conversations_shelter_updated", "shelter_id", "updated_at"),
    )

    @property
    def conversation_key(self) -> str:
        """Stable participant/animal key copied onto every message."""
        if self.user_id is not None:
            return f"{self.user_id}:{self.animal_id}"
        return f"device:{self.device_key}:{self.animal_id}"

    def __repr__(self) -> str:
        return (
            f"<Conversation(id={self.id}, user_id={self.user_id}, "
            f"device_key='{self.device_key}', animal_id={self.animal_id})>"
        )
