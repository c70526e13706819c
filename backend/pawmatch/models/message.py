"""
PawMatch Backend — Message SQLAlchemy Model
=============================================

What:  ORM model for the `messages` table, the append-only chat ledger.
Who:   Written and read by MessageLedger; bulk-deleted by the store's
       cascade delete.

Ordering:
    The integer primary key is the insertion sequence and the only sort
    key for history, so messages written within the same clock tick still
    come back in the order they were appended. It is also the polling
    cursor (afterId).

Participant columns (user_id, device_key, animal_id, shelter_id) are
copied from the conversation at write time so messages can be filtered
without a join.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    false,
)
from sqlalchemy import text as sql_text
from sqlalchemy.orm import Mapped, mapped_column

from pawmatch.database import Base
from pawmatch.models.conversation import utcnow

SENDER_KINDS = ("user", "shelter", "animal", "system")
RECIPIENT_KINDS = ("user", "shelter", "animal")


class Message(Base):
    """
    Lifecycle:
        1. Appended by a reply or by the opening-message trigger
        2. Only the read flag may change afterwards
        3. Deleted with its conversation
    """

    __tablename__ = "messages"

    # SQLite only autoincrements INTEGER PRIMARY KEY
    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
    )
    conversation_key: Mapped[str] = mapped_column(String(512), nullable=False, index=True)

    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    device_key: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    animal_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    shelter_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    # user | shelter | animal | system
    from_kind: Mapped[str] = mapped_column(String(16), nullable=False)
    from_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    # user | shelter | animal
    to_kind: Mapped[str] = mapped_column(String(16), nullable=False)
    to_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    text: Mapped[str] = mapped_column(Text, nullable=False)
    author_display_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    author_avatar: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)

    read: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=sql_text("CURRENT_TIMESTAMP"),
    )

    __table_args__ = (
        Index("idx_messages_conversation_order", "conversation_id", "id"),
    )

    def __repr__(self) -> str:
        return (
            f"<Message(id={self.id}, conversation_id={self.conversation_id}, "
            f"from_kind='{self.from_kind}', to_kind='{self.to_kind}')>"
        )
