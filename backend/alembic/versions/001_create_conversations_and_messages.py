"""Create conversations and messages tables

Revision ID: 001
Revises: None
Create Date: 2026-10-18 00:00:00.000000+00:00

What:  Creates the `conversations` and `messages` tables with the two
       partial unique indexes that make the upsert atomic.
How:   The unique indexes only cover rows where the key is present, so a
       conversation without a user does not collide on (NULL, animal_id).

animals, shelters and users are referenced by id only; they belong to
other services and have no foreign keys here.

Rollback: downgrade() drops both tables (destructive).
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "conversations",
        sa.Column("id", sa.Uuid(), nullable=False),

        # Participant: a device conversation gains user_id when claimed
        sa.Column("user_id", sa.Uuid(), nullable=True),
        sa.Column("device_key", sa.String(255), nullable=True),

        # Animal snapshot, refreshed on every upsert
        sa.Column("animal_id", sa.Uuid(), nullable=False),
        sa.Column("animal_name", sa.String(255), nullable=True),
        sa.Column("animal_photo", sa.String(1024), nullable=True),
        sa.Column("shelter_id", sa.Uuid(), nullable=True),

        sa.Column(
            "matched_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.Column(
            "auto_message_sent",
            sa.Boolean(),
            server_default=sa.false(),
            nullable=False,
            comment="Flipped once, by compare-and-set, when the opening message is sent",
        ),
        sa.Column("last_message", sa.Text(), nullable=True),
        sa.Column("last_message_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "user_id IS NOT NULL OR device_key IS NOT NULL",
            name="ck_conversations_participant",
        ),
    )

    op.create_index(
        "uq_conversations_user_animal",
        "conversations",
        ["user_id", "animal_id"],
        unique=True,
        postgresql_where=sa.text("user_id IS NOT NULL"),
        sqlite_where=sa.text("user_id IS NOT NULL"),
    )
    op.create_index(
        "uq_conversations_device_animal",
        "conversations",
        ["device_key", "animal_id"],
        unique=True,
        postgresql_where=sa.text("device_key IS NOT NULL"),
        sqlite_where=sa.text("device_key IS NOT NULL"),
    )
    op.create_index("ix_conversations_device_key", "conversations", ["device_key"])
    op.create_index(
        "idx_conversations_shelter_updated",
        "conversations",
        ["shelter_id", "updated_at"],
    )

    op.create_table(
        "messages",
        sa.Column(
            "id",
            sa.BigInteger().with_variant(sa.Integer(), "sqlite"),
            autoincrement=True,
            nullable=False,
            comment="Insertion sequence; history is ordered by it",
        ),
        sa.Column("conversation_id", sa.Uuid(), nullable=False),
        sa.Column("conversation_key", sa.String(512), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=True),
        sa.Column("device_key", sa.String(255), nullable=True),
        sa.Column("animal_id", sa.Uuid(), nullable=False),
        sa.Column("shelter_id", sa.Uuid(), nullable=True),
        sa.Column("from_kind", sa.String(16), nullable=False),
        sa.Column("from_id", sa.Uuid(), nullable=True),
        sa.Column("to_kind", sa.String(16), nullable=False),
        sa.Column("to_id", sa.Uuid(), nullable=True),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("author_display_name", sa.String(255), nullable=True),
        sa.Column("author_avatar", sa.String(1024), nullable=True),
        sa.Column("read", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(
            ["conversation_id"],
            ["conversations.id"],
            ondelete="CASCADE",
        ),
    )

    op.create_index("ix_messages_conversation_key", "messages", ["conversation_key"])
    op.create_index(
        "idx_messages_conversation_order",
        "messages",
        ["conversation_id", "id"],
    )


def downgrade() -> None:
    op.drop_index("idx_messages_conversation_order", table_name="messages")
    op.drop_index("ix_messages_conversation_key", table_name="messages")
    op.drop_table("messages")

    op.drop_index("idx_conversations_shelter_updated", table_name="conversations")
    op.drop_index("ix_conversations_device_key", table_name="conversations")
    op.drop_index("uq_conversations_device_animal", table_name="conversations")
    op.drop_index("uq_conversations_user_animal", table_name="conversations")
    op.drop_table("conversations")
