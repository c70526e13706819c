"""
PawMatch Backend — Collaborator Read Models
=============================================

What:  Read-only ORM mappings of the animals, shelters and users tables.
Who:   Queried by SqlDirectory (services/directory.py) and joined by the
       shelter conversation list to resolve user names.

These tables are owned by the registration / listing side of the platform.
Only the columns the conversation subsystem reads are mapped, and the
tables are flagged external so Alembic never tries to create or alter them.
"""

import uuid
from typing import Optional

from sqlalchemy import ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from pawmatch.database import Base

EXTERNAL = {"info": {"external": True}}


class Shelter(Base):
    __tablename__ = "shelters"
    __table_args__ = EXTERNAL

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    def __repr__(self) -> str:
        return f"<Shelter(id={self.id}, name='{self.name}')>"


class Animal(Base):
    __tablename__ = "animals"
    __table_args__ = EXTERNAL

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    photo: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    # Animals listed without a shelter exist in the source data
    shelter_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("shelters.id"), nullable=True
    )

    def __repr__(self) -> str:
        return f"<Animal(id={self.id}, name='{self.name}', shelter_id={self.shelter_id})>"


class User(Base):
    __tablename__ = "users"
    __table_args__ = EXTERNAL

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, name='{self.name}')>"
