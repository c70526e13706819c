"""
PawMatch Backend — Collaborator Directory
===========================================

What:  Read-only lookups of animals, shelters and users.
How:   `Directory` is the abstract interface; `SqlDirectory` implements it
       against the collaborator tables mapped in models/directory.py.
Who:   Used by the identity resolver (user existence), the conversation
       store (animal snapshot, shelter ownership) and the opening-message
       trigger (shelter name).

Design Decision:
    The animal, shelter and user records are owned by other parts of the
    platform. Conversation code reads them only through Directory and never
    writes them.
"""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from pawmatch.models.directory import Animal, Shelter, User


@dataclass(frozen=True)
class AnimalSnapshot:
    id: uuid.UUID
    name: Optional[str]
    photo: Optional[str]
    shelter_id: Optional[uuid.UUID]


@dataclass(frozen=True)
class ShelterSnapshot:
    id: uuid.UUID
    name: Optional[str]


class Directory(ABC):
    """
    Contract:
        - get_animal() / get_shelter() return None when the record is absent
        - user_exists() backs the legacy X-User-Id fallback
        - None of the methods write
    """

    @abstractmethod
    async def get_animal(self, db: AsyncSession, animal_id: uuid.UUID) -> Optional[AnimalSnapshot]:
        ...

    @abstractmethod
    async def get_shelter(self, db: AsyncSession, shelter_id: uuid.UUID) -> Optional[ShelterSnapshot]:
        ...

    @abstractmethod
    async def user_exists(self, db: AsyncSession, user_id: uuid.UUID) -> bool:
        ...

    @abstractmethod
    async def get_user_name(self, db: AsyncSession, user_id: uuid.UUID) -> Optional[str]:
        ...


class SqlDirectory(Directory):
    """Directory backed by the shared relational database."""

    async def get_animal(self, db: AsyncSession, animal_id: uuid.UUID) -> Optional[AnimalSnapshot]:
        animal = await db.get(Animal, animal_id)
        if animal is None:
            return None
        return AnimalSnapshot(
            id=animal.id,
            name=animal.name,
            photo=animal.photo,
            shelter_id=animal.shelter_id,
        )

    async def get_shelter(self, db: AsyncSession, shelter_id: uuid.UUID) -> Optional[ShelterSnapshot]:
        shelter = await db.get(Shelter, shelter_id)
        if shelter is None:
            return None
        return ShelterSnapshot(id=shelter.id, name=shelter.name)

    async def user_exists(self, db: AsyncSession, user_id: uuid.UUID) -> bool:
        return await db.get(User, user_id) is not None

    async def get_user_name(self, db: AsyncSession, user_id: uuid.UUID) -> Optional[str]:
        user = await db.get(User, user_id)
        return user.name if user else None


# ── Singleton Instance ────────────────────────────────────────────────────
sql_directory = SqlDirectory()
