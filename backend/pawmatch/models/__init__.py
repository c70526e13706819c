"""
PawMatch Backend — ORM Models
===============================

Importing this package registers every table with Base.metadata
(used by Alembic and by the test suite's create_all).
"""

from pawmatch.models.conversation import Conversation
from pawmatch.models.directory import Animal, Shelter, User
from pawmatch.models.message import Message

__all__ = ["Animal", "Conversation", "Message", "Shelter", "User"]
