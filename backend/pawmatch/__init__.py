"""
PawMatch Backend — Application Package Initializer
====================================================

What: The match-conversation backend of the PawMatch adoption platform.
Who:  Imported by uvicorn (`pawmatch.main:app`), Alembic and pytest.

Layering:
    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns, identity dependency
    ├─────────────────────────────────────┤
    │         Services (Business Logic)   │  ← store, ledger, opening message
    ├─────────────────────────────────────┤
    │       Models & Schemas (Data)       │  ← SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │        Database (Persistence)       │  ← Async SQLAlchemy sessions
    └─────────────────────────────────────┘
"""

__version__ = "1.0.0"
