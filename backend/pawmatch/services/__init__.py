# Services package init
"""
PawMatch Backend — Services Layer
===================================

What:  Business logic layer sitting between routes (HTTP) and database (persistence).
How:   Services receive the request's AsyncSession per call, apply the
       conversation rules and return ORM rows or response schemas. They
       flush but never commit.

Service Inventory:
    - Directory (abstract) / SqlDirectory: animal, shelter and user lookups
    - IdentityResolver: credentials → User / Device / Shelter identity
    - ConversationStore: atomic upsert, claim, shelter lookup, cascade delete
    - MessageLedger: append-only message log and last-message projection
    - AutoMessageTrigger: exactly-once opening message
    - ConversationService: orchestrates the above for the HTTP routes
"""
