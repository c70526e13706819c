"""
PawMatch Backend — Identity Resolution
========================================

What:  Turns a request's credentials into exactly one caller identity:
       UserIdentity, DeviceIdentity or ShelterIdentity.
How:   Credentials are read from headers into a RequestCredentials bag and
       resolved by fixed precedence. Tokens are HS256 JWTs verified with
       PyJWT.
Who:   Exposed to routes through the get_identity / get_participant_identity
       / get_shelter_identity dependencies.

Precedence (first match wins):
    1. Shelter token: X-Shelter-Token, or a Bearer token that verifies under
       the shelter secret and carries type "shelter" or "admin"
    2. X-Shelter-Id / X-Admin-Id raw headers (TRUST_SHELTER_ID_HEADER only;
       a value that is not a UUID counts as absent)
    3. Bearer user token with a UUID "id" claim (invalid or expired tokens
       are ignored, not rejected)
    4. X-User-Id for an existing user (TRUST_USER_ID_HEADER only)
    5. X-Device-Key
    6. Nothing resolved → UnauthorizedError

A user identity also carries the X-Device-Key value when one is sent, so
the conversation store can claim that device's anonymous conversations.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

import jwt
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from pawmatch.config import settings
from pawmatch.database import get_db_session
from pawmatch.exceptions import UnauthorizedError
from pawmatch.services.directory import Directory, sql_directory

logger = logging.getLogger(__name__)

SHELTER_TOKEN_TYPES = ("shelter", "admin")


# ══════════════════════════════════════════════════════════════════════════
# Identity Types
# ══════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class UserIdentity:
    user_id: uuid.UUID
    device_key: Optional[str] = None
    display_name: Optional[str] = None

    @property
    def kind(self) -> str:
        return "user"


@dataclass(frozen=True)
class DeviceIdentity:
    device_key: str

    @property
    def kind(self) -> str:
        return "device"


@dataclass(frozen=True)
class ShelterIdentity:
    shelter_id: uuid.UUID
    role: str = "shelter"

    @property
    def kind(self) -> str:
        return "shelter"


Identity = Union[UserIdentity, DeviceIdentity, ShelterIdentity]


@dataclass(frozen=True)
class RequestCredentials:
    """Raw credential values as they arrived; every field may be missing."""
    bearer_token: Optional[str] = None
    shelter_token: Optional[str] = None
    shelter_id_header: Optional[str] = None
    admin_id_header: Optional[str] = None
    user_id_header: Optional[str] = None
    device_key: Optional[str] = None

    @classmethod
    def from_request(cls, request: Request) -> "RequestCredentials":
        headers = request.headers
        bearer = None
        auth = headers.get("Authorization", "")
        if auth.lower().startswith("bearer "):
            bearer = auth[7:].strip() or None
        return cls(
            bearer_token=bearer,
            shelter_token=_clean(headers.get("X-Shelter-Token")),
            shelter_id_header=_clean(headers.get("X-Shelter-Id")),
            admin_id_header=_clean(headers.get("X-Admin-Id")),
            user_id_header=_clean(headers.get("X-User-Id")),
            device_key=_clean(headers.get("X-Device-Key")),
        )


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def parse_uuid(value: Any) -> Optional[uuid.UUID]:
    """Returns the UUID for value, or None when it is not a well-formed id."""
    if isinstance(value, uuid.UUID):
        return value
    if not isinstance(value, str):
        return None
    try:
        return uuid.UUID(value)
    except ValueError:
        return None


# ══════════════════════════════════════════════════════════════════════════
# Token Verification
# ══════════════════════════════════════════════════════════════════════════


class TokenVerifier:
    """
    HS256 verification for adopter and shelter tokens.

    Adopter tokens:  {"id": <user uuid>, "name": <display name>}
    Shelter tokens:  {"id": <shelter uuid>, "type": "shelter"|"admin", "role": ...}

    Both methods return None for anything that does not verify: bad
    signature, expiry, wrong type, or an id that is not a UUID.
    """

    def _decode(self, token: str, secret: str) -> Optional[Dict[str, Any]]:
        try:
            return jwt.decode(token, secret, algorithms=[settings.jwt_algorithm])
        except jwt.PyJWTError as e:
            logger.debug("Token rejected: %s", type(e).__name__)
            return None

    def verify_user(self, token: str) -> Optional[UserIdentity]:
        payload = self._decode(token, settings.jwt_secret)
        if payload is None or payload.get("type") in SHELTER_TOKEN_TYPES:
            return None
        user_id = parse_uuid(payload.get("id"))
        if user_id is None:
            return None
        name = payload.get("name")
        return UserIdentity(user_id=user_id, display_name=name if isinstance(name, str) else None)

    def verify_shelter(self, token: str) -> Optional[ShelterIdentity]:
        payload = self._decode(token, settings.effective_shelter_jwt_secret)
        if payload is None or payload.get("type") not in SHELTER_TOKEN_TYPES:
            return None
        shelter_id = parse_uuid(payload.get("id"))
        if shelter_id is None:
            return None
        role = payload.get("role") or payload["type"]
        return ShelterIdentity(shelter_id=shelter_id, role=str(role))


# ══════════════════════════════════════════════════════════════════════════
# Resolver
# ══════════════════════════════════════════════════════════════════════════


class IdentityResolver:
    """Applies the precedence rules from the module docstring."""

    def __init__(self, verifier: Optional[TokenVerifier] = None, directory: Optional[Directory] = None):
        self.verifier = verifier or TokenVerifier()
        self.directory = directory or sql_directory

    async def resolve(self, credentials: RequestCredentials, db: AsyncSession) -> Identity:
        """
        Raises:
            UnauthorizedError: no tier produced an identity
        """
        # ── 1. Signed shelter credential ──────────────────────────────────
        for token in (credentials.shelter_token, credentials.bearer_token):
            if token:
                shelter = self.verifier.verify_shelter(token)
                if shelter is not None:
                    return shelter

        # ── 2. Legacy shelter/admin id headers ────────────────────────────
        if settings.trust_shelter_id_header:
            shelter_id = parse_uuid(credentials.shelter_id_header)
            if shelter_id is not None:
                return ShelterIdentity(shelter_id=shelter_id)
            admin_id = parse_uuid(credentials.admin_id_header)
            if admin_id is not None:
                return ShelterIdentity(shelter_id=admin_id, role="admin")

        # ── 3. Bearer user token ──────────────────────────────────────────
        if credentials.bearer_token:
            user = self.verifier.verify_user(credentials.bearer_token)
            if user is not None:
                return UserIdentity(
                    user_id=user.user_id,
                    device_key=credentials.device_key,
                    display_name=user.display_name,
                )

        # ── 4. Legacy X-User-Id ───────────────────────────────────────────
        if settings.trust_user_id_header:
            user_id = parse_uuid(credentials.user_id_header)
            if user_id is not None and await self.directory.user_exists(db, user_id):
                return UserIdentity(user_id=user_id, device_key=credentials.device_key)

        # ── 5. Anonymous device ───────────────────────────────────────────
        if credentials.device_key:
            return DeviceIdentity(device_key=credentials.device_key)

        raise UnauthorizedError()


identity_resolver = IdentityResolver()


# ══════════════════════════════════════════════════════════════════════════
# FastAPI Dependencies
# ══════════════════════════════════════════════════════════════════════════


async def get_identity(
    request: Request,
    db: AsyncSession = Depends(get_db_session),
) -> Identity:
    identity = await identity_resolver.resolve(RequestCredentials.from_request(request), db)
    request.state.identity_kind = identity.kind
    return identity


async def get_participant_identity(
    identity: Identity = Depends(get_identity),
) -> Union[UserIdentity, DeviceIdentity]:
    """Adopter or anonymous device only."""
    if isinstance(identity, ShelterIdentity):
        raise UnauthorizedError(message="This endpoint is for adopters")
    return identity


async def get_shelter_identity(identity: Identity = Depends(get_identity)) -> ShelterIdentity:
    if not isinstance(identity, ShelterIdentity):
        raise UnauthorizedError(message="Shelter credentials required")
    return identity
