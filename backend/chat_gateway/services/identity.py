import hashlib
import secrets
import uuid
from dataclasses import dataclass
from typing import Optional, Tuple

from cachetools import TTLCache
from sqlmodel import Session

from chat_gateway import crud
from chat_gateway.core.config import settings
from chat_gateway.models import User

TIERS = ("guest", "regular")


@dataclass(frozen=True)
class Identity:
    user_id: uuid.UUID
    tier: str


# Identities are looked up on every request; keys are revoked by deleting the user
_identity_cache: TTLCache = TTLCache(maxsize=10_000, ttl=settings.IDENTITY_CACHE_TTL_SECONDS)


def hash_api_key(api_key: str) -> str:
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()


def resolve_identity(session: Session, api_key: Optional[str]) -> Optional[Identity]:
    if not api_key:
        return None
    key_hash = hash_api_key(api_key)
    cached = _identity_cache.get(key_hash)
    if cached is not None:
        return cached
    user = crud.get_user_by_api_key_hash(session=session, api_key_hash=key_hash)
    if user is None:
        return None
    identity = Identity(user_id=user.id, tier=user.tier)
    _identity_cache[key_hash] = identity
    return identity


def provision_user(session: Session, tier: str = "guest") -> Tuple[User, str]:
    """Create a user and return it with its one-time plaintext API key"""
    if tier not in TIERS:
        raise ValueError(f"Unknown tier: {tier}")
    api_key = secrets.token_urlsafe(32)
    user = crud.create_user(session=session, api_key_hash=hash_api_key(api_key), tier=tier)
    return user, api_key


def clear_identity_cache() -> None:
    _identity_cache.clear()
