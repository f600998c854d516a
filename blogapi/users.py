"""Credential store: the ``users`` collection and every write made to it.

Passwords are hashed here, on the way in, so plaintext never reaches the
database. Each method is a single-document read or write; consistency relies
on MongoDB's atomic single-document updates rather than transactions.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from bson import ObjectId
from fastapi.concurrency import run_in_threadpool
from pymongo.asynchronous.collection import AsyncCollection
from pymongo.errors import DuplicateKeyError

from .errors import DuplicateEmail
from .models import User, norm_email, object_id
from .security import PasswordHasher


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


class UserStore:
    def __init__(self, collection: AsyncCollection, hasher: PasswordHasher):
        self.collection = collection
        self.hasher = hasher

    async def _hash(self, password: str) -> str:
        # argon2 is CPU-bound; keep it off the event loop
        return await run_in_threadpool(self.hasher.hash, password)

    async def _find(self, query: Dict[str, Any]) -> Optional[User]:
        doc = await self.collection.find_one(query)
        return User.from_doc(doc) if doc else None

    async def _set(self, user_id: str, fields: Dict[str, Any], query: Optional[Dict[str, Any]] = None) -> bool:
        oid = object_id(user_id)
        if oid is None:
            return False
        fields["updated_at"] = _now()
        result = await self.collection.update_one({"_id": oid, **(query or {})}, {"$set": fields})
        return result.matched_count == 1

    async def get(self, user_id: str) -> Optional[User]:
        oid = object_id(user_id)
        if oid is None:
            return None
        return await self._find({"_id": oid})

    async def get_by_email(self, email: str) -> Optional[User]:
        return await self._find({"email_norm": norm_email(email)})

    async def get_by_verification_token(self, token: str) -> Optional[User]:
        return await self._find({"verification_token": token})

    async def get_by_reset_token(self, token: str) -> Optional[User]:
        return await self._find({"forget_password_token": token})

    async def email_exists(self, email: str) -> bool:
        doc = await self.collection.find_one({"email_norm": norm_email(email)}, {"_id": 1})
        return doc is not None

    async def create(
        self,
        name: str,
        email: str,
        password: str,
        *,
        user_id: Optional[str] = None,
        verification_token: Optional[str] = None,
    ) -> User:
        now = _now()
        doc = {
            "_id": ObjectId(user_id) if user_id else ObjectId(),
            "name": name,
            "email": email,
            "email_norm": norm_email(email),
            "password_hash": await self._hash(password),
            "verified": False,
            "verification_token": verification_token,
            "forget_password_token": None,
            "refresh_token": None,
            "created_at": now,
            "updated_at": now,
        }
        try:
            await self.collection.insert_one(doc)
        except DuplicateKeyError:
            raise DuplicateEmail(context={"email": email})
        return User.from_doc(doc)

    async def set_password(self, user_id: str, password: str) -> bool:
        return await self._set(user_id, {"password_hash": await self._hash(password)})

    async def set_verification_token(self, user_id: str, token: Optional[str]) -> bool:
        return await self._set(user_id, {"verification_token": token})

    async def mark_verified(self, user_id: str, token: str) -> bool:
        """Consume ``token``; false when another request already consumed it."""
        return await self._set(
            user_id,
            {"verified": True, "verification_token": None},
            {"verification_token": token},
        )

    async def set_reset_token(self, user_id: str, token: Optional[str]) -> bool:
        return await self._set(user_id, {"forget_password_token": token})

    async def reset_password(self, user_id: str, token: str, password: str) -> bool:
        """Consume the reset ``token`` and replace the password in one write.

        Live sessions are revoked along with it.
        """
        return await self._set(
            user_id,
            {
                "password_hash": await self._hash(password),
                "forget_password_token": None,
                "refresh_token": None,
            },
            {"forget_password_token": token},
        )

    async def set_refresh_token(self, user_id: str, token: Optional[str]) -> bool:
        return await self._set(user_id, {"refresh_token": token})

    async def swap_refresh_token(self, user_id: str, expected: str, token: str) -> bool:
        """Compare-and-set on the stored refresh token."""
        return await self._set(user_id, {"refresh_token": token}, {"refresh_token": expected})
