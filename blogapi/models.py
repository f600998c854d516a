from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from bson import ObjectId

from .schemas import UserOut


def norm_email(e: str) -> str:
    return e.strip().lower()


@dataclass
class User:
    """A stored user document. Secret fields never leave through ``public()``."""

    id: str
    name: str
    email: str
    password_hash: str
    verified: bool = False
    verification_token: Optional[str] = None
    forget_password_token: Optional[str] = None
    refresh_token: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> "User":
        return cls(
            id=str(doc["_id"]),
            name=doc.get("name", ""),
            email=doc["email"],
            password_hash=doc["password_hash"],
            verified=bool(doc.get("verified", False)),
            verification_token=doc.get("verification_token"),
            forget_password_token=doc.get("forget_password_token"),
            refresh_token=doc.get("refresh_token"),
            created_at=doc.get("created_at"),
            updated_at=doc.get("updated_at"),
        )

    def public(self) -> UserOut:
        return UserOut(id=self.id, name=self.name, email=self.email, verified=self.verified)


def object_id(user_id: str) -> Optional[ObjectId]:
    return ObjectId(user_id) if ObjectId.is_valid(user_id) else None
