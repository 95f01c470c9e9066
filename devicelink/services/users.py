# Read-only adapter over the canonical user records owned by the
# federated-login side of the application.

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo.database import Database
from pymongo.errors import PyMongoError

from devicelink.core.errors import UpstreamError
from devicelink.db import USERS, InMemoryDB

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class User:
    id: str
    email: str
    name: str = ""
    image: str = ""
    approved: bool = False
    limited_access: bool = False
    admin: bool = False

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "image": self.image,
            "approved": self.approved,
            "limitedAccess": self.limited_access,
            "admin": self.admin,
        }


class UserDirectory(ABC):
    def __init__(self, admin_emails: list[str] | None = None):
        self.admin_emails = {e.lower() for e in (admin_emails or [])}

    @abstractmethod
    def _load(self, user_id: str) -> Optional[dict]:
        ...

    def get_user(self, user_id: str) -> Optional[User]:
        if not user_id:
            return None
        doc = self._load(user_id)
        if not doc:
            return None
        return self._to_user(user_id, doc)

    def _to_user(self, user_id: str, doc: dict) -> User:
        email = doc.get("email") or ""
        # Admins are approved by definition, whatever the stored flag says
        is_admin = email.lower() in self.admin_emails
        return User(
            id=user_id,
            email=email,
            name=doc.get("name") or "",
            image=doc.get("image") or "",
            approved=True if is_admin else bool(doc.get("approved")),
            limited_access=bool(doc.get("limitedAccess")),
            admin=is_admin,
        )


class InMemoryUserDirectory(UserDirectory):
    def __init__(self, db: InMemoryDB, admin_emails: list[str] | None = None):
        super().__init__(admin_emails)
        self.db = db

    def add_user(self, user_id: str, email: str, **fields) -> None:
        with self.db.lock:
            self.db.users[user_id] = {"email": email, **fields}

    def update_user(self, user_id: str, **fields) -> None:
        with self.db.lock:
            self.db.users[user_id].update(fields)

    def remove_user(self, user_id: str) -> None:
        with self.db.lock:
            self.db.users.pop(user_id, None)

    def _load(self, user_id: str) -> Optional[dict]:
        with self.db.lock:
            doc = self.db.users.get(user_id)
            return dict(doc) if doc else None


class MongoUserDirectory(UserDirectory):
    def __init__(self, db: Database, admin_emails: list[str] | None = None):
        super().__init__(admin_emails)
        self.collection = db[USERS]

    def _load(self, user_id: str) -> Optional[dict]:
        try:
            oid = ObjectId(user_id)
        except (InvalidId, TypeError):
            return None
        try:
            return self.collection.find_one(
                {"_id": oid},
                {"email": 1, "name": 1, "image": 1, "approved": 1, "limitedAccess": 1},
            )
        except PyMongoError as e:
            logger.error("User lookup failed: user=%s error=%s", user_id, e)
            raise UpstreamError("User directory unavailable")
