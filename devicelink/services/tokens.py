# Mobile session tokens: minting, resolving back to a live user, revocation.
#
# The token itself is a signed JWT so garbled input is rejected without a
# lookup; whether it is still usable is decided by its registry entry.

import logging
from abc import ABC, abstractmethod
from dataclasses import asdict
from typing import Callable, Optional

from pymongo.database import Database
from pymongo.errors import PyMongoError

from devicelink.core.config import Settings
from devicelink.core.errors import UpstreamError
from devicelink.core.security import create_mobile_token, decode_mobile_token, hash_token
from devicelink.db import MOBILE_TOKENS, InMemoryDB
from devicelink.services.logger import log_event
from devicelink.services.sessions import TokenPayload, UserSnapshot
from devicelink.services.users import User, UserDirectory
from devicelink.services.validation import now_ms

logger = logging.getLogger(__name__)


class TokenRegistry(ABC):
    @abstractmethod
    def record(self, token_hash: str, user_id: str, session_id: str, issued_at: int) -> None:
        ...

    @abstractmethod
    def find(self, token_hash: str) -> Optional[dict]:
        ...

    @abstractmethod
    def revoke(self, token_hash: str, revoked_at: int, reason: str) -> bool:
        """Returns True if an active binding was revoked."""


class InMemoryTokenRegistry(TokenRegistry):
    def __init__(self, db: InMemoryDB):
        self.db = db

    def record(self, token_hash, user_id, session_id, issued_at):
        with self.db.lock:
            self.db.tokens[token_hash] = {
                "tokenHash": token_hash,
                "userId": user_id,
                "sessionId": session_id,
                "issuedAt": issued_at,
                "revokedAt": None,
                "revokedReason": None,
            }

    def find(self, token_hash):
        with self.db.lock:
            doc = self.db.tokens.get(token_hash)
            return dict(doc) if doc else None

    def revoke(self, token_hash, revoked_at, reason):
        with self.db.lock:
            doc = self.db.tokens.get(token_hash)
            if not doc or doc["revokedAt"] is not None:
                return False
            doc["revokedAt"] = revoked_at
            doc["revokedReason"] = reason
            return True


class MongoTokenRegistry(TokenRegistry):
    def __init__(self, db: Database):
        self.collection = db[MOBILE_TOKENS]

    def record(self, token_hash, user_id, session_id, issued_at):
        try:
            self.collection.insert_one({
                "tokenHash": token_hash,
                "userId": user_id,
                "sessionId": session_id,
                "issuedAt": issued_at,
                "revokedAt": None,
                "revokedReason": None,
            })
        except PyMongoError as e:
            logger.error("Token record failed: session=%s error=%s", session_id, e)
            raise UpstreamError("Token registry unavailable")

    def find(self, token_hash):
        try:
            return self.collection.find_one({"tokenHash": token_hash}, {"_id": 0})
        except PyMongoError as e:
            logger.error("Token lookup failed: %s", e)
            raise UpstreamError("Token registry unavailable")

    def revoke(self, token_hash, revoked_at, reason):
        try:
            res = self.collection.update_one(
                {"tokenHash": token_hash, "revokedAt": None},
                {"$set": {"revokedAt": revoked_at, "revokedReason": reason}},
            )
        except PyMongoError as e:
            logger.error("Token revoke failed: %s", e)
            raise UpstreamError("Token registry unavailable")
        return res.modified_count == 1


def snapshot_user(user: User) -> UserSnapshot:
    # Value copy: later changes to the directory never leak into stored payloads
    return UserSnapshot(**asdict(user))


class TokenIssuer:
    def __init__(
        self,
        settings: Settings,
        registry: TokenRegistry,
        users: UserDirectory,
        clock: Callable[[], int] = now_ms,
    ):
        self.settings = settings
        self.registry = registry
        self.users = users
        self.clock = clock

    def mint(self, user_id: str, session_scope_id: str) -> str:
        token = create_mobile_token(self.settings, user_id, session_scope_id)
        self.registry.record(hash_token(token), user_id, session_scope_id, self.clock())
        log_event("token_minted", session_scope_id, "ok")
        return token

    def issue_payload(self, user: User, session_scope_id: str) -> TokenPayload:
        """Mints a token for user and wraps it with an immutable user snapshot."""
        token = self.mint(user.id, session_scope_id)
        return TokenPayload(
            mobile_session_token=token,
            session_id=session_scope_id,
            issued_at=self.clock(),
            user=snapshot_user(user),
        )

    def resolve(self, token: str) -> Optional[User]:
        if not token:
            return None
        claims = decode_mobile_token(self.settings, token)
        if claims is None:
            return None
        binding = self.registry.find(hash_token(token))
        if binding is None:
            return None
        if binding.get("revokedAt") is not None:
            log_event("token_resolve", binding["sessionId"], "revoked")
            return None
        if binding["userId"] != claims["userId"]:
            logger.warning("Token binding mismatch: session=%s", binding.get("sessionId"))
            return None
        return self.users.get_user(binding["userId"])

    def revoke(self, token: str, reason: str = "sign-out") -> bool:
        binding = self.registry.find(hash_token(token)) if token else None
        revoked = self.registry.revoke(hash_token(token), self.clock(), reason) if binding else False
        log_event("token_revoked", binding["sessionId"] if binding else "-", "ok" if revoked else "noop")
        return revoked
