# Session records and the store that owns their state transitions.
#
# Every mutation is a compare-and-set on the stored status of a single
# record, so racing approvals or provider choices resolve to exactly one
# winner. Expiry is never written; readers compute it from expiresAt.

import copy
import logging
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Optional

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError
from pymongo import ReturnDocument

from devicelink.core.errors import ConflictError, NotFoundError, UpstreamError, ValidationError
from devicelink.db import PAIRING_SESSIONS, QR_SESSIONS, InMemoryDB
from devicelink.services.validation import is_expired, now_ms, require_text

logger = logging.getLogger(__name__)

PAIRING = "pairing"
QR = "qr"
KINDS = (PAIRING, QR)

PENDING = "pending"
AUTHENTICATING = "authenticating"
COMPLETE = "complete"
FAILED = "failed"
# Never stored; reported by readers once expiresAt has passed
EXPIRED = "expired"

ALLOWED_TRANSITIONS = {
    PENDING: {AUTHENTICATING, COMPLETE, FAILED},
    AUTHENTICATING: {COMPLETE, FAILED},
    COMPLETE: set(),
    FAILED: set(),
}


@dataclass(frozen=True)
class UserSnapshot:
    """Authorization-relevant user fields copied at mint time."""
    id: str
    email: str = ""
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

    @classmethod
    def from_dict(cls, doc: dict) -> "UserSnapshot":
        return cls(
            id=str(doc["id"]),
            email=doc.get("email") or "",
            name=doc.get("name") or "",
            image=doc.get("image") or "",
            approved=bool(doc.get("approved")),
            limited_access=bool(doc.get("limitedAccess")),
            admin=bool(doc.get("admin")),
        )


@dataclass(frozen=True)
class TokenPayload:
    mobile_session_token: str
    session_id: str
    issued_at: int
    user: UserSnapshot

    def to_dict(self) -> dict:
        return {
            "mobileSessionToken": self.mobile_session_token,
            "sessionId": self.session_id,
            "issuedAt": self.issued_at,
            "user": self.user.to_dict(),
        }

    @classmethod
    def from_dict(cls, doc: dict) -> "TokenPayload":
        return cls(
            mobile_session_token=doc["mobileSessionToken"],
            session_id=doc["sessionId"],
            issued_at=int(doc.get("issuedAt") or 0),
            user=UserSnapshot.from_dict(doc["user"]),
        )


@dataclass
class SessionRecord:
    session_id: str
    kind: str
    client_id: str
    status: str
    created_at: int
    expires_at: int
    device_type: Optional[str] = None
    device_info: Optional[dict] = None
    provider: Optional[str] = None
    tokens: Optional[TokenPayload] = None
    error: Optional[str] = None
    updated_at: Optional[int] = None

    def is_expired(self, now: int) -> bool:
        return is_expired(self.expires_at, now)

    def view_status(self, now: int) -> str:
        return EXPIRED if self.is_expired(now) else self.status

    def to_doc(self) -> dict:
        return {
            "sessionId": self.session_id,
            "kind": self.kind,
            "clientId": self.client_id,
            "status": self.status,
            "deviceType": self.device_type,
            "deviceInfo": dict(self.device_info) if self.device_info else None,
            "provider": self.provider,
            "createdAt": self.created_at,
            "expiresAt": self.expires_at,
            "tokens": self.tokens.to_dict() if self.tokens else None,
            "error": self.error,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_doc(cls, doc: dict) -> "SessionRecord":
        tokens = doc.get("tokens")
        return cls(
            session_id=doc["sessionId"],
            kind=doc["kind"],
            client_id=doc["clientId"],
            status=doc["status"],
            created_at=int(doc["createdAt"]),
            expires_at=int(doc["expiresAt"]),
            device_type=doc.get("deviceType"),
            device_info=dict(doc["deviceInfo"]) if doc.get("deviceInfo") else None,
            provider=doc.get("provider"),
            tokens=TokenPayload.from_dict(tokens) if tokens else None,
            error=doc.get("error"),
            updated_at=doc.get("updatedAt"),
        )


def new_session_id() -> str:
    # 24 URL-safe characters, 144 bits of entropy
    return secrets.token_urlsafe(18)


def _check_kind(kind: str) -> str:
    if kind not in KINDS:
        raise ValidationError(f"Unknown session kind: {kind}")
    return kind


class SessionStore(ABC):
    """Durable storage and atomic state transitions for session records."""

    def __init__(self, pairing_ttl_ms: int, qr_ttl_ms: int, clock: Callable[[], int] = now_ms):
        self.pairing_ttl_ms = pairing_ttl_ms
        self.qr_ttl_ms = qr_ttl_ms
        self.clock = clock

    # -- backend primitives -------------------------------------------------

    @abstractmethod
    def _insert(self, doc: dict) -> bool:
        """Stores a new document. Returns False if the sessionId is taken."""

    @abstractmethod
    def _find(self, kind: str, session_id: str) -> Optional[dict]:
        ...

    @abstractmethod
    def _compare_and_set(
        self,
        kind: str,
        session_id: str,
        from_statuses: tuple,
        updates: dict,
        provider: Optional[str] = None,
        unexpired_at: Optional[int] = None,
        current_token: Optional[str] = None,
    ) -> bool:
        """Applies updates only if the stored status is in from_statuses and,
        when given, provider, expiresAt >= unexpired_at and the current token match."""

    # -- operations ---------------------------------------------------------

    def create_pairing_session(self, client_id: str) -> SessionRecord:
        return self._create(PAIRING, client_id, self.pairing_ttl_ms)

    def create_qr_session(self, client_id: str, device_type: str, device_info: Optional[dict] = None) -> SessionRecord:
        device_type = require_text(device_type, "deviceType")
        return self._create(QR, client_id, self.qr_ttl_ms, device_type=device_type, device_info=device_info)

    def get_session(self, session_id: str, kind: str) -> Optional[SessionRecord]:
        _check_kind(kind)
        if not session_id:
            return None
        doc = self._find(kind, session_id)
        return SessionRecord.from_doc(doc) if doc else None

    def transition_to_authenticating(self, session_id: str, provider: str) -> SessionRecord:
        provider = require_text(provider, "provider")
        now = self.clock()
        ok = self._compare_and_set(
            QR, session_id, (PENDING,),
            {"status": AUTHENTICATING, "provider": provider, "updatedAt": now},
            unexpired_at=now,
        )
        if not ok:
            self._raise_for(QR, session_id, f"choose provider {provider}")
        logger.info("Session authenticating: session=%s provider=%s", session_id, provider)
        return self.get_session(session_id, QR)

    def complete_session(
        self,
        session_id: str,
        kind: str,
        token_payload: TokenPayload,
        from_statuses: tuple = (PENDING, AUTHENTICATING),
        provider: Optional[str] = None,
    ) -> SessionRecord:
        _check_kind(kind)
        if not all(COMPLETE in ALLOWED_TRANSITIONS[s] for s in from_statuses):
            raise ValueError(f"Cannot complete from {from_statuses}")
        ok = self._compare_and_set(
            kind, session_id, tuple(from_statuses),
            {"status": COMPLETE, "tokens": token_payload.to_dict(), "updatedAt": self.clock()},
            provider=provider,
            unexpired_at=self.clock(),
        )
        if not ok:
            self._raise_for(kind, session_id, "complete")
        logger.info("Session complete: kind=%s session=%s user=%s", kind, session_id, token_payload.user.id)
        return self.get_session(session_id, kind)

    def fail_session(self, session_id: str, kind: str, error_message: str) -> SessionRecord:
        _check_kind(kind)
        ok = self._compare_and_set(
            kind, session_id, (PENDING, AUTHENTICATING),
            {"status": FAILED, "error": error_message or "Authentication failed", "updatedAt": self.clock()},
            unexpired_at=self.clock(),
        )
        if not ok:
            self._raise_for(kind, session_id, "fail")
        logger.info("Session failed: kind=%s session=%s", kind, session_id)
        return self.get_session(session_id, kind)

    def replace_tokens(
        self,
        session_id: str,
        kind: str,
        new_payload: TokenPayload,
        current_token: Optional[str] = None,
    ) -> SessionRecord:
        """Swaps the token of a complete session. With current_token, only if it is
        still the stored one, so two racing refreshes cannot both win."""
        _check_kind(kind)
        ok = self._compare_and_set(
            kind, session_id, (COMPLETE,),
            {"tokens": new_payload.to_dict(), "updatedAt": self.clock()},
            current_token=current_token,
        )
        if not ok:
            self._raise_for(kind, session_id, "refresh")
        return self.get_session(session_id, kind)

    # -- helpers ------------------------------------------------------------

    def _create(self, kind: str, client_id: str, ttl_ms: int, **extra) -> SessionRecord:
        client_id = require_text(client_id, "clientId")
        now = self.clock()
        for _ in range(3):
            record = SessionRecord(
                session_id=new_session_id(),
                kind=kind,
                client_id=client_id,
                status=PENDING,
                created_at=now,
                expires_at=now + ttl_ms,
                **extra,
            )
            if self._insert(record.to_doc()):
                logger.info("Session created: kind=%s session=%s client=%s", kind, record.session_id, client_id)
                return record
        raise UpstreamError("Could not allocate a unique session id")

    def _raise_for(self, kind: str, session_id: str, action: str):
        doc = self._find(kind, session_id) if session_id else None
        if doc is None:
            raise NotFoundError("Session not found")
        record = SessionRecord.from_doc(doc)
        status = record.view_status(self.clock())
        logger.warning("Rejected %s: kind=%s session=%s status=%s", action, kind, session_id, status)
        raise ConflictError(f"Cannot {action}: session is {status}")


class InMemorySessionStore(SessionStore):
    def __init__(self, db: InMemoryDB, pairing_ttl_ms: int, qr_ttl_ms: int, clock: Callable[[], int] = now_ms):
        super().__init__(pairing_ttl_ms, qr_ttl_ms, clock)
        self.db = db

    def _insert(self, doc: dict) -> bool:
        with self.db.lock:
            collection = self.db.sessions[doc["kind"]]
            if doc["sessionId"] in collection:
                return False
            collection[doc["sessionId"]] = doc
            return True

    def _find(self, kind: str, session_id: str) -> Optional[dict]:
        with self.db.lock:
            doc = self.db.sessions[kind].get(session_id)
            # Copy so callers never alias the stored document
            return copy.deepcopy(doc) if doc else None

    def _compare_and_set(
        self, kind, session_id, from_statuses, updates, provider=None, unexpired_at=None, current_token=None,
    ) -> bool:
        with self.db.lock:
            doc = self.db.sessions[kind].get(session_id)
            if doc is None or doc["status"] not in from_statuses:
                return False
            if provider is not None and doc.get("provider") != provider:
                return False
            if unexpired_at is not None and doc["expiresAt"] < unexpired_at:
                return False
            if current_token is not None and (doc.get("tokens") or {}).get("mobileSessionToken") != current_token:
                return False
            doc.update(copy.deepcopy(updates))
            return True


class MongoSessionStore(SessionStore):
    def __init__(self, db: Database, pairing_ttl_ms: int, qr_ttl_ms: int, clock: Callable[[], int] = now_ms):
        super().__init__(pairing_ttl_ms, qr_ttl_ms, clock)
        self.collections = {PAIRING: db[PAIRING_SESSIONS], QR: db[QR_SESSIONS]}

    def _insert(self, doc: dict) -> bool:
        try:
            self.collections[doc["kind"]].insert_one(dict(doc))
            return True
        except DuplicateKeyError:
            return False
        except PyMongoError as e:
            logger.error("Session insert failed: %s", e)
            raise UpstreamError("Session store unavailable")

    def _find(self, kind: str, session_id: str) -> Optional[dict]:
        try:
            return self.collections[kind].find_one({"sessionId": session_id}, {"_id": 0})
        except PyMongoError as e:
            logger.error("Session read failed: session=%s error=%s", session_id, e)
            raise UpstreamError("Session store unavailable")

    def _compare_and_set(
        self, kind, session_id, from_statuses, updates, provider=None, unexpired_at=None, current_token=None,
    ) -> bool:
        query = {"sessionId": session_id, "status": {"$in": list(from_statuses)}}
        if provider is not None:
            query["provider"] = provider
        if unexpired_at is not None:
            query["expiresAt"] = {"$gte": unexpired_at}
        if current_token is not None:
            query["tokens.mobileSessionToken"] = current_token
        try:
            doc = self.collections[kind].find_one_and_update(
                query, {"$set": updates}, projection={"_id": 0}, return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as e:
            logger.error("Session update failed: session=%s error=%s", session_id, e)
            raise UpstreamError("Session store unavailable")
        return doc is not None

