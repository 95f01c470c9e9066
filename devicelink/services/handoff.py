# Behaviour shared by the pairing and QR managers: loading a session for a
# kind, completing it on behalf of an approving device, and token refresh.

import logging
import time
from dataclasses import dataclass
from typing import Optional

from devicelink.core.errors import (
    NEW_CODE_HINT,
    AuthorizationError,
    ConflictError,
    DeviceLinkError,
    ExpiredError,
    NotFoundError,
)
from devicelink.services.logger import log_event
from devicelink.services.sessions import COMPLETE, SessionRecord, SessionStore
from devicelink.services.tokens import TokenIssuer
from devicelink.services.users import User, UserDirectory
from devicelink.services.validation import require_text

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApproverIdentity:
    """The signed-in user on the approving device and how they signed in."""
    user: User
    provider: Optional[str] = None


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


class SessionManager:
    kind: str = ""
    id_field: str = "sessionId"

    def __init__(self, store: SessionStore, tokens: TokenIssuer, users: UserDirectory):
        self.store = store
        self.tokens = tokens
        self.users = users

    def now(self) -> int:
        return self.store.clock()

    def _load(self, session_id) -> SessionRecord:
        session_id = require_text(session_id, self.id_field)
        record = self.store.get_session(session_id, self.kind)
        if record is None:
            raise NotFoundError(f"Session not found. {NEW_CODE_HINT}")
        return record

    def _complete_for(
        self,
        record: SessionRecord,
        approver: Optional[ApproverIdentity],
        from_statuses: tuple,
        provider: Optional[str] = None,
    ) -> dict:
        start = time.perf_counter()
        payload = self.tokens.issue_payload(approver.user, record.session_id)
        try:
            self.store.complete_session(record.session_id, self.kind, payload, from_statuses, provider)
        except ConflictError:
            # The losing attempt's token must never become usable
            self.tokens.revoke(payload.mobile_session_token, reason="lost-race")
            current = self.store.get_session(record.session_id, self.kind)
            if current is not None and self._approved_by(current, approver):
                log_event(f"{self.kind}_approve", record.session_id, "duplicate", _elapsed_ms(start))
                return {"success": True, "message": "Sign-in was already approved"}
            logger.warning("Approve lost the race: kind=%s session=%s", self.kind, record.session_id)
            log_event(f"{self.kind}_approve", record.session_id, "conflict", _elapsed_ms(start))
            raise
        log_event(f"{self.kind}_approve", record.session_id, "complete", _elapsed_ms(start))
        return {"success": True, "message": "TV sign-in approved successfully"}

    @staticmethod
    def _approved_by(record: SessionRecord, approver: ApproverIdentity) -> bool:
        return (
            record.status == COMPLETE
            and record.tokens is not None
            and record.tokens.user.id == approver.user.id
        )

    def _require_approver(self, approver: Optional[ApproverIdentity]) -> ApproverIdentity:
        if approver is None or approver.user is None:
            raise AuthorizationError("User not authenticated")
        return approver

    def refresh(self, client_id, session_id) -> dict:
        """Rotates the session's mobile token using live user data.

        The stored payload keeps the sessionId it was minted with; the token it
        replaces is revoked so only the newest one resolves.
        """
        start = time.perf_counter()
        client_id = require_text(client_id, "clientId")
        record = self._load(session_id)

        if record.is_expired(self.now()):
            log_event(f"{self.kind}_refresh", record.session_id, "expired", _elapsed_ms(start))
            raise ExpiredError(f"Session expired. {NEW_CODE_HINT}")
        if record.status != COMPLETE or record.tokens is None:
            raise AuthorizationError("Session not authenticated")
        if record.client_id != client_id:
            log_event(f"{self.kind}_refresh", record.session_id, "client_mismatch", _elapsed_ms(start))
            raise AuthorizationError("Invalid client ID", status_code=403)

        user = self.users.get_user(record.tokens.user.id)
        if user is None:
            raise NotFoundError("User not found")

        previous = record.tokens.mobile_session_token
        payload = self.tokens.issue_payload(user, record.tokens.session_id)
        try:
            self.store.replace_tokens(record.session_id, self.kind, payload, current_token=previous)
        except DeviceLinkError:
            self.tokens.revoke(payload.mobile_session_token, reason="lost-race")
            raise
        self.tokens.revoke(previous, reason="rotated")

        log_event(f"{self.kind}_refresh", record.session_id, "ok", _elapsed_ms(start))
        return {
            "success": True,
            "mobileSessionToken": payload.mobile_session_token,
            "user": user.to_dict(),
        }
