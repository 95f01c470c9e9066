# Pairing flow: the requesting device registers and polls, the approving
# device completes the session once its user is signed in.

import logging
from typing import Optional

from devicelink.core.errors import NEW_CODE_HINT, ConflictError, ExpiredError
from devicelink.services.handoff import ApproverIdentity, SessionManager
from devicelink.services.logger import log_event
from devicelink.services.sessions import COMPLETE, EXPIRED, FAILED, PAIRING, PENDING, SessionStore
from devicelink.services.tokens import TokenIssuer
from devicelink.services.users import UserDirectory
from devicelink.services.validation import require_text

logger = logging.getLogger(__name__)


class PairingSessionManager(SessionManager):
    kind = PAIRING
    id_field = "sessionId"

    def __init__(self, store: SessionStore, tokens: TokenIssuer, users: UserDirectory, poll_interval_ms: int = 2000):
        super().__init__(store, tokens, users)
        self.poll_interval_ms = poll_interval_ms

    def register(self, client_id) -> dict:
        record = self.store.create_pairing_session(client_id)
        log_event("pairing_register", record.session_id, "ok")
        return {
            "sessionId": record.session_id,
            "expiresAt": record.expires_at,
            "pollIntervalMs": self.poll_interval_ms,
        }

    def check_status(self, session_id) -> dict:
        session_id = require_text(session_id, "sessionId")
        record = self.store.get_session(session_id, PAIRING)
        if record is None:
            # The record may simply not be visible yet; keep the device polling
            return {"status": PENDING}

        status = record.view_status(self.now())
        if status == EXPIRED:
            return {"status": EXPIRED}
        if status == COMPLETE and record.tokens is not None:
            return {"status": COMPLETE, "tokens": record.tokens.to_dict()}
        if status == FAILED:
            return {"status": FAILED, "error": record.error}
        return {"status": PENDING}

    def approve(self, session_id, approver: Optional[ApproverIdentity]) -> dict:
        approver = self._require_approver(approver)
        record = self._load(session_id)
        if record.is_expired(self.now()):
            log_event("pairing_approve", record.session_id, "expired")
            raise ExpiredError(f"Session expired. {NEW_CODE_HINT}", status_code=400)
        if record.status != PENDING:
            if self._approved_by(record, approver):
                return {"success": True, "message": "Sign-in was already approved"}
            logger.info("Pairing approve rejected: session=%s status=%s", record.session_id, record.status)
            raise ConflictError("Session is not in pending state", status_code=400)
        return self._complete_for(record, approver, (PENDING,))
