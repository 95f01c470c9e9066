# QR flow: the requesting device registers a session whose id it shows as a
# code; a phone scans it, optionally signs in through a provider, and approves.

import logging
from typing import Optional
from urllib.parse import urlencode

from devicelink.core.errors import NEW_CODE_HINT, ConflictError, ExpiredError, ValidationError
from devicelink.services.handoff import ApproverIdentity, SessionManager
from devicelink.services.logger import log_event
from devicelink.services.sessions import (
    AUTHENTICATING,
    COMPLETE,
    FAILED,
    PENDING,
    QR,
    SessionRecord,
    SessionStore,
)
from devicelink.services.tokens import TokenIssuer
from devicelink.services.users import UserDirectory
from devicelink.services.validation import require_member, require_text

logger = logging.getLogger(__name__)

DEVICE_INFO_FIELDS = ("brand", "model", "platform")


class QRSessionManager(SessionManager):
    kind = QR
    id_field = "qrSessionId"

    def __init__(
        self,
        store: SessionStore,
        tokens: TokenIssuer,
        users: UserDirectory,
        providers: list[str],
        device_types: list[str],
        poll_interval_ms: int = 2000,
    ):
        super().__init__(store, tokens, users)
        self.providers = list(providers)
        self.device_types = list(device_types)
        self.poll_interval_ms = poll_interval_ms

    def register(self, client_id, device_type, device_info: Optional[dict] = None, host: Optional[str] = None) -> dict:
        client_id = require_text(client_id, "clientId")
        device_type = require_member(require_text(device_type, "deviceType"), self.device_types, "device type")
        if device_info is not None:
            device_info = self._check_device_info(device_info)

        record = self.store.create_qr_session(client_id, device_type, device_info)
        log_event("qr_register", record.session_id, "ok")
        return {
            "qrSessionId": record.session_id,
            "expiresAt": record.expires_at,
            "qrData": {
                "qrSessionId": record.session_id,
                "host": host,
                "deviceType": record.device_type,
            },
            "pollIntervalMs": self.poll_interval_ms,
        }

    @staticmethod
    def _check_device_info(device_info: dict) -> dict:
        # Display-only metadata; it never takes part in an authorization decision
        if not isinstance(device_info, dict) or not all(
            isinstance(device_info.get(k), str) and device_info.get(k) for k in DEVICE_INFO_FIELDS
        ):
            raise ValidationError("Invalid device info structure")
        return {k: device_info[k] for k in DEVICE_INFO_FIELDS}

    def info(self, qr_session_id) -> dict:
        """Unauthenticated view for whoever scanned the code. Never carries tokens."""
        record = self._load(qr_session_id)
        out = {
            "qrSessionId": record.session_id,
            "clientId": record.client_id,
            "deviceType": record.device_type,
            "status": record.view_status(self.now()),
            "expiresAt": record.expires_at,
            "createdAt": record.created_at,
        }
        if record.device_info:
            out["deviceInfo"] = dict(record.device_info)
        return out

    def begin_authenticating(self, qr_session_id, provider, base_url: str) -> dict:
        provider = require_member(require_text(provider, "provider"), self.providers, "authentication provider")
        record = self._load(qr_session_id)
        self._reject_if_expired(record, "qr_begin_auth")
        if record.status != PENDING:
            logger.info("Provider choice rejected: session=%s status=%s", record.session_id, record.status)
            raise ConflictError("QR session is not in pending state", status_code=400)

        # Compare-and-set: a second provider choice racing this one loses here
        self.store.transition_to_authenticating(record.session_id, provider)
        log_event("qr_begin_auth", record.session_id, provider)

        query = urlencode({"qrSessionId": record.session_id})
        return {
            "authUrl": f"{base_url.rstrip('/')}/native-signin/{provider}?{query}",
            "qrSessionId": record.session_id,
            "provider": provider,
            "status": AUTHENTICATING,
        }

    def approve(self, qr_session_id, approver: Optional[ApproverIdentity]) -> dict:
        approver = self._require_approver(approver)
        record = self._load(qr_session_id)
        self._reject_if_expired(record, "qr_approve")

        if record.status == PENDING:
            return self._complete_for(record, approver, (PENDING,))
        if record.status == AUTHENTICATING and approver.provider and approver.provider == record.provider:
            # The approver came back from the provider login this session is waiting on
            return self._complete_for(record, approver, (AUTHENTICATING,), provider=record.provider)
        if self._approved_by(record, approver):
            return {"success": True, "message": "Sign-in was already approved"}
        logger.info(
            "QR approve rejected: session=%s status=%s provider=%s approver_provider=%s",
            record.session_id, record.status, record.provider, approver.provider,
        )
        log_event("qr_approve", record.session_id, f"rejected_{record.status}")
        raise ConflictError("QR session is not in pending state", status_code=400)

    def deny(self, qr_session_id, approver: Optional[ApproverIdentity], reason: Optional[str] = None) -> dict:
        self._require_approver(approver)
        record = self._load(qr_session_id)
        self._reject_if_expired(record, "qr_deny")
        self.store.fail_session(record.session_id, QR, reason or "Sign-in was declined on the approving device")
        log_event("qr_deny", record.session_id, "failed")
        return {"success": True, "message": "TV sign-in declined"}

    def check_status(self, qr_session_id) -> dict:
        record = self._load(qr_session_id)
        status = record.view_status(self.now())
        out = {"qrSessionId": record.session_id, "status": status, "expiresAt": record.expires_at}
        if status == COMPLETE and record.tokens is not None:
            out["tokens"] = record.tokens.to_dict()
        if status == FAILED and record.error:
            out["error"] = record.error
        return out

    def _reject_if_expired(self, record: SessionRecord, event: str) -> None:
        if record.is_expired(self.now()):
            log_event(event, record.session_id, "expired")
            raise ExpiredError(f"QR session expired. {NEW_CODE_HINT}", status_code=400)
