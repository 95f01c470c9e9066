# Storage backends: the in-process database used in development and tests,
# and the MongoDB connection shared by every worker in production.

import logging
import threading
from typing import Dict

from pymongo import ASCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError

from devicelink.core.config import Settings

logger = logging.getLogger(__name__)

PAIRING_SESSIONS = "pairing_sessions"
QR_SESSIONS = "qr_sessions"
USERS = "AuthenticatedUsers"
MOBILE_TOKENS = "mobile_tokens"


class InMemoryDB:
    def __init__(self):
        # One lock for every collection; each mutation touches a single record
        self.lock = threading.Lock()

        # kind -> sessionId -> session document
        self.sessions: Dict[str, Dict[str, dict]] = {"pairing": {}, "qr": {}}

        # user id -> user document
        self.users: Dict[str, dict] = {}

        # sha256(token) -> { "userId": str, "sessionId": str, "issuedAt": int, "revokedAt": int | None }
        self.tokens: Dict[str, dict] = {}


def connect_mongo(settings: Settings) -> Database:
    client = MongoClient(settings.MONGO_URI, serverSelectionTimeoutMS=settings.MONGO_TIMEOUT_MS)
    db = client[settings.MONGO_DB]
    logger.info("Mongo client ready: db=%s", settings.MONGO_DB)
    return db


def ensure_indexes(db: Database) -> None:
    """Idempotent. expiresAt is indexed for the external housekeeping job."""
    try:
        for name in (PAIRING_SESSIONS, QR_SESSIONS):
            db[name].create_index("sessionId", unique=True)
            db[name].create_index([("expiresAt", ASCENDING)])
        db[MOBILE_TOKENS].create_index("tokenHash", unique=True)
        db[MOBILE_TOKENS].create_index("sessionId")
    except PyMongoError as e:
        # Startup continues without indexes when Mongo is unreachable
        logger.warning("Could not ensure indexes: %s", e)
