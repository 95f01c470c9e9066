# Wires the store, directory, token issuer and managers for one app instance.

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from devicelink.core.config import Settings
from devicelink.db import InMemoryDB, connect_mongo, ensure_indexes
from devicelink.services.pairing_service import PairingSessionManager
from devicelink.services.qr_service import QRSessionManager
from devicelink.services.sessions import InMemorySessionStore, MongoSessionStore, SessionStore
from devicelink.services.tokens import InMemoryTokenRegistry, MongoTokenRegistry, TokenIssuer
from devicelink.services.users import InMemoryUserDirectory, MongoUserDirectory, UserDirectory
from devicelink.services.validation import now_ms

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    store: SessionStore
    users: UserDirectory
    tokens: TokenIssuer
    pairing: PairingSessionManager
    qr: QRSessionManager


def build_services(settings: Settings, clock: Optional[Callable[[], int]] = None) -> Services:
    clock = clock or now_ms

    if settings.STORE_BACKEND == "mongo":
        db = connect_mongo(settings)
        ensure_indexes(db)
        store = MongoSessionStore(db, settings.pairing_ttl_ms, settings.qr_ttl_ms, clock)
        users = MongoUserDirectory(db, settings.ADMIN_USER_EMAILS)
        registry = MongoTokenRegistry(db)
    elif settings.STORE_BACKEND == "memory":
        db = InMemoryDB()
        store = InMemorySessionStore(db, settings.pairing_ttl_ms, settings.qr_ttl_ms, clock)
        users = InMemoryUserDirectory(db, settings.ADMIN_USER_EMAILS)
        registry = InMemoryTokenRegistry(db)
    else:
        raise ValueError(f"Unknown STORE_BACKEND: {settings.STORE_BACKEND}")

    tokens = TokenIssuer(settings, registry, users, clock)
    logger.info("Services ready: backend=%s", settings.STORE_BACKEND)
    return Services(
        settings=settings,
        store=store,
        users=users,
        tokens=tokens,
        pairing=PairingSessionManager(store, tokens, users, settings.POLL_MIN_INTERVAL_MS),
        qr=QRSessionManager(
            store,
            tokens,
            users,
            providers=settings.QR_PROVIDERS,
            device_types=settings.QR_DEVICE_TYPES,
            poll_interval_ms=settings.POLL_MIN_INTERVAL_MS,
        ),
    )
