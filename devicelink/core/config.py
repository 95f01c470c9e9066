# Centralised application configuration
# (environment variables, secrets, session lifetimes, allow-lists).

import os


def _csv(name: str, default: str) -> list[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


class Settings:
    def __init__(self):
        self.APP_NAME = os.getenv("APP_NAME", "Device Link")
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

        # Storage: "memory" keeps everything in-process, "mongo" shares it across workers
        self.STORE_BACKEND = os.getenv("STORE_BACKEND", "memory").lower()
        self.MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017")
        self.MONGO_DB = os.getenv("MONGO_DB", "Users")
        self.MONGO_TIMEOUT_MS = int(os.getenv("MONGO_TIMEOUT_MS", "5000"))

        # Mobile session tokens are signed with their own secret, never the web one
        self.MOBILE_JWT_SECRET = os.getenv("MOBILE_JWT_SECRET", "dev-mobile-secret-change-me-in-production")
        self.JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

        # Web session issued to the approving device by the federated login
        self.WEB_SESSION_SECRET = os.getenv("WEB_SESSION_SECRET", "dev-web-session-secret-change-me-in-prod")
        self.WEB_SESSION_ISSUER = os.getenv("WEB_SESSION_ISSUER", "devicelink-web")
        self.WEB_SESSION_AUDIENCE = os.getenv("WEB_SESSION_AUDIENCE", "devicelink-approver")

        self.PAIRING_SESSION_TTL_SECONDS = int(os.getenv("PAIRING_SESSION_TTL_SECONDS", "300"))  # 5 Minutes
        self.QR_SESSION_TTL_SECONDS = int(os.getenv("QR_SESSION_TTL_SECONDS", "300"))
        self.POLL_MIN_INTERVAL_MS = int(os.getenv("POLL_MIN_INTERVAL_MS", "2000"))

        self.QR_PROVIDERS = _csv("QR_PROVIDERS", "google,discord")
        self.QR_DEVICE_TYPES = _csv("QR_DEVICE_TYPES", "tv,androidtv,mobile,tablet,desktop")
        self.ADMIN_USER_EMAILS = [e.lower() for e in _csv("ADMIN_USER_EMAILS", "")]

        self.PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "").rstrip("/") or None

    @property
    def pairing_ttl_ms(self) -> int:
        return self.PAIRING_SESSION_TTL_SECONDS * 1000

    @property
    def qr_ttl_ms(self) -> int:
        return self.QR_SESSION_TTL_SECONDS * 1000


settings = Settings()
