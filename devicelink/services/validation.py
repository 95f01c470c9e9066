# Shared input checks and the lazy expiry rule used by every read path.

import time

from devicelink.core.errors import ValidationError


def now_ms() -> int:
    return int(time.time() * 1000)


def is_expired(expires_at: int, now: int) -> bool:
    return expires_at < now


def require_text(value, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required")
    return value.strip()


def require_member(value: str, allowed: list[str], field: str) -> str:
    if value not in allowed:
        raise ValidationError(f"Invalid {field}: {value}")
    return value
