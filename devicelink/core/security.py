# Security-related helpers: signing mobile session tokens and
# verifying the approving device's web session token.
import hashlib
import secrets
import time

import jwt

from devicelink.core.config import Settings

MOBILE_TOKEN_TYPE = "mobile-auth"


def create_mobile_token(settings: Settings, user_id: str, session_id: str) -> str:
    # No exp claim: validity is decided by the token registry, not the clock
    payload = {
        "userId": user_id,
        "sessionId": session_id,
        "type": MOBILE_TOKEN_TYPE,
        "jti": secrets.token_urlsafe(16),
        "iat": int(time.time()),
    }
    return jwt.encode(payload, settings.MOBILE_JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_mobile_token(settings: Settings, token: str) -> dict | None:
    """Returns the claims of a well-signed mobile token, or None for anything else."""
    try:
        claims = jwt.decode(token, settings.MOBILE_JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.InvalidTokenError:
        return None
    if claims.get("type") != MOBILE_TOKEN_TYPE or not claims.get("userId"):
        return None
    return claims


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def decode_web_session_token(settings: Settings, token: str) -> dict:
    """Raises jwt.InvalidTokenError on a bad signature, issuer, audience or expiry."""
    return jwt.decode(
        token,
        settings.WEB_SESSION_SECRET,
        algorithms=[settings.JWT_ALGORITHM],
        issuer=settings.WEB_SESSION_ISSUER,
        audience=settings.WEB_SESSION_AUDIENCE,
        options={"require": ["exp", "sub"]},
    )
