# Request dependencies: the per-app services, bearer parsing and the
# approving device's identity.

import logging
from typing import Optional

import jwt
from fastapi import Header, Request

from devicelink.core.errors import AuthorizationError, ValidationError
from devicelink.core.security import decode_web_session_token
from devicelink.services.container import Services
from devicelink.services.handoff import ApproverIdentity
from devicelink.services.users import User

logger = logging.getLogger(__name__)


def get_services(request: Request) -> Services:
    return request.app.state.services


def parse_bearer(authorization: Optional[str]) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        raise ValidationError("Authentication token is required")
    token = authorization.split(" ", 1)[1].strip()
    if not token or " " in token:
        raise ValidationError("Malformed bearer token")
    return token


def get_approver(request: Request, authorization: Optional[str] = Header(default=None)) -> ApproverIdentity:
    services = get_services(request)
    try:
        token = parse_bearer(authorization)
    except ValidationError:
        raise AuthorizationError("User not authenticated")
    try:
        claims = decode_web_session_token(services.settings, token)
    except jwt.InvalidTokenError as e:
        logger.info("Approver token rejected: %s", e)
        raise AuthorizationError("User not authenticated")

    user = services.users.get_user(str(claims["sub"]))
    if user is None:
        raise AuthorizationError("User not found")
    return ApproverIdentity(user=user, provider=claims.get("provider"))


def require_mobile_user(request: Request, authorization: Optional[str] = Header(default=None)) -> User:
    """Bearer guard for the rest of the application's mobile endpoints."""
    services = get_services(request)
    try:
        token = parse_bearer(authorization)
    except ValidationError as e:
        raise AuthorizationError(e.message)
    user = services.tokens.resolve(token)
    if user is None:
        raise AuthorizationError("User not found or token invalid")
    return user
