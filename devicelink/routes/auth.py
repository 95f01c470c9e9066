# Device sign-in routes: pairing and QR session registration, approval,
# polling, token refresh, bearer resolution and sign-out.

from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from devicelink.core.errors import ValidationError
from devicelink.routes.deps import get_approver, get_services, parse_bearer, require_mobile_user
from devicelink.services.container import Services
from devicelink.services.handoff import ApproverIdentity
from devicelink.services.sessions import PAIRING
from devicelink.services.users import User

router = APIRouter(prefix="/auth", tags=["auth"])


# -- request models --------------------------------------------------------

class RegisterSessionReq(BaseModel):
    clientId: str = Field(min_length=1)


class ApproveSessionReq(BaseModel):
    sessionId: str = Field(min_length=1)


class RefreshTokenReq(BaseModel):
    clientId: str = Field(min_length=1)
    sessionId: Optional[str] = None


class DeviceInfo(BaseModel):
    brand: str = Field(min_length=1)
    model: str = Field(min_length=1)
    platform: str = Field(min_length=1)


class RegisterQRSessionReq(BaseModel):
    clientId: str = Field(min_length=1)
    deviceType: str = Field(min_length=1)
    deviceInfo: Optional[DeviceInfo] = None
    host: Optional[str] = None


class AuthenticateQRSessionReq(BaseModel):
    qrSessionId: str = Field(min_length=1)
    provider: str = Field(min_length=1)


class ApproveQRSessionReq(BaseModel):
    qrSessionId: str = Field(min_length=1)


class DenyQRSessionReq(BaseModel):
    qrSessionId: str = Field(min_length=1)
    reason: Optional[str] = Field(default=None, max_length=200)


# -- response models -------------------------------------------------------

class UserOut(BaseModel):
    id: str
    email: str
    name: str = ""
    image: str = ""
    approved: bool = False
    limitedAccess: bool = False
    admin: bool = False


class TokensOut(BaseModel):
    mobileSessionToken: str
    sessionId: str
    issuedAt: int
    user: UserOut


class RegisterSessionResp(BaseModel):
    sessionId: str
    expiresAt: int
    pollIntervalMs: int


class CheckTokenResp(BaseModel):
    status: str
    tokens: Optional[TokensOut] = None
    error: Optional[str] = None


class ActionResp(BaseModel):
    success: bool
    message: str


class RefreshTokenResp(BaseModel):
    success: bool
    mobileSessionToken: str
    user: UserOut


class QRData(BaseModel):
    qrSessionId: str
    host: Optional[str] = None
    deviceType: str


class RegisterQRSessionResp(BaseModel):
    qrSessionId: str
    expiresAt: int
    qrData: QRData
    pollIntervalMs: int


class QRSessionInfoResp(BaseModel):
    qrSessionId: str
    clientId: str
    deviceType: Optional[str] = None
    deviceInfo: Optional[DeviceInfo] = None
    status: str
    expiresAt: int
    createdAt: int


class AuthenticateQRSessionResp(BaseModel):
    authUrl: str
    qrSessionId: str
    provider: str
    status: str


class CheckQRTokenResp(BaseModel):
    qrSessionId: str
    status: str
    expiresAt: int
    tokens: Optional[TokensOut] = None
    error: Optional[str] = None


class UserStatusResp(BaseModel):
    authenticated: bool
    user: UserOut


# -- pairing ---------------------------------------------------------------

@router.post("/register-session", response_model=RegisterSessionResp)
def register_session(req: RegisterSessionReq, services: Services = Depends(get_services)):
    # Requesting device asks for a pairing session id
    return services.pairing.register(req.clientId)


@router.get("/check-token", response_model=CheckTokenResp, response_model_exclude_none=True)
def check_token(sessionId: str = Query(default=""), services: Services = Depends(get_services)):
    # Requesting device polls until the session completes or expires
    return services.pairing.check_status(sessionId)


@router.post("/approve-session", response_model=ActionResp)
def approve_session(
    req: ApproveSessionReq,
    approver: ApproverIdentity = Depends(get_approver),
    services: Services = Depends(get_services),
):
    return services.pairing.approve(req.sessionId, approver)


@router.post("/refresh-token", response_model=RefreshTokenResp)
def refresh_token(
    req: RefreshTokenReq,
    x_session_id: Optional[str] = Header(default=None),
    services: Services = Depends(get_services),
):
    session_id = req.sessionId or x_session_id
    if not session_id:
        raise ValidationError("Session ID is required")
    # Pairing namespace first, then QR
    if services.store.get_session(session_id, PAIRING) is not None:
        return services.pairing.refresh(req.clientId, session_id)
    return services.qr.refresh(req.clientId, session_id)


# -- QR --------------------------------------------------------------------

@router.post("/register-qr-session", response_model=RegisterQRSessionResp)
def register_qr_session(req: RegisterQRSessionReq, request: Request, services: Services = Depends(get_services)):
    host = req.host or request.headers.get("host")
    device_info = req.deviceInfo.model_dump() if req.deviceInfo else None
    return services.qr.register(req.clientId, req.deviceType, device_info, host=host)


@router.get("/qr-session-info", response_model=QRSessionInfoResp, response_model_exclude_none=True)
def qr_session_info(qrSessionId: str = Query(default=""), services: Services = Depends(get_services)):
    # Unauthenticated: whoever scanned the code sees the device, never the tokens
    return services.qr.info(qrSessionId)


@router.post("/authenticate-qr-session", response_model=AuthenticateQRSessionResp)
def authenticate_qr_session(
    req: AuthenticateQRSessionReq,
    request: Request,
    services: Services = Depends(get_services),
):
    base_url = services.settings.PUBLIC_BASE_URL or str(request.base_url)
    return services.qr.begin_authenticating(req.qrSessionId, req.provider, base_url)


@router.post("/approve-qr-session", response_model=ActionResp)
def approve_qr_session(
    req: ApproveQRSessionReq,
    approver: ApproverIdentity = Depends(get_approver),
    services: Services = Depends(get_services),
):
    return services.qr.approve(req.qrSessionId, approver)


@router.post("/deny-qr-session", response_model=ActionResp)
def deny_qr_session(
    req: DenyQRSessionReq,
    approver: ApproverIdentity = Depends(get_approver),
    services: Services = Depends(get_services),
):
    return services.qr.deny(req.qrSessionId, approver, req.reason)


@router.get("/check-qr-token", response_model=CheckQRTokenResp, response_model_exclude_none=True)
def check_qr_token(qrSessionId: str = Query(default=""), services: Services = Depends(get_services)):
    return services.qr.check_status(qrSessionId)


# -- bearer ----------------------------------------------------------------

@router.get("/user-status", response_model=UserStatusResp)
def user_status(authorization: Optional[str] = Header(default=None), services: Services = Depends(get_services)):
    try:
        token = parse_bearer(authorization)
    except ValidationError as e:
        return _unauthenticated(e.message)

    user = services.tokens.resolve(token)
    if user is None:
        return _unauthenticated("User not found or token invalid")
    return {"authenticated": True, "user": user.to_dict()}


@router.post("/sign-out", response_model=ActionResp)
def sign_out(
    authorization: Optional[str] = Header(default=None),
    user: User = Depends(require_mobile_user),
    services: Services = Depends(get_services),
):
    services.tokens.revoke(parse_bearer(authorization), reason="sign-out")
    return {"success": True, "message": "Signed out"}


def _unauthenticated(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content={"authenticated": False, "error": message, "sessionExpired": True},
    )
