# src/identity_service/routers/auth_router.py
from fastapi import APIRouter, Depends, HTTPException, Request, status
import structlog

from ..dependencies.auth import require_authenticated
from ..dependencies.identity import get_identity_service
from ..UAA.exceptions import (
    Conflict,
    InvalidCredentials,
    InvalidPassword,
    UserNotFound,
    UserValidationError,
)
from ..UAA.schemas import (
    LoginRequest,
    OTPRequest,
    OTPVerify,
    PasswordChange,
    PasswordReset,
    RegisterResponse,
    Token,
    TokenClaims,
    UserCreate,
)
from ..UAA.services import IdentityService, normalize_username, validate_password

logger = structlog.get_logger(__name__)
router = APIRouter(tags=["auth"])

INVALID_OTP = "Invalid or expired OTP"


@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
async def register(user_in: UserCreate, svc: IdentityService = Depends(get_identity_service)):
    try:
        user_id = await svc.register(user_in)
    except (UserValidationError, Conflict) as e:
        logger.info("register_rejected", kind=type(e).__name__, username=user_in.username)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return RegisterResponse(user_id=user_id, username=normalize_username(user_in.username))


@router.post("/login", response_model=Token)
async def login(form_data: LoginRequest, svc: IdentityService = Depends(get_identity_service)):
    try:
        user, issued = await svc.login(form_data.username, form_data.password)
    except InvalidCredentials:
        # same answer for unknown, inactive and wrong-password
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    return Token(token=issued.token, expires_at=issued.expires_at, user_id=user.id)


# ---------- OTP endpoints ----------
@router.post("/otp/request", status_code=status.HTTP_202_ACCEPTED)
async def otp_request(payload: OTPRequest, request: Request, svc: IdentityService = Depends(get_identity_service)):
    """
    Issue an OTP for ``user_id``.

    Delivery is up to the deployment; the code is echoed back only when
    running with ``ENVIRONMENT=development``.
    """
    settings = request.app.state.settings
    try:
        otp = await svc.generate_otp(payload.user_id)
    except UserNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    body = {"status": "issued", "expires_in_minutes": settings.otp_validity_minutes}
    if settings.is_development:
        body["otp"] = otp
    return body


@router.post("/otp/verify")
async def otp_verify(payload: OTPVerify, svc: IdentityService = Depends(get_identity_service)):
    if not await svc.verify_otp(payload.user_id, payload.otp):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=INVALID_OTP)
    return {"verified": True}


# ---------- password endpoints ----------
@router.post("/password/change")
async def password_change(
    payload: PasswordChange,
    claims: TokenClaims = Depends(require_authenticated),
    svc: IdentityService = Depends(get_identity_service),
):
    try:
        await svc.change_password(claims.user_id, payload.current_password, payload.new_password)
    except (InvalidPassword, UserValidationError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except UserNotFound:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    return {"message": "Password changed successfully"}


@router.post("/password/reset")
async def password_reset(payload: PasswordReset, svc: IdentityService = Depends(get_identity_service)):
    """
    Reset a forgotten password.

    ``IdentityService.reset_password`` trusts its caller, so the OTP is
    verified (and consumed) here first.
    """
    try:
        validate_password(payload.new_password)
    except UserValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if not await svc.verify_otp(payload.user_id, payload.otp):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=INVALID_OTP)
    try:
        await svc.reset_password(payload.user_id, payload.new_password)
    except UserNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    except UserValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return {"message": "Password reset successfully"}
