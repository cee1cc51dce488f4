from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from reduct.apps.api.deps import Principal, get_current_principal, get_db
from reduct.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from reduct.apps.api.response import SuccessEnvelope, success_response
from reduct.domain.models import User
from reduct.persistence.repos.sessions import create_session
from reduct.persistence.repos.users import get_live_user, get_user_by_email
from reduct.services.audit import record_event
from reduct.services.auth import otp
from reduct.services.auth.email import send_verification_email
from reduct.services.auth.identity import create_personal_tenant, get_platform_role, get_primary_tenant_id
from reduct.services.auth.passwords import hash_password, validate_password, verify_password
from reduct.services.auth.tokens import issue_access_token, token_expiry


router = APIRouter(prefix="/auth", tags=["auth"], responses=DEFAULT_ERROR_RESPONSES)


class EmailRequest(BaseModel):
    email: str | None = None


class VerifyCodeRequest(BaseModel):
    email: str | None = None
    code: str | None = None


class ResetPasswordRequest(BaseModel):
    email: str | None = None
    code: str | None = None
    new_password: str | None = Field(default=None, validation_alias=AliasChoices("newPassword", "new_password"))


class RegisterRequest(BaseModel):
    email: str | None = None
    password: str | None = None
    full_name: str | None = Field(default=None, validation_alias=AliasChoices("fullName", "full_name", "name"))


class LoginRequest(BaseModel):
    email: str | None = None
    password: str | None = None


class ChangePasswordRequest(BaseModel):
    current_password: str | None = Field(
        default=None, validation_alias=AliasChoices("currentPassword", "current_password")
    )
    new_password: str | None = Field(default=None, validation_alias=AliasChoices("newPassword", "new_password"))
    confirm_password: str | None = Field(
        default=None, validation_alias=AliasChoices("confirmPassword", "confirm_password")
    )


class AuthUser(BaseModel):
    id: str
    email: str
    full_name: str | None


class AuthResponse(BaseModel):
    user: AuthUser
    token: str
    tenantId: str | None
    platformRole: str | None


class MeResponse(BaseModel):
    id: str
    email: str
    full_name: str | None
    status: str
    email_verified: bool
    last_login_at: str | None
    tenantId: str | None
    platformRole: str | None


def _bad_request(message: str, code: str = "BAD_REQUEST") -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail={"code": code, "message": message})


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "AUTH_INVALID_CREDENTIALS", "message": message},
    )


def _clean_email(value: str | None) -> str:
    return (value or "").strip().lower()


def _user_payload(user: User) -> AuthUser:
    return AuthUser(id=user.id, email=user.email, full_name=user.full_name)


async def _verify_or_400(email: str, code: str) -> None:
    try:
        await otp.check_code(email, code)
    except otp.OtpVerificationError as exc:
        raise _bad_request(str(exc), "OTP_INVALID") from exc


async def _issue_for(session: AsyncSession, user: User) -> tuple[str, str | None, str | None]:
    tenant_id = await get_primary_tenant_id(session, user.id)
    platform_role = await get_platform_role(session, user.id)
    token = issue_access_token(
        user_id=user.id, email=user.email, tenant_id=tenant_id, platform_role=platform_role
    )
    return token, tenant_id, platform_role


@router.post("/send-verification-code", response_model=SuccessEnvelope[dict])
async def send_verification_code(request: Request, payload: EmailRequest) -> dict:
    email = _clean_email(payload.email)
    if not email:
        raise _bad_request("Email is required")
    code = otp.generate_code()
    await otp.store_code(email, code)
    sent = await send_verification_email(email, code)
    if not sent:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"code": "EMAIL_SEND_FAILED", "message": "Failed to send verification email"},
        )
    return success_response(request=request, data={"success": True, "message": "Verification code sent"})


@router.post("/verify-code", response_model=SuccessEnvelope[dict])
async def verify_code(
    request: Request, payload: VerifyCodeRequest, db: AsyncSession = Depends(get_db)
) -> dict:
    email = _clean_email(payload.email)
    if not email or not payload.code:
        raise _bad_request("Email and code are required")
    # The code stays valid for the follow-up register or reset-password step.
    await _verify_or_400(email, payload.code)
    existing = await get_user_by_email(db, email)
    return success_response(
        request=request,
        data={"success": True, "message": "Verification successful", "isExistingUser": existing is not None},
    )


@router.post("/check-email", response_model=SuccessEnvelope[dict])
async def check_email(request: Request, payload: EmailRequest, db: AsyncSession = Depends(get_db)) -> dict:
    email = _clean_email(payload.email)
    if not email:
        raise _bad_request("Email is required")
    existing = await get_user_by_email(db, email)
    return success_response(request=request, data={"exists": existing is not None})


@router.post("/reset-password", response_model=SuccessEnvelope[dict])
async def reset_password(
    request: Request, payload: ResetPasswordRequest, db: AsyncSession = Depends(get_db)
) -> dict:
    email = _clean_email(payload.email)
    if not email or not payload.code or not payload.new_password:
        raise _bad_request("Email, code, and new password are required")
    await _verify_or_400(email, payload.code)
    policy_error = validate_password(payload.new_password)
    if policy_error:
        raise _bad_request(policy_error, "WEAK_PASSWORD")
    user = await get_user_by_email(db, email)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "USER_NOT_FOUND", "message": "User not found"},
        )
    user.password_hash = hash_password(payload.new_password)
    await db.commit()
    await otp.delete_code(email)
    await record_event(
        session=db,
        request=request,
        tenant_id=None,
        actor_type="user",
        actor_id=user.id,
        event_type="auth.password.reset",
        outcome="success",
        resource_type="user",
        resource_id=user.id,
        commit=True,
    )
    return success_response(request=request, data={"success": True, "message": "Password reset successfully"})


@router.post("/register", status_code=status.HTTP_201_CREATED, response_model=SuccessEnvelope[AuthResponse])
async def register(request: Request, payload: RegisterRequest, db: AsyncSession = Depends(get_db)) -> JSONResponse:
    email = _clean_email(payload.email)
    full_name = (payload.full_name or "").strip()
    if not email or not payload.password or not full_name:
        raise _bad_request("All fields are required")
    if await get_user_by_email(db, email, include_deleted=True) is not None:
        raise _bad_request("User already exists", "USER_EXISTS")

    try:
        user = User(
            email=email,
            password_hash=hash_password(payload.password),
            full_name=full_name,
            email_verified=True,
            status="active",
        )
        db.add(user)
        await db.flush()
        await create_personal_tenant(db, user=user)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    token, tenant_id, platform_role = await _issue_for(db, user)
    await record_event(
        session=db,
        request=request,
        tenant_id=tenant_id,
        actor_type="user",
        actor_id=user.id,
        event_type="auth.register",
        outcome="success",
        resource_type="user",
        resource_id=user.id,
        metadata={"email": email},
        commit=True,
    )
    data = AuthResponse(user=_user_payload(user), token=token, tenantId=tenant_id, platformRole=platform_role)
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content=success_response(request=request, data=data.model_dump()),
    )


@router.post("/login", response_model=SuccessEnvelope[AuthResponse])
async def login(request: Request, payload: LoginRequest, db: AsyncSession = Depends(get_db)) -> dict:
    email = _clean_email(payload.email)
    user = await get_user_by_email(db, email) if email else None
    failure: str | None = None
    if user is None:
        failure = "Invalid credentials"
    elif not user.password_hash:
        failure = "Please use SSO login"
    elif not verify_password(payload.password or "", user.password_hash):
        failure = "Invalid credentials"
    if failure is not None:
        await record_event(
            session=db,
            request=request,
            tenant_id=None,
            actor_type="anonymous",
            actor_id=user.id if user is not None else None,
            event_type="auth.login",
            outcome="failure",
            resource_type="user",
            metadata={"email": email},
            error_code="AUTH_INVALID_CREDENTIALS",
            commit=True,
        )
        raise _unauthorized(failure)

    user.last_login_at = datetime.now(timezone.utc)
    token, tenant_id, platform_role = await _issue_for(db, user)
    await create_session(
        db,
        user_id=user.id,
        tenant_id=tenant_id,
        token=token,
        expires_at=token_expiry(token),
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    await db.commit()
    await record_event(
        session=db,
        request=request,
        tenant_id=tenant_id,
        actor_type="user",
        actor_id=user.id,
        actor_role=platform_role,
        event_type="auth.login",
        outcome="success",
        resource_type="user",
        resource_id=user.id,
        commit=True,
    )
    data = AuthResponse(user=_user_payload(user), token=token, tenantId=tenant_id, platformRole=platform_role)
    return success_response(request=request, data=data.model_dump())


@router.post("/change-password", response_model=SuccessEnvelope[dict])
async def change_password(
    request: Request,
    payload: ChangePasswordRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    if not payload.current_password or not payload.new_password or not payload.confirm_password:
        raise _bad_request("All password fields are required")
    if payload.new_password != payload.confirm_password:
        raise _bad_request("New passwords do not match")
    if payload.new_password == payload.current_password:
        raise _bad_request("New password must differ from the current password")
    policy_error = validate_password(payload.new_password)
    if policy_error:
        raise _bad_request(policy_error, "WEAK_PASSWORD")

    user = await get_live_user(db, principal.user_id)
    if user is None or not user.password_hash:
        raise _bad_request("Password cannot be changed for this account")
    if not verify_password(payload.current_password, user.password_hash):
        raise _bad_request("Current password is incorrect", "AUTH_INVALID_CREDENTIALS")
    user.password_hash = hash_password(payload.new_password)
    await db.commit()
    await record_event(
        session=db,
        request=request,
        tenant_id=principal.tenant_id,
        actor_type="user",
        actor_id=user.id,
        event_type="auth.password.changed",
        outcome="success",
        resource_type="user",
        resource_id=user.id,
        commit=True,
    )
    return success_response(request=request, data={"success": True})


@router.get("/me", response_model=SuccessEnvelope[MeResponse])
async def me(
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    user = await get_live_user(db, principal.user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "USER_NOT_FOUND", "message": "User not found"},
        )
    data = MeResponse(
        id=user.id,
        email=user.email,
        full_name=user.full_name,
        status=user.status,
        email_verified=user.email_verified,
        last_login_at=user.last_login_at.isoformat() if user.last_login_at else None,
        tenantId=principal.tenant_id,
        platformRole=principal.platform_role,
    )
    return success_response(request=request, data=data.model_dump())
