from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ....application.services.auth_service import AuthService
from ....core.dependencies import get_auth_service
from ..responses import api_success
from ..schemas.auth import (
    EmailRequest,
    LoginRequest,
    RegisterRequest,
    ResetPasswordRequest,
    VerifyCodeRequest,
)

router = APIRouter(prefix="/api/auth", tags=["Authentication"])


@router.post("/register")
async def register(
    payload: RegisterRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    message = await auth_service.register(payload.name, payload.email, payload.password, payload.phone)
    return api_success("CREATED", message)


@router.post("/login")
async def login(
    payload: LoginRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    result = auth_service.login(payload.email, payload.password)
    return api_success("OK", "Login successful", result)


@router.post("/verify-email")
async def verify_email(
    payload: VerifyCodeRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    return api_success("OK", auth_service.verify_email(payload.email, payload.code))


@router.post("/resend-email-verification-code")
async def resend_email_verification_code(
    payload: EmailRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    message = await auth_service.resend_email_verification_code(payload.email)
    return api_success("OK", message)


@router.post("/forgot-password")
async def forgot_password(
    payload: EmailRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    await auth_service.forgot_password(payload.email)
    return api_success("OK", "Reset code sent to your email")


@router.post("/resend-password-reset-code")
async def resend_password_reset_code(
    payload: EmailRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    message = await auth_service.resend_password_reset_code(payload.email)
    return api_success("OK", message)


@router.post("/verify-reset-code")
async def verify_reset_code(
    payload: VerifyCodeRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    auth_service.verify_reset_code(payload.email, payload.code)
    return api_success("OK", "Reset code verified")


@router.put("/reset-password")
async def reset_password(
    payload: ResetPasswordRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    result = auth_service.reset_password(payload.email, payload.new_password)
    return api_success("OK", "Password reset successfully", result)
