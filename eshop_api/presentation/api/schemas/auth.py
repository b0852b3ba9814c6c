"""Pydantic schemas for authentication endpoints."""

from typing import Optional

from pydantic import BaseModel, EmailStr, Field


class RegisterRequest(BaseModel):
    """Request schema for account registration."""

    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)
    phone: Optional[str] = None


class LoginRequest(BaseModel):
    """Request schema for login."""

    email: EmailStr
    password: str = Field(..., min_length=1)


class EmailRequest(BaseModel):
    """Request schema for endpoints that only need the account email."""

    email: EmailStr


class VerifyCodeRequest(BaseModel):
    """Request schema for submitting an emailed code."""

    email: EmailStr
    code: str = Field(..., min_length=1)


class ResetPasswordRequest(BaseModel):
    """Request schema for setting a new password after the reset code was verified."""

    email: EmailStr
    new_password: str = Field(..., min_length=6)
