# storefront/schemas/auth.py
"""
Pydantic schemas for authentication endpoints.
Defines request/response models for signup, login, OTP verification,
password reset and token refresh.
"""
from typing import Optional

from pydantic import BaseModel, EmailStr, Field

from storefront.config import settings
from storefront.models.user import Role, User

PASSWORD_MIN_LENGTH = 8
OTP_PATTERN = rf"^[0-9]{{{settings.otp_length}}}$"


class SignupRequest(BaseModel):
    """Request model for user signup (the password is hashed server-side)."""
    firstName: str = Field(min_length=2, max_length=50)
    lastName: str = Field(min_length=2, max_length=50)
    email: EmailStr
    password: str = Field(min_length=PASSWORD_MIN_LENGTH, max_length=128)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)


class VerifyOtpRequest(BaseModel):
    """Email verification with the code that was emailed at signup / resend."""
    email: EmailStr
    otp: str = Field(pattern=OTP_PATTERN)


class ResendOtpRequest(BaseModel):
    email: EmailStr


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class VerifyResetOtpRequest(BaseModel):
    email: EmailStr
    otp: str = Field(pattern=OTP_PATTERN)


class ResetPasswordRequest(BaseModel):
    """Password change authorized by the temporary token from verify-reset-otp."""
    temporaryToken: str = Field(min_length=1)
    newPassword: str = Field(min_length=PASSWORD_MIN_LENGTH, max_length=128)


class UserOut(BaseModel):
    """
    Public profile. `id` is the public id, never the internal primary key.
    """
    id: str
    firstName: str
    lastName: str
    username: str
    email: str
    phoneNumber: Optional[str] = None
    emailVerified: bool
    role: str

    @classmethod
    def from_user(cls, user: User) -> "UserOut":
        return cls(
            id=user.public_id,
            firstName=user.first_name,
            lastName=user.last_name,
            username=user.username,
            email=user.email,
            phoneNumber=user.phone_number,
            emailVerified=user.email_verified,
            role=Role(user.role).value,
        )


class JwtResponse(BaseModel):
    """Session tokens plus the profile they were issued for."""
    accessToken: str
    refreshToken: str
    tokenType: str = "Bearer"
    expiresIn: int  # Access-token lifetime in seconds
    user: UserOut


class SignupResponse(BaseModel):
    userId: str  # Public id
    email: str
    message: str


class TemporaryTokenResponse(BaseModel):
    temporaryToken: str
    expiresIn: int  # Seconds
    message: str
