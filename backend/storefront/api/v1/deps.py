# storefront/api/v1/deps.py
from fastapi import Depends, Header

from storefront.core.db import bounded
from storefront.core.errors import AppError, ErrorKind, MSG_INVALID_TOKEN, MSG_USER_NOT_FOUND
from storefront.core.security import TokenClaims, TokenType
from storefront.models.user import User
from storefront.services.auth import AuthService, get_auth_service
from storefront.services.users import AccountService, find_active_by_id, get_account_service


def bearer_token(authorization: str | None = Header(default=None)) -> str:
    """
    Extract the token from an `Authorization: Bearer <token>` header.

    Raises:
        AppError (INVALID_TOKEN): If the header is missing or not a Bearer credential
    """
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization.split(" ", 1)[1].strip()
        if token:
            return token
    raise AppError(ErrorKind.INVALID_TOKEN, MSG_INVALID_TOKEN, details={"reason": "MISSING"})


def auth_service() -> AuthService:
    return get_auth_service()


def account_service() -> AccountService:
    return get_account_service()


async def get_current_claims(
    token: str = Depends(bearer_token),
    service: AuthService = Depends(auth_service),
) -> TokenClaims:
    """
    FastAPI dependency resolving the caller from an ACCESS token.

    Refresh and temporary tokens are rejected here even when their signature
    and expiry are valid.

    Raises:
        AppError (INVALID_TOKEN): Bad signature, malformed, or not an access token
        AppError (TOKEN_EXPIRED): Access token past its expiry
    """
    return service.tokens.verify(token, expected_type=TokenType.ACCESS)


async def get_current_user(claims: TokenClaims = Depends(get_current_claims)) -> User:
    """
    FastAPI dependency returning the signed-in, non-deleted user.

    Usage:
        @router.get("/protected")
        async def protected_route(user: User = Depends(get_current_user)):
            return {"userId": user.public_id}
    """
    user = await bounded(find_active_by_id(claims.user_id))
    if user is None:
        raise AppError(ErrorKind.NOT_FOUND, MSG_USER_NOT_FOUND)
    return user
