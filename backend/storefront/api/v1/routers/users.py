# storefront/api/v1/routers/users.py
from fastapi import APIRouter, Depends

from storefront.api.v1.deps import account_service, get_current_claims, get_current_user
from storefront.core.security import TokenClaims
from storefront.models.user import User
from storefront.schemas.auth import UserOut
from storefront.schemas.users import UpdateProfileRequest, UpdateUsernameRequest
from storefront.services.users import AccountService

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/profile")
async def get_profile(
    claims: TokenClaims = Depends(get_current_claims),
    service: AccountService = Depends(account_service),
):
    """
    Get the signed-in user's profile.

    Returns:
        dict: success envelope with data = UserOut (public id, names,
        username, email, phoneNumber, emailVerified, role)
    """
    user = await service.get_profile(claims.user_id)
    return {"success": True, "data": UserOut.from_user(user).model_dump()}


@router.put("/profile")
async def update_profile(
    payload: UpdateProfileRequest,
    claims: TokenClaims = Depends(get_current_claims),
    service: AccountService = Depends(account_service),
):
    """Update first/last name and, when given, the phone number."""
    user = await service.update_profile(
        claims.user_id,
        payload.firstName,
        payload.lastName,
        payload.phoneNumber,
    )
    return {"success": True, "message": "Profile updated successfully", "data": UserOut.from_user(user).model_dump()}


@router.put("/username")
async def update_username(
    payload: UpdateUsernameRequest,
    claims: TokenClaims = Depends(get_current_claims),
    service: AccountService = Depends(account_service),
):
    """
    Change the username.

    Reserved or inappropriate names fail validation (400); a name held by
    another user is 409; a second change inside the cooldown period is 400.
    """
    user = await service.update_username(claims.user_id, payload.username)
    return {"success": True, "message": "Username updated successfully", "data": UserOut.from_user(user).model_dump()}


@router.delete("/profile")
async def delete_profile(
    user: User = Depends(get_current_user),
    service: AccountService = Depends(account_service),
):
    """
    Soft-delete the signed-in user's account.

    The row is kept but flagged deleted and locked far into the future;
    all refresh tokens are invalidated so no new access tokens can be minted.
    """
    await service.delete_account(user.id)
    return {"success": True, "message": "Account deleted successfully"}
