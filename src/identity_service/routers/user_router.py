# src/identity_service/routers/user_router.py
from fastapi import APIRouter, Depends, HTTPException, status

from ..dependencies.auth import require_admin, require_authenticated, require_superuser
from ..dependencies.identity import get_identity_service
from ..UAA.exceptions import Conflict, UserNotFound, UserValidationError
from ..UAA.models import User
from ..UAA.schemas import TokenClaims, UserRead, UserUpdate
from ..UAA.services import IdentityService

router = APIRouter(tags=["users"])


def _project(user: User) -> UserRead:
    return UserRead(
        user_id=user.id,
        username=user.username,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        is_active=user.is_active,
        is_superuser=user.is_superuser,
        date_joined=user.date_joined,
        last_login=user.last_login,
    )


@router.get("/profile", response_model=UserRead)
async def profile(
    claims: TokenClaims = Depends(require_authenticated),
    svc: IdentityService = Depends(get_identity_service),
):
    try:
        user = await svc.get_user(claims.user_id)
    except UserNotFound:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    return _project(user)


@router.get("/admin")
async def admin_area(claims: TokenClaims = Depends(require_admin)):
    return {"message": "Welcome to the admin area", "user_id": claims.user_id, "username": claims.username}


@router.get("/superuser")
async def superuser_area(claims: TokenClaims = Depends(require_superuser)):
    return {"message": "Welcome to the superuser area", "user_id": claims.user_id, "username": claims.username}


@router.patch("/users/{user_id}", response_model=UserRead, dependencies=[Depends(require_superuser)])
async def update_user(user_id: int, changes: UserUpdate, svc: IdentityService = Depends(get_identity_service)):
    try:
        user = await svc.update_user(user_id, changes)
    except (UserValidationError, Conflict) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except UserNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return _project(user)
