from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from grove.database import get_db
from grove.errors import ForbiddenError, NotFoundError
from grove.routers.deps import require_user
from grove.schemas.user import ProfileUpdate, SuperAdminUpdate, UserResponse
from grove.services.identity import Principal
from grove.services.user_service import UserService
import logging

router = APIRouter(prefix="/users", tags=["users"])
logger = logging.getLogger(__name__)

@router.get("/me", response_model=UserResponse)
async def get_me(principal: Principal = Depends(require_user), db: AsyncSession = Depends(get_db)):
    return await UserService(db).get_user(principal.user_id)

@router.put("/me", response_model=UserResponse)
async def update_me(
    body: ProfileUpdate,
    principal: Principal = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    return await UserService(db).update_profile(principal.user_id, name=body.name, phone=body.phone)

@router.put("/{user_id}/super-admin", response_model=UserResponse)
async def set_super_admin(
    user_id: int,
    body: SuperAdminUpdate,
    principal: Principal = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    if not principal.is_super_admin:
        raise ForbiddenError("Only super-admins can change super-admin status")
    user = await UserService(db).set_super_admin(user_id, body.is_super_admin)
    if not user:
        raise NotFoundError("User not found")
    logger.info(f"User {user_id} super-admin={body.is_super_admin} (set by {principal.user_id})")
    return user
