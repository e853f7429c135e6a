from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from grove.database import get_db
from grove.routers.deps import get_principal, get_storage
from grove.schemas.branch import (
    BranchCreate,
    BranchDetailResponse,
    BranchPermissionCreate,
    BranchPermissionResponse,
    BranchResponse,
    BranchUpdate,
)
from grove.services.hierarchy import HierarchyManager
from grove.services.identity import Principal
from grove.services.storage import LocalStorage, purge_media

router = APIRouter(prefix="/branches", tags=["branches"])

@router.post("", response_model=BranchResponse, status_code=status.HTTP_201_CREATED)
async def create_branch(
    body: BranchCreate,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
):
    details = body.model_dump(include={"description", "url", "date_occurred", "details"})
    return await HierarchyManager(db).create_branch(
        principal,
        body.tree_id,
        body.branch_type.to_ref(),
        body.title,
        parent_branch_id=body.parent_branch_id,
        photos=body.photos,
        **details,
    )

@router.get("/{branch_id}", response_model=BranchDetailResponse)
async def get_branch(branch_id: int, db: AsyncSession = Depends(get_db)):
    manager = HierarchyManager(db)
    branch = await manager.get_branch(branch_id)
    children = await manager.child_branch_ids(branch_id)
    return BranchDetailResponse(
        **BranchResponse.model_validate(branch).model_dump(), child_branch_ids=children
    )

@router.put("/{branch_id}", response_model=BranchResponse)
async def update_branch(
    branch_id: int,
    body: BranchUpdate,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
):
    changes = body.model_dump(exclude_unset=True, exclude={"branch_type", "parent_branch_id", "photos"})
    extra = {}
    # null is a real value here (move to the root), so presence decides
    if "parent_branch_id" in body.model_fields_set:
        extra["parent_branch_id"] = body.parent_branch_id
    return await HierarchyManager(db).update_branch(
        principal,
        branch_id,
        branch_type=body.branch_type.to_ref() if body.branch_type else None,
        photos=body.photos,
        **extra,
        **changes,
    )

@router.delete("/{branch_id}")
async def delete_branch(
    branch_id: int,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
    storage: LocalStorage = Depends(get_storage),
):
    urls = await HierarchyManager(db).delete_branch(principal, branch_id)
    background_tasks.add_task(purge_media, storage, urls)
    return {"success": True}

@router.post("/{branch_id}/permissions", response_model=BranchPermissionResponse)
async def grant_branch_role(
    branch_id: int,
    body: BranchPermissionCreate,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
):
    return await HierarchyManager(db).set_branch_role(principal, branch_id, body.user_id, body.role)

@router.delete("/{branch_id}/permissions/{user_id}")
async def revoke_branch_role(
    branch_id: int,
    user_id: int,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
):
    await HierarchyManager(db).remove_branch_role(principal, branch_id, user_id)
    return {"success": True}
