from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
from grove.database import get_db
from grove.routers.deps import get_principal, get_storage, require_user
from grove.schemas.branch import BranchResponse
from grove.schemas.tree import TreeCreate, TreeMemberCreate, TreeMemberResponse, TreeResponse, TreeUpdate
from grove.services.hierarchy import HierarchyManager
from grove.services.identity import Principal
from grove.services.storage import LocalStorage, purge_media

router = APIRouter(prefix="/trees", tags=["trees"])

@router.get("", response_model=List[TreeResponse])
async def list_trees(
    view: Optional[str] = None,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
):
    # ?view=mine narrows the list to trees the caller owns or belongs to
    return await HierarchyManager(db).list_trees(principal, mine=view == "mine")

@router.post("", response_model=TreeResponse, status_code=status.HTTP_201_CREATED)
async def create_tree(
    body: TreeCreate,
    principal: Principal = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    details = body.model_dump(exclude={"name", "moderation_mode", "photos"})
    return await HierarchyManager(db).create_tree(
        principal, body.name, moderation_mode=body.moderation_mode, photos=body.photos, **details
    )

@router.get("/{id_or_slug}", response_model=TreeResponse)
async def get_tree(id_or_slug: str, db: AsyncSession = Depends(get_db)):
    return await HierarchyManager(db).find_tree(id_or_slug)

@router.put("/{id_or_slug}", response_model=TreeResponse)
async def update_tree(
    id_or_slug: str,
    body: TreeUpdate,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
):
    manager = HierarchyManager(db)
    tree = await manager.find_tree(id_or_slug)
    changes = body.model_dump(exclude_unset=True)
    photos = changes.pop("photos", None)
    return await manager.update_tree(principal, tree.id, photos=photos, **changes)

@router.delete("/{id_or_slug}")
async def delete_tree(
    id_or_slug: str,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
    storage: LocalStorage = Depends(get_storage),
):
    manager = HierarchyManager(db)
    tree = await manager.find_tree(id_or_slug)
    urls = await manager.delete_tree(principal, tree.id)
    background_tasks.add_task(purge_media, storage, urls)
    return {"success": True}

@router.get("/{id_or_slug}/branches", response_model=List[BranchResponse])
async def list_tree_branches(id_or_slug: str, db: AsyncSession = Depends(get_db)):
    manager = HierarchyManager(db)
    tree = await manager.find_tree(id_or_slug)
    return await manager.list_branches(tree.id)

@router.get("/{id_or_slug}/members", response_model=List[TreeMemberResponse])
async def list_members(
    id_or_slug: str,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
):
    manager = HierarchyManager(db)
    tree = await manager.find_tree(id_or_slug)
    return await manager.list_members(principal, tree.id)

@router.post("/{id_or_slug}/members", response_model=TreeMemberResponse)
async def set_member(
    id_or_slug: str,
    body: TreeMemberCreate,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
):
    manager = HierarchyManager(db)
    tree = await manager.find_tree(id_or_slug)
    return await manager.set_member_role(principal, tree.id, body.user_id, body.role)

@router.delete("/{id_or_slug}/members/{user_id}")
async def remove_member(
    id_or_slug: str,
    user_id: int,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
):
    manager = HierarchyManager(db)
    tree = await manager.find_tree(id_or_slug)
    await manager.remove_member(principal, tree.id, user_id)
    return {"success": True}
