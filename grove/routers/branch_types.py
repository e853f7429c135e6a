from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List
from grove.database import get_db
from grove.schemas.branch import BranchTypeResponse
from grove.services.hierarchy import HierarchyManager

router = APIRouter(prefix="/branch-types", tags=["branches"])

@router.get("", response_model=List[BranchTypeResponse])
async def list_branch_types(db: AsyncSession = Depends(get_db)):
    return await HierarchyManager(db).list_branch_types()
