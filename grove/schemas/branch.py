from pydantic import BaseModel, ConfigDict, Field, model_validator
from datetime import datetime
from typing import Any, Dict, List, Optional
from grove.models.branch import BranchRole
from grove.schemas.tree import MediaResponse
from grove.services.hierarchy import BranchTypeRef, ById, ByName

class BranchTypeResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    is_system: bool

    model_config = ConfigDict(from_attributes=True)

class BranchTypeInput(BaseModel):
    """Either {"id": 3} or {"name": "charity"}; exactly one of them."""
    id: Optional[int] = None
    name: Optional[str] = None

    @model_validator(mode="after")
    def check_exactly_one(self):
        if (self.id is None) == (self.name is None):
            raise ValueError("branch_type needs exactly one of 'id' or 'name'")
        return self

    def to_ref(self) -> BranchTypeRef:
        if self.id is not None:
            return ById(self.id)
        return ByName(self.name)

class BranchCreate(BaseModel):
    tree_id: int
    parent_branch_id: Optional[int] = None
    branch_type: BranchTypeInput
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    url: Optional[str] = None
    date_occurred: Optional[datetime] = None
    details: Optional[Dict[str, Any]] = None
    photos: List[str] = []

class BranchUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    url: Optional[str] = None
    date_occurred: Optional[datetime] = None
    details: Optional[Dict[str, Any]] = None
    branch_type: Optional[BranchTypeInput] = None
    # Only applied when present in the body; null moves the branch to the root
    parent_branch_id: Optional[int] = None
    photos: Optional[List[str]] = None

class BranchResponse(BaseModel):
    id: int
    tree_id: int
    parent_branch_id: Optional[int] = None
    title: str
    description: Optional[str] = None
    url: Optional[str] = None
    date_occurred: Optional[datetime] = None
    details: Optional[Dict[str, Any]] = None
    created_by_user_id: int
    approved: bool
    approved_by: Optional[int] = None
    approved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    branch_type: BranchTypeResponse
    media: List[MediaResponse] = []

    model_config = ConfigDict(from_attributes=True)

class BranchDetailResponse(BranchResponse):
    child_branch_ids: List[int] = []

class BranchPermissionCreate(BaseModel):
    user_id: int
    role: BranchRole

class BranchPermissionResponse(BaseModel):
    branch_id: int
    user_id: int
    role: BranchRole

    model_config = ConfigDict(from_attributes=True)
