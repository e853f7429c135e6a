from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import List, Optional
from grove.schemas.tree import MediaResponse
from grove.schemas.user import UserSummary

class StoryCreate(BaseModel):
    tree_id: int
    branch_id: Optional[int] = None
    title: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    photos: List[str] = []

class StoryUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    content: Optional[str] = Field(None, min_length=1)
    photos: Optional[List[str]] = None

class StoryReject(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)

class StoryResponse(BaseModel):
    id: int
    tree_id: int
    branch_id: Optional[int] = None
    author_id: int
    title: str
    content: str
    approved: bool
    approved_by: Optional[int] = None
    approved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    author: Optional[UserSummary] = None
    media: List[MediaResponse] = []

    model_config = ConfigDict(from_attributes=True)

class StoryRejectResponse(BaseModel):
    success: bool = True
    message: str = "Story rejected and removed"
