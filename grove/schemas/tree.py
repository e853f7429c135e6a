from pydantic import BaseModel, ConfigDict, Field
from datetime import date, datetime
from typing import List, Optional
from grove.models.tree import MemberRole, ModerationMode, MediaType
from grove.schemas.user import UserSummary

class MediaResponse(BaseModel):
    id: int
    media_type: MediaType
    url: str

    model_config = ConfigDict(from_attributes=True)

class TreeBase(BaseModel):
    name: str = Field(..., min_length=1)
    birth_date: Optional[date] = None
    death_date: Optional[date] = None
    biography: Optional[str] = None
    photo_url: Optional[str] = None

class TreeCreate(TreeBase):
    moderation_mode: ModerationMode = ModerationMode.MODERATED
    photos: List[str] = []

class TreeUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    birth_date: Optional[date] = None
    death_date: Optional[date] = None
    biography: Optional[str] = None
    photo_url: Optional[str] = None
    moderation_mode: Optional[ModerationMode] = None
    # None leaves the photo set alone; a list replaces it
    photos: Optional[List[str]] = None

class TreeResponse(TreeBase):
    id: int
    slug: str
    owner_id: int
    moderation_mode: ModerationMode
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    media: List[MediaResponse] = []

    model_config = ConfigDict(from_attributes=True)

class TreeMemberCreate(BaseModel):
    user_id: int
    role: MemberRole

class TreeMemberResponse(BaseModel):
    tree_id: int
    user_id: int
    role: MemberRole
    user: Optional[UserSummary] = None

    model_config = ConfigDict(from_attributes=True)
