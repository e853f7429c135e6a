from pydantic import BaseModel, ConfigDict
from datetime import datetime
from typing import Optional

class UserResponse(BaseModel):
    id: int
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    is_super_admin: bool
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

class UserSummary(BaseModel):
    id: int
    name: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

class SuperAdminUpdate(BaseModel):
    is_super_admin: bool

class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    # Used for WhatsApp notifications, E.164
    phone: Optional[str] = None
