from sqlalchemy import Column, Integer, String, Text, ForeignKey, DateTime, Enum, Boolean, JSON
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from grove.database import Base
from grove.models.tree import MediaType
import enum

class BranchRole(str, enum.Enum):
    BRANCH_ADMIN = "branch_admin"
    BRANCH_EDITOR = "branch_editor"

class BranchType(Base):
    __tablename__ = "branch_types"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, index=True, nullable=False)
    description = Column(String, nullable=True)
    is_system = Column(Boolean, nullable=False, default=False)

class Branch(Base):
    __tablename__ = "branches"

    id = Column(Integer, primary_key=True, index=True)
    tree_id = Column(Integer, ForeignKey("trees.id", ondelete="CASCADE"), nullable=False, index=True)
    # Always a branch of the same tree; enforced by HierarchyManager
    parent_branch_id = Column(Integer, ForeignKey("branches.id", ondelete="CASCADE"), nullable=True, index=True)
    branch_type_id = Column(Integer, ForeignKey("branch_types.id"), nullable=False)

    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    url = Column(String, nullable=True)
    date_occurred = Column(DateTime(timezone=True), nullable=True)
    details = Column("metadata", JSON, nullable=True)

    created_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    approved = Column(Boolean, nullable=False, default=False)
    approved_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    branch_type = relationship("BranchType", lazy="joined")
    media = relationship("BranchMedia", lazy="selectin", order_by="BranchMedia.id")

class BranchPermission(Base):
    __tablename__ = "branch_permissions"

    branch_id = Column(Integer, ForeignKey("branches.id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    role = Column(Enum(BranchRole), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

class BranchMedia(Base):
    __tablename__ = "branch_media"

    id = Column(Integer, primary_key=True, index=True)
    branch_id = Column(Integer, ForeignKey("branches.id", ondelete="CASCADE"), nullable=False, index=True)
    media_type = Column(Enum(MediaType), nullable=False, default=MediaType.PHOTO)
    url = Column(String, nullable=False)
    uploaded_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
