from sqlalchemy import Column, Integer, String, Date, Text, ForeignKey, DateTime, Enum
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from grove.database import Base
import enum

class ModerationMode(str, enum.Enum):
    OPEN = "open"
    MODERATED = "moderated"

class MemberRole(str, enum.Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MODERATOR = "moderator"
    CONTRIBUTOR = "contributor"
    VIEWER = "viewer"

class MediaType(str, enum.Enum):
    PHOTO = "photo"

class Tree(Base):
    __tablename__ = "trees"

    id = Column(Integer, primary_key=True, index=True)
    slug = Column(String, unique=True, index=True, nullable=False)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    moderation_mode = Column(Enum(ModerationMode), nullable=False, default=ModerationMode.MODERATED)

    # Memorial details of the person the tree is about
    name = Column(String, nullable=False)
    birth_date = Column(Date, nullable=True)
    death_date = Column(Date, nullable=True)
    biography = Column(Text, nullable=True)
    photo_url = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    media = relationship("TreeMedia", lazy="selectin", order_by="TreeMedia.id")

class TreeMember(Base):
    __tablename__ = "tree_members"

    tree_id = Column(Integer, ForeignKey("trees.id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    role = Column(Enum(MemberRole), nullable=False, default=MemberRole.VIEWER)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", lazy="joined")

class TreeMedia(Base):
    __tablename__ = "tree_media"

    id = Column(Integer, primary_key=True, index=True)
    tree_id = Column(Integer, ForeignKey("trees.id", ondelete="CASCADE"), nullable=False, index=True)
    media_type = Column(Enum(MediaType), nullable=False, default=MediaType.PHOTO)
    url = Column(String, nullable=False)
    uploaded_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
