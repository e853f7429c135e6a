"""Resolve the caller of a request into a Principal.

Token verification happens upstream (gateway or auth proxy); by the time a
request reaches us the verified subject sits in a header. Subjects we have not
seen before are provisioned on the fly.
"""
from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from grove.config import get_settings
from grove.models.user import User
from grove.services.user_service import UserService


@dataclass(frozen=True)
class Principal:
    user_id: Optional[int] = None
    is_super_admin: bool = False

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    @classmethod
    def from_user(cls, user: User) -> "Principal":
        return cls(user_id=user.id, is_super_admin=bool(user.is_super_admin))


ANONYMOUS = Principal()


class IdentityContext:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.user_service = UserService(db)
        self.settings = get_settings()

    async def authenticate(self, request: Request) -> Principal:
        subject = request.headers.get(self.settings.IDENTITY_HEADER, "").strip()
        if not subject:
            return ANONYMOUS

        user = await self.user_service.get_or_create_user(
            subject,
            name=request.headers.get(self.settings.IDENTITY_NAME_HEADER),
            email=request.headers.get(self.settings.IDENTITY_EMAIL_HEADER),
        )
        return Principal.from_user(user)
