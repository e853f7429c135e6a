from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from grove.models.user import User
from grove.utils.validators import validate_phone
from typing import Optional
import logging

logger = logging.getLogger(__name__)

class UserService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user(self, user_id: int) -> Optional[User]:
        result = await self.db.execute(select(User).filter(User.id == user_id))
        return result.scalars().first()

    async def get_user_by_external_id(self, external_id: str) -> Optional[User]:
        result = await self.db.execute(select(User).filter(User.external_id == external_id))
        return result.scalars().first()

    async def create_user(
        self,
        external_id: str,
        name: Optional[str] = None,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        is_super_admin: bool = False,
    ) -> User:
        user = User(
            external_id=external_id,
            name=name,
            email=email,
            phone=validate_phone(phone) if phone else None,
            is_super_admin=is_super_admin,
        )
        self.db.add(user)
        await self.db.commit()
        await self.db.refresh(user)
        return user

    async def get_or_create_user(
        self, external_id: str, name: Optional[str] = None, email: Optional[str] = None
    ) -> User:
        user = await self.get_user_by_external_id(external_id)
        if user:
            return user
        try:
            user = await self.create_user(external_id, name=name, email=email)
        except IntegrityError:
            # A concurrent request created the same subject first
            await self.db.rollback()
            user = await self.get_user_by_external_id(external_id)
            if not user:
                raise
            return user
        logger.info(f"Provisioned user {user.id} for subject {external_id}")
        return user

    async def set_super_admin(self, user_id: int, is_super_admin: bool) -> Optional[User]:
        user = await self.get_user(user_id)
        if user:
            user.is_super_admin = is_super_admin
            await self.db.commit()
            await self.db.refresh(user)
        return user

    async def update_profile(self, user_id: int, name: Optional[str] = None, phone: Optional[str] = None) -> Optional[User]:
        user = await self.get_user(user_id)
        if user:
            if name is not None:
                user.name = name
            if phone is not None:
                # An empty string clears the number
                user.phone = validate_phone(phone) if phone else None
            await self.db.commit()
            await self.db.refresh(user)
        return user
