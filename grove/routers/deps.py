from functools import lru_cache
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from grove.config import get_settings
from grove.database import get_db
from grove.errors import UnauthenticatedError
from grove.services.identity import IdentityContext, Principal
from grove.services.notifier import Notifier, build_notifier
from grove.services.storage import LocalStorage, build_storage

async def get_principal(request: Request, db: AsyncSession = Depends(get_db)) -> Principal:
    return await IdentityContext(db).authenticate(request)

async def require_user(principal: Principal = Depends(get_principal)) -> Principal:
    if not principal.is_authenticated:
        raise UnauthenticatedError()
    return principal

@lru_cache()
def get_notifier() -> Notifier:
    return build_notifier(get_settings())

@lru_cache()
def get_storage() -> LocalStorage:
    return build_storage(get_settings())
