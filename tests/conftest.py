import os

# Set dummy env vars for testing
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test.db"
os.environ["APP_URL"] = "http://app.test"
os.environ["NOTIFIER_BACKEND"] = "log"

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker
from grove.database import Base, get_db
from grove.main import app
from grove.routers.deps import get_notifier, get_storage
from grove.services.hierarchy import HierarchyManager
from grove.services.identity import Principal
from grove.services.notifier import NotificationResult
from grove.services.storage import LocalStorage
from grove.services.user_service import UserService
# Import models to ensure they are registered with Base.metadata
from grove.models.user import User
from grove.models.tree import MemberRole, Tree, TreeMember
from grove.models.branch import Branch, BranchType
from grove.models.story import Story

IDENTITY_HEADER = "X-Identity-Subject"


class RecordingNotifier:
    """Keeps every notification instead of sending it."""

    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    async def notify(self, kind, payload):
        self.sent.append((kind, payload))
        if self.fail:
            raise RuntimeError("mail server unreachable")
        return NotificationResult(success=True)

    def of_kind(self, kind):
        return [payload for sent_kind, payload in self.sent if sent_kind == kind]


@pytest_asyncio.fixture
async def engine(tmp_path):
    # A fresh SQLite file per test keeps tests independent of each other
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        await HierarchyManager(session).ensure_system_branch_types()
        yield session


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(str(tmp_path / "uploads"), "/uploads")


@pytest_asyncio.fixture
async def client(session_factory, db_session, notifier, storage):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_storage] = lambda: storage

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def make_user(db_session, name: str, is_super_admin: bool = False, phone: str = None) -> User:
    return await UserService(db_session).create_user(
        f"sub_{name.lower()}",
        name=name,
        email=f"{name.lower()}@example.com",
        phone=phone,
        is_super_admin=is_super_admin,
    )


def headers_for(user: User) -> dict:
    return {IDENTITY_HEADER: user.external_id}


@pytest_asyncio.fixture
async def people(db_session):
    """alice, bob, carol, dave and root (a super-admin), as Users."""
    return {
        "alice": await make_user(db_session, "Alice"),
        "bob": await make_user(db_session, "Bob", phone="+14155550101"),
        "carol": await make_user(db_session, "Carol"),
        "dave": await make_user(db_session, "Dave"),
        "root": await make_user(db_session, "Root", is_super_admin=True),
    }


@pytest.fixture
def principals(people):
    return {name: Principal.from_user(user) for name, user in people.items()}


@pytest_asyncio.fixture
async def memorial(db_session, principals):
    """A MODERATED tree owned by alice: bob is CONTRIBUTOR, carol MODERATOR, dave VIEWER."""
    manager = HierarchyManager(db_session)
    tree = await manager.create_tree(principals["alice"], "Grace Hopper")
    await manager.set_member_role(principals["alice"], tree.id, principals["bob"].user_id, MemberRole.CONTRIBUTOR)
    await manager.set_member_role(principals["alice"], tree.id, principals["carol"].user_id, MemberRole.MODERATOR)
    await manager.set_member_role(principals["alice"], tree.id, principals["dave"].user_id, MemberRole.VIEWER)
    return tree
