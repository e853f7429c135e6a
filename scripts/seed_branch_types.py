import asyncio
from grove.database import AsyncSessionLocal, Base, engine
from grove.services.hierarchy import SYSTEM_BRANCH_TYPES, HierarchyManager
# Import models to ensure they are registered with Base.metadata
from grove.models import branch, story, tree, user  # noqa: F401

async def seed_branch_types():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as session:
        created = await HierarchyManager(session).ensure_system_branch_types()

    for name, description in SYSTEM_BRANCH_TYPES:
        if name in created:
            print(f"Created branch type: {description}")
        else:
            print(f"Branch type already exists: {description}")

    await engine.dispose()

if __name__ == "__main__":
    asyncio.run(seed_branch_types())
