import asyncio
from grove.database import AsyncSessionLocal, engine
from grove.services.hierarchy import HierarchyManager
from grove.models import branch, story, tree, user  # noqa: F401

async def fix_tree_slugs():
    async with AsyncSessionLocal() as session:
        changed = await HierarchyManager(session).repair_generated_slugs()

    if not changed:
        print("No timestamped slugs found.")
    for tree_id, old_slug, new_slug in changed:
        print(f"Tree {tree_id}: {old_slug} -> {new_slug}")
    print(f"Done. {len(changed)} slug(s) fixed.")

    await engine.dispose()

if __name__ == "__main__":
    asyncio.run(fix_tree_slugs())
