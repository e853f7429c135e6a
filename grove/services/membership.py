from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy import delete
from grove.models.tree import TreeMember, MemberRole
from grove.models.branch import BranchPermission, BranchRole
from typing import List, Optional

MODERATOR_ROLES = (MemberRole.OWNER, MemberRole.ADMIN, MemberRole.MODERATOR)

class MembershipStore:
    """Reads and writes tree roster and branch grant rows. No permission checks here."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_tree_role(self, tree_id: int, user_id: int) -> Optional[MemberRole]:
        result = await self.db.execute(
            select(TreeMember.role).filter(TreeMember.tree_id == tree_id, TreeMember.user_id == user_id)
        )
        return result.scalars().first()

    async def get_branch_role(self, branch_id: int, user_id: int) -> Optional[BranchRole]:
        result = await self.db.execute(
            select(BranchPermission.role).filter(
                BranchPermission.branch_id == branch_id, BranchPermission.user_id == user_id
            )
        )
        return result.scalars().first()

    async def get_member(self, tree_id: int, user_id: int) -> Optional[TreeMember]:
        result = await self.db.execute(
            select(TreeMember)
            .filter(TreeMember.tree_id == tree_id, TreeMember.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def list_members(self, tree_id: int) -> List[TreeMember]:
        result = await self.db.execute(
            select(TreeMember)
            .filter(TreeMember.tree_id == tree_id)
            .order_by(TreeMember.created_at, TreeMember.user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalars().all()

    async def list_moderators(self, tree_id: int) -> List[TreeMember]:
        result = await self.db.execute(
            select(TreeMember)
            .filter(TreeMember.tree_id == tree_id, TreeMember.role.in_(MODERATOR_ROLES))
            .execution_options(populate_existing=True)
        )
        return result.scalars().all()

    async def set_member_role(self, tree_id: int, user_id: int, role: MemberRole) -> TreeMember:
        # One role per (tree, user): update in place when the row exists
        member = await self.get_member(tree_id, user_id)
        if member:
            member.role = role
        else:
            member = TreeMember(tree_id=tree_id, user_id=user_id, role=role)
            self.db.add(member)
        await self.db.commit()
        return await self.get_member(tree_id, user_id)

    async def remove_member(self, tree_id: int, user_id: int) -> bool:
        result = await self.db.execute(
            delete(TreeMember).where(TreeMember.tree_id == tree_id, TreeMember.user_id == user_id)
        )
        await self.db.commit()
        return result.rowcount > 0

    async def set_branch_role(self, branch_id: int, user_id: int, role: BranchRole) -> BranchPermission:
        result = await self.db.execute(
            select(BranchPermission).filter(
                BranchPermission.branch_id == branch_id, BranchPermission.user_id == user_id
            )
        )
        grant = result.scalars().first()
        if grant:
            grant.role = role
        else:
            grant = BranchPermission(branch_id=branch_id, user_id=user_id, role=role)
            self.db.add(grant)
        await self.db.commit()
        return grant

    async def remove_branch_role(self, branch_id: int, user_id: int) -> bool:
        result = await self.db.execute(
            delete(BranchPermission).where(
                BranchPermission.branch_id == branch_id, BranchPermission.user_id == user_id
            )
        )
        await self.db.commit()
        return result.rowcount > 0
