import logging
from collections import defaultdict, deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple, Union

from sqlalchemy import delete, or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from grove.config import get_settings
from grove.errors import ConflictError, NotFoundError, UnauthenticatedError, ValidationError
from grove.models.branch import Branch, BranchMedia, BranchPermission, BranchRole, BranchType
from grove.models.story import Story, StoryMedia
from grove.models.tree import MemberRole, ModerationMode, Tree, TreeMedia, TreeMember
from grove.models.user import User
from grove.services.identity import Principal
from grove.services.permissions import Action, PermissionResolver, Resource
from grove.utils.slugs import generate_unique_slug, looks_generated, slugify

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ById:
    id: int


@dataclass(frozen=True)
class ByName:
    name: str


BranchTypeRef = Union[ById, ByName]

_UNCHANGED = object()

SYSTEM_BRANCH_TYPES = (
    ("organ_donation", "Organ Donation"),
    ("healed_relationship", "Healed Relationship"),
    ("foundation", "Foundation/Organization"),
    ("charity", "Charity Connection"),
    ("inspired_act", "Inspired Act of Kindness"),
    ("life_touched", "Life Touched/Changed"),
)


def collect_subtree(root_id: int, children: Dict[Optional[int], List[int]]) -> List[int]:
    """Breadth-first ids of root_id and all of its descendants."""
    ordered = []
    seen = set()
    queue = deque([root_id])
    while queue:
        branch_id = queue.popleft()
        if branch_id in seen:
            continue
        seen.add(branch_id)
        ordered.append(branch_id)
        queue.extend(children.get(branch_id, ()))
    return ordered


def creates_cycle(branch_id: int, new_parent_id: Optional[int], parents: Dict[int, Optional[int]]) -> bool:
    """True if branch_id appears on the ancestor chain starting at new_parent_id."""
    seen = set()
    current = new_parent_id
    while current is not None and current not in seen:
        if current == branch_id:
            return True
        seen.add(current)
        current = parents.get(current)
    return False


class HierarchyManager:
    def __init__(self, db: AsyncSession, resolver: Optional[PermissionResolver] = None):
        self.db = db
        self.resolver = resolver or PermissionResolver(db)
        self.settings = get_settings()

    async def _commit(self):
        try:
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise

    # --- trees ---

    async def get_tree(self, tree_id: int) -> Tree:
        result = await self.db.execute(
            select(Tree).filter(Tree.id == tree_id).execution_options(populate_existing=True)
        )
        tree = result.scalars().first()
        if not tree:
            raise NotFoundError("Tree not found")
        return tree

    async def find_tree(self, id_or_slug: str) -> Tree:
        # Slugs are the public address; numeric ids are accepted as a fallback
        result = await self.db.execute(select(Tree).filter(Tree.slug == id_or_slug))
        tree = result.scalars().first()
        if tree:
            return tree
        if id_or_slug.isdigit():
            return await self.get_tree(int(id_or_slug))
        raise NotFoundError("Tree not found")

    async def list_trees(self, principal: Principal, mine: bool = False) -> List[Tree]:
        stmt = select(Tree)
        if mine:
            if not principal.is_authenticated:
                raise UnauthenticatedError()
            member_of = select(TreeMember.tree_id).filter(TreeMember.user_id == principal.user_id)
            stmt = stmt.filter(or_(Tree.owner_id == principal.user_id, Tree.id.in_(member_of)))
        result = await self.db.execute(
            stmt.order_by(Tree.created_at.desc(), Tree.id.desc()).execution_options(populate_existing=True)
        )
        return result.scalars().all()

    async def _slug_taken(self, slug: str) -> bool:
        result = await self.db.execute(select(Tree.id).filter(Tree.slug == slug))
        return result.first() is not None

    async def create_tree(
        self,
        principal: Principal,
        name: str,
        moderation_mode: ModerationMode = ModerationMode.MODERATED,
        photos: Iterable[str] = (),
        **details,
    ) -> Tree:
        if not principal.is_authenticated:
            raise UnauthenticatedError()
        if not name or not name.strip():
            raise ValidationError("Tree name is required")

        photos = list(photos)
        base = slugify(name)
        start = 0
        for attempt in range(1, self.settings.SLUG_MAX_RETRIES + 1):
            slug, counter = await generate_unique_slug(base, self._slug_taken, start)
            tree = Tree(
                slug=slug,
                owner_id=principal.user_id,
                name=name.strip(),
                moderation_mode=moderation_mode,
                **details,
            )
            tree.media = [TreeMedia(url=url, uploaded_by=principal.user_id) for url in photos]
            self.db.add(tree)
            try:
                await self.db.flush()
                self.db.add(TreeMember(tree_id=tree.id, user_id=principal.user_id, role=MemberRole.OWNER))
                await self.db.commit()
            except IntegrityError:
                # Another request claimed the same slug between our check and insert
                await self.db.rollback()
                logger.warning(f"Slug {slug!r} collided on insert (attempt {attempt}), retrying")
                start = counter + 1
                continue
            logger.info(f"Created tree {tree.id} with slug {slug!r} for user {principal.user_id}")
            return await self.get_tree(tree.id)

        raise ConflictError(f"Could not assign a unique slug for {name!r}")

    async def repair_generated_slugs(self) -> List[Tuple[int, str, str]]:
        """
        Re-slugs trees whose slug still carries a timestamp from the old
        generator. Returns (tree_id, old_slug, new_slug) for each change.
        """
        trees = (await self.db.execute(select(Tree).order_by(Tree.id))).scalars().all()
        changed = []
        for tree in trees:
            if not looks_generated(tree.slug):
                continue

            async def taken_by_other(slug: str, tree_id: int = tree.id) -> bool:
                result = await self.db.execute(select(Tree.id).filter(Tree.slug == slug, Tree.id != tree_id))
                return result.first() is not None

            new_slug, _ = await generate_unique_slug(slugify(tree.name), taken_by_other)
            changed.append((tree.id, tree.slug, new_slug))
            tree.slug = new_slug
            # Flush per tree so the next uniqueness check sees this slug
            await self.db.flush()
        await self._commit()
        return changed

    async def update_tree(
        self, principal: Principal, tree_id: int, photos: Optional[Iterable[str]] = None, **changes
    ) -> Tree:
        await self.resolver.require(principal, Action.EDIT, Resource.tree(tree_id))
        tree = await self.get_tree(tree_id)

        if "name" in changes and not (changes["name"] or "").strip():
            raise ValidationError("Tree name is required")
        if "moderation_mode" in changes and changes["moderation_mode"] is None:
            raise ValidationError("Moderation mode cannot be empty")
        # The slug is fixed once assigned
        changes.pop("slug", None)
        for key, value in changes.items():
            setattr(tree, key, value)

        if photos is not None:
            await self.db.execute(delete(TreeMedia).where(TreeMedia.tree_id == tree_id))
            self.db.add_all(
                [TreeMedia(tree_id=tree_id, url=url, uploaded_by=principal.user_id) for url in photos]
            )
        await self._commit()
        return await self.get_tree(tree_id)

    async def delete_tree(self, principal: Principal, tree_id: int) -> List[str]:
        """Deletes the tree and everything under it. Returns the removed media URLs."""
        await self.resolver.require(principal, Action.DELETE, Resource.tree(tree_id))

        story_ids = select(Story.id).filter(Story.tree_id == tree_id)
        branch_ids = select(Branch.id).filter(Branch.tree_id == tree_id)

        urls = []
        for stmt in (
            select(TreeMedia.url).filter(TreeMedia.tree_id == tree_id),
            select(BranchMedia.url).filter(BranchMedia.branch_id.in_(branch_ids)),
            select(StoryMedia.url).filter(StoryMedia.story_id.in_(story_ids)),
        ):
            urls.extend((await self.db.execute(stmt)).scalars().all())

        await self.db.execute(delete(StoryMedia).where(StoryMedia.story_id.in_(story_ids)))
        await self.db.execute(delete(Story).where(Story.tree_id == tree_id))
        await self.db.execute(delete(BranchMedia).where(BranchMedia.branch_id.in_(branch_ids)))
        await self.db.execute(delete(BranchPermission).where(BranchPermission.branch_id.in_(branch_ids)))
        await self.db.execute(delete(Branch).where(Branch.tree_id == tree_id))
        await self.db.execute(delete(TreeMember).where(TreeMember.tree_id == tree_id))
        await self.db.execute(delete(TreeMedia).where(TreeMedia.tree_id == tree_id))
        await self.db.execute(delete(Tree).where(Tree.id == tree_id))
        await self._commit()

        logger.info(f"Deleted tree {tree_id} ({len(urls)} media files)")
        return urls

    # --- branch types ---

    async def ensure_system_branch_types(self) -> List[str]:
        """Inserts any missing system branch type. Returns the names it created."""
        existing = set((await self.db.execute(select(BranchType.name))).scalars().all())
        created = []
        for name, description in SYSTEM_BRANCH_TYPES:
            if name not in existing:
                self.db.add(BranchType(name=name, description=description, is_system=True))
                created.append(name)
        await self._commit()
        return created

    async def list_branch_types(self) -> List[BranchType]:
        result = await self.db.execute(select(BranchType).order_by(BranchType.id))
        return result.scalars().all()

    async def resolve_branch_type(self, ref: BranchTypeRef) -> BranchType:
        if isinstance(ref, ById):
            stmt = select(BranchType).filter(BranchType.id == ref.id)
        elif isinstance(ref, ByName):
            stmt = select(BranchType).filter(BranchType.name == ref.name)
        else:
            raise ValidationError("Branch type must be referenced by id or by name")
        branch_type = (await self.db.execute(stmt)).scalars().first()
        if not branch_type:
            raise ValidationError("Branch type not found")
        return branch_type

    # --- branches ---

    async def get_branch(self, branch_id: int) -> Branch:
        result = await self.db.execute(
            select(Branch).filter(Branch.id == branch_id).execution_options(populate_existing=True)
        )
        branch = result.scalars().first()
        if not branch:
            raise NotFoundError("Branch not found")
        return branch

    async def child_branch_ids(self, branch_id: int) -> List[int]:
        result = await self.db.execute(
            select(Branch.id).filter(Branch.parent_branch_id == branch_id).order_by(Branch.id)
        )
        return result.scalars().all()

    async def list_branches(self, tree_id: int) -> List[Branch]:
        await self.get_tree(tree_id)
        result = await self.db.execute(
            select(Branch)
            .filter(Branch.tree_id == tree_id)
            .order_by(Branch.date_occurred, Branch.id)
            .execution_options(populate_existing=True)
        )
        return result.scalars().all()

    async def _parent_index(self, tree_id: int) -> Dict[int, Optional[int]]:
        result = await self.db.execute(
            select(Branch.id, Branch.parent_branch_id).filter(Branch.tree_id == tree_id)
        )
        return {branch_id: parent_id for branch_id, parent_id in result.all()}

    async def create_branch(
        self,
        principal: Principal,
        tree_id: int,
        branch_type: BranchTypeRef,
        title: str,
        parent_branch_id: Optional[int] = None,
        photos: Iterable[str] = (),
        **details,
    ) -> Branch:
        await self.resolver.require(principal, Action.CONTRIBUTE, Resource.tree(tree_id))
        tree = await self.get_tree(tree_id)

        if parent_branch_id is not None:
            parents = await self._parent_index(tree_id)
            if parent_branch_id not in parents:
                raise ValidationError("Parent branch must belong to the same tree")
        resolved_type = await self.resolve_branch_type(branch_type)

        # Only the owner bypasses moderation on a moderated tree
        needs_approval = tree.moderation_mode == ModerationMode.MODERATED and tree.owner_id != principal.user_id
        branch = Branch(
            tree_id=tree_id,
            parent_branch_id=parent_branch_id,
            branch_type_id=resolved_type.id,
            title=title,
            created_by_user_id=principal.user_id,
            approved=not needs_approval,
            approved_by=None if needs_approval else principal.user_id,
            approved_at=None if needs_approval else datetime.now(timezone.utc),
            **details,
        )
        branch.media = [BranchMedia(url=url, uploaded_by=principal.user_id) for url in photos]
        self.db.add(branch)
        await self._commit()

        logger.info(f"Created branch {branch.id} in tree {tree_id} (approved={branch.approved})")
        return await self.get_branch(branch.id)

    async def update_branch(
        self,
        principal: Principal,
        branch_id: int,
        parent_branch_id=_UNCHANGED,
        branch_type: Optional[BranchTypeRef] = None,
        photos: Optional[Iterable[str]] = None,
        **changes,
    ) -> Branch:
        await self.resolver.require(principal, Action.EDIT, Resource.branch(branch_id))
        branch = await self.get_branch(branch_id)

        if "title" in changes and not (changes["title"] or "").strip():
            raise ValidationError("Branch title is required")
        # tree_id and approval fields are not editable
        for key in ("tree_id", "approved", "approved_by", "approved_at", "created_by_user_id"):
            changes.pop(key, None)

        if parent_branch_id is not _UNCHANGED and parent_branch_id != branch.parent_branch_id:
            if parent_branch_id is not None:
                parents = await self._parent_index(branch.tree_id)
                if parent_branch_id not in parents:
                    raise ValidationError("Parent branch must belong to the same tree")
                if creates_cycle(branch.id, parent_branch_id, parents):
                    raise ValidationError("A branch cannot be moved under itself or one of its descendants")
            branch.parent_branch_id = parent_branch_id

        if branch_type is not None:
            branch.branch_type_id = (await self.resolve_branch_type(branch_type)).id
        for key, value in changes.items():
            setattr(branch, key, value)

        if photos is not None:
            await self.db.execute(delete(BranchMedia).where(BranchMedia.branch_id == branch_id))
            self.db.add_all(
                [BranchMedia(branch_id=branch_id, url=url, uploaded_by=principal.user_id) for url in photos]
            )
        await self._commit()
        return await self.get_branch(branch_id)

    async def delete_branch(self, principal: Principal, branch_id: int) -> List[str]:
        """Deletes the branch and its whole subtree. Returns the removed media URLs."""
        facts = await self.resolver.require(principal, Action.DELETE, Resource.branch(branch_id))

        children = defaultdict(list)
        for child_id, parent_id in (await self._parent_index(facts.tree_id)).items():
            children[parent_id].append(child_id)
        doomed = collect_subtree(branch_id, children)

        urls = (
            await self.db.execute(select(BranchMedia.url).filter(BranchMedia.branch_id.in_(doomed)))
        ).scalars().all()

        # Stories are not part of the subtree; they fall back to the tree itself
        await self.db.execute(update(Story).where(Story.branch_id.in_(doomed)).values(branch_id=None))
        await self.db.execute(delete(BranchMedia).where(BranchMedia.branch_id.in_(doomed)))
        await self.db.execute(delete(BranchPermission).where(BranchPermission.branch_id.in_(doomed)))
        await self.db.execute(delete(Branch).where(Branch.id.in_(doomed)))
        await self._commit()

        logger.info(f"Deleted branch {branch_id} and {len(doomed) - 1} descendants")
        return list(urls)

    # --- roster and branch grants ---

    async def list_members(self, principal: Principal, tree_id: int) -> List[TreeMember]:
        await self.resolver.require(principal, Action.VIEW, Resource.tree(tree_id))
        return await self.resolver.memberships.list_members(tree_id)

    async def _require_user(self, user_id: int):
        result = await self.db.execute(select(User.id).filter(User.id == user_id))
        if result.first() is None:
            raise ValidationError("User not found")

    async def set_member_role(
        self, principal: Principal, tree_id: int, user_id: int, role: MemberRole
    ) -> TreeMember:
        facts = await self.resolver.require(principal, Action.MANAGE_MEMBERS, Resource.tree(tree_id))
        # Ownership transfer is not supported, so OWNER is never handed out or taken away here
        if role == MemberRole.OWNER:
            raise ValidationError("The owner role cannot be granted")
        if user_id == facts.tree_owner_id:
            raise ValidationError("The tree owner's role cannot be changed")
        await self._require_user(user_id)
        member = await self.resolver.memberships.set_member_role(tree_id, user_id, role)
        logger.info(f"User {user_id} is now {role.value} of tree {tree_id}")
        return member

    async def remove_member(self, principal: Principal, tree_id: int, user_id: int) -> None:
        facts = await self.resolver.require(principal, Action.MANAGE_MEMBERS, Resource.tree(tree_id))
        if user_id == facts.tree_owner_id:
            raise ValidationError("The tree owner cannot be removed")
        if not await self.resolver.memberships.remove_member(tree_id, user_id):
            raise NotFoundError("Member not found")

    async def set_branch_role(
        self, principal: Principal, branch_id: int, user_id: int, role: BranchRole
    ) -> BranchPermission:
        await self.resolver.require(principal, Action.MANAGE_MEMBERS, Resource.branch(branch_id))
        await self._require_user(user_id)
        return await self.resolver.memberships.set_branch_role(branch_id, user_id, role)

    async def remove_branch_role(self, principal: Principal, branch_id: int, user_id: int) -> None:
        await self.resolver.require(principal, Action.MANAGE_MEMBERS, Resource.branch(branch_id))
        if not await self.resolver.memberships.remove_branch_role(branch_id, user_id):
            raise NotFoundError("Branch permission not found")
