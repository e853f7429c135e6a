"""Who may do what on trees, branches and stories.

Decisions are made by `evaluate`, a pure function of the principal, the action
and a `ResourceFacts` snapshot. `PermissionResolver` loads that snapshot from
the database (one query for the resource, at most two for the caller's roles)
and reports a missing resource as NotFoundError rather than as a denial.

Resolution order, first match wins:

1. super-admin may do anything;
2. ownership: a tree owner may edit/delete the tree, a branch creator may
   edit/delete the branch, a story author may view and delete the story and
   edit it while it is pending;
3. explicit branch grants: BRANCH_ADMIN covers every branch-scoped action,
   BRANCH_EDITOR covers edit;
4. the tree role lattice OWNER > ADMIN > MODERATOR > CONTRIBUTOR > VIEWER;
5. deny.

Ownership and grants come before the lattice so that e.g. a CONTRIBUTOR who
created a branch can still edit it.
"""
import enum
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from grove.errors import ForbiddenError, NotFoundError, UnauthenticatedError
from grove.models.branch import Branch, BranchRole
from grove.models.story import Story
from grove.models.tree import MemberRole, Tree
from grove.services.identity import Principal
from grove.services.membership import MembershipStore

logger = logging.getLogger(__name__)


class Action(str, enum.Enum):
    VIEW = "view"
    EDIT = "edit"
    DELETE = "delete"
    MODERATE = "moderate"
    CONTRIBUTE = "contribute"
    SUBMIT_STORY = "submit_story"
    MANAGE_MEMBERS = "manage_members"


class ResourceKind(str, enum.Enum):
    TREE = "tree"
    BRANCH = "branch"
    STORY = "story"


@dataclass(frozen=True)
class Resource:
    kind: ResourceKind
    id: int

    @classmethod
    def tree(cls, tree_id: int) -> "Resource":
        return cls(ResourceKind.TREE, tree_id)

    @classmethod
    def branch(cls, branch_id: int) -> "Resource":
        return cls(ResourceKind.BRANCH, branch_id)

    @classmethod
    def story(cls, story_id: int) -> "Resource":
        return cls(ResourceKind.STORY, story_id)


@dataclass(frozen=True)
class ResourceFacts:
    """Everything `evaluate` needs to know about a resource and the caller's roles."""

    kind: ResourceKind
    tree_id: int
    tree_owner_id: int
    # Branch creator or story author
    creator_id: Optional[int] = None
    # Stories only
    approved: Optional[bool] = None
    tree_role: Optional[MemberRole] = None
    branch_role: Optional[BranchRole] = None


ROLE_RANK = {
    MemberRole.VIEWER: 0,
    MemberRole.CONTRIBUTOR: 10,
    MemberRole.MODERATOR: 20,
    MemberRole.ADMIN: 30,
    MemberRole.OWNER: 40,
}


def role_at_least(role: Optional[MemberRole], minimum: MemberRole) -> bool:
    if role is None:
        return False
    return ROLE_RANK[role] >= ROLE_RANK[minimum]


_BRANCH_GRANTS = {
    BranchRole.BRANCH_ADMIN: frozenset(
        {Action.VIEW, Action.EDIT, Action.DELETE, Action.CONTRIBUTE, Action.MANAGE_MEMBERS}
    ),
    BranchRole.BRANCH_EDITOR: frozenset({Action.VIEW, Action.EDIT}),
}

# Minimum tree role for the lattice fallback. Pairs that are missing are never
# granted by role alone (deleting a tree is owner-only).
_REQUIRED_TREE_ROLE = {
    (ResourceKind.TREE, Action.EDIT): MemberRole.ADMIN,
    (ResourceKind.TREE, Action.MODERATE): MemberRole.MODERATOR,
    (ResourceKind.TREE, Action.CONTRIBUTE): MemberRole.CONTRIBUTOR,
    (ResourceKind.TREE, Action.MANAGE_MEMBERS): MemberRole.ADMIN,
    (ResourceKind.BRANCH, Action.EDIT): MemberRole.ADMIN,
    (ResourceKind.BRANCH, Action.DELETE): MemberRole.ADMIN,
    (ResourceKind.BRANCH, Action.MODERATE): MemberRole.MODERATOR,
    (ResourceKind.BRANCH, Action.CONTRIBUTE): MemberRole.CONTRIBUTOR,
    (ResourceKind.BRANCH, Action.MANAGE_MEMBERS): MemberRole.ADMIN,
    # Pending stories; approved ones are public
    (ResourceKind.STORY, Action.VIEW): MemberRole.MODERATOR,
    (ResourceKind.STORY, Action.EDIT): MemberRole.MODERATOR,
    (ResourceKind.STORY, Action.DELETE): MemberRole.MODERATOR,
    (ResourceKind.STORY, Action.MODERATE): MemberRole.MODERATOR,
}


def _is_public_read(action: Action, facts: ResourceFacts) -> bool:
    if action != Action.VIEW:
        return False
    return facts.kind != ResourceKind.STORY or bool(facts.approved)


def _owns(user_id: int, action: Action, facts: ResourceFacts) -> bool:
    if facts.kind == ResourceKind.TREE:
        return user_id == facts.tree_owner_id and action in (Action.EDIT, Action.DELETE)
    if user_id != facts.creator_id:
        return False
    if facts.kind == ResourceKind.BRANCH:
        return action in (Action.EDIT, Action.DELETE)
    if action in (Action.VIEW, Action.DELETE):
        return True
    return action == Action.EDIT and not facts.approved


def evaluate(principal: Principal, action: Action, facts: ResourceFacts) -> bool:
    if principal.is_super_admin:
        return True

    if not principal.is_authenticated:
        # Trees are public; anonymous callers may read but never mutate
        return _is_public_read(action, facts)

    if _owns(principal.user_id, action, facts):
        return True

    if facts.kind == ResourceKind.BRANCH and facts.branch_role is not None:
        if action in _BRANCH_GRANTS[facts.branch_role]:
            return True

    if _is_public_read(action, facts):
        return True
    if action == Action.SUBMIT_STORY:
        return facts.kind == ResourceKind.TREE

    required = _REQUIRED_TREE_ROLE.get((facts.kind, action))
    if required is None:
        return False
    return role_at_least(facts.tree_role, required)


class PermissionResolver:
    def __init__(self, db: AsyncSession, memberships: Optional[MembershipStore] = None):
        self.db = db
        self.memberships = memberships or MembershipStore(db)

    async def load_facts(self, principal: Principal, resource: Resource) -> ResourceFacts:
        if resource.kind == ResourceKind.TREE:
            stmt = select(Tree.id, Tree.owner_id).filter(Tree.id == resource.id)
        elif resource.kind == ResourceKind.BRANCH:
            stmt = (
                select(Branch.tree_id, Tree.owner_id, Branch.created_by_user_id)
                .join(Tree, Tree.id == Branch.tree_id)
                .filter(Branch.id == resource.id)
            )
        else:
            stmt = (
                select(Story.tree_id, Tree.owner_id, Story.author_id, Story.approved)
                .join(Tree, Tree.id == Story.tree_id)
                .filter(Story.id == resource.id)
            )
        row = (await self.db.execute(stmt)).first()
        if row is None:
            raise NotFoundError(f"{resource.kind.value.capitalize()} not found")

        tree_id, owner_id = row[0], row[1]
        creator_id = row[2] if len(row) > 2 else None
        approved = row[3] if len(row) > 3 else None

        tree_role = None
        branch_role = None
        # Super-admins and anonymous callers never need the role lookups
        if principal.is_authenticated and not principal.is_super_admin:
            tree_role = await self.memberships.get_tree_role(tree_id, principal.user_id)
            if resource.kind == ResourceKind.BRANCH:
                branch_role = await self.memberships.get_branch_role(resource.id, principal.user_id)

        return ResourceFacts(
            kind=resource.kind,
            tree_id=tree_id,
            tree_owner_id=owner_id,
            creator_id=creator_id,
            approved=approved,
            tree_role=tree_role,
            branch_role=branch_role,
        )

    async def can_perform(self, principal: Principal, action: Action, resource: Resource) -> bool:
        facts = await self.load_facts(principal, resource)
        return evaluate(principal, action, facts)

    async def require(self, principal: Principal, action: Action, resource: Resource) -> ResourceFacts:
        """Like can_perform, but raises on deny. Returns the facts for reuse by the caller."""
        facts = await self.load_facts(principal, resource)
        if not evaluate(principal, action, facts):
            logger.info(
                f"Denied {action.value} on {resource.kind.value} {resource.id} for user {principal.user_id}"
            )
            if not principal.is_authenticated:
                raise UnauthenticatedError()
            raise ForbiddenError(
                f"You do not have permission to {action.value.replace('_', ' ')} this {resource.kind.value}"
            )
        return facts
