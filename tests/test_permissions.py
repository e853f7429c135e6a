import pytest
from grove.errors import ForbiddenError, NotFoundError, UnauthenticatedError
from grove.models.branch import BranchRole
from grove.models.tree import MemberRole
from grove.services.identity import ANONYMOUS, Principal
from grove.services.permissions import (
    Action,
    PermissionResolver,
    Resource,
    ResourceFacts,
    ResourceKind,
    evaluate,
)

OWNER_ID = 1
CALLER = Principal(user_id=2)
SUPER = Principal(user_id=3, is_super_admin=True)


def tree_facts(role=None):
    return ResourceFacts(kind=ResourceKind.TREE, tree_id=10, tree_owner_id=OWNER_ID, tree_role=role)


def branch_facts(role=None, creator_id=OWNER_ID, branch_role=None):
    return ResourceFacts(
        kind=ResourceKind.BRANCH,
        tree_id=10,
        tree_owner_id=OWNER_ID,
        creator_id=creator_id,
        tree_role=role,
        branch_role=branch_role,
    )


def story_facts(role=None, author_id=OWNER_ID, approved=False):
    return ResourceFacts(
        kind=ResourceKind.STORY,
        tree_id=10,
        tree_owner_id=OWNER_ID,
        creator_id=author_id,
        approved=approved,
        tree_role=role,
    )


@pytest.mark.parametrize("role", [None] + list(MemberRole))
def test_edit_tree_requires_owner_or_admin_role(role):
    expected = role in (MemberRole.OWNER, MemberRole.ADMIN)
    assert evaluate(CALLER, Action.EDIT, tree_facts(role)) is expected


def test_super_admin_can_do_anything():
    for action in Action:
        assert evaluate(SUPER, action, tree_facts())
        assert evaluate(SUPER, action, story_facts())


def test_tree_owner_can_edit_and_delete_without_a_role_row():
    owner = Principal(user_id=OWNER_ID)
    assert evaluate(owner, Action.EDIT, tree_facts())
    assert evaluate(owner, Action.DELETE, tree_facts())


def test_deleting_a_tree_is_never_delegated():
    assert not evaluate(CALLER, Action.DELETE, tree_facts(MemberRole.ADMIN))
    assert not evaluate(CALLER, Action.DELETE, tree_facts(MemberRole.OWNER))


@pytest.mark.parametrize("role", [None, MemberRole.VIEWER, MemberRole.CONTRIBUTOR])
def test_branch_creator_can_always_edit_and_delete(role):
    facts = branch_facts(role, creator_id=CALLER.user_id)
    assert evaluate(CALLER, Action.DELETE, facts)
    assert evaluate(CALLER, Action.EDIT, facts)


def test_other_users_branch_needs_admin():
    assert not evaluate(CALLER, Action.DELETE, branch_facts(MemberRole.MODERATOR))
    assert not evaluate(CALLER, Action.EDIT, branch_facts(MemberRole.CONTRIBUTOR))
    assert evaluate(CALLER, Action.DELETE, branch_facts(MemberRole.ADMIN))


def test_branch_editor_grant_covers_edit_only():
    facts = branch_facts(branch_role=BranchRole.BRANCH_EDITOR)
    assert evaluate(CALLER, Action.EDIT, facts)
    assert not evaluate(CALLER, Action.DELETE, facts)
    assert not evaluate(CALLER, Action.MANAGE_MEMBERS, facts)


def test_branch_admin_grant_does_not_include_moderation():
    facts = branch_facts(branch_role=BranchRole.BRANCH_ADMIN)
    for action in (Action.VIEW, Action.EDIT, Action.DELETE, Action.CONTRIBUTE, Action.MANAGE_MEMBERS):
        assert evaluate(CALLER, action, facts)
    assert not evaluate(CALLER, Action.MODERATE, facts)


def test_contribute_needs_contributor():
    assert not evaluate(CALLER, Action.CONTRIBUTE, tree_facts(MemberRole.VIEWER))
    assert evaluate(CALLER, Action.CONTRIBUTE, tree_facts(MemberRole.CONTRIBUTOR))


def test_any_signed_in_user_may_submit_a_story():
    assert evaluate(CALLER, Action.SUBMIT_STORY, tree_facts())
    assert not evaluate(ANONYMOUS, Action.SUBMIT_STORY, tree_facts())


def test_anonymous_reads_public_resources_only():
    assert evaluate(ANONYMOUS, Action.VIEW, tree_facts())
    assert evaluate(ANONYMOUS, Action.VIEW, branch_facts())
    assert evaluate(ANONYMOUS, Action.VIEW, story_facts(approved=True))
    assert not evaluate(ANONYMOUS, Action.VIEW, story_facts(approved=False))
    assert not evaluate(ANONYMOUS, Action.EDIT, tree_facts())


def test_pending_story_visibility():
    assert evaluate(CALLER, Action.VIEW, story_facts(author_id=CALLER.user_id))
    assert not evaluate(CALLER, Action.VIEW, story_facts(MemberRole.CONTRIBUTOR))
    assert evaluate(CALLER, Action.VIEW, story_facts(MemberRole.MODERATOR))


def test_author_edits_only_while_pending_but_may_always_delete():
    pending = story_facts(author_id=CALLER.user_id, approved=False)
    approved = story_facts(author_id=CALLER.user_id, approved=True)
    assert evaluate(CALLER, Action.EDIT, pending)
    assert not evaluate(CALLER, Action.EDIT, approved)
    assert evaluate(CALLER, Action.DELETE, approved)


def test_moderators_manage_stories_in_any_state():
    for approved in (False, True):
        facts = story_facts(MemberRole.MODERATOR, approved=approved)
        assert evaluate(CALLER, Action.EDIT, facts)
        assert evaluate(CALLER, Action.DELETE, facts)
    assert evaluate(CALLER, Action.MODERATE, story_facts(MemberRole.MODERATOR))
    assert not evaluate(CALLER, Action.MODERATE, story_facts(MemberRole.CONTRIBUTOR))


@pytest.mark.asyncio
async def test_resolver_reports_missing_resources_as_not_found(db_session, principals):
    resolver = PermissionResolver(db_session)
    with pytest.raises(NotFoundError):
        await resolver.load_facts(principals["alice"], Resource.tree(999))
    with pytest.raises(NotFoundError):
        await resolver.require(ANONYMOUS, Action.VIEW, Resource.story(999))


@pytest.mark.asyncio
async def test_resolver_loads_roles_and_raises_on_deny(db_session, principals, memorial):
    resolver = PermissionResolver(db_session)
    tree = Resource.tree(memorial.id)

    facts = await resolver.load_facts(principals["carol"], tree)
    assert facts.tree_role == MemberRole.MODERATOR
    assert facts.tree_owner_id == principals["alice"].user_id

    assert await resolver.can_perform(principals["alice"], Action.EDIT, tree)
    with pytest.raises(UnauthenticatedError):
        await resolver.require(ANONYMOUS, Action.EDIT, tree)
    with pytest.raises(ForbiddenError):
        await resolver.require(principals["bob"], Action.EDIT, tree)
