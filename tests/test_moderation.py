import pytest
from conftest import RecordingNotifier
from grove.errors import ConflictError, ForbiddenError, NotFoundError, UnauthenticatedError, ValidationError
from grove.services.hierarchy import ByName, HierarchyManager
from grove.services.identity import ANONYMOUS
from grove.services.moderation import ModerationEngine
from grove.services.notifier import NotificationKind


@pytest.fixture
def engine_for(db_session):
    def build(notifier):
        return ModerationEngine(db_session, notifier)
    return build


@pytest.mark.asyncio
async def test_submit_notifies_every_moderator(db_session, principals, memorial, notifier, engine_for):
    story = await engine_for(notifier).submit_story(
        principals["bob"], memorial.id, "Her first compiler", "It started with A-0.", photos=["/uploads/s.jpg"]
    )

    assert story.approved is False
    assert story.author.name == "Bob"
    assert [m.url for m in story.media] == ["/uploads/s.jpg"]

    sent = notifier.of_kind(NotificationKind.STORY_SUBMITTED)
    assert sorted(p["recipient_email"] for p in sent) == ["alice@example.com", "carol@example.com"]
    assert sent[0]["approve_url"] == f"http://app.test/stories/{story.id}/approve"
    assert sent[0]["reject_url"] == f"http://app.test/stories/{story.id}/reject"
    assert sent[0]["view_url"] == "http://app.test/trees/grace-hopper"


@pytest.mark.asyncio
async def test_submit_validation(db_session, principals, memorial, notifier, engine_for):
    engine = engine_for(notifier)
    with pytest.raises(UnauthenticatedError):
        await engine.submit_story(ANONYMOUS, memorial.id, "t", "c")
    with pytest.raises(ValidationError):
        await engine.submit_story(principals["bob"], memorial.id, "  ", "c")
    with pytest.raises(NotFoundError):
        await engine.submit_story(principals["bob"], 999, "t", "c")

    other = await HierarchyManager(db_session).create_tree(principals["alice"], "Other")
    branch = await HierarchyManager(db_session).create_branch(principals["alice"], other.id, ByName("charity"), "B")
    with pytest.raises(ValidationError):
        await engine.submit_story(principals["bob"], memorial.id, "t", "c", branch_id=branch.id)


@pytest.mark.asyncio
async def test_outsiders_may_submit_stories(db_session, principals, memorial, notifier, engine_for):
    # dave is only a viewer; root's membership is not needed either
    story = await engine_for(notifier).submit_story(principals["dave"], memorial.id, "A memory", "...")
    assert story.author_id == principals["dave"].user_id


@pytest.mark.asyncio
async def test_moderator_approves(db_session, principals, memorial, notifier, engine_for):
    engine = engine_for(notifier)
    story = await engine.submit_story(principals["bob"], memorial.id, "t", "c")

    approved = await engine.approve_story(principals["carol"], story.id)

    assert approved.approved is True
    assert approved.approved_by == principals["carol"].user_id
    assert approved.approved_at is not None


@pytest.mark.asyncio
async def test_second_approval_is_a_conflict(db_session, principals, memorial, notifier, engine_for):
    engine = engine_for(notifier)
    story_id = (await engine.submit_story(principals["bob"], memorial.id, "t", "c")).id
    await engine.approve_story(principals["carol"], story_id)

    with pytest.raises(ConflictError):
        await engine.approve_story(principals["alice"], story_id)

    story = await engine.get_story(story_id)
    assert story.approved_by == principals["carol"].user_id


@pytest.mark.asyncio
async def test_contributors_cannot_moderate(db_session, principals, memorial, notifier, engine_for):
    engine = engine_for(notifier)
    story_id = (await engine.submit_story(principals["dave"], memorial.id, "t", "c")).id

    with pytest.raises(ForbiddenError):
        await engine.approve_story(principals["bob"], story_id)
    with pytest.raises(ForbiddenError):
        await engine.reject_story(principals["bob"], story_id)
    with pytest.raises(UnauthenticatedError):
        await engine.approve_story(ANONYMOUS, story_id)


@pytest.mark.asyncio
async def test_reject_deletes_and_notifies_the_author_once(db_session, principals, memorial, notifier, engine_for):
    engine = engine_for(notifier)
    story_id = (await engine.submit_story(principals["bob"], memorial.id, "t", "c", photos=["/uploads/s.jpg"])).id

    outcome = await engine.reject_story(principals["carol"], story_id, reason="Duplicate of another story")

    assert outcome.tree_slug == "grace-hopper"
    assert outcome.media_urls == ["/uploads/s.jpg"]
    with pytest.raises(NotFoundError):
        await engine.view_story(principals["carol"], story_id)

    rejected = notifier.of_kind(NotificationKind.STORY_REJECTED)
    assert len(rejected) == 1
    assert rejected[0]["recipient_email"] == "bob@example.com"
    assert rejected[0]["recipient_phone"] == "+14155550101"
    assert rejected[0]["reason"] == "Duplicate of another story"


@pytest.mark.asyncio
async def test_reject_without_reason(db_session, principals, memorial, notifier, engine_for):
    engine = engine_for(notifier)
    story_id = (await engine.submit_story(principals["bob"], memorial.id, "t", "c")).id

    await engine.reject_story(principals["alice"], story_id)

    rejected = notifier.of_kind(NotificationKind.STORY_REJECTED)
    assert len(rejected) == 1
    assert rejected[0]["reason"] is None


@pytest.mark.asyncio
async def test_approved_stories_cannot_be_rejected(db_session, principals, memorial, notifier, engine_for):
    engine = engine_for(notifier)
    story_id = (await engine.submit_story(principals["bob"], memorial.id, "t", "c")).id
    await engine.approve_story(principals["carol"], story_id)

    with pytest.raises(ConflictError):
        await engine.reject_story(principals["carol"], story_id)
    assert (await engine.get_story(story_id)).approved is True
    assert notifier.of_kind(NotificationKind.STORY_REJECTED) == []


@pytest.mark.asyncio
async def test_notifier_failure_does_not_block_transitions(db_session, principals, memorial, engine_for):
    failing = RecordingNotifier(fail=True)
    engine = engine_for(failing)

    first = await engine.submit_story(principals["bob"], memorial.id, "one", "c")
    second = await engine.submit_story(principals["bob"], memorial.id, "two", "c")
    assert (await engine.approve_story(principals["carol"], first.id)).approved is True
    await engine.reject_story(principals["carol"], second.id, reason="Off topic")

    # Every attempt was made even though each one raised
    assert len(failing.of_kind(NotificationKind.STORY_SUBMITTED)) == 4
    assert len(failing.of_kind(NotificationKind.STORY_REJECTED)) == 1
    with pytest.raises(NotFoundError):
        await engine.get_story(second.id)


@pytest.mark.asyncio
async def test_scheduled_delivery(db_session, principals, memorial, notifier):
    scheduled = []
    engine = ModerationEngine(db_session, notifier, schedule=lambda fn, *args: scheduled.append((fn, args)))

    await engine.submit_story(principals["bob"], memorial.id, "t", "c")

    assert len(scheduled) == 2
    assert notifier.sent == []
    for fn, args in scheduled:
        await fn(*args)
    assert len(notifier.sent) == 2


@pytest.mark.asyncio
async def test_story_visibility(db_session, principals, memorial, notifier, engine_for):
    engine = engine_for(notifier)
    public = await engine.submit_story(principals["bob"], memorial.id, "public", "c")
    await engine.approve_story(principals["carol"], public.id)
    bobs = await engine.submit_story(principals["bob"], memorial.id, "bob pending", "c")
    daves = await engine.submit_story(principals["dave"], memorial.id, "dave pending", "c")

    async def titles(principal, include_pending):
        stories = await engine.list_stories(principal, memorial.id, include_pending=include_pending)
        return sorted(s.title for s in stories)

    assert await titles(ANONYMOUS, True) == ["public"]
    assert await titles(principals["bob"], False) == ["public"]
    assert await titles(principals["bob"], True) == ["bob pending", "public"]
    assert await titles(principals["carol"], True) == ["bob pending", "dave pending", "public"]

    assert (await engine.view_story(ANONYMOUS, public.id)).title == "public"
    assert (await engine.view_story(principals["bob"], bobs.id)).title == "bob pending"
    with pytest.raises(UnauthenticatedError):
        await engine.view_story(ANONYMOUS, bobs.id)
    with pytest.raises(ForbiddenError):
        await engine.view_story(principals["bob"], daves.id)


@pytest.mark.asyncio
async def test_editing_and_deleting_stories(db_session, principals, memorial, notifier, engine_for):
    engine = engine_for(notifier)
    story = await engine.submit_story(principals["bob"], memorial.id, "draft", "c")

    edited = await engine.edit_story(principals["bob"], story.id, title="final", photos=["/uploads/p.jpg"])
    assert edited.title == "final"
    assert [m.url for m in edited.media] == ["/uploads/p.jpg"]

    await engine.approve_story(principals["carol"], story.id)
    with pytest.raises(ForbiddenError):
        await engine.edit_story(principals["bob"], story.id, title="too late")
    assert (await engine.edit_story(principals["carol"], story.id, content="tidied")).content == "tidied"

    with pytest.raises(ForbiddenError):
        await engine.delete_story(principals["dave"], story.id)
    assert await engine.delete_story(principals["bob"], story.id) == ["/uploads/p.jpg"]
    with pytest.raises(NotFoundError):
        await engine.get_story(story.id)
