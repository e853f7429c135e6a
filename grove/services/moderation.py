"""Story moderation: Pending -> Approved, or Pending -> rejected (deleted).

Approval is terminal. Approving twice is a conflict, and approved stories can
only be removed through delete_story. Notifications go out after the commit
and never influence the outcome of a transition.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from sqlalchemy import delete, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from grove.config import get_settings
from grove.errors import ConflictError, NotFoundError, UnauthenticatedError, ValidationError
from grove.models.branch import Branch
from grove.models.story import Story, StoryMedia
from grove.models.tree import Tree
from grove.services.identity import Principal
from grove.services.notifier import NotificationKind, Notifier, deliver
from grove.services.permissions import Action, PermissionResolver, Resource, evaluate
from grove.services.user_service import UserService

logger = logging.getLogger(__name__)

# FastAPI's BackgroundTasks.add_task fits this shape
Scheduler = Callable[..., Any]


@dataclass
class RejectionOutcome:
    story_id: int
    tree_id: int
    tree_slug: str
    media_urls: List[str] = field(default_factory=list)


class ModerationEngine:
    def __init__(
        self,
        db: AsyncSession,
        notifier: Notifier,
        schedule: Optional[Scheduler] = None,
        resolver: Optional[PermissionResolver] = None,
    ):
        self.db = db
        self.notifier = notifier
        # Without a scheduler notifications are delivered inline, after commit
        self.schedule = schedule
        self.resolver = resolver or PermissionResolver(db)
        self.memberships = self.resolver.memberships
        self.settings = get_settings()

    async def _commit(self):
        try:
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise

    async def _dispatch(self, kind: NotificationKind, payloads: Iterable[Dict[str, Any]]):
        for payload in payloads:
            if self.schedule is not None:
                self.schedule(deliver, self.notifier, kind, payload)
            else:
                await deliver(self.notifier, kind, payload)

    def _links(self, story_id: int, tree: Tree) -> Dict[str, str]:
        app_url = self.settings.APP_URL.rstrip("/")
        return {
            "approve_url": f"{app_url}/stories/{story_id}/approve",
            "reject_url": f"{app_url}/stories/{story_id}/reject",
            "view_url": f"{app_url}/trees/{tree.slug}",
        }

    async def get_story(self, story_id: int) -> Story:
        result = await self.db.execute(
            select(Story).filter(Story.id == story_id).execution_options(populate_existing=True)
        )
        story = result.scalars().first()
        if not story:
            raise NotFoundError("Story not found")
        return story

    async def _get_tree(self, tree_id: int) -> Tree:
        result = await self.db.execute(select(Tree).filter(Tree.id == tree_id))
        tree = result.scalars().first()
        if not tree:
            raise NotFoundError("Tree not found")
        return tree

    async def view_story(self, principal: Principal, story_id: int) -> Story:
        await self.resolver.require(principal, Action.VIEW, Resource.story(story_id))
        return await self.get_story(story_id)

    async def list_stories(
        self, principal: Principal, tree_id: int, include_pending: bool = False
    ) -> List[Story]:
        facts = await self.resolver.load_facts(principal, Resource.tree(tree_id))

        stmt = select(Story).filter(Story.tree_id == tree_id)
        if include_pending and principal.is_authenticated:
            if not evaluate(principal, Action.MODERATE, facts):
                # Non-moderators only ever see their own pending stories
                stmt = stmt.filter(or_(Story.approved.is_(True), Story.author_id == principal.user_id))
        else:
            stmt = stmt.filter(Story.approved.is_(True))

        result = await self.db.execute(
            stmt.order_by(Story.created_at.desc(), Story.id.desc()).execution_options(populate_existing=True)
        )
        return result.scalars().all()

    async def submit_story(
        self,
        principal: Principal,
        tree_id: int,
        title: str,
        content: str,
        branch_id: Optional[int] = None,
        photos: Iterable[str] = (),
    ) -> Story:
        if not principal.is_authenticated:
            raise UnauthenticatedError()
        if not title.strip() or not content.strip():
            raise ValidationError("Title and content are required")
        await self.resolver.require(principal, Action.SUBMIT_STORY, Resource.tree(tree_id))

        if branch_id is not None:
            result = await self.db.execute(select(Branch.tree_id).filter(Branch.id == branch_id))
            if result.scalars().first() != tree_id:
                raise ValidationError("Branch must belong to the story's tree")

        story = Story(
            tree_id=tree_id,
            branch_id=branch_id,
            author_id=principal.user_id,
            title=title,
            content=content,
            approved=False,
        )
        story.media = [StoryMedia(url=url, uploaded_by=principal.user_id) for url in photos]
        self.db.add(story)
        await self._commit()
        logger.info(f"Story {story.id} submitted to tree {tree_id} by user {principal.user_id}")

        tree = await self._get_tree(tree_id)
        author = await UserService(self.db).get_user(principal.user_id)
        moderators = await self.memberships.list_moderators(tree_id)
        links = self._links(story.id, tree)
        await self._dispatch(
            NotificationKind.STORY_SUBMITTED,
            [
                {
                    "story_id": story.id,
                    "tree_id": tree_id,
                    "tree_name": tree.name,
                    "story_title": title,
                    "author_name": author.name if author else None,
                    "recipient_email": member.user.email,
                    "recipient_name": member.user.name,
                    "recipient_phone": member.user.phone,
                    **links,
                }
                for member in moderators
            ],
        )
        return await self.get_story(story.id)

    async def approve_story(self, principal: Principal, story_id: int) -> Story:
        await self.resolver.require(principal, Action.MODERATE, Resource.story(story_id))

        # Conditional update: of two concurrent approvals exactly one matches
        result = await self.db.execute(
            update(Story)
            .where(Story.id == story_id, Story.approved.is_(False))
            .values(approved=True, approved_by=principal.user_id, approved_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await self.db.rollback()
            raise ConflictError("Story is already approved")
        await self._commit()

        logger.info(f"Story {story_id} approved by user {principal.user_id}")
        return await self.get_story(story_id)

    async def reject_story(
        self, principal: Principal, story_id: int, reason: Optional[str] = None
    ) -> RejectionOutcome:
        facts = await self.resolver.require(principal, Action.MODERATE, Resource.story(story_id))
        if facts.approved:
            raise ConflictError("Approved stories cannot be rejected")

        story = await self.get_story(story_id)
        tree = await self._get_tree(story.tree_id)
        payload = {
            "story_id": story.id,
            "tree_id": tree.id,
            "tree_name": tree.name,
            "story_title": story.title,
            "recipient_email": story.author.email,
            "recipient_name": story.author.name,
            "recipient_phone": story.author.phone,
            "reason": reason,
        }
        outcome = RejectionOutcome(
            story_id=story.id,
            tree_id=tree.id,
            tree_slug=tree.slug,
            media_urls=[media.url for media in story.media],
        )

        await self.db.execute(delete(StoryMedia).where(StoryMedia.story_id == story_id))
        result = await self.db.execute(
            delete(Story)
            .where(Story.id == story_id, Story.approved.is_(False))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            # Approved (or removed) by someone else since we looked
            await self.db.rollback()
            raise ConflictError("Story is no longer pending")
        await self._commit()
        self.db.expunge(story)

        logger.info(f"Story {story_id} rejected by user {principal.user_id}")
        await self._dispatch(NotificationKind.STORY_REJECTED, [payload])
        return outcome

    async def edit_story(
        self, principal: Principal, story_id: int, photos: Optional[Iterable[str]] = None, **changes
    ) -> Story:
        await self.resolver.require(principal, Action.EDIT, Resource.story(story_id))
        story = await self.get_story(story_id)

        for key in ("title", "content"):
            if key in changes:
                value = changes.pop(key)
                if not value or not value.strip():
                    raise ValidationError(f"Story {key} cannot be empty")
                setattr(story, key, value)

        if photos is not None:
            await self.db.execute(delete(StoryMedia).where(StoryMedia.story_id == story_id))
            self.db.add_all(
                [StoryMedia(story_id=story_id, url=url, uploaded_by=principal.user_id) for url in photos]
            )
        await self._commit()
        return await self.get_story(story_id)

    async def delete_story(self, principal: Principal, story_id: int) -> List[str]:
        await self.resolver.require(principal, Action.DELETE, Resource.story(story_id))

        urls = (
            await self.db.execute(select(StoryMedia.url).filter(StoryMedia.story_id == story_id))
        ).scalars().all()
        await self.db.execute(delete(StoryMedia).where(StoryMedia.story_id == story_id))
        await self.db.execute(delete(Story).where(Story.id == story_id))
        await self._commit()

        logger.info(f"Story {story_id} deleted by user {principal.user_id}")
        return list(urls)
