from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, status
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
from urllib.parse import quote, urlencode
from grove.config import get_settings
from grove.database import get_db
from grove.errors import ConflictError, GroveError
from grove.routers.deps import get_notifier, get_principal, get_storage, require_user
from grove.schemas.story import StoryCreate, StoryReject, StoryRejectResponse, StoryResponse, StoryUpdate
from grove.services.hierarchy import HierarchyManager
from grove.services.identity import Principal
from grove.services.moderation import ModerationEngine
from grove.services.notifier import Notifier
from grove.services.storage import LocalStorage, purge_media
import logging

router = APIRouter(prefix="/stories", tags=["stories"])
settings = get_settings()
logger = logging.getLogger(__name__)

def _engine(db: AsyncSession, notifier: Notifier, background_tasks: BackgroundTasks) -> ModerationEngine:
    return ModerationEngine(db, notifier, schedule=background_tasks.add_task)

def _app_redirect(path: str = "", **params) -> RedirectResponse:
    url = settings.APP_URL.rstrip("/") + path
    if params:
        url += "?" + urlencode(params)
    return RedirectResponse(url)

def _sign_in_redirect(request: Request) -> RedirectResponse:
    return RedirectResponse(
        f"{settings.APP_URL.rstrip('/')}/sign-in?redirect_url={quote(str(request.url), safe='')}"
    )

@router.post("", response_model=StoryResponse, status_code=status.HTTP_201_CREATED)
async def submit_story(
    body: StoryCreate,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    return await _engine(db, notifier, background_tasks).submit_story(
        principal,
        body.tree_id,
        body.title,
        body.content,
        branch_id=body.branch_id,
        photos=body.photos,
    )

@router.get("", response_model=List[StoryResponse])
async def list_stories(
    background_tasks: BackgroundTasks,
    tree_id: int = Query(..., alias="treeId"),
    include_pending: bool = Query(False, alias="includePending"),
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    return await _engine(db, notifier, background_tasks).list_stories(
        principal, tree_id, include_pending=include_pending
    )

@router.get("/{story_id}", response_model=StoryResponse)
async def get_story(
    story_id: int,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    return await _engine(db, notifier, background_tasks).view_story(principal, story_id)

@router.put("/{story_id}", response_model=StoryResponse)
async def edit_story(
    story_id: int,
    body: StoryUpdate,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    changes = body.model_dump(exclude_unset=True)
    photos = changes.pop("photos", None)
    return await _engine(db, notifier, background_tasks).edit_story(
        principal, story_id, photos=photos, **changes
    )

@router.delete("/{story_id}")
async def delete_story(
    story_id: int,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    storage: LocalStorage = Depends(get_storage),
):
    urls = await _engine(db, notifier, background_tasks).delete_story(principal, story_id)
    background_tasks.add_task(purge_media, storage, urls)
    return {"success": True}

@router.post("/{story_id}/approve", response_model=StoryResponse)
async def approve_story(
    story_id: int,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    return await _engine(db, notifier, background_tasks).approve_story(principal, story_id)

@router.post("/{story_id}/reject", response_model=StoryRejectResponse)
async def reject_story(
    story_id: int,
    background_tasks: BackgroundTasks,
    body: Optional[StoryReject] = None,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    storage: LocalStorage = Depends(get_storage),
):
    reason = body.reason if body else None
    outcome = await _engine(db, notifier, background_tasks).reject_story(principal, story_id, reason=reason)
    background_tasks.add_task(purge_media, storage, outcome.media_urls)
    return StoryRejectResponse()

# Links in moderator e-mails land here; answer with redirects back into the app

@router.get("/{story_id}/approve")
async def approve_story_link(
    story_id: int,
    request: Request,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    if not principal.is_authenticated:
        return _sign_in_redirect(request)

    engine = _engine(db, notifier, background_tasks)
    try:
        try:
            story = await engine.approve_story(principal, story_id)
            outcome = "approved"
        except ConflictError:
            # Approved meanwhile, or gone; get_story tells the two apart
            story = await engine.get_story(story_id)
            outcome = "already_approved"
        tree = await HierarchyManager(db).get_tree(story.tree_id)
    except GroveError as e:
        logger.info(f"Approve link for story {story_id} failed: {e.message}")
        return _app_redirect(error=e.message)

    return _app_redirect(f"/trees/{tree.slug}", story=outcome)

@router.get("/{story_id}/reject")
async def reject_story_link(
    story_id: int,
    request: Request,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    storage: LocalStorage = Depends(get_storage),
):
    if not principal.is_authenticated:
        return _sign_in_redirect(request)

    try:
        outcome = await _engine(db, notifier, background_tasks).reject_story(principal, story_id)
    except GroveError as e:
        logger.info(f"Reject link for story {story_id} failed: {e.message}")
        return _app_redirect(error=e.message)

    background_tasks.add_task(purge_media, storage, outcome.media_urls)
    return _app_redirect(f"/trees/{outcome.tree_slug}", story="rejected")
