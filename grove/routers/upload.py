from fastapi import APIRouter, Depends, File, Form, UploadFile
from typing import Optional
from grove.config import get_settings
from grove.routers.deps import get_storage, require_user
from grove.services.identity import Principal
from grove.services.storage import LocalStorage
from grove.utils.validators import validate_folder, validate_image_upload
import logging

router = APIRouter(tags=["upload"])
settings = get_settings()
logger = logging.getLogger(__name__)

@router.post("/upload")
async def upload_file(
    file: Optional[UploadFile] = File(None),
    folder: str = Form("uploads"),
    principal: Principal = Depends(require_user),
    storage: LocalStorage = Depends(get_storage),
):
    data = await file.read() if file else b""
    validate_image_upload(len(data), file.content_type if file else None, settings.MAX_UPLOAD_BYTES)
    folder = validate_folder(folder)

    stored = await storage.store(data, folder=folder, filename=file.filename or "")
    logger.info(f"User {principal.user_id} uploaded {stored.key} ({len(data)} bytes)")
    return {"url": stored.url, "key": stored.key}
