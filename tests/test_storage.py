import pytest
from grove.errors import ValidationError
from grove.services.storage import LocalStorage, purge_media
from grove.utils.validators import validate_folder, validate_image_upload, validate_phone

TEN_MB = 10 * 1024 * 1024


@pytest.mark.asyncio
async def test_store_and_delete(tmp_path):
    storage = LocalStorage(str(tmp_path), "/uploads/")

    stored = await storage.store(b"\x89PNG...", folder="trees", filename="Portrait.PNG")

    assert stored.key.startswith("trees/")
    assert stored.key.endswith(".png")
    assert stored.url == f"/uploads/{stored.key}"
    assert (tmp_path / stored.key).read_bytes() == b"\x89PNG..."
    assert storage.key_for_url(stored.url) == stored.key

    await storage.delete(stored.key)
    assert not (tmp_path / stored.key).exists()


def test_key_for_foreign_urls(tmp_path):
    storage = LocalStorage(str(tmp_path), "/uploads")
    assert storage.key_for_url("https://cdn.example.com/a.jpg") is None


@pytest.mark.asyncio
async def test_purge_media_skips_foreign_and_unsafe_urls(tmp_path):
    storage = LocalStorage(str(tmp_path), "/uploads")
    kept = await storage.store(b"a", folder="stories", filename="a.jpg")
    gone = await storage.store(b"b", folder="stories", filename="b.jpg")

    removed = await purge_media(
        storage, [gone.url, "https://cdn.example.com/x.jpg", "/uploads/../../etc/passwd"]
    )

    assert removed == 1
    assert not (tmp_path / gone.key).exists()
    assert (tmp_path / kept.key).exists()


def test_validate_image_upload():
    validate_image_upload(1024, "image/jpeg", TEN_MB)
    validate_image_upload(TEN_MB, "image/png", TEN_MB)

    with pytest.raises(ValidationError, match="No file provided"):
        validate_image_upload(0, "image/png", TEN_MB)
    with pytest.raises(ValidationError, match="less than 10MB"):
        validate_image_upload(TEN_MB + 1, "image/png", TEN_MB)
    with pytest.raises(ValidationError, match="must be an image"):
        validate_image_upload(1024, "application/pdf", TEN_MB)
    with pytest.raises(ValidationError):
        validate_image_upload(1024, None, TEN_MB)


def test_validate_folder():
    assert validate_folder("/trees/") == "trees"
    assert validate_folder("stories/2024") == "stories/2024"
    with pytest.raises(ValidationError):
        validate_folder("../secrets")
    with pytest.raises(ValidationError):
        validate_folder("   ")


def test_validate_phone():
    assert validate_phone("+1 (415) 555-0100") == "+14155550100"
    assert validate_phone("919310082225") == "+919310082225"
    with pytest.raises(ValidationError):
        validate_phone("12")
