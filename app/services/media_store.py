from __future__ import annotations
import io
import uuid
from dataclasses import dataclass
from typing import Optional, Tuple

from PIL import Image, UnidentifiedImageError

from firebase_admin import storage
from app.domain import pet_report_schema as schema
from app.scripts.logging_config import get_logger
from app.services.errors import UploadError
from config import settings

logger = get_logger("media_store")

MIN_SIDE = 8

# Lazy bucket init
_bucket = None


@dataclass(frozen=True)
class PhotoUpload:
    data: bytes
    content_type: str
    filename: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.data)


def get_bucket():
    global _bucket
    if _bucket is None:
        bucket_name = settings.FIREBASE_STORAGE_BUCKET
        try:
            import firebase_admin
            app = firebase_admin.get_app()
            # If app initialized with storageBucket option it will appear in options
            opt_bucket = app.options.get('storageBucket') if hasattr(app, 'options') else None
            if not bucket_name and opt_bucket:
                bucket_name = opt_bucket
            if not bucket_name:
                project_id = getattr(app, 'project_id', None)
                if project_id:
                    bucket_name = f"{project_id}.appspot.com"
        except ValueError:
            pass
        if not bucket_name:
            raise RuntimeError("Storage bucket not configured and cannot derive project id")
        _bucket = storage.bucket(bucket_name)
    return _bucket


def inspect_photo(photo: PhotoUpload) -> Tuple[int, int]:
    """Check type, size and that Pillow can open it. Returns (width, height)."""
    if photo.content_type not in schema.ALLOWED_PHOTO_TYPES:
        raise UploadError(f"unsupported_type:{photo.content_type}")
    if not photo.data:
        raise UploadError("empty_photo")
    if photo.size > settings.PHOTO_MAX_BYTES:
        raise UploadError("file_too_large")
    try:
        with Image.open(io.BytesIO(photo.data)) as im:
            w, h = im.size
    except (UnidentifiedImageError, OSError) as e:
        raise UploadError(f"unreadable_image:{e}") from e
    if w < MIN_SIDE or h < MIN_SIDE:
        raise UploadError("image_too_small")
    return w, h


def object_path(path_hint: str, content_type: str) -> str:
    ext = schema.ALLOWED_PHOTO_TYPES.get(content_type, "")
    return f"{schema.PHOTO_PATH_PREFIX}/{path_hint}/{uuid.uuid4().hex}{ext}"


def upload_photo(data: bytes, path_hint: str, content_type: str) -> str:
    """Blocking upload to Firebase Storage; returns the public URL."""
    bucket = get_bucket()
    blob = bucket.blob(object_path(path_hint, content_type))
    blob.upload_from_string(data, content_type=content_type)
    # 공개 URL을 만들 수 없으면 객체를 지우고 실패 처리 (깨진 참조로 저장하지 않음)
    try:
        blob.make_public()
        url = blob.public_url
    except Exception as e:
        logger.warning("make_public failed path=%s err=%s", blob.name, e)
        try:
            blob.delete()
        except Exception as de:
            logger.warning("orphan delete failed path=%s err=%s", blob.name, de)
        raise UploadError(f"make_public_failed:{e}") from e
    logger.info("photo_stored path=%s bytes=%d", blob.name, len(data))
    return url
