from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from pydantic import BaseModel, ValidationError
from typing import Any, Dict, List, Optional

from app.domain import pet_report_schema as schema
from app.models.reports import Category, PetReport, PetReportDraft
from app.scripts.logging_config import get_logger
from app.services import media_store
from app.services.app_services import AppServices, get_services
from app.services.errors import IntegrityError, NetworkError, UploadError
from app.services.media_store import PhotoUpload
from app.services.record_sync import RecordSync
from config import settings

logger = get_logger("api.reports")

router = APIRouter(prefix="/reports", tags=["reports"])


class ReportListResponse(BaseModel):
    category: Category
    reports: List[PetReport]
    warnings: List[Dict[str, Any]] = []


@router.get("/{category}", response_model=ReportListResponse)
async def list_reports(category: Category, services: AppServices = Depends(get_services)):
    sync = RecordSync(services.data, category)
    warnings: List[Dict[str, Any]] = []
    try:
        reports = await sync.load()
    except IntegrityError as e:
        # malformed rows are reported, the valid ones still go out
        logger.warning("reports.list integrity category=%s rejected=%d", category.value, len(e.problems))
        reports = e.records
        warnings = e.problems
    except NetworkError as e:
        raise HTTPException(502, detail=f"store_error:{e}")
    return ReportListResponse(category=category, reports=reports, warnings=warnings)


@router.post("/{category}", response_model=PetReport, status_code=201)
async def create_report(
    category: Category,
    pet_name: str = Form(...),
    breed: str = Form(""),
    species: str = Form(schema.DEFAULT_SPECIES),
    location_label: str = Form(""),
    contact: str = Form(""),
    lat: Optional[float] = Form(None),
    lng: Optional[float] = Form(None),
    photo: Optional[UploadFile] = File(None),
    services: AppServices = Depends(get_services),
):
    try:
        draft = PetReportDraft(
            category=category, pet_name=pet_name, breed=breed, species=species,
            location_label=location_label, contact=contact, lat=lat, lng=lng,
        )
    except ValidationError as e:
        raise HTTPException(422, detail=[f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()])

    upload: Optional[PhotoUpload] = None
    if photo is not None and photo.filename:
        if photo.content_type not in schema.ALLOWED_PHOTO_TYPES:
            raise HTTPException(415, detail="unsupported_type")
        raw = await photo.read()
        if len(raw) > settings.PHOTO_MAX_BYTES:
            raise HTTPException(413, detail="file_too_large")
        upload = PhotoUpload(data=raw, content_type=photo.content_type, filename=photo.filename)
        try:
            media_store.inspect_photo(upload)
        except UploadError as e:
            raise HTTPException(422, detail=f"invalid_photo:{e}")
        logger.info("reports.create photo name=%s ct=%s bytes=%d", photo.filename, photo.content_type, len(raw))

    sync = RecordSync(services.data, category)
    try:
        report = await sync.add(draft, upload)
    except UploadError as e:
        raise HTTPException(502, detail=f"upload_error:{e}")
    except (NetworkError, IntegrityError) as e:
        raise HTTPException(502, detail=f"store_error:{e}")
    logger.info("reports.create category=%s id=%s", category.value, report.id)
    return report
