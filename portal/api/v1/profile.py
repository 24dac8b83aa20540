"""Consultant profile endpoints"""
from fastapi import APIRouter, Depends, File, HTTPException, Request, Response, UploadFile, status
import logging

from portal.dependencies.auth import get_current_consultant, get_store
from portal.middleware.rate_limit import limiter
from portal.schemas.profile import ProfileUpdate
from portal.schemas.records import ConsultantProfile
from portal.services.file_storage import FileStorageService, file_storage
from portal.services.profile_service import ProfileService
from portal.store.base import DocumentStore

logger = logging.getLogger(__name__)

router = APIRouter()


def get_file_storage() -> FileStorageService:
    return file_storage


def get_profile_service(
    store: DocumentStore = Depends(get_store),
    storage: FileStorageService = Depends(get_file_storage)
) -> ProfileService:
    return ProfileService(store, storage)


@router.get("", response_model=ConsultantProfile)
async def get_profile(
    current_consultant: ConsultantProfile = Depends(get_current_consultant),
    service: ProfileService = Depends(get_profile_service)
):
    """Current consultant's profile"""
    return await service.load(current_consultant.id)


@router.put("", response_model=ConsultantProfile)
async def update_profile(
    update: ProfileUpdate,
    current_consultant: ConsultantProfile = Depends(get_current_consultant),
    service: ProfileService = Depends(get_profile_service)
):
    """
    Update profile fields

    Days, hours and platform must come from the fixed option lists. The
    clinic is linked automatically when the birth center address matches a
    registered clinic.
    """
    return await service.save(current_consultant.id, update)


@router.post("/photo", response_model=ConsultantProfile)
@limiter.limit("10/minute")  # Limit photo uploads to prevent abuse
async def upload_profile_photo(
    request: Request,
    response: Response,
    file: UploadFile = File(...),
    current_consultant: ConsultantProfile = Depends(get_current_consultant),
    service: ProfileService = Depends(get_profile_service)
):
    """Replace the profile photo"""
    if not file.filename:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No file provided"
        )

    file_content = await file.read()
    return await service.replace_photo(
        current_consultant.id,
        file_content,
        file.filename,
        file.content_type
    )


@router.delete("/photo", response_model=ConsultantProfile)
async def delete_profile_photo(
    current_consultant: ConsultantProfile = Depends(get_current_consultant),
    service: ProfileService = Depends(get_profile_service)
):
    """Remove the profile photo"""
    return await service.remove_photo(current_consultant.id)
