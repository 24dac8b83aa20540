"""
Consultant profile editor

Profile documents live in ``consultants/{uid}``; photos go to file storage
under ``profilePhotos/``.
"""
import logging
from pathlib import Path
from typing import Optional

from portal.config import settings
from portal.exceptions import MutationError, NotFoundError, PreconditionError
from portal.schemas.profile import ProfileUpdate
from portal.schemas.records import ConsultantProfile
from portal.services.commands import Clock, guarded_write, utcnow
from portal.services.file_storage import PROFILE_PHOTOS_DIR, FileStorageService, file_storage
from portal.store.base import DocumentStore, Query

logger = logging.getLogger(__name__)

DEFAULT_PHOTO_MARKER = "default-profile"


def get_file_extension(filename: str) -> str:
    """Get file extension from filename"""
    return Path(filename).suffix.lower().lstrip('.')


class ProfileService:
    """Load and edit the consultant's own profile"""

    collection = "consultants"

    def __init__(
        self,
        store: DocumentStore,
        storage: Optional[FileStorageService] = None,
        timeout: Optional[float] = None,
        clock: Optional[Clock] = None
    ):
        self._store = store
        self._storage = storage or file_storage
        self._timeout = timeout if timeout is not None else settings.STORE_TIMEOUT_SECONDS
        self._clock = clock or utcnow

    async def load(self, consultant_id: str) -> ConsultantProfile:
        doc = await self._store.get(self.collection, consultant_id)
        if doc is None:
            raise NotFoundError("Consultant profile not found.")
        return ConsultantProfile.from_document(doc)

    async def find_clinic_id(self, address: str) -> Optional[str]:
        """First clinic whose birth center address matches exactly"""
        if not address:
            return None
        clinics = await self._store.fetch(Query("users").where("role", "==", "clinic"))
        for clinic in clinics:
            if clinic.get("birthCenterAddress") == address:
                return clinic.id
        return None

    async def save(self, consultant_id: str, update: ProfileUpdate) -> ConsultantProfile:
        await self.load(consultant_id)

        changes = update.to_document()
        changes["updatedAt"] = self._clock()
        clinic_id = await self.find_clinic_id(update.birth_center_address)
        if clinic_id:
            changes["clinicId"] = clinic_id

        await guarded_write(
            self._store.update(self.collection, consultant_id, changes),
            self._timeout,
            "update the profile"
        )
        logger.info(f"Profile {consultant_id} updated")
        return await self.load(consultant_id)

    def validate_photo(self, content: bytes, filename: str, content_type: Optional[str] = None) -> str:
        """Return the file extension, or raise PreconditionError"""
        ext = get_file_extension(filename or "")
        if ext not in settings.ALLOWED_PHOTO_EXTENSIONS or (
            content_type is not None and not content_type.startswith("image/")
        ):
            raise PreconditionError("Please select an image file (JPEG, PNG, etc.)")
        if len(content) > settings.MAX_PHOTO_SIZE_MB * 1024 * 1024:
            raise PreconditionError(f"Please select an image smaller than {settings.MAX_PHOTO_SIZE_MB}MB")
        if not content:
            raise PreconditionError("The selected image is empty.")
        return ext

    def _delete_photo(self, url: str) -> None:
        if not url or DEFAULT_PHOTO_MARKER in url:
            return
        location = self._storage.split_url(url)
        if location is None:
            logger.warning(f"Not deleting photo outside file storage: {url}")
            return
        subdirectory, file_path = location
        try:
            self._storage.delete_file(file_path, subdirectory)
        except (OSError, ValueError) as e:
            logger.error(f"Error deleting old photo {url}: {e}")

    async def replace_photo(
        self,
        consultant_id: str,
        content: bytes,
        filename: str,
        content_type: Optional[str] = None
    ) -> ConsultantProfile:
        ext = self.validate_photo(content, filename, content_type)
        profile = await self.load(consultant_id)

        now = self._clock()
        stored_name = f"{consultant_id}_{int(now.timestamp() * 1000)}.{ext}"
        try:
            url = self._storage.upload_file(content, stored_name, PROFILE_PHOTOS_DIR)
        except (OSError, ValueError) as e:
            logger.error(f"Error uploading photo for {consultant_id}: {e}")
            raise MutationError("Photo upload failed. Please try again.") from e

        try:
            await guarded_write(
                self._store.update(self.collection, consultant_id, {"profilePhoto": url, "updatedAt": now}),
                self._timeout,
                "save the profile photo"
            )
        except MutationError:
            self._storage.delete_file(stored_name, PROFILE_PHOTOS_DIR)
            raise

        self._delete_photo(profile.profile_photo)
        return await self.load(consultant_id)

    async def remove_photo(self, consultant_id: str) -> ConsultantProfile:
        profile = await self.load(consultant_id)
        if not profile.profile_photo:
            return profile

        await guarded_write(
            self._store.update(self.collection, consultant_id, {"profilePhoto": "", "updatedAt": self._clock()}),
            self._timeout,
            "remove the profile photo"
        )
        self._delete_photo(profile.profile_photo)
        return await self.load(consultant_id)
