"""
File storage service for profile photos
Uses the local filesystem, files are served from STATIC_URL_PREFIX
"""
import os
from typing import Optional, Tuple
import logging

from portal.config import settings

logger = logging.getLogger(__name__)

PROFILE_PHOTOS_DIR = "profilePhotos"


class FileStorageService:
    """Service for file storage using the local filesystem"""

    def __init__(self, base_dir: Optional[str] = None, static_url_prefix: Optional[str] = None):
        """Initialize file storage service"""
        self.base_dir = base_dir or settings.UPLOAD_BASE_DIR
        self.static_url_prefix = (static_url_prefix or settings.STATIC_URL_PREFIX).rstrip('/')

        self._ensure_directories()

        logger.info(f"File storage initialized at: {self.base_dir}")

    def _ensure_directories(self):
        """Create necessary directories if they don't exist"""
        for directory in (self.base_dir, os.path.join(self.base_dir, PROFILE_PHOTOS_DIR)):
            os.makedirs(directory, exist_ok=True)

    def _full_path(self, file_path: str, subdirectory: str) -> str:
        file_path = file_path.lstrip('/')
        full_path = os.path.normpath(os.path.join(self.base_dir, subdirectory, file_path))
        if not full_path.startswith(os.path.normpath(self.base_dir) + os.sep):
            raise ValueError(f"Path escapes storage directory: {file_path}")
        return full_path

    def upload_file(
        self,
        file_content: bytes,
        file_path: str,
        subdirectory: str = PROFILE_PHOTOS_DIR
    ) -> str:
        """
        Store file content and return its public URL

        Args:
            file_content: File content as bytes
            file_path: Relative file path (e.g., 'uid_1700000000.jpg')
            subdirectory: Subdirectory within base_dir

        Raises:
            OSError if the file cannot be written
        """
        full_path = self._full_path(file_path, subdirectory)
        os.makedirs(os.path.dirname(full_path), exist_ok=True)

        with open(full_path, 'wb') as f:
            f.write(file_content)

        # Format: /static/{subdirectory}/{file_path}
        url = f"{self.static_url_prefix}/{subdirectory}/{file_path.lstrip('/')}"
        logger.info(f"File uploaded successfully: {full_path} -> {url}")
        return url

    def delete_file(self, file_path: str, subdirectory: str = PROFILE_PHOTOS_DIR) -> bool:
        """
        Delete file from storage

        Returns:
            True if deleted, False if there was no such file
        """
        full_path = self._full_path(file_path, subdirectory)
        if os.path.exists(full_path):
            os.remove(full_path)
            logger.info(f"File deleted successfully: {full_path}")
            return True
        logger.warning(f"File not found for deletion: {full_path}")
        return False

    def file_exists(self, file_path: str, subdirectory: str = PROFILE_PHOTOS_DIR) -> bool:
        return os.path.exists(self._full_path(file_path, subdirectory))

    def split_url(self, url: str) -> Optional[Tuple[str, str]]:
        """
        Map a public URL produced by upload_file back to (subdirectory, file_path)

        Returns None for URLs this storage did not produce.
        """
        prefix = f"{self.static_url_prefix}/"
        if not url or not url.startswith(prefix):
            return None
        subdirectory, _, file_path = url[len(prefix):].partition('/')
        if not subdirectory or not file_path:
            return None
        return subdirectory, file_path.split('?', 1)[0]


# Create singleton instance
file_storage = FileStorageService()
