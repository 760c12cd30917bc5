"""Storage service for Supabase storage operations."""

from typing import Any, Dict, List, Optional

import httpx

from titlescan.core.config import settings
from titlescan.core.exceptions import ObjectNotFoundError, StorageError
from titlescan.utils.logging import get_logger

LOGGER = get_logger(__name__)


def _is_not_found(response: httpx.Response) -> bool:
    # Supabase reports missing objects as 404, or as 400 with a not_found body
    if response.status_code == 404:
        return True
    return response.status_code == 400 and "not_found" in response.text.lower().replace(" ", "_")


class StorageService:
    """Put, get, list and delete objects in Supabase storage buckets."""

    def __init__(self, url: Optional[str] = None, service_role_key: Optional[str] = None):
        self.url = (url or settings.supabase_url).rstrip("/")
        self.service_role_key = service_role_key or settings.supabase_service_role_key
        self.base_api_url = f"{self.url}/storage/v1"
        self.headers = {
            "Authorization": f"Bearer {self.service_role_key}",
            "apikey": self.service_role_key,
        }

    async def upload_bytes(
        self,
        content: bytes,
        bucket: str,
        path: str,
        content_type: str = "application/octet-stream",
        upsert: bool = True,
    ) -> Dict[str, Any]:
        """Store bytes under ``bucket/path``.

        Raises:
            StorageError: If the upload fails.
        """
        upload_url = f"{self.base_api_url}/object/{bucket}/{path}"
        headers = {
            **self.headers,
            "Content-Type": content_type,
            "x-upsert": "true" if upsert else "false",
        }

        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    upload_url,
                    headers=headers,
                    content=content,
                    timeout=settings.http_timeout,
                )
        except httpx.HTTPError as e:
            LOGGER.error(f"Error uploading file to Supabase: {str(e)}", exc_info=True)
            raise StorageError(f"Storage upload error: {str(e)}", original_error=e) from e

        if response.status_code != 200:
            LOGGER.error(
                f"Failed to upload file to Supabase: {response.text}",
                extra={"bucket": bucket, "path": path, "status_code": response.status_code},
            )
            raise StorageError(f"Upload failed: {response.text}")

        LOGGER.info(f"Uploaded {len(content)} bytes", extra={"bucket": bucket, "path": path})
        return response.json()

    async def download_bytes(self, bucket: str, path: str) -> bytes:
        """Fetch the bytes stored under ``bucket/path``.

        Raises:
            ObjectNotFoundError: If the object does not exist.
            StorageError: If the download fails.
        """
        download_url = f"{self.base_api_url}/object/{bucket}/{path}"

        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(
                    download_url,
                    headers=self.headers,
                    timeout=settings.http_timeout,
                )
        except httpx.HTTPError as e:
            LOGGER.error(f"Error downloading file from Supabase: {str(e)}", exc_info=True)
            raise StorageError(f"Storage download error: {str(e)}", original_error=e) from e

        if _is_not_found(response):
            raise ObjectNotFoundError(f"Object not found: {bucket}/{path}")
        if response.status_code != 200:
            LOGGER.error(
                f"Failed to download file from Supabase: {response.text}",
                extra={"bucket": bucket, "path": path, "status_code": response.status_code},
            )
            raise StorageError(f"Download failed: {response.text}")

        return response.content

    async def list_objects(self, bucket: str, prefix: str = "", limit: int = 1000) -> List[str]:
        """List object paths directly under ``prefix`` (folders excluded).

        Returns:
            Full object paths, sorted by name.

        Raises:
            StorageError: If the listing fails.
        """
        list_url = f"{self.base_api_url}/object/list/{bucket}"
        prefix = prefix.strip("/")
        payload = {
            "prefix": prefix,
            "limit": limit,
            "offset": 0,
            "sortBy": {"column": "name", "order": "asc"},
        }

        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    list_url,
                    headers=self.headers,
                    json=payload,
                    timeout=settings.http_timeout,
                )
        except httpx.HTTPError as e:
            LOGGER.error(f"Error listing Supabase objects: {str(e)}", exc_info=True)
            raise StorageError(f"Storage list error: {str(e)}", original_error=e) from e

        if response.status_code != 200:
            LOGGER.error(
                f"Failed to list Supabase objects: {response.text}",
                extra={"bucket": bucket, "prefix": prefix, "status_code": response.status_code},
            )
            raise StorageError(f"List failed: {response.text}")

        paths = []
        for entry in response.json():
            # Folder placeholders have no id
            if not entry.get("id"):
                continue
            name = entry["name"]
            paths.append(f"{prefix}/{name}" if prefix else name)
        return paths

    async def delete_object(self, bucket: str, path: str) -> None:
        """Delete ``bucket/path``.

        Raises:
            ObjectNotFoundError: If the object does not exist.
            StorageError: If the delete fails.
        """
        delete_url = f"{self.base_api_url}/object/{bucket}/{path}"

        try:
            async with httpx.AsyncClient() as client:
                response = await client.delete(
                    delete_url,
                    headers=self.headers,
                    timeout=settings.http_timeout,
                )
        except httpx.HTTPError as e:
            LOGGER.error(f"Error deleting Supabase object: {str(e)}", exc_info=True)
            raise StorageError(f"Storage delete error: {str(e)}", original_error=e) from e

        if _is_not_found(response):
            raise ObjectNotFoundError(f"Object not found: {bucket}/{path}")
        if response.status_code != 200:
            LOGGER.error(
                f"Failed to delete Supabase object: {response.text}",
                extra={"bucket": bucket, "path": path, "status_code": response.status_code},
            )
            raise StorageError(f"Delete failed: {response.text}")
