"""Client for uploaded artifacts kept in Supabase storage."""
import logging
from typing import Optional
from urllib.parse import urlparse

import httpx

from .config import settings

logger = logging.getLogger(__name__)


class ArtifactStore:
    """Deletes uploaded recordings and snapshots from a storage bucket."""

    def __init__(
        self,
        base_url: str,
        service_key: str,
        bucket: str,
        http_client: Optional[httpx.Client] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.service_key = service_key
        self.bucket = bucket
        self.http_client = http_client or httpx.Client(timeout=30.0)

    @classmethod
    def from_settings(cls) -> "ArtifactStore":
        return cls(
            base_url=settings.storage_url,
            service_key=settings.storage_service_key,
            bucket=settings.storage_bucket,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url and self.service_key)

    def object_path(self, url: str) -> Optional[str]:
        """Path of the object inside the bucket, or None if the URL is not ours."""
        if not self.is_configured or not url:
            return None
        if urlparse(url).netloc != urlparse(self.base_url).netloc:
            return None

        parts = urlparse(url).path.split("/")
        if self.bucket not in parts:
            return None
        path = "/".join(parts[parts.index(self.bucket) + 1:])
        return path or None

    def owns(self, url: str) -> bool:
        return self.object_path(url) is not None

    def delete(self, url: str) -> bool:
        """
        Delete the object behind a public URL.

        Returns:
            True if a delete request was sent, False if the URL is not in
            this bucket

        Raises:
            httpx.HTTPError: if the storage API rejects the request
        """
        path = self.object_path(url)
        if path is None:
            logger.warning(f"Could not extract file path from URL: {url}")
            return False

        response = self.http_client.request(
            "DELETE",
            f"{self.base_url}/storage/v1/object/{self.bucket}",
            headers={
                "apikey": self.service_key,
                "Authorization": f"Bearer {self.service_key}",
            },
            json={"prefixes": [path]},
        )
        response.raise_for_status()
        logger.info(f"Deleted {path} from bucket {self.bucket}")
        return True
