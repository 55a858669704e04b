"""
Alibaba Cloud OSS (Object Storage Service) integration.

The deletion core treats OSS as an opaque blob store: the only operation
it needs is releasing the object behind a message's ``media_ref``.
"""
import asyncio
import logging
from typing import Optional
from urllib.parse import urlparse

import oss2

from app.config import settings
from app.core.exceptions import MediaReleaseFailure

logger = logging.getLogger(__name__)


class OSSService:
    """Releases message media stored in Alibaba Cloud OSS."""

    def __init__(self):
        self._bucket: Optional[oss2.Bucket] = None

    @property
    def is_configured(self) -> bool:
        return bool(
            settings.oss_access_key_id
            and settings.oss_access_key_secret
            and settings.oss_bucket_name
        )

    @property
    def bucket(self) -> oss2.Bucket:
        """OSS bucket, created on first use from settings."""
        if self._bucket is None:
            auth = oss2.Auth(
                settings.oss_access_key_id,
                settings.oss_access_key_secret
            )
            self._bucket = oss2.Bucket(
                auth,
                settings.oss_endpoint,
                settings.oss_bucket_name
            )
        return self._bucket

    @staticmethod
    def object_key(media_ref: str) -> str:
        """
        Resolve the OSS object key behind a media reference.

        Compose stores either the bare key (``messages/conv/abc.jpg``) or
        the public URL ``https://{bucket}.{endpoint}/{key}``.

        Args:
            media_ref: Stored media reference

        Returns:
            Object key inside the bucket
        """
        if media_ref.startswith(("http://", "https://")):
            return urlparse(media_ref).path.lstrip("/")
        return media_ref.lstrip("/")

    async def release_media(self, media_ref: str) -> None:
        """
        Delete the object behind ``media_ref``.

        Deleting an object that is already gone succeeds, so retries are
        safe.

        Raises:
            MediaReleaseFailure: If OSS is not configured or the call fails
        """
        if not self.is_configured:
            raise MediaReleaseFailure(media_ref, "OSS credentials not configured")

        key = self.object_key(media_ref)
        if not key:
            raise MediaReleaseFailure(media_ref, "empty object key")

        try:
            await asyncio.to_thread(self.bucket.delete_object, key)
        except oss2.exceptions.OssError as e:
            raise MediaReleaseFailure(media_ref, str(e)) from e

        logger.info(f"Media released: {key}")


# Global blob store client
oss_service = OSSService()
