import time
from typing import Any, BinaryIO, Dict, Optional

import cloudinary
import cloudinary.uploader
from cloudinary.exceptions import Error as CloudinaryError
from fastapi import HTTPException

import settings
from errors import StoreFailure
from logger import get_logger

logger = get_logger(__name__)


class MediaHost:
    """Product image storage on Cloudinary."""

    def __init__(self, cloud_name: str, api_key: str, api_secret: str):
        cloudinary.config(cloud_name=cloud_name, api_key=api_key, api_secret=api_secret)

    def upload(self, fileobj: BinaryIO) -> Dict[str, Any]:
        public_id = str(int(time.time() * 1000))
        try:
            result = cloudinary.uploader.upload(fileobj, public_id=public_id, resource_type="auto")
        except CloudinaryError as e:
            logger.error(f"Image upload failed: {e}")
            raise StoreFailure(str(e)) from e
        logger.info(f"Uploaded image {result['public_id']}")
        return {"public_id": result["public_id"], "url": result["url"]}

    def remove(self, public_id: str):
        try:
            result = cloudinary.uploader.destroy(public_id)
        except CloudinaryError as e:
            logger.error(f"Image removal failed: {e}")
            raise StoreFailure(str(e)) from e
        if result.get("result") != "ok":
            raise StoreFailure(f"Could not remove image {public_id}: {result.get('result')}")
        logger.info(f"Removed image {public_id}")


host: Optional[MediaHost] = None


def init_media() -> Optional[MediaHost]:
    global host
    if settings.CLOUD_NAME and settings.CLOUD_API_KEY and settings.CLOUD_API_SECRET:
        host = MediaHost(settings.CLOUD_NAME, settings.CLOUD_API_KEY, settings.CLOUD_API_SECRET)
    else:
        logger.warning("Cloudinary credentials not set, image management disabled")
    return host


def get_media_host() -> MediaHost:
    if host is None:
        raise HTTPException(status_code=503, detail="Media host not configured")
    return host
