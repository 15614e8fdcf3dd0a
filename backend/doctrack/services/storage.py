"""Object-storage collaborator: public URLs and best-effort blob deletes"""

import logging
from urllib.parse import quote

import httpx

from ..config import settings

logger = logging.getLogger(__name__)


def object_url(storage_key: str) -> str:
    return f"{settings.STORAGE_ENDPOINT.rstrip('/')}/{settings.STORAGE_BUCKET}/{quote(storage_key)}"


def delete_object(storage_key: str) -> bool:
    """
    Delete one blob.

    Returns:
        True if storage acknowledged the delete (a missing object counts),
        False on any transport or HTTP error
    """
    headers = {}
    if settings.STORAGE_TOKEN:
        headers["Authorization"] = f"Bearer {settings.STORAGE_TOKEN}"

    try:
        response = httpx.delete(object_url(storage_key), headers=headers, timeout=settings.STORAGE_TIMEOUT)
        if response.status_code == 404:
            return True
        response.raise_for_status()
        return True
    except httpx.HTTPError as e:
        logger.warning("Failed to delete object %s from storage: %s", storage_key, e)
        return False
