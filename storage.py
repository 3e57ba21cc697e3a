"""
Image storage on GridFS.
"""

import logging
from typing import Optional

import gridfs
from gridfs.errors import NoFile
from bson import ObjectId
from bson.errors import InvalidId

import database

logger = logging.getLogger(__name__)

BUCKET_NAME = "images"


def _bucket() -> gridfs.GridFSBucket:
    if database.db is None:
        raise RuntimeError("Database not available")
    return gridfs.GridFSBucket(database.db, bucket_name=BUCKET_NAME)


def image_url(file_id: str) -> str:
    return f"/api/images/{file_id}"


def save_image(data: bytes, mime_type: str, filename: Optional[str] = None) -> str:
    """Store raw image bytes and return the file id."""
    file_id = _bucket().upload_from_stream(
        filename or "upload",
        data,
        metadata={"content_type": mime_type},
    )
    logger.info(f"Stored image {file_id} ({len(data)} bytes)")
    return str(file_id)


def open_image(file_id: str):
    """Open a stored image for reading, or None if it does not exist."""
    try:
        oid = ObjectId(file_id)
    except (InvalidId, TypeError):
        return None
    try:
        return _bucket().open_download_stream(oid)
    except NoFile:
        return None


def delete_image(file_id: str) -> None:
    """Remove a stored image. Unknown ids are ignored."""
    try:
        oid = ObjectId(file_id)
    except (InvalidId, TypeError):
        return
    try:
        _bucket().delete(oid)
    except NoFile:
        return
    logger.info(f"Deleted image {file_id}")
