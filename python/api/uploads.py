"""
Attachment upload storage

Uploads are streamed to the upload directory in 8KB chunks under the
name "{milliseconds}_{safe original name}" and served back from the
configured URL prefix. A stored file whose database transaction fails
is deleted again by discard_on_error().
"""

import logging
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Optional

from fastapi import HTTPException, UploadFile

from config_manager import UploadConfig
from database.training_service import AttachmentInput, InputValidationError
from text_utils import safe_filename, sanitize_for_logging

logger = logging.getLogger(__name__)

CHUNK_SIZE = 8192


def _unique_destination(directory: Path, safe_name: str) -> Path:
    stamp = int(time.time() * 1000)
    destination = directory / f"{stamp}_{safe_name}"
    counter = 1
    while destination.exists():
        destination = directory / f"{stamp}_{counter}_{safe_name}"
        counter += 1
    return destination


async def save_upload(file: Optional[UploadFile], config: UploadConfig) -> Optional[AttachmentInput]:
    """Stream an uploaded file to disk.

    Args:
        file: Uploaded file, or None when the form carried none
        config: Upload settings

    Returns:
        AttachmentInput pointing at the stored file, or None

    Raises:
        InputValidationError: File type not allowed
        HTTPException: 413 when the file exceeds the size limit
    """
    if file is None or not file.filename:
        return None

    safe_name = safe_filename(file.filename)
    extension = Path(safe_name).suffix.lower()
    if config.allowed_extensions and extension not in config.allowed_extensions:
        raise InputValidationError(
            f"File type '{extension or 'none'}' is not allowed",
            field="file",
            suggestion=f"Allowed types: {', '.join(config.allowed_extensions)}"
        )

    directory = Path(config.directory)
    directory.mkdir(parents=True, exist_ok=True)
    destination = _unique_destination(directory, safe_name)

    # Validate path is within the upload directory (prevent path traversal)
    if not destination.resolve().is_relative_to(directory.resolve()):
        raise InputValidationError("Invalid file name", field="file")

    total_size = 0
    try:
        with open(destination, "wb") as handle:
            while True:
                chunk = await file.read(CHUNK_SIZE)
                if not chunk:
                    break
                total_size += len(chunk)
                if total_size > config.max_size_bytes:
                    raise HTTPException(
                        status_code=413,
                        detail=f"File too large. Maximum size is {config.max_size_mb}MB",
                    )
                handle.write(chunk)
    except Exception:
        destination.unlink(missing_ok=True)
        raise

    logger.info(
        "Stored upload: file=%s size_bytes=%d",
        sanitize_for_logging(destination.name),
        total_size,
    )
    return AttachmentInput(
        file_path=f"{config.url_prefix.rstrip('/')}/{destination.name}",
        file_name=file.filename[:255],
        mime_type=file.content_type,
    )


def stored_path(file_path: str, config: UploadConfig) -> Optional[Path]:
    """Map a public attachment path back to the file in the upload directory"""
    prefix = config.url_prefix.rstrip('/') + '/'
    if not file_path.startswith(prefix):
        return None
    name = file_path[len(prefix):]
    if not name or '/' in name or name in ('.', '..'):
        return None
    return Path(config.directory) / name


def discard_files(file_paths: Iterable[str], config: UploadConfig) -> int:
    """Delete stored attachment files, logging (not raising) on failure

    Returns:
        Number of files removed
    """
    removed = 0
    for file_path in file_paths:
        path = stored_path(file_path, config)
        if path is None:
            logger.warning("Refusing to delete path outside uploads: %s", sanitize_for_logging(file_path))
            continue
        try:
            if path.exists():
                path.unlink()
                removed += 1
        except OSError as e:
            logger.error("Failed to delete upload: path=%s error=%s", path, e)
    return removed


@contextmanager
def discard_on_error(attachment: Optional[AttachmentInput], config: UploadConfig):
    """Delete a freshly stored upload if the enclosed database work fails"""
    try:
        yield
    except Exception:
        if attachment is not None:
            discard_files([attachment.file_path], config)
            logger.info("Discarded upload after failed transaction: %s", attachment.file_path)
        raise
