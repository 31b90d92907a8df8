"""Local disk storage for certificate files uploaded ahead of a submission."""
from __future__ import annotations

import os
import re
import time
import uuid
from dataclasses import dataclass

from flask import current_app, url_for
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from services.errors import InvalidArgument

ALLOWED_MIME_TYPES = frozenset({
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "text/plain",
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/gif",
    "video/mp4",
    "audio/mpeg",
    "application/zip",
    "application/x-rar-compressed",
})


@dataclass
class StoredFile:
    file_name: str
    file_url: str
    file_size: int
    file_type: str

    def to_dict(self) -> dict:
        return {
            "fileName": self.file_name,
            "fileUrl": self.file_url,
            "fileSize": self.file_size,
            "fileType": self.file_type,
            "originalName": self.file_name,
        }


def upload_folder() -> str:
    folder = current_app.config["UPLOAD_FOLDER"]
    if not os.path.isabs(folder):
        folder = os.path.join(current_app.root_path, folder)
    os.makedirs(folder, exist_ok=True)
    return folder


def _storage_name(original: str, user_id: int) -> str:
    normalized = re.sub(r"[^a-zA-Z0-9.-]", "_", original or "file")
    stamp = int(time.time() * 1000)
    # Same-named files in one batch share a millisecond
    token = uuid.uuid4().hex[:8]
    return secure_filename(f"{stamp}-{user_id}-{token}-{normalized}")


def _size_of(upload: FileStorage) -> int:
    stream = upload.stream
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(0)
    return size


def validate_upload(upload: FileStorage) -> int:
    if upload.mimetype not in ALLOWED_MIME_TYPES:
        raise InvalidArgument(f"File type {upload.mimetype} not allowed")
    size = _size_of(upload)
    limit = current_app.config.get("MAX_UPLOAD_FILE_SIZE", 10 * 1024 * 1024)
    if size > limit:
        raise InvalidArgument(
            f"File {upload.filename} is too large. Maximum size is {limit // (1024 * 1024)}MB"
        )
    return size


def store_uploads(uploads: list[FileStorage], user_id: int) -> list[StoredFile]:
    """Validate every file first, then write them one by one."""
    if not uploads:
        raise InvalidArgument("No files provided")
    sizes = [validate_upload(upload) for upload in uploads]

    folder = upload_folder()
    stored = []
    for upload, size in zip(uploads, sizes):
        name = _storage_name(upload.filename, user_id)
        upload.save(os.path.join(folder, name))
        stored.append(
            StoredFile(
                file_name=upload.filename,
                file_url=url_for("certificates.uploaded_file", filename=name, _external=True),
                file_size=size,
                file_type=upload.mimetype,
            )
        )
        current_app.logger.info("Stored upload %s for user %s", name, user_id)
    return stored
