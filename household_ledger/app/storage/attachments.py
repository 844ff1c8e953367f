"""
storage/attachments.py — Attachment storage collaborator.

The ledger stores receipts and photos outside the database. It only needs two
operations from the storage side:

    upload(file)      -> StoredAttachment(url, public_id)
    delete(public_id) -> bool

`delete` is also the compensating action for a failed expense creation:
anything uploaded before the database transaction rolled back is removed
again (see unit_of_work.py).

Implementations:
  - CloudinaryAttachmentStore — production backend (cloudinary SDK).
  - InMemoryAttachmentStore   — tests and credential-less local runs.

One store is built per Flask app in create_app() via build_attachment_store()
and passed explicitly to the services that need it.
"""

from __future__ import annotations

import hashlib
import itertools
import logging
import threading
import uuid
from dataclasses import dataclass
from typing import Protocol

import cloudinary.exceptions
import cloudinary.uploader
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from household_ledger.app.errors import AppError, ErrorCode

logger = logging.getLogger(__name__)

# Server-side (5xx, socket) failures and rate limiting. Bad requests and
# rejected credentials fail the same way on every attempt.
_TRANSIENT_ERRORS = (
    cloudinary.exceptions.GeneralError,
    cloudinary.exceptions.RateLimited,
)


class AttachmentStorageError(AppError):
    """The storage backend rejected or failed an upload."""

    kind = "storage"

    def __init__(self, message: str) -> None:
        super().__init__(ErrorCode.ATTACHMENT_UPLOAD_FAILED, message, 502)


@dataclass(frozen=True)
class AttachmentUpload:
    """A file received from the client, fully read into memory."""

    filename: str
    content: bytes
    content_type: str | None = None


@dataclass(frozen=True)
class StoredAttachment:
    url: str
    public_id: str


class AttachmentStore(Protocol):

    def upload(self, file: AttachmentUpload) -> StoredAttachment: ...

    def delete(self, public_id: str) -> bool: ...


class CloudinaryAttachmentStore:
    """
    Attachment store backed by Cloudinary.

    Credentials travel with every SDK call. The process-wide
    cloudinary.config() is never touched, so two apps with different
    accounts can share a process.
    """

    def __init__(
            self,
            cloud_name: str,
            api_key: str,
            api_secret: str,
            folder: str = "household_ledger",
    ) -> None:
        self._cloud_name = cloud_name
        self._api_key = api_key
        self._api_secret = api_secret
        self._folder = folder

    def _credentials(self) -> dict:
        return {
            "cloud_name": self._cloud_name,
            "api_key": self._api_key,
            "api_secret": self._api_secret,
            "secure": True,
        }

    def _public_id(self, filename: str) -> str:
        """Format: {uuid}_{filename_hash} — unique even for repeated filenames."""
        filename_hash = hashlib.md5(filename.encode()).hexdigest()[:8]
        return f"{uuid.uuid4().hex}_{filename_hash}"

    @retry(
        retry=retry_if_exception_type(_TRANSIENT_ERRORS),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        reraise=True,
    )
    def _upload(self, file: AttachmentUpload) -> dict:
        return cloudinary.uploader.upload(
            file.content,
            public_id=self._public_id(file.filename),
            folder=self._folder,
            resource_type="auto",
            **self._credentials(),
        )

    def upload(self, file: AttachmentUpload) -> StoredAttachment:
        try:
            result = self._upload(file)
        except cloudinary.exceptions.Error as exc:
            logger.error("Attachment upload failed for %r: %s", file.filename, exc)
            raise AttachmentStorageError(
                f"Could not store attachment '{file.filename}'."
            ) from exc

        return StoredAttachment(
            url=result.get("secure_url") or result.get("url", ""),
            public_id=result["public_id"],
        )

    def delete(self, public_id: str) -> bool:
        result = cloudinary.uploader.destroy(public_id, **self._credentials())
        return result.get("result") == "ok"


class InMemoryAttachmentStore:
    """Keeps uploads in a dict. Deleted ids are remembered for inspection."""

    def __init__(self) -> None:
        self.objects: dict[str, AttachmentUpload] = {}
        self.deleted: list[str] = []
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def upload(self, file: AttachmentUpload) -> StoredAttachment:
        with self._lock:
            public_id = f"mem-{next(self._ids)}"
            self.objects[public_id] = file
        return StoredAttachment(
            url=f"memory://attachments/{public_id}/{file.filename}",
            public_id=public_id,
        )

    def delete(self, public_id: str) -> bool:
        with self._lock:
            removed = self.objects.pop(public_id, None)
            self.deleted.append(public_id)
        return removed is not None


def build_attachment_store(config) -> AttachmentStore:
    """Builds the store selected by config["ATTACHMENT_BACKEND"]."""
    backend = config.get("ATTACHMENT_BACKEND", "cloudinary")
    if backend == "memory":
        return InMemoryAttachmentStore()
    if backend == "cloudinary":
        return CloudinaryAttachmentStore(
            cloud_name=config.get("CLOUDINARY_CLOUD_NAME", ""),
            api_key=config.get("CLOUDINARY_API_KEY", ""),
            api_secret=config.get("CLOUDINARY_API_SECRET", ""),
            folder=config.get("CLOUDINARY_FOLDER", "household_ledger"),
        )
    raise ValueError(f"Unknown ATTACHMENT_BACKEND {backend!r}. Use 'cloudinary' or 'memory'.")
