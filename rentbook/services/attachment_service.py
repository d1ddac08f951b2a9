"""Local-directory storage for payment proofs.

Proofs arrive as base64 data URLs ("data:image/png;base64,...") and are
written under ATTACHMENTS_DIR as <tenant>_<month>_<payment>.<ext>. An existing
file is never overwritten; a clashing name gets a random suffix instead.
"""

import base64
import binascii
import logging
import mimetypes
import re
from pathlib import Path
from typing import NamedTuple, Optional
from uuid import uuid4

from rentbook.config import settings
from rentbook.errors import AttachmentStorageError
from rentbook.services.parsers import is_valid_month_key, normalize_month_key

logger = logging.getLogger(__name__)

DATA_URL_PATTERN = re.compile(r"^data:([^;,]+)?;base64,(.*)$", re.DOTALL)
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class StoredFile(NamedTuple):
    file_name: str
    file_path: str
    content_type: str


def sanitize_file_segment(value: Optional[str], fallback: str) -> str:
    """Make a value safe for use inside a file name."""
    cleaned = _UNSAFE_CHARS.sub("_", (value or "").strip()).strip("._")
    return cleaned or fallback


def decode_data_url(data_url: str) -> tuple[str, bytes]:
    """Split a base64 data URL into (content type, bytes).

    Raises:
        AttachmentStorageError: Not a base64 data URL or invalid base64 payload
    """
    match = DATA_URL_PATTERN.match(data_url or "")
    if not match:
        raise AttachmentStorageError("Attachment is not a base64 data URL")
    content_type = match.group(1) or "application/octet-stream"
    encoded = re.sub(r"\s", "", match.group(2))
    try:
        return content_type, base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise AttachmentStorageError(f"Invalid base64 attachment: {e}") from e


class LocalAttachmentStore:
    """Writes payment proofs to a local directory."""

    def __init__(self, base_dir: Optional[str | Path] = None):
        self.base_dir = Path(base_dir or settings.attachments_dir)

    def save(
        self,
        data_url: str,
        tenant_name: str = "",
        month_key: str = "",
        payment_ref: str = "",
        original_name: str = "",
    ) -> StoredFile:
        """Decode and store a data URL.

        Args:
            data_url: base64 data URL
            tenant_name: Used in the file name
            month_key: Used in the file name
            payment_ref: Payment identifier used in the file name
                (random when blank)
            original_name: Client-side file name, for its extension

        Returns:
            StoredFile describing the written file

        Raises:
            AttachmentStorageError: Undecodable data URL or write failure
        """
        content_type, payload = decode_data_url(data_url)

        month = normalize_month_key(month_key)
        safe_month = month if is_valid_month_key(month) else sanitize_file_segment(month_key, "month")
        stem = "_".join(
            (
                sanitize_file_segment(tenant_name, "Tenant"),
                safe_month,
                sanitize_file_segment(payment_ref, uuid4().hex[:12]),
            )
        )
        extension = Path(original_name).suffix if original_name else ""
        if not extension:
            extension = mimetypes.guess_extension(content_type) or ""
        file_name = f"{stem}{extension}"

        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
            path = self.base_dir / file_name
            if path.exists():
                file_name = f"{stem}_{uuid4().hex[:8]}{extension}"
                path = self.base_dir / file_name
            with path.open("xb") as fh:
                fh.write(payload)
        except OSError as e:
            raise AttachmentStorageError(f"Cannot write attachment {file_name}: {e}") from e

        logger.info(f"Stored attachment {path} ({len(payload)} bytes)")
        return StoredFile(file_name=file_name, file_path=str(path), content_type=content_type)

    def delete(self, file_path: str) -> None:
        """Remove a stored file; a file already gone is not an error."""
        try:
            Path(file_path).unlink(missing_ok=True)
        except OSError as e:
            raise AttachmentStorageError(f"Cannot delete attachment {file_path}: {e}") from e


__all__ = [
    "DATA_URL_PATTERN",
    "LocalAttachmentStore",
    "StoredFile",
    "decode_data_url",
    "sanitize_file_segment",
]
