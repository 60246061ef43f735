"""
Uploaded medical files -> inline base64 attachments for the model request.
"""
import base64
from typing import BinaryIO, Iterable, List, Optional

from dxchat.config import MAX_ATTACHMENT_BYTES
from dxchat.models import Attachment

ACCEPTED_TYPES = ("image/", "application/pdf")


class AttachmentError(ValueError):
    pass


def _human_size(n: int) -> str:
    if n >= 1024 * 1024:
        return f"{n / (1024 * 1024):.0f} MB"
    if n >= 1024:
        return f"{n / 1024:.0f} KB"
    return f"{n} bytes"


def is_accepted(mime_type: str) -> bool:
    return any(mime_type == t or (t.endswith("/") and mime_type.startswith(t)) for t in ACCEPTED_TYPES)


def encode_attachment(raw: bytes, mime_type: Optional[str], name: Optional[str] = None,
                      max_bytes: int = MAX_ATTACHMENT_BYTES) -> Attachment:
    mime_type = (mime_type or "").split(";", 1)[0].strip().lower()
    label = name or "file"
    if not is_accepted(mime_type):
        raise AttachmentError(f"{label}: unsupported file type '{mime_type or 'unknown'}'. Upload an image or a PDF.")
    if not raw:
        raise AttachmentError(f"{label}: file is empty.")
    if len(raw) > max_bytes:
        raise AttachmentError(f"{label}: file is larger than {_human_size(max_bytes)}.")
    return Attachment(mime_type=mime_type, data=base64.b64encode(raw).decode("ascii"), name=name)


def read_upload(stream: BinaryIO, mime_type: Optional[str], name: Optional[str] = None,
                max_bytes: int = MAX_ATTACHMENT_BYTES) -> Attachment:
    # one byte past the limit is enough to know the file is too large
    raw = stream.read(max_bytes + 1)
    return encode_attachment(raw, mime_type, name, max_bytes=max_bytes)


def read_uploads(uploads: Iterable, max_bytes: int = MAX_ATTACHMENT_BYTES) -> List[Attachment]:
    """Convert FastAPI ``UploadFile`` objects; browsers send an empty part when no file is picked."""
    attachments = []
    for upload in uploads:
        if not upload.filename:
            continue
        attachments.append(read_upload(upload.file, upload.content_type, upload.filename, max_bytes=max_bytes))
    return attachments
