"""
pipelines/documents.py

Patient document attachments.

Files are kept inline on the patient as ``data:`` URLs. Images are
normalised before storage:
  1. Convert to RGB (handles grayscale, RGBA, palette scans, etc.)
  2. Resize so the longest side is at most MAX_SIDE, preserving aspect ratio.
  3. Re-encode as PNG.
Other file types (PDF, text) are stored as uploaded.
"""

from __future__ import annotations

import base64
import binascii
import io
import logging
from typing import Optional

from PIL import Image, UnidentifiedImageError

from pipelines.errors import ValidationError
from pipelines.schemas import Patient, PatientDocument

logger = logging.getLogger(__name__)

MAX_SIDE: int = 1024
THUMBNAIL_SIDE: int = 256
MAX_UPLOAD_BYTES: int = 10 * 1024 * 1024


def to_data_url(data: bytes, file_type: str) -> str:
    return f"data:{file_type};base64,{base64.b64encode(data).decode('ascii')}"


def decode_data_url(data_url: str) -> tuple[str, bytes]:
    """
    Split a ``data:<mime>;base64,<payload>`` URL into ``(mime, bytes)``.

    Raises:
        ValueError: If *data_url* is not a base64 data URL.
    """
    if not data_url.startswith("data:") or ";base64," not in data_url:
        raise ValueError("Not a base64 data URL")
    header, payload = data_url[5:].split(";base64,", 1)
    try:
        return header or "application/octet-stream", base64.b64decode(payload, validate=True)
    except binascii.Error as exc:
        raise ValueError("Corrupted data URL payload") from exc


def _fit(image: Image.Image, max_side: int) -> Image.Image:
    original_size = image.size
    max_dim = max(original_size)
    if max_dim <= max_side:
        return image
    scale = max_side / max_dim
    new_size = (max(1, int(original_size[0] * scale)), max(1, int(original_size[1] * scale)))
    logger.debug("Resized image from %s to %s.", original_size, new_size)
    return image.resize(new_size, Image.LANCZOS)


def _png_bytes(image: Image.Image) -> bytes:
    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()


def normalize_image(data: bytes) -> bytes:
    """
    Return *data* re-encoded as an RGB PNG no larger than MAX_SIDE.

    Raises:
        ValidationError: If *data* is not a readable image, or decodes to more
            pixels than Pillow's decompression-bomb limit.
    """
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except Image.DecompressionBombError as exc:
        logger.warning("Refused oversized image: %s", exc)
        raise ValidationError(["L'image est trop grande."]) from exc
    except (UnidentifiedImageError, OSError) as exc:
        raise ValidationError(["Le fichier image est illisible."]) from exc

    if image.mode != "RGB":
        logger.debug("Converting image from mode=%s to RGB.", image.mode)
        image = image.convert("RGB")
    image = _fit(image, MAX_SIDE)
    return _png_bytes(image)


def make_thumbnail(data_url: str, side: int = THUMBNAIL_SIDE) -> Optional[bytes]:
    """PNG preview of an image document, or None for non-image documents."""
    mime, raw = decode_data_url(data_url)
    if not mime.startswith("image/"):
        return None
    image = Image.open(io.BytesIO(raw)).convert("RGB")
    image.thumbnail((side, side), Image.LANCZOS)
    return _png_bytes(image)


def attach_document(patient: Patient, name: str, file_type: str, data: bytes) -> PatientDocument:
    """
    Store *data* on *patient* as a new document and return it.

    Raises:
        ValidationError: If the file is empty, too large, or an unreadable image.
    """
    if not data:
        raise ValidationError(["Le fichier est vide."])
    if len(data) > MAX_UPLOAD_BYTES:
        raise ValidationError([f"Le fichier dépasse {MAX_UPLOAD_BYTES // (1024 * 1024)} Mo."])

    file_type = file_type or "application/octet-stream"
    if file_type.startswith("image/"):
        data = normalize_image(data)
        file_type = "image/png"

    doc = PatientDocument(name=name or "document", file_type=file_type, data_url=to_data_url(data, file_type))
    patient.documents.append(doc)
    logger.info("Attached document %s (%s, %d bytes) to patient %s", doc.id, file_type, len(data), patient.id)
    return doc


def remove_document(patient: Patient, document_id: str) -> bool:
    before = len(patient.documents)
    patient.documents = [d for d in patient.documents if d.id != document_id]
    return len(patient.documents) != before
