import base64
import binascii
import logging
import os
import re
import secrets
import time
from dataclasses import dataclass
from pathlib import Path

from fastapi import UploadFile

from db import ROOT_DIR
from errors import ValidationError

logger = logging.getLogger("app.signatures")

URL_PREFIX = "/uploads/signatures"
MAX_FILE_SIZE = 5 * 1024 * 1024
ALLOWED_CONTENT_TYPES = {"image/png", "image/jpeg", "image/jpg"}
ALLOWED_EXTENSIONS = {".png", ".jpg", ".jpeg"}

_DATA_URL_PREFIX = re.compile(r"^data:image/\w+;base64,")


@dataclass(frozen=True)
class UploadedImage:
    """A multipart signature image read from the request but not yet written to disk."""

    data: bytes
    extension: str


def upload_dir() -> Path:
    custom = os.getenv("APP_UPLOAD_DIR")
    path = Path(custom).expanduser() if custom else ROOT_DIR / "uploads" / "signatures"
    path.mkdir(parents=True, exist_ok=True)
    return path


def signature_url(filename: str) -> str:
    return f"{URL_PREFIX}/{filename}"


def _new_filename(extension: str = ".png") -> str:
    return f"{int(time.time() * 1000)}-{secrets.token_hex(8)}-signature{extension}"


def _write(data: bytes, extension: str) -> str:
    if not data:
        raise ValidationError("signature image is empty")
    if len(data) > MAX_FILE_SIZE:
        raise ValidationError("signature image is too large (max 5 MB)")

    filename = _new_filename(extension)
    (upload_dir() / filename).write_bytes(data)
    logger.info("action=store filename=%s bytes=%s", filename, len(data))
    return filename


def save_base64_image(data: str) -> str:
    """
    Decode a base64 image (with or without a data URL prefix) into the upload
    directory and return the stored filename.
    """
    raw = _DATA_URL_PREFIX.sub("", data.strip())
    try:
        image = base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError("signature is not valid base64 image data") from exc
    return _write(image, ".png")


async def read_upload(upload: UploadFile) -> UploadedImage:
    extension = Path(upload.filename or "").suffix.lower()
    if upload.content_type not in ALLOWED_CONTENT_TYPES or extension not in ALLOWED_EXTENSIONS:
        raise ValidationError("signature must be a PNG or JPEG image")

    data = await upload.read()
    if not data:
        raise ValidationError("signature image is empty")
    if len(data) > MAX_FILE_SIZE:
        raise ValidationError("signature image is too large (max 5 MB)")
    return UploadedImage(data=data, extension=extension)


def store_signature(source: "str | UploadedImage | None") -> str:
    """Write a signature source into the upload directory and return its URL."""
    if source is None or (isinstance(source, str) and not source.strip()):
        raise ValidationError("no signature provided")
    if isinstance(source, UploadedImage):
        return signature_url(_write(source.data, source.extension))
    return signature_url(save_base64_image(source))


def remove_signature_file(url: str | None) -> None:
    if not url or not url.startswith(f"{URL_PREFIX}/"):
        return
    path = upload_dir() / Path(url).name
    try:
        path.unlink()
    except FileNotFoundError:
        logger.warning("action=remove filename=%s missing", path.name)
        return
    logger.info("action=remove filename=%s", path.name)
