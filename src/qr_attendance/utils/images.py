from __future__ import annotations

import base64
import binascii
from io import BytesIO
from pathlib import Path

from PIL import Image, UnidentifiedImageError


class InvalidQrImage(ValueError):
    pass


def decode_data_url(data_url: str) -> bytes:
    """Return the raw bytes of a ``data:<mime>;base64,<payload>`` URL.

    A bare base64 string (no ``data:`` prefix) is accepted as well.
    """

    if not data_url:
        raise InvalidQrImage("QR Code not available.")

    payload = data_url.strip()
    if payload.startswith("data:"):
        header, _, payload = payload.partition(",")
        if ";base64" not in header:
            raise InvalidQrImage("QR image is not base64 encoded.")

    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidQrImage("QR image payload is not valid base64.") from exc


def load_qr_image(data_url: str) -> Image.Image:
    raw = decode_data_url(data_url)
    try:
        with Image.open(BytesIO(raw)) as img:
            return img.convert("RGBA")
    except (UnidentifiedImageError, OSError) as exc:
        raise InvalidQrImage("QR image could not be decoded.") from exc


def save_qr_image(data_url: str, destination: Path) -> Path:
    destination = Path(destination).expanduser()
    destination.parent.mkdir(parents=True, exist_ok=True)
    image = load_qr_image(data_url)
    image.save(destination, format="PNG")
    return destination
