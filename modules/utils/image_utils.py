"""Utility helpers for image payloads, resizing and watermarking."""

from __future__ import annotations

import base64
import io
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from PIL import Image, ImageDraw, ImageFont

DEFAULT_MIME_TYPE = "image/png"

_PIL_FORMATS = {
    "image/png": "PNG",
    "image/jpeg": "JPEG",
    "image/jpg": "JPEG",
    "image/webp": "WEBP",
}


@dataclass(slots=True, frozen=True)
class ImagePayload:
    """Base64-encoded image bytes plus their mime type, as sent over the wire."""

    base64: str
    mime_type: str = DEFAULT_MIME_TYPE

    @classmethod
    def from_data_url(cls, data_url: str) -> "ImagePayload":
        """Split a ``data:<mime>;base64,<payload>`` URL into its parts."""
        if not data_url or "," not in data_url:
            raise ValueError("Not a data URL.")
        header, payload = data_url.split(",", 1)
        mime_type = header.split(";")[0].split(":", 1)[-1] if header.startswith("data:") else ""
        return cls(base64=payload, mime_type=mime_type or DEFAULT_MIME_TYPE)

    @classmethod
    def from_bytes(cls, data: bytes, mime_type: Optional[str] = None) -> "ImagePayload":
        encoded = base64.b64encode(data).decode("ascii")
        return cls(base64=encoded, mime_type=mime_type or DEFAULT_MIME_TYPE)

    def to_data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.base64}"

    def raw_bytes(self) -> bytes:
        return base64.b64decode(self.base64)


@dataclass(slots=True)
class InputItem:
    """A user-selected input image; lives only for the current session."""

    data_url: str
    name: str
    path: Optional[Path] = None

    @classmethod
    def from_path(cls, path: Path | str) -> "InputItem":
        file_path = Path(path)
        mime_type, _ = mimetypes.guess_type(file_path.name)
        payload = ImagePayload.from_bytes(file_path.read_bytes(), mime_type or DEFAULT_MIME_TYPE)
        return cls(data_url=payload.to_data_url(), name=file_path.name, path=file_path)

    @classmethod
    def from_data_url(cls, data_url: str, name: str) -> "InputItem":
        return cls(data_url=data_url, name=name)

    @property
    def payload(self) -> ImagePayload:
        return ImagePayload.from_data_url(self.data_url)


def load_image(data_url: str) -> Image.Image:
    """Decode a data URL into a fully loaded PIL image."""
    payload = ImagePayload.from_data_url(data_url)
    with Image.open(io.BytesIO(payload.raw_bytes())) as image:
        image.load()
        return image.copy()


def encode_image(image: Image.Image, mime_type: str = DEFAULT_MIME_TYPE) -> str:
    """Encode a PIL image as a data URL."""
    fmt = _PIL_FORMATS.get(mime_type.lower(), "PNG")
    if fmt != "PNG" and image.mode not in ("RGB", "L"):
        image = image.convert("RGB")
    buffer = io.BytesIO()
    image.save(buffer, format=fmt)
    resolved_mime = mime_type if mime_type.lower() in _PIL_FORMATS else DEFAULT_MIME_TYPE
    return ImagePayload.from_bytes(buffer.getvalue(), resolved_mime).to_data_url()


def image_size(data_url: str) -> Tuple[int, int]:
    """Return the (width, height) of the image behind a data URL."""
    return load_image(data_url).size


def resize_image_to_match(data_url: str, reference_data_url: str) -> str:
    """Resize ``data_url`` to the pixel dimensions of ``reference_data_url``."""
    target_size = image_size(reference_data_url)
    image = load_image(data_url)
    if image.size == target_size:
        return data_url
    resized = image.resize(target_size, Image.Resampling.LANCZOS)
    return encode_image(resized, DEFAULT_MIME_TYPE)


# Pillow's bundled font has no full-width punctuation.
_WATERMARK_GLYPHS = str.maketrans({"｜": "|", "：": ":", "，": ",", "（": "(", "）": ")"})


def _watermark_font(image_width: int) -> ImageFont.ImageFont | ImageFont.FreeTypeFont:
    size = max(12, image_width // 40)
    return ImageFont.load_default(size=size)


def watermark_text(text: str) -> str:
    """Return ``text`` with full-width punctuation swapped for ASCII."""
    return text.translate(_WATERMARK_GLYPHS)


def embed_watermark(data_url: str, text: str) -> str:
    """Draw ``text`` in the bottom-right corner and return a PNG data URL."""
    base = load_image(data_url).convert("RGBA")
    overlay = Image.new("RGBA", base.size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(overlay)
    font = _watermark_font(base.width)
    text = watermark_text(text)

    left, top, right, bottom = draw.textbbox((0, 0), text, font=font)
    margin = max(6, base.width // 100)
    x = base.width - (right - left) - margin - left
    y = base.height - (bottom - top) - margin - top
    # Dark halo keeps the text readable on light backgrounds.
    draw.text((x + 1, y + 1), text, font=font, fill=(0, 0, 0, 120))
    draw.text((x, y), text, font=font, fill=(255, 255, 255, 200))

    composed = Image.alpha_composite(base, overlay).convert("RGB")
    return encode_image(composed, DEFAULT_MIME_TYPE)
