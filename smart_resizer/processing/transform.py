"""Image transform primitives built on Pillow.

All functions take and return raw bytes so they can be called from worker
threads without sharing Image objects. The master image bytes are read-only.
"""

import io
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from PIL import Image, ImageOps, UnidentifiedImageError

from smart_resizer.exceptions import TransformError
from smart_resizer.formats.catalog import FormatSpec, SafeZone, safe_zone_pixels

# Aspect-ratio difference below which a cover crop keeps enough of the frame
CROP_THRESHOLD = 0.2
PAD_COLOR = "#FFFFFF"
OUTPUT_FORMAT = "PNG"
OUTPUT_CONTENT_TYPE = "image/png"

_MIME_BY_FORMAT = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
    "GIF": "image/gif",
    "BMP": "image/bmp",
    "TIFF": "image/tiff",
}


class ProcessingMethod(str, Enum):
    CROP = "crop"
    PADDING = "padding"


@dataclass(frozen=True)
class ImageMetadata:
    width: int
    height: int
    format: str

    @property
    def content_type(self) -> str:
        return _MIME_BY_FORMAT.get(self.format, "application/octet-stream")


def read_metadata(data: bytes) -> ImageMetadata:
    """Read dimensions and container format from the image header.

    The format comes from the bytes themselves, never from a filename or a
    client-supplied content type. Raises UnidentifiedImageError for anything
    Pillow cannot recognise and Image.DecompressionBombError for absurd sizes.
    """
    with Image.open(io.BytesIO(data)) as img:
        width, height = img.size
        fmt = (img.format or "").upper()
    return ImageMetadata(width=width, height=height, format=fmt)


def verify_decodable(data: bytes, allowed_formats: Iterable[str]) -> ImageMetadata:
    """Check that the payload is an intact image in one of allowed_formats."""
    allowed = {f.upper() for f in allowed_formats}
    meta = read_metadata(data)
    if meta.format not in allowed:
        raise UnidentifiedImageError(
            f"Unsupported image format '{meta.format or 'unknown'}'"
        )
    with Image.open(io.BytesIO(data)) as img:
        img.verify()
    return meta


def choose_method(source_width: int, source_height: int, fmt: FormatSpec) -> ProcessingMethod:
    """Pick crop for similar aspect ratios, padding otherwise."""
    source_ratio = source_width / source_height
    if abs(source_ratio - fmt.aspect_ratio) < CROP_THRESHOLD:
        return ProcessingMethod.CROP
    return ProcessingMethod.PADDING


def _normalize_mode(img: Image.Image) -> Image.Image:
    if img.mode in ("RGB", "RGBA"):
        return img
    if img.mode in ("P", "LA", "PA") or "transparency" in img.info:
        return img.convert("RGBA")
    return img.convert("RGB")


def resize(
    data: bytes,
    target_width: int,
    target_height: int,
    method: ProcessingMethod = ProcessingMethod.CROP,
    safe_zone: Optional[SafeZone] = None,
) -> bytes:
    """Resize the image to exactly target_width x target_height and encode as PNG.

    crop:    scale to cover the target, centred crop of the overflow
    padding: scale to fit inside the target, white canvas around it

    With a safe zone, the image is fitted into the area inside its margins and
    the margins are left as white canvas.
    """
    margins = {"top": 0, "bottom": 0, "left": 0, "right": 0}
    if safe_zone is not None and not safe_zone.is_empty:
        margins = safe_zone_pixels(target_width, target_height, safe_zone)
    inner = (
        target_width - margins["left"] - margins["right"],
        target_height - margins["top"] - margins["bottom"],
    )
    if inner[0] < 1 or inner[1] < 1:
        raise TransformError(
            f"Safe zone leaves no content area in {target_width}x{target_height}"
        )

    try:
        with Image.open(io.BytesIO(data)) as src:
            img = _normalize_mode(ImageOps.exif_transpose(src))
            if method == ProcessingMethod.CROP:
                out = ImageOps.fit(img, inner, Image.LANCZOS, centering=(0.5, 0.5))
            else:
                out = ImageOps.pad(img, inner, Image.LANCZOS, color=PAD_COLOR)
            if out.size != (target_width, target_height):
                canvas = Image.new(out.mode, (target_width, target_height), PAD_COLOR)
                canvas.paste(out, (margins["left"], margins["top"]))
                out = canvas
            buf = io.BytesIO()
            out.save(buf, format=OUTPUT_FORMAT, optimize=True)
    except (OSError, ValueError, Image.DecompressionBombError) as exc:
        raise TransformError(f"Resize to {target_width}x{target_height} failed: {exc}") from exc
    return buf.getvalue()
