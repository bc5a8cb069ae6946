"""
Size-banded image re-encoding ahead of Strapi uploads.

Large Contentful images are re-encoded before they are sent to Strapi so
that uploads stay within the server's body limits and timeouts.  The band
an image falls into decides the encoder quality and the largest allowed
dimension:

==============  =======  ===============
original size   quality  bounding box
==============  =======  ===============
< 1 MB          (none)   (none)
1 MB – 5 MB     95       5000 px
5 MB – 10 MB    90       4000 px
> 10 MB         85       3000 px
==============  =======  ===============

PNG stays PNG (maximum zlib level, transparency kept).  Every other raster
format is normalized to a progressive JPEG.  A re-encoded candidate is only
used when it is strictly smaller than the original bytes.
"""

from __future__ import annotations

import dataclasses
import io
import logging
from typing import Optional, Tuple

from PIL import Image

from contentful_to_strapi.models.media import TranscodeDecision, bytes_to_mb

logger = logging.getLogger(__name__)

MIN_TRANSCODE_MB = 1.0

# (upper bound in MB, inclusive; quality; bounding box)
_BANDS: Tuple[Tuple[float, int, int], ...] = (
    (5.0, 95, 5000),
    (10.0, 90, 4000),
    (float("inf"), 85, 3000),
)

_FORMAT_CONTENT_TYPES = {
    "PNG": "image/png",
    "JPEG": "image/jpeg",
}


@dataclasses.dataclass(frozen=True)
class TranscodeResult:
    """Bytes to upload, plus whether they differ from the downloaded original."""

    data: bytes
    content_type: Optional[str]
    transcoded: bool
    decision: TranscodeDecision

    @property
    def size_mb(self) -> float:
        return bytes_to_mb(len(self.data))


def is_raster_image(content_type: Optional[str]) -> bool:
    """True for ``image/*`` content types Pillow can re-encode (SVG excluded)."""
    if not content_type:
        return False
    ct = content_type.split(";")[0].strip().lower()
    return ct.startswith("image/") and not ct.startswith("image/svg")


def _normalized_format(declared_format: Optional[str]) -> str:
    fmt = (declared_format or "").upper()
    if "/" in fmt:
        fmt = fmt.split("/", 1)[1]
    return "JPEG" if fmt == "JPG" else fmt


def decide(original_size_mb: float, width: int, height: int, declared_format: Optional[str]) -> TranscodeDecision:
    """
    Pick quality, bounding box and output format for one image.

    :param original_size_mb: Size of the downloaded bytes in MB.
    :param width: Pixel width of the decoded image.
    :param height: Pixel height of the decoded image.
    :param declared_format: Pillow format name or MIME type (``"PNG"``, ``"image/jpeg"``...).
    :return: A decision with ``quality`` None when the image is left alone.
    """
    if original_size_mb < MIN_TRANSCODE_MB:
        return TranscodeDecision()
    fmt = _normalized_format(declared_format)
    output_format = "PNG" if fmt == "PNG" else "JPEG"
    for upper, quality, box in _BANDS:
        if original_size_mb <= upper:
            return TranscodeDecision(
                quality=quality,
                max_dimension=box,
                resize=max(width, height) > box,
                output_format=output_format,
                normalize_format=output_format != fmt,
            )
    raise AssertionError("unreachable: last band is unbounded")


def _flatten_to_rgb(img: Image.Image) -> Image.Image:
    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        rgba = img.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.getchannel("A"))
        return background
    return img.convert("RGB")


def _encode(img: Image.Image, decision: TranscodeDecision) -> bytes:
    if decision.resize and decision.max_dimension:
        img = img.copy()
        img.thumbnail((decision.max_dimension, decision.max_dimension), Image.LANCZOS)
    output = io.BytesIO()
    if decision.output_format == "PNG":
        img.save(output, format="PNG", optimize=True, compress_level=9)
    else:
        _flatten_to_rgb(img).save(
            output, format="JPEG", quality=decision.quality, progressive=True, optimize=True,
        )
    return output.getvalue()


def transcode_image(data: bytes, content_type: Optional[str]) -> TranscodeResult:
    """
    Re-encode ``data`` according to :func:`decide`.

    The original bytes and content type are returned unchanged for
    non-raster content, SVG, animated images, images under 1 MB, decoder
    failures and candidates that are not strictly smaller.
    """
    unchanged = TranscodeResult(data, content_type, False, TranscodeDecision())
    if not is_raster_image(content_type):
        return unchanged
    size_mb = bytes_to_mb(len(data))
    if size_mb < MIN_TRANSCODE_MB:
        return unchanged
    try:
        with Image.open(io.BytesIO(data)) as img:
            if getattr(img, "is_animated", False):
                logger.info("Skipping transcode of animated image (%.2f MB)", size_mb)
                return unchanged
            decision = decide(size_mb, img.width, img.height, img.format or content_type)
            candidate = _encode(img, decision)
    except (OSError, ValueError, Image.DecompressionBombError) as exc:
        logger.warning("Could not transcode image, uploading original: %s", exc)
        return unchanged

    if len(candidate) >= len(data):
        logger.info(
            "Transcoded image is not smaller (%d >= %d bytes), keeping original",
            len(candidate), len(data),
        )
        return TranscodeResult(data, content_type, False, decision)

    logger.info(
        "Transcoded image %.2f MB -> %.2f MB (quality %s, %s)",
        size_mb, bytes_to_mb(len(candidate)), decision.quality, decision.output_format,
    )
    return TranscodeResult(candidate, _FORMAT_CONTENT_TYPES[decision.output_format], True, decision)
