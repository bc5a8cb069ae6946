import os
import sys

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import io

import pytest
from PIL import Image

from contentful_to_strapi.migrators.media_transcoder import decide, is_raster_image, transcode_image

MB = 1024 * 1024


def _encode(img, fmt, **kwargs):
    buf = io.BytesIO()
    img.save(buf, format=fmt, **kwargs)
    return buf.getvalue()


@pytest.mark.parametrize(
    "size_mb, quality, box",
    [
        (1.0, 95, 5000),
        (3.2, 95, 5000),
        (5.0, 95, 5000),
        (5.01, 90, 4000),
        (10.0, 90, 4000),
        (10.5, 85, 3000),
        (80.0, 85, 3000),
    ],
)
def test_band_selection(size_mb, quality, box):
    decision = decide(size_mb, 100, 100, "JPEG")
    assert decision.transcode
    assert decision.quality == quality
    assert decision.max_dimension == box


def test_small_files_are_left_alone():
    decision = decide(0.99, 9000, 9000, "PNG")
    assert not decision.transcode
    assert not decision.resize


def test_resize_thresholds_per_band():
    assert not decide(3, 5000, 5000, "PNG").resize
    assert decide(3, 5001, 10, "PNG").resize
    assert not decide(7, 4000, 1200, "JPEG").resize
    assert decide(7, 1200, 4001, "JPEG").resize
    assert not decide(12, 3000, 3000, "JPEG").resize
    assert decide(12, 3001, 1, "JPEG").resize


def test_png_stays_png_and_others_become_jpeg():
    png = decide(2, 10, 10, "PNG")
    assert png.output_format == "PNG" and not png.normalize_format
    jpg = decide(2, 10, 10, "JPG")
    assert jpg.output_format == "JPEG" and not jpg.normalize_format
    webp = decide(2, 10, 10, "image/webp")
    assert webp.output_format == "JPEG" and webp.normalize_format


def test_is_raster_image():
    assert is_raster_image("image/jpeg")
    assert is_raster_image("image/png; charset=binary")
    assert not is_raster_image("image/svg+xml")
    assert not is_raster_image("video/mp4")
    assert not is_raster_image(None)


def test_non_images_and_svg_are_bypassed():
    data = b"x" * (2 * MB)
    for content_type in ("application/pdf", "image/svg+xml"):
        result = transcode_image(data, content_type)
        assert result.data is data
        assert result.content_type == content_type
        assert not result.transcoded


def test_images_under_one_mb_are_bypassed():
    data = _encode(Image.new("RGB", (50, 50), (10, 20, 30)), "BMP")
    result = transcode_image(data, "image/bmp")
    assert result.data is data
    assert not result.transcoded


def test_bmp_is_normalized_to_smaller_jpeg():
    data = _encode(Image.new("RGB", (700, 700), (200, 30, 30)), "BMP")
    assert len(data) > MB
    result = transcode_image(data, "image/bmp")
    assert result.transcoded
    assert result.content_type == "image/jpeg"
    assert result.decision.normalize_format
    assert len(result.data) < len(data)
    with Image.open(io.BytesIO(result.data)) as out:
        assert out.format == "JPEG"
        assert out.size == (700, 700)


def test_oversized_dimensions_are_resized_with_aspect_kept():
    data = _encode(Image.new("RGB", (5200, 70), (0, 120, 0)), "BMP")
    assert len(data) > MB
    result = transcode_image(data, "image/bmp")
    assert result.transcoded
    with Image.open(io.BytesIO(result.data)) as out:
        assert out.width == 5000
        assert 66 <= out.height <= 68


def test_transparency_is_flattened_on_white_for_jpeg():
    data = _encode(Image.new("RGBA", (620, 620), (0, 0, 0, 0)), "TIFF")
    assert len(data) > MB
    result = transcode_image(data, "image/tiff")
    assert result.content_type == "image/jpeg"
    with Image.open(io.BytesIO(result.data)) as out:
        assert out.mode == "RGB"
        assert all(channel >= 250 for channel in out.getpixel((10, 10)))


def test_candidate_that_is_not_smaller_keeps_original():
    noise = Image.frombytes("RGB", (700, 700), os.urandom(700 * 700 * 3))
    data = _encode(noise, "PNG", optimize=True, compress_level=9)
    assert len(data) > MB
    result = transcode_image(data, "image/png")
    assert not result.transcoded
    assert result.data == data
    assert result.content_type == "image/png"
    assert result.decision.output_format == "PNG"


def test_decoder_failure_falls_back_to_original(caplog):
    data = b"\x00not an image" * (MB // 10)
    result = transcode_image(data, "image/jpeg")
    assert result.data is data
    assert not result.transcoded
    assert "uploading original" in caplog.text
