"""Pillow/numpy image helpers used by upload and pipeline stages.

All functions are synchronous and CPU bound; callers run them in a worker
thread with ``asyncio.to_thread``.
"""

from io import BytesIO

import numpy as np
from PIL import Image, ImageEnhance, ImageFilter, ImageOps

from race_photo_pipeline.domain.photos import BoundingBox, PreparedImage
from race_photo_pipeline.domain.pipeline import QualityReport

ANALYSIS_MAX_SIDE = 2400
WEB_MAX_SIDE = 1600
QUALITY_SAMPLE_SIDE = 256
SHARP_VARIANCE = 500.0
CROP_MAX_SIDE = 800
CROP_MIN_SIDE = 50


def open_rgb(data: bytes) -> Image.Image:
    """Decode bytes into an upright RGB image."""
    image = Image.open(BytesIO(data))
    image = ImageOps.exif_transpose(image)
    return image.convert("RGB")


def encode(image: Image.Image, fmt: str, quality: int) -> bytes:
    """Encode an image to bytes."""
    buffer = BytesIO()
    image.save(buffer, format=fmt, quality=quality)
    return buffer.getvalue()


def prepare_upload(data: bytes) -> PreparedImage:
    """Build the analysis JPEG and the public web copy of an upload."""
    image = open_rgb(data)
    width, height = image.size

    analysis = image.copy()
    analysis.thumbnail((ANALYSIS_MAX_SIDE, ANALYSIS_MAX_SIDE))
    web = image.copy()
    web.thumbnail((WEB_MAX_SIDE, WEB_MAX_SIDE))

    return PreparedImage(
        jpeg=encode(analysis, "JPEG", 85),
        web=encode(web, "WEBP", 80),
        width=width,
        height=height,
    )


def analyze_quality(data: bytes, threshold: int) -> QualityReport:
    """Score sharpness 0-100 from the Laplacian energy of a small grayscale copy."""
    image = Image.open(BytesIO(data)).convert("L")
    image.thumbnail((QUALITY_SAMPLE_SIDE, QUALITY_SAMPLE_SIDE))
    pixels = np.asarray(image, dtype=np.float64)
    if pixels.shape[0] < 3 or pixels.shape[1] < 3:
        variance = 0.0
    else:
        laplacian = (
            pixels[:-2, 1:-1]
            + pixels[2:, 1:-1]
            + pixels[1:-1, :-2]
            + pixels[1:-1, 2:]
            - 4 * pixels[1:-1, 1:-1]
        )
        variance = float(np.mean(laplacian**2))
    score = min(100, round(variance / SHARP_VARIANCE * 100))
    return QualityReport(score=score, is_blurry=score < threshold)


def auto_retouch(data: bytes) -> bytes:
    """Normalize exposure, lift brightness/saturation slightly and sharpen."""
    image = open_rgb(data)
    image = ImageOps.autocontrast(image, cutoff=0.5)
    image = ImageEnhance.Brightness(image).enhance(1.02)
    image = ImageEnhance.Color(image).enhance(1.05)
    image = image.filter(ImageFilter.UnsharpMask(radius=0.8, percent=60, threshold=2))
    return encode(image, "WEBP", 80)


def crop_face(data: bytes, box: BoundingBox) -> bytes | None:
    """Crop a face with room for the upper body and bib below it.

    Padding is 80% of the face width on each side, 50% of its height above
    and 200% below. Returns ``None`` when the crop would be too small.
    """
    image = open_rgb(data)
    img_w, img_h = image.size
    face_x = round(box.left * img_w)
    face_y = round(box.top * img_h)
    face_w = round(box.width * img_w)
    face_h = round(box.height * img_h)

    left = max(0, face_x - round(face_w * 0.8))
    top = max(0, face_y - round(face_h * 0.5))
    right = min(img_w, face_x + face_w + round(face_w * 0.8))
    bottom = min(img_h, face_y + face_h + round(face_h * 2.0))
    if right - left < CROP_MIN_SIDE or bottom - top < CROP_MIN_SIDE:
        return None

    crop = image.crop((left, top, right, bottom))
    crop.thumbnail((CROP_MAX_SIDE, CROP_MAX_SIDE))
    return encode(crop, "WEBP", 80)
