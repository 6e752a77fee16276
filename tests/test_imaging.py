"""Tests for image preparation, quality scoring and cropping."""

from io import BytesIO

from PIL import Image

from race_photo_pipeline.domain.photos import BoundingBox
from race_photo_pipeline.services import imaging
from tests.conftest import make_jpeg


def test_prepare_upload_bounds_both_copies() -> None:
    prepared = imaging.prepare_upload(make_jpeg((3000, 2000), pattern=False))

    analysis = Image.open(BytesIO(prepared.jpeg))
    web = Image.open(BytesIO(prepared.web))
    assert (prepared.width, prepared.height) == (3000, 2000)
    assert max(analysis.size) == 2400
    assert analysis.format == "JPEG"
    assert max(web.size) == 1600
    assert web.format == "WEBP"


def test_quality_flags_flat_image_as_blurry() -> None:
    report = imaging.analyze_quality(make_jpeg(pattern=False), threshold=30)

    assert report.score == 0
    assert report.is_blurry is True


def test_quality_scores_sharp_image_high() -> None:
    report = imaging.analyze_quality(make_jpeg(), threshold=30)

    assert report.score == 100
    assert report.is_blurry is False


def test_auto_retouch_returns_webp() -> None:
    retouched = imaging.auto_retouch(make_jpeg())

    assert Image.open(BytesIO(retouched)).format == "WEBP"


def test_crop_face_pads_below_for_bib() -> None:
    box = BoundingBox(left=0.4, top=0.1, width=0.1, height=0.1)

    crop = imaging.crop_face(make_jpeg((1000, 1000)), box)

    assert crop is not None
    width, height = Image.open(BytesIO(crop)).size
    assert (width, height) == (260, 350)


def test_crop_face_rejects_tiny_faces() -> None:
    box = BoundingBox(left=0.5, top=0.5, width=0.01, height=0.01)

    assert imaging.crop_face(make_jpeg((400, 400)), box) is None
