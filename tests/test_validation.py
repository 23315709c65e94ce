# tests/test_validation.py
from app.services.validation import RejectReason, rejection_label, validate_image
from app.utils.image_utils import ImageFormat


def test_accepts_large_png(make_png):
    res = validate_image(make_png(1024, 768))
    assert res.accepted
    assert res.reason is None
    assert (res.format, res.width, res.height) == (ImageFormat.PNG, 1024, 768)

def test_accepts_exact_minimum_jpeg(make_jpeg):
    res = validate_image(make_jpeg(256, 256))
    assert res.accepted

def test_unknown_type_rejected_first():
    res = validate_image(b"definitely not an image file")
    assert not res.accepted
    assert res.reason is RejectReason.UNKNOWN_IMAGE_TYPE

def test_filename_never_matters():
    # bytes decide; there is no filename parameter to override them
    res = validate_image(b"<html>fake.png</html>")
    assert res.reason is RejectReason.UNKNOWN_IMAGE_TYPE

def test_webp_not_supported(make_webp):
    res = validate_image(make_webp())
    assert res.reason is RejectReason.FORMAT_NOT_SUPPORTED
    assert res.format is ImageFormat.WEBP

def test_corrupt_jpeg_cannot_read_dimensions():
    res = validate_image(b"\xff\xd8\xff" + b"\x00" * 32)
    assert res.reason is RejectReason.CANNOT_READ_DIMENSIONS

def test_too_small_carries_measured_size(make_png):
    res = validate_image(make_png(100, 100))
    assert res.reason is RejectReason.IMAGE_TOO_SMALL
    assert (res.width, res.height) == (100, 100)

def test_one_small_side_is_enough_to_reject(make_jpeg):
    assert validate_image(make_jpeg(4000, 255)).reason is RejectReason.IMAGE_TOO_SMALL
    assert validate_image(make_jpeg(255, 4000)).reason is RejectReason.IMAGE_TOO_SMALL

def test_custom_minimum(make_png):
    assert validate_image(make_png(100, 100), min_side=64).accepted

def test_rejection_labels_embed_reason(make_png, make_webp):
    small = rejection_label(validate_image(make_png(100, 120)))
    assert "IMAGE_TOO_SMALL" in small and "100x120" in small
    assert "FORMAT_NOT_SUPPORTED" in rejection_label(validate_image(make_webp()))
    assert "UNKNOWN_IMAGE_TYPE" in rejection_label(validate_image(b"nope nope nope"))
