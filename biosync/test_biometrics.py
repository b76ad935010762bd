import pytest

from biosync.biometrics import infer_image_src, sanitize, validate_editable
from biosync.errors import InvalidPayload


def test_sanitize_bare_string():
    assert sanitize("iVBORw0KGgo=") == "iVBORw0KGgo="


def test_sanitize_strips_data_uri_and_whitespace():
    assert sanitize("data:image/png;base64,iVBO Rw0K\nGgo=\r\n") == "iVBORw0KGgo="


def test_sanitize_keeps_text_after_last_comma():
    assert sanitize("a,b,c3Rq") == "c3Rq"


def test_sanitize_photo_wrapper():
    assert sanitize({"photo": "data:image/jpeg;base64,/9j/4AAQ"}) == "/9j/4AAQ"


@pytest.mark.parametrize("raw", [None, 42, {}, {"photo": ""}, {"image": "abc"}, ["abc"]])
def test_sanitize_unrecognized_shapes_are_empty(raw):
    assert sanitize(raw) == ""


def test_infer_image_src_signatures():
    assert infer_image_src("/9j/4AAQ") == "data:image/jpeg;base64,/9j/4AAQ"
    assert infer_image_src("iVBORw0K") == "data:image/png;base64,iVBORw0K"
    assert infer_image_src("R0lGODlh") == "data:image/gif;base64,R0lGODlh"
    assert infer_image_src("Qk02") == "data:image;base64,Qk02"


def test_infer_image_src_keeps_existing_data_uri():
    src = "data:image/webp;base64,UklGR"
    assert infer_image_src(src) == src


def test_validate_editable_returns_trimmed_payload():
    assert validate_editable("  aGVsbG8=\n") == "aGVsbG8="


@pytest.mark.parametrize("candidate", ["not base64!", "abc", "aGVsbG8=é"])
def test_validate_editable_rejects_garbage(candidate):
    with pytest.raises(InvalidPayload):
        validate_editable(candidate)
