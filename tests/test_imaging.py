# tests/test_imaging.py
import base64
import io

import pytest
from PIL import Image

from panelgen.lib.imaging import decode_image_b64, is_inline_image, shrink_image, to_data_url, verify_image

from conftest import tiny_png


def test_decode_data_url_and_raw_base64():
    data = tiny_png()
    b64 = base64.b64encode(data).decode()
    assert decode_image_b64(f"data:image/png;base64,{b64}") == (data, "image/png")
    assert decode_image_b64(b64) == (data, "image/png")


def test_decode_tolerates_whitespace_and_missing_padding():
    b64 = base64.b64encode(tiny_png()).decode().rstrip("=")
    wrapped = "\n".join(b64[i:i + 60] for i in range(0, len(b64), 60))
    data, ctype = decode_image_b64(wrapped)
    assert ctype == "image/png"
    assert data == tiny_png()


def test_decode_rejects_unknown_bytes():
    with pytest.raises(ValueError):
        decode_image_b64(base64.b64encode(b"hello world, not an image").decode())
    with pytest.raises(ValueError):
        decode_image_b64("")


def test_to_data_url_sniffs_type():
    assert to_data_url(tiny_png()).startswith("data:image/png;base64,")


def test_verify_image():
    assert verify_image(tiny_png()) == "image/png"
    with pytest.raises(ValueError):
        verify_image(b"<html></html>")


def test_shrink_image_only_when_too_large():
    small = tiny_png(size=(16, 16))
    assert shrink_image(small, 64) == (small, "image/png")

    big, ctype = shrink_image(tiny_png(size=(300, 150)), 100)
    assert ctype == "image/jpeg"
    with Image.open(io.BytesIO(big)) as im:
        assert im.size == (100, 50)


def test_is_inline_image():
    assert is_inline_image("data:image/png;base64,AAAA")
    assert not is_inline_image("theresa_frontal.jpg")
    assert not is_inline_image("https://img.test/a.png")
