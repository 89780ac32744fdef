import base64
from io import BytesIO

import numpy as np
import pytest
import requests
from PIL import Image

import image_io
from image_io import (
    SourceUnavailable,
    UnsupportedFormat,
    decode,
    encode,
    resample,
    save_image,
    to_data_url,
)
from mask_alpha import InvalidDimensions, ShapeMismatch


def _png_bytes(color, size=(3, 2), mode="RGBA"):
    buf = BytesIO()
    Image.new(mode, size, color).save(buf, format="PNG")
    return buf.getvalue()


def test_decode_bytes_rgba():
    px, w, h = decode(_png_bytes((1, 2, 3, 4)))
    assert (w, h) == (3, 2)
    assert px.shape == (3 * 2 * 4,)
    assert px.reshape(-1, 4)[0].tolist() == [1, 2, 3, 4]


def test_decode_rgb_gets_opaque_alpha(tmp_path):
    p = tmp_path / "rgb.png"
    p.write_bytes(_png_bytes((9, 8, 7), mode="RGB"))
    px, w, h = decode(str(p))
    assert (w, h) == (3, 2)
    assert np.all(px.reshape(-1, 4)[:, 3] == 255)

    px2, _, _ = decode(p)
    np.testing.assert_array_equal(px, px2)


def test_decode_data_url():
    url = "data:image/png;base64," + base64.b64encode(_png_bytes((5, 5, 5, 5))).decode()
    px, w, h = decode(url)
    assert (w, h) == (3, 2)
    assert px[:4].tolist() == [5, 5, 5, 5]


def test_decode_bad_data_url():
    with pytest.raises(SourceUnavailable):
        decode("data:image/png;base64,@@not-base64@@")
    with pytest.raises(SourceUnavailable):
        decode("data:image/png;base64")


def test_decode_missing_file(tmp_path):
    with pytest.raises(SourceUnavailable):
        decode(str(tmp_path / "nope.png"))


def test_decode_garbage_bytes():
    with pytest.raises(UnsupportedFormat):
        decode(b"definitely not an image")


def test_decode_url(monkeypatch):
    payload = _png_bytes((10, 20, 30, 40))
    seen = {}

    class FakeResp:
        content = payload

        def raise_for_status(self):
            pass

    def fake_get(url, timeout):
        seen["url"], seen["timeout"] = url, timeout
        return FakeResp()

    monkeypatch.setattr(image_io.requests, "get", fake_get)
    px, w, h = decode("https://example.com/a.png", timeout=5)
    assert seen == {"url": "https://example.com/a.png", "timeout": 5}
    assert px[:4].tolist() == [10, 20, 30, 40]


def test_decode_url_failure(monkeypatch):
    def fake_get(url, timeout):
        raise requests.ConnectionError("boom")

    monkeypatch.setattr(image_io.requests, "get", fake_get)
    with pytest.raises(SourceUnavailable, match="boom"):
        decode("http://example.com/a.png")


def test_resample_same_size_is_copy():
    px = np.arange(2 * 2 * 4, dtype=np.uint8)
    out = resample(px, 2, 2, 2, 2)
    np.testing.assert_array_equal(out, px)
    assert not np.shares_memory(out, px)


@pytest.mark.parametrize("interp", ["nearest", "linear", "cubic", "area"])
def test_resample_uniform_image(interp):
    px = np.tile(np.array([200, 100, 50, 255], dtype=np.uint8), 4 * 2)
    out = resample(px, 4, 2, 8, 6, interpolation=interp)
    assert out.shape == (8 * 6 * 4,)
    assert np.all(out.reshape(-1, 4) == [200, 100, 50, 255])


def test_resample_accepts_bytes():
    out = resample(bytes([1, 2, 3, 4]), 1, 1, 3, 2, interpolation="nearest")
    assert out.reshape(-1, 4).tolist() == [[1, 2, 3, 4]] * 6


def test_resample_errors():
    px = np.zeros(16, dtype=np.uint8)
    with pytest.raises(ValueError):
        resample(px, 2, 2, 4, 4, interpolation="lanczos9")
    with pytest.raises(InvalidDimensions):
        resample(px, 2, 2, 0, 4)
    with pytest.raises(ShapeMismatch):
        resample(px, 3, 2, 4, 4)


def test_encode_png_keeps_alpha():
    px = np.array([1, 2, 3, 0, 4, 5, 6, 128], dtype=np.uint8)
    data = encode(px, 2, 1)
    assert data[:8] == b"\x89PNG\r\n\x1a\n"
    back, w, h = decode(data)
    assert (w, h) == (2, 1)
    np.testing.assert_array_equal(back, px)


def test_encode_jpeg_drops_alpha():
    px = np.tile(np.array([255, 255, 255, 0], dtype=np.uint8), 4)
    data = encode(px, 2, 2, "jpg")
    im = Image.open(BytesIO(data))
    assert im.format == "JPEG"
    assert im.mode == "RGB"


def test_encode_unknown_format():
    with pytest.raises(UnsupportedFormat):
        encode(np.zeros(4, dtype=np.uint8), 1, 1, "NOPE")


def test_to_data_url():
    url = to_data_url(b"\x00\x01", "png")
    assert url == "data:image/png;base64,AAE="


def test_save_image(tmp_path, capsys):
    out = tmp_path / "sub" / "out.png"
    px = np.array([7, 7, 7, 77], dtype=np.uint8)
    assert save_image(px, 1, 1, str(out)) == str(out)
    assert "[save]" in capsys.readouterr().out
    back, _, _ = decode(str(out))
    assert back.tolist() == [7, 7, 7, 77]


def test_save_image_unknown_extension(tmp_path):
    with pytest.raises(UnsupportedFormat):
        save_image(np.zeros(4, dtype=np.uint8), 1, 1, str(tmp_path / "out.xyz"))


def test_decode_applies_exif_orientation():
    exif = Image.Exif()
    exif[0x0112] = 6  # 90도 회전
    buf = BytesIO()
    Image.new("RGB", (2, 1), (0, 0, 255)).save(buf, format="JPEG", exif=exif.tobytes())
    px, w, h = decode(buf.getvalue())
    assert (w, h) == (1, 2)
    assert px.shape == (1 * 2 * 4,)


def test_decode_too_large(monkeypatch):
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1)
    with pytest.raises(UnsupportedFormat, match="too large"):
        decode(_png_bytes((0, 0, 0, 0), size=(4, 4)))
