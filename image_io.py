# image_io.py
import os
import base64
import binascii
from io import BytesIO
from typing import Tuple, Union
from urllib.parse import unquote_to_bytes

import cv2
import numpy as np
import requests
from PIL import Image, ImageOps, UnidentifiedImageError

from mask_alpha import PixelLike, as_pixels, check_dims

# === 설정 (환경변수로 덮어쓰기 가능) ===
FETCH_TIMEOUT = float(os.getenv("MASK_EXTRACT_TIMEOUT", "30"))
DEFAULT_INTERP = os.getenv("MASK_EXTRACT_INTERP", "linear")
DEFAULT_FORMAT = "PNG"

INTERPOLATIONS = {
    "nearest": cv2.INTER_NEAREST,
    "linear":  cv2.INTER_LINEAR,
    "cubic":   cv2.INTER_CUBIC,
    "area":    cv2.INTER_AREA,
}

# 알파 채널을 저장할 수 없는 포맷
_NO_ALPHA = {"JPEG"}

Source = Union[str, bytes, bytearray, memoryview, os.PathLike]
DecodedImage = Tuple[np.ndarray, int, int]


class SourceUnavailable(RuntimeError):
    pass


class UnsupportedFormat(ValueError):
    pass


# ── 소스 → 바이트 ─────────────────────────────────────────────────────────
def _read_data_url(url: str) -> bytes:
    header, sep, payload = url.partition(",")
    if not sep:
        raise SourceUnavailable(f"malformed data URL: {url[:40]}...")
    if header.endswith(";base64"):
        try:
            return base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise SourceUnavailable("invalid base64 payload in data URL") from exc
    return unquote_to_bytes(payload)


def _fetch_url(url: str, timeout: float) -> bytes:
    try:
        resp = requests.get(url, timeout=timeout)
        resp.raise_for_status()
    except requests.RequestException as exc:
        raise SourceUnavailable(f"failed to fetch {url}: {exc}") from exc
    return resp.content


def read_source(source: Source, timeout: float = FETCH_TIMEOUT) -> bytes:
    """bytes / 로컬 경로 / http(s) URL / data URL 을 원시 바이트로."""
    if isinstance(source, (bytes, bytearray, memoryview)):
        return bytes(source)
    if isinstance(source, os.PathLike):
        source = os.fspath(source)
    if not isinstance(source, str):
        raise TypeError(f"unsupported image source type: {type(source).__name__}")

    if source.startswith("data:"):
        return _read_data_url(source)
    if source.lower().startswith(("http://", "https://")):
        return _fetch_url(source, timeout)
    if not os.path.isfile(source):
        raise SourceUnavailable(f"image not found: {source}")
    with open(source, "rb") as f:
        return f.read()


# ── decode / resample / encode ─────────────────────────────────────────────
def decode(source: Source, timeout: float = FETCH_TIMEOUT) -> DecodedImage:
    """
    이미지를 비-premultiplied RGBA 로 디코딩.
    반환: (pixels (W*H*4,) uint8, width, height)
    """
    data = read_source(source, timeout=timeout)
    try:
        im = Image.open(BytesIO(data))
        im.load()
    except UnidentifiedImageError as exc:
        raise UnsupportedFormat("cannot identify image data") from exc
    except Image.DecompressionBombError as exc:
        raise UnsupportedFormat(f"image too large: {exc}") from exc
    except OSError as exc:
        raise UnsupportedFormat(f"failed to decode image: {exc}") from exc

    # 브라우저처럼 EXIF 회전 적용
    im = ImageOps.exif_transpose(im)
    if im.mode != "RGBA":
        try:
            im = im.convert("RGBA")
        except ValueError as exc:
            raise UnsupportedFormat(f"cannot convert mode {im.mode} to RGBA") from exc
    rgba = np.array(im, dtype=np.uint8)
    h, w = rgba.shape[:2]
    return rgba.reshape(-1), w, h


def resample(
    pixels: PixelLike,
    from_w: int,
    from_h: int,
    to_w: int,
    to_h: int,
    interpolation: str = DEFAULT_INTERP,
) -> np.ndarray:
    """RGBA 버퍼를 (to_w, to_h) 로 리사이즈. 크기가 같으면 복사본만 반환."""
    if interpolation not in INTERPOLATIONS:
        raise ValueError(
            f"unknown interpolation {interpolation!r}; "
            f"choose from {sorted(INTERPOLATIONS)}"
        )
    check_dims(from_w, from_h)
    check_dims(to_w, to_h)
    # cv2 는 읽기 전용 버퍼를 받지 않을 수 있어 복사
    src = as_pixels(pixels, from_w, from_h, "pixels").reshape(from_h, from_w, 4).copy()
    if (from_w, from_h) == (to_w, to_h):
        return src.reshape(-1)

    out = cv2.resize(src, (to_w, to_h), interpolation=INTERPOLATIONS[interpolation])
    return np.ascontiguousarray(out, dtype=np.uint8).reshape(-1)


def _normalize_format(fmt: str) -> str:
    fmt = fmt.upper().lstrip(".")
    if fmt == "JPG":
        fmt = "JPEG"
    Image.init()
    if fmt not in Image.SAVE:
        raise UnsupportedFormat(f"unsupported output format: {fmt}")
    return fmt


def encode(pixels: PixelLike, width: int, height: int, fmt: str = DEFAULT_FORMAT) -> bytes:
    check_dims(width, height)
    fmt = _normalize_format(fmt)
    rgba = as_pixels(pixels, width, height, "pixels").reshape(height, width, 4)

    im = Image.fromarray(np.ascontiguousarray(rgba))
    if fmt in _NO_ALPHA:
        im = im.convert("RGB")

    buf = BytesIO()
    try:
        im.save(buf, format=fmt)
    except (OSError, ValueError) as exc:
        raise UnsupportedFormat(f"failed to encode as {fmt}: {exc}") from exc
    return buf.getvalue()


def to_data_url(data: bytes, fmt: str = DEFAULT_FORMAT) -> str:
    fmt = _normalize_format(fmt)
    mime = Image.MIME.get(fmt, f"image/{fmt.lower()}")
    return f"data:{mime};base64," + base64.b64encode(data).decode("ascii")


def save_image(pixels: PixelLike, width: int, height: int, output_path: str) -> str:
    """확장자로 포맷을 골라 저장."""
    ext = os.path.splitext(output_path)[1].lower()
    fmt = Image.registered_extensions().get(ext)
    if fmt is None:
        raise UnsupportedFormat(f"unknown output extension: {output_path}")
    data = encode(pixels, width, height, fmt)

    os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
    with open(output_path, "wb") as f:
        f.write(data)
    print(f"[save] {output_path}")
    return output_path
