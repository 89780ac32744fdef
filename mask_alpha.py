# mask_alpha.py
from typing import Union

import numpy as np

PixelLike = Union[bytes, bytearray, memoryview, list, np.ndarray]


class MaskCompositeError(ValueError):
    """composite 입력 검증 실패의 공통 부모."""


class ShapeMismatch(MaskCompositeError):
    pass


class InvalidDimensions(MaskCompositeError):
    pass


def check_dims(width, height) -> None:
    for name, v in (("width", width), ("height", height)):
        if isinstance(v, bool) or not isinstance(v, (int, np.integer)):
            raise InvalidDimensions(f"{name} must be an integer, got {v!r}")
        if v <= 0:
            raise InvalidDimensions(f"{name} must be positive, got {v}")


def as_pixels(buf: PixelLike, width: int, height: int, name: str) -> np.ndarray:
    """버퍼를 (W*H*4,) uint8 뷰로 정규화. 복사 여부는 입력에 따름 (쓰기 금지)."""
    if isinstance(buf, (bytes, bytearray, memoryview)):
        arr = np.frombuffer(buf, dtype=np.uint8)
    else:
        arr = np.asarray(buf, dtype=np.uint8)
        # (H, W, 4) 배열이면 선언된 크기와도 맞아야 함
        if arr.ndim == 3 and arr.shape != (height, width, 4):
            raise ShapeMismatch(
                f"{name} shape {arr.shape} != ({height}, {width}, 4)"
            )
        if arr.ndim == 2 and arr.shape != (height * width, 4):
            raise ShapeMismatch(
                f"{name} shape {arr.shape} != ({height * width}, 4)"
            )
        arr = arr.reshape(-1)

    expected = width * height * 4
    if arr.size != expected:
        raise ShapeMismatch(
            f"{name} length {arr.size} != width*height*4 = {expected} "
            f"({width}x{height})"
        )
    return arr


def _alpha_fraction(mask_px: np.ndarray) -> np.ndarray:
    # 밝기 = RGB 단순 평균 (가중 luma 아님)
    m = mask_px.reshape(-1, 4).astype(np.float64)
    brightness = (m[:, 0] + m[:, 1] + m[:, 2]) / 3.0
    mask_alpha = m[:, 3] / 255.0
    return (brightness / 255.0) * mask_alpha


def mask_alpha_fraction(mask: PixelLike, width: int, height: int) -> np.ndarray:
    """마스크 픽셀별 최종 알파 배율 (0~1), shape (W*H,)."""
    check_dims(width, height)
    return _alpha_fraction(as_pixels(mask, width, height, "mask"))


def composite(main: PixelLike, mask: PixelLike, width: int, height: int) -> np.ndarray:
    """
    main 의 알파를 mask 의 밝기 x 알파로 스케일한 새 RGBA 버퍼를 반환.
    RGB 는 그대로 통과, main/mask 원본은 건드리지 않음.
    반환: (width*height*4,) uint8
    """
    check_dims(width, height)
    main_px = as_pixels(main, width, height, "main")
    mask_px = as_pixels(mask, width, height, "mask")

    frac = _alpha_fraction(mask_px)

    out = main_px.copy()
    a = out[3::4].astype(np.float64)
    # round-half-up (x >= 0), 뱅커스 라운딩 아님
    out[3::4] = np.floor(a * frac + 0.5).astype(np.uint8)
    return out


def composite_rgba(main_rgba: np.ndarray, mask_rgba: np.ndarray) -> np.ndarray:
    """(H, W, 4) 배열용 래퍼. 크기는 main 기준."""
    main_rgba = np.asarray(main_rgba)
    if main_rgba.ndim != 3 or main_rgba.shape[2] != 4:
        raise ShapeMismatch(f"main must be (H, W, 4), got {main_rgba.shape}")
    h, w = main_rgba.shape[:2]
    return composite(main_rgba, mask_rgba, w, h).reshape(h, w, 4)
