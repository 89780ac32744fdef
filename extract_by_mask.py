# extract_by_mask.py
import sys
import argparse
from concurrent.futures import ThreadPoolExecutor
from typing import Tuple

from mask_alpha import composite
from image_io import (
    DEFAULT_FORMAT,
    DEFAULT_INTERP,
    FETCH_TIMEOUT,
    INTERPOLATIONS,
    DecodedImage,
    Source,
    SourceUnavailable,
    UnsupportedFormat,
    decode,
    encode,
    resample,
    save_image,
    to_data_url,
)


def _decode_as(role: str, source: Source, timeout: float) -> DecodedImage:
    try:
        return decode(source, timeout=timeout)
    except (SourceUnavailable, UnsupportedFormat) as exc:
        # 타입은 유지하고 어느 레이어인지만 덧붙임
        raise type(exc)(f"failed to load {role} image: {exc}") from exc


def load_pair(
    main_source: Source,
    mask_source: Source,
    timeout: float = FETCH_TIMEOUT,
) -> Tuple[DecodedImage, DecodedImage]:
    """주 이미지와 마스크를 동시에 디코딩하고 둘 다 끝날 때까지 기다림."""
    with ThreadPoolExecutor(max_workers=2) as pool:
        main_fut = pool.submit(_decode_as, "main", main_source, timeout)
        mask_fut = pool.submit(_decode_as, "mask", mask_source, timeout)
        return main_fut.result(), mask_fut.result()


def extract_pixels(
    main_source: Source,
    mask_source: Source,
    interpolation: str = DEFAULT_INTERP,
    timeout: float = FETCH_TIMEOUT,
):
    """반환: (pixels, width, height). 크기는 주 이미지 기준."""
    (main_px, w, h), (mask_px, mw, mh) = load_pair(main_source, mask_source, timeout)

    # 마스크를 주 이미지 크기로 맞추기
    mask_px = resample(mask_px, mw, mh, w, h, interpolation=interpolation)
    return composite(main_px, mask_px, w, h), w, h


def extract_by_mask(
    main_source: Source,
    mask_source: Source,
    fmt: str = DEFAULT_FORMAT,
    interpolation: str = DEFAULT_INTERP,
    timeout: float = FETCH_TIMEOUT,
) -> str:
    """마스크 밝기로 주 이미지를 추출해 data URL 로 반환."""
    pixels, w, h = extract_pixels(main_source, mask_source, interpolation, timeout)
    return to_data_url(encode(pixels, w, h, fmt), fmt)


def extract_to_file(
    main_source: Source,
    mask_source: Source,
    output_path: str,
    interpolation: str = DEFAULT_INTERP,
    timeout: float = FETCH_TIMEOUT,
) -> str:
    pixels, w, h = extract_pixels(main_source, mask_source, interpolation, timeout)
    return save_image(pixels, w, h, output_path)


def main(argv=None) -> int:
    ap = argparse.ArgumentParser(description="마스크 밝기 기반 알파 추출 (투명 배경 PNG)")
    ap.add_argument("--main", required=True, help="주 이미지 (경로 / URL / data URL)")
    ap.add_argument("--mask", required=True, help="마스크 이미지 (경로 / URL / data URL)")
    ap.add_argument("--output", default=None, help="출력 파일 경로 (없으면 data URL 출력)")
    ap.add_argument("--format", default=None,
                    help=f"data URL 인코딩 포맷 (기본 {DEFAULT_FORMAT}). --output 과 함께 쓰면 안 됨, 확장자로 결정")
    ap.add_argument("--interp", default=DEFAULT_INTERP, choices=sorted(INTERPOLATIONS),
                    help="마스크 리사이즈 보간 방식")
    ap.add_argument("--timeout", type=float, default=FETCH_TIMEOUT, help="URL 다운로드 타임아웃(초)")
    args = ap.parse_args(argv)
    if args.output and args.format:
        ap.error("--format cannot be combined with --output; the output extension decides the format")

    try:
        if args.output:
            out = extract_to_file(args.main, args.mask, args.output,
                                  interpolation=args.interp, timeout=args.timeout)
            print(f"[done] {out}")
        else:
            print(extract_by_mask(args.main, args.mask, fmt=args.format or DEFAULT_FORMAT,
                                  interpolation=args.interp, timeout=args.timeout))
    except Exception as e:
        print(f"[ERROR] mask extraction failed: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
