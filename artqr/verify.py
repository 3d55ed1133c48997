"""Scan verification: decode composited images and check finder-pattern geometry."""

import time
from dataclasses import dataclass

import cv2
import numpy as np
from PIL import Image, ImageOps

from artqr.generator import FINDER_SIZE, finder_origins
from artqr.logging import audit, get_logger, trace

log = get_logger("verify")

# Dark/light along any line through a finder centre: 1:1:3:1:1
FINDER_LINE = [True, False, True, True, True, False, True]


@dataclass
class ScanResult:
    """Result of a single scan attempt."""
    success: bool
    decoded_data: str | None = None
    decode_time_ms: float = 0.0
    decoder: str = ""
    error: str | None = None


def _finish(decoder: str, start: float, data: str | None, error: str | None = None) -> ScanResult:
    elapsed = (time.perf_counter() - start) * 1000
    if data:
        audit("scan.verified", logger=log, decoder=decoder, success=True,
              time_ms=round(elapsed, 1), data=data[:80])
        return ScanResult(success=True, decoded_data=data, decode_time_ms=elapsed, decoder=decoder)
    error = error or "No QR code detected"
    audit("scan.verified", logger=log, decoder=decoder, success=False,
          time_ms=round(elapsed, 1), error=error)
    return ScanResult(success=False, decode_time_ms=elapsed, decoder=decoder, error=error)


@trace
def scan_pyzbar(image: Image.Image) -> ScanResult:
    """Scan with ZBar. Reports failure if the zbar shared library is missing."""
    start = time.perf_counter()
    try:
        from pyzbar.pyzbar import decode as pyzbar_decode
    except ImportError as e:
        return _finish("pyzbar/zbar", start, None, error=f"pyzbar unavailable: {e}")
    try:
        results = pyzbar_decode(image.convert("L"))
    except Exception as e:
        return _finish("pyzbar/zbar", start, None, error=str(e))
    data = results[0].data.decode("utf-8", errors="replace") if results else None
    return _finish("pyzbar/zbar", start, data)


@trace
def scan_opencv(image: Image.Image) -> ScanResult:
    """Scan with OpenCV's built-in QR detector."""
    start = time.perf_counter()
    try:
        gray = cv2.cvtColor(np.array(image.convert("RGB")), cv2.COLOR_RGB2GRAY)
        data, _points, _ = cv2.QRCodeDetector().detectAndDecode(gray)
    except Exception as e:
        return _finish("opencv", start, None, error=str(e))
    return _finish("opencv", start, data or None)


@trace
def verify(image: Image.Image, expected_data: str | None = None) -> list[ScanResult]:
    """Run every decoder on ``image``.

    A decode whose text differs from ``expected_data`` counts as a failure.
    """
    results = []
    for scanner in (scan_pyzbar, scan_opencv):
        result = scanner(image)
        if result.success and expected_data is not None and result.decoded_data != expected_data:
            result.success = False
            result.error = f"Data mismatch: got '{result.decoded_data}', expected '{expected_data}'"
        results.append(result)
    return results


def add_quiet_zone(image: Image.Image, module_count: int, modules: int = 4) -> Image.Image:
    """Pad with a white border ``modules`` cells wide.

    The composited canvas is edge-to-edge; printed or displayed codes get
    their quiet zone from the surrounding page.
    """
    border = round(image.size[0] / module_count * modules)
    return ImageOps.expand(image.convert("RGB"), border=border, fill=(255, 255, 255))


# ---------------------------------------------------------------------------
# Finder-pattern sampling
# ---------------------------------------------------------------------------

def _centre_samples(gray: np.ndarray, scale: float, cells: list[tuple[int, int]]) -> list[bool]:
    out = []
    for r, c in cells:
        y = int((r + 0.5) * scale)
        x = int((c + 0.5) * scale)
        out.append(bool(gray[y, x] < 128))
    return out


def sample_finder_row(image: Image.Image, module_count: int, origin: tuple[int, int]) -> list[bool]:
    """Sample the middle row of a finder pattern at each module centre (True = dark)."""
    gray = np.asarray(image.convert("L"))
    scale = image.size[0] / module_count
    row = origin[0] + FINDER_SIZE // 2
    return _centre_samples(gray, scale, [(row, origin[1] + i) for i in range(FINDER_SIZE)])


def sample_finder_column(image: Image.Image, module_count: int, origin: tuple[int, int]) -> list[bool]:
    gray = np.asarray(image.convert("L"))
    scale = image.size[0] / module_count
    col = origin[1] + FINDER_SIZE // 2
    return _centre_samples(gray, scale, [(origin[0] + i, col) for i in range(FINDER_SIZE)])


@trace
def check_finder_patterns(image: Image.Image, module_count: int) -> bool:
    """True when all three finders read 1:1:3:1:1 horizontally and vertically."""
    ok = all(
        sample_finder_row(image, module_count, origin) == FINDER_LINE
        and sample_finder_column(image, module_count, origin) == FINDER_LINE
        for origin in finder_origins(module_count)
    )
    audit("finder.checked", logger=log, modules=module_count, ok=ok)
    return ok
