"""QR encoder: payload -> module matrix, plus finder-pattern geometry."""

from enum import Enum

import qrcode
import qrcode.constants
from qrcode.exceptions import DataOverflowError

from artqr.errors import InvalidInput, PayloadTooLong
from artqr.logging import audit, get_logger, trace

log = get_logger("generator")

FINDER_SIZE = 7


class ECCLevel(Enum):
    L = qrcode.constants.ERROR_CORRECT_L  # 7%
    M = qrcode.constants.ERROR_CORRECT_M  # 15%
    Q = qrcode.constants.ERROR_CORRECT_Q  # 25%
    H = qrcode.constants.ERROR_CORRECT_H  # 30%


ECC_NAMES = {level.name: level for level in ECCLevel}


def parse_ecc(ecc: str) -> ECCLevel:
    try:
        return ECC_NAMES[ecc.upper()]
    except (KeyError, AttributeError):
        raise InvalidInput(f"Unknown error correction level: {ecc!r}") from None


@trace
def get_module_matrix(data: str, ecc: str = "H", version: int | None = None) -> list[list[bool]]:
    """Encode ``data`` and return the raw module matrix (True = dark).

    Args:
        data: Payload to encode, normally a short URL.
        ecc: Error correction level L/M/Q/H.
        version: QR version 1-40, or None for the smallest that fits.

    Raises:
        InvalidInput: Empty payload or unknown EC level.
        PayloadTooLong: The payload does not fit at this EC level/version.
    """
    if not isinstance(data, str) or not data.strip():
        raise InvalidInput("QR payload must be a non-empty string")
    level = parse_ecc(ecc)
    if version is not None and not 1 <= version <= 40:
        raise InvalidInput(f"QR version must be 1-40, got {version}")

    qr = qrcode.QRCode(
        version=version,
        error_correction=level.value,
        box_size=1,
        border=0,
    )
    qr.add_data(data)
    try:
        qr.make(fit=(version is None))
    except (DataOverflowError, ValueError) as exc:
        # best_fit runs past version 40 with a ValueError on newer qrcode releases
        raise PayloadTooLong(len(data), level.name) from exc

    modules = [[bool(cell) for cell in row] for row in qr.modules]
    audit("qr.encoded", logger=log,
          data=data[:80], version=qr.version, modules=len(modules), ecc=level.name)
    return modules


def finder_origins(module_count: int) -> list[tuple[int, int]]:
    """Top-left ``(row, col)`` of the three finder patterns: TL, TR, BL."""
    far = module_count - FINDER_SIZE
    return [(0, 0), (0, far), (far, 0)]


def is_finder_module(row: int, col: int, module_count: int) -> bool:
    far = module_count - FINDER_SIZE
    top = row < FINDER_SIZE
    left = col < FINDER_SIZE
    return (top and left) or (top and col >= far) or (row >= far and left)
