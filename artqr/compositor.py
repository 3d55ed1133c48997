"""Artistic QR compositor: a scannable dot-matrix QR drawn over an illustration.

Rendering order:
    1. background stretched to the full canvas
    2. one translucent dot per non-finder module, centred in its cell
    3. the three finder patterns as solid nested squares, drawn last

Decoders sample each module at its centre, so a dot of ``0.18 * scale``
radius is enough to carry the module value while the illustration shows
between dots. EC level H absorbs the modules the background still manages
to corrupt; lower levels are refused.
"""

import io
from pathlib import Path

from PIL import Image, ImageDraw, UnidentifiedImageError

from artqr.errors import ImageDecodeError, InvalidInput
from artqr.generator import FINDER_SIZE, finder_origins, get_module_matrix, is_finder_module, parse_ecc
from artqr.logging import audit, get_logger, trace

log = get_logger("compositor")

OUTPUT_SIZE = 1024
DOT_RATIO = 0.18
DOT_OPACITY = 0.9

DARK = (0, 0, 0)
LIGHT = (255, 255, 255)


# ---------------------------------------------------------------------------
# Background loading
# ---------------------------------------------------------------------------

@trace
def load_background(source) -> Image.Image:
    """Decode a background image into RGB.

    Args:
        source: Raw bytes, a filesystem path, a binary file object or a PIL image.

    Raises:
        ImageDecodeError: The source is empty, missing or not a readable image.
    """
    if isinstance(source, Image.Image):
        img = source.copy()
    else:
        if isinstance(source, (bytes, bytearray)):
            if not source:
                raise ImageDecodeError("Background image is empty")
            source = io.BytesIO(source)
        elif isinstance(source, (str, Path)) and not Path(source).is_file():
            raise ImageDecodeError(f"Background image not found: {source}")
        try:
            img = Image.open(source)
            img.load()
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, ValueError) as exc:
            raise ImageDecodeError(f"Could not decode background image: {exc}") from exc

    return _flatten(img)


def _flatten(img: Image.Image) -> Image.Image:
    """Drop transparency onto white so the canvas is opaque."""
    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        rgba = img.convert("RGBA")
        base = Image.new("RGBA", rgba.size, LIGHT + (255,))
        return Image.alpha_composite(base, rgba).convert("RGB")
    return img.convert("RGB")


# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------

def _cell_box(row: int, col: int, span: int, scale: float) -> list[int]:
    """Pixel rectangle (inclusive) covering ``span`` x ``span`` cells from (row, col)."""
    x0 = round(col * scale)
    y0 = round(row * scale)
    x1 = round((col + span) * scale) - 1
    y1 = round((row + span) * scale) - 1
    return [x0, y0, x1, y1]


def _draw_finders(draw: ImageDraw.ImageDraw, module_count: int, scale: float) -> None:
    """Solid 7x7 black / 5x5 white / 3x3 black squares at full opacity."""
    for row, col in finder_origins(module_count):
        draw.rectangle(_cell_box(row, col, FINDER_SIZE, scale), fill=DARK)
        draw.rectangle(_cell_box(row + 1, col + 1, FINDER_SIZE - 2, scale), fill=LIGHT)
        draw.rectangle(_cell_box(row + 2, col + 2, FINDER_SIZE - 4, scale), fill=DARK)


def _dot_layer(matrix: list[list[bool]], size: int, scale: float,
               dot_ratio: float, opacity: float) -> Image.Image:
    module_count = len(matrix)
    alpha = round(255 * opacity)
    dark = DARK + (alpha,)
    light = LIGHT + (alpha,)
    radius = dot_ratio * scale

    layer = Image.new("RGBA", (size, size), (0, 0, 0, 0))
    draw = ImageDraw.Draw(layer)
    for r, row in enumerate(matrix):
        for c, is_dark in enumerate(row):
            if is_finder_module(r, c, module_count):
                continue
            cx = (c + 0.5) * scale
            cy = (r + 0.5) * scale
            draw.ellipse([cx - radius, cy - radius, cx + radius, cy + radius],
                         fill=dark if is_dark else light)
    return layer


# ---------------------------------------------------------------------------
# Compositing
# ---------------------------------------------------------------------------

@trace
def compose_artistic_qr(
    background: Image.Image,
    payload: str,
    size: int = OUTPUT_SIZE,
    ecc: str = "H",
    dot_ratio: float = DOT_RATIO,
    opacity: float = DOT_OPACITY,
) -> Image.Image:
    """Overlay the QR code for ``payload`` on ``background``.

    Args:
        background: Decoded background (already stylised), ideally square.
        payload: String to encode; the short URL, so scans can be counted.
        size: Output canvas side in pixels.
        ecc: Must be "H".
        dot_ratio: Dot radius as a fraction of the module size.
        opacity: Dot opacity, 0 < opacity <= 1.

    Returns:
        RGB image of ``size`` x ``size`` pixels.

    Raises:
        InvalidInput: Bad rendering parameters or an EC level other than H.
        PayloadTooLong: ``payload`` does not fit at EC level H.
    """
    if parse_ecc(ecc).name != "H":
        raise InvalidInput("Dot rendering requires error correction level H")
    if not 0 < dot_ratio <= 0.5:
        raise InvalidInput(f"dot_ratio must be in (0, 0.5], got {dot_ratio}")
    if not 0 < opacity <= 1:
        raise InvalidInput(f"opacity must be in (0, 1], got {opacity}")

    matrix = get_module_matrix(payload, ecc="H")
    module_count = len(matrix)
    if size < module_count:
        raise InvalidInput(f"Canvas of {size}px cannot hold {module_count} modules")
    scale = size / module_count

    canvas = background.convert("RGB").resize((size, size), Image.LANCZOS).convert("RGBA")
    canvas = Image.alpha_composite(canvas, _dot_layer(matrix, size, scale, dot_ratio, opacity))
    canvas = canvas.convert("RGB")
    _draw_finders(ImageDraw.Draw(canvas), module_count, scale)

    audit("qr.composited", logger=log,
          payload=payload[:80], modules=module_count, size=f"{size}x{size}",
          scale=round(scale, 2), dot_ratio=dot_ratio, opacity=opacity)
    return canvas


def render_png(image: Image.Image) -> bytes:
    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()


@trace
def render_link_qr(background_source, short_url: str, size: int = OUTPUT_SIZE) -> bytes:
    """Decode a background, composite the QR for ``short_url`` and return PNG bytes.

    Nothing is returned on failure: ``ImageDecodeError`` and ``PayloadTooLong``
    propagate to the caller.
    """
    background = load_background(background_source)
    return render_png(compose_artistic_qr(background, short_url, size=size))
