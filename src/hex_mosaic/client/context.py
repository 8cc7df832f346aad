"""
Canonical-frame context building.

Every expansion is presented to the generation service as "extend this tile
to the right". The source tile is rotated so the edge facing the target sits
on the east side, and the returned tile is rotated back by the same angle
when it is drawn.
"""

import asyncio
import base64
import binascii
import io
from dataclasses import dataclass

from PIL import Image, UnidentifiedImageError

from hex_mosaic.shared.directions import DIRECTION_ANGLES, Direction
from hex_mosaic.shared.errors import ImageDecodeError
from hex_mosaic.shared.hex_math import Layout

BLEED = 1.0 # px on every side, hides hairline seams between tiles


@dataclass(frozen=True)
class TileContext:
    payload: str # base64 PNG sent to the service
    out_rotation: int # rotation to draw the returned tile with


def render_rotated(image: Image.Image, layout: Layout, angle: float,
                   bleed: float = BLEED) -> Image.Image:
    """
    Draws `image` into a transparent tile-sized buffer.
    The image is stretched over the hex bounds plus `bleed` and rotated
    counterclockwise by `angle` degrees around the tile center.
    """
    width, height = layout.tile_size
    scaled_size = (round(layout.hex_width + 2 * bleed), round(layout.hex_height + 2 * bleed))
    scaled = image.convert("RGBA").resize(scaled_size, Image.Resampling.BILINEAR)
    if angle % 360:
        scaled = scaled.rotate(angle, resample=Image.Resampling.BICUBIC, expand=True)

    canvas = Image.new("RGBA", (width, height), (0, 0, 0, 0))
    offset = ((width - scaled.width) // 2, (height - scaled.height) // 2)
    canvas.paste(scaled, offset, scaled)
    return canvas


def build_context(image: Image.Image, direction: Direction, layout: Layout) -> TileContext:
    angle = DIRECTION_ANGLES[direction]
    canonical = render_rotated(image, layout, -angle)
    return TileContext(payload=encode_png(canonical), out_rotation=angle % 360)


def encode_png(image: Image.Image) -> str:
    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return base64.b64encode(buf.getvalue()).decode("ascii")


def _decode_png(payload: str) -> Image.Image:
    try:
        raw = base64.b64decode(payload, validate=True)
        with Image.open(io.BytesIO(raw)) as img:
            img.load()
            return img.convert("RGBA")
    except (binascii.Error, UnidentifiedImageError, OSError) as e:
        raise ImageDecodeError(f"Could not decode tile image: {e}") from e


async def decode_png(payload: str) -> Image.Image:
    """Decodes a base64 image off the event loop thread."""
    return await asyncio.to_thread(_decode_png, payload)
