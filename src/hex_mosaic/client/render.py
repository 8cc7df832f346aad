from __future__ import annotations

import asyncio
import math
from typing import Callable, List, Optional, Protocol, Tuple

from PIL import Image, ImageDraw

from hex_mosaic.client.context import BLEED, render_rotated
from hex_mosaic.client.mosaic import MosaicState
from hex_mosaic.shared.hex_math import Layout, Point, hex_from_key, polygon_at

BACKGROUND = (11, 12, 16, 255)
FRONTIER_OUTLINE = (58, 61, 72, 255)
TILE_FILL = (16, 18, 24, 255)
TILE_BORDER = (32, 34, 43, 255)
SELECTED_BORDER = (255, 216, 74, 255)
LOADING_DIM = (255, 255, 255, 38)
SPINNER = (255, 216, 74, 255)

DASH = (6, 6)

FrameCallback = Callable[[float], None]


def _dashed_polygon(draw: ImageDraw.ImageDraw, points: List[Point], fill, width: int,
                    dash: Tuple[int, int] = DASH):
    on, off = dash
    period = on + off
    offset = 0.0 # dash phase carries over from edge to edge
    for i in range(len(points)):
        x0, y0 = points[i]
        x1, y1 = points[(i + 1) % len(points)]
        length = math.hypot(x1 - x0, y1 - y0)
        if length == 0:
            continue
        ux, uy = (x1 - x0) / length, (y1 - y0) / length
        t = 0.0
        while t < length:
            phase = (offset + t) % period
            if phase < on:
                end = min(length, t + on - phase)
                draw.line([(x0 + ux * t, y0 + uy * t), (x0 + ux * end, y0 + uy * end)],
                          fill=fill, width=width)
                t = end
            else:
                t += period - phase
        offset = (offset + length) % period


class Renderer:
    """Draws a MosaicState onto a Pillow image. Holds no mosaic state."""

    def __init__(self, layout: Layout, width: int, height: int):
        self.layout = layout
        self.width = width
        self.height = height
        w, h = layout.tile_size
        self._mask = Image.new("L", (w, h), 0)
        ImageDraw.Draw(self._mask).polygon(polygon_at(w / 2, h / 2, layout.size), fill=255)

    def draw(self, state: MosaicState, time_ms: float = 0.0) -> Image.Image:
        frame = Image.new("RGBA", (self.width, self.height), BACKGROUND)
        draw = ImageDraw.Draw(frame, "RGBA")

        for key in state.expandable:
            points = self.layout.hex_polygon(hex_from_key(key))
            _dashed_polygon(draw, points, FRONTIER_OUTLINE, 2)

        for key in state.generated:
            coord = hex_from_key(key)
            points = self.layout.hex_polygon(coord)
            draw.polygon(points, fill=TILE_FILL)
            tile = state.tiles.get(key)
            if tile is not None:
                self._draw_tile(frame, coord, tile.image, tile.rotation)
            if key == state.selected:
                draw.polygon(points, outline=SELECTED_BORDER, width=3)
            else:
                draw.polygon(points, outline=TILE_BORDER, width=2)

        if state.loading:
            phase = (time_ms / 1000) % 1
            start = phase * 360
            radius = min(self.layout.size * 0.55, 28)
            for key in state.loading:
                coord = hex_from_key(key)
                x, y = self.layout.axial_to_pixel(coord)
                draw.polygon(self.layout.hex_polygon(coord), fill=LOADING_DIM)
                draw.arc([x - radius, y - radius, x + radius, y + radius],
                         start, start + 270, fill=SPINNER, width=4)

        return frame

    def _draw_tile(self, frame: Image.Image, coord, image: Image.Image, rotation: int):
        rotated = render_rotated(image, self.layout, rotation, BLEED)
        x, y = self.layout.axial_to_pixel(coord)
        w, h = self.layout.tile_size
        frame.paste(rotated, (round(x - w / 2), round(y - h / 2)), self._clip(rotated))

    def _clip(self, tile: Image.Image) -> Image.Image:
        alpha = tile.getchannel("A")
        return Image.composite(alpha, self._mask, self._mask)


# --- Frame scheduling ---

class FrameScheduler(Protocol):
    def request_frame(self, callback: FrameCallback) -> object:
        """Calls `callback(time_ms)` once, at the next frame."""
        ...


class AsyncioFrameScheduler:
    """Frames on the running event loop at a fixed interval."""

    def __init__(self, interval: float = 1 / 20, loop: Optional[asyncio.AbstractEventLoop] = None):
        self.interval = interval
        self.loop = loop

    def request_frame(self, callback: FrameCallback) -> asyncio.TimerHandle:
        loop = self.loop or asyncio.get_running_loop()
        return loop.call_later(self.interval, lambda: callback(loop.time() * 1000))


class Animator:
    """
    Redraws on state changes and keeps frames coming while anything is
    loading. Scheduling stops once `loading` drains.
    """

    def __init__(self, renderer: Renderer, state: Callable[[], MosaicState],
                 scheduler: FrameScheduler, sink: Callable[[Image.Image], None]):
        self.renderer = renderer
        self.state = state
        self.scheduler = scheduler
        self.sink = sink
        self._pending = None

    @property
    def animating(self) -> bool:
        return self._pending is not None

    def redraw(self, time_ms: float = 0.0):
        self.sink(self.renderer.draw(self.state(), time_ms))

    def refresh(self):
        """State-change hook: draw now, and animate if something is loading."""
        self.redraw()
        self.ensure_animating()

    def ensure_animating(self):
        if self._pending is not None or not self.state().loading:
            return
        self._pending = self.scheduler.request_frame(self._frame)

    def _frame(self, time_ms: float):
        self._pending = None
        self.redraw(time_ms)
        if self.state().loading:
            self._pending = self.scheduler.request_frame(self._frame)
