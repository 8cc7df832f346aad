import asyncio

import pytest
from PIL import Image

from hex_mosaic.client.context import encode_png
from hex_mosaic.shared.hex_math import Layout

RED = (220, 30, 30, 255)
BLUE = (30, 60, 220, 255)


class FakeService:
    """Records calls; optionally holds each call until its gate is opened."""

    def __init__(self, payload, gated=False):
        self.payload = payload
        self.gated = gated
        self.calls = []
        self.gates = []
        self.errors = []

    async def generate(self, prompt, context_images):
        self.calls.append((prompt, context_images))
        if self.gated:
            gate = asyncio.Event()
            self.gates.append(gate)
            await gate.wait()
        if self.errors:
            error = self.errors.pop(0)
            if error is not None:
                raise error
        return self.payload


def tile_payload(layout, color=RED):
    return encode_png(Image.new("RGBA", layout.tile_size, color))


@pytest.fixture
def layout():
    return Layout(size=72, origin_x=640, origin_y=400)


@pytest.fixture
def payload(layout):
    return tile_payload(layout)


@pytest.fixture
def service(payload):
    return FakeService(payload)
