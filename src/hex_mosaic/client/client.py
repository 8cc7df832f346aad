import asyncio
import logging
import os
import sys
from typing import Set

import httpx
from PIL import Image

from hex_mosaic.client.mosaic import DEFAULT_PROMPT, MosaicManager
from hex_mosaic.client.orchestrator import HttpGenerationService
from hex_mosaic.client.render import Animator, AsyncioFrameScheduler, Renderer
from hex_mosaic.shared.errors import GenerationRejected, InvalidDirection
from hex_mosaic.shared.hex_math import Hex, Layout, hex_neighbors
from hex_mosaic.shared.schemas import DEFAULT_MODEL

# --- Logging Setup ---
logger = logging.getLogger("hex_mosaic.client")
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

HELP = """commands:
  seed [prompt]     generate the center tile
  prompt <text>     change the base prompt
  click <x> <y>     select or extend the hex under a viewport pixel
  extend <q> <r>    extend from the selected tile into (q, r)
  select <q> <r>    select a generated tile
  clear             drop every tile
  status            print the mosaic sets
  quit"""


def setup_logging(level: str = "INFO"):
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root = logging.getLogger("hex_mosaic")
    root.addHandler(handler)
    root.setLevel(level)


class MosaicSession:
    """
    Interactive mosaic driven by line commands.
    Generations run as background tasks so several hexes can be pending at
    once; every redraw is written to `output_path`.
    """

    def __init__(self, server_url: str, output_path: str, prompt: str = DEFAULT_PROMPT,
                 model: str = DEFAULT_MODEL, hex_size: float = 72.0,
                 width: int = 1280, height: int = 800, frame_interval: float = 0.1):
        self.server_url = server_url
        self.output_path = output_path
        self.layout = Layout(size=hex_size, origin_x=width / 2, origin_y=height / 2)
        # Generation calls wait as long as the service takes
        self.http = httpx.AsyncClient(base_url=server_url, timeout=None)
        self.manager = MosaicManager(HttpGenerationService(self.http, model=model), self.layout, prompt)
        self.animator = Animator(
            Renderer(self.layout, width, height),
            lambda: self.manager.state,
            AsyncioFrameScheduler(frame_interval),
            self._write_frame,
        )
        self.manager.listener = self.animator.refresh
        self.tasks: Set[asyncio.Task] = set()

        logger.info(f"Session using {server_url}, frames -> {output_path}")

    def _write_frame(self, frame: Image.Image):
        frame.save(self.output_path)

    def _spawn(self, coro, label: str):
        task = asyncio.create_task(self._report(coro, label))
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)

    async def _report(self, coro, label: str):
        try:
            accepted = await coro
            if not accepted:
                logger.info(f"{label}: nothing to do")
        except InvalidDirection as e:
            logger.warning(f"{label} skipped: {e}")
        except GenerationRejected as e:
            logger.error(f"{label} failed: {e}")
        except httpx.HTTPError as e:
            logger.error(f"{label} failed: {e}")

    async def handle(self, line: str) -> bool:
        """Runs one command. Returns False when the session should end."""
        parts = line.split()
        if not parts:
            return True
        cmd, args = parts[0].lower(), parts[1:]

        try:
            if cmd in ("quit", "exit"):
                return False
            elif cmd == "seed":
                prompt = " ".join(args) or None
                self._spawn(self.manager.seed(prompt=prompt), "seed")
            elif cmd == "prompt":
                self.manager.prompt = " ".join(args) or DEFAULT_PROMPT
                logger.info(f"Prompt set to: {self.manager.prompt}")
            elif cmd == "click":
                x, y = float(args[0]), float(args[1])
                self._spawn(self._click(x, y), f"click ({x}, {y})")
            elif cmd == "extend":
                target = Hex(int(args[0]), int(args[1]))
                selected = self.manager.selected
                if selected is not None and target not in hex_neighbors(selected):
                    logger.warning(f"{target} is not next to the selected tile {selected}, select a neighbor first")
                else:
                    self._spawn(self.manager.extend(target), f"extend {target}")
            elif cmd == "select":
                target = Hex(int(args[0]), int(args[1]))
                if not self.manager.select(target):
                    logger.warning(f"{target} is not a generated tile")
            elif cmd == "clear":
                self.manager.clear()
            elif cmd == "status":
                self.print_status()
            else:
                print(HELP)
        except (IndexError, ValueError):
            logger.warning(f"Bad arguments for '{cmd}'")
            print(HELP)
        return True

    async def _click(self, x: float, y: float) -> bool:
        hit = await self.manager.click(x, y)
        if hit is not None:
            logger.info(f"Clicked {hit}")
        return True

    def print_status(self):
        state = self.manager.state
        print(f"tiles={len(state.generated)} frontier={len(state.expandable)} "
              f"loading={len(state.loading)} selected={self.manager.selected}")

    async def run(self, stream=None):
        stream = stream or sys.stdin
        print(HELP)
        self.animator.redraw()
        try:
            while True:
                line = await asyncio.to_thread(stream.readline)
                if not line:
                    break
                if not await self.handle(line):
                    break
            if self.tasks:
                logger.info(f"Waiting for {len(self.tasks)} pending generation(s)...")
                await asyncio.gather(*self.tasks)
        finally:
            await self.http.aclose()


def main():
    setup_logging(os.getenv("LOG_LEVEL", "INFO"))

    session = MosaicSession(
        server_url=os.getenv("SERVER_URL", "http://localhost:5174"),
        output_path=os.getenv("MOSAIC_OUTPUT", "mosaic.png"),
        prompt=os.getenv("MOSAIC_PROMPT", DEFAULT_PROMPT),
        model=os.getenv("MOSAIC_MODEL", DEFAULT_MODEL),
        hex_size=float(os.getenv("HEX_SIZE", "72")),
        width=int(os.getenv("VIEW_WIDTH", "1280")),
        height=int(os.getenv("VIEW_HEIGHT", "800")),
        frame_interval=float(os.getenv("FRAME_INTERVAL", "0.1")),
    )
    asyncio.run(session.run())


if __name__ == "__main__":
    main()
