import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set

from PIL import Image

from hex_mosaic.client.context import build_context
from hex_mosaic.client.orchestrator import GenerationOrchestrator, GenerationService
from hex_mosaic.shared.directions import direction_of
from hex_mosaic.shared.hex_math import ORIGIN, Hex, Layout, hex_from_key, hex_key, hex_neighbors

logger = logging.getLogger("hex_mosaic.mosaic")

DEFAULT_PROMPT = "Create a picture of a nano banana dish in a fancy restaurant with a Gemini theme"

EXTEND_INSTRUCTION = (
    "This is a hex tile. Generate a new hex tile that seamlessly extends this tile to the right, "
    "matching the style, colors, and patterns perfectly at the left edge of the new tile. "
    "The new tile should be the same size ({width}x{height} pixels) with transparent background. "
    "Return only the new tile as a PNG image."
)


@dataclass
class Tile:
    image: Image.Image # Decoded, owned by the mosaic
    payload: str # Original base64 PNG, reused as context for neighbors
    rotation: int = 0 # Degrees counterclockwise to draw the image with


@dataclass
class MosaicState:
    """
    Authoritative mosaic state. All sets hold packed hex keys (see hex_key).
    """
    tiles: Dict[int, Tile] = field(default_factory=dict)
    generated: Set[int] = field(default_factory=set)
    expandable: Set[int] = field(default_factory=set)
    loading: Set[int] = field(default_factory=set)
    selected: Optional[int] = None

    def invariant_violations(self) -> List[str]:
        problems = []
        if self.generated & self.expandable:
            problems.append("generated and expandable overlap")
        if set(self.tiles) != self.generated:
            problems.append("tile map does not match generated set")
        if self.selected is not None and self.selected not in self.generated:
            problems.append("selected tile is not generated")
        for key in self.expandable:
            if not any(hex_key(n) in self.generated for n in hex_neighbors(hex_from_key(key))):
                problems.append(f"{hex_from_key(key)} is expandable without a generated neighbor")
        stray = self.loading - self.expandable
        if self.generated and stray:
            problems.append(f"loading outside the frontier: {sorted(stray)}")
        if not self.generated and len(self.loading) > 1:
            problems.append("more than one seed in flight")
        return problems


class MosaicManager:
    """
    Owns one MosaicState and the seed/extend/select/clear transitions.

    Each transition mutates state in a single synchronous step; the only
    suspension points are the generation calls themselves.
    """

    def __init__(self, service: GenerationService, layout: Layout,
                 prompt: str = DEFAULT_PROMPT, listener: Optional[Callable[[], None]] = None):
        self.layout = layout
        self.prompt = prompt
        self.listener = listener
        self.state = MosaicState()
        self.orchestrator = GenerationOrchestrator(service, on_change=self._notify)

    # --- Queries ---

    @property
    def selected(self) -> Optional[Hex]:
        if self.state.selected is None:
            return None
        return hex_from_key(self.state.selected)

    def tile(self, coord: Hex) -> Optional[Tile]:
        return self.state.tiles.get(hex_key(coord))

    # --- Transitions ---

    async def seed(self, origin: Hex = ORIGIN, prompt: Optional[str] = None) -> bool:
        """Generates the first tile. No-op once the mosaic has tiles or a seed is pending."""
        state = self.state
        if state.generated or state.loading:
            return False

        key = hex_key(origin)
        prompt = prompt or self.prompt

        def commit(payload: str, image: Image.Image):
            if state is not self.state:
                logger.info(f"Dropping seed for {origin}: mosaic was cleared")
                return
            state.tiles[key] = Tile(image=image, payload=payload, rotation=0)
            state.generated.add(key)
            state.selected = key
            # Full ring so the mosaic is explorable in every direction
            state.expandable.clear()
            for n in hex_neighbors(origin):
                if hex_key(n) not in state.generated:
                    state.expandable.add(hex_key(n))
            logger.info(f"Seeded mosaic at {origin}")

        logger.info(f"Seeding {origin} (promptLen={len(prompt)})")
        return await self.orchestrator.run(key, state.loading, prompt, [], commit)

    async def extend(self, target: Hex, prompt: Optional[str] = None) -> bool:
        """
        Generates `target` from the selected tile.
        Returns False without side effects when the target is not on the
        frontier, already loading, or nothing is selected. Generation errors
        propagate and leave the target on the frontier for a retry.
        """
        state = self.state
        key = hex_key(target)
        if key not in state.expandable or key in state.loading or state.selected is None:
            return False
        source = state.tiles.get(state.selected)
        if source is None:
            return False

        direction = direction_of(hex_from_key(state.selected), target)
        context = build_context(source.image, direction, self.layout)
        full_prompt = self.extension_prompt(prompt or self.prompt)

        def commit(payload: str, image: Image.Image):
            if state is not self.state:
                logger.info(f"Dropping tile for {target}: mosaic was cleared")
                return
            state.tiles[key] = Tile(image=image, payload=payload, rotation=context.out_rotation)
            state.generated.add(key)
            state.expandable.discard(key)
            for n in hex_neighbors(target):
                if hex_key(n) not in state.generated:
                    state.expandable.add(hex_key(n))
            state.selected = key
            logger.info(f"Extended mosaic {direction.value} to {target} ({len(state.generated)} tiles)")

        logger.info(f"Extending {direction.value} to {target}")
        return await self.orchestrator.run(key, state.loading, full_prompt, [context.payload], commit)

    def select(self, coord: Hex) -> bool:
        key = hex_key(coord)
        if key not in self.state.generated:
            return False
        self.state.selected = key
        self._notify()
        return True

    def clear(self):
        """Drops every tile. Requests still in flight resolve against the old state."""
        self.state = MosaicState()
        logger.info("Mosaic cleared")
        self._notify()

    async def click(self, x: float, y: float) -> Optional[Hex]:
        """
        Pointer dispatch: selects a generated tile or extends into a frontier
        hex next to the selection. Returns the hex that was hit.
        """
        hit = self.layout.hit_test(x, y)
        if hit is None:
            return None
        key = hex_key(hit)
        if key in self.state.generated:
            self.select(hit)
        elif key in self.state.expandable and key not in self.state.loading:
            selected = self.selected
            if selected is None or hit not in hex_neighbors(selected):
                logger.warning(f"{hit} is not next to the selected tile, select a neighbor first")
                return hit
            await self.extend(hit)
        return hit

    def extension_prompt(self, base: str) -> str:
        width, height = self.layout.tile_size
        return f"{base}. " + EXTEND_INSTRUCTION.format(width=width, height=height)

    def _notify(self):
        if self.listener is not None:
            self.listener()
