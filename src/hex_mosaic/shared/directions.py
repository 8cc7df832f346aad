"""
Expansion directions.
Angles are measured counterclockwise on screen from East, so each angle is
also the bearing of that neighbor's center in the pointy-top pixel layout.
"""

from enum import Enum
from typing import Dict

from hex_mosaic.shared.errors import InvalidDirection
from hex_mosaic.shared.hex_math import Hex, HEX_DIRECTIONS


class Direction(str, Enum):
    EAST = "east"
    NORTHEAST = "northeast"
    NORTHWEST = "northwest"
    WEST = "west"
    SOUTHWEST = "southwest"
    SOUTHEAST = "southeast"


# Same order as HEX_DIRECTIONS
DIRECTION_DELTAS: Dict[Direction, Hex] = dict(zip(Direction, HEX_DIRECTIONS))

DIRECTION_ANGLES: Dict[Direction, int] = {
    Direction.EAST: 0,
    Direction.NORTHEAST: 60,
    Direction.NORTHWEST: 120,
    Direction.WEST: 180,
    Direction.SOUTHWEST: 240,
    Direction.SOUTHEAST: 300,
}

_BY_DELTA = {delta: direction for direction, delta in DIRECTION_DELTAS.items()}


def direction_of(src: Hex, dst: Hex) -> Direction:
    """Direction of the step from src to dst; the two must be neighbors."""
    try:
        return _BY_DELTA[dst - src]
    except KeyError:
        raise InvalidDirection(f"{dst} is not adjacent to {src}") from None


def opposite(direction: Direction) -> Direction:
    delta = DIRECTION_DELTAS[direction]
    return _BY_DELTA[delta * -1]
