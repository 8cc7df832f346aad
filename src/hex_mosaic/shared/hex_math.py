"""
Hexagonal Grid Math Library
System: Axial (q, r) & Cube (x, y, z)
Constraint: Pointy-topped hexes, vertices at 30deg + 60deg * k
"""

import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

SQRT3 = math.sqrt(3.0)

Point = Tuple[float, float]


@dataclass(frozen=True, eq=True)
class Hex:
    """
    Immutable Hexagon coordinate in Axial format.
    Frozen allows this to be used as dictionary keys.
    """
    q: int
    r: int

    @property
    def s(self) -> int:
        """Calculates the implicit third cube coordinate."""
        return -self.q - self.r

    def __add__(self, other: 'Hex') -> 'Hex':
        return Hex(self.q + other.q, self.r + other.r)

    def __sub__(self, other: 'Hex') -> 'Hex':
        return Hex(self.q - other.q, self.r - other.r)

    def __mul__(self, k: int) -> 'Hex':
        return Hex(self.q * k, self.r * k)

    def __repr__(self):
        return f"Hex({self.q}, {self.r})"

# --- Constants ---

ORIGIN = Hex(0, 0)

# The 6 neighbors of a hex (q, r), counterclockwise on screen starting at East
HEX_DIRECTIONS = [
    Hex(1, 0), Hex(1, -1), Hex(0, -1),
    Hex(-1, 0), Hex(-1, 1), Hex(0, 1)
]

# --- Core Math Functions ---

def hex_neighbors(hex: Hex) -> List[Hex]:
    """Returns the 6 adjacent hexes."""
    return [hex + d for d in HEX_DIRECTIONS]

def cube_round(frac_x: float, frac_y: float, frac_z: float) -> Tuple[int, int, int]:
    """
    Rounds floating point cube coordinates to the nearest valid integer cube.
    Maintains the constraint x + y + z = 0.
    """
    x = round(frac_x)
    y = round(frac_y)
    z = round(frac_z)

    x_diff = abs(x - frac_x)
    y_diff = abs(y - frac_y)
    z_diff = abs(z - frac_z)

    # Reset the component with the largest change to satisfy constraint
    if x_diff > y_diff and x_diff > z_diff:
        x = -y - z
    elif y_diff > z_diff:
        y = -x - z
    else:
        z = -x - y

    return int(x), int(y), int(z)

# --- Keys ---

def _zigzag(n: int) -> int:
    return 2 * n if n >= 0 else -2 * n - 1

def _unzigzag(n: int) -> int:
    return n // 2 if n % 2 == 0 else -(n + 1) // 2

def hex_key(hex: Hex) -> int:
    """
    Packs (q, r) into one non-negative int.
    Each axis is zig-zagged onto the naturals, then Cantor-paired, so every
    integer pair gets a distinct key with no range limit.
    """
    a = _zigzag(hex.q)
    b = _zigzag(hex.r)
    return (a + b) * (a + b + 1) // 2 + b

def hex_from_key(key: int) -> Hex:
    """Inverse of :func:`hex_key`."""
    if key < 0:
        raise ValueError(f"invalid hex key: {key}")
    w = (math.isqrt(8 * key + 1) - 1) // 2
    b = key - w * (w + 1) // 2
    a = w - b
    return Hex(_unzigzag(a), _unzigzag(b))

# --- Polygon Tests ---

def point_in_polygon(x: float, y: float, points: Sequence[Point]) -> bool:
    """Even-odd ray casting test."""
    inside = False
    j = len(points) - 1
    for i in range(len(points)):
        xi, yi = points[i]
        xj, yj = points[j]
        if (yi > y) != (yj > y) and x < (xj - xi) * (y - yi) / (yj - yi) + xi:
            inside = not inside
        j = i
    return inside

# --- Pixel Layout ---

@dataclass
class Layout:
    """
    Maps axial coordinates onto a viewport.
    `size` is the hex radius (center to vertex) in pixels, the origin is the
    pixel position of Hex(0, 0), normally the viewport center.
    """
    size: float = 72.0
    origin_x: float = 0.0
    origin_y: float = 0.0

    @property
    def hex_width(self) -> float:
        return SQRT3 * self.size

    @property
    def hex_height(self) -> float:
        return 2 * self.size

    @property
    def tile_size(self) -> Tuple[int, int]:
        """Pixel size of a tile image (width, height)."""
        return math.ceil(self.hex_width), math.ceil(self.hex_height)

    def axial_to_pixel(self, hex: Hex) -> Point:
        x = self.origin_x + self.size * SQRT3 * (hex.q + hex.r / 2)
        y = self.origin_y + self.size * 1.5 * hex.r
        return x, y

    def pixel_to_axial(self, px: float, py: float) -> Hex:
        """
        Nearest hex to a pixel.
        Goes through fractional cube coordinates so the rounding keeps
        x + y + z = 0; rounding q and r independently picks the wrong hex
        near boundaries.
        """
        x = px - self.origin_x
        y = py - self.origin_y
        qf = (SQRT3 / 3 * x - 1 / 3 * y) / self.size
        rf = (2 / 3 * y) / self.size
        q, _, r = cube_round(qf, -qf - rf, rf)
        return Hex(q, r)

    def hex_polygon(self, hex: Hex) -> List[Point]:
        """Returns the 6 vertices, vertex i at 60deg * i + 30deg."""
        cx, cy = self.axial_to_pixel(hex)
        return polygon_at(cx, cy, self.size)

    def hit_test(self, px: float, py: float) -> Optional[Hex]:
        """
        Finds the hex whose polygon contains the pixel.
        The rounded guess is tried first, then its neighbors, which covers
        points sitting on a shared edge.
        """
        guess = self.pixel_to_axial(px, py)
        for candidate in [guess] + hex_neighbors(guess):
            if point_in_polygon(px, py, self.hex_polygon(candidate)):
                return candidate
        return None

def polygon_at(cx: float, cy: float, radius: float) -> List[Point]:
    """Pointy-top hex vertices around an arbitrary center."""
    points = []
    for i in range(6):
        angle = math.pi / 3 * i + math.pi / 6
        points.append((cx + radius * math.cos(angle), cy + radius * math.sin(angle)))
    return points
