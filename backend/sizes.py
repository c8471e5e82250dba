"""Generation size derivation for print areas.

Print areas at catalog DPI are often 3000px+ per side, which image backends
time out on. We generate at a bounded size with the same aspect ratio and keep
the print size for placement/upscaling later.
"""

from dataclasses import dataclass
from typing import Optional

from config import IMAGE_MAX_SIDE, IMAGE_MIN_SIDE

SQUARE = "square"
LANDSCAPE = "landscape"
PORTRAIT = "portrait"


@dataclass(frozen=True)
class GenerationSize:
    width: int
    height: int
    orientation: str

    @property
    def label(self) -> str:
        return f"{self.width}x{self.height}"


def orientation_of(width: int, height: int) -> str:
    if width == height:
        return SQUARE
    return LANDSCAPE if width > height else PORTRAIT


def max_side_for(backend_cap: Optional[int] = None, configured: int = IMAGE_MAX_SIDE) -> int:
    """Effective longest side: the configured max, lowered to the backend's hard cap."""
    if backend_cap:
        return min(configured, backend_cap)
    return configured


def derive_generation_size(
    width: int,
    height: int,
    max_side: int = IMAGE_MAX_SIDE,
    min_side: int = IMAGE_MIN_SIDE,
) -> GenerationSize:
    """Scale the longer side down to max_side, keep the ratio, floor both sides at min_side.

    The floor wins over the ratio for extreme shapes: 10000x100 becomes
    2048x512, not 2048x20.
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"Print area must be positive, got {width}x{height}")

    orientation = orientation_of(width, height)
    longest = max(width, height)
    scale = min(1.0, max_side / longest)

    if orientation == SQUARE:
        w = h = round(width * scale)
    else:
        w = round(width * scale)
        h = round(height * scale)

    return GenerationSize(
        width=max(w, min_side),
        height=max(h, min_side),
        orientation=orientation,
    )
