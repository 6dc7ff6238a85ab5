"""
Region model.

A Region is an inclusive integer rectangle of canvas cells. It is the unit
that gets priced, claimed, painted and verified.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Tuple


@dataclass(frozen=True)
class Region:
    """
    Inclusive rectangle ``{x0, y0, x1, y1}`` with ``x0 <= x1`` and ``y0 <= y1``.

    Always build through ``Region.normalized`` when the corner order is not
    known (drag selections can go in any direction).
    """

    x0: int
    y0: int
    x1: int
    y1: int

    def __post_init__(self):
        if self.x0 > self.x1 or self.y0 > self.y1:
            raise ValueError(f"Region is not normalized: {self}")

    @classmethod
    def normalized(cls, x0: int, y0: int, x1: int, y1: int) -> "Region":
        return cls(min(x0, x1), min(y0, y1), max(x0, x1), max(y0, y1))

    # ------------------------------------------------------------------
    # Geometry
    # ------------------------------------------------------------------

    @property
    def width(self) -> int:
        return self.x1 - self.x0 + 1

    @property
    def height(self) -> int:
        return self.y1 - self.y0 + 1

    @property
    def pixel_count(self) -> int:
        return self.width * self.height

    def cost(self, price_per_pixel: int) -> int:
        return self.pixel_count * price_per_pixel

    def fits(self, canvas_width: int, canvas_height: int) -> bool:
        return self.x0 >= 0 and self.y0 >= 0 and self.x1 < canvas_width and self.y1 < canvas_height

    def contains(self, x: int, y: int) -> bool:
        return self.x0 <= x <= self.x1 and self.y0 <= y <= self.y1

    def indices(self, canvas_width: int) -> List[int]:
        """Row-major canvas indices (``y * canvas_width + x``) of every cell."""
        return [
            y * canvas_width + x
            for y in range(self.y0, self.y1 + 1)
            for x in range(self.x0, self.x1 + 1)
        ]

    def corners(self) -> List[Tuple[int, int]]:
        return [
            (self.x0, self.y0),
            (self.x1, self.y0),
            (self.x0, self.y1),
            (self.x1, self.y1),
        ]

    def centroid(self) -> Tuple[int, int]:
        return ((self.x0 + self.x1) // 2, (self.y0 + self.y1) // 2)

    def split(self, max_cells: int) -> Iterator["Region"]:
        """
        Split into sub-regions of at most ``max_cells`` cells, in row-major order.

        Whole-row strips are used when a row fits; wider rows are cut into
        horizontal segments. Concatenating the sub-regions' ``indices`` gives
        exactly ``self.indices``.
        """
        if max_cells <= 0:
            raise ValueError("max_cells must be positive")

        if self.width <= max_cells:
            rows_per_batch = max_cells // self.width
            y = self.y0
            while y <= self.y1:
                y_end = min(self.y1, y + rows_per_batch - 1)
                yield Region(self.x0, y, self.x1, y_end)
                y = y_end + 1
            return

        for y in range(self.y0, self.y1 + 1):
            x = self.x0
            while x <= self.x1:
                x_end = min(self.x1, x + max_cells - 1)
                yield Region(x, y, x_end, y)
                x = x_end + 1

    # ------------------------------------------------------------------
    # Serialization (session persistence, API bodies)
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, int]:
        return {"x0": self.x0, "y0": self.y0, "x1": self.x1, "y1": self.y1}

    @classmethod
    def from_dict(cls, data: Any) -> Optional["Region"]:
        """
        Restore a persisted selection.

        Returns None for anything that is not four integral coordinates,
        so a corrupted session entry is simply ignored.
        """
        if not isinstance(data, dict):
            return None

        coords = []
        for key in ("x0", "y0", "x1", "y1"):
            value = data.get(key)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                return None
            if isinstance(value, float) and not value.is_integer():
                return None
            coords.append(int(value))

        return cls.normalized(*coords)

    def __str__(self) -> str:
        return f"({self.x0},{self.y0})-({self.x1},{self.y1}) [{self.pixel_count} px]"
