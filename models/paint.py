"""
Pending paint content.

A PendingPreview is the client-held design for a region: a row-major RGBA
byte buffer exactly the size of the region. It exists from the moment the
user places a design until it is committed or cancelled.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from typing import List

from .region import Region


def pack_rgba(r: int, g: int, b: int, a: int) -> int:
    """Remote color encoding: one unsigned 32-bit value ``0xRRGGBBAA``."""
    return ((r & 0xFF) << 24) | ((g & 0xFF) << 16) | ((b & 0xFF) << 8) | (a & 0xFF)


def unpack_rgba(color: int) -> tuple:
    color &= 0xFFFFFFFF
    return ((color >> 24) & 0xFF, (color >> 16) & 0xFF, (color >> 8) & 0xFF, color & 0xFF)


@dataclass(frozen=True)
class PendingPreview:
    """
    Proposed paint content for a region, not yet committed.

    Attributes:
        region: Target region on the canvas
        rgba: ``region.pixel_count * 4`` bytes, row-major, R G B A per cell
    """

    region: Region
    rgba: bytes

    def __post_init__(self):
        expected = self.region.pixel_count * 4
        if len(self.rgba) != expected:
            raise ValueError(
                f"Paint buffer has {len(self.rgba)} bytes, expected {expected} for {self.region}"
            )

    @classmethod
    def from_base64(cls, region: Region, encoded: str) -> "PendingPreview":
        try:
            raw = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"Paint buffer is not valid base64: {e}")
        return cls(region, raw)

    @classmethod
    def solid(cls, region: Region, r: int, g: int, b: int, a: int = 255) -> "PendingPreview":
        return cls(region, bytes((r, g, b, a)) * region.pixel_count)

    def packed_colors(self) -> List[int]:
        """All cells in remote encoding, row-major."""
        data = self.rgba
        return [
            pack_rgba(data[i], data[i + 1], data[i + 2], data[i + 3])
            for i in range(0, len(data), 4)
        ]

    def colors_for(self, sub_region: Region) -> List[int]:
        """Remote-encoded colors for a sub-region of this preview, row-major."""
        if not (self.region.contains(sub_region.x0, sub_region.y0)
                and self.region.contains(sub_region.x1, sub_region.y1)):
            raise ValueError(f"{sub_region} is outside {self.region}")
        return [
            self.color_at(x, y)
            for y in range(sub_region.y0, sub_region.y1 + 1)
            for x in range(sub_region.x0, sub_region.x1 + 1)
        ]

    def color_at(self, x: int, y: int) -> int:
        """
        Expected remote color at absolute canvas coordinates.

        Coordinates outside the region are clamped to its edge.
        """
        local_x = min(self.region.width - 1, max(0, x - self.region.x0))
        local_y = min(self.region.height - 1, max(0, y - self.region.y0))
        offset = (local_y * self.region.width + local_x) * 4
        data = self.rgba
        return pack_rgba(data[offset], data[offset + 1], data[offset + 2], data[offset + 3])
