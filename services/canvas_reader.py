"""
Canvas reads with tiled fallback.

A full-canvas read is one get_canvas_chunk(0, 0, W, H). If that call fails
(too large for one reply, host hiccup) the canvas is fetched as square tiles
on a thread pool and reassembled. Tiles may complete in any order; each one
is written to its own slice of the row-major buffer.
"""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from core.exceptions import BillboardError, RemoteCallError
from core.remote import BillboardClient
from models.paint import unpack_rgba
from models.region import Region
from logging_config import get_logger
from .host_selector import HostSelector


logger = get_logger(__name__)


@dataclass(frozen=True)
class CanvasFrame:
    """One snapshot of the whole canvas, row-major remote RGBA colors."""

    width: int
    height: int
    colors: List[int] = field(repr=False)
    host: str
    tiled: bool = False
    fetched_at: float = field(default_factory=time.time)

    def color_at(self, x: int, y: int) -> int:
        return self.colors[y * self.width + x]

    def to_dict(self, include_pixels: bool = False) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "width": self.width,
            "height": self.height,
            "host": self.host,
            "tiled": self.tiled,
            "fetched_at": self.fetched_at,
        }
        if include_pixels:
            data["colors"] = self.colors
        return data


class CanvasReader:
    """
    Reads canvas pixels and links over an anonymous read connection.
    """

    def __init__(
        self,
        selector: HostSelector,
        width: int = 1000,
        height: int = 1000,
        tile_size: int = 125,
        tile_concurrency: int = 16,
        call_timeout_seconds: Optional[float] = 30.0
    ):
        self._selector = selector
        self.width = width
        self.height = height
        self._tile = tile_size
        self._concurrency = tile_concurrency
        self._timeout = call_timeout_seconds
        self._last_frame: Optional[CanvasFrame] = None

    @property
    def last_frame(self) -> Optional[CanvasFrame]:
        return self._last_frame

    def _client(self) -> BillboardClient:
        handle = self._selector.connect(identity=None, remember=False)
        return handle.billboard(self.width, self._timeout)

    def read_full(self) -> CanvasFrame:
        """
        Fetch the whole canvas, falling back to tiles.

        Raises:
            BillboardError: If both the single read and the tiled read fail
        """
        client = self._client()
        try:
            colors = client.get_canvas_chunk(0, 0, self.width, self.height)
            frame = CanvasFrame(self.width, self.height, colors, client.host)
        except RemoteCallError as e:
            logger.warning(f"[CANVAS] full read failed on {client.host}, using tiles: {e}")
            frame = self._read_tiles(client)

        self._last_frame = frame
        return frame

    def read_tiles(self) -> CanvasFrame:
        frame = self._read_tiles(self._client())
        self._last_frame = frame
        return frame

    def _tile_regions(self) -> List[Region]:
        tiles = []
        for y in range(0, self.height, self._tile):
            for x in range(0, self.width, self._tile):
                x1 = min(x + self._tile, self.width) - 1
                y1 = min(y + self._tile, self.height) - 1
                tiles.append(Region(x, y, x1, y1))
        return tiles

    def _read_tiles(self, client: BillboardClient) -> CanvasFrame:
        buffer = [0] * (self.width * self.height)
        tiles = self._tile_regions()

        def fetch(tile: Region) -> Tuple[Region, List[int]]:
            return tile, client.get_canvas_chunk(tile.x0, tile.y0, tile.width, tile.height)

        with ThreadPoolExecutor(max_workers=self._concurrency, thread_name_prefix="CanvasTile") as pool:
            futures = [pool.submit(fetch, tile) for tile in tiles]
            for future in as_completed(futures):
                tile, colors = future.result()
                for row in range(tile.height):
                    start = (tile.y0 + row) * self.width + tile.x0
                    buffer[start:start + tile.width] = colors[row * tile.width:(row + 1) * tile.width]

        logger.info(f"[CANVAS] assembled {len(tiles)} tiles from {client.host}")
        return CanvasFrame(self.width, self.height, buffer, client.host, tiled=True)

    def read_pixel(self, x: int, y: int, client: Optional[BillboardClient] = None) -> int:
        client = client or self._client()
        return client.get_canvas_chunk(x, y, 1, 1)[0]

    def link_at(self, x: int, y: int, client: Optional[BillboardClient] = None) -> Optional[str]:
        if not (0 <= x < self.width and 0 <= y < self.height):
            return None
        client = client or self._client()
        return client.link_for_pixel(x, y)

    def describe_pixel(self, x: int, y: int) -> Dict[str, Any]:
        """Color and link of one pixel, for the link lookup endpoint."""
        client = self._client()
        color = self.read_pixel(x, y, client)
        try:
            link = self.link_at(x, y, client)
        except BillboardError as e:
            logger.warning(f"[CANVAS] link read failed at ({x},{y}): {e}")
            link = None
        r, g, b, a = unpack_rgba(color)
        return {"x": x, "y": y, "color": color, "rgba": [r, g, b, a], "link": link}
