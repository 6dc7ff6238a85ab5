"""
Post-write convergence check.

After claim/paint the write is visible on the host that accepted it, but a
read through another boundary host may lag. ConvergenceVerifier samples the
region (four corners plus the centroid) until the link and the painted
colors read back as expected, or the deadline passes.

Read errors are treated as "not converged yet"; await_visible() never raises.
Every read gets an advisory timeout clipped to the time left, so a slow read
path cannot push the answer past the deadline.
"""

from __future__ import annotations

import time
from typing import Dict, List, Optional, Tuple

from core.exceptions import RemoteTimeoutError
from core.remote import BillboardClient, call_with_timeout
from core.retry import Backoff, poll_until
from models.paint import PendingPreview
from models.region import Region
from logging_config import get_logger
from .host_selector import HostSelector


logger = get_logger(__name__)


def link_matches(observed: Optional[str], expected: str) -> bool:
    """Equal, or the stored link starts with what was submitted."""
    if observed is None:
        return False
    return observed == expected or observed.startswith(expected)


def sample_points(region: Region) -> List[Tuple[int, int]]:
    """Corners then centroid, without duplicates."""
    points: List[Tuple[int, int]] = []
    for point in region.corners() + [region.centroid()]:
        if point not in points:
            points.append(point)
    return points


class ConvergenceVerifier:

    def __init__(
        self,
        selector: HostSelector,
        canvas_width: int,
        timeout_seconds: float = 15.0,
        backoff: Backoff = Backoff(base=0.25, multiplier=1.3, cap=1.2),
        call_timeout_seconds: Optional[float] = 5.0
    ):
        self._selector = selector
        self._width = canvas_width
        self._timeout = timeout_seconds
        self._backoff = backoff
        self._call_timeout = call_timeout_seconds

    def await_visible(
        self,
        region: Region,
        expected_paint: Optional[PendingPreview],
        expected_link: str,
        timeout_seconds: Optional[float] = None
    ) -> bool:
        """
        Poll until the region reads back with the expected link and colors.

        Args:
            region: Region that was claimed (and maybe painted)
            expected_paint: Paint buffer, None to check the link only
            expected_link: Link submitted with the claim
            timeout_seconds: Deadline override

        Returns:
            True once every sample matched, False at the deadline
        """
        timeout = self._timeout if timeout_seconds is None else timeout_seconds
        deadline = time.monotonic() + timeout
        points = sample_points(region)
        centroid = region.centroid()

        expected_colors: Dict[Tuple[int, int], int] = {}
        if expected_paint is not None:
            expected_colors = {(x, y): expected_paint.color_at(x, y) for x, y in points}

        state: Dict[str, Optional[BillboardClient]] = {"client": None}
        attempts = [0]

        def budget() -> float:
            """Advisory timeout for the next read, never past the deadline."""
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise RemoteTimeoutError("await_visible", "read path", timeout)
            if self._call_timeout is None:
                return remaining
            return min(self._call_timeout, remaining)

        def check() -> bool:
            attempts[0] += 1
            try:
                if state["client"] is None:
                    handle = call_with_timeout(
                        lambda: self._selector.connect(identity=None, remember=False),
                        budget(),
                        "connect",
                        "read path",
                    )
                    state["client"] = handle.billboard(self._width, self._call_timeout)
                client = state["client"]

                if not link_matches(client.link_for_pixel(*centroid, timeout=budget()), expected_link):
                    return False

                for (x, y), color in expected_colors.items():
                    if client.get_canvas_chunk(x, y, 1, 1, timeout=budget())[0] != color:
                        return False
                return True
            except Exception as e:
                logger.debug(f"[VERIFY] read failed (attempt {attempts[0]}): {e}")
                state["client"] = None
                return False

        converged = poll_until(check, timeout, self._backoff)
        if converged:
            logger.info(f"[VERIFY] {region} visible after {attempts[0]} read(s)")
        else:
            logger.warning(f"[VERIFY] {region} not visible after {timeout:.1f}s ({attempts[0]} reads)")
        return converged
