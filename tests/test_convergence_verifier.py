"""
Unit tests for ConvergenceVerifier.
"""

import time

import pytest

from core.retry import Backoff
from models.paint import PendingPreview
from models.region import Region
from services.convergence_verifier import ConvergenceVerifier, link_matches, sample_points


LINK = "https://example.com"
REGION = Region(10, 10, 19, 19)


@pytest.fixture
def verifier(selector):
    return ConvergenceVerifier(
        selector,
        canvas_width=100,
        timeout_seconds=2.0,
        backoff=Backoff(base=0.01, multiplier=1.3, cap=0.05),
        call_timeout_seconds=1.0,
    )


@pytest.fixture
def preview():
    return PendingPreview.solid(REGION, 200, 10, 10)


def write_region(gateway, region, link, preview=None):
    for index in region.indices(100):
        gateway.links[index] = link
        if preview is not None:
            gateway.canvas[index] = preview.packed_colors()[0]


class TestSampling:

    def test_corners_and_centroid(self):
        assert sample_points(REGION) == [(10, 10), (19, 10), (10, 19), (19, 19), (14, 14)]

    def test_single_pixel_deduplicated(self):
        assert sample_points(Region(5, 5, 5, 5)) == [(5, 5)]

    def test_row_deduplicated(self):
        assert sample_points(Region(0, 3, 8, 3)) == [(0, 3), (8, 3), (4, 3)]

    @pytest.mark.parametrize("observed, expected, ok", [
        ("https://example.com", "https://example.com", True),
        ("https://example.com/landing", "https://example.com", True),
        ("https://other.com", "https://example.com", False),
        (None, "https://example.com", False),
    ])
    def test_link_matches(self, observed, expected, ok):
        assert link_matches(observed, expected) is ok


class TestAwaitVisible:

    def test_already_visible(self, verifier, gateway, preview):
        write_region(gateway, REGION, LINK, preview)
        assert verifier.await_visible(REGION, preview, LINK)

    def test_link_only(self, verifier, gateway):
        write_region(gateway, REGION, LINK)
        assert verifier.await_visible(REGION, None, LINK)
        assert gateway.calls_to("get_canvas_chunk") == []

    def test_converges_after_lag(self, verifier, gateway, preview):
        write_region(gateway, REGION, LINK, preview)
        gateway.link_lag_reads = 3

        started = time.monotonic()
        assert verifier.await_visible(REGION, preview, LINK)

        assert time.monotonic() - started < 2.0
        assert len(gateway.calls_to("link_for_pixel")) == 4

    def test_wrong_color_never_converges(self, verifier, gateway, preview):
        write_region(gateway, REGION, LINK)

        started = time.monotonic()
        assert verifier.await_visible(REGION, preview, LINK, timeout_seconds=0.2) is False
        assert time.monotonic() - started >= 0.2

    def test_read_errors_count_as_not_yet(self, verifier, gateway, preview):
        write_region(gateway, REGION, LINK, preview)
        gateway.fail("link_for_pixel", times=2)

        assert verifier.await_visible(REGION, preview, LINK)

    def test_never_raises_when_hosts_are_down(self, verifier, gateway, hosts, preview):
        gateway.down.update(hosts)
        assert verifier.await_visible(REGION, preview, LINK, timeout_seconds=0.1) is False

    def test_slow_reads_do_not_overrun_deadline(self, verifier, gateway, preview):
        """A read slower than the deadline is cut off at the deadline."""
        write_region(gateway, REGION, LINK, preview)
        gateway.delays["link_for_pixel"] = 1.0

        started = time.monotonic()
        assert verifier.await_visible(REGION, preview, LINK, timeout_seconds=0.3) is False

        assert time.monotonic() - started < 0.8
