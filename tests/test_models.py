"""
Unit tests for the data models.

Region geometry and batching, paint buffers, transfer rejections and the
purchase outcome ordering.
"""

import base64

import pytest

from models.paint import PendingPreview, pack_rgba, unpack_rgba
from models.purchase_result import CommitOutcome, PurchaseResult, PurchaseStatus
from models.region import Region
from models.transfer import TransferReceipt, TransferRejection


class TestRegion:
    """Tests for Region."""

    def test_pixel_count_is_inclusive(self):
        """A 10x10 selection from (0,0) to (9,9) is 100 pixels."""
        region = Region(0, 0, 9, 9)
        assert region.width == 10
        assert region.height == 10
        assert region.pixel_count == 100

    @pytest.mark.parametrize("coords", [(0, 0, 0, 0), (3, 4, 7, 4), (10, 2, 10, 9), (5, 5, 20, 30)])
    def test_cost_is_pixels_times_price(self, coords):
        """cost == (x1-x0+1)*(y1-y0+1)*price for any rectangle."""
        x0, y0, x1, y1 = coords
        region = Region(*coords)
        assert region.cost(1_000_000) == (x1 - x0 + 1) * (y1 - y0 + 1) * 1_000_000

    def test_normalized_orders_corners(self):
        """Drag from bottom-right to top-left gives the same region."""
        assert Region.normalized(9, 9, 0, 0) == Region(0, 0, 9, 9)
        assert Region.normalized(9, 0, 0, 9) == Region(0, 0, 9, 9)

    def test_unnormalized_construction_rejected(self):
        with pytest.raises(ValueError):
            Region(5, 0, 4, 0)

    def test_fits_canvas(self):
        assert Region(0, 0, 99, 99).fits(100, 100)
        assert not Region(0, 0, 100, 99).fits(100, 100)
        assert not Region(-1, 0, 5, 5).fits(100, 100)

    def test_indices_row_major(self):
        assert Region(1, 1, 2, 2).indices(10) == [11, 12, 21, 22]

    def test_corners_and_centroid(self):
        region = Region(0, 0, 9, 9)
        assert region.corners() == [(0, 0), (9, 0), (0, 9), (9, 9)]
        assert region.centroid() == (4, 4)

    def test_split_single_batch_under_limit(self):
        region = Region(0, 0, 9, 9)
        assert list(region.split(4000)) == [region]

    def test_split_whole_rows(self):
        """Rows are grouped while they fit the cell limit."""
        region = Region(0, 0, 9, 9)
        parts = list(region.split(30))
        assert parts == [Region(0, 0, 9, 2), Region(0, 3, 9, 5), Region(0, 6, 9, 8), Region(0, 9, 9, 9)]
        assert all(p.pixel_count <= 30 for p in parts)

    def test_split_wide_rows_into_segments(self):
        region = Region(0, 0, 9, 1)
        parts = list(region.split(4))
        assert all(p.pixel_count <= 4 for p in parts)
        assert parts[0] == Region(0, 0, 3, 0)
        assert parts[2] == Region(8, 0, 9, 0)

    @pytest.mark.parametrize("limit", [1, 3, 7, 10, 25, 4000])
    def test_split_covers_every_cell_once_in_order(self, limit):
        region = Region(3, 2, 14, 8)
        combined = [i for part in region.split(limit) for i in part.indices(100)]
        assert combined == region.indices(100)

    def test_split_rejects_non_positive_limit(self):
        with pytest.raises(ValueError):
            list(Region(0, 0, 1, 1).split(0))

    def test_from_dict_normalizes(self):
        assert Region.from_dict({"x0": 9, "y0": 9, "x1": 0, "y1": 0}) == Region(0, 0, 9, 9)

    @pytest.mark.parametrize("data", [
        None,
        "0,0,1,1",
        {"x0": 0, "y0": 0, "x1": 1},
        {"x0": 0, "y0": 0, "x1": 1.5, "y1": 1},
        {"x0": True, "y0": 0, "x1": 1, "y1": 1},
        {"x0": "0", "y0": 0, "x1": 1, "y1": 1},
    ])
    def test_from_dict_rejects_garbage(self, data):
        """Corrupt session entries are ignored, not raised."""
        assert Region.from_dict(data) is None


class TestPaint:
    """Tests for the RGBA encoding and PendingPreview."""

    def test_pack_rgba(self):
        assert pack_rgba(0x12, 0x34, 0x56, 0x78) == 0x12345678
        assert pack_rgba(255, 255, 255, 255) == 0xFFFFFFFF

    def test_unpack_rgba(self):
        assert unpack_rgba(0x12345678) == (0x12, 0x34, 0x56, 0x78)

    def test_preview_length_must_match_region(self):
        with pytest.raises(ValueError):
            PendingPreview(Region(0, 0, 1, 1), b"\x00" * 15)

    def test_from_base64(self):
        region = Region(0, 0, 1, 0)
        raw = bytes([255, 0, 0, 255, 0, 255, 0, 255])
        preview = PendingPreview.from_base64(region, base64.b64encode(raw).decode())
        assert preview.packed_colors() == [0xFF0000FF, 0x00FF00FF]

    def test_from_base64_rejects_invalid(self):
        with pytest.raises(ValueError):
            PendingPreview.from_base64(Region(0, 0, 0, 0), "not base64!!")

    def test_colors_for_sub_region(self):
        region = Region(10, 10, 12, 11)
        raw = b"".join(bytes([i, 0, 0, 255]) for i in range(6))
        preview = PendingPreview(region, raw)

        assert preview.colors_for(Region(10, 11, 12, 11)) == [pack_rgba(i, 0, 0, 255) for i in (3, 4, 5)]
        with pytest.raises(ValueError):
            preview.colors_for(Region(0, 0, 1, 1))

    def test_color_at_absolute_coordinates(self):
        region = Region(10, 10, 11, 11)
        raw = b"".join(bytes([i, i, i, 255]) for i in range(4))
        preview = PendingPreview(region, raw)
        assert preview.color_at(11, 11) == pack_rgba(3, 3, 3, 255)
        assert preview.color_at(10, 10) == pack_rgba(0, 0, 0, 255)

    def test_solid(self):
        preview = PendingPreview.solid(Region(0, 0, 2, 2), 1, 2, 3)
        assert set(preview.packed_colors()) == {pack_rgba(1, 2, 3, 255)}


class TestTransferModels:
    """Tests for TransferReceipt and TransferRejection."""

    def test_receipt_total(self):
        assert TransferReceipt(42, 100_000_000, 10_000).total == 100_010_000

    def test_bad_fee_variant(self):
        rejection = TransferRejection.from_variant({"BadFee": {"expected_fee": 20_000}})
        assert rejection.tag == TransferRejection.BAD_FEE
        assert rejection.expected_fee == 20_000

    def test_null_variant(self):
        rejection = TransferRejection.from_variant({"TemporarilyUnavailable": None})
        assert rejection.tag == TransferRejection.TEMPORARILY_UNAVAILABLE
        assert rejection.payload == {}

    def test_clock_skew_tags(self):
        assert TransferRejection("TooOld").is_clock_skew
        assert TransferRejection("CreatedInFuture", {"ledger_time": 1}).is_clock_skew
        assert not TransferRejection("BadFee").is_clock_skew

    def test_duplicate_of(self):
        assert TransferRejection.from_variant({"Duplicate": {"duplicate_of": 7}}).duplicate_of == 7

    def test_unknown_shape_is_generic(self):
        rejection = TransferRejection.from_variant(12)
        assert rejection.tag == TransferRejection.GENERIC_ERROR

    def test_describe_contains_tag_and_payload(self):
        text = TransferRejection("GenericError", {"error_code": 3, "message": "nope"}).describe()
        assert "GenericError" in text
        assert "nope" in text


class TestPurchaseResult:
    """Tests for CommitOutcome ordering and result factories."""

    def test_claim_requires_payment(self):
        outcome = CommitOutcome()
        with pytest.raises(RuntimeError):
            outcome.mark_claimed()

    def test_paint_requires_claim(self):
        outcome = CommitOutcome()
        outcome.mark_paid()
        with pytest.raises(RuntimeError):
            outcome.mark_painted()

    def test_completed_result(self):
        outcome = CommitOutcome()
        outcome.mark_paid()
        outcome.mark_claimed()
        result = PurchaseResult.create_completed("p1", outcome, {"x0": 0}, 42, 100, 10)

        assert result.status is PurchaseStatus.COMPLETED
        assert result.is_terminal
        data = result.to_dict()
        assert data["block_index"] == 42
        assert data["outcome"]["claimed"] is True

    def test_pending_is_not_terminal(self):
        assert not PurchaseResult.create_pending("p1").is_terminal
