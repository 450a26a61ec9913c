"""
test_reconciliation.py: Unit tests for the reconciliation guard.

The guard must catch a breakdown that double-counts an ancillary cost
(the cost placed on a product line while still counted elsewhere), and must
report rather than raise.
"""

import logging

import pytest

from quote_engine.exceptions import ReconciliationMismatch
from quote_engine.models.quote_schema import CostSummary, ProductLine, UnattributedCost
from quote_engine.services.reconciliation import tolerance_for, verify


def _summary(total):
    return CostSummary(product=total, subtotal=total, total=total)


class TestTolerance:

    @pytest.mark.parametrize("rows, expected", [(0, 0.01), (1, 0.01), (3, 0.03), (10, 0.1)])
    def test_per_row_tolerance(self, rows, expected):
        assert tolerance_for(rows) == expected


class TestVerify:

    def test_ok_when_rows_sum_to_total(self):
        lines = [ProductLine(product_id="a", final_cost=600.0), ProductLine(product_id="b", final_cost=400.0)]
        result = verify(lines, _summary(1_000.0))
        assert result.status == "ok"
        assert result.ok
        assert result.delta == 0.0
        result.raise_for_mismatch()

    def test_unattributed_rows_count(self):
        """Worked example: Σ product lines + labor row (with its margin) = 2 080 000."""
        lines = [
            ProductLine(product_id="p1", final_cost=455_000.0),
            ProductLine(product_id="p2", final_cost=325_000.0),
        ]
        labor = [UnattributedCost(item_id="crew", category="labor", final_cost=1_300_000.0)]
        result = verify(lines, _summary(2_080_000.0), labor)
        assert result.ok
        assert result.row_count == 3

    def test_rounding_within_tolerance(self):
        lines = [ProductLine(product_id=str(i), final_cost=33.33) for i in range(3)]
        result = verify(lines, _summary(100.0))
        assert result.status == "ok"
        assert result.delta == -0.01

    def test_double_counted_transport_is_mismatch(self, caplog):
        """Transport 100 000 placed on the lines AND kept as its own row → +100 000."""
        lines = [
            ProductLine(product_id="a", base_cost=300_000.0, transport_share=50_000.0, final_cost=350_000.0),
            ProductLine(product_id="b", base_cost=200_000.0, transport_share=50_000.0, final_cost=250_000.0),
        ]
        stray = [UnattributedCost(item_id="t", category="transport", final_cost=100_000.0)]
        with caplog.at_level(logging.WARNING, logger="quote-engine.reconciliation"):
            result = verify(lines, _summary(600_000.0), stray)
        assert result.status == "mismatch"
        assert result.delta == 100_000.0
        assert "does not reconcile" in caplog.text

    def test_raise_for_mismatch(self):
        result = verify([ProductLine(product_id="a", final_cost=10.0)], _summary(12.0))
        with pytest.raises(ReconciliationMismatch) as exc_info:
            result.raise_for_mismatch()
        assert exc_info.value.to_dict()["delta"] == -2.0

    def test_not_distributable(self):
        result = verify([], _summary(100_000.0), distributable=False)
        assert result.status == "not_distributable"
        assert result.expected == 100_000.0
        # Not a mismatch: nothing to raise
        result.raise_for_mismatch()

    def test_empty_quote_is_ok(self):
        assert verify([], _summary(0.0)).status == "ok"
