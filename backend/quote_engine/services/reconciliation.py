"""
Reconciliation guard: checks the redistributed breakdown against the
authoritative total.

A mismatch is logged and returned, never raised: the summary total stays the
figure of record and the breakdown is treated as advisory. Strict callers
(and the test-suite) use ``ReconciliationResult.raise_for_mismatch()``.
"""
import logging
from typing import Sequence

from quote_engine.config import MONEY_DECIMALS, RECONCILIATION_TOLERANCE_PER_LINE
from quote_engine.models.quote_schema import (
    CostSummary,
    ProductLine,
    ReconciliationResult,
    UnattributedCost,
)

logger = logging.getLogger("quote-engine.reconciliation")


def tolerance_for(row_count: int) -> float:
    """0.01 per row, never below 0.01."""
    return round(max(row_count, 1) * RECONCILIATION_TOLERANCE_PER_LINE, MONEY_DECIMALS)


def verify(
    lines: Sequence[ProductLine],
    summary: CostSummary,
    unattributed: Sequence[UnattributedCost] = (),
    distributable: bool = True,
) -> ReconciliationResult:
    row_count = len(lines) + len(unattributed)
    tolerance = tolerance_for(row_count)

    if not distributable:
        return ReconciliationResult(
            status="not_distributable", expected=summary.total, tolerance=tolerance, row_count=row_count,
        )

    actual = round(
        sum(line.final_cost for line in lines) + sum(row.final_cost for row in unattributed),
        MONEY_DECIMALS,
    )
    delta = round(actual - summary.total, MONEY_DECIMALS)
    # Compare in cents to keep float noise out of the boundary case
    if round(abs(delta) * 100) <= round(tolerance * 100):
        status = "ok"
    else:
        status = "mismatch"
        logger.warning(
            "breakdown does not reconcile with summary total",
            extra={"delta": delta, "category": "reconciliation"},
        )

    return ReconciliationResult(
        status=status,
        expected=summary.total,
        actual=actual,
        delta=delta,
        tolerance=tolerance,
        row_count=row_count,
    )
