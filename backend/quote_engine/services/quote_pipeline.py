"""
One pricing pass over an immutable snapshot of inputs and catalogs.

    inputs → CostAggregator → LineItemRedistributor.redistribute
           → apply_margin_and_retention → LineItemRedistributor.finalize
           → reconciliation.verify → QuoteResult

Per-line margin reads its row costs from the redistributor; global margin
reads only the subtotal. Both feed the same summary fields.
"""

import logging
from typing import Iterable, List, Optional

from quote_engine.config import (
    ADVANCE_PAYMENT_PERCENTAGE,
    ADVANCE_PAYMENT_THRESHOLD,
    MAX_LABOR_HOURS_PER_PRODUCT_UNIT,
    PAYMENT_TERMS_DAYS,
)
from quote_engine.models.catalog_schema import Catalogs
from quote_engine.models.quote_schema import (
    Breakdown,
    CostSummary,
    LineItemCost,
    PaymentTerms,
    PricingConfig,
    QuoteResult,
)
from quote_engine.services.costing_engine import CostAggregator
from quote_engine.services.margin_engine import apply_margin_and_retention
from quote_engine.services.perf_monitor import timed
from quote_engine.services.reconciliation import verify
from quote_engine.services.redistribution_engine import LineItemRedistributor

logger = logging.getLogger("quote-engine.pipeline")

_AGGREGATOR = CostAggregator()
_REDISTRIBUTOR = LineItemRedistributor()


def payment_terms_for(total: float, client_type: str) -> PaymentTerms:
    """Corporate clients get 30 days, everyone else 15; large quotes need an advance."""
    days = PAYMENT_TERMS_DAYS.get(client_type, PAYMENT_TERMS_DAYS["social"])
    if total > ADVANCE_PAYMENT_THRESHOLD:
        return PaymentTerms(
            days=days,
            advance_required=True,
            advance_percentage=ADVANCE_PAYMENT_PERCENTAGE,
            advance_amount=round(total * ADVANCE_PAYMENT_PERCENTAGE / 100.0, 2),
        )
    return PaymentTerms(days=days)


def check_labor_associations(line_costs: List[LineItemCost]) -> List[str]:
    """
    Data-quality warnings about labor ↔ product links:
      - labor with no linked product while the quote has products
      - links to products that are not in the quote
      - more than MAX_LABOR_HOURS_PER_PRODUCT_UNIT labor hours per linked unit
    """
    products = {c.item_id: c for c in line_costs if c.category.value == "product"}
    by_catalog = {c.catalog_id: c for c in products.values() if c.catalog_id}
    warnings: List[str] = []
    hours_per_product = {}

    for cost in line_costs:
        if cost.category.value != "labor":
            continue
        if not cost.linked_product_ids:
            if products:
                warnings.append(f"Labor '{cost.description}' is not linked to any product")
            continue
        linked = []
        for ref in cost.linked_product_ids:
            product = products.get(ref) or by_catalog.get(ref)
            if product is None:
                warnings.append(f"Labor '{cost.description}' is linked to product '{ref}', which is not in the quote")
            else:
                linked.append(product.item_id)
        for pid in linked:
            declared = (cost.hours_per_product or {}).get(pid)
            hours = declared if declared else cost.quantity / len(linked)
            hours_per_product[pid] = hours_per_product.get(pid, 0.0) + hours

    for pid, hours in hours_per_product.items():
        product = products[pid]
        if product.quantity > 0 and hours / product.quantity > MAX_LABOR_HOURS_PER_PRODUCT_UNIT:
            warnings.append(
                f"Product '{product.description}' carries {hours:.1f} labor hours for "
                f"{product.quantity:g} units; check the labor assignment"
            )
    return warnings


def _margin_pass(line_costs: List[LineItemCost], config: PricingConfig):
    """Summary with margin/retention applied, the pre-margin breakdown, and margin warnings."""
    summary = _AGGREGATOR.summarize(line_costs, config)
    breakdown = _REDISTRIBUTOR.redistribute(line_costs, summary)
    per_line = None
    if config.margin_mode == "per_line" and breakdown.distributable and breakdown.row_count:
        per_line = breakdown.base_costs()
    margin = apply_margin_and_retention(summary.subtotal, summary.category_costs(), per_line, config)
    return summary.with_margin(margin), breakdown, margin.warnings


def summarize_quote(inputs: Iterable, catalogs: Catalogs, config: Optional[PricingConfig] = None) -> CostSummary:
    """Aggregate plus margin and retention, without the itemised breakdown."""
    config = config or PricingConfig()
    line_costs = _AGGREGATOR.calculate_line_costs(inputs, catalogs)
    summary, _, _ = _margin_pass(line_costs, config)
    return summary


@timed
def price_quote(
    inputs: Iterable,
    catalogs: Catalogs,
    config: Optional[PricingConfig] = None,
    quote_id: Optional[str] = None,
) -> QuoteResult:
    """
    Full pricing pass. Raises ValidationError for malformed input; every
    other outcome (not distributable, reconciliation mismatch) is reported
    in the result.
    """
    config = config or PricingConfig()
    line_costs = _AGGREGATOR.calculate_line_costs(inputs, catalogs)
    summary, breakdown, margin_warnings = _margin_pass(line_costs, config)
    breakdown: Breakdown = _REDISTRIBUTOR.finalize(breakdown, summary)

    reconciliation = verify(
        breakdown.lines, summary, breakdown.unattributed, distributable=breakdown.distributable,
    )
    warnings = margin_warnings + breakdown.warnings + check_labor_associations(line_costs)
    if reconciliation.status == "mismatch":
        warnings.append(
            f"Itemised breakdown differs from the total by {reconciliation.delta:+.2f}; "
            f"the total of {summary.total:.2f} is authoritative"
        )

    logger.info(
        "quote priced: subtotal %.2f, total %.2f, %d rows, reconciliation %s",
        summary.subtotal, summary.total, breakdown.row_count, reconciliation.status,
        extra={"quote_id": quote_id},
    )
    return QuoteResult(
        quote_id=quote_id,
        summary=summary,
        breakdown=breakdown,
        reconciliation=reconciliation,
        payment_terms=payment_terms_for(summary.total, config.client_type),
        line_costs=line_costs,
        warnings=warnings,
    )
