"""
Line-item redistributor: reshapes the authoritative subtotal onto product
lines for the itemised document.

Covers:
  - Ancillary placement through an ordered policy table
    (quantity_table → manual_selection → labor_association → all_products)
  - Linked labor split by declared hours or evenly
  - Unattributed rows for unlinked labor, owned equipment and subcontracts
  - Margin and retention spread proportionally to each row's loaded cost

Every category is already counted once in the CostSummary. This module only
moves money between rows: Σ row base costs == subtotal and, after
finalisation, Σ row final costs == total.
"""

import logging
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from quote_engine.config import MONEY_DECIMALS
from quote_engine.models.quote_schema import (
    AllocationRecord,
    Breakdown,
    CostSummary,
    LineItemCost,
    ProductLine,
    SHARE_FIELDS,
    UnattributedCost,
)

logger = logging.getLogger("quote-engine.redistribution")

_UNATTRIBUTED_CATEGORIES = ("owned_equipment", "subcontract")


def split_amount(amount: float, weights: Dict[str, float]) -> Dict[str, float]:
    """
    Split ``amount`` across keys proportionally to ``weights``, in cents.

    The rounding residual lands on the heaviest key so the shares sum to
    ``amount`` exactly. Non-positive total weight falls back to an even split.
    """
    if not weights:
        return {}
    total_weight = sum(weights.values())
    if total_weight <= 0:
        weights = {key: 1.0 for key in weights}
        total_weight = float(len(weights))
    shares = {key: round(amount * w / total_weight, MONEY_DECIMALS) for key, w in weights.items()}
    residual = round(amount - sum(shares.values()), MONEY_DECIMALS)
    if residual:
        anchor = max(weights, key=lambda key: weights[key])
        shares[anchor] = round(shares[anchor] + residual, MONEY_DECIMALS)
    return shares


class _AllocationContext:
    """Product lines of one computation plus lookups the policies need."""

    def __init__(self, products: Sequence[LineItemCost], labor: Sequence[LineItemCost]):
        self.product_ids: List[str] = [p.item_id for p in products]
        self._by_id = {p.item_id: p.item_id for p in products}
        self._by_catalog: Dict[str, str] = {}
        for p in products:
            if p.catalog_id:
                self._by_catalog.setdefault(p.catalog_id, p.item_id)
        self.dropped: List[Tuple[str, str]] = []

        linked: List[str] = []
        for cost in labor:
            for pid in self.resolve_all(cost.linked_product_ids, source=None):
                if pid not in linked:
                    linked.append(pid)
        self.labor_products = linked

    def resolve(self, product_ref: str) -> Optional[str]:
        """Product line id for a reference to a line id, or to a product catalog id."""
        return self._by_id.get(product_ref) or self._by_catalog.get(product_ref)

    def resolve_all(self, refs: Sequence[str], source: Optional[str]) -> List[str]:
        resolved: List[str] = []
        for ref in refs:
            pid = self.resolve(ref)
            if pid is None:
                if source is not None:
                    self.dropped.append((source, ref))
                continue
            if pid not in resolved:
                resolved.append(pid)
        return resolved


# ---------------------------------------------------------------------------
# Allocation policies: each returns product weights, or None to defer
# ---------------------------------------------------------------------------

def _by_quantity_table(cost: LineItemCost, ctx: _AllocationContext) -> Optional[Dict[str, float]]:
    if cost.allocation is None or not cost.allocation.allocations:
        return None
    weights: Dict[str, float] = {}
    for row in cost.allocation.allocations:
        pid = ctx.resolve(row.product_id)
        if pid is None:
            ctx.dropped.append((cost.item_id, row.product_id))
            continue
        weights[pid] = weights.get(pid, 0.0) + row.quantity
    if sum(weights.values()) <= 0:
        return None
    return weights


def _by_manual_selection(cost: LineItemCost, ctx: _AllocationContext) -> Optional[Dict[str, float]]:
    if cost.allocation is None or not cost.allocation.product_ids:
        return None
    selected = ctx.resolve_all(cost.allocation.product_ids, source=cost.item_id)
    return {pid: 1.0 for pid in selected} or None


def _by_labor_association(cost: LineItemCost, ctx: _AllocationContext) -> Optional[Dict[str, float]]:
    return {pid: 1.0 for pid in ctx.labor_products} or None


def _by_all_products(cost: LineItemCost, ctx: _AllocationContext) -> Optional[Dict[str, float]]:
    return {pid: 1.0 for pid in ctx.product_ids} or None


AllocationPolicy = Callable[[LineItemCost, _AllocationContext], Optional[Dict[str, float]]]

# Ordered: first policy returning weights wins
ALLOCATION_POLICIES: List[Tuple[str, AllocationPolicy]] = [
    ("quantity_table", _by_quantity_table),
    ("manual_selection", _by_manual_selection),
    ("labor_association", _by_labor_association),
    ("all_products", _by_all_products),
]


class LineItemRedistributor:
    """Builds the per-product breakdown from priced lines and the summary."""

    def __init__(self, policies: Optional[List[Tuple[str, AllocationPolicy]]] = None) -> None:
        self.policies = policies or ALLOCATION_POLICIES

    # ------------------------------------------------------------------
    # 1. Ancillary placement
    # ------------------------------------------------------------------

    def redistribute(self, line_costs: Sequence[LineItemCost], summary: CostSummary) -> Breakdown:
        """
        Place every non-product cost on product lines or as an unattributed row.

        Returned rows carry loaded (pre-margin) costs; ``final_cost`` equals
        the loaded cost until :meth:`finalize` spreads margin and retention.
        """
        products = [c for c in line_costs if c.category.value == "product"]
        labor = [c for c in line_costs if c.category.value == "labor"]
        ancillary = [c for c in line_costs if c.category.value in ("transport", "consumable", "rented_equipment")]

        if not products and summary.ancillary_cost > 0:
            message = (
                f"Breakdown not distributable: {summary.ancillary_cost:.2f} of ancillary cost "
                f"and no product lines to carry it"
            )
            logger.warning(message, extra={"category": "breakdown"})
            return Breakdown(distributable=False, warnings=[message])

        ctx = _AllocationContext(products, labor)
        shares: Dict[str, Dict[str, float]] = {p.item_id: {} for p in products}
        allocations: List[AllocationRecord] = []
        unattributed: List[UnattributedCost] = []

        for cost in ancillary:
            if not products:
                # Only zero-cost ancillary items get here; nothing to place
                unattributed.append(self._unattributed_row(cost))
                allocations.append(AllocationRecord(
                    item_id=cost.item_id, category=cost.category, policy="unattributed", amount=cost.total,
                ))
                continue
            policy, placed = self._place(cost, ctx)
            self._accumulate(shares, SHARE_FIELDS[cost.category.value], placed)
            allocations.append(AllocationRecord(
                item_id=cost.item_id, category=cost.category, policy=policy, amount=cost.total, shares=placed,
            ))

        for cost in labor:
            linked = ctx.resolve_all(cost.linked_product_ids, source=cost.item_id)
            if not linked:
                unattributed.append(self._unattributed_row(cost))
                allocations.append(AllocationRecord(
                    item_id=cost.item_id, category=cost.category, policy="unattributed", amount=cost.total,
                ))
                continue
            placed = split_amount(cost.total, self._labor_weights(cost, linked))
            self._accumulate(shares, "labor_share", placed)
            allocations.append(AllocationRecord(
                item_id=cost.item_id, category=cost.category, policy="labor_association",
                amount=cost.total, shares=placed,
            ))

        for cost in line_costs:
            if cost.category.value in _UNATTRIBUTED_CATEGORIES:
                unattributed.append(self._unattributed_row(cost))
                allocations.append(AllocationRecord(
                    item_id=cost.item_id, category=cost.category, policy="unattributed", amount=cost.total,
                ))

        lines = [self._product_line(p, shares[p.item_id]) for p in products]

        warnings: List[str] = []
        for source, ref in ctx.dropped:
            logger.warning(
                "dropped allocation to unknown product %s", ref, extra={"category": "allocation"},
            )
            warnings.append(f"Line item '{source}' references product '{ref}', which is not in the quote")

        breakdown = Breakdown(lines=lines, unattributed=unattributed, allocations=allocations, warnings=warnings)
        self._check_conservation(breakdown, summary)
        return breakdown

    def _place(self, cost: LineItemCost, ctx: _AllocationContext) -> Tuple[str, Dict[str, float]]:
        for name, policy in self.policies:
            weights = policy(cost, ctx)
            if weights:
                return name, split_amount(cost.total, weights)
        # Unreachable while products exist: all_products always yields weights
        raise RuntimeError(f"No allocation policy placed line item '{cost.item_id}'")

    @staticmethod
    def _labor_weights(cost: LineItemCost, linked: List[str]) -> Dict[str, float]:
        declared = cost.hours_per_product or {}
        if linked and all(declared.get(pid, 0) > 0 for pid in linked):
            return {pid: declared[pid] for pid in linked}
        return {pid: 1.0 for pid in linked}

    @staticmethod
    def _accumulate(shares: Dict[str, Dict[str, float]], field: str, placed: Dict[str, float]) -> None:
        for pid, amount in placed.items():
            shares[pid][field] = round(shares[pid].get(field, 0.0) + amount, MONEY_DECIMALS)

    @staticmethod
    def _product_line(cost: LineItemCost, shares: Dict[str, float]) -> ProductLine:
        line = ProductLine(
            product_id=cost.item_id,
            catalog_id=cost.catalog_id,
            name=cost.description,
            quantity=cost.quantity,
            unit_cost=cost.unit_cost,
            base_cost=cost.total,
            **shares,
        )
        return line.model_copy(update={"final_cost": round(line.loaded_cost, MONEY_DECIMALS)})

    @staticmethod
    def _unattributed_row(cost: LineItemCost) -> UnattributedCost:
        return UnattributedCost(
            item_id=cost.item_id,
            category=cost.category,
            description=cost.description,
            base_cost=cost.total,
            final_cost=cost.total,
        )

    def _check_conservation(self, breakdown: Breakdown, summary: CostSummary) -> None:
        placed = round(sum(breakdown.base_costs()), MONEY_DECIMALS)
        delta = round(placed - summary.subtotal, MONEY_DECIMALS)
        if abs(delta) > 0.01 * max(breakdown.row_count, 1):
            logger.error(
                "redistribution changed the subtotal: rows %.2f vs subtotal %.2f",
                placed, summary.subtotal, extra={"delta": delta},
            )

    # ------------------------------------------------------------------
    # 2. Margin / retention spreading
    # ------------------------------------------------------------------

    def finalize(self, breakdown: Breakdown, summary: CostSummary) -> Breakdown:
        """
        Spread the summary's margin and retention across every row,
        proportionally to its loaded cost. Both margin modes share this step:
        the percentage per row is uniform either way.
        """
        if not breakdown.distributable or breakdown.row_count == 0:
            return breakdown

        weights = {line.product_id: line.loaded_cost for line in breakdown.lines}
        weights.update({row.item_id: row.loaded_cost for row in breakdown.unattributed})
        margin = split_amount(summary.margin_amount, weights)
        retention = split_amount(summary.retention_amount, weights)

        def _final(key: str, loaded: float) -> dict:
            return {
                "margin_share": margin[key],
                "retention_share": retention[key],
                "final_cost": round(loaded + margin[key] - retention[key], MONEY_DECIMALS),
            }

        lines = [
            line.model_copy(update=_final(line.product_id, line.loaded_cost)) for line in breakdown.lines
        ]
        unattributed = [
            row.model_copy(update=_final(row.item_id, row.loaded_cost)) for row in breakdown.unattributed
        ]
        return breakdown.model_copy(update={"lines": lines, "unattributed": unattributed})

    def build_breakdown(self, line_costs: Sequence[LineItemCost], summary: CostSummary) -> Breakdown:
        """redistribute + finalize, for a summary that already carries margin and retention."""
        return self.finalize(self.redistribute(line_costs, summary), summary)


_DEFAULT_REDISTRIBUTOR = LineItemRedistributor()


def redistribute(line_costs: Sequence[LineItemCost], summary: CostSummary) -> Breakdown:
    return _DEFAULT_REDISTRIBUTOR.redistribute(line_costs, summary)


def build_breakdown(line_costs: Sequence[LineItemCost], summary: CostSummary) -> Breakdown:
    return _DEFAULT_REDISTRIBUTOR.build_breakdown(line_costs, summary)
