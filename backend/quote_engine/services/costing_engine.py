"""
CostAggregator: converts typed line-item inputs into category subtotals.

Covers:
  - Labor with tiered hourly rates, daily-rate cutoff and multi-day schedules
  - Catalog products (unit and measurement pricing)
  - Owned equipment (base rate + operator + setup)
  - Rented equipment (minimum hours, operator, setup, delivery, pickup, custom total)
  - Subcontracted services (charged price vs supplier cost)
  - Consumables (catalog minimum clamp, unit or total override)
  - Transport (per-trip zone cost + equipment surcharge)

The aggregator is a pure function of (inputs, catalogs): it never mutates
either, caches nothing, and rejects the whole call on the first malformed
input so no partial summary is ever produced.
"""

import logging
import math
from typing import Dict, Iterable, List, Optional, Sequence

from quote_engine.config import (
    DAILY_RATE_CUTOFF_HOURS,
    MAX_LABOR_HOURS_MULTIDAY,
    MAX_LABOR_HOURS_PER_DAY,
    MIN_HOURS_PER_SCHEDULED_DAY,
)
from quote_engine.exceptions import ValidationError
from quote_engine.models.catalog_schema import Catalogs
from quote_engine.models.quote_schema import (
    ALLOCATABLE_CATEGORIES,
    CATEGORY_ORDER,
    ConsumableInput,
    CostSummary,
    LaborInput,
    LineItemCost,
    OwnedEquipmentInput,
    PricingConfig,
    ProductInput,
    RentedEquipmentInput,
    SubcontractInput,
    TransportInput,
)

logger = logging.getLogger("quote-engine.costing")


def _rate_for_hours(hours: float, hourly_rate: float, daily_rate: Optional[float], cutoff: float) -> float:
    """Daily rate once hours reach the cutoff (when the catalog has one), else hourly × hours."""
    if daily_rate is not None and daily_rate > 0 and hours >= cutoff:
        return daily_rate
    return hourly_rate * hours


def _require_non_negative(item_id: str, **values: Optional[float]) -> None:
    for name, value in values.items():
        if value is None:
            continue
        if not math.isfinite(value):
            raise ValidationError(
                f"Line item '{item_id}': {name} must be a finite number (got {value})",
                payload={"item_id": item_id, "field": name, "value": str(value)},
            )
        if value < 0:
            raise ValidationError(
                f"Line item '{item_id}': {name} must be >= 0 (got {value})",
                payload={"item_id": item_id, "field": name, "value": value},
            )


class CostAggregator:
    """
    Prices every line item against a catalog snapshot and sums per category.

    All amounts are rounded to 2 decimals per component; category totals are
    sums of rounded line totals so the summary and the per-line view agree.
    """

    # ------------------------------------------------------------------
    # Initialisation
    # ------------------------------------------------------------------

    def __init__(self, daily_rate_cutoff_hours: float = DAILY_RATE_CUTOFF_HOURS) -> None:
        self.daily_rate_cutoff_hours = float(daily_rate_cutoff_hours)
        self._pricers = {
            "labor": self.labor_cost,
            "product": self.product_cost,
            "owned_equipment": self.owned_equipment_cost,
            "rented_equipment": self.rented_equipment_cost,
            "subcontract": self.subcontract_cost,
            "consumable": self.consumable_cost,
            "transport": self.transport_cost,
        }

    # ------------------------------------------------------------------
    # 1. Labor
    # ------------------------------------------------------------------

    def labor_cost(self, item: LaborInput, catalogs: Catalogs) -> LineItemCost:
        """
        Labor cost = Σ per-day cost + extra cost.

        Single-day: hours priced at the tier rate for those hours, or the
        catalog daily rate once hours reach the cutoff. Multi-day
        (``daily_hours``): each day priced on its own, with a minimum of
        MIN_HOURS_PER_SCHEDULED_DAY billed per scheduled day.
        ``override_price`` replaces the hourly rate and disables the daily rate.
        """
        _require_non_negative(
            item.id, hours=item.hours, extra_cost=item.extra_cost, override_price=item.override_price
        )
        if item.hours_per_product:
            _require_non_negative(item.id, **{f"hours_per_product[{pid}]": h for pid, h in item.hours_per_product.items()})
        entry = item.catalog_entry or catalogs.require("labor", item.catalog_ref, item.id)

        if item.daily_hours:
            for day_hours in item.daily_hours:
                _require_non_negative(item.id, daily_hours=day_hours)
                if day_hours > MAX_LABOR_HOURS_PER_DAY:
                    raise ValidationError(
                        f"Line item '{item.id}': {day_hours} h in one day exceeds {MAX_LABOR_HOURS_PER_DAY} h",
                        payload={"item_id": item.id, "field": "daily_hours"},
                    )
            days = [max(h, MIN_HOURS_PER_SCHEDULED_DAY) for h in item.daily_hours]
            if sum(days) > MAX_LABOR_HOURS_MULTIDAY:
                raise ValidationError(
                    f"Line item '{item.id}': {sum(days)} h exceeds the multi-day limit of {MAX_LABOR_HOURS_MULTIDAY} h",
                    payload={"item_id": item.id, "field": "daily_hours"},
                )
        else:
            if item.hours > MAX_LABOR_HOURS_PER_DAY:
                raise ValidationError(
                    f"Line item '{item.id}': {item.hours} h exceeds {MAX_LABOR_HOURS_PER_DAY} h; "
                    f"use daily_hours for multi-day events",
                    payload={"item_id": item.id, "field": "hours"},
                )
            days = [item.hours]

        base = 0.0
        for hours in days:
            if item.override_price is not None:
                base += item.override_price * hours
            else:
                base += _rate_for_hours(
                    hours, entry.hourly_rate_for(hours), entry.daily_rate, self.daily_rate_cutoff_hours
                )

        billed_hours = sum(days)
        base = round(base, 2)
        extra = round(item.extra_cost, 2)
        return LineItemCost(
            item_id=item.id,
            category="labor",
            catalog_id=entry.id,
            description=item.description or entry.name,
            quantity=round(billed_hours, 4),
            unit_cost=round(base / billed_hours, 4) if billed_hours else 0.0,
            base=base,
            extra=extra,
            overridden=item.override_price is not None,
            total=round(base + extra, 2),
            linked_product_ids=list(item.linked_product_ids),
            hours_per_product=dict(item.hours_per_product) if item.hours_per_product else None,
        )

    # ------------------------------------------------------------------
    # 2. Products
    # ------------------------------------------------------------------

    def product_cost(self, item: ProductInput, catalogs: Catalogs) -> LineItemCost:
        """
        unit price × quantity.

        Measurement pricing: unit price = catalog price per measure unit ×
        units_per_product. ``override_price`` replaces the catalog base price.
        """
        _require_non_negative(
            item.id, quantity=item.quantity, units_per_product=item.units_per_product,
            override_price=item.override_price,
        )
        entry = item.catalog_entry or catalogs.require("product", item.catalog_ref, item.id)

        price = item.override_price if item.override_price is not None else entry.base_price
        unit_cost = price * item.units_per_product if entry.pricing_type == "measurement" else price
        base = round(unit_cost * item.quantity, 2)
        return LineItemCost(
            item_id=item.id,
            category="product",
            catalog_id=entry.id,
            description=item.description or entry.name,
            quantity=item.quantity,
            unit_cost=round(unit_cost, 4),
            base=base,
            overridden=item.override_price is not None,
            total=base,
        )

    # ------------------------------------------------------------------
    # 3. Owned equipment
    # ------------------------------------------------------------------

    def owned_equipment_cost(self, item: OwnedEquipmentInput, catalogs: Catalogs) -> LineItemCost:
        """
        base (daily rate at >= cutoff hours, else hourly × hours)
        + operator hourly rate × hours (if requested and the catalog has one)
        + setup cost (if required).
        """
        _require_non_negative(item.id, hours=item.hours, override_price=item.override_price)
        entry = item.catalog_entry or catalogs.require("owned_equipment", item.catalog_ref, item.id)

        if item.override_price is not None:
            base = item.override_price
        else:
            base = _rate_for_hours(item.hours, entry.hourly_rate, entry.daily_rate, self.daily_rate_cutoff_hours)

        operator = 0.0
        if item.include_operator and entry.operator_hourly_rate:
            operator = entry.operator_hourly_rate * item.hours
        setup = entry.setup_cost if item.setup_required else 0.0

        base, operator, setup = round(base, 2), round(operator, 2), round(setup, 2)
        return LineItemCost(
            item_id=item.id,
            category="owned_equipment",
            catalog_id=entry.id,
            description=item.description or entry.name,
            quantity=item.hours,
            unit_cost=round(entry.hourly_rate, 4),
            base=base,
            operator=operator,
            setup=setup,
            overridden=item.override_price is not None,
            total=round(base + operator + setup, 2),
        )

    # ------------------------------------------------------------------
    # 4. Rented equipment
    # ------------------------------------------------------------------

    def rented_equipment_cost(self, item: RentedEquipmentInput, catalogs: Catalogs) -> LineItemCost:
        """
        Billable hours are clamped up to the catalog minimum rental hours.

        base (daily at >= cutoff, else hourly) + operator cost × hours
        (if requested) + setup (always, when the catalog defines one)
        + delivery / pickup (each toggled).
        ``override_price`` is a custom total that replaces every component.
        """
        _require_non_negative(item.id, hours=item.hours, override_price=item.override_price)
        entry = item.catalog_entry or catalogs.require("rented_equipment", item.catalog_ref, item.id)

        billable_hours = max(item.hours, entry.minimum_rental_hours)

        if item.override_price is not None:
            total = round(item.override_price, 2)
            return LineItemCost(
                item_id=item.id,
                category="rented_equipment",
                catalog_id=entry.id,
                description=item.description or entry.name,
                quantity=billable_hours,
                base=total,
                overridden=True,
                supplier_cost=self._rental_supplier_cost(entry, billable_hours),
                total=total,
                allocation=item.allocation,
            )

        base = _rate_for_hours(billable_hours, entry.hourly_rate, entry.daily_rate, self.daily_rate_cutoff_hours)
        operator = entry.operator_cost * billable_hours if (item.include_operator and entry.operator_cost) else 0.0
        setup = entry.setup_cost
        delivery = entry.delivery_cost if item.include_delivery else 0.0
        pickup = entry.pickup_cost if item.include_pickup else 0.0

        base, operator, setup = round(base, 2), round(operator, 2), round(setup, 2)
        delivery, pickup = round(delivery, 2), round(pickup, 2)
        return LineItemCost(
            item_id=item.id,
            category="rented_equipment",
            catalog_id=entry.id,
            description=item.description or entry.name,
            quantity=billable_hours,
            unit_cost=round(entry.hourly_rate, 4),
            base=base,
            operator=operator,
            setup=setup,
            delivery=delivery,
            pickup=pickup,
            supplier_cost=self._rental_supplier_cost(entry, billable_hours),
            total=round(base + operator + setup + delivery + pickup, 2),
            allocation=item.allocation,
        )

    def _rental_supplier_cost(self, entry, hours: float) -> Optional[float]:
        if entry.supplier_hourly_rate is None and entry.supplier_daily_rate is None:
            return None
        return round(
            _rate_for_hours(
                hours, entry.supplier_hourly_rate or 0.0, entry.supplier_daily_rate, self.daily_rate_cutoff_hours
            ),
            2,
        )

    # ------------------------------------------------------------------
    # 5. Subcontracted services
    # ------------------------------------------------------------------

    def subcontract_cost(self, item: SubcontractInput, catalogs: Catalogs) -> LineItemCost:
        """Charged price (override or catalog); the supplier cost is informational only."""
        _require_non_negative(
            item.id, override_price=item.override_price, supplier_cost_override=item.supplier_cost_override,
            attendees=item.attendees,
        )
        entry = item.catalog_entry or catalogs.require("subcontract", item.catalog_ref, item.id)

        charged = item.override_price if item.override_price is not None else entry.charged_price
        supplier = item.supplier_cost_override if item.supplier_cost_override is not None else entry.supplier_cost
        charged = round(charged, 2)
        return LineItemCost(
            item_id=item.id,
            category="subcontract",
            catalog_id=entry.id,
            description=item.description or entry.name,
            quantity=1.0,
            unit_cost=charged,
            base=charged,
            overridden=item.override_price is not None,
            supplier_cost=round(supplier, 2),
            total=charged,
        )

    # ------------------------------------------------------------------
    # 6. Consumables
    # ------------------------------------------------------------------

    def consumable_cost(self, item: ConsumableInput, catalogs: Catalogs) -> LineItemCost:
        """
        max(requested, catalog minimum) × unit price.

        ``override_total_cost`` takes precedence over unit price × quantity;
        ``override_price`` replaces the catalog unit price.
        """
        _require_non_negative(
            item.id, quantity=item.quantity, override_price=item.override_price,
            override_total_cost=item.override_total_cost,
        )
        entry = item.catalog_entry or catalogs.require("consumable", item.catalog_ref, item.id)

        quantity = max(item.quantity, entry.minimum_quantity)
        if quantity > item.quantity:
            logger.debug(
                "consumable quantity clamped to catalog minimum",
                extra={"category": "consumable", "item_id": item.id},
            )
        unit_price = item.override_price if item.override_price is not None else entry.sale_price
        if item.override_total_cost is not None:
            base = item.override_total_cost
        else:
            base = unit_price * quantity

        base = round(base, 2)
        return LineItemCost(
            item_id=item.id,
            category="consumable",
            catalog_id=entry.id,
            description=item.description or entry.name,
            quantity=quantity,
            unit_cost=round(unit_price, 4),
            base=base,
            overridden=item.override_price is not None or item.override_total_cost is not None,
            total=base,
            allocation=item.allocation,
        )

    # ------------------------------------------------------------------
    # 7. Transport
    # ------------------------------------------------------------------

    def transport_cost(self, item: TransportInput, catalogs: Catalogs) -> LineItemCost:
        """(zone base cost + equipment surcharge if requested) × trip count."""
        _require_non_negative(item.id, trip_count=item.trip_count, override_price=item.override_price)
        entry = item.catalog_entry or catalogs.require("transport", item.catalog_ref, item.id)

        per_trip = item.override_price if item.override_price is not None else entry.base_cost
        surcharge = entry.additional_equipment_cost if item.include_equipment else 0.0
        base = round(per_trip * item.trip_count, 2)
        extra = round(surcharge * item.trip_count, 2)
        return LineItemCost(
            item_id=item.id,
            category="transport",
            catalog_id=entry.id,
            description=item.description or entry.name,
            quantity=float(item.trip_count),
            unit_cost=round(per_trip + surcharge, 4),
            base=base,
            extra=extra,
            overridden=item.override_price is not None,
            total=round(base + extra, 2),
            allocation=item.allocation,
        )

    # ------------------------------------------------------------------
    # 8. Rollup
    # ------------------------------------------------------------------

    def _validate_structure(self, inputs: Sequence) -> None:
        seen = set()
        for item in inputs:
            if item.id in seen:
                raise ValidationError(
                    f"Duplicate line item id '{item.id}'", payload={"item_id": item.id}
                )
            seen.add(item.id)
            if item.allocation is not None and item.category not in ALLOCATABLE_CATEGORIES:
                raise ValidationError(
                    f"Line item '{item.id}': {item.category} items do not take an allocation hint",
                    payload={"item_id": item.id, "category": item.category},
                )

    def calculate_line_costs(self, inputs: Iterable, catalogs: Catalogs) -> List[LineItemCost]:
        """Price every input. Raises ValidationError on the first malformed item."""
        inputs = list(inputs)
        self._validate_structure(inputs)
        return [self._pricers[item.category](item, catalogs) for item in inputs]

    def summarize(self, line_costs: Iterable[LineItemCost], config: Optional[PricingConfig] = None) -> CostSummary:
        """
        Category totals and subtotal from priced lines.

        Margin and retention stay at zero; ``total`` equals ``subtotal`` until
        the margin calculator fills them in.
        """
        config = config or PricingConfig()
        totals: Dict[str, float] = {name: 0.0 for name in CATEGORY_ORDER}
        for cost in line_costs:
            totals[cost.category.value] += cost.total
        totals = {name: round(amount, 2) for name, amount in totals.items()}
        subtotal = round(sum(totals.values()), 2)
        return CostSummary(
            **totals,
            subtotal=subtotal,
            margin_mode=config.margin_mode,
            total=subtotal,
        )

    def aggregate(self, inputs: Iterable, catalogs: Catalogs, config: Optional[PricingConfig] = None) -> CostSummary:
        line_costs = self.calculate_line_costs(inputs, catalogs)
        summary = self.summarize(line_costs, config)
        logger.debug(
            "aggregated %d line items, subtotal %.2f", len(line_costs), summary.subtotal,
        )
        return summary


_DEFAULT_AGGREGATOR = CostAggregator()


def aggregate(inputs: Iterable, catalogs: Catalogs, config: Optional[PricingConfig] = None) -> CostSummary:
    """Module-level shortcut using the default cutoff."""
    return _DEFAULT_AGGREGATOR.aggregate(inputs, catalogs, config)


def calculate_line_costs(inputs: Iterable, catalogs: Catalogs) -> List[LineItemCost]:
    return _DEFAULT_AGGREGATOR.calculate_line_costs(inputs, catalogs)
