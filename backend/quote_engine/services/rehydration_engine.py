"""
Quote rehydrator: flat persisted items to typed line-item inputs, and back.

``persist`` writes each input as a ``PersistedQuoteItem`` carrying an explicit
category tag. ``rehydrate`` routes on that tag; records saved before the tag
existed fall back to matching their reason/notes text, and anything still
unrecognised loads as a plain product (logged for data-quality review).

When the backing catalog entry is gone, a catalog-shaped record is
synthesised from the persisted price and quantity and attached inline, so
the aggregator prices the item like any other and reproduces its total.
"""

import logging
from typing import Dict, Iterable, List, Optional, Set

from pydantic import ValidationError as PydanticValidationError

from quote_engine.config import (
    CATEGORY_REASONS,
    DEFAULT_REHYDRATED_HOURS,
    LEGACY_REASON_PATTERNS,
    MIN_HOURS_PER_SCHEDULED_DAY,
    NOTE_MARKERS,
)
from quote_engine.exceptions import ValidationError
from quote_engine.models.catalog_schema import (
    Catalogs,
    ConsumableCatalogEntry,
    EquipmentCatalogEntry,
    LaborCatalogEntry,
    ProductCatalogEntry,
    RateTier,
    RentalCatalogEntry,
    SubcontractCatalogEntry,
    TransportZone,
)
from quote_engine.models.quote_schema import (
    ALLOCATABLE_CATEGORIES,
    AllocationHint,
    CategoryTag,
    ConsumableInput,
    LaborInput,
    LineItemCost,
    OwnedEquipmentInput,
    PersistedQuoteItem,
    ProductInput,
    RentedEquipmentInput,
    SubcontractInput,
    TransportInput,
)
from quote_engine.services.costing_engine import CostAggregator

logger = logging.getLogger("quote-engine.rehydration")

# Written into notes, in this order, so older readers still see the options
_PERSISTED_MARKERS = ("operator", "setup", "delivery", "pickup", "equipment", "custom_total")


def classify_legacy(reason: Optional[str], notes: Optional[str]) -> Optional[str]:
    """Category for an untagged record from its reason text, then its notes; None if nothing matches."""
    for text in (reason, notes):
        if not text:
            continue
        lowered = text.lower()
        for category, keywords in LEGACY_REASON_PATTERNS:
            if any(keyword in lowered for keyword in keywords):
                return category
    return None


def markers_in_notes(notes: Optional[str]) -> Set[str]:
    if not notes:
        return set()
    lowered = notes.lower()
    return {flag for flag, markers in NOTE_MARKERS.items() if any(m in lowered for m in markers)}


def _billed_hours(hours: float, daily_hours: Optional[List[float]]) -> float:
    if daily_hours:
        return sum(max(h, MIN_HOURS_PER_SCHEDULED_DAY) for h in daily_hours)
    return hours


class QuoteRehydrator:
    """
    Inverse of the aggregator's input side.

    For every input X priced against an unchanged catalog,
    ``aggregate(rehydrate(persist(X)))`` equals ``aggregate(X)``.
    """

    def __init__(self, aggregator: Optional[CostAggregator] = None) -> None:
        self.aggregator = aggregator or CostAggregator()

    # ------------------------------------------------------------------
    # 1. Forward: inputs → flat records
    # ------------------------------------------------------------------

    def persist(self, inputs: Iterable, catalogs: Catalogs) -> List[PersistedQuoteItem]:
        inputs = list(inputs)
        line_costs = self.aggregator.calculate_line_costs(inputs, catalogs)
        return [self._persist_item(item, cost) for item, cost in zip(inputs, line_costs)]

    def _persist_item(self, item, cost: LineItemCost) -> PersistedQuoteItem:
        category = item.category
        options: List[str] = []
        record: Dict = {}

        if category == "labor":
            record.update(
                hours=item.hours,
                daily_hours=list(item.daily_hours) if item.daily_hours else None,
                extra_cost=item.extra_cost,
                linked_product_ids=list(item.linked_product_ids),
                hours_per_product=dict(item.hours_per_product) if item.hours_per_product else None,
            )
        elif category == "product":
            record["units_per_product"] = item.units_per_product
        elif category == "subcontract":
            record.update(supplier_cost_override=item.supplier_cost_override, attendees=item.attendees)
        elif category == "owned_equipment":
            record["hours"] = item.hours
            if item.include_operator:
                options.append("operator")
            if item.setup_required:
                options.append("setup")
        elif category == "rented_equipment":
            record["hours"] = item.hours
            for flag, enabled in (
                ("operator", item.include_operator),
                ("delivery", item.include_delivery),
                ("pickup", item.include_pickup),
            ):
                if enabled:
                    options.append(flag)
            if item.override_price is not None:
                options.append("custom_total")
        elif category == "consumable":
            if item.override_total_cost is not None:
                options.append("custom_total")
        elif category == "transport":
            if item.include_equipment:
                options.append("equipment")

        allocation = getattr(item, "allocation", None)
        if allocation is not None and not allocation.allocations and len(allocation.product_ids) == 1:
            record["associated_product_id"] = allocation.product_ids[0]

        notes = " ".join(NOTE_MARKERS[flag][0] for flag in _PERSISTED_MARKERS if flag in options)
        if item.override_reason:
            notes = f"{notes} | {item.override_reason}" if notes else item.override_reason

        return PersistedQuoteItem(
            id=item.id,
            category=category,
            reason=CATEGORY_REASONS[category],
            catalog_ref=item.catalog_ref or cost.catalog_id,
            description=cost.description,
            quantity=cost.quantity,
            unit_price=cost.unit_cost,
            total_price=cost.total,
            override_price=item.override_price,
            override_reason=item.override_reason,
            options=options,
            allocation=allocation,
            notes=notes or None,
            **record,
        )

    # ------------------------------------------------------------------
    # 2. Classification
    # ------------------------------------------------------------------

    def classify(self, item: PersistedQuoteItem) -> str:
        if item.category is not None:
            return CategoryTag(item.category).value
        category = classify_legacy(item.reason, item.notes)
        if category is None:
            logger.warning(
                "unclassifiable quote item %s (reason=%r); loading as product",
                item.id, item.reason, extra={"category": "product"},
            )
            return "product"
        return category

    def _flags(self, item: PersistedQuoteItem) -> Set[str]:
        flags = set(item.options)
        if item.category is None:
            flags |= markers_in_notes(item.notes)
        return flags

    # ------------------------------------------------------------------
    # 3. Reverse: flat records → inputs
    # ------------------------------------------------------------------

    def rehydrate(self, items: Iterable[PersistedQuoteItem], catalogs: Catalogs) -> List:
        return [self.rehydrate_item(item, catalogs) for item in items]

    def rehydrate_item(self, item: PersistedQuoteItem, catalogs: Catalogs):
        category = self.classify(item)
        flags = self._flags(item)

        entry = catalogs.get(category, item.catalog_ref)
        if entry is None and not item.catalog_ref and item.description:
            entry = catalogs.find_by_name(category, item.description)

        # Tagged records store the reason as its own field; legacy ones only in notes
        if item.category is not None:
            override_reason = item.override_reason
        else:
            override_reason = self._override_reason(item.notes)
        common = {
            "id": item.id,
            "description": item.description or None,
            "override_price": item.override_price,
            "override_reason": override_reason,
        }
        if entry is not None:
            common["catalog_id"] = entry.id
        else:
            logger.info(
                "catalog entry %s missing for quote item %s; synthesising from persisted totals",
                item.catalog_ref, item.id, extra={"category": category},
            )

        builder = getattr(self, f"_build_{category}")
        try:
            return builder(item, entry, flags, common)
        except PydanticValidationError as exc:
            # e.g. a negative legacy total cannot become a catalog price
            raise ValidationError(
                f"Quote item '{item.id}' cannot be loaded as {category}: {exc.errors()[0]['msg']}",
                payload={"item_id": item.id, "category": category},
            ) from exc

    @staticmethod
    def _override_reason(notes: Optional[str]) -> Optional[str]:
        if notes and " | " in notes:
            return notes.split(" | ", 1)[1] or None
        if notes and not markers_in_notes(notes):
            return notes
        return None

    @staticmethod
    def _synth_identity(item: PersistedQuoteItem) -> dict:
        return {
            "id": item.catalog_ref or f"rehydrated-{item.id}",
            "name": item.description or item.reason or item.id,
            "synthesized": True,
        }

    @staticmethod
    def _hours(item: PersistedQuoteItem) -> float:
        if item.hours is not None:
            return item.hours
        if item.quantity:
            return item.quantity
        return DEFAULT_REHYDRATED_HOURS

    @staticmethod
    def _allocation(item: PersistedQuoteItem) -> Optional[AllocationHint]:
        if item.allocation is not None:
            return item.allocation
        if item.associated_product_id:
            return AllocationHint.single(item.associated_product_id)
        return None

    # -- per category --------------------------------------------------

    def _build_labor(self, item, entry, flags, common):
        hours = self._hours(item)
        linked = list(item.linked_product_ids)
        if not linked and item.associated_product_id:
            linked = [item.associated_product_id]
        if entry is None:
            billed = _billed_hours(hours, item.daily_hours)
            rate = (item.total_price - item.extra_cost) / billed if billed else 0.0
            common["catalog_entry"] = LaborCatalogEntry(
                **self._synth_identity(item), rate_tiers=[RateTier(rate=max(rate, 0.0))],
            )
        return LaborInput(
            **common,
            hours=hours,
            daily_hours=item.daily_hours,
            extra_cost=item.extra_cost,
            linked_product_ids=linked,
            hours_per_product=item.hours_per_product,
        )

    def _build_product(self, item, entry, flags, common):
        quantity = item.quantity
        if entry is None:
            if item.unit_price:
                price = item.unit_price
            else:
                price = item.total_price / quantity if quantity else item.total_price
                quantity = quantity or 1.0
            common["catalog_entry"] = ProductCatalogEntry(**self._synth_identity(item), base_price=price)
            # The synthesised price is already per product
            if common["override_price"] is not None:
                common["override_price"] = price
            return ProductInput(**common, quantity=quantity)
        return ProductInput(**common, quantity=quantity, units_per_product=item.units_per_product or 1.0)

    def _build_owned_equipment(self, item, entry, flags, common):
        hours = self._hours(item)
        if entry is None:
            hours = hours or DEFAULT_REHYDRATED_HOURS
            common["catalog_entry"] = EquipmentCatalogEntry(
                **self._synth_identity(item),
                hourly_rate=item.total_price / hours,
                daily_rate=item.total_price,
            )
            # The synthesised rates already carry operator, setup and override
            common["override_price"] = None
            flags = set()
        return OwnedEquipmentInput(
            **common,
            hours=hours,
            include_operator="operator" in flags,
            setup_required="setup" in flags,
        )

    def _build_rented_equipment(self, item, entry, flags, common):
        hours = self._hours(item)
        if "custom_total" in flags and common["override_price"] is None:
            common["override_price"] = item.total_price
        if entry is None:
            hours = hours or DEFAULT_REHYDRATED_HOURS
            common["catalog_entry"] = RentalCatalogEntry(
                **self._synth_identity(item),
                hourly_rate=item.total_price / hours,
                daily_rate=item.total_price,
            )
        return RentedEquipmentInput(
            **common,
            hours=hours,
            include_operator="operator" in flags,
            include_delivery="delivery" in flags,
            include_pickup="pickup" in flags,
            allocation=self._allocation(item),
        )

    def _build_subcontract(self, item, entry, flags, common):
        if entry is None:
            charged = item.total_price or item.unit_price
            common["catalog_entry"] = SubcontractCatalogEntry(**self._synth_identity(item), charged_price=charged)
        return SubcontractInput(
            **common, supplier_cost_override=item.supplier_cost_override, attendees=item.attendees,
        )

    def _build_consumable(self, item, entry, flags, common):
        override_total = item.total_price if "custom_total" in flags else None
        if entry is None:
            if item.unit_price:
                price = item.unit_price
            else:
                price = item.total_price / item.quantity if item.quantity else 0.0
            common["catalog_entry"] = ConsumableCatalogEntry(**self._synth_identity(item), sale_price=price)
            if common["override_price"] is not None:
                common["override_price"] = price
            if override_total is None and not item.quantity:
                override_total = item.total_price
        return ConsumableInput(
            **common,
            quantity=item.quantity,
            override_total_cost=override_total,
            allocation=self._allocation(item),
        )

    def _build_transport(self, item, entry, flags, common):
        trips = int(round(item.quantity))
        common["zone_id"] = common.pop("catalog_id", None)
        if entry is None:
            trips = trips or 1
            common["catalog_entry"] = TransportZone(
                **self._synth_identity(item), base_cost=item.total_price / trips,
            )
            common["override_price"] = None
            flags = set()
        return TransportInput(
            **common,
            trip_count=trips,
            include_equipment="equipment" in flags,
            allocation=self._allocation(item),
        )


_DEFAULT_REHYDRATOR = QuoteRehydrator()


def persist(inputs: Iterable, catalogs: Catalogs) -> List[PersistedQuoteItem]:
    return _DEFAULT_REHYDRATOR.persist(inputs, catalogs)


def rehydrate(items: Iterable[PersistedQuoteItem], catalogs: Catalogs) -> List:
    return _DEFAULT_REHYDRATOR.rehydrate(items, catalogs)
