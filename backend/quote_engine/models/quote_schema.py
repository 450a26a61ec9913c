"""
Quote schema: line-item inputs, pricing configuration and computed outputs.

Inputs are a discriminated union on ``category``. Everything here is frozen:
the engine computes new objects and never mutates what it was given.
"""
from __future__ import annotations

from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from quote_engine.config import (
    DEFAULT_MARGINS_BY_CLIENT_TYPE,
    DEFAULT_RETENTION_PERCENTAGE,
    FALLBACK_MARGIN_PERCENTAGE,
)
from quote_engine.exceptions import DistributionUndefined, ReconciliationMismatch
from quote_engine.models.catalog_schema import (
    ConsumableCatalogEntry,
    EquipmentCatalogEntry,
    LaborCatalogEntry,
    ProductCatalogEntry,
    RentalCatalogEntry,
    SubcontractCatalogEntry,
    TransportZone,
)


class CategoryTag(str, Enum):
    LABOR = "labor"
    PRODUCT = "product"
    OWNED_EQUIPMENT = "owned_equipment"
    RENTED_EQUIPMENT = "rented_equipment"
    SUBCONTRACT = "subcontract"
    CONSUMABLE = "consumable"
    TRANSPORT = "transport"


CATEGORY_ORDER: List[str] = [c.value for c in CategoryTag]

# Categories that accept an AllocationHint, and the ProductLine share each feeds
ALLOCATABLE_CATEGORIES = ("transport", "consumable", "rented_equipment")
SHARE_FIELDS: Dict[str, str] = {
    "transport": "transport_share",
    "consumable": "consumable_share",
    "rented_equipment": "rental_share",
    "labor": "labor_share",
}


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


# ---------------------------------------------------------------------------
# Allocation hints
# ---------------------------------------------------------------------------

class ProductAllocation(_Frozen):
    product_id: str
    quantity: float = Field(..., ge=0, description="Units of the ancillary item assigned to this product")


class AllocationHint(_Frozen):
    """Manual allocation: an explicit quantity table, a product selection, or neither."""
    allocations: List[ProductAllocation] = Field(default_factory=list)
    product_ids: List[str] = Field(default_factory=list)

    @classmethod
    def single(cls, product_id: str) -> "AllocationHint":
        return cls(product_ids=[product_id])


# ---------------------------------------------------------------------------
# Line-item inputs
# ---------------------------------------------------------------------------

class _LineItemBase(_Frozen):
    id: str = Field(..., description="Stable id of the line item within the quote")
    catalog_id: Optional[str] = None
    description: Optional[str] = None
    override_price: Optional[float] = Field(None, description="Per-item price override, must be >= 0")
    override_reason: Optional[str] = None
    # Only transport, consumable and rented equipment take a hint; others are rejected
    allocation: Optional[AllocationHint] = None

    @property
    def catalog_ref(self) -> Optional[str]:
        return self.catalog_id


class LaborInput(_LineItemBase):
    category: Literal["labor"] = "labor"
    catalog_entry: Optional[LaborCatalogEntry] = None
    hours: float = 0.0
    daily_hours: Optional[List[float]] = Field(None, description="Per-day hours on multi-day events")
    extra_cost: float = Field(0.0, description="Fixed add-on, e.g. occupational risk insurance")
    extra_cost_reason: Optional[str] = None
    linked_product_ids: List[str] = Field(default_factory=list)
    hours_per_product: Optional[Dict[str, float]] = None


class ProductInput(_LineItemBase):
    category: Literal["product"] = "product"
    catalog_entry: Optional[ProductCatalogEntry] = None
    quantity: float = 1.0
    units_per_product: float = Field(1.0, description="Measure units per product (measurement pricing)")


class OwnedEquipmentInput(_LineItemBase):
    category: Literal["owned_equipment"] = "owned_equipment"
    catalog_entry: Optional[EquipmentCatalogEntry] = None
    hours: float = 0.0
    include_operator: bool = False
    setup_required: bool = False


class RentedEquipmentInput(_LineItemBase):
    category: Literal["rented_equipment"] = "rented_equipment"
    catalog_entry: Optional[RentalCatalogEntry] = None
    hours: float = 0.0
    include_operator: bool = False
    include_delivery: bool = False
    include_pickup: bool = False


class SubcontractInput(_LineItemBase):
    category: Literal["subcontract"] = "subcontract"
    catalog_entry: Optional[SubcontractCatalogEntry] = None
    attendees: Optional[int] = None
    supplier_cost_override: Optional[float] = None


class ConsumableInput(_LineItemBase):
    category: Literal["consumable"] = "consumable"
    catalog_entry: Optional[ConsumableCatalogEntry] = None
    quantity: float = 0.0
    override_total_cost: Optional[float] = None


class TransportInput(_LineItemBase):
    category: Literal["transport"] = "transport"
    catalog_entry: Optional[TransportZone] = None
    zone_id: Optional[str] = None
    trip_count: int = 1
    include_equipment: bool = False

    @property
    def catalog_ref(self) -> Optional[str]:
        return self.zone_id or self.catalog_id


LineItemInput = Annotated[
    Union[
        LaborInput,
        ProductInput,
        OwnedEquipmentInput,
        RentedEquipmentInput,
        SubcontractInput,
        ConsumableInput,
        TransportInput,
    ],
    Field(discriminator="category"),
]


# ---------------------------------------------------------------------------
# Pricing configuration
# ---------------------------------------------------------------------------

class PricingConfig(_Frozen):
    margin_mode: Literal["global", "per_line"] = "global"
    margin_percentage: Optional[float] = Field(None, description="None = default for the client type")
    retention_enabled: bool = False
    retention_percentage: Optional[float] = Field(None, description="None = default retention when enabled")
    client_type: Literal["social", "corporate"] = "social"

    def resolved_margin_percentage(self) -> float:
        if self.margin_percentage is not None:
            return float(self.margin_percentage)
        return DEFAULT_MARGINS_BY_CLIENT_TYPE.get(self.client_type, FALLBACK_MARGIN_PERCENTAGE)

    def resolved_retention_percentage(self) -> float:
        if not self.retention_enabled:
            return 0.0
        if self.retention_percentage is None:
            return DEFAULT_RETENTION_PERCENTAGE
        return float(self.retention_percentage)


# ---------------------------------------------------------------------------
# Aggregator outputs
# ---------------------------------------------------------------------------

class LineItemCost(_Frozen):
    """Derived cost of one input; never persisted."""
    item_id: str
    category: CategoryTag
    catalog_id: Optional[str] = None
    description: str = ""
    quantity: float = Field(0.0, description="Effective quantity (hours, units, trips) used in the cost")
    unit_cost: float = 0.0
    base: float = 0.0
    operator: float = 0.0
    setup: float = 0.0
    delivery: float = 0.0
    pickup: float = 0.0
    extra: float = 0.0
    overridden: bool = False
    supplier_cost: Optional[float] = None
    total: float = 0.0
    allocation: Optional[AllocationHint] = None
    linked_product_ids: List[str] = Field(default_factory=list)
    hours_per_product: Optional[Dict[str, float]] = None


class CostSummary(_Frozen):
    """Authoritative aggregate. total == subtotal + margin_amount - retention_amount."""
    labor: float = 0.0
    product: float = 0.0
    owned_equipment: float = 0.0
    rented_equipment: float = 0.0
    subcontract: float = 0.0
    consumable: float = 0.0
    transport: float = 0.0
    subtotal: float = 0.0
    margin_mode: Literal["global", "per_line"] = "global"
    margin_percentage: float = 0.0
    margin_amount: float = 0.0
    retention_percentage: float = 0.0
    retention_amount: float = 0.0
    total: float = 0.0

    def category_costs(self) -> Dict[str, float]:
        return {name: getattr(self, name) for name in CATEGORY_ORDER}

    @property
    def ancillary_cost(self) -> float:
        """Cost that must land on product lines: transport, consumables, rentals."""
        return round(self.transport + self.consumable + self.rented_equipment, 2)

    def with_margin(self, result: "MarginResult") -> "CostSummary":
        return self.model_copy(update={
            "margin_percentage": result.margin_percentage,
            "margin_amount": result.margin_amount,
            "retention_percentage": result.retention_percentage,
            "retention_amount": result.retention_amount,
            "total": result.total,
        })


class MarginResult(_Frozen):
    margin_mode: Literal["global", "per_line"] = "global"
    margin_percentage: float
    margin_amount: float
    retention_percentage: float
    retention_amount: float
    total: float
    warnings: List[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Redistributor outputs
# ---------------------------------------------------------------------------

class ProductLine(_Frozen):
    product_id: str
    catalog_id: Optional[str] = None
    name: str = ""
    quantity: float = 0.0
    unit_cost: float = 0.0
    base_cost: float = 0.0
    transport_share: float = 0.0
    consumable_share: float = 0.0
    rental_share: float = 0.0
    labor_share: float = 0.0
    margin_share: float = 0.0
    retention_share: float = 0.0
    final_cost: float = 0.0

    @property
    def loaded_cost(self) -> float:
        """Base cost plus every attributed ancillary share (pre-margin)."""
        return (
            self.base_cost + self.transport_share + self.consumable_share
            + self.rental_share + self.labor_share
        )


class UnattributedCost(_Frozen):
    """A cost row tied to no product line (unlinked labor, owned equipment, subcontracts)."""
    item_id: str
    category: CategoryTag
    description: str = ""
    base_cost: float = 0.0
    margin_share: float = 0.0
    retention_share: float = 0.0
    final_cost: float = 0.0

    @property
    def loaded_cost(self) -> float:
        return self.base_cost


class AllocationRecord(_Frozen):
    """Which policy placed an ancillary item's cost, and where."""
    item_id: str
    category: CategoryTag
    policy: Literal["quantity_table", "manual_selection", "labor_association", "all_products", "unattributed"]
    amount: float
    shares: Dict[str, float] = Field(default_factory=dict)


class Breakdown(_Frozen):
    distributable: bool = True
    lines: List[ProductLine] = Field(default_factory=list)
    unattributed: List[UnattributedCost] = Field(default_factory=list)
    allocations: List[AllocationRecord] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.lines) + len(self.unattributed)

    def base_costs(self) -> List[float]:
        return [r.loaded_cost for r in self.lines] + [r.loaded_cost for r in self.unattributed]

    def raise_if_undistributable(self) -> None:
        """For callers that cannot show a quote without an itemised breakdown."""
        if not self.distributable:
            raise DistributionUndefined(self.warnings[0] if self.warnings else "Breakdown not distributable")


# ---------------------------------------------------------------------------
# Reconciliation, payment terms, final result
# ---------------------------------------------------------------------------

class ReconciliationResult(_Frozen):
    status: Literal["ok", "mismatch", "not_distributable"]
    expected: float
    actual: float = 0.0
    delta: float = 0.0
    tolerance: float = 0.0
    row_count: int = 0

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    def raise_for_mismatch(self) -> None:
        if self.status == "mismatch":
            raise ReconciliationMismatch(self.expected, self.actual, self.delta)


class PaymentTerms(_Frozen):
    days: int
    advance_required: bool = False
    advance_percentage: float = 0.0
    advance_amount: float = 0.0


class QuoteResult(_Frozen):
    quote_id: Optional[str] = None
    summary: CostSummary
    breakdown: Breakdown
    reconciliation: ReconciliationResult
    payment_terms: PaymentTerms
    line_costs: List[LineItemCost] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Persistence record
# ---------------------------------------------------------------------------

class PersistedQuoteItem(_Frozen):
    """
    Flat item as stored with a saved quote.

    ``category`` is the canonical tag. Records written before the tag existed
    carry only ``reason``/``notes`` and are classified heuristically.
    """
    id: str
    category: Optional[CategoryTag] = None
    reason: Optional[str] = None
    catalog_ref: Optional[str] = None
    description: str = ""
    quantity: float = 0.0
    unit_price: float = 0.0
    total_price: float = 0.0
    hours: Optional[float] = None
    daily_hours: Optional[List[float]] = None
    units_per_product: Optional[float] = None
    extra_cost: float = 0.0
    override_price: Optional[float] = None
    override_reason: Optional[str] = None
    supplier_cost_override: Optional[float] = None
    attendees: Optional[int] = None
    options: List[str] = Field(default_factory=list, description="operator, setup, delivery, pickup, equipment")
    associated_product_id: Optional[str] = None
    linked_product_ids: List[str] = Field(default_factory=list)
    hours_per_product: Optional[Dict[str, float]] = None
    allocation: Optional[AllocationHint] = None
    notes: Optional[str] = None
