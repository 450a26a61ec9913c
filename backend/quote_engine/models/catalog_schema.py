"""
Resource catalog schema: read-only reference data supplied by the caller.

The pricing engine never fetches catalog data itself; every computation
receives a ``Catalogs`` snapshot and looks entries up by id.
"""
from __future__ import annotations

from typing import Dict, Iterable, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from quote_engine.exceptions import CatalogReferenceError


class _CatalogRecord(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = Field(..., description="Catalog primary key")
    name: str = Field(..., description="Display name")
    synthesized: bool = Field(
        False, description="True when rebuilt from a persisted quote item, not read from the catalog"
    )


class RateTier(BaseModel):
    """One row of a labor rate table: applies when min_hours <= hours <= max_hours."""
    model_config = ConfigDict(frozen=True)

    min_hours: float = Field(0.0, ge=0)
    max_hours: Optional[float] = Field(None, ge=0, description="None = open-ended")
    rate: float = Field(..., ge=0, description="Hourly rate")

    def applies_to(self, hours: float) -> bool:
        return hours >= self.min_hours and (self.max_hours is None or hours <= self.max_hours)


class LaborCatalogEntry(_CatalogRecord):
    role: str = Field("staff", description="e.g. chef, waiter, operator")
    rate_tiers: List[RateTier] = Field(default_factory=list)
    daily_rate: Optional[float] = Field(None, ge=0, description="Flat day rate, if the role has one")

    def hourly_rate_for(self, hours: float) -> float:
        """Rate of the first tier covering ``hours``; 0.0 when no tier applies."""
        for tier in self.rate_tiers:
            if tier.applies_to(hours):
                return tier.rate
        return 0.0


class ProductCatalogEntry(_CatalogRecord):
    category: str = Field("general")
    pricing_type: Literal["unit", "measurement"] = Field(
        "unit", description="'unit' = price per product, 'measurement' = price per measure unit"
    )
    base_price: float = Field(..., ge=0)
    unit: str = Field("unit")
    cost_price: Optional[float] = Field(None, ge=0)


class EquipmentCatalogEntry(_CatalogRecord):
    hourly_rate: float = Field(..., ge=0)
    daily_rate: float = Field(..., ge=0)
    operator_hourly_rate: Optional[float] = Field(None, ge=0)
    setup_cost: float = Field(0.0, ge=0)


class RentalCatalogEntry(_CatalogRecord):
    supplier_name: Optional[str] = None
    # Charged (client-facing) rates; supplier rates are informational
    hourly_rate: float = Field(..., ge=0)
    daily_rate: float = Field(..., ge=0)
    supplier_hourly_rate: Optional[float] = Field(None, ge=0)
    supplier_daily_rate: Optional[float] = Field(None, ge=0)
    operator_cost: Optional[float] = Field(None, ge=0, description="Operator cost per hour")
    setup_cost: float = Field(0.0, ge=0)
    delivery_cost: float = Field(0.0, ge=0)
    pickup_cost: float = Field(0.0, ge=0)
    minimum_rental_hours: float = Field(0.0, ge=0)


class SubcontractCatalogEntry(_CatalogRecord):
    supplier_name: Optional[str] = None
    supplier_cost: float = Field(0.0, ge=0)
    charged_price: float = Field(..., ge=0)


class ConsumableCatalogEntry(_CatalogRecord):
    unit: str = Field("unit")
    cost_price: Optional[float] = Field(None, ge=0)
    sale_price: float = Field(..., ge=0)
    minimum_quantity: float = Field(0.0, ge=0)


class TransportZone(_CatalogRecord):
    base_cost: float = Field(..., ge=0, description="Cost per trip")
    additional_equipment_cost: float = Field(0.0, ge=0, description="Per-trip surcharge for equipment transport")
    estimated_travel_minutes: Optional[int] = Field(None, ge=0)


CatalogEntry = Union[
    LaborCatalogEntry,
    ProductCatalogEntry,
    EquipmentCatalogEntry,
    RentalCatalogEntry,
    SubcontractCatalogEntry,
    ConsumableCatalogEntry,
    TransportZone,
]

# category -> (Catalogs attribute, record type)
CATALOG_SECTIONS: Dict[str, tuple] = {
    "labor":            ("labor", LaborCatalogEntry),
    "product":          ("products", ProductCatalogEntry),
    "owned_equipment":  ("equipment", EquipmentCatalogEntry),
    "rented_equipment": ("rentals", RentalCatalogEntry),
    "subcontract":      ("subcontracts", SubcontractCatalogEntry),
    "consumable":       ("consumables", ConsumableCatalogEntry),
    "transport":        ("transport_zones", TransportZone),
}


class Catalogs(BaseModel):
    """Immutable snapshot of every catalog, keyed by entry id."""
    model_config = ConfigDict(frozen=True)

    labor: Dict[str, LaborCatalogEntry] = Field(default_factory=dict)
    products: Dict[str, ProductCatalogEntry] = Field(default_factory=dict)
    equipment: Dict[str, EquipmentCatalogEntry] = Field(default_factory=dict)
    rentals: Dict[str, RentalCatalogEntry] = Field(default_factory=dict)
    subcontracts: Dict[str, SubcontractCatalogEntry] = Field(default_factory=dict)
    consumables: Dict[str, ConsumableCatalogEntry] = Field(default_factory=dict)
    transport_zones: Dict[str, TransportZone] = Field(default_factory=dict)

    @field_validator("*", mode="before")
    @classmethod
    def _index_by_id(cls, value):
        # Lists of records (the usual wire shape) are keyed by their id
        if isinstance(value, (list, tuple)):
            return {(r["id"] if isinstance(r, dict) else r.id): r for r in value}
        return value

    @classmethod
    def build(cls, **sections: Iterable[_CatalogRecord]) -> "Catalogs":
        """Build a snapshot from lists of records, e.g. ``Catalogs.build(products=[...])``."""
        return cls(**{name: list(records) for name, records in sections.items()})

    def get(self, category: str, catalog_id: Optional[str]) -> Optional[CatalogEntry]:
        if catalog_id is None or category not in CATALOG_SECTIONS:
            return None
        attr, _ = CATALOG_SECTIONS[category]
        return getattr(self, attr).get(catalog_id)

    def require(self, category: str, catalog_id: Optional[str], item_id: Optional[str] = None) -> CatalogEntry:
        entry = self.get(category, catalog_id)
        if entry is None:
            raise CatalogReferenceError(category, catalog_id, item_id)
        return entry

    def find_by_name(self, category: str, name: str) -> Optional[CatalogEntry]:
        """Exact-name lookup, used for legacy records that stored no catalog id."""
        if category not in CATALOG_SECTIONS:
            return None
        attr, _ = CATALOG_SECTIONS[category]
        for entry in getattr(self, attr).values():
            if entry.name == name:
                return entry
        return None
