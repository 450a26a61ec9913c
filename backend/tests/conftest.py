"""
conftest.py: Shared pytest fixtures for the quote engine test suite.

No database or external service fixtures are defined here.  All tests in this
suite are pure unit tests that exercise the pricing services in isolation.

Import-path bootstrapping:
    The ``backend/`` directory is inserted into sys.path so that all
    ``quote_engine.*`` imports resolve correctly regardless of where pytest
    is invoked.
"""

import sys
import os
import pytest

# ---------------------------------------------------------------------------
# Ensure ``backend/`` is on the import path before any quote_engine imports.
# ---------------------------------------------------------------------------
_BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _BACKEND_DIR not in sys.path:
    sys.path.insert(0, _BACKEND_DIR)


# ---------------------------------------------------------------------------
# Catalog snapshot
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session")
def catalogs():
    """
    One entry (or two) per catalog section, with round numbers for arithmetic.

    Labor:
      chef    tiers 0–4 h @ 30 000, 4–8 h @ 25 000, 8 h+ @ 22 000, no daily rate
      waiter  flat 20 000/h, daily rate 150 000
    Products:
      cake    unit pricing, 100 000
      tent    measurement pricing, 20 000 per m²
    Owned equipment:
      mixer   10 000/h, 60 000/day, operator 15 000/h, setup 20 000
    Rentals:
      stage   50 000/h, 300 000/day, operator 20 000/h, setup 40 000,
              delivery 30 000, pickup 25 000, minimum 4 h,
              supplier 35 000/h, 200 000/day
    Subcontracts:
      dj      charged 800 000, supplier 600 000
    Consumables:
      napkins 500 each, minimum 50
    Transport:
      north   100 000/trip, +40 000/trip with equipment
    """
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
    return Catalogs.build(
        labor=[
            LaborCatalogEntry(
                id="chef", name="Chef", role="chef",
                rate_tiers=[
                    RateTier(min_hours=0, max_hours=4, rate=30_000),
                    RateTier(min_hours=4, max_hours=8, rate=25_000),
                    RateTier(min_hours=8, rate=22_000),
                ],
            ),
            LaborCatalogEntry(
                id="waiter", name="Waiter", role="waiter",
                rate_tiers=[RateTier(rate=20_000)], daily_rate=150_000,
            ),
        ],
        products=[
            ProductCatalogEntry(id="cake", name="Wedding cake", base_price=100_000),
            ProductCatalogEntry(
                id="tent", name="Tent", pricing_type="measurement", base_price=20_000, unit="m2",
            ),
        ],
        equipment=[
            EquipmentCatalogEntry(
                id="mixer", name="Sound mixer", hourly_rate=10_000, daily_rate=60_000,
                operator_hourly_rate=15_000, setup_cost=20_000,
            ),
        ],
        rentals=[
            RentalCatalogEntry(
                id="stage", name="Stage", supplier_name="Stages Inc",
                hourly_rate=50_000, daily_rate=300_000,
                supplier_hourly_rate=35_000, supplier_daily_rate=200_000,
                operator_cost=20_000, setup_cost=40_000,
                delivery_cost=30_000, pickup_cost=25_000, minimum_rental_hours=4,
            ),
        ],
        subcontracts=[
            SubcontractCatalogEntry(id="dj", name="DJ set", supplier_cost=600_000, charged_price=800_000),
        ],
        consumables=[
            ConsumableCatalogEntry(id="napkins", name="Napkins", sale_price=500, minimum_quantity=50),
        ],
        transport_zones=[
            TransportZone(id="north", name="North zone", base_cost=100_000, additional_equipment_cost=40_000),
        ],
    )


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session")
def aggregator():
    """CostAggregator with the default 8 h daily-rate cutoff."""
    from quote_engine.services.costing_engine import CostAggregator
    return CostAggregator()


@pytest.fixture(scope="session")
def redistributor():
    from quote_engine.services.redistribution_engine import LineItemRedistributor
    return LineItemRedistributor()


@pytest.fixture(scope="session")
def rehydrator():
    from quote_engine.services.rehydration_engine import QuoteRehydrator
    return QuoteRehydrator()


# ---------------------------------------------------------------------------
# Shared quote inputs
# ---------------------------------------------------------------------------

@pytest.fixture
def worked_example():
    """
    Labor 1 000 000 (unlinked), products 300 000 + 200 000, transport 100 000
    with no allocation hint.  Inline catalog entries keep the numbers exact.

    subtotal = 1 600 000; 30 % global margin = 480 000; total = 2 080 000.
    """
    from quote_engine.models.catalog_schema import LaborCatalogEntry, ProductCatalogEntry, RateTier, TransportZone
    from quote_engine.models.quote_schema import LaborInput, ProductInput, TransportInput
    return [
        LaborInput(
            id="crew", hours=10,
            catalog_entry=LaborCatalogEntry(id="crew-rate", name="Crew", rate_tiers=[RateTier(rate=100_000)]),
        ),
        ProductInput(
            id="p1", quantity=3,
            catalog_entry=ProductCatalogEntry(id="buffet", name="Buffet", base_price=100_000),
        ),
        ProductInput(
            id="p2", quantity=2,
            catalog_entry=ProductCatalogEntry(id="bar", name="Open bar", base_price=100_000),
        ),
        TransportInput(
            id="t1", trip_count=1,
            catalog_entry=TransportZone(id="zone-a", name="Zone A", base_cost=100_000),
        ),
    ]


@pytest.fixture
def full_quote():
    """One input per category against the ``catalogs`` fixture."""
    from quote_engine.models.quote_schema import (
        AllocationHint,
        ConsumableInput,
        LaborInput,
        OwnedEquipmentInput,
        ProductAllocation,
        ProductInput,
        RentedEquipmentInput,
        SubcontractInput,
        TransportInput,
    )
    return [
        ProductInput(id="cake-1", catalog_id="cake", quantity=2),
        ProductInput(id="tent-1", catalog_id="tent", quantity=1, units_per_product=30),
        LaborInput(
            id="chef-1", catalog_id="chef", hours=6, extra_cost=12_000,
            linked_product_ids=["cake-1"],
        ),
        LaborInput(id="waiter-1", catalog_id="waiter", daily_hours=[8, 4]),
        OwnedEquipmentInput(id="mixer-1", catalog_id="mixer", hours=5, include_operator=True, setup_required=True),
        RentedEquipmentInput(
            id="stage-1", catalog_id="stage", hours=6, include_delivery=True, include_pickup=True,
            allocation=AllocationHint(product_ids=["tent-1"]),
        ),
        SubcontractInput(id="dj-1", catalog_id="dj", attendees=120),
        ConsumableInput(id="napkins-1", catalog_id="napkins", quantity=120),
        TransportInput(
            id="truck-1", zone_id="north", trip_count=3, include_equipment=True,
            allocation=AllocationHint(allocations=[
                ProductAllocation(product_id="cake-1", quantity=1),
                ProductAllocation(product_id="tent-1", quantity=2),
            ]),
        ),
    ]
