"""
test_rehydration_engine.py: Unit tests for QuoteRehydrator.

Tests cover:
  - persist → rehydrate → aggregate reproduces the original summary
  - Explicit category tag routing, legacy reason/notes fallback, product fallback
  - Option flags from explicit fields and from legacy note markers
  - Synthesised catalog entries reproducing persisted totals
"""

import logging

import pytest

from quote_engine.exceptions import ValidationError
from quote_engine.models.catalog_schema import Catalogs
from quote_engine.models.quote_schema import (
    ConsumableInput,
    LaborInput,
    OwnedEquipmentInput,
    PersistedQuoteItem,
    ProductInput,
    RentedEquipmentInput,
    SubcontractInput,
    TransportInput,
)
from quote_engine.services.rehydration_engine import classify_legacy, markers_in_notes


# ===========================================================================
# Class 1: Round trip
# ===========================================================================

class TestRoundTrip:

    def test_full_quote_round_trip(self, aggregator, rehydrator, catalogs, full_quote):
        records = rehydrator.persist(full_quote, catalogs)
        restored = rehydrator.rehydrate(records, catalogs)
        assert aggregator.aggregate(restored, catalogs) == aggregator.aggregate(full_quote, catalogs)

    def test_round_trip_keeps_categories_and_links(self, rehydrator, catalogs, full_quote):
        restored = rehydrator.rehydrate(rehydrator.persist(full_quote, catalogs), catalogs)
        assert [item.category for item in restored] == [item.category for item in full_quote]
        chef = next(item for item in restored if item.id == "chef-1")
        assert chef.linked_product_ids == ["cake-1"]
        truck = next(item for item in restored if item.id == "truck-1")
        assert truck.allocation == full_quote[-1].allocation
        assert truck.include_equipment is True

    def test_round_trip_with_overrides(self, aggregator, rehydrator, catalogs):
        inputs = [
            ProductInput(id="p", catalog_id="cake", quantity=2, override_price=90_000, override_reason="promo"),
            RentedEquipmentInput(id="r", catalog_id="stage", hours=3, override_price=750_000),
            ConsumableInput(id="c", catalog_id="napkins", quantity=10, override_total_cost=9_999),
            LaborInput(id="l", catalog_id="waiter", daily_hours=[8, 0.25], override_price=18_000, extra_cost=5_000),
            TransportInput(id="t", zone_id="north", trip_count=0),
            OwnedEquipmentInput(id="e", catalog_id="mixer", hours=0, setup_required=True),
        ]
        records = rehydrator.persist(inputs, catalogs)
        restored = rehydrator.rehydrate(records, catalogs)
        assert aggregator.aggregate(restored, catalogs) == aggregator.aggregate(inputs, catalogs)
        assert restored[0].override_reason == "promo"

    def test_persisted_record_shape(self, rehydrator, catalogs):
        records = rehydrator.persist(
            [RentedEquipmentInput(id="r", catalog_id="stage", hours=5, include_operator=True, include_pickup=True)],
            catalogs,
        )
        record = records[0]
        assert record.category == "rented_equipment"
        assert record.reason == "Equipment rental"
        assert record.catalog_ref == "stage"
        assert record.options == ["operator", "pickup"]
        assert record.notes == "+ operator + pickup"
        # 5 × 50 000 + operator 5 × 20 000 + setup 40 000 + pickup 25 000
        assert record.total_price == 415_000.0

    def test_subcontract_supplier_cost_survives(self, aggregator, rehydrator, catalogs):
        inputs = [SubcontractInput(id="d", catalog_id="dj", supplier_cost_override=550_000, attendees=80)]
        restored = rehydrator.rehydrate(rehydrator.persist(inputs, catalogs), catalogs)
        assert restored[0].supplier_cost_override == 550_000
        assert restored[0].attendees == 80
        assert aggregator.calculate_line_costs(restored, catalogs)[0].supplier_cost == 550_000.0

    @pytest.mark.parametrize("reason", ["client asked | twice", "swap + setup crew", "+ operator"])
    def test_override_reason_kept_verbatim(self, rehydrator, catalogs, reason):
        inputs = [
            RentedEquipmentInput(
                id="r", catalog_id="stage", hours=5, include_operator=True,
                override_price=500_000, override_reason=reason,
            ),
        ]
        restored = rehydrator.rehydrate(rehydrator.persist(inputs, catalogs), catalogs)
        assert restored[0].override_reason == reason
        assert restored[0].include_operator is True
        assert restored[0].include_delivery is False


# ===========================================================================
# Class 2: Classification
# ===========================================================================

class TestClassification:

    @pytest.mark.parametrize("reason, expected", [
        ("Maquinaria propia", "owned_equipment"),
        ("Alquiler de maquinaria externa", "rented_equipment"),
        ("Subcontratación de eventos", "subcontract"),
        ("Item desechable", "consumable"),
        ("Desechables varios", "consumable"),
        ("Owned equipment", "owned_equipment"),
        ("Event subcontract", "subcontract"),
        ("Transport", "transport"),
        ("Labor", "labor"),
    ])
    def test_legacy_reasons(self, reason, expected):
        assert classify_legacy(reason, None) == expected

    def test_notes_used_when_reason_silent(self):
        assert classify_legacy("Misc", "desechable por evento") == "consumable"

    def test_unmatched_returns_none(self):
        assert classify_legacy("Something else", "no markers") is None

    def test_explicit_tag_beats_reason(self, rehydrator, catalogs):
        record = PersistedQuoteItem(
            id="x", category="subcontract", reason="Maquinaria propia", catalog_ref="dj",
            quantity=1, unit_price=800_000, total_price=800_000,
        )
        assert isinstance(rehydrator.rehydrate_item(record, catalogs), SubcontractInput)

    def test_unclassifiable_falls_back_to_product_and_logs(self, rehydrator, catalogs, caplog):
        record = PersistedQuoteItem(
            id="x", reason="Flores especiales", description="Centerpieces",
            quantity=4, unit_price=25_000, total_price=100_000,
        )
        with caplog.at_level(logging.WARNING, logger="quote-engine.rehydration"):
            item = rehydrator.rehydrate_item(record, catalogs)
        assert isinstance(item, ProductInput)
        assert "unclassifiable" in caplog.text
        assert item.catalog_entry.base_price == 25_000.0
        assert item.quantity == 4


# ===========================================================================
# Class 3: Legacy records
# ===========================================================================

class TestLegacyRecords:

    def test_note_markers(self):
        flags = markers_in_notes("Escenario + operador + entrega + recogida (COSTO TOTAL EDITADO)")
        assert flags == {"operator", "delivery", "pickup", "custom_total"}

    def test_legacy_owned_equipment_by_name(self, aggregator, rehydrator, catalogs):
        """Untagged, no catalog id: matched to the catalog by name, flags from notes."""
        record = PersistedQuoteItem(
            id="m", reason="Maquinaria propia", description="Sound mixer",
            quantity=4, unit_price=30_000, total_price=120_000, notes="+ operador + instalación",
        )
        item = rehydrator.rehydrate_item(record, catalogs)
        assert isinstance(item, OwnedEquipmentInput)
        assert item.catalog_id == "mixer"
        assert item.hours == 4
        assert item.include_operator and item.setup_required
        assert aggregator.aggregate([item], catalogs).owned_equipment == 120_000.0

    def test_legacy_rental_custom_total(self, aggregator, rehydrator, catalogs):
        record = PersistedQuoteItem(
            id="r", reason="Alquiler de maquinaria externa", catalog_ref="stage",
            quantity=6, total_price=333_000, notes="(COSTO EDITADO) + entrega",
        )
        item = rehydrator.rehydrate_item(record, catalogs)
        assert isinstance(item, RentedEquipmentInput)
        assert item.override_price == 333_000
        assert item.include_delivery is True
        assert aggregator.aggregate([item], catalogs).rented_equipment == 333_000.0

    def test_negative_legacy_total_is_rejected_per_item(self, rehydrator, catalogs):
        """A discount row cannot become a catalog price: the engine error names the row."""
        record = PersistedQuoteItem(
            id="disc", reason="Producto descuento", description="Discount", total_price=-5_000,
        )
        with pytest.raises(ValidationError) as exc_info:
            rehydrator.rehydrate([record], catalogs)
        assert exc_info.value.to_dict()["item_id"] == "disc"
        assert exc_info.value.to_dict()["category"] == "product"

    def test_associated_product_becomes_selection(self, rehydrator, catalogs):
        record = PersistedQuoteItem(
            id="c", reason="Item desechable", catalog_ref="napkins",
            quantity=60, unit_price=500, total_price=30_000, associated_product_id="cake-1",
        )
        item = rehydrator.rehydrate_item(record, catalogs)
        assert item.allocation.product_ids == ["cake-1"]


# ===========================================================================
# Class 4: Synthesised catalog entries
# ===========================================================================

class TestSynthesis:

    @pytest.mark.parametrize("category, quantity, total", [
        ("labor", 6, 150_000.0),
        ("product", 3, 300_000.0),
        ("owned_equipment", 5, 145_000.0),
        ("owned_equipment", 10, 210_000.0),
        ("rented_equipment", 6, 395_000.0),
        ("subcontract", 1, 800_000.0),
        ("consumable", 120, 60_000.0),
        ("transport", 3, 420_000.0),
    ])
    def test_synthesised_entry_reproduces_total(self, aggregator, rehydrator, category, quantity, total):
        record = PersistedQuoteItem(
            id="x", category=category, catalog_ref="retired", description="Retired",
            quantity=quantity, unit_price=round(total / quantity, 4), total_price=total,
            options=["operator", "setup", "equipment"],
        )
        item = rehydrator.rehydrate_item(record, Catalogs())
        assert item.catalog_entry is not None
        assert item.catalog_entry.synthesized is True
        summary = aggregator.aggregate([item], Catalogs())
        assert abs(summary.subtotal - total) < 0.01

    def test_labor_synthesis_keeps_extra_cost(self, aggregator, rehydrator):
        record = PersistedQuoteItem(
            id="l", category="labor", catalog_ref="gone", quantity=4, hours=4,
            unit_price=25_000, total_price=112_000, extra_cost=12_000,
        )
        item = rehydrator.rehydrate_item(record, Catalogs())
        assert item.catalog_entry.rate_tiers[0].rate == 25_000.0
        assert aggregator.aggregate([item], Catalogs()).labor == 112_000.0

    def test_round_trip_after_catalog_entry_removed(self, aggregator, rehydrator, catalogs, full_quote):
        """The whole quote survives losing its catalogs: totals come back from the records."""
        records = rehydrator.persist(full_quote, catalogs)
        restored = rehydrator.rehydrate(records, Catalogs())
        original = aggregator.aggregate(full_quote, catalogs)
        rebuilt = aggregator.aggregate(restored, Catalogs())
        assert abs(rebuilt.subtotal - original.subtotal) < 0.01
        assert abs(rebuilt.labor - original.labor) < 0.01
        assert abs(rebuilt.transport - original.transport) < 0.01
