"""
Pricing engine configuration: single source of truth for rate cutoffs,
margin/retention defaults, reconciliation tolerance, payment terms and the
legacy classification tables used by the rehydrator.

Import from here in all services rather than hardcoding values.
"""
from __future__ import annotations

# ── Rate selection ─────────────────────────────────────────────────────────────

# Hours at or above this use the catalog daily rate instead of hourly × hours
DAILY_RATE_CUTOFF_HOURS: float = 8.0

# Labor validation limits
MAX_LABOR_HOURS_PER_DAY: float = 24.0
MAX_LABOR_HOURS_MULTIDAY: float = 168.0     # 7 days × 24 h

# Minimum billable hours for a single day on multi-day labor schedules
MIN_HOURS_PER_SCHEDULED_DAY: float = 0.5

# Heuristic ceiling used by the association checks: labor hours per product unit
MAX_LABOR_HOURS_PER_PRODUCT_UNIT: float = 5.0


# ── Margin & retention ─────────────────────────────────────────────────────────

# Margin applied when the pricing config does not state one
DEFAULT_MARGINS_BY_CLIENT_TYPE: dict[str, float] = {
    "social":    25.0,
    "corporate": 30.0,
}
FALLBACK_MARGIN_PERCENTAGE: float = 25.0

MAX_MARGIN_PERCENTAGE: float = 200.0

# Retention applied when enabled without an explicit percentage
DEFAULT_RETENTION_PERCENTAGE: float = 4.0


# ── Reconciliation ─────────────────────────────────────────────────────────────

# Allowed |Σ final_cost − total| per breakdown row (rounding absorption)
RECONCILIATION_TOLERANCE_PER_LINE: float = 0.01
MONEY_DECIMALS: int = 2


# ── Payment terms ──────────────────────────────────────────────────────────────

PAYMENT_TERMS_DAYS: dict[str, int] = {
    "social":    15,
    "corporate": 30,
}
ADVANCE_PAYMENT_THRESHOLD: float = 500_000.0
ADVANCE_PAYMENT_PERCENTAGE: float = 50.0


# ── Persistence / rehydration ──────────────────────────────────────────────────

# Canonical reason strings written next to the explicit category tag.
# Legacy records carry only these (or older variants) and no tag.
CATEGORY_REASONS: dict[str, str] = {
    "labor":            "Labor",
    "product":          "Product",
    "owned_equipment":  "Owned equipment",
    "rented_equipment": "Equipment rental",
    "subcontract":      "Event subcontract",
    "consumable":       "Consumable",
    "transport":        "Transport",
}

# Legacy reason/notes classification, checked in order against the lowercased
# text. Older records were written in Spanish, so both vocabularies appear.
LEGACY_REASON_PATTERNS: list[tuple[str, tuple[str, ...]]] = [
    ("owned_equipment",  ("owned equipment", "maquinaria propia", "equipo propio")),
    ("rented_equipment", ("equipment rental", "alquiler de maquinaria", "alquiler externo")),
    ("subcontract",      ("event subcontract", "subcontrat")),
    ("consumable",       ("consumable", "desechable", "disposable")),
    ("transport",        ("transport",)),
    ("labor",            ("labor", "operario", "staff")),
    ("product",          ("product", "producto")),
]

# Option markers stored in persisted notes
NOTE_MARKERS: dict[str, tuple[str, ...]] = {
    "operator":    ("+ operator", "+ operador"),
    "setup":       ("+ setup", "+ instalación"),
    "delivery":    ("+ delivery", "+ entrega"),
    "pickup":      ("+ pickup", "+ recogida"),
    "equipment":   ("+ equipment",),
    "custom_total": ("(custom total)", "(costo editado)", "(costo total editado)"),
}

# Hours assumed for a legacy labor/rental row that stored none
DEFAULT_REHYDRATED_HOURS: float = 8.0
