"""
Margin & retention calculator.

Global mode marks up the flat subtotal. Per-line mode marks up each priced
row of the redistributed breakdown, so it depends on the redistributor's
output and never on its own idea of a line's cost.
"""
import logging
import math
from typing import Dict, Optional, Sequence

from quote_engine.config import MAX_MARGIN_PERCENTAGE, MONEY_DECIMALS
from quote_engine.exceptions import ValidationError
from quote_engine.models.quote_schema import MarginResult, PricingConfig

logger = logging.getLogger("quote-engine.margin")


def _clamp_percentage(name: str, value: float, warnings: list) -> float:
    if not math.isfinite(value):
        raise ValidationError(
            f"{name} must be a finite number (got {value})", payload={"field": name, "value": str(value)},
        )
    if value < 0:
        warnings.append(f"{name} of {value}% is negative; treated as 0%")
        logger.warning("negative %s clamped to 0", name, extra={"category": name})
        return 0.0
    return value


def resolve_percentages(config: PricingConfig, warnings: list) -> tuple:
    """(margin %, retention %) after defaults, clamping and range checks."""
    margin_pct = _clamp_percentage("margin_percentage", config.resolved_margin_percentage(), warnings)
    if margin_pct > MAX_MARGIN_PERCENTAGE:
        raise ValidationError(
            f"Margin of {margin_pct}% exceeds the maximum of {MAX_MARGIN_PERCENTAGE}%",
            payload={"field": "margin_percentage", "value": margin_pct},
        )
    retention_pct = _clamp_percentage("retention_percentage", config.resolved_retention_percentage(), warnings)
    if retention_pct > 100:
        raise ValidationError(
            f"Retention of {retention_pct}% exceeds 100%",
            payload={"field": "retention_percentage", "value": retention_pct},
        )
    return margin_pct, retention_pct


def apply_margin_and_retention(
    subtotal: float,
    category_costs: Dict[str, float],
    per_line_base_costs: Optional[Sequence[float]],
    config: PricingConfig,
) -> MarginResult:
    """
    Compute margin, retention and total.

    Global:    margin = subtotal × pct / 100
    Per line:  margin = Σ(line_base × pct / 100) over ``per_line_base_costs``
    Retention: (subtotal + margin) × retention_pct / 100, only when > 0
    Total:     subtotal + margin − retention

    Per-line mode without rows (breakdown not distributable) marks up the
    subtotal instead, which is the same number, and says so in ``warnings``.
    """
    if subtotal < 0:
        raise ValidationError(f"Subtotal must be >= 0 (got {subtotal})", payload={"field": "subtotal"})

    warnings: list = []
    margin_pct, retention_pct = resolve_percentages(config, warnings)

    category_sum = round(sum(category_costs.values()), MONEY_DECIMALS)
    if abs(category_sum - subtotal) > 0.01:
        warnings.append(f"Category costs sum to {category_sum:.2f} but subtotal is {subtotal:.2f}")
        logger.warning("category costs do not sum to subtotal", extra={"delta": round(category_sum - subtotal, 2)})

    if config.margin_mode == "per_line" and per_line_base_costs:
        line_sum = sum(per_line_base_costs)
        if abs(line_sum - subtotal) > 0.01 * max(len(per_line_base_costs), 1):
            warnings.append(f"Priced rows sum to {line_sum:.2f} but subtotal is {subtotal:.2f}")
            logger.warning("per-line base costs do not sum to subtotal", extra={"delta": round(line_sum - subtotal, 2)})
        margin = sum(base * margin_pct / 100.0 for base in per_line_base_costs)
    else:
        if config.margin_mode == "per_line" and subtotal > 0:
            warnings.append("Per-line margin applied to the subtotal: no product lines to price")
        margin = subtotal * margin_pct / 100.0
    margin = round(margin, MONEY_DECIMALS)

    retention = 0.0
    if retention_pct > 0:
        retention = round((subtotal + margin) * retention_pct / 100.0, MONEY_DECIMALS)

    total = round(subtotal + margin - retention, MONEY_DECIMALS)
    return MarginResult(
        margin_mode=config.margin_mode,
        margin_percentage=margin_pct,
        margin_amount=margin,
        retention_percentage=retention_pct,
        retention_amount=retention,
        total=total,
        warnings=warnings,
    )
