# Overview: Server-side recomputation and validation of line items and document totals.

"""
Monetary Document Validation

WHY: Totals arriving from a client are never trusted. Every quote and invoice
is rebuilt from quantity x unit price before it is persisted.

DESIGN PRINCIPLES:
- Pure functions: no database access, no side effects
- Integer minor units only (floats, bools and decimal strings are rejected)
- A claimed line total may differ from the recomputed value by at most 1 unit
- The recomputed value is what gets stored, never the claimed one
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

from ..errors import ValidationError
from ..models.line_items import LineItem
from ..validation import coerce_int


ROUNDING_TOLERANCE_CENTS = 1


@dataclass(frozen=True)
class CanonicalDocument:
    items: list[LineItem]
    subtotal_cents: int
    tax_cents: int
    total_cents: int


def _first_present(row: dict, *keys: str):
    for key in keys:
        if key in row and row[key] is not None:
            return row[key]
    return None


def canonicalize_line_item(row: Any, position: int) -> LineItem:
    """
    Build one canonical LineItem from caller input.

    Accepts snake_case (unit_price_cents, total_cents, product_plan_id) and the
    camelCase keys older clients send (unitPrice, total, productPlanId).
    """
    label = f"Line item {position}"
    if isinstance(row, LineItem):
        row = row.to_dict()
    if not isinstance(row, dict):
        raise ValidationError(f"{label}: must be an object")

    description = row.get("description")
    if not isinstance(description, str) or not description.strip():
        raise ValidationError(f"{label}: Description is required")

    raw_quantity = row.get("quantity")
    if raw_quantity is None:
        raise ValidationError(f"{label}: Quantity is required")
    quantity = coerce_int(raw_quantity, f"{label}: Quantity")
    if quantity <= 0:
        raise ValidationError(f"{label}: Quantity must be greater than 0")

    raw_unit_price = _first_present(row, "unit_price_cents", "unitPrice")
    if raw_unit_price is None:
        raise ValidationError(f"{label}: Unit price is required")
    unit_price = coerce_int(raw_unit_price, f"{label}: Unit price")
    if unit_price < 0:
        raise ValidationError(f"{label}: Unit price cannot be negative")

    expected_total = quantity * unit_price
    claimed_total = _first_present(row, "total_cents", "total")
    if claimed_total is not None:
        claimed = coerce_int(claimed_total, f"{label}: Total")
        if abs(claimed - expected_total) > ROUNDING_TOLERANCE_CENTS:
            raise ValidationError(
                f"{label}: Total mismatch. Expected {expected_total}, got {claimed}",
                details={"line": position, "expected": expected_total, "claimed": claimed},
            )

    plan_ref = _first_present(row, "product_plan_id", "productPlanId")
    product_plan_id = coerce_int(plan_ref, f"{label}: Product plan id") if plan_ref is not None else None

    return LineItem(
        description=description.strip(),
        quantity=quantity,
        unit_price_cents=unit_price,
        total_cents=expected_total,
        product_plan_id=product_plan_id,
    )


def canonicalize_document(line_items: Sequence[Any] | None, tax_cents: Any = 0) -> CanonicalDocument:
    """
    Recompute a quote/invoice from caller-supplied line items and tax.

    Returns:
        CanonicalDocument with server-computed line totals, subtotal and total

    Raises:
        ValidationError: empty list, bad line, or negative/non-integer tax
    """
    if not isinstance(line_items, (list, tuple)):
        raise ValidationError("Line items must be a list")
    rows = list(line_items)
    if not rows:
        raise ValidationError("At least one line item is required")

    items = [canonicalize_line_item(row, position) for position, row in enumerate(rows, start=1)]

    tax = coerce_int(0 if tax_cents is None else tax_cents, "Tax")
    if tax < 0:
        raise ValidationError("Tax cannot be negative")

    subtotal = sum(item.total_cents for item in items)
    return CanonicalDocument(items=items, subtotal_cents=subtotal, tax_cents=tax, total_cents=subtotal + tax)


def format_minor_units(amount_cents: int, currency: str) -> str:
    """Display helper for activity descriptions: 12345, "USD" -> "123.45 USD"."""
    sign = "-" if amount_cents < 0 else ""
    whole, cents = divmod(abs(amount_cents), 100)
    return f"{sign}{whole}.{cents:02d} {currency}"
