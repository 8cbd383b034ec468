from __future__ import annotations

import json
from dataclasses import dataclass, asdict
from typing import Any

from sqlalchemy.types import Text, TypeDecorator


LINE_ITEMS_SCHEMA_VERSION = 1


@dataclass(frozen=True)
class LineItem:
    """
    One priced line of a quote or invoice.

    Embedded in its parent document; has no identity of its own.
    `total_cents` is always the server-computed quantity x unit price.
    """
    description: str
    quantity: int
    unit_price_cents: int
    total_cents: int
    product_plan_id: int | None = None

    def to_dict(self) -> dict:
        return asdict(self)


class LineItemCodecError(ValueError):
    """Stored line-item payload cannot be decoded."""


def encode_line_items(items: list[LineItem]) -> str:
    payload = {
        "schema_version": LINE_ITEMS_SCHEMA_VERSION,
        "items": [item.to_dict() for item in items],
    }
    return json.dumps(payload, sort_keys=True)


def _decode_v1(raw_items: list[dict]) -> list[LineItem]:
    return [
        LineItem(
            description=row["description"],
            quantity=int(row["quantity"]),
            unit_price_cents=int(row["unit_price_cents"]),
            total_cents=int(row["total_cents"]),
            product_plan_id=row.get("product_plan_id"),
        )
        for row in raw_items
    ]


def _decode_legacy(raw_items: list[dict]) -> list[LineItem]:
    # Unversioned camelCase arrays written before the schema_version envelope
    items = []
    for row in raw_items:
        quantity = int(row["quantity"])
        unit_price = int(row["unitPrice"])
        items.append(
            LineItem(
                description=row["description"],
                quantity=quantity,
                unit_price_cents=unit_price,
                total_cents=int(row.get("total", quantity * unit_price)),
                product_plan_id=row.get("productPlanId"),
            )
        )
    return items


def decode_line_items(value: str | None) -> list[LineItem]:
    if value is None or value == "":
        return []
    try:
        payload: Any = json.loads(value)
    except json.JSONDecodeError as exc:
        raise LineItemCodecError("Line items are not valid JSON") from exc

    try:
        if isinstance(payload, list):
            return _decode_legacy(payload)
        version = payload.get("schema_version")
        if version == 1:
            return _decode_v1(payload["items"])
    except (KeyError, TypeError, ValueError) as exc:
        raise LineItemCodecError(f"Malformed line items: {exc}") from exc

    raise LineItemCodecError(f"Unsupported line items schema version: {payload.get('schema_version')!r}")


class LineItemsType(TypeDecorator):
    """
    Column type holding an ordered list of LineItem values.

    Serialized as a versioned JSON envelope at the persistence boundary so
    services never pattern-match on raw blobs.
    """
    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return encode_line_items(list(value))

    def process_result_value(self, value, dialect):
        return decode_line_items(value)
