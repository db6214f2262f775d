# Overview: Service-layer operations for stock buckets; resolves which bucket a line item moves and applies signed deltas.

"""
Stock Ledger Adjuster

Every stock movement in the system goes through adjust_stock(). Given line
items and a sign it resolves, per item, in priority order:

1. combination bucket: the product has combinations and the item either
   names one by combination_id (POS items) or carries a selection set that
   is set-equal to a combination's selections. The combination stock and
   product.stock both move.
2. attribute-variant buckets: the product has no combinations and the item
   selects variants. EVERY selected (attribute, variant) pool moves by the
   full quantity (each dimension is an independent pool); product.stock
   moves once.
3. product.stock only.

Decrements clamp each counter at 0. Increments are not capped, so a
clamped decrement followed by a full restore can leave a counter above
its physical count.

Variant data is read once per product, indexed by selection signature,
mutated on a copy and written back as a whole-row rewrite.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Iterable

from flask import current_app
from sqlalchemy.orm.attributes import flag_modified

from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Product
from .activity_service import append_activity
from .concurrency import lock_for_update, run_with_retry


SIGN_DECREMENT = -1
SIGN_INCREMENT = 1

BUCKET_COMBINATION = "combination"
BUCKET_VARIANTS = "variants"
BUCKET_PRODUCT = "product"


# =============================================================================
# LINE ITEMS
# =============================================================================

@dataclass(frozen=True)
class LineItem:
    """One product reference with quantity and optional variant selection."""
    product_id: int | None
    quantity: int
    selected_variants: tuple[tuple[str, str], ...] = ()
    combination_id: str | None = None

    @classmethod
    def from_dict(cls, data: dict, *, strict: bool = False) -> "LineItem":
        """
        Build from a stored/posted item dict.

        strict=True rejects missing product_id and non-positive or
        non-integer quantities with ValidationError; otherwise such items are
        kept and later skipped by the adjuster.
        """
        if not isinstance(data, dict):
            raise ValidationError("Each item must be an object")

        product_id = _coerce_int(data.get("product_id"))
        quantity = _coerce_int(data.get("quantity"))

        if strict:
            if product_id is None:
                raise ValidationError("Each item requires product_id", details={"item": data})
            if quantity is None or quantity <= 0:
                raise ValidationError(
                    "Each item requires a positive integer quantity",
                    details={"item": data},
                )

        pairs = []
        for entry in data.get("selected_variants") or []:
            if not isinstance(entry, dict):
                continue
            attribute_id = entry.get("attribute_id")
            variant_id = entry.get("variant_id")
            if attribute_id and variant_id:
                pairs.append((str(attribute_id), str(variant_id)))

        combination_id = data.get("combination_id")
        return cls(
            product_id=product_id,
            quantity=quantity or 0,
            selected_variants=tuple(pairs),
            combination_id=str(combination_id) if combination_id else None,
        )

    def selection_map(self) -> dict[str, str]:
        return dict(self.selected_variants)


def parse_line_items(raw_items, *, strict: bool = False) -> list[LineItem]:
    if raw_items is None:
        return []
    if not isinstance(raw_items, list):
        raise ValidationError("items must be a list")
    return [LineItem.from_dict(item, strict=strict) for item in raw_items]


def _coerce_int(value) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    return None


def selection_signature(selections) -> frozenset:
    """Order-independent key of an attribute->variant mapping."""
    items = selections.items() if isinstance(selections, dict) else selections
    return frozenset((str(k), str(v)) for k, v in items)


# =============================================================================
# VARIANT INDEX
# =============================================================================

class VariantIndex:
    """
    Lookup tables over one product's attributes/combinations.

    Positions refer to the lists the index was built from, so mutations must
    be applied to those same lists.
    """

    def __init__(self, attributes: list, combinations: list):
        self.combination_by_signature: dict[frozenset, int] = {}
        self.combination_by_id: dict[str, int] = {}
        self.variants_by_pair: dict[tuple[str, str], list[tuple[int, int]]] = {}

        for pos, combo in enumerate(combinations):
            if not isinstance(combo, dict):
                continue
            selections = combo.get("selections")
            if not isinstance(selections, dict):
                selections = {}
            # first match wins, as a front-to-back scan would
            self.combination_by_signature.setdefault(selection_signature(selections), pos)
            if combo.get("id") is not None:
                self.combination_by_id.setdefault(str(combo["id"]), pos)

        for attr_pos, attribute in enumerate(attributes):
            if not isinstance(attribute, dict):
                continue
            variants = attribute.get("variants")
            if not isinstance(variants, list):
                continue
            for variant_pos, variant in enumerate(variants):
                if not isinstance(variant, dict):
                    continue
                key = (str(attribute.get("id")), str(variant.get("id")))
                self.variants_by_pair.setdefault(key, []).append((attr_pos, variant_pos))

    def combination_for(self, item: LineItem) -> int | None:
        if item.combination_id is not None:
            return self.combination_by_id.get(item.combination_id)
        return self.combination_by_signature.get(selection_signature(item.selection_map()))


def _as_count(value) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return value
    return 0


def _shift(current, delta: int):
    """Apply delta; decrements clamp at 0, increments are unbounded."""
    current = _as_count(current)
    if delta < 0:
        return max(0, current + delta)
    return current + delta


def _as_list(value) -> list:
    return copy.deepcopy(value) if isinstance(value, list) else []


# =============================================================================
# ADJUSTMENT
# =============================================================================

@dataclass
class StockMovement:
    product_id: int
    bucket: str
    delta: int
    keys: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "bucket": self.bucket,
            "delta": self.delta,
            "keys": self.keys,
        }


def _apply_item(product: Product, attributes: list, combinations: list,
                index: VariantIndex, item: LineItem, delta: int) -> StockMovement:
    if combinations and (item.combination_id is not None or item.selected_variants):
        pos = index.combination_for(item)
        if pos is not None:
            combo = combinations[pos]
            combo["stock"] = _shift(combo.get("stock"), delta)
            product.stock = _shift(product.stock, delta)
            return StockMovement(product.id, BUCKET_COMBINATION, delta, [combo.get("id")])

    elif item.selected_variants:
        touched = []
        # duplicate pairs in one item move the pool once
        for pair in dict.fromkeys(item.selected_variants):
            for attr_pos, variant_pos in index.variants_by_pair.get(pair, []):
                variant = attributes[attr_pos]["variants"][variant_pos]
                variant["stock"] = _shift(variant.get("stock"), delta)
                touched.append(list(pair))
        product.stock = _shift(product.stock, delta)
        return StockMovement(product.id, BUCKET_VARIANTS, delta, touched)

    product.stock = _shift(product.stock, delta)
    return StockMovement(product.id, BUCKET_PRODUCT, delta)


def adjust_stock(store_id: int, items: Iterable, sign: int) -> list[StockMovement]:
    """
    Move stock for items by sign * quantity.

    items may be LineItem instances or item dicts. Items without a product
    or with a non-positive quantity are skipped; so are products that no
    longer exist in the store (logged). Flushes but does not commit.

    Returns the movements applied, grouped by product.
    """
    if sign not in (SIGN_DECREMENT, SIGN_INCREMENT):
        raise ValidationError("sign must be +1 or -1")

    line_items = [i if isinstance(i, LineItem) else LineItem.from_dict(i) for i in items or []]

    by_product: dict[int, list[LineItem]] = {}
    for item in line_items:
        if item.product_id is None or item.quantity <= 0:
            continue
        by_product.setdefault(item.product_id, []).append(item)

    movements: list[StockMovement] = []
    for product_id, product_items in by_product.items():
        product = lock_for_update(
            db.session.query(Product).filter_by(id=product_id, store_id=store_id)
        ).first()
        if not product:
            current_app.logger.warning(
                "Stock adjustment skipped: product %s not found in store %s", product_id, store_id
            )
            continue

        attributes = _as_list(product.attributes)
        combinations = _as_list(product.combinations)
        index = VariantIndex(attributes, combinations)

        for item in product_items:
            movements.append(
                _apply_item(product, attributes, combinations, index, item, sign * item.quantity)
            )

        touched = {m.bucket for m in movements if m.product_id == product_id}
        if BUCKET_COMBINATION in touched:
            product.combinations = combinations
            flag_modified(product, "combinations")
        if BUCKET_VARIANTS in touched:
            product.attributes = attributes
            flag_modified(product, "attributes")

    db.session.flush()
    return movements


# =============================================================================
# AVAILABILITY
# =============================================================================

def available_quantity(product: Product, combination_id: str | None) -> int:
    """
    Current stock of the bucket a pre-resolved (POS) item draws from:
    the combination when combination_id is given and the product has
    combinations, product.stock otherwise.
    """
    combinations = product.combinations if isinstance(product.combinations, list) else []
    if combination_id and combinations:
        for combo in combinations:
            if isinstance(combo, dict) and str(combo.get("id")) == str(combination_id):
                return _as_count(combo.get("stock"))
        raise NotFoundError(
            f'"{product.name}" is no longer available',
            details={"product_id": product.id, "combination_id": combination_id},
        )
    return _as_count(product.stock)


def check_availability(store_id: int, raw_items: list[dict]) -> None:
    """
    Re-read stock for every item and fail on the first one that asks for
    more than is available. Lines drawing from the same bucket are summed,
    so two lines of 3 against a stock of 5 fail. Must run under the store
    lock.
    """
    requested: dict[tuple[int, str | None], int] = {}
    for raw in raw_items:
        item = LineItem.from_dict(raw)
        if item.product_id is None or item.quantity <= 0:
            continue

        display_name = raw.get("product_name")
        product = db.session.query(Product).filter_by(id=item.product_id, store_id=store_id).first()
        if not product:
            raise NotFoundError(
                f'"{display_name}" is no longer available' if display_name
                else "One of the products is no longer available",
                details={"product_id": item.product_id},
            )

        available = available_quantity(product, item.combination_id)
        has_combinations = isinstance(product.combinations, list) and bool(product.combinations)
        bucket = (product.id, item.combination_id if has_combinations else None)
        requested[bucket] = requested.get(bucket, 0) + item.quantity

        if available < requested[bucket]:
            name = display_name or product.name
            raise InsufficientStockError(
                f'Not enough stock for "{name}": {available} available, {requested[bucket]} requested',
                details={
                    "product_id": product.id,
                    "combination_id": item.combination_id,
                    "requested_quantity": requested[bucket],
                    "available": available,
                },
            )


# =============================================================================
# POST-COMMIT ADJUSTMENT
# =============================================================================

def apply_stock_after_commit(
    *,
    store_id: int,
    items: Iterable,
    sign: int,
    entity_type: str,
    entity_id: int,
    action: str,
    actor_user_id: int | None = None,
) -> bool:
    """
    Move stock in its own transaction after the primary record committed.

    Lock conflicts (OperationalError, StaleDataError) are retried through
    run_with_retry. Anything still failing is logged and swallowed: the
    sale/receivable/order stays created or transitioned even when its stock
    effect did not land, and the gap needs manual reconciliation.

    Returns True when the movement committed.
    """
    items = list(items or [])

    def _op():
        movements = adjust_stock(store_id, items, sign)
        append_activity(
            store_id=store_id,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            actor_user_id=actor_user_id,
            details={"sign": sign, "movements": [m.to_dict() for m in movements]},
        )
        db.session.commit()

    try:
        run_with_retry(_op)
    except Exception:
        db.session.rollback()
        current_app.logger.exception(
            "Stock adjustment (%s) failed for %s %s in store %s",
            action, entity_type, entity_id, store_id,
        )
        return False
    return True
