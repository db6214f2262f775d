# Overview: Pytest coverage for stock bucket resolution and adjustment.

"""
Stock Ledger Adjuster Tests

Resolution order per item:
1. combination (set-equal selection, or combination_id)
2. every selected attribute variant (no combinations)
3. product.stock only

Decrements clamp at 0; increments are unbounded.
"""

import pytest
from sqlalchemy.orm.exc import StaleDataError

from backoffice.errors import InsufficientStockError, NotFoundError, ValidationError
from backoffice.services.stock_service import (
    BUCKET_COMBINATION,
    BUCKET_PRODUCT,
    BUCKET_VARIANTS,
    SIGN_DECREMENT,
    SIGN_INCREMENT,
    LineItem,
    VariantIndex,
    adjust_stock,
    apply_stock_after_commit,
    check_availability,
    selection_signature,
)
from backoffice.services.activity_service import ENTITY_SALE, get_activity

from conftest import red_item, stock_of


class TestLineItem:

    def test_from_dict_normalizes_pairs(self):
        item = LineItem.from_dict({
            "product_id": "7",
            "quantity": 2,
            "selected_variants": [
                {"attribute_id": "color", "variant_id": "red"},
                {"attribute_id": "size"},
                "garbage",
            ],
        })
        assert item.product_id == 7
        assert item.quantity == 2
        assert item.selected_variants == (("color", "red"),)

    def test_strict_rejects_bad_quantity(self):
        with pytest.raises(ValidationError):
            LineItem.from_dict({"product_id": 1, "quantity": 0}, strict=True)
        with pytest.raises(ValidationError):
            LineItem.from_dict({"product_id": 1, "quantity": 1.5}, strict=True)

    def test_strict_rejects_missing_product(self):
        with pytest.raises(ValidationError):
            LineItem.from_dict({"quantity": 1}, strict=True)


class TestVariantIndex:

    def test_signature_is_order_independent(self):
        assert selection_signature({"a": "1", "b": "2"}) == selection_signature([("b", "2"), ("a", "1")])

    def test_combination_requires_set_equality(self):
        index = VariantIndex([], [
            {"id": "c1", "selections": {"color": "red", "size": "m"}, "stock": 1},
        ])
        exact = LineItem(1, 1, (("size", "m"), ("color", "red")))
        subset = LineItem(1, 1, (("color", "red"),))

        assert index.combination_for(exact) == 0
        assert index.combination_for(subset) is None

    def test_combination_id_lookup(self):
        index = VariantIndex([], [
            {"id": "c1", "selections": {"color": "red"}, "stock": 1},
            {"id": "c2", "selections": {"color": "blue"}, "stock": 1},
        ])
        assert index.combination_for(LineItem(1, 1, (), "c2")) == 1
        assert index.combination_for(LineItem(1, 1, (), "missing")) is None


class TestAdjustStock:

    def test_combination_bucket_and_mirror(self, db_session, combo_product):
        movements = adjust_stock(combo_product.store_id, [red_item(combo_product, 2)], SIGN_DECREMENT)
        db_session.commit()

        snapshot = stock_of(combo_product)
        assert snapshot["combinations"] == {"c-red": 3, "c-blue": 4}
        assert snapshot["stock"] == 7
        # attribute pools are not touched when a combination matched
        assert snapshot["variants"][("color", "red")] == 5
        assert movements[0].bucket == BUCKET_COMBINATION

    def test_combination_by_id(self, db_session, combo_product):
        adjust_stock(
            combo_product.store_id,
            [{"product_id": combo_product.id, "quantity": 1, "combination_id": "c-blue"}],
            SIGN_DECREMENT,
        )
        db_session.commit()

        snapshot = stock_of(combo_product)
        assert snapshot["combinations"]["c-blue"] == 3
        assert snapshot["stock"] == 8

    def test_unmatched_selection_moves_product_only(self, db_session, combo_product):
        item = {
            "product_id": combo_product.id,
            "quantity": 2,
            "selected_variants": [{"attribute_id": "color", "variant_id": "green"}],
        }
        movements = adjust_stock(combo_product.store_id, [item], SIGN_DECREMENT)
        db_session.commit()

        snapshot = stock_of(combo_product)
        assert snapshot["combinations"] == {"c-red": 5, "c-blue": 4}
        assert snapshot["variants"][("color", "red")] == 5
        assert snapshot["stock"] == 7
        assert movements[0].bucket == BUCKET_PRODUCT

    def test_every_selected_variant_moves(self, db_session, variant_product):
        item = {
            "product_id": variant_product.id,
            "quantity": 2,
            "selected_variants": [
                {"attribute_id": "color", "variant_id": "red"},
                {"attribute_id": "size", "variant_id": "m"},
            ],
        }
        movements = adjust_stock(variant_product.store_id, [item], SIGN_DECREMENT)
        db_session.commit()

        snapshot = stock_of(variant_product)
        assert snapshot["variants"][("color", "red")] == 3
        assert snapshot["variants"][("size", "m")] == 1
        assert snapshot["variants"][("color", "blue")] == 5
        # product.stock moves once, not once per attribute
        assert snapshot["stock"] == 8
        assert movements[0].bucket == BUCKET_VARIANTS

    def test_plain_product(self, db_session, plain_product):
        adjust_stock(plain_product.store_id, [{"product_id": plain_product.id, "quantity": 4}], SIGN_DECREMENT)
        db_session.commit()
        assert stock_of(plain_product)["stock"] == 6

    def test_decrement_clamps_and_restore_is_unbounded(self, db_session, plain_product):
        item = {"product_id": plain_product.id, "quantity": 15}

        adjust_stock(plain_product.store_id, [item], SIGN_DECREMENT)
        db_session.commit()
        assert stock_of(plain_product)["stock"] == 0

        adjust_stock(plain_product.store_id, [item], SIGN_INCREMENT)
        db_session.commit()
        assert stock_of(plain_product)["stock"] == 15

    def test_combination_clamps_at_zero(self, db_session, combo_product):
        adjust_stock(combo_product.store_id, [red_item(combo_product, 8)], SIGN_DECREMENT)
        db_session.commit()

        snapshot = stock_of(combo_product)
        assert snapshot["combinations"]["c-red"] == 0
        assert snapshot["stock"] == 1

    def test_multiple_items_same_product(self, db_session, combo_product):
        items = [
            red_item(combo_product, 1),
            {"product_id": combo_product.id, "quantity": 2, "combination_id": "c-blue"},
            red_item(combo_product, 1),
        ]
        adjust_stock(combo_product.store_id, items, SIGN_DECREMENT)
        db_session.commit()

        snapshot = stock_of(combo_product)
        assert snapshot["combinations"] == {"c-red": 3, "c-blue": 2}
        assert snapshot["stock"] == 5

    def test_missing_product_skipped(self, db_session, store, plain_product):
        movements = adjust_stock(
            store.id,
            [{"product_id": 99999, "quantity": 1}, {"product_id": plain_product.id, "quantity": 1}],
            SIGN_DECREMENT,
        )
        db_session.commit()

        assert [m.product_id for m in movements] == [plain_product.id]
        assert stock_of(plain_product)["stock"] == 9

    def test_foreign_store_product_skipped(self, db_session, other_store, plain_product):
        movements = adjust_stock(other_store.id, [{"product_id": plain_product.id, "quantity": 1}], SIGN_DECREMENT)
        db_session.commit()

        assert movements == []
        assert stock_of(plain_product)["stock"] == 10

    def test_invalid_sign(self, db_session, plain_product):
        with pytest.raises(ValidationError):
            adjust_stock(plain_product.store_id, [], 2)


class TestCheckAvailability:

    def test_insufficient_combination_stock(self, db_session, combo_product):
        item = {"product_id": combo_product.id, "quantity": 5, "combination_id": "c-blue"}
        with pytest.raises(InsufficientStockError) as exc_info:
            check_availability(combo_product.store_id, [item])

        details = exc_info.value.details
        assert details["available"] == 4
        assert details["requested_quantity"] == 5
        assert details["combination_id"] == "c-blue"

    def test_unknown_combination(self, db_session, combo_product):
        item = {"product_id": combo_product.id, "quantity": 1, "combination_id": "c-green"}
        with pytest.raises(NotFoundError):
            check_availability(combo_product.store_id, [item])

    def test_unknown_product_uses_display_name(self, db_session, store):
        with pytest.raises(NotFoundError) as exc_info:
            check_availability(store.id, [{"product_id": 424242, "quantity": 1, "product_name": "Ghost"}])
        assert "Ghost" in str(exc_info.value)

    def test_enough_stock_passes(self, db_session, plain_product):
        check_availability(plain_product.store_id, [{"product_id": plain_product.id, "quantity": 10}])

    def test_lines_on_same_bucket_are_summed(self, db_session, combo_product):
        line = {"product_id": combo_product.id, "quantity": 3, "combination_id": "c-red"}
        with pytest.raises(InsufficientStockError) as exc_info:
            check_availability(combo_product.store_id, [line, dict(line)])

        details = exc_info.value.details
        assert details["requested_quantity"] == 6
        assert details["available"] == 5

    def test_lines_on_different_buckets_are_independent(self, db_session, combo_product):
        check_availability(combo_product.store_id, [
            {"product_id": combo_product.id, "quantity": 5, "combination_id": "c-red"},
            {"product_id": combo_product.id, "quantity": 4, "combination_id": "c-blue"},
        ])


class TestApplyStockAfterCommit:

    def test_commits_and_logs(self, db_session, plain_product):
        ok = apply_stock_after_commit(
            store_id=plain_product.store_id,
            items=[{"product_id": plain_product.id, "quantity": 3}],
            sign=SIGN_DECREMENT,
            entity_type=ENTITY_SALE,
            entity_id=1,
            action="stock_decremented",
        )
        assert ok is True
        assert stock_of(plain_product)["stock"] == 7

        entries = get_activity(ENTITY_SALE, 1, store_id=plain_product.store_id)
        assert entries[0].action == "stock_decremented"
        assert entries[0].details["sign"] == SIGN_DECREMENT

    def test_failure_is_logged_not_raised(self, db_session, plain_product, monkeypatch, caplog):
        from backoffice.services import stock_service

        def boom(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(stock_service, "adjust_stock", boom)

        ok = apply_stock_after_commit(
            store_id=plain_product.store_id,
            items=[{"product_id": plain_product.id, "quantity": 3}],
            sign=SIGN_DECREMENT,
            entity_type=ENTITY_SALE,
            entity_id=1,
            action="stock_decremented",
        )
        assert ok is False
        assert stock_of(plain_product)["stock"] == 10
        assert "Stock adjustment (stock_decremented) failed" in caplog.text

    def test_stale_row_is_retried(self, db_session, plain_product, monkeypatch):
        from backoffice.services import stock_service

        real_adjust = stock_service.adjust_stock
        calls = []

        def stale_once(*args, **kwargs):
            calls.append(1)
            if len(calls) == 1:
                raise StaleDataError("product row version changed")
            return real_adjust(*args, **kwargs)

        monkeypatch.setattr(stock_service, "adjust_stock", stale_once)

        ok = apply_stock_after_commit(
            store_id=plain_product.store_id,
            items=({"product_id": plain_product.id, "quantity": 2} for _ in range(1)),
            sign=SIGN_DECREMENT,
            entity_type=ENTITY_SALE,
            entity_id=1,
            action="stock_decremented",
        )
        assert ok is True
        assert len(calls) == 2
        assert stock_of(plain_product)["stock"] == 8

    def test_persistent_stale_row_gives_up(self, db_session, plain_product, monkeypatch, caplog):
        from backoffice.services import stock_service

        def always_stale(*args, **kwargs):
            raise StaleDataError("product row version changed")

        monkeypatch.setattr(stock_service, "adjust_stock", always_stale)

        ok = apply_stock_after_commit(
            store_id=plain_product.store_id,
            items=[{"product_id": plain_product.id, "quantity": 2}],
            sign=SIGN_DECREMENT,
            entity_type=ENTITY_SALE,
            entity_id=1,
            action="stock_decremented",
        )
        assert ok is False
        assert stock_of(plain_product)["stock"] == 10
        assert "Stock adjustment (stock_decremented) failed" in caplog.text
