# Overview: Pytest coverage for receivables; creation, payment accumulation and status changes.

"""
Receivable/Payment Accumulator Tests

- total paid is always the sum of the payment rows
- the receivable becomes paid as soon as that sum reaches its amount
- paying settles the linked order WITHOUT a second stock decrement
- paid and cancelled receivables accept no payments or status changes
"""

import pytest

from backoffice.errors import InvalidStateError, NotFoundError, ValidationError
from backoffice.models import Receivable, ReceivablePayment
from backoffice.services import receivable_service
from backoffice.services.activity_service import ENTITY_RECEIVABLE, get_activity

from conftest import make_order, red_item, stock_of


def _manual(store, amount_cents=10000, **extra):
    fields = {"amount_cents": amount_cents, "customer_name": "Ana", **extra}
    return receivable_service.create_manual_receivable(store.id, 7, fields)


def _actions(receivable):
    return [e.action for e in get_activity(ENTITY_RECEIVABLE, receivable.id, store_id=receivable.store_id)]


class TestManualReceivable:

    def test_create_numbers_and_logs(self, db_session, store):
        first = _manual(store)
        second = _manual(store, description="  Second tab  ")

        assert first.receivable_number == 1
        assert second.receivable_number == 2
        assert second.description == "Second tab"
        assert first.status == "pending"
        assert first.order_id is None
        assert first.created_by_user_id == 7
        assert _actions(first) == ["created"]

    def test_amount_required(self, db_session, store):
        with pytest.raises(ValidationError):
            receivable_service.create_manual_receivable(store.id, None, {"customer_name": "Ana"})

    def test_negative_amount_rejected(self, db_session, store):
        with pytest.raises(ValidationError):
            _manual(store, amount_cents=-1)

    def test_unknown_store(self, db_session):
        with pytest.raises(NotFoundError):
            receivable_service.create_manual_receivable(9999, None, {"amount_cents": 100})

    def test_initial_payment_partial(self, db_session, store):
        receivable = _manual(store, initial_payment={"amount_cents": 2500, "notes": "deposit"})

        balance = receivable_service.get_receivable_payments(receivable.id, store.id)
        assert balance.total_paid_cents == 2500
        assert balance.receivable.status == "pending"
        assert balance.payments[0].notes == "deposit"

    def test_initial_payment_settles(self, db_session, store):
        receivable = _manual(store, amount_cents=3000, initial_payment={"amount_cents": 3000})

        assert receivable.status == "paid"
        assert receivable.paid_at is not None
        assert "paid_initial" in _actions(receivable)

    def test_initial_payment_must_be_positive(self, db_session, store):
        with pytest.raises(ValidationError):
            _manual(store, initial_payment={"amount_cents": -5})
        assert db_session.query(ReceivablePayment).count() == 0

    @pytest.mark.parametrize("initial_payment", [500, "500", [{"amount_cents": 500}]])
    def test_initial_payment_must_be_an_object(self, db_session, store, initial_payment):
        with pytest.raises(ValidationError):
            _manual(store, amount_cents=1000, initial_payment=initial_payment)
        assert db_session.query(Receivable).count() == 0
        assert db_session.query(ReceivablePayment).count() == 0


class TestAddPayment:

    def test_partial_payments_accumulate(self, db_session, store):
        receivable = _manual(store, amount_cents=10000)

        balance = receivable_service.add_payment(receivable.id, store.id, 4000, notes="first")
        assert balance.total_paid_cents == 4000
        assert balance.balance_cents == 6000
        assert balance.receivable.status == "pending"

        balance = receivable_service.add_payment(receivable.id, store.id, 6000)
        assert balance.total_paid_cents == 10000
        assert balance.receivable.status == "paid"
        assert balance.receivable.paid_at is not None
        assert len(balance.payments) == 2

    def test_overpayment_settles(self, db_session, store):
        receivable = _manual(store, amount_cents=1000)
        balance = receivable_service.add_payment(receivable.id, store.id, 1500)
        assert balance.receivable.status == "paid"
        assert balance.total_paid_cents == 1500

    def test_payment_on_paid_receivable_rejected(self, db_session, store):
        receivable = _manual(store, amount_cents=1000)
        receivable_service.add_payment(receivable.id, store.id, 1000)

        with pytest.raises(InvalidStateError):
            receivable_service.add_payment(receivable.id, store.id, 100)

    def test_payment_on_cancelled_receivable_rejected(self, db_session, store):
        receivable = _manual(store)
        receivable_service.update_receivable_status(receivable.id, store.id, "cancelled")

        with pytest.raises(InvalidStateError):
            receivable_service.add_payment(receivable.id, store.id, 100)

    @pytest.mark.parametrize("amount", [0, -100, "abc", None, True])
    def test_invalid_amount(self, db_session, store, amount):
        receivable = _manual(store)
        with pytest.raises(ValidationError):
            receivable_service.add_payment(receivable.id, store.id, amount)

    def test_unknown_receivable(self, db_session, store):
        with pytest.raises(NotFoundError):
            receivable_service.add_payment(424242, store.id, 100)

    def test_foreign_store_looks_missing(self, db_session, store, other_store):
        receivable = _manual(store)
        with pytest.raises(NotFoundError):
            receivable_service.add_payment(receivable.id, other_store.id, 100)

    def test_payment_logs(self, db_session, store):
        receivable = _manual(store, amount_cents=500)
        receivable_service.add_payment(receivable.id, store.id, 500, actor_user_id=3)

        actions = _actions(receivable)
        assert "payment_added" in actions
        assert "status_paid" in actions


class TestReceivableStatus:

    def test_explicit_paid(self, db_session, store):
        receivable = _manual(store)
        updated = receivable_service.update_receivable_status(receivable.id, store.id, "paid", 2)

        assert updated.status == "paid"
        assert updated.paid_at is not None
        assert updated.updated_by_user_id == 2

    def test_terminal_states(self, db_session, store):
        receivable = _manual(store)
        receivable_service.update_receivable_status(receivable.id, store.id, "paid")

        with pytest.raises(InvalidStateError):
            receivable_service.update_receivable_status(receivable.id, store.id, "cancelled")
        with pytest.raises(InvalidStateError):
            receivable_service.update_receivable_status(receivable.id, store.id, "pending")

    def test_same_status_is_noop(self, db_session, store):
        receivable = _manual(store)
        same = receivable_service.update_receivable_status(receivable.id, store.id, "pending")
        assert same.status == "pending"
        assert _actions(receivable) == ["created"]

    def test_unknown_status(self, db_session, store):
        receivable = _manual(store)
        with pytest.raises(ValidationError):
            receivable_service.update_receivable_status(receivable.id, store.id, "refunded")


class TestUpdateReceivable:

    def test_edit_fields(self, db_session, store):
        receivable = _manual(store)
        updated = receivable_service.update_receivable(
            receivable.id, store.id, {"customer_name": " Bea ", "amount_cents": 12000}, 4
        )
        assert updated.customer_name == "Bea"
        assert updated.amount_cents == 12000
        assert "updated" in _actions(receivable)

    def test_unknown_field_rejected(self, db_session, store):
        receivable = _manual(store)
        with pytest.raises(ValidationError):
            receivable_service.update_receivable(receivable.id, store.id, {"order_id": 5})

    def test_paid_receivable_not_editable(self, db_session, store):
        receivable = _manual(store)
        receivable_service.update_receivable_status(receivable.id, store.id, "paid")
        with pytest.raises(InvalidStateError):
            receivable_service.update_receivable(receivable.id, store.id, {"description": "late"})

    def test_status_key_delegates(self, db_session, store):
        receivable = _manual(store)
        updated = receivable_service.update_receivable(
            receivable.id, store.id, {"description": "closing", "status": "cancelled"}
        )
        assert updated.status == "cancelled"
        assert updated.description == "closing"


class TestPendingTotals:

    def test_pending_total_by_currency(self, db_session, store):
        a = _manual(store, amount_cents=10000)
        _manual(store, amount_cents=5000, currency="EUR")
        settled = _manual(store, amount_cents=700)
        cancelled = _manual(store, amount_cents=900)

        receivable_service.add_payment(a.id, store.id, 2500)
        receivable_service.add_payment(settled.id, store.id, 700)
        receivable_service.update_receivable_status(cancelled.id, store.id, "cancelled")

        totals = receivable_service.get_pending_total_by_store(store.id)
        assert totals == {"USD": 7500, "EUR": 5000}

    def test_fully_covered_pending_omitted(self, db_session, store):
        receivable = _manual(store, amount_cents=1000)
        receivable_service.add_payment(receivable.id, store.id, 400)
        # lowering the amount below what was paid leaves a non-positive balance
        receivable_service.update_receivable(receivable.id, store.id, {"amount_cents": 300})

        assert receivable_service.get_pending_total_by_store(store.id) == {}


class TestReceivableFromOrder:

    def test_defaults_from_order(self, db_session, store, combo_product):
        order = make_order(store, [red_item(combo_product)], total_cents=5000,
                           customer_name="Carla", customer_phone="555-0101")
        receivable = receivable_service.create_receivable_from_order(order.id, store.id, 1)

        assert receivable.order_id == order.id
        assert receivable.amount_cents == 5000
        assert receivable.customer_name == "Carla"
        assert receivable.customer_phone == "555-0101"
        assert receivable.description == f"Receivable for order #{order.order_number}"

    def test_options_override(self, db_session, store, combo_product):
        order = make_order(store, [red_item(combo_product)], custom_message="Gift wrap")
        receivable = receivable_service.create_receivable_from_order(
            order.id, store.id, 1,
            {"amount_cents": 4200, "customer_name": None, "customer_phone": " 555 "},
        )
        assert receivable.amount_cents == 4200
        assert receivable.customer_name == "Customer"
        assert receivable.customer_phone == "555"
        assert receivable.description == "Gift wrap"

    def test_second_receivable_rejected(self, db_session, store, combo_product):
        order = make_order(store, [red_item(combo_product)])
        first = receivable_service.create_receivable_from_order(order.id, store.id, 1)
        receivable_service.update_receivable_status(first.id, store.id, "cancelled")

        with pytest.raises(InvalidStateError):
            receivable_service.create_receivable_from_order(order.id, store.id, 1)
        # one decrement, one restore
        assert stock_of(combo_product)["combinations"]["c-red"] == 5

    def test_unknown_order(self, db_session, store):
        with pytest.raises(NotFoundError):
            receivable_service.create_receivable_from_order(4040, store.id, 1)

    def test_initial_payment_settles_order_without_second_decrement(self, db_session, store, combo_product):
        order = make_order(store, [red_item(combo_product)], total_cents=5000)
        receivable = receivable_service.create_receivable_from_order(
            order.id, store.id, 1, {"initial_payment": {"amount_cents": 5000}}
        )

        db_session.expire_all()
        assert receivable.status == "paid"
        assert receivable.order.status == "completed"
        assert stock_of(combo_product)["combinations"]["c-red"] == 3

    def test_update_items_requires_order(self, db_session, store):
        receivable = _manual(store)
        with pytest.raises(InvalidStateError):
            receivable_service.update_receivable_items(receivable.id, store.id, [{"product_id": 1, "quantity": 1}], 100)


class TestReceivableLookups:

    def test_by_number(self, db_session, store, other_store):
        _manual(store)
        second = _manual(store)

        assert receivable_service.get_receivable_by_number(store.id, 2).id == second.id
        with pytest.raises(NotFoundError):
            receivable_service.get_receivable_by_number(other_store.id, 2)

    def test_list_by_status(self, db_session, store):
        first = _manual(store)
        _manual(store)
        receivable_service.update_receivable_status(first.id, store.id, "cancelled")

        pending = receivable_service.list_receivables(store.id, status="pending")
        assert pending["total"] == 1
        assert pending["items"][0]["receivable_number"] == 2

        both = receivable_service.list_receivables(store.id, status="pending,cancelled")
        assert [r["receivable_number"] for r in both["items"]] == [2, 1]

    def test_list_search(self, db_session, store):
        _manual(store, customer_name="Ana Lopez", customer_phone="555-0101")
        _manual(store, customer_name="Bruno", customer_phone="555-0202")

        assert receivable_service.list_receivables(store.id, search="lopez")["total"] == 1
        assert receivable_service.list_receivables(store.id, search="0202")["items"][0]["customer_name"] == "Bruno"
        assert receivable_service.list_receivables(store.id, search="   ")["total"] == 2

    def test_list_is_store_scoped(self, db_session, store, other_store):
        _manual(store)
        assert receivable_service.list_receivables(other_store.id)["total"] == 0
