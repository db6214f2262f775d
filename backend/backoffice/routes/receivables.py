# Overview: Flask API routes for receivables and their payments; parses input and returns JSON responses.

# backend/backoffice/routes/receivables.py
"""Receivable API routes. Domain errors are rendered by the app error handler."""

from flask import Blueprint, request, jsonify, g

from ..decorators import with_store_context
from ..services import receivable_service
from ..services.activity_service import ENTITY_RECEIVABLE, get_activity


receivables_bp = Blueprint("receivables", __name__, url_prefix="/api/receivables")


@receivables_bp.post("/")
@with_store_context
def create_receivable_route():
    """
    Create a receivable.

    With "order_id" in the body the receivable bills that order (and its
    stock leaves); otherwise it is a manual receivable and "amount_cents"
    is required.
    """
    data = request.get_json() or {}
    order_id = data.get("order_id")

    if order_id is not None:
        if isinstance(order_id, bool) or not str(order_id).isdigit():
            return jsonify({"error": "order_id must be an integer"}), 400
        options = {
            key: data[key]
            for key in ("amount_cents", "customer_name", "customer_phone", "description", "initial_payment")
            if key in data
        }
        receivable = receivable_service.create_receivable_from_order(
            int(order_id), g.store_id, g.actor_user_id, options
        )
    else:
        fields = {key: value for key, value in data.items() if key != "store_id"}
        receivable = receivable_service.create_manual_receivable(g.store_id, g.actor_user_id, fields)

    return jsonify({"receivable": receivable.to_dict()}), 201


@receivables_bp.get("/")
@with_store_context
def list_receivables_route():
    """
    List a store's receivables, newest first.

    Query params: status (one or comma-separated), search, limit, offset
    """
    result = receivable_service.list_receivables(
        g.store_id,
        status=request.args.get("status"),
        search=request.args.get("search"),
        limit=request.args.get("limit", type=int),
        offset=request.args.get("offset", type=int),
    )
    return jsonify(result), 200


@receivables_bp.get("/number/<int:receivable_number>")
@with_store_context
def get_receivable_by_number_route(receivable_number: int):
    receivable = receivable_service.get_receivable_by_number(g.store_id, receivable_number)
    balance = receivable_service.get_receivable_payments(receivable.id, g.store_id)
    return jsonify(balance.to_dict()), 200


@receivables_bp.get("/pending-total")
@with_store_context
def pending_total_route():
    totals = receivable_service.get_pending_total_by_store(g.store_id)
    return jsonify({"store_id": g.store_id, "pending_totals_cents": totals}), 200


@receivables_bp.get("/<int:receivable_id>")
@with_store_context
def get_receivable_route(receivable_id: int):
    balance = receivable_service.get_receivable_payments(receivable_id, g.store_id)
    activity = get_activity(ENTITY_RECEIVABLE, receivable_id, store_id=g.store_id)
    payload = balance.to_dict()
    payload["activity"] = [entry.to_dict() for entry in activity]
    return jsonify(payload), 200


@receivables_bp.patch("/<int:receivable_id>")
@with_store_context
def update_receivable_route(receivable_id: int):
    data = request.get_json() or {}
    updates = {key: value for key, value in data.items() if key != "store_id"}
    receivable = receivable_service.update_receivable(
        receivable_id, g.store_id, updates, g.actor_user_id
    )
    return jsonify({"receivable": receivable.to_dict()}), 200


@receivables_bp.post("/<int:receivable_id>/status")
@with_store_context
def update_receivable_status_route(receivable_id: int):
    data = request.get_json() or {}
    status = data.get("status")
    if not status:
        return jsonify({"error": "status required"}), 400

    receivable = receivable_service.update_receivable_status(
        receivable_id, g.store_id, status, g.actor_user_id
    )
    return jsonify({"receivable": receivable.to_dict()}), 200


@receivables_bp.post("/<int:receivable_id>/payments")
@with_store_context
def add_payment_route(receivable_id: int):
    """
    Record a partial payment.

    Body: {"store_id": int, "amount_cents": int, "notes": str}
    """
    data = request.get_json() or {}
    balance = receivable_service.add_payment(
        receivable_id,
        g.store_id,
        data.get("amount_cents"),
        notes=data.get("notes"),
        actor_user_id=g.actor_user_id,
    )
    return jsonify(balance.to_dict()), 201


@receivables_bp.put("/<int:receivable_id>/items")
@with_store_context
def update_receivable_items_route(receivable_id: int):
    data = request.get_json() or {}
    update_amount = data.get("update_amount", True)
    if not isinstance(update_amount, bool):
        return jsonify({"error": "update_amount must be a boolean"}), 400

    result = receivable_service.update_receivable_items(
        receivable_id,
        g.store_id,
        data.get("items"),
        data.get("total_cents"),
        update_amount=update_amount,
        actor_user_id=g.actor_user_id,
    )
    return jsonify({
        "order": result["order"].to_dict(),
        "receivable": result["receivable"].to_dict(),
    }), 200
