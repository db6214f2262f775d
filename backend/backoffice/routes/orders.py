# Overview: Flask API routes for orders; parses input and returns JSON responses.

# backend/backoffice/routes/orders.py
"""Order API routes. Domain errors are rendered by the app error handler."""

from flask import Blueprint, request, jsonify, g

from ..decorators import with_store_context
from ..services import order_service
from ..services.activity_service import ENTITY_ORDER, get_activity


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.post("/")
@with_store_context
def create_order_route():
    data = request.get_json() or {}
    order = order_service.create_order(
        g.store_id,
        data.get("items"),
        data.get("total_cents", 0),
        customer_name=data.get("customer_name"),
        customer_phone=data.get("customer_phone"),
        customer_email=data.get("customer_email"),
        custom_message=data.get("custom_message"),
        currency=data.get("currency"),
    )
    return jsonify({"order": order.to_dict()}), 201


@orders_bp.get("/")
@with_store_context
def list_orders_route():
    """
    List a store's orders, newest first.

    Query params:
    - status: one status or a comma-separated list
    - without_receivable: "true" to hide orders already billed
    - limit (default 20, max 100), offset
    """
    result = order_service.list_orders(
        g.store_id,
        status=request.args.get("status"),
        without_receivable=request.args.get("without_receivable", "").lower() in ("1", "true", "yes"),
        limit=request.args.get("limit", type=int),
        offset=request.args.get("offset", type=int),
    )
    return jsonify(result), 200


@orders_bp.get("/number/<int:order_number>")
@with_store_context
def get_order_by_number_route(order_number: int):
    order = order_service.get_order_by_number(g.store_id, order_number)
    return jsonify({"order": order.to_dict()}), 200


@orders_bp.get("/<int:order_id>")
@with_store_context
def get_order_route(order_id: int):
    order = order_service.get_order(order_id, g.store_id)
    activity = get_activity(ENTITY_ORDER, order.id, store_id=g.store_id)
    return jsonify({
        "order": order.to_dict(),
        "activity": [entry.to_dict() for entry in activity],
    }), 200


@orders_bp.post("/<int:order_id>/status")
@with_store_context
def update_order_status_route(order_id: int):
    """
    Transition an order.

    Body: {"store_id": int, "status": "pending|processing|completed|cancelled"}
    """
    data = request.get_json() or {}
    status = data.get("status")
    if not status:
        return jsonify({"error": "status required"}), 400

    order = order_service.update_order_status(order_id, g.store_id, status, g.actor_user_id)
    return jsonify({"order": order.to_dict()}), 200


@orders_bp.put("/<int:order_id>/items")
@with_store_context
def replace_order_items_route(order_id: int):
    """
    Replace the items of an order billed by a pending/paid receivable.

    Body: {"store_id": int, "items": [...], "total_cents": int, "update_amount": bool}
    """
    data = request.get_json() or {}
    update_amount = data.get("update_amount", True)
    if not isinstance(update_amount, bool):
        return jsonify({"error": "update_amount must be a boolean"}), 400

    result = order_service.replace_order_items(
        order_id,
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
