# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

# backend/backoffice/routes/sales.py
"""Sales API routes. Domain errors are rendered by the app error handler."""

from flask import Blueprint, request, jsonify, g

from ..decorators import with_store_context
from ..services import sale_service


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("/")
@with_store_context
def create_sale_route():
    """
    Record a paid sale.

    Body: {"store_id": int, "client_id": int, "items": [...], "total_cents": int,
           "payment_method": str, "notes": str}

    409 with the offending item when stock is insufficient.
    """
    data = request.get_json() or {}
    sale = sale_service.create_sale(
        g.store_id,
        data.get("client_id"),
        data.get("items"),
        data.get("total_cents", 0),
        g.actor_user_id,
        currency=data.get("currency"),
        payment_method=data.get("payment_method"),
        notes=data.get("notes"),
    )
    return jsonify({"sale": sale.to_dict()}), 201


@sales_bp.get("/")
@with_store_context
def list_sales_route():
    """
    List a store's sales, newest first.

    Query params: status (one or comma-separated), client_id, limit, offset
    """
    result = sale_service.list_sales(
        g.store_id,
        status=request.args.get("status"),
        client_id=request.args.get("client_id", type=int),
        limit=request.args.get("limit", type=int),
        offset=request.args.get("offset", type=int),
    )
    return jsonify(result), 200


@sales_bp.get("/number/<int:sale_number>")
@with_store_context
def get_sale_by_number_route(sale_number: int):
    sale = sale_service.get_sale_by_number(g.store_id, sale_number)
    return jsonify({"sale": sale.to_dict()}), 200


@sales_bp.get("/<int:sale_id>")
@with_store_context
def get_sale_route(sale_id: int):
    sale = sale_service.get_sale(sale_id, g.store_id)
    return jsonify({"sale": sale.to_dict()}), 200


@sales_bp.post("/<int:sale_id>/refund")
@with_store_context
def refund_sale_route(sale_id: int):
    sale = sale_service.refund_sale(sale_id, g.store_id, g.actor_user_id)
    return jsonify({"sale": sale.to_dict()}), 200


@sales_bp.post("/<int:sale_id>/cancel")
@with_store_context
def cancel_sale_route(sale_id: int):
    sale = sale_service.cancel_sale(sale_id, g.store_id, g.actor_user_id)
    return jsonify({"sale": sale.to_dict()}), 200
