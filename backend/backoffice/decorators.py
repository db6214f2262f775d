# Overview: Request-context decorators for API routes.

from functools import wraps
from flask import request, jsonify, g


def _parse_int(value):
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def with_store_context(f):
    """
    Establish the tenant and actor for a core call.

    Sets the following Flask g attributes:
    - g.store_id: from the ?store_id= query arg, else the JSON body - REQUIRED
    - g.actor_user_id: from the X-Actor-Id header (None when absent)

    Authentication and permission checks live in front of this service;
    the header is trusted as given.

    Returns 400 if store_id is missing or not an integer.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        store_id = request.args.get("store_id")
        if store_id is None:
            body = request.get_json(silent=True) or {}
            store_id = body.get("store_id")

        store_id = _parse_int(store_id)
        if store_id is None:
            return jsonify({"error": "store_id required"}), 400

        g.store_id = store_id
        g.actor_user_id = _parse_int(request.headers.get("X-Actor-Id"))

        return f(*args, **kwargs)

    return decorated_function
