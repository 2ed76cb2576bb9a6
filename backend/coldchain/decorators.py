# Overview: Request decorators that establish caller identity for API routes.

from functools import wraps

from flask import g, jsonify, request


def _header_int(name: str):
    raw = request.headers.get(name)
    if raw is None or raw.strip() == "":
        return None
    raw = raw.strip()
    if not raw.isdigit():
        raise ValueError(name)
    return int(raw)


def require_actor(f):
    """
    Establish caller context from upstream identity headers.

    Authentication happens in front of this service. The gateway asserts:
    - X-Actor-Id: the acting user (required)
    - X-Site-Id: the site the caller is scoped to (absent for cross-site staff)

    Sets g.actor_id and g.site_id. Services treat a non-None g.site_id as a
    hard scope: records of other sites are reported as not found.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            actor_id = _header_int("X-Actor-Id")
            site_id = _header_int("X-Site-Id")
        except ValueError as e:
            return jsonify({"error": f"Invalid {e} header"}), 400

        if actor_id is None:
            return jsonify({"error": "Actor identity required"}), 401

        g.actor_id = actor_id
        g.site_id = site_id
        return f(*args, **kwargs)

    return decorated_function
