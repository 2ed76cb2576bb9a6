# Overview: Flask API routes for orders; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_actor
from ..errors import DomainError
from ..services import order_service

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _order_payload(order) -> dict:
    data = order.to_dict()
    data["invoice"] = order.invoice.to_dict() if order.invoice is not None else None
    return data


@orders_bp.post("")
@require_actor
def create_order_route():
    """
    Create a REQUESTED order.

    Body: {"client_id", "site_id"?, "items": [{"product_id", "quantity_kg"}],
           "delivery_address"?, "notes"?}
    site_id comes from the caller's scope when it has one.
    """
    try:
        data = request.get_json(silent=True) or {}
        site_id = g.site_id or data.get("site_id")
        client_id = data.get("client_id")

        if not site_id or not client_id:
            return jsonify({"error": "client_id and site_id required"}), 400

        order = order_service.create_order(
            client_id=int(client_id),
            site_id=int(site_id),
            items=data.get("items"),
            delivery_address=data.get("delivery_address"),
            notes=data.get("notes"),
            actor_id=g.actor_id,
        )
        return jsonify({"order": _order_payload(order)}), 201

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except (TypeError, ValueError):
        return jsonify({"error": "client_id and site_id must be integers"}), 400
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("")
@require_actor
def list_orders_route():
    try:
        orders = order_service.list_orders(
            site_id=g.site_id,
            client_id=request.args.get("client_id", type=int),
            status=request.args.get("status"),
        )
        return jsonify({"orders": [o.to_dict(include_items=False) for o in orders]}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
@require_actor
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(order_id, site_id=g.site_id)
        return jsonify({"order": _order_payload(order)}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/approve")
@require_actor
def approve_order_route(order_id: int):
    """Approve: takes stock and issues the invoice in one step."""
    try:
        order = order_service.approve_order(order_id, g.actor_id, site_id=g.site_id)
        return jsonify({"order": _order_payload(order)}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to approve order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/reject")
@require_actor
def reject_order_route(order_id: int):
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.reject_order(
            order_id, data.get("reason"), actor_id=g.actor_id, site_id=g.site_id
        )
        return jsonify({"order": _order_payload(order)}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to reject order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.patch("/<int:order_id>/status")
@require_actor
def update_order_status_route(order_id: int):
    try:
        data = request.get_json(silent=True) or {}
        status = data.get("status")
        if not status:
            return jsonify({"error": "status required"}), 400

        order = order_service.update_status(
            order_id,
            status,
            actor_id=g.actor_id,
            site_id=g.site_id,
            reason=data.get("reason"),
        )
        return jsonify({"order": _order_payload(order)}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.delete("/<int:order_id>")
@require_actor
def delete_order_route(order_id: int):
    try:
        order_service.delete_order(order_id, actor_id=g.actor_id, site_id=g.site_id)
        return jsonify({"message": "Order deleted"}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete order")
        return jsonify({"error": "Internal server error"}), 500
