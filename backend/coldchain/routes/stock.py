# Overview: Flask API routes for the stock ledger; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_actor
from ..errors import BadRequestError, DomainError
from ..services import stock_ledger_service
from ..time_utils import parse_iso_datetime

stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock-movements")


@stock_bp.post("")
@require_actor
def record_movement_route():
    """
    Record a stock movement.

    Body: {"product_id", "quantity_kg", "direction": "IN" | "OUT", "reason"?, "cold_room_id"?}
    """
    try:
        data = request.get_json(silent=True) or {}
        product_id = data.get("product_id")
        direction = data.get("direction")

        if not product_id or not direction:
            return jsonify({"error": "product_id and direction required"}), 400

        movement = stock_ledger_service.record_movement(
            product_id=int(product_id),
            quantity_kg=data.get("quantity_kg"),
            direction=direction,
            reason=data.get("reason"),
            actor_id=g.actor_id,
            cold_room_id=int(data["cold_room_id"]) if data.get("cold_room_id") is not None else None,
            site_id=g.site_id,
        )
        return jsonify({"movement": movement.to_dict()}), 201

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except (TypeError, ValueError):
        return jsonify({"error": "product_id must be an integer"}), 400
    except Exception:
        current_app.logger.exception("Failed to record stock movement")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.get("")
@require_actor
def list_movements_route():
    try:
        try:
            date_from = parse_iso_datetime(request.args.get("date_from"))
            date_to = parse_iso_datetime(request.args.get("date_to"))
        except ValueError:
            raise BadRequestError("date_from and date_to must be ISO-8601 datetimes")

        result = stock_ledger_service.list_movements(
            site_id=g.site_id,
            product_id=request.args.get("product_id", type=int),
            cold_room_id=request.args.get("cold_room_id", type=int),
            direction=request.args.get("direction"),
            date_from=date_from,
            date_to=date_to,
            page=request.args.get("page", 1, type=int),
            limit=request.args.get("limit", 20, type=int),
        )
        return jsonify({
            "movements": [m.to_dict() for m in result["data"]],
            "pagination": result["pagination"],
        }), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list stock movements")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.get("/<int:movement_id>")
@require_actor
def get_movement_route(movement_id: int):
    try:
        movement = stock_ledger_service.get_movement(movement_id, site_id=g.site_id)
        return jsonify({"movement": movement.to_dict()}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get stock movement")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.post("/<int:movement_id>/revert")
@require_actor
def revert_movement_route(movement_id: int):
    try:
        reversal = stock_ledger_service.revert_movement(movement_id, g.actor_id, site_id=g.site_id)
        return jsonify({"movement": reversal.to_dict()}), 201

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to revert stock movement")
        return jsonify({"error": "Internal server error"}), 500
