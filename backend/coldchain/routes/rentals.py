# Overview: Flask API routes for rentals; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_actor
from ..errors import DomainError
from ..services import asset_service, rental_service

rentals_bp = Blueprint("rentals", __name__, url_prefix="/api/rentals")


@rentals_bp.post("")
@require_actor
def create_rental_route():
    """
    Request a rental.

    Body: {"client_id", "site_id"?, "asset_type", "<cold_box_id|cold_plate_id|tricycle_id|cold_room_id>",
           "rental_start_date", "rental_end_date", "estimated_fee"}
    """
    try:
        data = request.get_json(silent=True) or {}
        site_id = g.site_id or data.get("site_id")
        client_id = data.get("client_id")

        if not site_id or not client_id or not data.get("asset_type"):
            return jsonify({"error": "client_id, site_id and asset_type required"}), 400

        rental = rental_service.create_rental(
            client_id=int(client_id),
            site_id=int(site_id),
            asset_type=data["asset_type"],
            rental_start_date=data.get("rental_start_date"),
            rental_end_date=data.get("rental_end_date"),
            estimated_fee=data.get("estimated_fee"),
            cold_box_id=data.get("cold_box_id"),
            cold_plate_id=data.get("cold_plate_id"),
            tricycle_id=data.get("tricycle_id"),
            cold_room_id=data.get("cold_room_id"),
            actor_id=g.actor_id,
        )
        return jsonify({"rental": rental.to_dict()}), 201

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except (TypeError, ValueError):
        return jsonify({"error": "client_id and site_id must be integers"}), 400
    except Exception:
        current_app.logger.exception("Failed to create rental")
        return jsonify({"error": "Internal server error"}), 500


@rentals_bp.get("")
@require_actor
def list_rentals_route():
    try:
        rentals = rental_service.list_rentals(
            site_id=g.site_id,
            client_id=request.args.get("client_id", type=int),
            status=request.args.get("status"),
        )
        return jsonify({"rentals": [r.to_dict() for r in rentals]}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list rentals")
        return jsonify({"error": "Internal server error"}), 500


@rentals_bp.get("/available-assets")
@require_actor
def available_assets_route():
    """AVAILABLE assets of the caller's site, grouped by asset type."""
    try:
        site_id = g.site_id or request.args.get("site_id", type=int)
        if not site_id:
            return jsonify({"error": "site_id required"}), 400

        grouped = asset_service.list_available_assets(site_id, request.args.get("asset_type"))
        return jsonify({
            "assets": {asset_type: [a.to_dict() for a in assets] for asset_type, assets in grouped.items()}
        }), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list available assets")
        return jsonify({"error": "Internal server error"}), 500


@rentals_bp.get("/<int:rental_id>")
@require_actor
def get_rental_route(rental_id: int):
    try:
        rental = rental_service.get_rental(rental_id, site_id=g.site_id)
        data = rental.to_dict()
        data["invoice"] = rental.invoice.to_dict() if rental.invoice is not None else None
        return jsonify({"rental": data}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get rental")
        return jsonify({"error": "Internal server error"}), 500


@rentals_bp.post("/<int:rental_id>/approve")
@require_actor
def approve_rental_route(rental_id: int):
    try:
        result = rental_service.approve_rental(rental_id, actor_id=g.actor_id, site_id=g.site_id)
        return jsonify({"rental": result.rental.to_dict(), "invoice": result.invoice.to_dict()}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to approve rental")
        return jsonify({"error": "Internal server error"}), 500


@rentals_bp.post("/<int:rental_id>/activate")
@require_actor
def activate_rental_route(rental_id: int):
    try:
        rental = rental_service.activate_rental(rental_id, actor_id=g.actor_id, site_id=g.site_id)
        return jsonify({"rental": rental.to_dict()}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to activate rental")
        return jsonify({"error": "Internal server error"}), 500


@rentals_bp.post("/<int:rental_id>/complete")
@require_actor
def complete_rental_route(rental_id: int):
    try:
        data = request.get_json(silent=True) or {}
        rental = rental_service.complete_rental(
            rental_id,
            actor_id=g.actor_id,
            site_id=g.site_id,
            actual_fee=data.get("actual_fee"),
        )
        return jsonify({"rental": rental.to_dict()}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to complete rental")
        return jsonify({"error": "Internal server error"}), 500
