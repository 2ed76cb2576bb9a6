# Overview: Flask API routes for payments; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_actor
from ..errors import DomainError
from ..services import payment_service

payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


@payments_bp.post("/initiate")
@require_actor
def initiate_payment_route():
    """
    Start a mobile-money charge for an invoice's outstanding balance.

    Body: {"invoice_id", "phone_number"}
    Gateway failures come back with the gateway's mapped status; no payment
    row exists in that case, so the request can simply be repeated.
    """
    try:
        data = request.get_json(silent=True) or {}
        invoice_id = data.get("invoice_id")
        phone_number = data.get("phone_number")

        if not invoice_id or not phone_number:
            return jsonify({"error": "invoice_id and phone_number required"}), 400

        handle = payment_service.initiate_payment(
            int(invoice_id), phone_number, actor_id=g.actor_id, site_id=g.site_id
        )
        return jsonify({"payment": handle.to_dict()}), 201

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except (TypeError, ValueError):
        return jsonify({"error": "invoice_id must be an integer"}), 400
    except Exception:
        current_app.logger.exception("Failed to initiate payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("")
@require_actor
def list_payments_route():
    try:
        payments = payment_service.list_payments(
            invoice_id=request.args.get("invoice_id", type=int),
            status=request.args.get("status"),
            site_id=g.site_id,
        )
        return jsonify({"payments": [p.to_dict() for p in payments]}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list payments")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/<int:payment_id>")
@require_actor
def get_payment_route(payment_id: int):
    try:
        payment = payment_service.get_payment(payment_id, site_id=g.site_id)
        return jsonify({"payment": payment.to_dict()}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/<int:payment_id>/mark-paid")
@require_actor
def mark_payment_paid_route(payment_id: int):
    try:
        payment = payment_service.mark_paid_manually(payment_id, g.actor_id, site_id=g.site_id)
        return jsonify({"payment": payment.to_dict()}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to mark payment paid")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/<int:payment_id>/sync")
@require_actor
def sync_payment_route(payment_id: int):
    try:
        result = payment_service.sync_payment_status(payment_id, site_id=g.site_id)
        return jsonify(result.to_dict()), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to sync payment status")
        return jsonify({"error": "Internal server error"}), 500
