# Overview: Flask API routes for invoices; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_actor
from ..errors import BadRequestError, DomainError
from ..services import invoice_service
from ..time_utils import parse_iso_datetime

invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


def _date_arg(name: str):
    try:
        return parse_iso_datetime(request.args.get(name))
    except ValueError:
        raise BadRequestError(f"{name} must be an ISO-8601 datetime")


@invoices_bp.post("")
@require_actor
def generate_invoice_route():
    """
    Issue an invoice.

    Body: {"source_type": "ORDER" | "RENTAL", "source_id", "due_date"?}
    Normally invoices are issued by order/rental approval; this is the
    manual path for sources whose invoice was never issued.
    """
    try:
        data = request.get_json(silent=True) or {}
        source_type = data.get("source_type")
        source_id = data.get("source_id")

        if not source_type or not source_id:
            return jsonify({"error": "source_type and source_id required"}), 400

        due_date = None
        if data.get("due_date"):
            try:
                due_date = parse_iso_datetime(data["due_date"])
            except ValueError:
                return jsonify({"error": "due_date must be an ISO-8601 datetime"}), 400

        invoice = invoice_service.generate(
            source_type,
            int(source_id),
            due_date=due_date,
            actor_id=g.actor_id,
            site_id=g.site_id,
        )
        return jsonify({"invoice": invoice.to_dict()}), 201

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except (TypeError, ValueError):
        return jsonify({"error": "source_id must be an integer"}), 400
    except Exception:
        current_app.logger.exception("Failed to generate invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("")
@require_actor
def list_invoices_route():
    try:
        result = invoice_service.list_invoices(
            status=request.args.get("status"),
            client_id=request.args.get("client_id", type=int),
            site_id=g.site_id,
            start_date=_date_arg("start_date"),
            end_date=_date_arg("end_date"),
            page=request.args.get("page", 1, type=int),
            limit=request.args.get("limit", type=int),
        )
        return jsonify({
            "invoices": [inv.to_dict() for inv in result["data"]],
            "pagination": result["pagination"],
        }), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list invoices")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/<int:invoice_id>")
@require_actor
def get_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.get_invoice(invoice_id, site_id=g.site_id)
        return jsonify({"invoice": invoice.to_dict()}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/number/<string:invoice_number>")
@require_actor
def get_invoice_by_number_route(invoice_number: str):
    try:
        invoice = invoice_service.get_invoice_by_number(invoice_number, site_id=g.site_id)
        return jsonify({"invoice": invoice.to_dict()}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get invoice by number")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/<int:invoice_id>/mark-paid")
@require_actor
def mark_paid_route(invoice_id: int):
    try:
        data = request.get_json(silent=True) or {}
        invoice = invoice_service.mark_paid(
            invoice_id, data.get("amount"), actor_id=g.actor_id, site_id=g.site_id
        )
        return jsonify({"invoice": invoice.to_dict()}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to mark invoice paid")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/<int:invoice_id>/void")
@require_actor
def void_invoice_route(invoice_id: int):
    try:
        data = request.get_json(silent=True) or {}
        invoice = invoice_service.void_invoice(
            invoice_id, data.get("reason"), actor_id=g.actor_id, site_id=g.site_id
        )
        return jsonify({"invoice": invoice.to_dict()}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to void invoice")
        return jsonify({"error": "Internal server error"}), 500
