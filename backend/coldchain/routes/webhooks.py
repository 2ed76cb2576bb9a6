# Overview: Inbound payment gateway callbacks; signature check and reconciliation dispatch.

from flask import Blueprint, current_app, jsonify, request

from ..errors import DomainError
from ..services import payment_service

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/api/webhooks")

SIGNATURE_HEADERS = ("X-Signature", "X-Momo-Signature")


def _signature_error(raw_body: bytes):
    """
    Return an error response if the request must be refused, else None.

    - Secret configured: the HMAC over the raw body must match.
    - No secret in sandbox: allowed, with a warning.
    - No secret anywhere else: refused.
    """
    secret = current_app.config.get("MOMO_WEBHOOK_SECRET") or ""
    environment = current_app.config.get("MOMO_ENVIRONMENT", "sandbox")

    if not secret:
        if environment == "sandbox":
            current_app.logger.warning("MOMO_WEBHOOK_SECRET not configured; accepting unsigned webhook (sandbox)")
            return None
        current_app.logger.error("MOMO_WEBHOOK_SECRET not configured; refusing webhook")
        return jsonify({"error": "Webhook authentication not configured"}), 401

    signature = next((request.headers.get(h) for h in SIGNATURE_HEADERS if request.headers.get(h)), None)
    if not signature:
        current_app.logger.warning("Webhook signature missing in request headers")
        return jsonify({"error": "Webhook signature missing"}), 401

    if not payment_service.verify_webhook_signature(raw_body, signature, secret):
        current_app.logger.error("Invalid webhook signature")
        return jsonify({"error": "Invalid webhook signature"}), 401

    return None


@webhooks_bp.post("/momo")
def momo_webhook_route():
    """
    MTN MoMo payment callback.

    Body: {"transactionRef", "status": "SUCCESSFUL" | "PAID" | "FAILED" | "PENDING",
           "amount"?, "reason"?}
    Unknown references and repeat deliveries answer 200 so the gateway
    stops retrying.
    """
    try:
        raw_body = request.get_data(cache=True)
        refused = _signature_error(raw_body)
        if refused is not None:
            return refused

        data = request.get_json(silent=True) or {}
        transaction_ref = data.get("transactionRef") or data.get("transaction_ref")
        status = data.get("status")

        if not transaction_ref or not status:
            return jsonify({"error": "transactionRef and status required"}), 400

        current_app.logger.info("Received MTN MoMo webhook: %s", transaction_ref)
        result = payment_service.process_webhook(
            transaction_ref,
            status,
            data.get("amount"),
            data.get("reason"),
        )
        return jsonify({"status": "success", **result.to_dict()}), 200

    except DomainError as e:
        current_app.logger.warning("Webhook rejected: %s", e.message)
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to process webhook")
        return jsonify({"error": "Internal server error"}), 500
