from flask import Flask, request, jsonify, send_file
from flask_cors import CORS
from werkzeug.exceptions import HTTPException
from settlements import (
    ConcurrentModification,
    NotAuthorized,
    NotFound,
    OutputBuilder,
    RequestCancelled,
    SettlementError,
    SettlementService,
    StateViolation,
    TransientFailure,
    ValidationError,
)
import io
import os
import logging

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = Flask(__name__)

# Enable CORS for all routes (the back-office UI is served from another origin)
CORS(app)

# Initialize the settlement service (catalog seed and rates come from the environment)
service = SettlementService.from_env()
output = OutputBuilder()

# Most specific classes first
ERROR_STATUS_CODES = [
    (ValidationError, 400),
    (NotFound, 404),
    (NotAuthorized, 403),
    (ConcurrentModification, 409),
    (StateViolation, 409),
    (RequestCancelled, 409),
    (TransientFailure, 503),
]


def _actor():
    return request.headers.get("X-Actor") or "system"


def _body(required=False):
    data = request.get_json(force=True, silent=True)
    if required and not data:
        raise ValidationError("No input data provided")
    return data or {}


@app.errorhandler(SettlementError)
def handle_settlement_error(e):
    for error_class, code in ERROR_STATUS_CODES:
        if isinstance(e, error_class):
            break
    else:
        code = 500

    if code == 400:
        logger.warning(f"Validation error: {str(e)}")
    else:
        logger.warning(f"{e.status}: {str(e)}")

    payload = {"error": str(e), "status": e.status}
    if isinstance(e, ValidationError):
        payload["errors"] = e.errors
    return jsonify(payload), code


@app.errorhandler(ValueError)
def handle_value_error(e):
    logger.warning(f"Validation error: {str(e)}")
    return jsonify({"error": str(e), "status": "validation_failed"}), 400


@app.errorhandler(Exception)
def handle_unexpected_error(e):
    if isinstance(e, HTTPException):
        return jsonify({"error": e.description, "status": "failed"}), e.code
    logger.error(f"Processing error: {str(e)}", exc_info=True)
    return jsonify({
        "error": "An unexpected error occurred during processing",
        "status": "failed"
    }), 500


@app.route("/api", methods=["GET"])
def api_info():
    """API information endpoint"""
    return jsonify({
        "status": "ok",
        "message": "Commission Settlement API",
        "version": "1.0",
        "endpoints": {
            "settlements": "/settlements [GET, POST]",
            "settlement": "/settlements/<id> [GET, PATCH, DELETE]",
            "close_period": "/settlements/close-period [POST]",
            "payouts": "/settlements/<id>/payouts [GET, POST]",
            "reference": "/offices, /teams, /agents, /commissions/eligible [GET]",
            "health": "/health [GET]"
        }
    }), 200


@app.route("/health", methods=["GET"])
def health():
    """Health check for monitoring"""
    return jsonify({"status": "healthy"}), 200


# =============================================================================
# Settlements
# =============================================================================

@app.route("/settlements", methods=["GET"])
def list_settlements():
    page = service.list_settlements(request.args.to_dict())
    return jsonify(output.page(page)), 200


@app.route("/settlements", methods=["POST"])
def create_settlement():
    """Run the four wizard stages for a complete payload"""
    input_data = _body(required=True)
    logger.info(f"Creating settlement: {input_data.get('name', 'Unknown')}")
    settlement = service.create_settlement(input_data, _actor())
    return jsonify(output.settlement(settlement, include_lines=True)), 201


@app.route("/settlements/export", methods=["GET"])
def export_settlements():
    args = request.args.to_dict()
    fmt = args.pop("format", "csv")
    artifact = service.export_settlements(args, fmt)
    return _send_artifact(artifact)


@app.route("/settlements/delete", methods=["POST"])
def delete_settlements():
    input_data = _body(required=True)
    result = service.delete_settlements(input_data.get("ids", []), _actor())
    return jsonify({"success": result.success, "message": result.message}), 200


@app.route("/settlements/close-period", methods=["POST"])
def close_period():
    input_data = _body(required=True)
    report = service.close_period(
        input_data.get("period"),
        input_data,
        _actor(),
        input_data.get("scope_kind"),
        input_data.get("scope_id"),
    )
    return jsonify(output.closure_report(report)), 200 if report.success else 409


@app.route("/settlements/<settlement_id>", methods=["GET"])
def get_settlement(settlement_id):
    settlement = service.get_settlement(settlement_id)
    return jsonify(output.settlement(settlement, include_lines=True)), 200


@app.route("/settlements/<settlement_id>", methods=["PATCH"])
def update_settlement(settlement_id):
    input_data = _body(required=True)
    expected_version = input_data.pop("version", None)
    settlement = service.update_settlement(settlement_id, input_data, _actor(), expected_version)
    return jsonify(output.settlement(settlement)), 200


@app.route("/settlements/<settlement_id>", methods=["DELETE"])
def delete_settlement(settlement_id):
    result = service.delete_settlement(settlement_id, _actor())
    return jsonify({"success": result.success, "message": result.message}), 200


@app.route("/settlements/<settlement_id>/<action>", methods=["POST"])
def settlement_action(settlement_id, action):
    """Lifecycle actions: recalculate, approve, close, reopen"""
    if action == "recalculate":
        result = service.recalculate_settlement(settlement_id, _actor())
    elif action == "approve":
        result = service.approve_settlement(settlement_id, _actor())
    elif action == "close":
        result = service.close_settlement(settlement_id, _body(required=True), _actor())
    elif action == "reopen":
        result = service.reopen_settlement(settlement_id, _actor())
    else:
        return jsonify({"error": f"Unknown action: {action}", "status": "failed"}), 404
    return jsonify({"success": result.success, "message": result.message}), 200


@app.route("/settlements/<settlement_id>/lines", methods=["GET"])
def list_settlement_lines(settlement_id):
    lines = service.list_settlement_lines(settlement_id)
    return jsonify([output.line(line) for line in lines]), 200


@app.route("/settlements/<settlement_id>/summary", methods=["GET"])
def get_settlement_summary(settlement_id):
    return jsonify(output.summary(service.get_settlement_summary(settlement_id))), 200


@app.route("/settlements/<settlement_id>/adjustments", methods=["POST"])
def apply_adjustment(settlement_id):
    input_data = _body(required=True)
    expected_version = input_data.pop("version", None)
    adjustment = service.apply_adjustment(settlement_id, input_data, _actor(), expected_version)
    return jsonify(output.adjustment(adjustment)), 201


@app.route("/settlements/<settlement_id>/audit", methods=["GET"])
def get_audit_trail(settlement_id):
    entries = service.get_audit_trail(settlement_id)
    return jsonify([output.audit_entry(entry) for entry in entries]), 200


@app.route("/settlements/<settlement_id>/export", methods=["GET"])
def export_settlement(settlement_id):
    artifact = service.export_settlement(settlement_id, request.args.get("format", "csv"))
    return _send_artifact(artifact)


def _send_artifact(artifact):
    return send_file(
        io.BytesIO(artifact.content),
        mimetype=artifact.content_type,
        as_attachment=True,
        download_name=artifact.filename,
    )


# =============================================================================
# Payouts
# =============================================================================

@app.route("/settlements/<settlement_id>/payouts", methods=["GET"])
def list_payouts(settlement_id):
    payouts = service.list_payouts(settlement_id)
    return jsonify([output.payout(p) for p in payouts]), 200


@app.route("/settlements/<settlement_id>/payouts", methods=["POST"])
def generate_payouts(settlement_id):
    payouts = service.generate_payouts(settlement_id, _actor())
    return jsonify([output.payout(p) for p in payouts]), 200


@app.route("/payouts/<payout_id>", methods=["PATCH"])
def update_payout_details(payout_id):
    input_data = _body(required=True)
    payout = service.update_payout_details(
        payout_id,
        _actor(),
        method=input_data.get("method"),
        iban=input_data.get("iban"),
        concept=input_data.get("concept"),
    )
    return jsonify(output.payout(payout)), 200


@app.route("/payouts/<payout_id>/status", methods=["POST"])
def update_payout_status(payout_id):
    input_data = _body(required=True)
    result = service.update_payout_status(
        payout_id, input_data.get("status"), _actor(), input_data.get("paid_at")
    )
    return jsonify({"success": result.success, "message": result.message}), 200


@app.route("/payouts/<payout_id>/receipt", methods=["GET"])
def get_payout_receipt(payout_id):
    payout = service.get_payout_receipt(payout_id)
    return jsonify({"receipt_ref": payout.receipt_ref, "payout": output.payout(payout)}), 200


# =============================================================================
# Reference data
# =============================================================================

@app.route("/offices", methods=["GET"])
def list_offices():
    return jsonify([{"id": o.id, "name": o.name, "code": o.code} for o in service.list_offices()]), 200


@app.route("/teams", methods=["GET"])
def list_teams():
    teams = service.list_teams(request.args.get("office_id"))
    return jsonify([{"id": t.id, "name": t.name, "office_id": t.office_id} for t in teams]), 200


@app.route("/agents", methods=["GET"])
def list_agents():
    agents = service.list_agents(request.args.get("team_id"), request.args.get("office_id"))
    return jsonify([
        {"id": a.id, "name": a.name, "team_id": a.team_id, "office_id": a.office_id, "email": a.email}
        for a in agents
    ]), 200


@app.route("/commissions/eligible", methods=["GET"])
def list_eligible_commissions():
    filters = request.args.to_dict()
    if "only_approved" in filters:
        filters["only_approved"] = filters["only_approved"].lower() != "false"
    items = service.list_eligible_commissions(filters)
    return jsonify([output.commission_item(item) for item in items]), 200


@app.route("/catalog/refresh", methods=["POST"])
def refresh_catalog():
    service.refresh_catalog()
    return jsonify({"status": "ok"}), 200


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8080))
    app.run(host="0.0.0.0", port=port, debug=False)
