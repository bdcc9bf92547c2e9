"""
AWS Lambda handler for the Commission Settlement API.

This is the production entry point for AWS Lambda deployments.
For local development, use main.py (Flask app) instead.
"""

import base64
import json
import logging
import os

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

# Configure logging
logger = logging.getLogger()
logger.setLevel(logging.INFO)

# Environment (dev, staging, prod)
ENVIRONMENT = os.environ.get("ENVIRONMENT", "dev")

# Initialize service (reused across warm invocations)
service = SettlementService.from_env()
output = OutputBuilder()

# CORS headers for API Gateway
CORS_HEADERS = {
    "Content-Type": "application/json",
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type,Authorization,X-Actor",
    "Access-Control-Allow-Methods": "GET,POST,PATCH,DELETE,OPTIONS",
}

ERROR_STATUS_CODES = [
    (ValidationError, 400),
    (NotFound, 404),
    (NotAuthorized, 403),
    (ConcurrentModification, 409),
    (StateViolation, 409),
    (RequestCancelled, 409),
    (TransientFailure, 503),
]


def _response(status_code, body):
    return {"statusCode": status_code, "headers": CORS_HEADERS, "body": json.dumps(body)}


def lambda_handler(event, context):
    """
    Main Lambda entry point.

    Serves the same operations as the Flask app:
    - GET /health, GET /api
    - /settlements: list, create, export, bulk delete, close-period
    - /settlements/{id}: get, update, delete, lifecycle actions, lines,
      summary, adjustments, audit, export, payouts
    - /payouts/{id}: details, status, receipt
    - /offices, /teams, /agents, /commissions/eligible, /catalog/refresh
    - OPTIONS (CORS preflight)
    """
    # Handle CORS preflight
    http_method = event.get("httpMethod") or event.get("requestContext", {}).get("http", {}).get("method", "")
    if http_method == "OPTIONS":
        return {"statusCode": 200, "headers": CORS_HEADERS, "body": ""}

    # Get path (supports both REST API and HTTP API formats)
    path = (event.get("path") or event.get("rawPath", "")).rstrip("/") or "/"
    segments = [s for s in path.split("/") if s]

    # Route to appropriate handler
    if path == "/health" and http_method == "GET":
        return handle_health()
    elif path == "/api" and http_method == "GET":
        return handle_api_info()

    route = resolve_route(http_method, segments)
    if route is None:
        return _response(404, {"error": "Not found", "path": path})
    handler, params = route
    return handle_errors(lambda e: handler(e, *params), event)


def resolve_route(http_method, segments):
    """Map a method and path segments to (handler, path params)."""
    key = (http_method, len(segments))

    if segments[:1] == ["settlements"]:
        if key == ("GET", 1):
            return handle_list_settlements, ()
        if key == ("POST", 1):
            return handle_create_settlement, ()
        if key == ("GET", 2) and segments[1] == "export":
            return handle_export_settlements, ()
        if key == ("POST", 2) and segments[1] == "delete":
            return handle_delete_settlements, ()
        if key == ("POST", 2) and segments[1] == "close-period":
            return handle_close_period, ()
        if len(segments) == 2:
            handler = SETTLEMENT_ROUTES.get(http_method)
            return (handler, (segments[1],)) if handler else None
        if len(segments) == 3:
            handler = SETTLEMENT_SUBROUTES.get((http_method, segments[2]))
            return (handler, (segments[1],)) if handler else None

    elif segments[:1] == ["payouts"]:
        if key == ("PATCH", 2):
            return handle_update_payout_details, (segments[1],)
        if key == ("POST", 3) and segments[2] == "status":
            return handle_update_payout_status, (segments[1],)
        if key == ("GET", 3) and segments[2] == "receipt":
            return handle_get_payout_receipt, (segments[1],)

    elif http_method == "GET" and len(segments) == 1 and segments[0] in REFERENCE_ROUTES:
        return REFERENCE_ROUTES[segments[0]], ()

    elif key == ("GET", 2) and segments == ["commissions", "eligible"]:
        return handle_list_eligible, ()

    elif key == ("POST", 2) and segments == ["catalog", "refresh"]:
        return handle_refresh_catalog, ()

    return None


def handle_health():
    """Health check endpoint."""
    return _response(200, {"status": "healthy", "environment": ENVIRONMENT})


def handle_api_info():
    """API information endpoint."""
    return _response(
        200,
        {
            "status": "ok",
            "message": "Commission Settlement API",
            "version": "1.0",
            "environment": ENVIRONMENT,
            "runtime": "AWS Lambda",
            "endpoints": {
                "settlements": "/settlements [GET, POST]",
                "settlement": "/settlements/{id} [GET, PATCH, DELETE]",
                "close_period": "/settlements/close-period [POST]",
                "payouts": "/settlements/{id}/payouts [GET, POST]",
                "reference": "/offices, /teams, /agents, /commissions/eligible [GET]",
                "health": "/health [GET]",
            },
        },
    )


def parse_body(event, required=True):
    """Decode the JSON body, including base64-encoded API Gateway payloads."""
    body = event.get("body") or ""
    if isinstance(body, str):
        if not body:
            if not required:
                return {}
            raise ValidationError("No input data provided")
        if event.get("isBase64Encoded"):
            body = base64.b64decode(body).decode("utf-8")
        return json.loads(body)
    return body or {}


def actor_of(event):
    headers = event.get("headers") or {}
    return headers.get("X-Actor") or headers.get("x-actor") or "system"


def handle_errors(handler, event):
    """Run a route handler and map engine errors to status codes."""
    try:
        return handler(event)

    except json.JSONDecodeError as e:
        logger.error(f"JSON parse error: {str(e)}")
        return _response(400, {"error": f"Invalid JSON: {str(e)}", "status": "failed"})

    except SettlementError as e:
        code = next((c for cls, c in ERROR_STATUS_CODES if isinstance(e, cls)), 500)
        logger.warning(f"{e.status}: {str(e)}")
        body = {"error": str(e), "status": e.status}
        if isinstance(e, ValidationError):
            body["errors"] = e.errors
        return _response(code, body)

    except (ValueError, KeyError, TypeError) as e:
        # Malformed payloads (missing fields, invalid types, etc.)
        logger.error(f"Validation error: {str(e)}")
        return _response(400, {"error": f"Validation error: {str(e)}", "status": "validation_failed"})

    except Exception as e:
        # Unexpected errors - log details but return generic message to avoid information disclosure
        logger.error(f"Unexpected processing error: {str(e)}", exc_info=True)
        return _response(500, {"error": "An unexpected error occurred during processing", "status": "failed"})


def _query(event):
    return event.get("queryStringParameters") or {}


def _result(result):
    return _response(200, {"success": result.success, "message": result.message})


def _artifact_response(artifact):
    """Binary-safe artifact body for API Gateway."""
    return {
        "statusCode": 200,
        "headers": {
            **CORS_HEADERS,
            "Content-Type": artifact.content_type,
            "Content-Disposition": f'attachment; filename="{artifact.filename}"',
        },
        "body": base64.b64encode(artifact.content).decode("ascii"),
        "isBase64Encoded": True,
    }


# =============================================================================
# Settlements
# =============================================================================

def handle_list_settlements(event):
    page = service.list_settlements(_query(event))
    return _response(200, output.page(page))


def handle_create_settlement(event):
    input_data = parse_body(event)
    logger.info(f"Creating settlement: {input_data.get('name', 'Unknown')}")
    settlement = service.create_settlement(input_data, actor_of(event))
    logger.info(f"Settlement created: {settlement.id}")
    return _response(201, output.settlement(settlement, include_lines=True))


def handle_export_settlements(event):
    filters = dict(_query(event))
    fmt = filters.pop("format", "csv")
    return _artifact_response(service.export_settlements(filters, fmt))


def handle_delete_settlements(event):
    input_data = parse_body(event)
    return _result(service.delete_settlements(input_data.get("ids", []), actor_of(event)))


def handle_close_period(event):
    input_data = parse_body(event)
    report = service.close_period(
        input_data.get("period"),
        input_data,
        actor_of(event),
        input_data.get("scope_kind"),
        input_data.get("scope_id"),
    )
    return _response(200 if report.success else 409, output.closure_report(report))


def handle_get_settlement(event, settlement_id):
    settlement = service.get_settlement(settlement_id)
    return _response(200, output.settlement(settlement, include_lines=True))


def handle_update_settlement(event, settlement_id):
    input_data = parse_body(event)
    expected_version = input_data.pop("version", None)
    settlement = service.update_settlement(settlement_id, input_data, actor_of(event), expected_version)
    return _response(200, output.settlement(settlement))


def handle_delete_settlement(event, settlement_id):
    return _result(service.delete_settlement(settlement_id, actor_of(event)))


def handle_recalculate(event, settlement_id):
    return _result(service.recalculate_settlement(settlement_id, actor_of(event)))


def handle_approve(event, settlement_id):
    return _result(service.approve_settlement(settlement_id, actor_of(event)))


def handle_close(event, settlement_id):
    return _result(service.close_settlement(settlement_id, parse_body(event), actor_of(event)))


def handle_reopen(event, settlement_id):
    return _result(service.reopen_settlement(settlement_id, actor_of(event)))


def handle_list_lines(event, settlement_id):
    lines = service.list_settlement_lines(settlement_id)
    return _response(200, [output.line(line) for line in lines])


def handle_summary(event, settlement_id):
    return _response(200, output.summary(service.get_settlement_summary(settlement_id)))


def handle_apply_adjustment(event, settlement_id):
    input_data = parse_body(event)
    expected_version = input_data.pop("version", None)
    adjustment = service.apply_adjustment(settlement_id, input_data, actor_of(event), expected_version)
    return _response(201, output.adjustment(adjustment))


def handle_audit_trail(event, settlement_id):
    entries = service.get_audit_trail(settlement_id)
    return _response(200, [output.audit_entry(entry) for entry in entries])


def handle_export_settlement(event, settlement_id):
    fmt = _query(event).get("format", "csv")
    return _artifact_response(service.export_settlement(settlement_id, fmt))


# =============================================================================
# Payouts
# =============================================================================

def handle_list_payouts(event, settlement_id):
    return _response(200, [output.payout(p) for p in service.list_payouts(settlement_id)])


def handle_generate_payouts(event, settlement_id):
    payouts = service.generate_payouts(settlement_id, actor_of(event))
    return _response(200, [output.payout(p) for p in payouts])


def handle_update_payout_details(event, payout_id):
    input_data = parse_body(event)
    payout = service.update_payout_details(
        payout_id,
        actor_of(event),
        method=input_data.get("method"),
        iban=input_data.get("iban"),
        concept=input_data.get("concept"),
    )
    return _response(200, output.payout(payout))


def handle_update_payout_status(event, payout_id):
    input_data = parse_body(event)
    return _result(
        service.update_payout_status(payout_id, input_data.get("status"), actor_of(event), input_data.get("paid_at"))
    )


def handle_get_payout_receipt(event, payout_id):
    payout = service.get_payout_receipt(payout_id)
    return _response(200, {"receipt_ref": payout.receipt_ref, "payout": output.payout(payout)})


# =============================================================================
# Reference data
# =============================================================================

def handle_list_offices(event):
    return _response(200, [{"id": o.id, "name": o.name, "code": o.code} for o in service.list_offices()])


def handle_list_teams(event):
    teams = service.list_teams(_query(event).get("office_id"))
    return _response(200, [{"id": t.id, "name": t.name, "office_id": t.office_id} for t in teams])


def handle_list_agents(event):
    query = _query(event)
    agents = service.list_agents(query.get("team_id"), query.get("office_id"))
    return _response(200, [
        {"id": a.id, "name": a.name, "team_id": a.team_id, "office_id": a.office_id, "email": a.email}
        for a in agents
    ])


def handle_list_eligible(event):
    filters = dict(_query(event))
    if "only_approved" in filters:
        filters["only_approved"] = filters["only_approved"].lower() != "false"
    items = service.list_eligible_commissions(filters)
    return _response(200, [output.commission_item(item) for item in items])


def handle_refresh_catalog(event):
    service.refresh_catalog()
    return _response(200, {"status": "ok"})


SETTLEMENT_ROUTES = {
    "GET": handle_get_settlement,
    "PATCH": handle_update_settlement,
    "DELETE": handle_delete_settlement,
}

SETTLEMENT_SUBROUTES = {
    ("POST", "recalculate"): handle_recalculate,
    ("POST", "approve"): handle_approve,
    ("POST", "close"): handle_close,
    ("POST", "reopen"): handle_reopen,
    ("GET", "lines"): handle_list_lines,
    ("GET", "summary"): handle_summary,
    ("POST", "adjustments"): handle_apply_adjustment,
    ("GET", "audit"): handle_audit_trail,
    ("GET", "export"): handle_export_settlement,
    ("GET", "payouts"): handle_list_payouts,
    ("POST", "payouts"): handle_generate_payouts,
}

REFERENCE_ROUTES = {
    "offices": handle_list_offices,
    "teams": handle_list_teams,
    "agents": handle_list_agents,
}
