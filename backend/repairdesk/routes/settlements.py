# Overview: Flask API routes for cash settlements; parses input and returns JSON responses.

# backend/repairdesk/routes/settlements.py
"""
Cash Settlement API Routes

WHY: Each branch closes its drawer once per business day; managers review
and verify the result.

SECURITY:
- VIEW_SETTLEMENTS to open today's settlement and read one settlement
- PREPARE_SETTLEMENTS for denominations, notes and submit
- VIEW_SETTLEMENT_HISTORY to list settlements and read the audit trail
- VERIFY_SETTLEMENTS for verify, reject and carry-forward
- Users without VIEW_ALL_BRANCHES are pinned to their own branch
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..extensions import db
from ..services import settlement_service, tenant_service
from ..services.settlement_service import InvalidStateTransition
from ..services.settlement_totals import TotalsFetchError
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    coerce_int,
    parse_date_value,
    parse_positive_int,
)
from ..decorators import require_auth, require_permission


settlements_bp = Blueprint("settlements", __name__, url_prefix="/api/cash-settlements")

DOMAIN_ERRORS = (InvalidStateTransition, NotFoundError, ConflictError, ValidationError, TotalsFetchError)


def _error_response(e: Exception):
    db.session.rollback()
    if isinstance(e, InvalidStateTransition):
        return jsonify(e.to_dict()), 409
    if isinstance(e, NotFoundError):
        return jsonify({"error": str(e)}), 404
    if isinstance(e, ConflictError):
        return jsonify({"error": str(e)}), 409
    if isinstance(e, TotalsFetchError):
        current_app.logger.warning("Settlement totals unavailable: %s", e)
        return jsonify({"error": "Settlement totals are temporarily unavailable; please retry"}), 503
    return jsonify({"error": str(e)}), 400


def _ensure_branch_scope(branch_id: int | None):
    if not tenant_service.check_branch_scope(branch_id):
        return jsonify({"error": "Branch access denied"}), 403
    return None


def _load_in_scope(settlement_id: int):
    """Returns (settlement, None) or (None, error_response)."""
    settlement = settlement_service.get_settlement(settlement_id, g.company_id)
    return settlement, _ensure_branch_scope(settlement.branch_id)


# =============================================================================
# OPEN / READ
# =============================================================================

@settlements_bp.post("/")
@settlements_bp.post("")
@require_auth
@require_permission("VIEW_SETTLEMENTS")
def create_or_get_settlement_route():
    """
    Open the settlement for a branch day (creates it on first open).

    Request body:
    {
        "branch_id": 1,               (optional; defaults to the user's branch)
        "settlement_date": "2026-01-10" (optional; defaults to today in branch time)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        branch_id = tenant_service.resolve_branch_id(data.get("branch_id"))
        settlement_date = parse_date_value("settlement_date", data.get("settlement_date"))

        scope_error = _ensure_branch_scope(branch_id)
        if scope_error:
            return scope_error

        settlement = settlement_service.create_or_get_settlement(
            g.company_id,
            branch_id,
            settlement_date,
            g.current_user.id,
        )
        return jsonify({"settlement": settlement.to_dict()}), 200

    except DOMAIN_ERRORS as e:
        return _error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to open settlement")
        return jsonify({"error": "Internal server error"}), 500


@settlements_bp.get("/today")
@require_auth
@require_permission("VIEW_SETTLEMENTS")
def today_settlement_route():
    """Open today's settlement; ?branch_id= optional for company-level users."""
    try:
        branch_id = tenant_service.resolve_branch_id(request.args.get("branch_id"))

        scope_error = _ensure_branch_scope(branch_id)
        if scope_error:
            return scope_error

        settlement = settlement_service.create_or_get_settlement(
            g.company_id,
            branch_id,
            None,
            g.current_user.id,
        )
        return jsonify({"settlement": settlement.to_dict()}), 200

    except DOMAIN_ERRORS as e:
        return _error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to open today's settlement")
        return jsonify({"error": "Internal server error"}), 500


@settlements_bp.get("/")
@settlements_bp.get("")
@require_auth
@require_permission("VIEW_SETTLEMENT_HISTORY")
def list_settlements_route():
    """
    List settlements, newest business date first.

    Query params: branch_id, start_date, end_date, status, page, limit
    """
    try:
        raw_branch = request.args.get("branch_id")
        branch_id = coerce_int("branch_id", raw_branch) if raw_branch else None

        if not tenant_service.can_view_all_branches():
            if branch_id is None:
                branch_id = g.branch_id
            scope_error = _ensure_branch_scope(branch_id)
            if scope_error:
                return scope_error

        status = request.args.get("status") or None
        result = settlement_service.list_settlements(
            g.company_id,
            branch_id=branch_id,
            start_date=parse_date_value("start_date", request.args.get("start_date")),
            end_date=parse_date_value("end_date", request.args.get("end_date")),
            status=status.upper() if status else None,
            page=parse_positive_int("page", request.args.get("page"), default=1),
            limit=parse_positive_int(
                "limit",
                request.args.get("limit"),
                default=20,
                maximum=current_app.config.get("SETTLEMENT_PAGE_LIMIT_MAX", 100),
            ),
        )
        return jsonify(result), 200

    except DOMAIN_ERRORS as e:
        return _error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to list settlements")
        return jsonify({"error": "Internal server error"}), 500


@settlements_bp.get("/<int:settlement_id>")
@require_auth
@require_permission("VIEW_SETTLEMENTS")
def get_settlement_route(settlement_id: int):
    try:
        settlement, scope_error = _load_in_scope(settlement_id)
        if scope_error:
            return scope_error
        return jsonify({"settlement": settlement.to_dict()}), 200

    except DOMAIN_ERRORS as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get settlement %s", settlement_id)
        return jsonify({"error": "Internal server error"}), 500


@settlements_bp.get("/<int:settlement_id>/events")
@require_auth
@require_permission("VIEW_SETTLEMENT_HISTORY")
def settlement_events_route(settlement_id: int):
    """Audit trail for one settlement, oldest first."""
    try:
        _settlement, scope_error = _load_in_scope(settlement_id)
        if scope_error:
            return scope_error
        events = settlement_service.get_settlement_events(settlement_id, g.company_id)
        return jsonify({"events": [e.to_dict() for e in events]}), 200

    except DOMAIN_ERRORS as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list events for settlement %s", settlement_id)
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# PREPARATION (branch staff)
# =============================================================================

@settlements_bp.put("/<int:settlement_id>/denominations")
@require_auth
@require_permission("PREPARE_SETTLEMENTS")
def update_denominations_route(settlement_id: int):
    """
    Record the physical drawer count.

    Request body (missing keys count as zero):
    {
        "note_2000": 0, "note_500": 2, "note_200": 0, "note_100": 1,
        "note_50": 0, "note_20": 0, "note_10": 0,
        "coin_5": 0, "coin_2": 0, "coin_1": 0
    }
    """
    try:
        _settlement, scope_error = _load_in_scope(settlement_id)
        if scope_error:
            return scope_error

        settlement = settlement_service.update_denominations(
            settlement_id,
            g.company_id,
            request.get_json(silent=True),
            user_id=g.current_user.id,
        )
        return jsonify({"settlement": settlement.to_dict()}), 200

    except DOMAIN_ERRORS as e:
        return _error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update denominations for settlement %s", settlement_id)
        return jsonify({"error": "Internal server error"}), 500


@settlements_bp.put("/<int:settlement_id>/notes")
@require_auth
@require_permission("PREPARE_SETTLEMENTS")
def update_notes_route(settlement_id: int):
    """Request body: {"notes": "Drawer short by 5; coin count pending"}"""
    try:
        data = request.get_json(silent=True) or {}
        notes = data.get("notes")
        if notes is not None and not isinstance(notes, str):
            raise ValidationError("notes must be a string")

        _settlement, scope_error = _load_in_scope(settlement_id)
        if scope_error:
            return scope_error

        settlement = settlement_service.update_notes(
            settlement_id,
            g.company_id,
            notes,
            user_id=g.current_user.id,
        )
        return jsonify({"settlement": settlement.to_dict()}), 200

    except DOMAIN_ERRORS as e:
        return _error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update notes for settlement %s", settlement_id)
        return jsonify({"error": "Internal server error"}), 500


@settlements_bp.post("/<int:settlement_id>/submit")
@require_auth
@require_permission("PREPARE_SETTLEMENTS")
def submit_settlement_route(settlement_id: int):
    try:
        _settlement, scope_error = _load_in_scope(settlement_id)
        if scope_error:
            return scope_error

        settlement = settlement_service.submit_settlement(settlement_id, g.company_id, g.current_user.id)
        return jsonify({"settlement": settlement.to_dict()}), 200

    except DOMAIN_ERRORS as e:
        return _error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to submit settlement %s", settlement_id)
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# REVIEW (managers)
# =============================================================================

@settlements_bp.post("/<int:settlement_id>/verify")
@require_auth
@require_permission("VERIFY_SETTLEMENTS")
def verify_settlement_route(settlement_id: int):
    """Request body (optional): {"notes": "Counted twice, matches"}"""
    try:
        data = request.get_json(silent=True) or {}
        notes = data.get("notes")
        if notes is not None and not isinstance(notes, str):
            raise ValidationError("notes must be a string")

        _settlement, scope_error = _load_in_scope(settlement_id)
        if scope_error:
            return scope_error

        settlement = settlement_service.verify_settlement(
            settlement_id,
            g.company_id,
            g.current_user.id,
            notes=notes,
        )
        return jsonify({"settlement": settlement.to_dict()}), 200

    except DOMAIN_ERRORS as e:
        return _error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to verify settlement %s", settlement_id)
        return jsonify({"error": "Internal server error"}), 500


@settlements_bp.post("/<int:settlement_id>/reject")
@require_auth
@require_permission("VERIFY_SETTLEMENTS")
def reject_settlement_route(settlement_id: int):
    """Request body: {"reason": "UPI total does not match bank statement"} (required)"""
    try:
        data = request.get_json(silent=True) or {}
        reason = data.get("reason")
        if reason is not None and not isinstance(reason, str):
            raise ValidationError("reason must be a string")

        _settlement, scope_error = _load_in_scope(settlement_id)
        if scope_error:
            return scope_error

        settlement = settlement_service.reject_settlement(
            settlement_id,
            g.company_id,
            g.current_user.id,
            reason,
        )
        return jsonify({"settlement": settlement.to_dict()}), 200

    except DOMAIN_ERRORS as e:
        return _error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to reject settlement %s", settlement_id)
        return jsonify({"error": "Internal server error"}), 500


@settlements_bp.post("/<int:settlement_id>/carry-forward")
@require_auth
@require_permission("VERIFY_SETTLEMENTS")
def carry_forward_route(settlement_id: int):
    """Copy a verified settlement's closing balances into the next day's opening balances."""
    try:
        _settlement, scope_error = _load_in_scope(settlement_id)
        if scope_error:
            return scope_error

        rows = settlement_service.carry_forward_closing_balances(settlement_id, g.company_id, g.current_user.id)
        return jsonify({"opening_balances": [row.to_dict() for row in rows]}), 200

    except DOMAIN_ERRORS as e:
        return _error_response(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to carry forward settlement %s", settlement_id)
        return jsonify({"error": "Internal server error"}), 500
