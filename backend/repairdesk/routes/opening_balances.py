# Overview: Flask API routes for daily opening balances; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..extensions import db
from ..services import opening_balance_service, tenant_service
from ..validation import (
    NotFoundError,
    ValidationError,
    coerce_amount_cents,
    coerce_int,
    parse_date_value,
    require_fields,
)
from ..decorators import require_auth, require_permission


opening_balances_bp = Blueprint("opening_balances", __name__, url_prefix="/api/opening-balances")


def _ensure_branch_scope(branch_id: int | None):
    if not tenant_service.check_branch_scope(branch_id):
        return jsonify({"error": "Branch access denied"}), 403
    return None


@opening_balances_bp.get("/")
@opening_balances_bp.get("")
@require_auth
@require_permission("VIEW_SETTLEMENTS")
def get_opening_balances_route():
    """Opening balances for ?branch_id=&date=YYYY-MM-DD (both required for company-level users)."""
    try:
        branch_id = tenant_service.resolve_branch_id(request.args.get("branch_id"))
        day = parse_date_value("date", request.args.get("date"))
        if day is None:
            raise ValidationError("date is required")

        scope_error = _ensure_branch_scope(branch_id)
        if scope_error:
            return scope_error

        rows = opening_balance_service.get_opening_balances(g.company_id, branch_id, day)
        return jsonify({
            "branch_id": branch_id,
            "date": day.isoformat(),
            "opening_balances": [row.to_dict() for row in rows],
        }), 200

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to get opening balances")
        return jsonify({"error": "Internal server error"}), 500


@opening_balances_bp.put("/")
@opening_balances_bp.put("")
@require_auth
@require_permission("MANAGE_OPENING_BALANCES")
def set_opening_balance_route():
    """
    Upsert one method's opening balance for a branch day.

    Request body:
    {
        "branch_id": 1,
        "payment_method_id": 1,
        "date": "2026-01-10",
        "opening_amount_cents": 200000
    }
    """
    try:
        data = require_fields(
            request.get_json(silent=True),
            "payment_method_id",
            "date",
            "opening_amount_cents",
        )
        branch_id = tenant_service.resolve_branch_id(data.get("branch_id"))

        scope_error = _ensure_branch_scope(branch_id)
        if scope_error:
            return scope_error

        row = opening_balance_service.set_opening_balance(
            g.company_id,
            branch_id,
            coerce_int("payment_method_id", data["payment_method_id"]),
            parse_date_value("date", data["date"]),
            coerce_amount_cents("opening_amount_cents", data["opening_amount_cents"]),
        )
        return jsonify({"opening_balance": row.to_dict()}), 200

    except NotFoundError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to set opening balance")
        return jsonify({"error": "Internal server error"}), 500


@opening_balances_bp.put("/closing")
@require_auth
@require_permission("MANAGE_OPENING_BALANCES")
def set_closing_balance_route():
    """
    Record a method's closing amount and open the next day with it.

    Request body:
    {
        "branch_id": 1,
        "payment_method_id": 1,
        "date": "2026-01-10",
        "closing_amount_cents": 1400000
    }
    """
    try:
        data = require_fields(
            request.get_json(silent=True),
            "payment_method_id",
            "date",
            "closing_amount_cents",
        )
        branch_id = tenant_service.resolve_branch_id(data.get("branch_id"))

        scope_error = _ensure_branch_scope(branch_id)
        if scope_error:
            return scope_error

        today, tomorrow = opening_balance_service.set_closing_balance_and_carry_forward(
            g.company_id,
            branch_id,
            coerce_int("payment_method_id", data["payment_method_id"]),
            parse_date_value("date", data["date"]),
            coerce_amount_cents("closing_amount_cents", data["closing_amount_cents"]),
        )
        return jsonify({"balance": today.to_dict(), "next_day": tomorrow.to_dict()}), 200

    except NotFoundError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to set closing balance")
        return jsonify({"error": "Internal server error"}), 500
