# Overview: Flask API routes for cashier shifts and cash movements.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_tenant_context
from ..errors import CoreError, ValidationError
from ..services import shift_service


shifts_bp = Blueprint("shifts", __name__, url_prefix="/api/shifts")


@shifts_bp.post("")
@require_tenant_context
def open_shift_route():
    """
    Open a shift for the acting cashier.

    Request body:
    {
        "store_id": 1,
        "opening_cash_cents": 10000,
        "register_id": "REG-01"   (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        if data.get("opening_cash_cents") is None:
            raise ValidationError("opening_cash_cents is required")

        shift = shift_service.open_shift(
            g.ctx,
            store_id=data.get("store_id") or g.ctx.store_id,
            opening_cash_cents=data.get("opening_cash_cents"),
            register_id=data.get("register_id"),
            notes=data.get("notes"),
        )
        return jsonify({"shift": shift.to_dict()}), 201

    except CoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to open shift")
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.get("/current")
@require_tenant_context
def current_shift_route():
    shift = shift_service.get_open_shift(g.ctx)
    return jsonify({"shift": shift.to_dict() if shift else None}), 200


@shifts_bp.get("/<int:shift_id>")
@require_tenant_context
def get_shift_route(shift_id: int):
    """Shift with cash movements and receipt counts."""
    try:
        return jsonify(shift_service.get_shift_summary(g.ctx, shift_id)), 200
    except CoreError as e:
        return jsonify(e.to_dict()), e.status_code


@shifts_bp.post("/<int:shift_id>/cash-movements")
@require_tenant_context
def cash_movement_route(shift_id: int):
    """
    Record a drawer movement.

    Request body:
    {
        "type": "cash_in" | "cash_out" | "drop" | "pickup",
        "amount_cents": 2000,
        "reason": "Float top-up",
        "approved_by": 5   (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        movement = shift_service.record_cash_movement(
            g.ctx,
            shift_id=shift_id,
            movement_type=data.get("type"),
            amount_cents=data.get("amount_cents"),
            reason=data.get("reason"),
            notes=data.get("notes"),
            approved_by=data.get("approved_by"),
        )
        return jsonify({"movement": movement.to_dict()}), 201

    except CoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record cash movement")
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.post("/<int:shift_id>/close")
@require_tenant_context
def close_shift_route(shift_id: int):
    """
    Close a shift.

    Request body:
    {
        "closing_cash_cents": 13300,
        "notes": "..."
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        shift = shift_service.close_shift(
            g.ctx,
            shift_id=shift_id,
            closing_cash_cents=data.get("closing_cash_cents"),
            notes=data.get("notes"),
        )
        return jsonify({"shift": shift.to_dict()}), 200

    except CoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to close shift")
        return jsonify({"error": "Internal server error"}), 500
