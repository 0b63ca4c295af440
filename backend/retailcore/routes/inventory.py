# Overview: Flask API routes for stock levels, the stock ledger and stock movements.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_tenant_context
from ..errors import CoreError
from ..services import inventory_service


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.get("/stores/<int:store_id>/products/<int:product_id>")
@require_tenant_context
def stock_level_route(store_id: int, product_id: int):
    try:
        return jsonify({"stock": inventory_service.get_stock_level(g.ctx, store_id, product_id)}), 200
    except CoreError as e:
        return jsonify(e.to_dict()), e.status_code


@inventory_bp.get("/ledger")
@require_tenant_context
def ledger_route():
    """
    Paginated ledger history, newest first.

    Query params: store_id, product_id, reference_type, reference_id, limit, offset
    """
    try:
        entries, total = inventory_service.get_ledger_history(
            g.ctx,
            store_id=request.args.get("store_id", type=int),
            product_id=request.args.get("product_id", type=int),
            reference_type=request.args.get("reference_type"),
            reference_id=request.args.get("reference_id"),
            limit=request.args.get("limit", inventory_service.DEFAULT_HISTORY_LIMIT, type=int),
            offset=request.args.get("offset", 0, type=int),
        )
        return jsonify({"entries": [e.to_dict() for e in entries], "total": total}), 200
    except CoreError as e:
        return jsonify(e.to_dict()), e.status_code


@inventory_bp.get("/ledger/verify")
@require_tenant_context
def verify_ledger_route():
    issues = inventory_service.verify_ledger_chain(
        g.ctx.tenant_id,
        store_id=request.args.get("store_id", type=int),
        product_id=request.args.get("product_id", type=int),
    )
    return jsonify({"ok": not issues, "issues": issues}), 200


@inventory_bp.post("/receive")
@require_tenant_context
def receive_route():
    """
    Receive stock (GRN).

    Request body:
    {
        "store_id": 1,
        "product_id": 7,
        "quantity": 24,
        "unit_cost_cents": 450,
        "reference_id": "PO-1001",   (optional)
        "note": "..."
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        entry = inventory_service.receive_stock(
            g.ctx,
            store_id=data.get("store_id") or g.ctx.store_id,
            product_id=data.get("product_id"),
            quantity=data.get("quantity"),
            unit_cost_cents=data.get("unit_cost_cents"),
            reference_id=data.get("reference_id"),
            note=data.get("note"),
        )
        return jsonify({"entry": entry.to_dict()}), 201

    except CoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to receive stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/adjust")
@require_tenant_context
def adjust_route():
    try:
        data = request.get_json(silent=True) or {}
        entry = inventory_service.adjust_stock(
            g.ctx,
            store_id=data.get("store_id") or g.ctx.store_id,
            product_id=data.get("product_id"),
            quantity_delta=data.get("quantity_delta"),
            reason=data.get("reason"),
        )
        return jsonify({"entry": entry.to_dict()}), 201

    except CoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/transfer")
@require_tenant_context
def transfer_route():
    try:
        data = request.get_json(silent=True) or {}
        out_entry, in_entry = inventory_service.transfer_stock(
            g.ctx,
            from_store_id=data.get("from_store_id"),
            to_store_id=data.get("to_store_id"),
            product_id=data.get("product_id"),
            quantity=data.get("quantity"),
            note=data.get("note"),
        )
        return jsonify({"out": out_entry.to_dict(), "in": in_entry.to_dict()}), 201

    except CoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to transfer stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/count")
@require_tenant_context
def count_route():
    try:
        data = request.get_json(silent=True) or {}
        entry = inventory_service.count_stock(
            g.ctx,
            store_id=data.get("store_id") or g.ctx.store_id,
            product_id=data.get("product_id"),
            counted_quantity=data.get("counted_quantity"),
            note=data.get("note"),
        )
        return jsonify({"entry": entry.to_dict()}), 201

    except CoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record stock count")
        return jsonify({"error": "Internal server error"}), 500
