# Overview: Flask API routes for sales, refunds, voids, receipts and parked sales.

"""
POS API Routes

DESIGN:
- Thin adapter: parse JSON, build service inputs, serialize results
- All money fields are integer cents; tax_rate may be a decimal fraction
- CoreError subclasses map to their status code with {"error", "details"}
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_tenant_context
from ..errors import CoreError, ValidationError
from ..services import parked_sale_service, refund_service, sales_service
from ..services.pricing import cart_line_to_dict, parse_cart_discount, parse_cart_line, parse_payment
from ..services.refund_service import RefundLineRequest
from ..services.sales_service import CreateSaleInput, ReceiptSearch
from ..time_utils import parse_iso_datetime


pos_bp = Blueprint("pos", __name__, url_prefix="/api/pos")


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("JSON object body required")
    return data


def _list_field(data: dict, name: str) -> list:
    value = data.get(name) or []
    if not isinstance(value, list):
        raise ValidationError(f"{name} must be a list")
    return value


# =============================================================================
# SALES
# =============================================================================

@pos_bp.post("/sales")
@require_tenant_context
def create_sale_route():
    """
    Create a completed sale.

    Request body:
    {
        "store_id": 1,
        "shift_id": 3,                      (optional)
        "customer_id": null,                (optional)
        "lines": [{"product_id": 7, "quantity": 2, "discount": {"type": "percent", "value": 1000}}],
        "discounts": [{"kind": "coupon", "amount_cents": 200, "code": "SAVE2"}],
        "payments": [{"method": "cash", "amount_cents": 5000}],
        "idempotency_key": "client-uuid",   (optional)
        "offline_created": false,
        "notes": "..."
    }
    """
    try:
        data = _json_body()
        sale_input = CreateSaleInput(
            store_id=data.get("store_id") or g.ctx.store_id,
            shift_id=data.get("shift_id"),
            customer_id=data.get("customer_id"),
            lines=[parse_cart_line(line) for line in _list_field(data, "lines")],
            cart_discounts=[parse_cart_discount(d) for d in _list_field(data, "discounts")],
            payments=[parse_payment(p) for p in _list_field(data, "payments")],
            idempotency_key=data.get("idempotency_key") or request.headers.get("Idempotency-Key"),
            offline_created=bool(data.get("offline_created", False)),
            notes=data.get("notes"),
        )
        receipt = sales_service.create_sale(g.ctx, sale_input)
        return jsonify({"receipt": receipt.to_dict(include_lines=True)}), 201

    except CoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500


@pos_bp.post("/receipts/<int:receipt_id>/refund")
@require_tenant_context
def refund_route(receipt_id: int):
    """
    Refund lines of a completed sale.

    Request body:
    {
        "lines": [{"line_id": 12, "quantity": 1}],
        "payments": [{"method": "cash", "amount_cents": 1100}],   (optional)
        "shift_id": 3,                                           (optional)
        "reason": "Damaged"
    }
    """
    try:
        data = _json_body()
        lines = []
        for item in _list_field(data, "lines"):
            if not isinstance(item, dict):
                raise ValidationError("Each refund line must be an object")
            lines.append(RefundLineRequest(line_id=item.get("line_id"), quantity=item.get("quantity")))

        refund = refund_service.process_refund(
            g.ctx,
            receipt_id,
            lines,
            [parse_payment(p) for p in _list_field(data, "payments")],
            shift_id=data.get("shift_id"),
            reason=data.get("reason"),
        )
        return jsonify({"receipt": refund.to_dict(include_lines=True)}), 201

    except CoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to process refund")
        return jsonify({"error": "Internal server error"}), 500


@pos_bp.post("/receipts/<int:receipt_id>/void")
@require_tenant_context
def void_route(receipt_id: int):
    try:
        data = request.get_json(silent=True) or {}
        receipt = sales_service.void_receipt(g.ctx, receipt_id, data.get("reason"))
        return jsonify({"receipt": receipt.to_dict(include_lines=True)}), 200

    except CoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to void receipt")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# RECEIPTS
# =============================================================================

@pos_bp.get("/receipts/<receipt_ref>")
@require_tenant_context
def get_receipt_route(receipt_ref: str):
    """Get a receipt with lines by id or receipt number."""
    try:
        receipt = sales_service.get_receipt(g.ctx, receipt_ref)
        return jsonify({"receipt": receipt.to_dict(include_lines=True)}), 200
    except CoreError as e:
        return jsonify(e.to_dict()), e.status_code


@pos_bp.get("/receipts")
@require_tenant_context
def search_receipts_route():
    """
    Search receipts.

    Query params: store_id, cashier_id, customer_id, shift_id, status, type,
    start_date, end_date (ISO-8601), search, limit (default 50, max 200), offset
    """
    try:
        filters = ReceiptSearch(
            store_id=request.args.get("store_id", type=int),
            cashier_id=request.args.get("cashier_id", type=int),
            customer_id=request.args.get("customer_id", type=int),
            shift_id=request.args.get("shift_id", type=int),
            status=request.args.get("status"),
            type=request.args.get("type"),
            start_date=parse_iso_datetime(request.args.get("start_date")),
            end_date=parse_iso_datetime(request.args.get("end_date")),
            search=request.args.get("search"),
            limit=request.args.get("limit", type=int),
            offset=request.args.get("offset", 0, type=int),
        )
        result = sales_service.search_receipts(g.ctx, filters)
        return jsonify({
            "receipts": [r.to_dict() for r in result["receipts"]],
            "total": result["total"],
        }), 200

    except ValueError:
        return jsonify({"error": "Invalid date format"}), 400
    except CoreError as e:
        return jsonify(e.to_dict()), e.status_code


# =============================================================================
# PARKED SALES
# =============================================================================

@pos_bp.post("/parked-sales")
@require_tenant_context
def park_sale_route():
    try:
        data = _json_body()
        parked = parked_sale_service.park_sale(
            g.ctx,
            store_id=data.get("store_id") or g.ctx.store_id,
            items=[parse_cart_line(line) for line in _list_field(data, "items")],
            customer_id=data.get("customer_id"),
            name=data.get("name"),
            notes=data.get("notes"),
        )
        return jsonify({"parked_sale": parked.to_dict()}), 201

    except CoreError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to park sale")
        return jsonify({"error": "Internal server error"}), 500


@pos_bp.get("/parked-sales")
@require_tenant_context
def list_parked_sales_route():
    try:
        store_id = request.args.get("store_id", type=int) or g.ctx.store_id
        parked = parked_sale_service.list_parked_sales(g.ctx, store_id=store_id)
        return jsonify({"parked_sales": [p.to_dict() for p in parked]}), 200
    except CoreError as e:
        return jsonify(e.to_dict()), e.status_code


@pos_bp.post("/parked-sales/<int:parked_sale_id>/recall")
@require_tenant_context
def recall_sale_route(parked_sale_id: int):
    try:
        data = parked_sale_service.recall_sale(g.ctx, parked_sale_id)
        data["items"] = [cart_line_to_dict(line) for line in data["items"]]
        return jsonify({"parked_sale": data}), 200
    except CoreError as e:
        return jsonify(e.to_dict()), e.status_code
