"""
Cart pricing: line discounts, cart-level discounts, tax and tenders.

Pure functions over integer cents. All rates are basis points
(1000 bps = 10%). Every division rounds half-up, away from zero.

Per line:
    gross     = quantity * unit_price_cents
    discount  = percent: round(gross * bps / 10000); fixed: value (<= gross)
    tax       = round((gross - discount) * tax_rate_bps / 10000)
    total     = gross - discount + tax

Per cart:
    subtotal  = sum(gross)
    discount  = sum(line discounts) + sum(cart discounts)
    tax       = sum(line tax)
    total     = subtotal - discount + tax
    change    = max(0, paid - total), only ever given out of cash
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum

from ..errors import ValidationError
from .catalog_service import CatalogItem


BPS_SCALE = 10000


class LineDiscountType(str, Enum):
    PERCENT = "percent"
    FIXED = "fixed"


class DiscountKind(str, Enum):
    LINE = "line"
    CART = "cart"
    COUPON = "coupon"
    LOYALTY = "loyalty"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"
    VOUCHER = "voucher"
    LOYALTY = "loyalty"


CART_DISCOUNT_KINDS = (DiscountKind.CART, DiscountKind.COUPON, DiscountKind.LOYALTY)


# =============================================================================
# Rounding
# =============================================================================

def div_round_half_up(numerator: int, denominator: int) -> int:
    """Integer division rounding half away from zero."""
    if denominator <= 0:
        raise ValueError("denominator must be positive")
    sign = -1 if numerator < 0 else 1
    quotient, remainder = divmod(abs(numerator), denominator)
    if remainder * 2 >= denominator:
        quotient += 1
    return sign * quotient


def apply_bps(amount_cents: int, bps: int) -> int:
    return div_round_half_up(amount_cents * bps, BPS_SCALE)


def rate_to_bps(rate) -> int:
    """Convert a decimal rate (0.0825) to basis points (825)."""
    try:
        value = Decimal(str(rate))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError("Invalid rate", details={"rate": rate}) from exc
    return int((value * BPS_SCALE).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


# =============================================================================
# Inputs
# =============================================================================

@dataclass(frozen=True)
class LineDiscount:
    type: LineDiscountType
    value: int  # bps for percent, cents for fixed


@dataclass(frozen=True)
class CartLine:
    product_id: int
    quantity: int
    unit_price_cents: int | None = None  # None = catalog price
    discount: LineDiscount | None = None
    tax_rate_bps: int | None = None  # None = catalog rate
    promotion_id: int | None = None
    notes: str | None = None


@dataclass(frozen=True)
class CartDiscount:
    kind: DiscountKind
    amount_cents: int
    code: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class PaymentTender:
    method: PaymentMethod
    amount_cents: int
    reference: str | None = None


# =============================================================================
# Outputs
# =============================================================================

@dataclass(frozen=True)
class PricedLine:
    line_number: int
    product_id: int
    sku: str
    name: str
    quantity: int
    unit_price_cents: int
    discount_type: str | None
    discount_value: int
    discount_cents: int
    tax_rate_bps: int
    tax_cents: int
    line_total_cents: int
    cost_cents: int
    track_inventory: bool
    allow_negative_stock: bool
    promotion_id: int | None = None
    notes: str | None = None

    @property
    def gross_cents(self) -> int:
        return self.quantity * self.unit_price_cents


@dataclass(frozen=True)
class TenderSummary:
    cash_cents: int = 0
    card_cents: int = 0
    voucher_cents: int = 0
    loyalty_cents: int = 0

    @property
    def total_cents(self) -> int:
        return self.cash_cents + self.card_cents + self.voucher_cents + self.loyalty_cents


@dataclass(frozen=True)
class CartTotals:
    subtotal_cents: int
    discount_cents: int
    tax_cents: int
    total_cents: int
    paid_cents: int
    change_cents: int
    tenders: TenderSummary
    discount_details: list = field(default_factory=list)
    tax_details: list = field(default_factory=list)
    payments: list = field(default_factory=list)

    @property
    def net_cash_cents(self) -> int:
        """Cash that stays in the drawer: tendered cash minus change."""
        return self.tenders.cash_cents - self.change_cents


# =============================================================================
# Line pricing
# =============================================================================

def compute_line_discount(gross_cents: int, discount: LineDiscount | None) -> int:
    if discount is None:
        return 0
    if discount.type is LineDiscountType.PERCENT:
        if not (0 <= discount.value <= BPS_SCALE):
            raise ValidationError(
                "Percent discount must be between 0 and 100",
                details={"discount_bps": discount.value},
            )
        return apply_bps(gross_cents, discount.value)
    if discount.type is LineDiscountType.FIXED:
        if discount.value < 0:
            raise ValidationError("Fixed discount cannot be negative", details={"discount_cents": discount.value})
        if discount.value > gross_cents:
            raise ValidationError(
                "Fixed discount exceeds line amount",
                details={"discount_cents": discount.value, "line_gross_cents": gross_cents},
            )
        return discount.value
    raise ValidationError("Unknown discount type", details={"type": str(discount.type)})


def price_line(line_number: int, line: CartLine, item: CatalogItem) -> PricedLine:
    """Price one cart line against its catalog snapshot."""
    if not isinstance(line.quantity, int) or isinstance(line.quantity, bool) or line.quantity <= 0:
        raise ValidationError(
            "Quantity must be a positive integer",
            details={"line_number": line_number, "quantity": line.quantity},
        )

    unit_price = item.price_cents if line.unit_price_cents is None else line.unit_price_cents
    if unit_price is None or unit_price < 0:
        raise ValidationError(
            "Unit price cannot be negative",
            details={"line_number": line_number, "unit_price_cents": unit_price},
        )

    tax_rate = item.tax_rate_bps if line.tax_rate_bps is None else line.tax_rate_bps
    if not (0 <= tax_rate <= BPS_SCALE):
        raise ValidationError(
            "Tax rate must be between 0 and 100 percent",
            details={"line_number": line_number, "tax_rate_bps": tax_rate},
        )

    gross = line.quantity * unit_price
    discount = compute_line_discount(gross, line.discount)
    tax = apply_bps(gross - discount, tax_rate)

    return PricedLine(
        line_number=line_number,
        product_id=item.product_id,
        sku=item.sku,
        name=item.name,
        quantity=line.quantity,
        unit_price_cents=unit_price,
        discount_type=line.discount.type.value if line.discount else None,
        discount_value=line.discount.value if line.discount else 0,
        discount_cents=discount,
        tax_rate_bps=tax_rate,
        tax_cents=tax,
        line_total_cents=gross - discount + tax,
        cost_cents=item.cost_cents,
        track_inventory=item.track_inventory,
        allow_negative_stock=item.allow_negative_stock,
        promotion_id=line.promotion_id,
        notes=line.notes,
    )


# =============================================================================
# Cart totals
# =============================================================================

def summarize_tenders(payments) -> TenderSummary:
    cash = card = voucher = loyalty = 0
    for idx, payment in enumerate(payments):
        if payment.amount_cents is None or payment.amount_cents <= 0:
            raise ValidationError(
                "Payment amount must be positive",
                details={"payment_index": idx, "amount_cents": payment.amount_cents},
            )
        if payment.method is PaymentMethod.CASH:
            cash += payment.amount_cents
        elif payment.method is PaymentMethod.CARD:
            card += payment.amount_cents
        elif payment.method is PaymentMethod.VOUCHER:
            voucher += payment.amount_cents
        elif payment.method is PaymentMethod.LOYALTY:
            loyalty += payment.amount_cents
        else:
            raise ValidationError("Unknown payment method", details={"method": str(payment.method)})
    return TenderSummary(cash_cents=cash, card_cents=card, voucher_cents=voucher, loyalty_cents=loyalty)


def build_tax_details(lines) -> list[dict]:
    """Group line tax by rate."""
    by_rate: dict[int, dict] = {}
    for line in lines:
        bucket = by_rate.setdefault(
            line.tax_rate_bps, {"tax_rate_bps": line.tax_rate_bps, "taxable_cents": 0, "tax_cents": 0}
        )
        bucket["taxable_cents"] += line.gross_cents - line.discount_cents
        bucket["tax_cents"] += line.tax_cents
    return [by_rate[rate] for rate in sorted(by_rate)]


def compute_totals(lines: list[PricedLine], cart_discounts=(), payments=()) -> CartTotals:
    """
    Combine priced lines, cart-level discounts and tenders into receipt totals.

    Raises ValidationError if discounts exceed the subtotal, tenders don't
    cover the total, or change would have to come out of non-cash tenders.
    """
    if not lines:
        raise ValidationError("A sale requires at least one line")

    subtotal = sum(line.gross_cents for line in lines)
    line_discount = sum(line.discount_cents for line in lines)
    tax = sum(line.tax_cents for line in lines)

    discount_details = [
        {
            "kind": DiscountKind.LINE.value,
            "line_number": line.line_number,
            "type": line.discount_type,
            "value": line.discount_value,
            "amount_cents": line.discount_cents,
        }
        for line in lines
        if line.discount_cents
    ]

    cart_discount = 0
    for discount in cart_discounts:
        if discount.kind not in CART_DISCOUNT_KINDS:
            raise ValidationError("Invalid cart discount kind", details={"kind": str(discount.kind)})
        if discount.amount_cents is None or discount.amount_cents < 0:
            raise ValidationError("Cart discount cannot be negative", details={"amount_cents": discount.amount_cents})
        cart_discount += discount.amount_cents
        discount_details.append(
            {
                "kind": discount.kind.value,
                "amount_cents": discount.amount_cents,
                "code": discount.code,
                "description": discount.description,
            }
        )

    discount = line_discount + cart_discount
    if discount > subtotal:
        raise ValidationError(
            "Total discount exceeds subtotal",
            details={"discount_cents": discount, "subtotal_cents": subtotal},
        )

    total = subtotal - discount + tax

    tenders = summarize_tenders(payments)
    paid = tenders.total_cents
    if paid < total:
        raise ValidationError(
            "Payments do not cover the sale total",
            details={"total_cents": total, "paid_cents": paid},
        )

    change = max(0, paid - total)
    if change > tenders.cash_cents:
        raise ValidationError(
            "Change can only be given from cash",
            details={"change_cents": change, "cash_cents": tenders.cash_cents},
        )

    return CartTotals(
        subtotal_cents=subtotal,
        discount_cents=discount,
        tax_cents=tax,
        total_cents=total,
        paid_cents=paid,
        change_cents=change,
        tenders=tenders,
        discount_details=discount_details,
        tax_details=build_tax_details(lines),
        payments=[payment_to_dict(p) for p in payments],
    )


# =============================================================================
# Parsing / serialization (HTTP payloads, parked carts)
# =============================================================================

def _require_int(value, field_name: str, *, allow_none: bool = False):
    if value is None and allow_none:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field_name} must be an integer", details={field_name: value})
    return value


def parse_line_discount(data) -> LineDiscount | None:
    if not data:
        return None
    try:
        dtype = LineDiscountType(data.get("type"))
    except ValueError as exc:
        raise ValidationError("Invalid discount type", details={"type": data.get("type")}) from exc
    return LineDiscount(type=dtype, value=_require_int(data.get("value"), "discount value"))


def parse_cart_line(data: dict) -> CartLine:
    if not isinstance(data, dict):
        raise ValidationError("Each line must be an object")
    tax_rate_bps = data.get("tax_rate_bps")
    if tax_rate_bps is None and data.get("tax_rate") is not None:
        tax_rate_bps = rate_to_bps(data.get("tax_rate"))
    return CartLine(
        product_id=_require_int(data.get("product_id"), "product_id"),
        quantity=_require_int(data.get("quantity"), "quantity"),
        unit_price_cents=_require_int(data.get("unit_price_cents"), "unit_price_cents", allow_none=True),
        discount=parse_line_discount(data.get("discount")),
        tax_rate_bps=_require_int(tax_rate_bps, "tax_rate_bps", allow_none=True),
        promotion_id=data.get("promotion_id"),
        notes=data.get("notes"),
    )


def cart_line_to_dict(line: CartLine) -> dict:
    return {
        "product_id": line.product_id,
        "quantity": line.quantity,
        "unit_price_cents": line.unit_price_cents,
        "discount": (
            {"type": line.discount.type.value, "value": line.discount.value} if line.discount else None
        ),
        "tax_rate_bps": line.tax_rate_bps,
        "promotion_id": line.promotion_id,
        "notes": line.notes,
    }


def parse_cart_discount(data: dict) -> CartDiscount:
    if not isinstance(data, dict):
        raise ValidationError("Each discount must be an object")
    try:
        kind = DiscountKind(data.get("kind", DiscountKind.CART.value))
    except ValueError as exc:
        raise ValidationError("Invalid discount kind", details={"kind": data.get("kind")}) from exc
    return CartDiscount(
        kind=kind,
        amount_cents=_require_int(data.get("amount_cents"), "amount_cents"),
        code=data.get("code"),
        description=data.get("description"),
    )


def parse_payment(data: dict) -> PaymentTender:
    if not isinstance(data, dict):
        raise ValidationError("Each payment must be an object")
    try:
        method = PaymentMethod(data.get("method"))
    except ValueError as exc:
        raise ValidationError("Unknown payment method", details={"method": data.get("method")}) from exc
    return PaymentTender(
        method=method,
        amount_cents=_require_int(data.get("amount_cents"), "amount_cents"),
        reference=data.get("reference"),
    )


def payment_to_dict(payment: PaymentTender, sign: int = 1) -> dict:
    return {
        "method": payment.method.value,
        "amount_cents": sign * payment.amount_cents,
        "reference": payment.reference,
    }
