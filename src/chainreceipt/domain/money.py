from __future__ import annotations
from decimal import ROUND_DOWN, ROUND_HALF_UP, Context, Decimal

# Wide enough for any uint256 at any decimals; amounts stay exact until USD formatting.
EXACT = Context(prec=120)

CENT = Decimal("0.01")
SUB_CENT_LABEL = "< $0.01"
NEG_SUB_CENT_LABEL = "> -$0.01"

CONFIDENCE_LABELS: tuple[tuple[float, str], ...] = (
    (0.95, "Confirmed"),
    (0.80, "High"),
    (0.50, "Likely"),
)
LOWEST_CONFIDENCE_LABEL = "Complex"


def to_units(raw: int, decimals: int) -> Decimal:
    """Raw integer amount -> token units, without rounding."""
    return Decimal(int(raw)).scaleb(-int(decimals), EXACT)


def to_decimal(x: object) -> Decimal:
    # floats go through str() so 2000.1 stays 2000.1
    if isinstance(x, Decimal):
        return x
    if isinstance(x, float):
        return Decimal(repr(x))
    return Decimal(str(x))


def usd_value(raw: int, decimals: int, unit_price: Decimal) -> Decimal:
    return EXACT.multiply(to_units(raw, decimals), unit_price)


def _plain(d: Decimal) -> str:
    s = format(d, "f")
    if "." in s:
        s = s.rstrip("0").rstrip(".")
    return s or "0"


def format_amount(value: Decimal, places: int = 6) -> str:
    """Up to `places` decimals, trailing zeros stripped; tiny nonzero amounts are shown in full."""
    if value == 0:
        return "0"
    q = value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_DOWN, context=EXACT)
    if q == 0:
        return _plain(value)
    return _plain(q)


def format_usd(value: Decimal) -> str:
    """Dollar string for a non-negative value; nonzero sub-cent values never render as $0.00."""
    if value == 0:
        return "$0.00"
    if 0 < value < CENT:
        return SUB_CENT_LABEL
    q = value.quantize(CENT, rounding=ROUND_HALF_UP, context=EXACT)
    return f"${q:,.2f}"


def format_signed_usd(value: Decimal) -> str:
    if value == 0:
        return "$0.00"
    if -CENT < value < 0:
        return NEG_SUB_CENT_LABEL
    if value < 0:
        return "-" + format_usd(-value)
    return "+" + format_usd(value)


def format_gwei(wei: int) -> str:
    return _plain(to_units(wei, 9))


def confidence_label(confidence: float) -> str:
    """Lossy presentation of a [0,1] confidence as one of four ordered labels."""
    for threshold, label in CONFIDENCE_LABELS:
        if confidence >= threshold:
            return label
    return LOWEST_CONFIDENCE_LABEL
