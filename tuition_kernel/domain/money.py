"""
Money primitives -- decimal-safe amount arithmetic.

Responsibility:
    The only place amounts are converted, rounded, split, or compared with
    a tolerance.  Every service above delegates here.

Architecture position:
    Kernel > Domain -- pure functions, zero I/O.

Invariants enforced:
    - No floats: ``to_money`` rejects ``float`` outright.
    - Rounding is always 2 places, ROUND_HALF_UP (``round_money``).
    - ``split_evenly`` allocates every cent: the parts always sum to the
      total exactly.  Leftover cents go to the first parts.

Failure modes:
    - TypeError for float or unsupported input types.
    - ValueError for non-numeric strings or a non-positive part count.
"""

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation

from tuition_kernel.db.types import MONEY_DECIMAL_PLACES

ZERO = Decimal("0.00")
CENT = Decimal("0.01")
HUNDRED = Decimal("100")
ROUNDING_EPSILON = Decimal("0.01")

_QUANTUM = Decimal(1).scaleb(-MONEY_DECIMAL_PLACES)


def to_money(value: Decimal | int | str) -> Decimal:
    """
    Convert an input amount to a rounded Decimal.

    Raises:
        TypeError: For float (binary floating point is never accepted) or
            any other unsupported type.
        ValueError: If a string is not a finite number.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise TypeError(f"Amounts must be Decimal, int or str, not {type(value).__name__}")
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, int):
        amount = Decimal(value)
    elif isinstance(value, str):
        try:
            amount = Decimal(value.strip())
        except InvalidOperation:
            raise ValueError(f"Not a valid amount: {value!r}") from None
    else:
        raise TypeError(f"Unsupported amount type: {type(value).__name__}")

    if not amount.is_finite():
        raise ValueError(f"Not a finite amount: {value!r}")
    return round_money(amount)


def round_money(value: Decimal) -> Decimal:
    """Round to cents, half-up.  The only sanctioned rounding for money."""
    return value.quantize(_QUANTUM, rounding=ROUND_HALF_UP)


def percent_of(amount: Decimal, rate: Decimal) -> Decimal:
    """``amount * rate / 100`` rounded to cents."""
    return round_money(amount * rate / HUNDRED)


def floor_at_zero(value: Decimal) -> Decimal:
    return value if value > ZERO else ZERO


def within_tolerance(
    a: Decimal,
    b: Decimal,
    epsilon: Decimal = ROUNDING_EPSILON,
) -> bool:
    """True when ``|a - b| <= epsilon``."""
    return abs(a - b) <= epsilon


def split_evenly(total: Decimal, parts: int) -> list[Decimal]:
    """
    Split ``total`` into ``parts`` cent-exact shares.

    The base share is ``total / parts`` truncated to cents; the leftover
    cents are handed out one at a time starting from the first share.

        split_evenly(Decimal("100.00"), 3) -> [33.34, 33.33, 33.33]
        split_evenly(Decimal("-0.05"), 2) -> [-0.03, -0.02]
    """
    if parts <= 0:
        raise ValueError(f"parts must be positive, got {parts}")

    total = round_money(total)
    sign = Decimal(-1) if total < 0 else Decimal(1)
    magnitude = abs(total)

    base = (magnitude / parts).quantize(_QUANTUM, rounding=ROUND_DOWN)
    leftover_cents = int((magnitude - base * parts) / CENT)

    shares = []
    for index in range(parts):
        share = base + (CENT if index < leftover_cents else ZERO)
        shares.append(sign * share)
    return shares
