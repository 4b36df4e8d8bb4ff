# storefront/utils/money.py

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

Money = Decimal
CENT = Decimal("0.01")


def D(x) -> Money:
    if isinstance(x, Decimal):
        return x
    try:
        return Decimal(str(x if x is not None else "0"))
    except InvalidOperation:
        raise ValueError(f"not a money amount: {x!r}")


def round_money(x) -> Money:
    return D(x).quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(x) -> int:
    # 1500.00 -> 150000
    return int((round_money(x) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def money_json(x) -> float:
    return float(round_money(x))
