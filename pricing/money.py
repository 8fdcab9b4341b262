from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Optional, Union

ZERO = Decimal("0")
HUNDRED = Decimal("100")
CENT = Decimal("0.01")

Number = Union[Decimal, int, float, str, None]


def parse_decimal(value: Number) -> Optional[Decimal]:
    """
    Decimal из значения хранилища или None, если это не конечное число.
    float идёт через str, чтобы 19.99 не превратилось в 19.989999...
    NaN и Infinity не сравниваются с деньгами и считаются мусором.
    """
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation:
        return None
    return result if result.is_finite() else None


def to_decimal(value: Number) -> Decimal:
    """Как parse_decimal, но пустые и нечисловые значения считаются нулём"""
    parsed = parse_decimal(value)
    return ZERO if parsed is None else parsed


def round_money(amount: Decimal) -> Decimal:
    """Округление до копеек (half-up). Вызывается только при агрегации итогов"""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def round_percent(value: Decimal) -> int:
    """Процент скидки для бейджа: до целого, half-up"""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def percent_of(amount: Decimal, percent: Decimal) -> Decimal:
    return amount * percent / HUNDRED


def format_currency(amount: Number, currency: str = "USD") -> str:
    """
    Строка цены для витрины и счёта.
    PKR показывается как "Rs", остальные валюты - символ или ISO-код.
    """
    value = round_money(to_decimal(amount))
    symbols = {"USD": "$", "EUR": "€", "GBP": "£", "KZT": "₸"}

    if currency == "PKR":
        return f"Rs {value:,.2f}"
    symbol = symbols.get(currency)
    if symbol is None:
        return f"{currency} {value:,.2f}"
    if value < 0:
        return f"-{symbol}{-value:,.2f}"
    return f"{symbol}{value:,.2f}"
