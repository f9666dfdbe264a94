from __future__ import annotations

import math
from typing import Any, Callable, Dict

# base units per display unit (micro denomination)
MICRO_DENOM = 1_000_000


def _to_number(v: Any) -> float | None:
    if v is None or v == "":
        return None
    if isinstance(v, bool):
        return None
    try:
        n = float(str(v).strip().replace(",", ""))
    except ValueError:
        return None
    if not math.isfinite(n):
        return None
    return n


def _trim_number(n: float) -> int | float:
    return int(n) if float(n).is_integer() else n


def _locale(n: float, max_fraction_digits: int = 3) -> str:
    text = f"{n:,.{max_fraction_digits}f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def format_to_coin(v: Any) -> str:
    n = _to_number(v)
    if n is None:
        return ""
    return _locale(n / MICRO_DENOM)


def from_micro_denom(v: Any) -> int | float:
    n = _to_number(v)
    if n is None:
        return 0
    return _trim_number(n / MICRO_DENOM)


def to_micro_denom(v: Any) -> int:
    n = _to_number(v)
    if n is None:
        return 0
    return math.floor(round(n * MICRO_DENOM, 6))


def to_base_denom(v: Any) -> str:
    n = _to_number(v)
    if n is None:
        return ""
    return f"{n * MICRO_DENOM:.0f}"


def format_to_coin_number(v: Any) -> str | int:
    n = _to_number(v)
    if n is None:
        return 0
    return f"{n / MICRO_DENOM:.3f}"


def number_to_locale_string(v: Any) -> str:
    n = _to_number(v)
    if n is None:
        return ""
    return _locale(n)


def resolve_height(v: Any) -> int | float:
    if v is None or v == "":
        return 0
    if isinstance(v, dict):
        for key in ("height", "latestHeight", "result", "value"):
            if v.get(key) is not None:
                v = v[key]
                break
        else:
            return 0
    n = _to_number(v)
    return 0 if n is None else _trim_number(n)


def to_upper(v: Any) -> str:
    return "" if v is None else str(v).upper()


def short_address(v: Any) -> str:
    s = "" if v is None else str(v)
    return s[:6] + "..." + s[-6:]


TEMPLATE_FUNCTIONS: Dict[str, Callable[[Any], Any]] = {
    "formatToCoin": format_to_coin,
    "fromMicroDenom": from_micro_denom,
    "toMicroDenom": to_micro_denom,
    "toBaseDenom": to_base_denom,
    "formatToCoinNumber": format_to_coin_number,
    "numberToLocaleString": number_to_locale_string,
    "resolveHeight": resolve_height,
    "toUpper": to_upper,
    "shortAddress": short_address,
}
