"""
Money amounts found in free text.

Used for budget detection in requests and for cost extraction from worker
results ("¥1200", "￥ 3,450", "800元", "$99", "RMB 500").
"""

import re
from typing import List, Optional

_NUMBER = r"(\d{1,3}(?:,\d{3})+|\d+)(?:\.(\d+))?"

_PREFIXED = re.compile(r"(?:[¥￥$]|RMB|CNY|USD)\s*" + _NUMBER, re.IGNORECASE)
_SUFFIXED = re.compile(_NUMBER + r"\s*(万元|元|块|RMB|CNY)", re.IGNORECASE)

_BUDGET = re.compile(
    r"预算(?:是|为|大概|约|在)?\s*[:：]?\s*(\d+(?:\.\d+)?)\s*(万|千|k|K|w|W)?",
)


def _to_float(whole: str, fraction: Optional[str]) -> float:
    value = whole.replace(",", "")
    if fraction:
        value = f"{value}.{fraction}"
    return float(value)


def extract_currency_amounts(text: str) -> List[float]:
    """All currency-marked amounts in `text`, in order of appearance."""
    if not text:
        return []

    found = []
    taken = set()
    for match in _PREFIXED.finditer(text):
        found.append((match.start(), _to_float(match.group(1), match.group(2))))
        taken.add(match.start(1))
    for match in _SUFFIXED.finditer(text):
        # "¥800元" is one amount
        if match.start(1) in taken:
            continue
        value = _to_float(match.group(1), match.group(2))
        if match.group(3) == "万元":
            value *= 10000
        found.append((match.start(), value))

    found.sort(key=lambda item: item[0])
    return [value for _, value in found]


def lowest_currency_amount(text: str) -> Optional[float]:
    amounts = [a for a in extract_currency_amounts(text) if a > 0]
    return min(amounts) if amounts else None


def parse_budget_amount(text: str) -> Optional[float]:
    """
    Budget stated in a request, e.g. "预算5000" -> 5000, "预算1.5万" -> 15000.
    """
    if not text:
        return None
    match = _BUDGET.search(text)
    if not match:
        return None
    value = float(match.group(1))
    unit = (match.group(2) or "").lower()
    if unit in ("万", "w"):
        value *= 10000
    elif unit in ("千", "k"):
        value *= 1000
    return value
