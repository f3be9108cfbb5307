from __future__ import annotations

import math
import re
import warnings
from datetime import date, datetime
from typing import Optional

import pandas as pd


CURRENCY_SYMBOLS = ("$", "€", "£", "¥", "₹")
THOUSANDS_SEPARATOR = ","
TRUTHY_PREFIXES = ("t", "true", "yes")

_NUMBER = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")


def is_blank(value: object) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and not value.strip()


def parse_number(value: object) -> Optional[float]:
    """Parse a cell into a finite float, or None.

    Thousands separators and a leading/trailing currency symbol are ignored:
    "$1,250,000" -> 1250000.0.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        out = float(value)
        return out if math.isfinite(out) else None
    text = str(value).strip()
    for symbol in CURRENCY_SYMBOLS:
        text = text.replace(symbol, "")
    text = text.replace(THOUSANDS_SEPARATOR, "").replace(" ", "")
    if not _NUMBER.match(text):
        return None
    out = float(text)
    return out if math.isfinite(out) else None


def parse_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower().startswith(TRUTHY_PREFIXES)


def parse_date(value: object) -> Optional[datetime]:
    """Generic date parsing; anything unparseable is None, never a default date."""
    if is_blank(value) or isinstance(value, (bool, int, float)):
        return None
    if isinstance(value, datetime):
        ts = pd.Timestamp(value)
    elif isinstance(value, date):
        ts = pd.Timestamp(datetime(value.year, value.month, value.day))
    else:
        try:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore")
                ts = pd.to_datetime(str(value).strip(), errors="coerce")
        except (ValueError, TypeError, OverflowError):
            return None
    if ts is None or pd.isna(ts):
        return None
    if ts.tzinfo is not None:
        ts = ts.tz_localize(None)
    return ts.to_pydatetime()


def display_text(value: object) -> str:
    if is_blank(value):
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def month_bucket(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return f"{value.year:04d}-{value.month:02d}"
