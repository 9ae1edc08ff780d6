import math
import re
from datetime import datetime
from typing import Any, List, Optional

from .models import UNKNOWN_DATE, MeasuredValue, Numeric, Text

STRICT_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_DECIMAL = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?$")

# Tried in order after ISO-8601
DATE_FORMATS = (
    "%Y/%m/%d",
    "%m/%d/%Y",
    "%d/%m/%Y",
    "%d-%m-%Y",
    "%d %B %Y",
    "%B %d, %Y",
    "%B %d %Y",
    "%b %d, %Y",
    "%b %d %Y",
    "%d %b %Y",
    "%Y.%m.%d",
    "%Y%m%d",
    "%Y",
)


def _parse_decimal(raw: str) -> Optional[float]:
    txt = raw.strip()
    if not _DECIMAL.match(txt):
        return None
    num = float(txt)
    # "1e999" matches but overflows to inf
    return num if math.isfinite(num) else None


def coerce_value(raw: Any) -> MeasuredValue:
    if isinstance(raw, bool):
        return Text(str(raw).lower())
    if isinstance(raw, (int, float)):
        try:
            num = float(raw)
        except OverflowError:
            # json keeps ints of any size
            return Text(str(raw))
        return Numeric(num) if math.isfinite(num) else Text(str(raw))
    if raw is None:
        return Text("")
    if isinstance(raw, str):
        num = _parse_decimal(raw)
        return Numeric(num) if num is not None else Text(raw)
    return Text(str(raw))


def coerce_flag(raw: Any) -> bool:
    """Only literal True or the exact token "true" count as abnormal."""
    return raw is True or raw == "true"


def _is_calendar_date(raw: str) -> bool:
    try:
        datetime.strptime(raw, "%Y-%m-%d")
    except ValueError:
        return False
    return True


def _iso_day(d: datetime) -> str:
    # strftime("%Y") does not zero-pad years below 1000 on glibc
    return f"{d.year:04d}-{d.month:02d}-{d.day:02d}"


def parse_loose_date(raw: str) -> Optional[str]:
    txt = raw.strip()
    if not txt:
        return None
    iso = txt[:-1] + "+00:00" if txt.endswith(("Z", "z")) else txt
    try:
        return _iso_day(datetime.fromisoformat(iso))
    except ValueError:
        pass
    for fmt in DATE_FORMATS:
        try:
            return _iso_day(datetime.strptime(txt, fmt))
        except ValueError:
            continue
    return None


def coerce_date(raw: Any) -> str:
    if not isinstance(raw, str):
        return UNKNOWN_DATE
    if STRICT_DATE.match(raw) and _is_calendar_date(raw):
        return raw
    return parse_loose_date(raw) or UNKNOWN_DATE


def coerce_text_list(raw: Any) -> List[str]:
    if not isinstance(raw, (list, tuple)):
        return []
    return [str(x) for x in raw if x is not None]


def coerce_text(raw: Any) -> str:
    return raw if isinstance(raw, str) else ""


def coerce_optional_text(raw: Any) -> Optional[str]:
    if isinstance(raw, str) and raw.strip():
        return raw
    return None
