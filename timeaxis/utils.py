from __future__ import annotations

import dataclasses
import datetime as _dt
import decimal
import hashlib
import json
import math
import numbers
from typing import Any, Optional

import numpy as np


# -------------------------
# Hashing utilities
# -------------------------
def canonical_json_dumps(payload: Any) -> str:
    """
    Deterministic JSON string for hashing:
    - separators=(',', ':')
    - sort_keys=True
    - ensure_ascii=False
    """
    return json.dumps(
        payload, ensure_ascii=False, separators=(",", ":"), sort_keys=True
    )


def canonical_json_hash(payload: Any) -> tuple[str, str]:
    """
    Return (short_hash8, full_hash_hex) computed over canonical JSON bytes (UTF-8).
    """
    s = canonical_json_dumps(payload)
    b = s.encode("utf-8")
    h = hashlib.sha256(b).hexdigest()
    return h[:8], h


# -------------------------
# JSON sanitising
# -------------------------
def sanitize_for_json(obj: Any) -> Any:
    """
    Recursively convert arbitrary objects into JSON-serializable Python primitives.

    Conversions performed:
    - Enums -> .value
    - dataclasses -> dict via dataclasses.asdict() then sanitized recursively
    - numpy scalars -> Python int/float via .item()
    - datetime/date (including pandas.Timestamp) -> ISO-8601 string
    - dicts -> sanitized dict with stringified keys
    - lists/tuples/sets -> lists with sanitized elements
    - None/str/int/float/bool left unchanged
    """
    if obj is None or isinstance(obj, (bool, int, float, str)):
        return obj

    if isinstance(obj, (_dt.datetime, _dt.date)):
        return obj.isoformat()

    # Enum members expose both .name and .value; keep the user-facing value
    if hasattr(obj, "value") and hasattr(obj, "name") and not isinstance(obj, type):
        value = getattr(obj, "value")
        if isinstance(value, (str, int)):
            return value

    if isinstance(obj, np.generic):
        return obj.item()

    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return sanitize_for_json(dataclasses.asdict(obj))

    if isinstance(obj, dict):
        return {str(k): sanitize_for_json(v) for k, v in obj.items()}

    if isinstance(obj, (list, tuple, set)):
        return [sanitize_for_json(x) for x in obj]

    return str(obj)


# -------------------------
# Number parsing
# -------------------------
_SUFFIX_MULTIPLIERS = {
    "K": 1_000.0,
    "M": 1_000_000.0,
    "B": 1_000_000_000.0,
}


def parse_number(value: Any) -> Optional[float]:
    """
    Interpret a metric cell as a float.

    Numbers pass through, Decimals included. Strings may carry thousands
    separators and a K/M/B magnitude suffix ("1,200" -> 1200.0, "1.5K" -> 1500.0). Booleans,
    blanks, NaN/inf and anything unparseable return None so the value is
    excluded from aggregation instead of counted as zero.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (numbers.Real, decimal.Decimal)):
        try:
            number = float(value)
        except (ValueError, OverflowError):
            return None
        return number if math.isfinite(number) else None
    if not isinstance(value, str):
        return None

    cleaned = value.strip().replace(",", "")
    if not cleaned:
        return None
    multiplier = 1.0
    suffix = cleaned[-1].upper()
    if suffix in _SUFFIX_MULTIPLIERS:
        multiplier = _SUFFIX_MULTIPLIERS[suffix]
        cleaned = cleaned[:-1].strip()
    try:
        number = float(cleaned) * multiplier
    except ValueError:
        return None
    return number if math.isfinite(number) else None
