"""Record codec helpers shared by the model ``to_record``/``from_record`` pairs.

Records are plain JSON-compatible dicts: Decimals as strings, datetimes
as ISO-8601 UTC strings, enums as their values.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional


def dump_ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def load_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value is not None else None


def dump_money(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


def load_money(value: Any) -> Optional[Decimal]:
    return Decimal(str(value)) if value is not None else None
