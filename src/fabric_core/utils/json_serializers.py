"""JSON fallback encoder for log records."""

from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from pathlib import PurePath
from typing import Any

from pydantic import BaseModel


def json_serializer(obj: Any) -> Any:
    """
    ``default=`` hook for ``json.dumps``.

    Dates become ISO 8601 strings, timedeltas seconds, Decimals floats,
    enums their value and pydantic models their aliased dict (so an
    OperationState logs with wire field names). Anything else is ``str()``.
    """
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, timedelta):
        return obj.total_seconds()
    if isinstance(obj, Decimal):
        return float(obj)
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json", by_alias=True, exclude_none=True)
    if isinstance(obj, (set, frozenset)):
        return sorted(obj, key=str)
    if isinstance(obj, PurePath):
        return str(obj)
    return str(obj)


__all__ = ["json_serializer"]
