from typing import Any, Dict

from sqlmodel import SQLModel

from margin_tracker.core.dates import utc_now_iso


def with_timestamp(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Success envelope: the payload plus the server time."""
    return {**payload, "timestamp": utc_now_iso()}


def row(model: SQLModel, **extra: Any) -> Dict[str, Any]:
    """A table row as a JSON-ready dict, with optional extra keys."""
    return {**model.model_dump(), **extra}
