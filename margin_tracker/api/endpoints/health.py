from fastapi import APIRouter
from typing import Any

router = APIRouter()

@router.get("", response_model=dict[str, Any])
def health_check() -> Any:
    """
    Liveness probe. Does not touch the database or the vendor APIs.
    """
    return {"status": "ok"}
