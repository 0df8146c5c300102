from typing import Any, Optional

from fastapi import HTTPException


def api_error(
    status_code: int,
    error: str,
    message: str,
    headers: Optional[dict[str, str]] = None,
    **extra: Any,
) -> HTTPException:
    """HTTPException whose body is {"detail": {"error": ..., "message": ..., **extra}}"""
    return HTTPException(
        status_code=status_code,
        detail={"error": error, "message": message, **extra},
        headers=headers,
    )
