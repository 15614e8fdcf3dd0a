import json
from typing import Type, TypeVar

from fastapi import HTTPException, Request
from pydantic import BaseModel, ValidationError

from ..core.exceptions import format_validation_errors

ModelT = TypeVar("ModelT", bound=BaseModel)


def get_client_ip(request) -> str:
    """
    Get client IP address from request.

    Args:
        request: FastAPI request object

    Returns:
        Client IP address
    """
    # Check for X-Forwarded-For header (if behind proxy)
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        # Take the first IP in the chain
        return forwarded.split(",")[0].strip()

    # Otherwise use client.host
    return request.client.host if request.client else "unknown"


async def parse_event(request: Request, model: Type[ModelT]) -> ModelT:
    """
    Parse a telemetry payload into its typed event.

    Beacons sent during page unload arrive as text/plain or
    application/octet-stream carrying a JSON string; they are decoded the
    same way as application/json bodies.
    """
    raw = await request.body()
    try:
        data = json.loads(raw.decode("utf-8")) if raw else None
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise HTTPException(status_code=400, detail=[{"field": None, "message": "Body must be a JSON object"}])

    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail=[{"field": None, "message": "Body must be a JSON object"}])

    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=format_validation_errors(e.errors()))
