"""
Common Pydantic schemas for API responses.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ConfigDict


def _now() -> datetime:
    return datetime.now(timezone.utc)


class APIResponse(BaseModel):
    """Base API response model."""
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    message: Optional[str] = None
    timestamp: datetime = Field(default_factory=_now)


class SuccessResponse(APIResponse):
    """Success response model."""
    data: Optional[Any] = None


class ErrorResponse(APIResponse):
    """Error response model."""
    success: bool = False
    error_code: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


class PaginatedResponse(SuccessResponse):
    """Paginated response model."""
    data: List[Any]
    pagination: Dict[str, Any] = Field(
        description="Pagination metadata",
        json_schema_extra={
            "example": {
                "total": 100,
                "limit": 10,
                "offset": 0,
                "has_next": True,
                "has_previous": False
            }
        }
    )


class HealthCheckResponse(BaseModel):
    """Health check response."""
    status: str = "healthy"
    timestamp: datetime = Field(default_factory=_now)
    version: str = "0.1.0"
    services: Dict[str, str] = Field(default_factory=dict)


def create_success_response(data: Any = None, message: Optional[str] = None) -> SuccessResponse:
    return SuccessResponse(data=data, message=message)


def create_error_response(
    message: str,
    error_code: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None
) -> ErrorResponse:
    return ErrorResponse(message=message, error_code=error_code, details=details)


def create_paginated_response(
    data: List[Any],
    total: int,
    limit: int,
    offset: int
) -> PaginatedResponse:
    return PaginatedResponse(
        data=data,
        pagination={
            "total": total,
            "limit": limit,
            "offset": offset,
            "has_next": offset + limit < total,
            "has_previous": offset > 0
        }
    )
