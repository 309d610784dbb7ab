"""
Utility functions for generating standardized API responses.
"""

import math
import time
from typing import Any, Dict, List, Optional
from fastapi.responses import JSONResponse

from plenaria_legal.core.exceptions import ConsultationError
from plenaria_legal.core.timeutils import utcnow
from plenaria_legal.schemas import (
    StandardResponse, Metadata, ErrorResponse, SuccessResponse, PaginatedResponse, Pagination,
)


def create_success_response(
    data: Any,
    status_code: int = 200,
    message: Optional[str] = None,
    execution_time: Optional[float] = None,
    additional_details: Optional[Dict[str, Any]] = None
) -> StandardResponse:
    """Create a standardized success response."""

    # Bare confirmations carry only a message
    if data is None and message:
        wrapped_data = SuccessResponse(
            message=message,
            details=additional_details
        )
    else:
        wrapped_data = data

    metadata = Metadata(
        status_code=status_code,
        errors=[],
        execution_time=execution_time or 0.0,
        timestamp=utcnow()
    )

    return StandardResponse(
        data=wrapped_data,
        metadata=metadata,
        success=1
    )


def create_error_response(
    message: str,
    status_code: int = 400,
    errors: Optional[List[str]] = None,
    execution_time: Optional[float] = None,
    code: str = "error",
    additional_details: Optional[Dict[str, Any]] = None
) -> StandardResponse:
    """Create a standardized error response."""

    error_data = ErrorResponse(
        message=message,
        code=code,
        details=additional_details
    )

    metadata = Metadata(
        status_code=status_code,
        errors=errors or [message],
        execution_time=execution_time or 0.0,
        timestamp=utcnow()
    )

    return StandardResponse(
        data=error_data,
        metadata=metadata,
        success=0
    )


def error_json_response(
    message: str,
    status_code: int,
    errors: Optional[List[str]] = None,
    code: str = "error",
    additional_details: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    """Render an error envelope with the matching HTTP status."""
    error_response = create_error_response(
        message=message,
        status_code=status_code,
        errors=errors,
        code=code,
        additional_details=additional_details,
    )
    return JSONResponse(
        status_code=status_code,
        content=error_response.model_dump(mode='json')
    )


def domain_error_response(exc: ConsultationError) -> JSONResponse:
    return error_json_response(
        message=exc.message,
        status_code=exc.status_code,
        code=exc.code,
        additional_details=exc.details,
    )


def paginate(items: List[Any], total: int, page: int, limit: int) -> PaginatedResponse:
    return PaginatedResponse(
        items=items,
        pagination=Pagination(
            total=total,
            page=page,
            limit=limit,
            pages=math.ceil(total / limit) if limit else 0,
        ),
    )


class ResponseTimer:
    """Context manager for measuring execution time."""

    def __init__(self):
        self.start_time = None
        self.execution_time = None

    def __enter__(self):
        self.start_time = time.time()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.execution_time = time.time() - self.start_time

    def get_execution_time(self) -> float:
        """Get the execution time."""
        if self.execution_time is None:
            return time.time() - self.start_time
        return self.execution_time
