"""
api/errors.py -- Shorthand for raising enveloped HTTP errors from routes.

api_error() builds the HTTPException that the handler in api/main.py renders
as {"error": {"code", "message", "detail"}}.
"""

from typing import Optional

from fastapi import HTTPException

from api.models import ErrorDetail


def api_error(status_code: int, code: str, message: str, detail: Optional[str] = None) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail=ErrorDetail(code=code, message=message, detail=detail).model_dump(),
    )


def not_found(entity: str) -> HTTPException:
    return api_error(404, "not_found", f"{entity} not found.")


def forbidden(message: str) -> HTTPException:
    return api_error(403, "forbidden", message)
