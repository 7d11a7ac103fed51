from typing import Any, Optional
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def success_response(
    data: Any = None,
    message: str = "Success",
    status_code: int = 200,
) -> JSONResponse:
    """Standard success envelope: {success, message, data}"""
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder({
            "success": True,
            "message": message,
            "data": data,
        }),
    )


def error_response(
    message: str,
    status_code: int = 500,
    extra: Optional[dict] = None,
) -> JSONResponse:
    """Standard error envelope: {success, message, error: {message, statusCode}}"""
    error = {"message": message, "statusCode": status_code}
    if extra:
        error.update(extra)
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder({
            "success": False,
            "message": message,
            "error": error,
        }),
    )


def paginate(items: list, total: int, page: int, limit: int) -> dict:
    pages = (total + limit - 1) // limit if limit else 0
    return {
        "items": items,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": pages,
        },
    }
