"""
    Centralized exception handling for the FastAPI application.
"""
from fastapi import Request, HTTPException
from fastapi.responses import JSONResponse
import logging

log = logging.getLogger(__name__)

class APIException(Exception):
    """Base class for API exceptions."""
    def __init__(self, status_code: int, detail: str):
        self.status_code = status_code
        self.detail = detail
        super().__init__(self.detail)

class ImageNotFoundException(APIException):
    """Exception for when an image blob is not on disk."""
    def __init__(self, image_id: int):
        super().__init__(status_code=404, detail=f"Image with ID '{image_id}' not found.")

class MalformedRequestException(APIException):
    """Exception for upload bodies with missing or unexpected fields."""
    def __init__(self, detail: str):
        super().__init__(status_code=400, detail=detail)

class PayloadTooLargeException(APIException):
    """Exception for uploads over the configured size limit."""
    def __init__(self, limit: int):
        super().__init__(status_code=413, detail=f"Upload exceeds the {limit} byte limit.")

class BlobConflictException(APIException):
    """Exception for writing an original that already exists."""
    def __init__(self, image_id: int):
        super().__init__(status_code=409, detail=f"Image with ID '{image_id}' already has an original.")

class UnsupportedFormatException(APIException):
    """Exception for image bytes that cannot be decoded."""
    def __init__(self, detail: str):
        super().__init__(status_code=415, detail=detail)

class StoreException(APIException):
    """Exception for metadata or blob store failures."""
    def __init__(self, detail: str):
        super().__init__(status_code=500, detail=detail)

async def api_exception_handler(request: Request, exc: APIException):
    """Handles API exceptions."""
    log.error(f"API Exception: {exc.detail}", exc_info=exc)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
    )

async def http_exception_handler(request: Request, exc: HTTPException):
    """Handles FastAPI HTTP exceptions."""
    log.error(f"HTTP Exception: {exc.detail}", exc_info=exc)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
    )

async def generic_exception_handler(request: Request, exc: Exception):
    """Handles all other exceptions."""
    log.error(f"Unhandled Exception: {str(exc)}", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "An unexpected error occurred."},
    )

def add_exception_handlers(app):
    """Adds exception handlers to the FastAPI app."""
    app.add_exception_handler(APIException, api_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
