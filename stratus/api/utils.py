import logging
import uuid

from fastapi import Header, HTTPException
from starlette.requests import Request
from starlette.responses import JSONResponse

from stratus.services.errors import (
    ConfigParseException,
    ConfigValidationException,
    IntegrityException,
    NotFoundException,
    PermissionDeniedException,
    StratusException,
    TemplateRenderException,
)

ERROR_STATUS = {
    ConfigParseException: 400,
    ConfigValidationException: 400,
    TemplateRenderException: 400,
    PermissionDeniedException: 403,
    NotFoundException: 404,
    IntegrityException: 409,
}

logger = logging.getLogger(__name__)


def _exception_handler(request: Request, exc: Exception):
    status = ERROR_STATUS.get(type(exc), 500)
    if status >= 500:
        logger.exception("Unhandled application error for path=%s: %s", request.url.path, exc)
    else:
        logger.warning("Request failed path=%s status=%s error=%s", request.url.path, status, exc)
    return JSONResponse({"detail": str(exc)}, status_code=status)


def register_exception_handlers(app):
    app.exception_handler(StratusException)(_exception_handler)


def get_caller_id(x_user_id: str | None = Header(default=None)) -> uuid.UUID:
    """Caller identity as established by the authenticating proxy in front of this service."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="User not authenticated")
    try:
        return uuid.UUID(x_user_id)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid user id") from None
