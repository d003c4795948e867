# booking/api_errors.py
#
# Purpose:
# - Translate engine errors into HTTP responses for every DRF view.
#
# Mapping:
#   NotFoundError        -> 404
#   ConflictError        -> 409  {"detail", "reason"}
#   InvalidStateError    -> 409
#   BusyError            -> 503  + Retry-After
#   InvalidRequestError  -> 400
#
# Anything else falls through to DRF's default handler (and unexpected
# exceptions keep propagating as 500s).
#
import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

from .conf import engine_setting
from .exceptions import (
    BusyError,
    ConflictError,
    InvalidRequestError,
    InvalidStateError,
    NotFoundError,
    SchedulingError,
)

logger = logging.getLogger(__name__)

STATUS_BY_ERROR = [
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (InvalidStateError, status.HTTP_409_CONFLICT),
    (BusyError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (InvalidRequestError, status.HTTP_400_BAD_REQUEST),
]


def scheduling_exception_handler(exc, context):
    if not isinstance(exc, SchedulingError):
        return exception_handler(exc, context)

    code = status.HTTP_400_BAD_REQUEST
    for error_class, mapped in STATUS_BY_ERROR:
        if isinstance(exc, error_class):
            code = mapped
            break

    body = {"detail": exc.message}
    headers = {}
    if isinstance(exc, ConflictError):
        body["reason"] = exc.reason.value
    if isinstance(exc, BusyError):
        headers["Retry-After"] = str(max(1, int(round(float(engine_setting("LOCK_TIMEOUT_SECONDS"))))))
        logger.warning("Request rejected as busy: %s", exc.message)

    return Response(body, status=code, headers=headers)
