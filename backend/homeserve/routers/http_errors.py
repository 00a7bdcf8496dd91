import logging
from typing import NoReturn

from fastapi import HTTPException

from homeserve.services.errors import (
    FileTooLargeError,
    ServiceUnavailableError,
    StorageFailureError,
    UnsupportedTypeError,
    WorkflowError,
    WorkflowInvalidStateError,
    WorkflowNotFoundError,
    WorkflowPermissionError,
)

logger = logging.getLogger(__name__)


def _status_for(exc: WorkflowError) -> int:
    if isinstance(exc, WorkflowNotFoundError):
        return 404
    if isinstance(exc, WorkflowPermissionError):
        return 403
    if isinstance(exc, (WorkflowInvalidStateError, ServiceUnavailableError)):
        return 409
    if isinstance(exc, FileTooLargeError):
        return 413
    if isinstance(exc, UnsupportedTypeError):
        return 415
    if isinstance(exc, StorageFailureError):
        return 503
    return 400


def raise_workflow_http_error(exc: WorkflowError) -> NoReturn:
    status_code = _status_for(exc)
    if status_code >= 500:
        logger.error("Workflow storage failure: %s", exc)
    raise HTTPException(status_code=status_code, detail={"error": exc.code, "message": str(exc)}) from exc
