class WorkflowError(ValueError):
    """Base class for user-visible workflow errors.

    ``code`` is the stable identifier callers use to tell failures apart.
    """

    code = "WorkflowError"


class WorkflowValidationError(WorkflowError):
    code = "ValidationError"


class NoDocumentsSubmittedError(WorkflowValidationError):
    code = "NoDocumentsSubmitted"


class QuotaExceededError(WorkflowValidationError):
    code = "QuotaExceeded"


class FileTooLargeError(WorkflowValidationError):
    code = "FileTooLarge"


class UnsupportedTypeError(WorkflowValidationError):
    code = "UnsupportedType"


class WorkflowInvalidStateError(WorkflowError):
    code = "InvalidState"


class WorkflowPermissionError(WorkflowError):
    code = "Forbidden"


class WorkflowNotFoundError(WorkflowError):
    code = "NotFound"


class ServiceUnavailableError(WorkflowError):
    code = "ServiceUnavailable"


class StorageFailureError(WorkflowError):
    code = "StorageFailure"
