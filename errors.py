class TaskApiError(Exception):
    """Base error. `code` is the stable classification string sent to clients."""

    code = "InternalError"
    status_code = 500

    def __init__(self, detail: str | None = None):
        super().__init__(detail or self.code)
        self.detail = detail


class CredentialError(TaskApiError):
    status_code = 401


class MalformedCredential(CredentialError):
    code = "MalformedCredential"


class InvalidCredential(CredentialError):
    code = "InvalidCredential"


class ExpiredCredential(CredentialError):
    code = "ExpiredCredential"


class ValidationFailed(TaskApiError):
    code = "ValidationFailed"
    status_code = 400


class NotFound(TaskApiError):
    code = "NotFound"
    status_code = 404


class PersistenceError(TaskApiError):
    code = "PersistenceError"
    status_code = 500
