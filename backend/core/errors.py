from typing import Optional


class AppError(Exception):
    """
    Base class for every failure that crosses a component boundary.
    - `kind` is the stable category shown to clients.
    - `status_code` is what the HTTP layer answers with.
    - `code` is an optional machine readable sub-reason.
    """

    kind = "error"
    status_code = 500

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code

    def to_dict(self) -> dict:
        return {
            "success": False,
            "error": self.kind,
            "code": self.code,
            "message": self.message
        }


class ValidationError(AppError):
    kind = "validation_error"
    status_code = 400

    def __init__(self, message: str, code: Optional[str] = None, field: Optional[str] = None):
        super().__init__(message, code)
        self.field = field


class NotFoundError(AppError):
    kind = "not_found"
    status_code = 404

    def __init__(self, resource: str, resource_id):
        super().__init__(f"{resource} not found: {resource_id}", code="NOT_FOUND")
        self.resource = resource
        self.resource_id = resource_id


class UnauthorizedError(AppError):
    kind = "unauthorized"
    status_code = 403

    def __init__(self, message: str = "You do not have access to this resource"):
        super().__init__(message, code="FORBIDDEN")


class InvalidStateError(AppError):
    kind = "invalid_state"
    status_code = 409

    def __init__(self, message: str, current_status: Optional[str] = None):
        super().__init__(message, code="INVALID_STATE")
        self.current_status = current_status


class ExternalServiceError(AppError):
    """A collaborator (embedding, completion, vector db, blob store, extractor) failed.
    Only the service and the operation are exposed; the underlying cause is logged.
    """

    kind = "external_service_error"
    status_code = 503

    def __init__(self, service: str, operation: str):
        super().__init__(f"{service} failed during {operation}", code="EXTERNAL_SERVICE")
        self.service = service
        self.operation = operation


class VectorStoreUnavailable(ExternalServiceError):

    def __init__(self, operation: str):
        super().__init__("vector store", operation)
