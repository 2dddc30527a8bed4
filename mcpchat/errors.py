"""Error taxonomy shared by the chat pipeline and the HTTP layer.

Connection failures to a single tool provider are not exceptions: the
connector returns a ``ProviderUnavailable`` value instead (see
``mcpchat.tools.connector``).
"""

from typing import Any, Dict, Optional


class ChatServiceError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": {"code": self.code, "message": self.message, "details": self.details}}


class AuthorizationError(ChatServiceError):
    status_code = 401
    code = "unauthorized"


class ValidationError(ChatServiceError):
    status_code = 400
    code = "validation_error"


class NotFoundError(ChatServiceError):
    status_code = 404
    code = "not_found"


class DuplicateRegistration(ChatServiceError):
    status_code = 409
    code = "duplicate_registration"


class ModelInferenceError(ChatServiceError):
    status_code = 502
    code = "model_error"


class PersistenceError(ChatServiceError):
    status_code = 500
    code = "persistence_error"
