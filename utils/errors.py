"""Structured error classification shared by the history layer, the bridge and the API."""

# API Error Codes - Centralized definitions for consistent error handling
ERR_INVALID_INPUT = "INVALID_INPUT"
ERR_MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"
ERR_NOT_FOUND = "NOT_FOUND"
ERR_PROJECT_NOT_FOUND = "PROJECT_NOT_FOUND"
ERR_SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
ERR_REQUEST_NOT_FOUND = "REQUEST_NOT_FOUND"
ERR_QUESTION_NOT_FOUND = "QUESTION_NOT_FOUND"
ERR_CONFLICT = "CONFLICT"
ERR_AGENT_FAILED = "AGENT_FAILED"
ERR_OPERATION_FAILED = "OPERATION_FAILED"


class RelayError(Exception):
    """Base error carrying an API error code and HTTP status."""

    code = ERR_OPERATION_FAILED
    status = 500

    def __init__(self, message, code=None, details=None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details


class ValidationError(RelayError):
    code = ERR_INVALID_INPUT
    status = 400


class NotFoundError(RelayError):
    code = ERR_NOT_FOUND
    status = 404


class ConflictError(RelayError):
    code = ERR_CONFLICT
    status = 409


class AgentError(RelayError):
    code = ERR_AGENT_FAILED
    status = 502
