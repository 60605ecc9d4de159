"""
Error taxonomy, error codes and user-friendly error messages.
"""
from typing import Dict, Optional


class AssistantError(Exception):
    """Base class for all analysis pipeline errors."""
    code = "UNKNOWN_ERROR"


class AIUnavailableError(AssistantError):
    """No AI provider is configured."""
    code = "AI_UNAVAILABLE"


class TransportError(AssistantError):
    """The provider was unreachable or rate limited after all retries."""
    code = "AI_TRANSPORT_ERROR"


class ParseError(AssistantError):
    """Model output could not be coerced into the expected JSON shape."""
    code = "AI_PARSE_ERROR"

    def __init__(self, message: str, excerpt: str = ""):
        super().__init__(message)
        self.excerpt = excerpt


class ActionValidationError(AssistantError):
    """The model kept proposing invalid actions until attempts ran out."""
    code = "VALIDATION_FAILED"


class ExecutionError(AssistantError):
    """Model-authored code raised or returned the wrong shape."""
    code = "EXECUTION_FAILED"


class PlanGenerationError(AssistantError):
    """Neither the two-stage pipeline nor its fallback produced plans."""
    code = "PLAN_GENERATION_FAILED"


class SessionNotFoundError(AssistantError):
    code = "SESSION_NOT_FOUND"


class CardNotFoundError(AssistantError):
    code = "CARD_NOT_FOUND"


# Error codes
class ErrorCodes:
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    FILE_EMPTY = "FILE_EMPTY"
    INVALID_FILE_TYPE = "INVALID_FILE_TYPE"
    PARSE_ERROR = "PARSE_ERROR"
    PROCESSING_ERROR = "PROCESSING_ERROR"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    TIMEOUT = "TIMEOUT"
    AI_UNAVAILABLE = AIUnavailableError.code
    AI_TRANSPORT_ERROR = TransportError.code
    AI_PARSE_ERROR = ParseError.code
    VALIDATION_FAILED = ActionValidationError.code
    EXECUTION_FAILED = ExecutionError.code
    PLAN_GENERATION_FAILED = PlanGenerationError.code
    SESSION_NOT_FOUND = SessionNotFoundError.code
    CARD_NOT_FOUND = CardNotFoundError.code
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    ErrorCodes.FILE_TOO_LARGE: {
        "message": "Your file is too large",
        "detail": "The uploaded file exceeds the configured size limit.",
        "suggestion": "Split the file or export only the columns you need."
    },
    ErrorCodes.FILE_EMPTY: {
        "message": "Your file looks empty",
        "detail": "We couldn't find any rows in the uploaded file.",
        "suggestion": "Make sure the file has a header row and at least one data row."
    },
    ErrorCodes.INVALID_FILE_TYPE: {
        "message": "We need a CSV or Excel file",
        "detail": "Supported formats are .csv, .xlsx and .xls.",
        "suggestion": "Export your sheet as CSV and upload it again."
    },
    ErrorCodes.PARSE_ERROR: {
        "message": "We're having trouble reading your file",
        "detail": "The file could not be parsed as a table.",
        "suggestion": "Save the file again as a fresh CSV and retry."
    },
    ErrorCodes.PROCESSING_ERROR: {
        "message": "Something went wrong while preparing your data",
        "detail": "The data preparation step failed.",
        "suggestion": "Check that the file has headers in the first row and try again."
    },
    ErrorCodes.RATE_LIMIT_EXCEEDED: {
        "message": "Slow down a bit",
        "detail": "Too many requests were sent in a short time.",
        "suggestion": "Wait about a minute and try again."
    },
    ErrorCodes.TIMEOUT: {
        "message": "This is taking longer than expected",
        "detail": "The request did not finish within the configured timeout.",
        "suggestion": "Try a smaller sample of your data."
    },
    ErrorCodes.AI_UNAVAILABLE: {
        "message": "AI is not configured",
        "detail": "No AI provider API key was found.",
        "suggestion": "Set GEMINI_API_KEY or GROQ_API_KEY and restart the service."
    },
    ErrorCodes.AI_TRANSPORT_ERROR: {
        "message": "The AI provider is not responding",
        "detail": "The provider was unreachable or rate limited after several retries.",
        "suggestion": "Try again in a moment."
    },
    ErrorCodes.AI_PARSE_ERROR: {
        "message": "The AI returned something we couldn't read",
        "detail": "The model response was not valid JSON of the expected shape.",
        "suggestion": "Try rephrasing your request."
    },
    ErrorCodes.VALIDATION_FAILED: {
        "message": "The AI couldn't produce a valid action",
        "detail": "Every attempt contained invalid actions.",
        "suggestion": "Try a more specific request."
    },
    ErrorCodes.EXECUTION_FAILED: {
        "message": "The AI-generated transformation failed",
        "detail": "The generated code raised an error or returned the wrong shape.",
        "suggestion": "Try describing the change differently."
    },
    ErrorCodes.PLAN_GENERATION_FAILED: {
        "message": "We couldn't come up with any charts",
        "detail": "The AI failed to propose analysis plans for this dataset.",
        "suggestion": "Check the column headers and try again."
    },
    ErrorCodes.SESSION_NOT_FOUND: {
        "message": "Session not found",
        "detail": "The session does not exist or has expired.",
        "suggestion": "Upload the file again to start a new session."
    },
    ErrorCodes.CARD_NOT_FOUND: {
        "message": "Chart not found",
        "detail": "The session has no card with that id.",
        "suggestion": "Reload the session to get the current cards."
    },
    ErrorCodes.UNKNOWN_ERROR: {
        "message": "Something unexpected happened",
        "detail": "We encountered an issue we weren't expecting.",
        "suggestion": "Give it another try in a moment."
    }
}


def get_error_response(error_code: str, additional_detail: Optional[str] = None) -> Dict[str, str]:
    """
    Get user-friendly error response for an error code.

    Args:
        error_code: One of the ErrorCodes constants
        additional_detail: Optional additional detail to append

    Returns:
        Dictionary with code, message, detail, and suggestion
    """
    error_info = ERROR_MESSAGES.get(error_code, ERROR_MESSAGES[ErrorCodes.UNKNOWN_ERROR])

    response = {
        "code": error_code,
        "message": error_info["message"],
        "detail": error_info["detail"],
        "suggestion": error_info["suggestion"]
    }

    if additional_detail:
        response["detail"] = f"{response['detail']} {additional_detail}"

    return response
