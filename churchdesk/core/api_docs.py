from churchdesk.schemas.common import ErrorOut, PlainErrorOut


_ERROR_EXAMPLES: dict[int, tuple[str, str]] = {
    400: ("bad_request", "Bad request"),
    401: ("unauthorized", "Unauthorized"),
    404: ("not_found", "Resource not found"),
    422: ("validation_error", "Validation error"),
    500: ("internal_error", "Internal server error"),
}

_PLAIN_ERROR_EXAMPLES: dict[int, str] = {
    400: "Automation or Person not found",
    401: "Invalid automation secret",
}


def error_responses(*status_codes: int) -> dict[int, dict]:
    responses: dict[int, dict] = {}
    for status_code in status_codes:
        code, message = _ERROR_EXAMPLES.get(status_code, ("http_error", "HTTP error"))
        responses[status_code] = {
            "model": ErrorOut,
            "description": message,
            "content": {
                "application/json": {
                    "example": {
                        "error": {
                            "code": code,
                            "message": message,
                            "request_id": "request-id",
                            "path": "/example",
                            "details": None,
                        }
                    }
                }
            },
        }
    return responses


def plain_error_responses(*status_codes: int) -> dict[int, dict]:
    """Docs for routes that answer with a flat ``{"error": "..."}`` body."""
    responses: dict[int, dict] = {}
    for status_code in status_codes:
        message = _PLAIN_ERROR_EXAMPLES.get(status_code, "Request failed")
        responses[status_code] = {
            "model": PlainErrorOut,
            "description": message,
            "content": {"application/json": {"example": {"error": message}}},
        }
    return responses
