from blackbox_crm.core.observability import ERROR_CODES
from blackbox_crm.schemas.common import ErrorOut


def error_responses(*status_codes: int) -> dict[int, dict]:
    """OpenAPI ``responses`` entries documenting the error envelope per status."""
    responses: dict[int, dict] = {}
    for status_code in status_codes:
        code, message = ERROR_CODES.get(status_code, ("http_error", "HTTP error"))
        example = {
            "error": {
                "code": code,
                "message": message,
                "request_id": "request-id",
                "path": "/contacts",
                "details": None,
            }
        }
        responses[status_code] = {
            "model": ErrorOut,
            "description": message,
            "content": {"application/json": {"example": example}},
        }
    return responses
