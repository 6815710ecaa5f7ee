from typing import Optional

from fastapi import status


class QueryError(Exception):
    """Base class for failures the AI assistant reports back to the caller."""

    status_code = status.HTTP_400_BAD_REQUEST
    answer = "I could not process the query."
    error_message = "Query failed"

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail or self.error_message)
        self.detail = detail or self.error_message


class QueryValidationError(QueryError):
    """Malformed or unsupported intent, or an invalid enum value inside it."""

    status_code = status.HTTP_400_BAD_REQUEST
    answer = "I could not understand the query. Try rephrasing it."
    error_message = "Could not understand the query"


class QueryPermissionError(QueryError, PermissionError):
    """A privileged query was requested by a non-privileged caller."""

    status_code = status.HTTP_403_FORBIDDEN
    answer = "You do not have permission to run this query."
    error_message = "Insufficient privileges"


class RateLimitExceeded(QueryError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    answer = "You have reached the maximum number of queries allowed per minute."
    error_message = "Rate limit exceeded. Try again later."
