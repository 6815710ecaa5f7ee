import json
import logging
from enum import Enum

from pydantic import ValidationError

from bookmind.core.exceptions import QueryValidationError
from bookmind.core.schemas import QueryIntent


class QueryType(str, Enum):
    USER_WITH_MOST_BOOKS = "USER_WITH_MOST_BOOKS"
    MOST_POPULAR_BOOK = "MOST_POPULAR_BOOK"
    EXPENSIVE_BOOKS = "EXPENSIVE_BOOKS"
    BOOKS_BY_GENRE = "BOOKS_BY_GENRE"
    BOOKS_BY_STATUS = "BOOKS_BY_STATUS"
    USER_STATISTICS = "USER_STATISTICS"
    MY_BOOK_COUNT = "MY_BOOK_COUNT"
    CURRENTLY_READING = "CURRENTLY_READING"
    COMMON_GENRE = "COMMON_GENRE"
    GENERAL_STATISTICS = "GENERAL_STATISTICS"


def strip_code_fences(text: str) -> str:
    return (text or "").replace("```json", "").replace("```", "").strip()


def lower_keys(payload: dict) -> dict:
    return {str(key).lower(): value for key, value in payload.items()}


def parse_intent(raw_text: str) -> QueryIntent:
    """
    Turn the model's raw reply into a QueryIntent.

    Keys are matched case-insensitively, so {"QueryType": ...} and
    {"queryType": ...} are the same intent. The query type itself is not checked
    against QueryType here, the dispatcher rejects unknown values.

    Raises:
        QueryValidationError: reply is not a JSON object or required fields are missing
    """
    try:
        payload = json.loads(strip_code_fences(raw_text))
        if not isinstance(payload, dict):
            raise ValueError(f"expected a JSON object, got {type(payload).__name__}")

        fields = lower_keys(payload)
        parameters = fields.get("parameters")
        if parameters is None:
            fields["parameters"] = {}
        elif isinstance(parameters, dict):
            fields["parameters"] = lower_keys(parameters)

        return QueryIntent.model_validate(fields)

    except (ValueError, ValidationError) as error:
        logging.error(f"Error parsing model response {raw_text!r}: {error}")
        raise QueryValidationError("Could not understand the query")
