import logging
from typing import Optional, Sequence
from pydantic import ValidationError
from csv_assistant.core.config import get_settings
from csv_assistant.core.errors import ExecutionError, ParseError
from csv_assistant.core.schemas import ColumnProfile, Row, SpreadsheetFilter
from csv_assistant.services import ai_client, prompts
from csv_assistant.services.response_schemas import FILTER_FUNCTION_SCHEMA
from csv_assistant.services.sandbox import dry_run_row_filter

logger = logging.getLogger(__name__)


async def generate_filter_function(
    query: str,
    columns: Sequence[ColumnProfile],
    sample: Sequence[Row],
) -> SpreadsheetFilter:
    """
    Turn a natural language query into a verified row predicate.

    Raises:
        ExecutionError: no attempt produced a predicate that runs on the sample
    """
    settings = get_settings()
    last_error: Optional[str] = None

    for attempt in range(1, settings.filter_max_attempts + 1):
        try:
            content = await ai_client.call_ai(
                prompts.filter_function_prompt(query, columns, sample, last_error),
                prompts.SYSTEM_FILTER,
                schema=FILTER_FUNCTION_SCHEMA,
            )
            try:
                response = SpreadsheetFilter.model_validate(ai_client.parse_json_object(content))
            except ValidationError as e:
                raise ParseError(
                    "AI response was missing required fields 'jsFunctionBody' or 'explanation'."
                ) from e
            dry_run_row_filter(sample, response.function_body)
            return response
        except (ParseError, ExecutionError) as e:
            last_error = str(e)
            logger.warning(f"Error in filter function generation (attempt {attempt}): {e}")

    raise ExecutionError(f"AI failed to generate a valid filter function. Last error: {last_error}")
