"""
Compile-dry run-commit gate for model-authored code.

The model supplies the *body* of a Python function. Transform bodies become
``def transform(data):`` and must return a list of row dicts; filter bodies
become ``def keep(row):`` and return a truthy value for rows to keep.

Bodies run in-process with a restricted set of globals. This guards against
shape mismatches, not against malicious code.
"""
import copy
import datetime
import logging
import math
import re
import statistics
import textwrap
from typing import Any, Callable, Dict, List, Sequence
from csv_assistant.core.errors import ExecutionError
from csv_assistant.core.performance import track_performance
from csv_assistant.core.sanitization import sanitize_for_logging
from csv_assistant.core.schemas import Row
from csv_assistant.services.profiler import parse_number

logger = logging.getLogger(__name__)

DRY_RUN_ROWS = 20

NOT_A_LIST_MESSAGE = (
    "The function did not return an array (a list of row dicts). "
    "Make sure the body ends with a `return` statement that returns the transformed rows."
)


def _namespace() -> Dict[str, Any]:
    return {
        '__builtins__': __builtins__,
        're': re,
        'math': math,
        'datetime': datetime,
        'statistics': statistics,
        'parse_number': parse_number,
    }


def _compile(body: str, signature: str, name: str) -> Callable:
    if not body or not body.strip():
        raise ExecutionError("The function body is empty.")

    source = f"{signature}\n{textwrap.indent(textwrap.dedent(body), '    ')}\n"
    namespace = _namespace()
    try:
        exec(compile(source, f"<{name}>", "exec"), namespace)
    except SyntaxError as e:
        raise ExecutionError(f"The function body has a syntax error on line {e.lineno}: {e.msg}") from e
    return namespace[name]


def compile_transform(body: str) -> Callable[[List[Row]], Any]:
    """Wrap a body in ``def transform(data):`` and return the callable."""
    return _compile(body, "def transform(data):", "transform")


def compile_row_filter(body: str) -> Callable[[Row], Any]:
    """Wrap a body in ``def keep(row):`` and return the callable."""
    return _compile(body, "def keep(row):", "keep")


def _check_rows(result: Any) -> List[Row]:
    if not isinstance(result, list):
        if result is None:
            raise ExecutionError(NOT_A_LIST_MESSAGE)
        raise ExecutionError(
            f"The function returned {type(result).__name__}, expected a list of row dicts."
        )
    for index, item in enumerate(result):
        if not isinstance(item, dict):
            raise ExecutionError(
                f"Item {index} of the returned list is {type(item).__name__}, expected a dict."
            )
    return result


def _call(func: Callable, argument: Any) -> Any:
    try:
        return func(argument)
    except ExecutionError:
        raise
    except Exception as e:
        raise ExecutionError(f"The function raised {type(e).__name__}: {e}") from e


def dry_run_transform(rows: Sequence[Row], body: str, sample_size: int = DRY_RUN_ROWS) -> List[Row]:
    """
    Run a transform body on a deep copy of at most ``sample_size`` rows.

    Raises:
        ExecutionError: compile failure, runtime exception or wrong result shape
    """
    transform = compile_transform(body)
    sample = copy.deepcopy(list(rows[:min(sample_size, DRY_RUN_ROWS)]))
    return _check_rows(_call(transform, sample))


@track_performance("run_transform")
def run_transform(rows: Sequence[Row], body: str, sample_size: int = DRY_RUN_ROWS) -> List[Row]:
    """
    Dry-run a transform on the sample, then run it on the full dataset.

    No retries happen here; callers feed ExecutionError messages back to the model.
    """
    dry_run_transform(rows, body, sample_size)
    transform = compile_transform(body)
    result = _check_rows(_call(transform, [dict(row) for row in rows]))
    logger.info(f"Transform applied: {len(rows)} rows in, {len(result)} rows out")
    return result


def _filter_rows(keep: Callable, rows: Sequence[Row]) -> List[Row]:
    return [row for row in rows if _call(keep, dict(row))]


def dry_run_row_filter(rows: Sequence[Row], body: str, sample_size: int = DRY_RUN_ROWS) -> List[Row]:
    keep = compile_row_filter(body)
    return _filter_rows(keep, copy.deepcopy(list(rows[:min(sample_size, DRY_RUN_ROWS)])))


@track_performance("apply_row_filter")
def apply_row_filter(rows: Sequence[Row], body: str, sample_size: int = DRY_RUN_ROWS) -> List[Row]:
    """Dry-run a row predicate on the sample, then keep matching rows from the full dataset."""
    dry_run_row_filter(rows, body, sample_size)
    keep = compile_row_filter(body)
    kept = _filter_rows(keep, rows)
    logger.debug(f"Row filter kept {len(kept)}/{len(rows)} rows: {sanitize_for_logging(body, 120)}")
    return kept
