"""
Unit tests for the transform sandbox.
"""
import pytest
from csv_assistant.core.errors import ExecutionError
from csv_assistant.services.sandbox import (
    DRY_RUN_ROWS, apply_row_filter, compile_transform, dry_run_row_filter, dry_run_transform, run_transform
)


ADD_TOTAL = """
for row in data:
    row['Total'] = parse_number(row['Sales']) * parse_number(row['Units'])
return data
"""


@pytest.mark.unit
def test_run_transform_applies_to_full_dataset(sales_rows):
    """Test a transform runs on every row after its dry run."""
    result = run_transform(sales_rows, ADD_TOTAL)

    assert len(result) == len(sales_rows)
    assert result[0]["Total"] == 300.0
    assert result[3]["Total"] == 10000.0


@pytest.mark.unit
def test_run_transform_does_not_mutate_input(sales_rows):
    """Test the caller's rows are left untouched."""
    run_transform(sales_rows, ADD_TOTAL)

    assert "Total" not in sales_rows[0]


@pytest.mark.unit
def test_missing_return_is_reported_as_not_an_array(sales_rows):
    """Test a body without return is reported as not returning an array."""
    body = "for row in data:\n    row['x'] = 1"

    with pytest.raises(ExecutionError, match="did not return an array"):
        dry_run_transform(sales_rows, body)


@pytest.mark.unit
def test_wrong_return_type_is_rejected(sales_rows):
    """Test non-list results and lists of non-dicts are rejected."""
    with pytest.raises(ExecutionError, match="returned dict"):
        dry_run_transform(sales_rows, "return {'rows': data}")

    with pytest.raises(ExecutionError, match="Item 0"):
        dry_run_transform(sales_rows, "return [1, 2]")


@pytest.mark.unit
def test_runtime_error_names_exception_type(sales_rows):
    """Test runtime errors name the exception type."""
    with pytest.raises(ExecutionError, match="KeyError"):
        dry_run_transform(sales_rows, "return [{'v': r['Missing']} for r in data]")


@pytest.mark.unit
def test_syntax_error_is_an_execution_error():
    """Test syntax errors become ExecutionError."""
    with pytest.raises(ExecutionError, match="syntax error"):
        compile_transform("return [row for row in data")


@pytest.mark.unit
def test_empty_body_is_rejected():
    """Test an empty body is rejected."""
    with pytest.raises(ExecutionError, match="empty"):
        compile_transform("   ")


@pytest.mark.unit
def test_dry_run_sees_at_most_twenty_rows():
    """Test the dry run sample is capped at twenty rows."""
    rows = [{"i": i} for i in range(100)]

    result = dry_run_transform(rows, "return data", sample_size=500)

    assert len(result) == DRY_RUN_ROWS


@pytest.mark.unit
def test_rows_past_the_sample_can_still_fail_the_full_run():
    """Test a full run fails on rows the dry run never saw."""
    rows = [{"v": "1"}] * 25 + [{"v": None}]
    body = "return [{'v': int(r['v'])} for r in data]"

    dry_run_transform(rows, body)
    with pytest.raises(ExecutionError, match="TypeError"):
        run_transform(rows, body)


@pytest.mark.unit
def test_row_filter_keeps_matching_rows(sales_rows):
    """Test the row filter keeps rows the predicate accepts."""
    body = "return row['Region'] == 'East'"

    kept = apply_row_filter(sales_rows, body)

    assert [r["Product"] for r in kept] == ["A", "B"]


@pytest.mark.unit
def test_row_filter_dry_run_surfaces_errors(sales_rows):
    """Test a broken predicate fails its dry run."""
    with pytest.raises(ExecutionError, match="NameError"):
        dry_run_row_filter(sales_rows, "return undefined_name > 1")
