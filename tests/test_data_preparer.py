"""
Unit tests for initial data preparation.
"""
import pytest
from csv_assistant.core.errors import AIUnavailableError, ExecutionError
from csv_assistant.services import prompts
from csv_assistant.services.data_preparer import (
    analyze_data_structure, create_cleaning_plan, generate_data_preparation_plan, prepare_dataset
)
from csv_assistant.services.profiler import profile_columns

NO_CHANGE = {"explanation": "Data is already clean.", "jsFunctionBody": None, "outputColumns": []}

CROSSTAB_ROWS = [
    {"Product": "A", "Q1": "10", "Q2": "20"},
    {"Product": "B", "Q1": "5", "Q2": "15"},
    {"Product": "Total", "Q1": "15", "Q2": "35"},
]


def tidy(fake_ai):
    fake_ai.on(prompts.SYSTEM_DATA_STRUCTURE, {"format": "tidy"})
    fake_ai.on(prompts.SYSTEM_CLEANING, {"excludeRows": []})


@pytest.mark.asyncio
@pytest.mark.unit
async def test_missing_return_triggers_one_retry_with_feedback(fake_ai, sales_rows):
    """Test a prep body without return is retried with the failure as feedback."""
    fake_ai.on(
        prompts.SYSTEM_DATA_PREPARATION,
        {"explanation": "Add totals", "jsFunctionBody": "for row in data:\n    row['T'] = 1"},
        {"explanation": "Add totals", "jsFunctionBody": "for row in data:\n    row['T'] = 1\nreturn data"},
    )

    plan = await generate_data_preparation_plan(profile_columns(sales_rows), sales_rows)

    calls = fake_ai.calls_for(prompts.SYSTEM_DATA_PREPARATION)
    assert len(calls) == 2
    assert "did not return an array" not in calls[0]['prompt']
    assert "did not return an array" in calls[1]['prompt']
    assert plan.function_body.endswith("return data")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_preparation_gives_up_after_max_attempts(fake_ai, sales_rows):
    """Test preparation fails after the configured attempts."""
    fake_ai.on(prompts.SYSTEM_DATA_PREPARATION, {"explanation": "x", "jsFunctionBody": "return None"})

    with pytest.raises(ExecutionError, match="Last error: The function did not return an array"):
        await generate_data_preparation_plan(profile_columns(sales_rows), sales_rows)
    assert len(fake_ai.calls_for(prompts.SYSTEM_DATA_PREPARATION)) == 2


@pytest.mark.asyncio
@pytest.mark.unit
async def test_structure_analysis_falls_back_to_tidy(fake_ai, sales_rows):
    """Test a failed structure analysis treats the data as tidy."""
    fake_ai.on(prompts.SYSTEM_DATA_STRUCTURE, "garbage")

    analysis = await analyze_data_structure(profile_columns(sales_rows), sales_rows)

    assert analysis.format == "tidy"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_crosstab_without_plan_is_treated_as_tidy(fake_ai, sales_rows):
    """Test a crosstab verdict without an unpivot plan leaves the data as is."""
    fake_ai.on(prompts.SYSTEM_DATA_STRUCTURE, {"format": "crosstab"})

    analysis = await analyze_data_structure(profile_columns(sales_rows), sales_rows)

    assert analysis.format == "tidy"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_cleaning_plan_failure_means_no_rules(fake_ai, sales_rows):
    """Test a failed cleaning call removes no rows."""
    fake_ai.on(prompts.SYSTEM_CLEANING, {"excludeRows": "Total"})

    plan = await create_cleaning_plan(profile_columns(sales_rows), sales_rows)

    assert plan.exclude_rows == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unavailable_ai_propagates(fake_ai, sales_rows):
    """Test AIUnavailableError is not swallowed by preparation."""
    fake_ai.on(prompts.SYSTEM_DATA_STRUCTURE, AIUnavailableError("no key"))

    with pytest.raises(AIUnavailableError):
        await analyze_data_structure(profile_columns(sales_rows), sales_rows)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_prepare_dataset_unpivots_cleans_and_transforms(fake_ai):
    """Test the full preparation chain: unpivot, clean, transform."""
    fake_ai.on(prompts.SYSTEM_DATA_STRUCTURE, {"format": "crosstab", "unpivotPlan": {
        "indexColumns": ["Product"], "valueColumns": ["Q1", "Q2"],
        "variableColumnName": "Quarter", "valueColumnName": "Sales",
    }})
    fake_ai.on(prompts.SYSTEM_CLEANING, {"excludeRows": [{"column": "Product", "equals": "total"}]})
    fake_ai.on(prompts.SYSTEM_DATA_PREPARATION, {
        "explanation": "Convert sales to numbers",
        "jsFunctionBody": "return [dict(r, Sales=parse_number(r['Sales'])) for r in data]",
        "outputColumns": [{"name": "Product", "type": "categorical"}, {"name": "Quarter", "type": "categorical"},
                          {"name": "Sales", "type": "numerical"}],
    })

    prepared = await prepare_dataset(CROSSTAB_ROWS)

    assert len(prepared.rows) == 4
    assert prepared.rows[0] == {"Product": "A", "Quarter": "Q1", "Sales": 10.0}
    assert [p.name for p in prepared.column_profiles] == ["Product", "Quarter", "Sales"]
    assert prepared.notes == [
        "Unpivoted crosstab data into 6 rows.",
        "Excluded 2 summary rows.",
        "AI Plan: Convert sales to numbers",
    ]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_output_columns_that_do_not_match_data_are_reprofiled(fake_ai, sales_rows):
    """Test declared output columns are ignored when the data disagrees."""
    tidy(fake_ai)
    fake_ai.on(prompts.SYSTEM_DATA_PREPARATION, {
        "explanation": "No change", "jsFunctionBody": None,
        "outputColumns": [{"name": "Revenue", "type": "numerical"}],
    })

    prepared = await prepare_dataset(sales_rows)

    assert [p.name for p in prepared.column_profiles] == ["Region", "Product", "Sales", "Units"]
    assert prepared.rows == sales_rows


@pytest.mark.asyncio
@pytest.mark.unit
async def test_transform_that_empties_dataset_fails(fake_ai, sales_rows):
    """Test a prep transform that removes every row is an error."""
    tidy(fake_ai)
    fake_ai.on(prompts.SYSTEM_DATA_PREPARATION, {"explanation": "Drop all", "jsFunctionBody": "return []"})

    with pytest.raises(ExecutionError, match="Dataset empty after transformation."):
        await prepare_dataset(sales_rows)
