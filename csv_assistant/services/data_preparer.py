"""
Initial data preparation: crosstab detection, row-exclusion cleaning and a
model-authored transform with a self-correction loop.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence
from pydantic import ValidationError
from csv_assistant.core.config import get_settings
from csv_assistant.core.errors import AIUnavailableError, AssistantError, ExecutionError, ParseError
from csv_assistant.core.performance import track_performance
from csv_assistant.core.schemas import (
    CleaningPlan, ColumnProfile, DataPreparationPlan, DataStructureAnalysis, Row
)
from csv_assistant.services import ai_client, prompts
from csv_assistant.services.aggregation import apply_cleaning_rules, unpivot
from csv_assistant.services.profiler import profile_columns
from csv_assistant.services.response_schemas import (
    CLEANING_PLAN_SCHEMA, DATA_PREPARATION_SCHEMA, DATA_STRUCTURE_SCHEMA
)
from csv_assistant.services.sandbox import dry_run_transform, run_transform

logger = logging.getLogger(__name__)


async def analyze_data_structure(columns: Sequence[ColumnProfile], sample: Sequence[Row]) -> DataStructureAnalysis:
    """Detect crosstab layouts. Any failure falls back to 'tidy'."""
    try:
        content = await ai_client.call_ai(
            prompts.data_structure_prompt(columns, sample),
            prompts.SYSTEM_DATA_STRUCTURE,
            schema=DATA_STRUCTURE_SCHEMA,
        )
        analysis = DataStructureAnalysis.model_validate(ai_client.parse_json_object(content))
    except AIUnavailableError:
        raise
    except (AssistantError, ValidationError) as e:
        logger.warning(f"Error analyzing data structure, assuming tidy: {e}")
        return DataStructureAnalysis(format='tidy')

    if analysis.format == 'crosstab' and analysis.unpivot_plan is None:
        logger.warning("Crosstab detected without an unpivot plan, assuming tidy")
        return DataStructureAnalysis(format='tidy')
    return analysis


async def create_cleaning_plan(columns: Sequence[ColumnProfile], sample: Sequence[Row]) -> CleaningPlan:
    """Ask for row-exclusion rules. Any failure falls back to no rules."""
    try:
        content = await ai_client.call_ai(
            prompts.cleaning_plan_prompt(columns, sample),
            prompts.SYSTEM_CLEANING,
            schema=CLEANING_PLAN_SCHEMA,
        )
        return CleaningPlan.model_validate(ai_client.parse_json_object(content))
    except AIUnavailableError:
        raise
    except (AssistantError, ValidationError) as e:
        logger.warning(f"Error creating data cleaning plan: {e}")
        return CleaningPlan()


@track_performance("generate_data_preparation_plan")
async def generate_data_preparation_plan(
    columns: Sequence[ColumnProfile],
    sample: Sequence[Row],
) -> DataPreparationPlan:
    """
    Ask for a transform and verify it on the sample before accepting it.

    Parse and execution errors are fed back to the model for up to
    ``prep_max_attempts`` attempts.

    Raises:
        ExecutionError: every attempt failed
    """
    settings = get_settings()
    last_error: Optional[str] = None

    for attempt in range(1, settings.prep_max_attempts + 1):
        try:
            content = await ai_client.call_ai(
                prompts.data_preparation_prompt(columns, sample, last_error),
                prompts.SYSTEM_DATA_PREPARATION,
                schema=DATA_PREPARATION_SCHEMA,
            )
            try:
                plan = DataPreparationPlan.model_validate(ai_client.parse_json_object(content))
            except ValidationError as e:
                raise ParseError(f"Data preparation plan has the wrong shape: {e.error_count()} field errors") from e

            if plan.function_body:
                dry_run_transform(sample, plan.function_body, settings.transform_sample_rows)
            return plan
        except (ParseError, ExecutionError) as e:
            last_error = str(e)
            logger.warning(f"Data preparation attempt {attempt}/{settings.prep_max_attempts} failed: {e}")

    raise ExecutionError(f"AI failed to generate a valid data preparation plan. Last error: {last_error}")


@dataclass
class PreparedDataset:
    rows: List[Row]
    column_profiles: List[ColumnProfile]
    plan: Optional[DataPreparationPlan] = None
    notes: List[str] = field(default_factory=list)


@track_performance("prepare_dataset")
async def prepare_dataset(rows: Sequence[Row]) -> PreparedDataset:
    """
    unpivot -> clean -> transform -> profile.

    Raises:
        ExecutionError: the transform failed or the dataset is empty afterwards
    """
    settings = get_settings()
    data = list(rows)
    notes: List[str] = []

    structure = await analyze_data_structure(profile_columns(data), data[:settings.plan_sample_rows])
    if structure.format == 'crosstab':
        data = unpivot(data, structure.unpivot_plan)
        notes.append(f"Unpivoted crosstab data into {len(data)} rows.")

    cleaning = await create_cleaning_plan(profile_columns(data), data[:settings.plan_sample_rows])
    if cleaning.exclude_rows:
        before = len(data)
        data = apply_cleaning_rules(data, cleaning.exclude_rows)
        notes.append(f"Excluded {before - len(data)} summary rows.")

    profiles = profile_columns(data)
    plan = await generate_data_preparation_plan(profiles, data[:settings.transform_sample_rows])
    if plan.function_body:
        data = run_transform(data, plan.function_body, settings.transform_sample_rows)
        notes.append(f"AI Plan: {plan.explanation}")

    if not data:
        raise ExecutionError("Dataset empty after transformation.")

    output_profiles = list(plan.output_columns)
    actual_columns = set(data[0].keys())
    if not output_profiles or any(p.name not in actual_columns for p in output_profiles):
        output_profiles = profile_columns(data)
    return PreparedDataset(rows=data, column_profiles=output_profiles, plan=plan, notes=notes)
