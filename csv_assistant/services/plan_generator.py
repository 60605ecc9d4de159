"""
Two-stage analysis plan generation.

Stage A asks the model for candidate plans. Candidates are executed on the
sample; the ones that produce data are sent back for a quality review
(Stage B). The reviewed list is backfilled from Stage A up to a floor and
capped. If the pipeline fails, a single simpler candidate call is tried.
"""
import logging
from typing import Any, List, Sequence
from csv_assistant.core.config import get_settings
from csv_assistant.core.errors import AIUnavailableError, AssistantError, PlanGenerationError
from csv_assistant.core.performance import track_performance
from csv_assistant.core.schemas import AnalysisPlan, ColumnProfile, PlanReview, Row
from csv_assistant.services import ai_client, prompts
from csv_assistant.services.aggregation import execute_plan
from csv_assistant.services.profiler import split_columns
from csv_assistant.services.response_schemas import PLANS_SCHEMA
from csv_assistant.services.validator import filter_valid_plans

logger = logging.getLogger(__name__)


async def generate_candidate_plans(
    columns: Sequence[ColumnProfile],
    sample_rows: Sequence[Row],
    num_plans: int,
) -> List[AnalysisPlan]:
    """Stage A: ask for ``num_plans`` candidates and keep the structurally valid ones."""
    grouping, numeric = split_columns(columns)
    content = await ai_client.call_ai(
        prompts.candidate_plans_prompt(grouping, numeric, sample_rows, num_plans),
        prompts.SYSTEM_PLAN_CANDIDATES,
        schema=PLANS_SCHEMA,
    )
    raw_plans = ai_client.robustly_parse_json_array(content)
    plans = filter_valid_plans(raw_plans, [c.name for c in columns], stage="candidate generation")
    logger.info(f"Stage A: {len(plans)}/{len(raw_plans)} candidate plans are valid")
    return plans


def _unwrap(raw: Any) -> Any:
    # The reviewer sometimes echoes the {plan, aggregatedSample} wrapper
    if isinstance(raw, dict) and isinstance(raw.get('plan'), dict):
        return raw['plan']
    return raw


async def refine_and_configure_plans(
    reviews: Sequence[PlanReview],
    columns: Sequence[ColumnProfile] = (),
) -> List[AnalysisPlan]:
    """Stage B: the model keeps and configures only the insightful plans."""
    content = await ai_client.call_ai(
        prompts.refine_plans_prompt(reviews),
        prompts.SYSTEM_PLAN_REVIEW,
        schema=PLANS_SCHEMA,
    )
    raw_plans = [_unwrap(p) for p in ai_client.robustly_parse_json_array(content)]
    column_names = [c.name for c in columns] or None
    return filter_valid_plans(raw_plans, column_names, stage="quality review")


def build_plan_reviews(candidates: Sequence[AnalysisPlan], sample_rows: Sequence[Row],
                       review_rows: int) -> List[PlanReview]:
    """Execute candidates on the sample; keep only those that produce rows."""
    reviews = []
    for plan in candidates:
        try:
            aggregated = execute_plan(sample_rows, plan)
        except ValueError as e:
            logger.warning(f"Execution of plan \"{plan.title}\" failed during review stage: {e}")
            continue
        if aggregated:
            reviews.append(PlanReview(plan=plan, aggregated_sample=aggregated[:review_rows]))
    return reviews


def backfill_plans(refined: Sequence[AnalysisPlan], candidates: Sequence[AnalysisPlan],
                   floor: int, cap: int) -> List[AnalysisPlan]:
    """Top up ``refined`` with unselected candidates (by title) until ``floor``, then cap."""
    final = list(refined)
    if len(final) < floor:
        selected = {p.title for p in final}
        for plan in candidates:
            if len(final) >= floor:
                break
            if plan.title not in selected:
                final.append(plan)
                selected.add(plan.title)
    return final[:cap]


async def _two_stage(columns: Sequence[ColumnProfile], sample_rows: Sequence[Row]) -> List[AnalysisPlan]:
    settings = get_settings()
    candidates = await generate_candidate_plans(columns, sample_rows, settings.candidate_plan_count)
    if not candidates:
        return []

    reviews = build_plan_reviews(candidates, sample_rows, settings.review_sample_rows)
    if not reviews:
        logger.warning("No candidate plans produced data for review, returning initial valid candidates")
        return candidates[:settings.min_plans]

    refined = await refine_and_configure_plans(reviews, columns)
    logger.info(f"Stage B kept {len(refined)}/{len(reviews)} plans")
    return backfill_plans(refined, candidates, settings.min_plans, settings.max_plans)


@track_performance("generate_analysis_plans")
async def generate_analysis_plans(
    columns: Sequence[ColumnProfile],
    sample_rows: Sequence[Row],
) -> List[AnalysisPlan]:
    """
    Generate between ``min_plans`` and ``max_plans`` plans for a dataset.

    Raises:
        AIUnavailableError: no provider configured
        PlanGenerationError: both the two-stage pipeline and the fallback failed
    """
    settings = get_settings()
    sample_rows = list(sample_rows[:settings.plan_sample_rows])
    try:
        return await _two_stage(columns, sample_rows)
    except AIUnavailableError:
        raise
    except AssistantError as e:
        logger.error(f"Error during two-stage analysis plan generation: {e}")

    try:
        return await generate_candidate_plans(columns, sample_rows, settings.fallback_plan_count)
    except AIUnavailableError:
        raise
    except AssistantError as e:
        logger.error(f"Fallback plan generation also failed: {e}")
        raise PlanGenerationError("Failed to generate any analysis plans from AI.") from e
