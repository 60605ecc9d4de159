"""
Action validation and normalisation.

normalize_actions turns the raw ``{"actions": [...]}`` payload into typed
AiAction variants; validate_action checks one action against structural and
referential rules. The error text doubles as self-correction feedback, so it
names the exact field at fault.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence
from pydantic import ValidationError
from csv_assistant.core.errors import ParseError
from csv_assistant.core.schemas import (
    ACTION_TYPES, AGGREGATIONS, AGGREGATE_CHART_TYPES, CHART_TYPES, DOM_TOOLS,
    AiAction, AnalysisPlan, ClarificationRequestAction, DomActionAction, ExecuteCodeAction,
    FilterSpreadsheetAction, PlanCreationAction, TextResponseAction, UnknownAction,
    ValidationContext, ValidationResult,
)

logger = logging.getLogger(__name__)

_ALLOWED = ', '.join(AGGREGATIONS)


def _aggregation_error(field: str, value: Optional[str]) -> Optional[str]:
    if value and value not in AGGREGATIONS:
        return f"Unsupported {field} type '{value}'. Must be one of: {_ALLOWED}."
    return None


def _column_errors(plan: AnalysisPlan, column_names: Optional[Sequence[str]]) -> List[str]:
    if column_names is None:
        return []
    known = set(column_names)
    errors = []
    for field, alias in (
        ('group_by_column', 'groupByColumn'), ('value_column', 'valueColumn'),
        ('x_value_column', 'xValueColumn'), ('y_value_column', 'yValueColumn'),
        ('secondary_value_column', 'secondaryValueColumn'),
    ):
        value = getattr(plan, field)
        if value and value not in known:
            errors.append(f"'{alias}' ('{value}') is not a column in the dataset.")
    return errors


def plan_errors(plan: Optional[AnalysisPlan], column_names: Optional[Sequence[str]] = None) -> List[str]:
    """Structural errors for a plan; an empty list means the plan is valid."""
    if plan is None:
        return ['The "plan" object is missing or invalid.']

    errors = []
    if not plan.title:
        errors.append('"plan.title" is a required string.')
    if not plan.chart_type:
        errors.append('"plan.chartType" is a required string.')
    elif plan.chart_type not in CHART_TYPES:
        errors.append(f"Unsupported chartType '{plan.chart_type}'. Must be one of: {', '.join(CHART_TYPES)}.")

    if plan.chart_type == 'scatter':
        if not plan.x_value_column:
            errors.append("For scatter plots, 'xValueColumn' is required.")
        if not plan.y_value_column:
            errors.append("For scatter plots, 'yValueColumn' is required.")
        if plan.aggregation:
            errors.append("For scatter plots, 'aggregation' must not be provided.")
        if plan.group_by_column:
            errors.append("For scatter plots, 'groupByColumn' must not be provided.")
    elif plan.chart_type == 'combo':
        if not plan.group_by_column:
            errors.append("For combo charts, 'groupByColumn' is required.")
        if not plan.value_column:
            errors.append("For combo charts, 'valueColumn' is required.")
        if not plan.aggregation:
            errors.append("For combo charts, 'aggregation' is required.")
        if not plan.secondary_value_column:
            errors.append("For combo charts, 'secondaryValueColumn' is required.")
        if not plan.secondary_aggregation:
            errors.append("For combo charts, 'secondaryAggregation' is required.")
        for error in (_aggregation_error('aggregation', plan.aggregation),
                      _aggregation_error('secondaryAggregation', plan.secondary_aggregation)):
            if error:
                errors.append(error)
    elif plan.chart_type in AGGREGATE_CHART_TYPES or not plan.chart_type:
        label = plan.chart_type or 'aggregate'
        if not plan.aggregation:
            errors.append(f"For '{label}' charts, 'aggregation' is required.")
        if not plan.group_by_column:
            errors.append(f"For '{label}' charts, 'groupByColumn' is required.")
        error = _aggregation_error('aggregation', plan.aggregation)
        if error:
            errors.append(error)
        if plan.aggregation and plan.aggregation != 'count' and not plan.value_column:
            errors.append(f"For '{plan.aggregation}' aggregation, 'valueColumn' is required.")

    if plan.chart_type != 'scatter' and plan.group_by_column:
        for field, value in (('valueColumn', plan.value_column), ('secondaryValueColumn', plan.secondary_value_column)):
            if value and value == plan.group_by_column:
                errors.append(f"'{field}' must differ from 'groupByColumn' ('{value}').")

    errors.extend(_column_errors(plan, column_names))
    return errors


def is_valid_plan(plan: Optional[AnalysisPlan], column_names: Optional[Sequence[str]] = None) -> bool:
    return not plan_errors(plan, column_names)


def coerce_plan(raw: Any) -> Optional[AnalysisPlan]:
    """Build an AnalysisPlan from a model dict, or None if it is not plan-shaped."""
    if isinstance(raw, AnalysisPlan):
        return raw
    if not isinstance(raw, dict):
        return None
    try:
        return AnalysisPlan.model_validate(raw)
    except ValidationError as e:
        logger.debug(f"Discarding malformed plan: {e.error_count()} field errors")
        return None


def filter_valid_plans(raw_plans: Sequence[Any], column_names: Optional[Sequence[str]] = None,
                       stage: str = "plans") -> List[AnalysisPlan]:
    """Keep only structurally valid plans; invalid ones are logged and dropped."""
    valid = []
    for raw in raw_plans:
        plan = coerce_plan(raw)
        errors = plan_errors(plan, column_names)
        if errors:
            title = plan.title if plan else None
            logger.info(f"Dropping invalid plan in {stage}: {title or '<untitled>'}", extra={'errors': errors})
            continue
        valid.append(plan)
    return valid


def normalize_action(raw: Any) -> AiAction:
    """
    Reconstruct a typed action from one raw JSON item.

    Payloads of the wrong shape become None on the variant so the validator
    reports them as missing instead of the whole batch failing to parse.
    """
    if not isinstance(raw, dict):
        return UnknownAction(response_type=f"<{type(raw).__name__}>")

    response_type = raw.get('responseType')
    action_cls = ACTION_TYPES.get(response_type)
    if action_cls is None:
        return UnknownAction(response_type=str(response_type or ''), thought=_text(raw.get('thought')))

    try:
        return action_cls.model_validate(raw)
    except ValidationError:
        # Drop the offending payload, keep what validates
        payload_keys = {'plan', 'domAction', 'code', 'args', 'clarification', 'text', 'cardId'}
        cleaned = {k: v for k, v in raw.items() if k not in payload_keys}
        cleaned['thought'] = _text(raw.get('thought'))
        return action_cls.model_validate(cleaned)


def _text(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def normalize_actions(payload: Dict[str, Any]) -> List[AiAction]:
    """
    Extract the ``actions`` list from a chat response.

    Raises:
        ParseError: the payload has no actions array
    """
    actions = payload.get('actions')
    if not isinstance(actions, list):
        raise ParseError("Invalid response structure from AI: 'actions' array not found.")
    return [normalize_action(item) for item in actions]


def _dom_action_errors(action: DomActionAction, context: ValidationContext) -> List[str]:
    dom = action.dom_action
    if dom is None:
        return ['The "domAction" object is missing for a "dom_action" responseType.']

    errors = []
    args = dom.args or {}
    if not dom.tool_name:
        errors.append('"domAction.toolName" is required.')
    elif dom.tool_name not in DOM_TOOLS:
        errors.append(f"Unsupported toolName '{dom.tool_name}'. Must be one of: {', '.join(DOM_TOOLS)}.")

    card_id = args.get('cardId')
    if not card_id:
        errors.append('"domAction.args.cardId" is required.')
    elif card_id not in context.card_ids:
        errors.append(
            f"\"domAction.args.cardId\" ('{card_id}') is invalid. "
            f"It must be one of the existing card IDs: [{', '.join(context.card_ids)}]."
        )

    if dom.tool_name == 'changeCardChartType':
        if not args.get('newType'):
            errors.append("For 'changeCardChartType', 'domAction.args.newType' is required.")
        elif args['newType'] not in CHART_TYPES:
            errors.append(f"For 'changeCardChartType', 'newType' must be one of: {', '.join(CHART_TYPES)}.")
    if dom.tool_name == 'showCardData' and not isinstance(args.get('visible'), bool):
        errors.append("For 'showCardData', 'domAction.args.visible' is required and must be a boolean.")
    if dom.tool_name == 'filterCard':
        if not args.get('column'):
            errors.append("For 'filterCard', 'domAction.args.column' is required.")
        if not isinstance(args.get('values'), list):
            errors.append("For 'filterCard', 'domAction.args.values' is required and must be an array.")
    return errors


def _code_errors(action: ExecuteCodeAction) -> List[str]:
    if action.code is None:
        return ['The "code" object is missing for an "execute_js_code" responseType.']
    errors = []
    if not action.code.explanation:
        errors.append('"code.explanation" is required.')
    if not action.code.function_body or not action.code.function_body.strip():
        errors.append('"code.jsFunctionBody" is required.')
    return errors


def _filter_errors(action: FilterSpreadsheetAction) -> List[str]:
    if action.args is None:
        return ['The "args" object is missing for a "filter_spreadsheet" responseType.']
    if not action.args.query:
        return ['"args.query" is required.']
    return []


def _clarification_errors(action: ClarificationRequestAction) -> List[str]:
    clarification = action.clarification
    if clarification is None:
        return ['The "clarification" object is missing for a "clarification_request" responseType.']

    errors = []
    if not clarification.question:
        errors.append('"clarification.question" is required.')
    if not isinstance(clarification.pending_plan, dict):
        errors.append('"clarification.pendingPlan" is required.')
    if not clarification.target_property:
        errors.append('"clarification.targetProperty" is required.')
    if not clarification.options:
        errors.append('"clarification.options" must be a non-empty array.')
    else:
        for i, option in enumerate(clarification.options):
            if option.label in (None, ''):
                errors.append(f'Option {i} is missing "label".')
            if option.value in (None, ''):
                errors.append(f'Option {i} is missing "value".')
    return errors


def _text_errors(action: TextResponseAction, context: ValidationContext) -> List[str]:
    errors = []
    if not action.text:
        errors.append('The "text" field is required for "text_response".')
    if action.card_id and action.card_id not in context.card_ids:
        errors.append(
            f"\"cardId\" ('{action.card_id}') is invalid. "
            f"It must be one of the existing card IDs: [{', '.join(context.card_ids)}]."
        )
    return errors


def _action_title(action: AiAction) -> str:
    if isinstance(action, PlanCreationAction) and action.plan and action.plan.title:
        return action.plan.title
    if isinstance(action, DomActionAction) and action.dom_action and action.dom_action.tool_name:
        return action.dom_action.tool_name
    return action.response_type or 'unknown'


def validate_action(action: AiAction, context: ValidationContext) -> ValidationResult:
    """
    Check one action; pure function of the action and the context.

    Plan columns are not checked here: an earlier action in the same batch may
    create them.
    """
    errors: List[str] = []
    if not action.thought:
        errors.append("The 'thought' field is mandatory for every action.")

    if isinstance(action, PlanCreationAction):
        errors.extend(plan_errors(action.plan))
    elif isinstance(action, DomActionAction):
        errors.extend(_dom_action_errors(action, context))
    elif isinstance(action, ExecuteCodeAction):
        errors.extend(_code_errors(action))
    elif isinstance(action, FilterSpreadsheetAction):
        errors.extend(_filter_errors(action))
    elif isinstance(action, ClarificationRequestAction):
        errors.extend(_clarification_errors(action))
    elif isinstance(action, TextResponseAction):
        errors.extend(_text_errors(action, context))
    elif not action.response_type:
        errors.append("The 'responseType' field is mandatory for every action.")
    else:
        errors.append(
            f"Unsupported responseType '{action.response_type}'. Must be one of: {', '.join(ACTION_TYPES)}."
        )

    if errors:
        bullet_list = '\n  - '.join(errors)
        return ValidationResult(
            is_valid=False,
            errors=f"- Action \"{_action_title(action)}\" (thought: \"{action.thought or 'N/A'}\") "
                   f"failed validation:\n  - {bullet_list}"
        )
    return ValidationResult(is_valid=True)
