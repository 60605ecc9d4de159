"""
Unit tests for action normalisation and validation.
"""
import pytest
from csv_assistant.core.errors import ParseError
from csv_assistant.core.schemas import (
    ClarificationRequestAction, DomActionAction, ExecuteCodeAction, PlanCreationAction,
    TextResponseAction, UnknownAction, ValidationContext,
)
from csv_assistant.services.validator import (
    filter_valid_plans, is_valid_plan, normalize_action, normalize_actions, plan_errors, validate_action
)

COLUMNS = ["Region", "Product", "Sales", "Units"]
CONTEXT = ValidationContext(card_ids=["card-1", "card-2"])

BAR_PLAN = {
    "chartType": "bar", "title": "Sales by Region", "aggregation": "sum",
    "groupByColumn": "Region", "valueColumn": "Sales",
}


def errors_of(raw):
    return validate_action(normalize_action(raw), CONTEXT)


@pytest.mark.unit
def test_normalize_actions_builds_typed_variants():
    """Test raw actions become typed variants."""
    actions = normalize_actions({"actions": [
        {"responseType": "text_response", "thought": "t", "text": "hi"},
        {"responseType": "plan_creation", "thought": "t", "plan": BAR_PLAN},
        {"responseType": "dom_action", "thought": "t",
         "domAction": {"toolName": "highlightCard", "args": {"cardId": "card-1"}}},
        {"responseType": "execute_js_code", "thought": "t",
         "code": {"explanation": "e", "jsFunctionBody": "return data"}},
        {"responseType": "clarification_request", "thought": "t", "clarification": {}},
        {"responseType": "launch_rockets", "thought": "t"},
    ]})

    assert [type(a) for a in actions] == [
        TextResponseAction, PlanCreationAction, DomActionAction,
        ExecuteCodeAction, ClarificationRequestAction, UnknownAction,
    ]
    assert actions[1].plan.group_by_column == "Region"
    assert actions[3].code.function_body == "return data"


@pytest.mark.unit
def test_normalize_actions_requires_actions_array():
    """Test a payload without an actions array raises ParseError."""
    with pytest.raises(ParseError, match="'actions' array not found"):
        normalize_actions({"action": []})


@pytest.mark.unit
def test_malformed_payload_is_reported_as_missing():
    """Test a malformed payload is reported as missing."""
    action = normalize_action({"responseType": "plan_creation", "thought": "t", "plan": "bar chart please"})

    assert isinstance(action, PlanCreationAction)
    assert action.plan is None
    result = validate_action(action, CONTEXT)
    assert 'The "plan" object is missing or invalid.' in result.errors


@pytest.mark.unit
def test_valid_actions_pass():
    """Test well-formed actions validate."""
    assert errors_of({"responseType": "text_response", "thought": "t", "text": "hi"}).is_valid
    assert errors_of({"responseType": "plan_creation", "thought": "t", "plan": BAR_PLAN}).is_valid
    assert errors_of({
        "responseType": "dom_action", "thought": "t",
        "domAction": {"toolName": "showCardData", "args": {"cardId": "card-2", "visible": True}},
    }).is_valid


@pytest.mark.unit
def test_thought_is_mandatory():
    """Test every action needs a thought."""
    result = errors_of({"responseType": "text_response", "text": "hi"})

    assert not result.is_valid
    assert "The 'thought' field is mandatory" in result.errors
    assert '(thought: "N/A")' in result.errors


@pytest.mark.unit
def test_scatter_with_group_by_has_exactly_one_error():
    """Test scatter plans with a groupByColumn get a single error."""
    plan = {"chartType": "scatter", "title": "Sales vs Units", "xValueColumn": "Sales",
            "yValueColumn": "Units", "groupByColumn": "Region"}

    action = normalize_action({"responseType": "plan_creation", "thought": "compare", "plan": plan})

    assert plan_errors(action.plan, COLUMNS) == ["For scatter plots, 'groupByColumn' must not be provided."]
    result = validate_action(action, CONTEXT)
    assert result.errors.startswith('- Action "Sales vs Units" (thought: "compare") failed validation:')


@pytest.mark.unit
def test_unknown_card_id_is_named_in_error():
    """Test the error names the bad card id and the valid ones."""
    result = errors_of({
        "responseType": "dom_action", "thought": "t",
        "domAction": {"toolName": "highlightCard", "args": {"cardId": "card-99"}},
    })

    assert not result.is_valid
    assert "'card-99'" in result.errors
    assert "[card-1, card-2]" in result.errors


@pytest.mark.unit
def test_dom_action_argument_checks():
    """Test per-tool argument checks."""
    result = errors_of({
        "responseType": "dom_action", "thought": "t",
        "domAction": {"toolName": "changeCardChartType", "args": {"cardId": "card-1", "newType": "radar"}},
    })
    assert "'newType' must be one of" in result.errors

    result = errors_of({
        "responseType": "dom_action", "thought": "t",
        "domAction": {"toolName": "filterCard", "args": {"cardId": "card-1", "column": "Region", "values": "East"}},
    })
    assert "'domAction.args.values' is required and must be an array" in result.errors


@pytest.mark.unit
def test_code_and_clarification_payload_checks():
    """Test code and clarification payload checks."""
    result = errors_of({"responseType": "execute_js_code", "thought": "t", "code": {"explanation": "e"}})
    assert '"code.jsFunctionBody" is required.' in result.errors

    result = errors_of({
        "responseType": "clarification_request", "thought": "t",
        "clarification": {"question": "Which?", "pendingPlan": {}, "targetProperty": "valueColumn", "options": []},
    })
    assert '"clarification.options" must be a non-empty array.' in result.errors


@pytest.mark.unit
def test_unknown_response_type_is_rejected():
    """Test an unknown responseType is rejected."""
    result = errors_of({"responseType": "launch_rockets", "thought": "t"})

    assert "Unsupported responseType 'launch_rockets'" in result.errors


@pytest.mark.unit
@pytest.mark.parametrize("plan, fragment", [
    ({"chartType": "bar", "title": "x", "aggregation": "sum", "groupByColumn": "Region"},
     "For 'sum' aggregation, 'valueColumn' is required."),
    ({"chartType": "line", "title": "x", "aggregation": "median", "groupByColumn": "Region", "valueColumn": "Sales"},
     "Unsupported aggregation type 'median'"),
    ({"chartType": "combo", "title": "x", "aggregation": "sum", "groupByColumn": "Region", "valueColumn": "Sales"},
     "'secondaryValueColumn' is required"),
    ({"chartType": "bar", "title": "x", "aggregation": "count", "groupByColumn": "Country"},
     "'groupByColumn' ('Country') is not a column in the dataset."),
    ({"chartType": "heatmap", "title": "x"}, "Unsupported chartType 'heatmap'"),
])
def test_plan_errors(plan, fragment):
    """Test plan structural errors."""
    normalized = normalize_action({"responseType": "plan_creation", "thought": "t", "plan": plan}).plan

    assert any(fragment in e for e in plan_errors(normalized, COLUMNS))


@pytest.mark.unit
def test_count_needs_no_value_column():
    """Test count plans need no valueColumn."""
    plan = normalize_action({"responseType": "plan_creation", "thought": "t", "plan": {
        "chartType": "pie", "title": "Orders", "aggregation": "count", "groupByColumn": "Product",
    }}).plan

    assert is_valid_plan(plan, COLUMNS)


@pytest.mark.unit
def test_filter_valid_plans_drops_invalid_and_non_dicts():
    """Test invalid plans and non-dicts are dropped."""
    raw = [BAR_PLAN, {"chartType": "bar"}, "not a plan", None]

    plans = filter_valid_plans(raw, COLUMNS)

    assert [p.title for p in plans] == ["Sales by Region"]


@pytest.mark.unit
def test_plan_action_may_name_a_column_that_does_not_exist_yet():
    """Columns are resolved at execution time, after earlier actions in the batch have run."""
    plan = {**BAR_PLAN, "valueColumn": "Profit"}

    assert errors_of({"responseType": "plan_creation", "thought": "t", "plan": plan}).is_valid
    assert "'valueColumn' ('Profit') is not a column in the dataset." in plan_errors(
        normalize_action({"responseType": "plan_creation", "thought": "t", "plan": plan}).plan, COLUMNS
    )


@pytest.mark.unit
def test_value_column_must_differ_from_group_by_column():
    """Aggregating the grouping column would overwrite the group label."""
    plan = normalize_action({"responseType": "plan_creation", "thought": "t", "plan": {
        "chartType": "bar", "title": "Regions", "aggregation": "count",
        "groupByColumn": "Region", "valueColumn": "Region",
    }}).plan

    assert plan_errors(plan) == ["'valueColumn' must differ from 'groupByColumn' ('Region')."]
